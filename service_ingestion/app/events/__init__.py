"""
Event package for the Ingestion Service.

- dispatcher: transport interface and the in-process asyncio transport
- kafka: Kafka transport keyed by record id
- handler: cache update handler, dead-letter sink
"""

from .dispatcher import EventDispatcher, EventDispatchError, InProcessEventDispatcher
from .handler import CacheUpdateHandler, DeadLetter, DeadLetterSink, EventOutcome, EventState
from .kafka import KafkaEventDispatcher

__all__ = [
    "CacheUpdateHandler",
    "DeadLetter",
    "DeadLetterSink",
    "EventDispatcher",
    "EventDispatchError",
    "EventOutcome",
    "EventState",
    "InProcessEventDispatcher",
    "KafkaEventDispatcher",
]
