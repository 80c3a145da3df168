"""
Kafka transport for write events.

Events are keyed by record id so all writes to one record land on the
same partition. Offsets are committed only after a polled batch has been
handed to the handler, giving at-least-once delivery. KafkaConsumer is not
thread-safe, so every consumer call runs on one dedicated worker thread.
"""

import asyncio
import json
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Optional

import kafka
from kafka.errors import KafkaError
from pydantic import ValidationError as PydanticValidationError

from shared.logging import get_logger
from ..models import WriteEvent
from .dispatcher import EventCallback, EventDispatcher, EventDispatchError
from .handler import DeadLetterSink


class KafkaEventDispatcher(EventDispatcher):
    """Publishes write events to Kafka and consumes them for the handler."""

    def __init__(self, bootstrap_servers: str, topic: str, group_id: str,
                 poll_timeout_ms: int = 1000,
                 dead_letters: Optional[DeadLetterSink] = None,
                 error_backoff_seconds: float = 5.0,
                 shutdown_grace_seconds: float = 5.0):
        self.bootstrap_servers = bootstrap_servers
        self.topic = topic
        self.group_id = group_id
        self.poll_timeout_ms = poll_timeout_ms
        self.error_backoff_seconds = error_backoff_seconds
        self.shutdown_grace_seconds = shutdown_grace_seconds
        self.dead_letters = dead_letters
        self.logger = get_logger("ingestion.events.kafka")
        self.producer: Optional[kafka.KafkaProducer] = None
        self.consumer: Optional[kafka.KafkaConsumer] = None
        self._callback: Optional[EventCallback] = None
        self._consumer_task: Optional[asyncio.Task] = None
        self._consumer_executor: Optional[ThreadPoolExecutor] = None
        self.running = False
        self.published = 0
        self.delivered = 0
        self.publish_failures = 0

    async def start(self, callback: EventCallback):
        """Start the Kafka producer and consumer loop."""
        self._callback = callback
        try:
            self.producer = kafka.KafkaProducer(
                bootstrap_servers=self.bootstrap_servers,
                value_serializer=lambda x: x.encode('utf-8'),
                key_serializer=lambda x: x.encode('utf-8') if x else None,
                acks='all',
                retries=3,
                linger_ms=5
            )
            self.consumer = kafka.KafkaConsumer(
                self.topic,
                bootstrap_servers=self.bootstrap_servers,
                group_id=self.group_id,
                value_deserializer=lambda x: x,
                key_deserializer=lambda x: x,
                auto_offset_reset='earliest',
                enable_auto_commit=False,
                max_poll_records=100,
                session_timeout_ms=30000,
                heartbeat_interval_ms=10000
            )
        except KafkaError as e:
            self.logger.error("Failed to start Kafka event transport", error=str(e))
            raise EventDispatchError(f"Kafka transport failed to start: {e}") from e

        self._consumer_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="kafka-consumer")
        self.running = True
        self._consumer_task = asyncio.create_task(self._consume_loop())
        self.logger.info("Kafka event transport started", topic=self.topic, group_id=self.group_id)

    async def stop(self):
        """Stop the Kafka producer and consumer.

        The consume loop finishes its in-flight poll before the consumer is
        closed; close runs on the consumer thread, after any pending poll.
        """
        self.running = False
        if self._consumer_task:
            try:
                await asyncio.wait_for(
                    self._consumer_task,
                    timeout=self.poll_timeout_ms / 1000 + self.shutdown_grace_seconds
                )
            except asyncio.TimeoutError:
                self.logger.warning("Kafka consume loop did not exit in time, cancelled")
            self._consumer_task = None

        loop = asyncio.get_running_loop()
        if self.producer:
            await loop.run_in_executor(None, self.producer.flush)
            self.producer.close()
            self.producer = None
        if self.consumer:
            await loop.run_in_executor(self._consumer_executor, self.consumer.close)
            self.consumer = None
        if self._consumer_executor:
            self._consumer_executor.shutdown(wait=False)
            self._consumer_executor = None
        self.logger.info("Kafka event transport stopped")

    def publish(self, event: WriteEvent) -> None:
        """Send without waiting for the broker acknowledgement."""
        if not self.producer:
            raise EventDispatchError("Producer not started")
        try:
            future = self.producer.send(self.topic, value=event.model_dump_json(), key=event.id)
        except KafkaError as e:
            raise EventDispatchError(str(e)) from e

        self.published += 1
        future.add_errback(self._on_send_error, event)

    def _on_send_error(self, event: WriteEvent, exc: Exception):
        self.publish_failures += 1
        self.logger.error(
            "Kafka rejected write event",
            topic=self.topic,
            record_id=event.id,
            timestamp=event.timestamp,
            error=str(exc)
        )
        if self.dead_letters is not None:
            self.dead_letters.record(event, f"publish failed: {exc}", attempts=1)

    async def _consume_loop(self):
        """Main consumption loop."""
        loop = asyncio.get_running_loop()
        consumer = self.consumer
        executor = self._consumer_executor
        while self.running:
            try:
                message_batch = await loop.run_in_executor(
                    executor, lambda: consumer.poll(timeout_ms=self.poll_timeout_ms)
                )
                if not message_batch:
                    continue

                for messages in message_batch.values():
                    for message in messages:
                        await self._deliver(message)

                await loop.run_in_executor(executor, consumer.commit)

            except KafkaError as e:
                self.logger.error("Kafka error in consume loop", error=str(e))
                await asyncio.sleep(self.error_backoff_seconds)
            except Exception as e:
                self.logger.error("Unexpected error in consume loop", error=str(e), exc_info=True)
                await asyncio.sleep(self.error_backoff_seconds)

    async def _deliver(self, message):
        try:
            event = WriteEvent.model_validate(json.loads(message.value))
        except (ValueError, PydanticValidationError) as e:
            self.logger.error(
                "Dropping malformed write event",
                topic=message.topic,
                offset=message.offset,
                error=str(e)
            )
            return

        try:
            await self._callback(event)
            self.delivered += 1
        except Exception as e:
            self.logger.error(
                "Event handler raised",
                topic=message.topic,
                offset=message.offset,
                record_id=event.id,
                error=str(e),
                exc_info=True
            )

    def get_stats(self) -> Dict[str, Any]:
        return {
            "transport": "kafka",
            "topic": self.topic,
            "running": self.running,
            "published": self.published,
            "delivered": self.delivered,
            "publish_failures": self.publish_failures,
        }
