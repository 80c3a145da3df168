"""
Write event dispatch.

Publishing is fire-and-forget from the request's point of view: the
write path enqueues the event and returns. Workers hand events to the
cache update handler in the background.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional

from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..models import WriteEvent

EventCallback = Callable[[WriteEvent], Awaitable[Any]]


class EventDispatchError(Exception):
    """Raised when an event cannot be handed to the transport."""


class EventDispatcher(ABC):
    """Transport between the write path and the cache update handler."""

    @abstractmethod
    async def start(self, callback: EventCallback):
        """Begin delivering published events to ``callback``."""

    @abstractmethod
    async def stop(self):
        """Stop delivery, flushing what the transport allows."""

    @abstractmethod
    def publish(self, event: WriteEvent) -> None:
        """Queue ``event`` for delivery without waiting for it.

        Raises:
            EventDispatchError: the transport refused the event.
        """

    def get_stats(self) -> Dict[str, Any]:
        return {}


class InProcessEventDispatcher(EventDispatcher):
    """asyncio.Queue backed dispatcher with a pool of worker tasks."""

    def __init__(self, workers: int = 4, max_queue_size: int = 0,
                 metrics: Optional[MetricsCollector] = None):
        self.workers = workers
        self.max_queue_size = max_queue_size
        self.metrics = metrics
        self.logger = get_logger("ingestion.events.dispatcher")
        self.queue: Optional[asyncio.Queue] = None
        self._callback: Optional[EventCallback] = None
        self._tasks: List[asyncio.Task] = []
        self.published = 0
        self.delivered = 0

    async def start(self, callback: EventCallback):
        self._callback = callback
        self.queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._tasks = [
            asyncio.create_task(self._worker(i), name=f"cache-update-worker-{i}")
            for i in range(self.workers)
        ]
        self.logger.info("In-process event dispatcher started", workers=self.workers)

    async def stop(self):
        """Drain queued events, then cancel the workers."""
        if self.queue is not None and self._tasks:
            await self.queue.join()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        self.logger.info("In-process event dispatcher stopped", delivered=self.delivered)

    def publish(self, event: WriteEvent) -> None:
        if self.queue is None:
            raise EventDispatchError("Dispatcher not started")
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull as e:
            raise EventDispatchError("Event queue full") from e
        self.published += 1
        self._update_depth()

    async def drain(self):
        """Wait until every published event has been handled."""
        if self.queue is not None:
            await self.queue.join()

    async def _worker(self, index: int):
        while True:
            event = await self.queue.get()
            try:
                await self._callback(event)
                self.delivered += 1
            except Exception as e:
                # The handler absorbs cache failures itself; anything here is a bug
                self.logger.error(
                    "Event handler raised",
                    worker=index,
                    record_id=event.id,
                    error=str(e),
                    exc_info=True
                )
            finally:
                self.queue.task_done()
                self._update_depth()

    def _update_depth(self):
        if self.metrics and self.queue is not None:
            self.metrics.set_gauge("event_queue_depth", self.queue.qsize())

    def get_stats(self) -> Dict[str, Any]:
        return {
            "transport": "inprocess",
            "workers": len(self._tasks),
            "queue_depth": self.queue.qsize() if self.queue is not None else 0,
            "published": self.published,
            "delivered": self.delivered,
        }
