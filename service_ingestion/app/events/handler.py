"""
Cache update handler: converges the cache after durable writes.

Each WriteEvent walks the state machine::

    RECEIVED -> PROCESSING -> APPLIED
                    |
                    v
                  FAILED -> RETRYING -> PROCESSING ...
                    |
                    v (attempts exhausted)
              DEAD_LETTERED

Application is a last-write-wins conditional set keyed by the event
timestamp, so duplicate or out-of-order deliveries are harmless. A stale
event still ends in APPLIED, flagged ``stale``. Failures never reach the
write path: the record is already durable and reads fall back to the
store.
"""

import asyncio
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Deque, Dict, List, Optional

from shared.errors import CacheTransientError
from shared.logging import get_logger, set_record_context
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig, calculate_delay
from ..cache.base import CacheAdapter, record_key
from ..models import CacheEntry, WriteEvent, utcnow


class EventState(str, Enum):
    """Lifecycle states of a write event in the handler."""
    RECEIVED = "received"
    PROCESSING = "processing"
    APPLIED = "applied"
    FAILED = "failed"
    RETRYING = "retrying"
    DEAD_LETTERED = "dead_lettered"


@dataclass
class EventOutcome:
    """Result of handling one write event."""
    event: WriteEvent
    state: EventState
    attempts: int = 0
    stale: bool = False
    error: Optional[str] = None
    transitions: List[EventState] = field(default_factory=list)


@dataclass
class DeadLetter:
    """Write event that exhausted its retries."""
    event: WriteEvent
    error: str
    attempts: int
    dead_lettered_at: datetime = field(default_factory=utcnow)


class DeadLetterSink:
    """Terminal destination for unapplied events.

    Keeps the most recent entries for inspection; older entries fall off.
    """

    def __init__(self, max_entries: int = 1000, metrics: Optional[MetricsCollector] = None):
        self.logger = get_logger("ingestion.events.dead_letter")
        self.metrics = metrics
        self._entries: Deque[DeadLetter] = deque(maxlen=max_entries)
        self.total = 0

    def record(self, event: WriteEvent, error: str, attempts: int) -> DeadLetter:
        letter = DeadLetter(event=event, error=error, attempts=attempts)
        self._entries.append(letter)
        self.total += 1
        self.logger.error(
            "Write event dead-lettered",
            record_id=event.id,
            timestamp=event.timestamp,
            attempts=attempts,
            error=error
        )
        if self.metrics:
            self.metrics.increment_counter("dead_letter_events_total")
        return letter

    def recent(self, limit: Optional[int] = None) -> List[DeadLetter]:
        entries = list(self._entries)
        if limit is not None:
            entries = entries[-limit:]
        return entries

    def __len__(self) -> int:
        return len(self._entries)


class CacheUpdateHandler:
    """Applies write events to the cache with bounded retries."""

    def __init__(self,
                 cache: CacheAdapter,
                 ttl_seconds: int,
                 retry_config: RetryConfig,
                 dead_letters: DeadLetterSink,
                 call_timeout: float = 2.0,
                 metrics: Optional[MetricsCollector] = None):
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self.retry_config = retry_config
        self.dead_letters = dead_letters
        self.call_timeout = call_timeout
        self.metrics = metrics
        self.logger = get_logger("ingestion.events.handler")
        self.stats: Dict[str, int] = {"applied": 0, "stale": 0, "retried": 0, "dead_lettered": 0}

    async def handle(self, event: WriteEvent) -> EventOutcome:
        """Apply ``event`` to the cache. Never raises."""
        set_record_context(event.id)
        outcome = EventOutcome(event=event, state=EventState.RECEIVED)
        self._transition(outcome, EventState.RECEIVED)

        try:
            entry = CacheEntry.for_record(event.to_record())
        except (ValueError, OverflowError, OSError) as e:
            # timestamp outside the datetime range; retrying cannot help
            self.logger.error(
                "Malformed write event",
                record_id=event.id,
                timestamp=event.timestamp,
                error=str(e)
            )
            outcome.error = f"malformed event: {e}"
            self._transition(outcome, EventState.FAILED)
            return self._dead_letter(outcome)
        key = record_key(event.id)

        for attempt in range(1, self.retry_config.max_attempts + 1):
            outcome.attempts = attempt
            self._transition(outcome, EventState.PROCESSING)
            try:
                written = await asyncio.wait_for(
                    self.cache.set_if_newer(key, entry, self.ttl_seconds),
                    timeout=self.call_timeout
                )
            except (CacheTransientError, asyncio.TimeoutError) as e:
                outcome.error = str(e) or type(e).__name__
                self._transition(outcome, EventState.FAILED)

                if attempt == self.retry_config.max_attempts:
                    break

                delay = calculate_delay(attempt, self.retry_config)
                self.logger.warning(
                    "Cache update failed, retrying",
                    record_id=event.id,
                    attempt=attempt,
                    delay=delay,
                    error=outcome.error
                )
                self.stats["retried"] += 1
                self._transition(outcome, EventState.RETRYING)
                await asyncio.sleep(delay)
                continue

            outcome.stale = not written
            outcome.error = None
            self._transition(outcome, EventState.APPLIED)
            self._count("stale" if outcome.stale else "applied")
            self.logger.debug(
                "Write event applied",
                record_id=event.id,
                timestamp=event.timestamp,
                stale=outcome.stale,
                attempts=attempt
            )
            return outcome

        return self._dead_letter(outcome)

    def _dead_letter(self, outcome: EventOutcome) -> EventOutcome:
        self.dead_letters.record(outcome.event, outcome.error or "unknown error", outcome.attempts)
        self._transition(outcome, EventState.DEAD_LETTERED)
        self._count("dead_lettered")
        return outcome

    def _transition(self, outcome: EventOutcome, state: EventState):
        outcome.state = state
        outcome.transitions.append(state)

    def _count(self, outcome: str):
        self.stats[outcome] += 1
        if self.metrics:
            self.metrics.increment_counter("cache_update_events_total", outcome=outcome)
