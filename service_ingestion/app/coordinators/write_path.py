"""
Write path: validate, persist synchronously, publish one WriteEvent.
"""

import uuid
from typing import Any, Optional

from shared.errors import NotFoundError
from shared.logging import get_logger, set_record_context
from ..events.dispatcher import EventDispatcher, EventDispatchError
from ..events.handler import DeadLetterSink
from ..models import Record, WriteEvent, utcnow, validate_payload
from .base import GuardedStore


class WritePathCoordinator:
    """Accepts records and acknowledges once they are durable.

    Cache convergence is not awaited: the event is published after the
    store write and the caller returns immediately.
    """

    def __init__(self, store: GuardedStore, dispatcher: EventDispatcher,
                 dead_letters: Optional[DeadLetterSink] = None):
        self.store = store
        self.dispatcher = dispatcher
        self.dead_letters = dead_letters
        self.logger = get_logger("ingestion.coordinators.write")

    async def submit(self, raw_payload: Any) -> str:
        """Create a new record and return its id.

        Raises:
            ValidationError: payload rejected before touching the store.
            PersistenceError: store write failed; no event is emitted.
        """
        payload = validate_payload(raw_payload)
        now = utcnow()
        record = Record(id=str(uuid.uuid4()), payload=payload, created_at=now, updated_at=now)
        set_record_context(record.id)

        persisted = await self.store.put(record)
        self.logger.info("Record created", record_id=persisted.id, version=persisted.version)

        self._emit(persisted)
        return persisted.id

    async def replace(self, record_id: str, raw_payload: Any) -> str:
        """Replace the full payload of an existing record.

        Raises:
            ValidationError: payload rejected before touching the store.
            NotFoundError: no record with ``record_id``.
            PersistenceError: store read or write failed; no event is emitted.
        """
        payload = validate_payload(raw_payload)
        set_record_context(record_id)

        existing = await self.store.get(record_id)
        if existing is None:
            raise NotFoundError(record_id)

        persisted = await self.store.put(existing.model_copy(update={"payload": payload}))
        self.logger.info("Record replaced", record_id=persisted.id, version=persisted.version)

        self._emit(persisted)
        return persisted.id

    def _emit(self, record: Record):
        """Publish exactly one event for a durable write. Never raises."""
        event = WriteEvent.for_record(record)
        try:
            self.dispatcher.publish(event)
        except EventDispatchError as e:
            self.logger.error("Failed to publish write event", record_id=record.id, error=str(e))
            if self.dead_letters is not None:
                self.dead_letters.record(event, f"publish failed: {e}", attempts=1)
