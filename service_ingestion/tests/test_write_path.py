"""
Unit tests for the write path coordinator.
"""

import pytest
from unittest.mock import AsyncMock

from service_ingestion.app.coordinators.base import GuardedStore
from service_ingestion.app.coordinators.write_path import WritePathCoordinator
from service_ingestion.app.events.handler import DeadLetterSink
from shared.circuit_breaker import CircuitBreaker
from shared.errors import (
    NotFoundError, PersistenceError, StoreUnavailableError, ValidationError
)
from shared.test_helpers import InMemoryStore, RecordingDispatcher, TestDataFactory


class TestWritePathCoordinator:
    """Test cases for WritePathCoordinator."""

    @pytest.fixture
    def store(self):
        return InMemoryStore()

    @pytest.fixture
    def dispatcher(self):
        return RecordingDispatcher()

    @pytest.fixture
    def dead_letters(self):
        return DeadLetterSink(max_entries=10)

    @pytest.fixture
    def breaker(self):
        return CircuitBreaker(
            failure_threshold=2,
            recovery_timeout=60.0,
            expected_exception=StoreUnavailableError,
            name="test_store"
        )

    @pytest.fixture
    def writer(self, store, dispatcher, dead_letters, breaker):
        guarded = GuardedStore(store, call_timeout=0.2, breaker=breaker)
        return WritePathCoordinator(guarded, dispatcher, dead_letters=dead_letters)

    @pytest.mark.asyncio
    async def test_submit_persists_before_returning(self, writer, store):
        """The record is in the store as soon as submit returns."""
        payload = TestDataFactory.create_payload()

        record_id = await writer.submit(payload)

        assert record_id in store.records
        assert store.records[record_id].payload == payload

    @pytest.mark.asyncio
    async def test_submit_emits_exactly_one_event(self, writer, store, dispatcher):
        record_id = await writer.submit(TestDataFactory.create_payload())

        assert len(dispatcher.published) == 1
        event = dispatcher.published[0]
        assert event.id == record_id
        assert event.payload == store.records[record_id].payload
        assert event.timestamp == store.records[record_id].version
        assert event.created_at == store.records[record_id].created_at

    @pytest.mark.asyncio
    async def test_submit_assigns_unique_ids(self, writer):
        ids = {await writer.submit(TestDataFactory.create_payload()) for _ in range(5)}
        assert len(ids) == 5

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", TestDataFactory.create_invalid_payloads())
    async def test_invalid_payload_touches_nothing(self, writer, store, dispatcher, payload):
        """Validation failures never reach the store or the event channel."""
        with pytest.raises(ValidationError):
            await writer.submit(payload)

        assert store.put_calls == 0
        assert store.records == {}
        assert dispatcher.published == []

    @pytest.mark.asyncio
    async def test_store_failure_emits_no_event(self, writer, store, dispatcher):
        store.make_failing()

        with pytest.raises(PersistenceError) as exc_info:
            await writer.submit(TestDataFactory.create_payload())

        assert exc_info.value.status_code == 502
        assert dispatcher.published == []

    @pytest.mark.asyncio
    async def test_store_unavailable_surfaces_503(self, writer, store, dispatcher):
        store.make_unavailable()

        with pytest.raises(StoreUnavailableError) as exc_info:
            await writer.submit(TestDataFactory.create_payload())

        assert exc_info.value.status_code == 503
        assert dispatcher.published == []

    @pytest.mark.asyncio
    async def test_store_timeout_surfaces_as_unavailable(self, writer, store, dispatcher):
        store.delay = 1.0

        with pytest.raises(StoreUnavailableError) as exc_info:
            await writer.submit(TestDataFactory.create_payload())

        assert exc_info.value.details["operation"] == "put"
        assert dispatcher.published == []

    @pytest.mark.asyncio
    async def test_unexpected_store_exception_wrapped(self, writer, store, dispatcher):
        store.fail_with = RuntimeError("driver bug")

        with pytest.raises(PersistenceError) as exc_info:
            await writer.submit(TestDataFactory.create_payload())

        assert "driver bug" in exc_info.value.details["error"]
        assert dispatcher.published == []

    @pytest.mark.asyncio
    async def test_open_circuit_fails_fast(self, writer, store, breaker):
        store.make_unavailable()
        for _ in range(2):
            with pytest.raises(StoreUnavailableError):
                await writer.submit(TestDataFactory.create_payload())
        assert breaker.is_open()

        calls_before = store.put_calls
        with pytest.raises(StoreUnavailableError) as exc_info:
            await writer.submit(TestDataFactory.create_payload())

        assert "circuit" in exc_info.value.message
        assert store.put_calls == calls_before

    @pytest.mark.asyncio
    async def test_publish_failure_does_not_fail_write(self, store, dead_letters):
        """A refused event is dead-lettered; the caller still gets the id."""
        writer = WritePathCoordinator(
            GuardedStore(store, call_timeout=0.2),
            RecordingDispatcher(refuse=True),
            dead_letters=dead_letters
        )

        record_id = await writer.submit(TestDataFactory.create_payload())

        assert record_id in store.records
        assert len(dead_letters) == 1
        assert dead_letters.recent()[0].event.id == record_id

    @pytest.mark.asyncio
    async def test_replace_updates_payload_and_version(self, writer, store, dispatcher):
        record_id = await writer.submit(TestDataFactory.create_payload(reading=1))
        original = store.records[record_id]
        new_payload = TestDataFactory.create_payload(reading=2)

        assert await writer.replace(record_id, new_payload) == record_id

        stored = store.records[record_id]
        assert stored.payload == new_payload
        assert stored.created_at == original.created_at
        assert stored.version > original.version
        assert [e.timestamp for e in dispatcher.published] == [original.version, stored.version]

    @pytest.mark.asyncio
    async def test_replace_unknown_record(self, writer, store, dispatcher):
        with pytest.raises(NotFoundError):
            await writer.replace("missing", TestDataFactory.create_payload())

        assert store.put_calls == 0
        assert dispatcher.published == []

    @pytest.mark.asyncio
    async def test_replace_validates_first(self, writer, store):
        with pytest.raises(ValidationError):
            await writer.replace("anything", {"source": "x"})

        assert store.get_calls == 0

    @pytest.mark.asyncio
    async def test_submit_does_not_wait_for_cache(self, store):
        """Publishing is synchronous hand-off; the handler is never awaited."""
        dispatcher = RecordingDispatcher()
        callback = AsyncMock()
        await dispatcher.start(callback)
        writer = WritePathCoordinator(GuardedStore(store, call_timeout=0.2), dispatcher)

        await writer.submit(TestDataFactory.create_payload())

        callback.assert_not_awaited()
        assert len(dispatcher.published) == 1
