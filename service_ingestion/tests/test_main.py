"""
Unit tests for the Ingestion service HTTP surface.
"""

import pytest
from fastapi.testclient import TestClient

from service_ingestion.app.cache.base import record_key
from service_ingestion.app.main import IngestionService
from shared.test_helpers import (
    InMemoryCache, InMemoryStore, RecordingDispatcher, TestDataFactory, create_test_config
)


class TestIngestionService:
    """Test cases for IngestionService."""

    @pytest.fixture
    def store(self):
        return InMemoryStore()

    @pytest.fixture
    def cache(self):
        return InMemoryCache()

    @pytest.fixture
    def service(self, store, cache):
        """Service wired to in-memory adapters and the in-process transport."""
        return IngestionService(config=create_test_config(), store=store, cache=cache)

    @pytest.fixture
    def client(self, service):
        """Create test client; entering it runs the service lifespan."""
        with TestClient(service.app) as client:
            yield client

    @pytest.fixture
    def payload(self):
        return TestDataFactory.create_payload(reading=42)

    def test_root_endpoint(self, client):
        response = client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "ingestion"
        assert "cache_aside" in data["capabilities"]

    def test_lifespan_starts_and_stops_adapters(self, service, store):
        with TestClient(service.app):
            assert store.started is True
        assert store.started is False

    def test_submit_returns_id(self, client, store, payload):
        response = client.post("/data", json=payload)

        assert response.status_code == 201
        record_id = response.json()["id"]
        assert store.records[record_id].payload == payload

    def test_submit_then_fetch_returns_payload(self, client, payload):
        """A read right after the write sees the record even if the cache lags."""
        record_id = client.post("/data", json=payload).json()["id"]

        response = client.get(f"/data/{record_id}")

        assert response.status_code == 200
        data = response.json()
        assert data["id"] == record_id
        assert data["payload"] == payload
        assert "created_at" in data
        assert "updated_at" in data

    def test_cache_converges_after_write(self, client, service, cache, payload):
        record_id = client.post("/data", json=payload).json()["id"]

        client.portal.call(service.dispatcher.drain)

        entry = cache.entries[record_key(record_id)]
        assert entry.record.payload == payload
        assert service.cache_updater.stats["applied"] >= 1

    def test_replace_record(self, client, service, cache, payload):
        record_id = client.post("/data", json=payload).json()["id"]
        new_payload = TestDataFactory.create_payload(reading=43)

        response = client.put(f"/data/{record_id}", json=new_payload)

        assert response.status_code == 200
        assert response.json() == {"id": record_id}
        client.portal.call(service.dispatcher.drain)
        assert cache.entries[record_key(record_id)].record.payload == new_payload
        assert client.get(f"/data/{record_id}").json()["payload"] == new_payload

    def test_replace_unknown_record(self, client, payload):
        response = client.put("/data/missing", json=payload)

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    @pytest.mark.parametrize("invalid", TestDataFactory.create_invalid_payloads())
    def test_submit_invalid_payload(self, client, store, invalid):
        response = client.post("/data", json=invalid)

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"
        assert store.put_calls == 0

    def test_submit_malformed_json(self, client, store):
        response = client.post(
            "/data",
            content=b"{not json",
            headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"
        assert store.put_calls == 0

    def test_fetch_unknown_record(self, client):
        response = client.get("/data/does-not-exist")

        assert response.status_code == 404
        data = response.json()
        assert data["code"] == "NOT_FOUND"
        assert data["details"] == {"id": "does-not-exist"}

    def test_persistence_failure_is_502(self, client, store, payload):
        store.make_failing()

        response = client.post("/data", json=payload)

        assert response.status_code == 502
        assert response.json()["code"] == "PERSISTENCE_ERROR"

    def test_store_unavailable_is_503(self, client, store, payload):
        store.make_unavailable()

        response = client.post("/data", json=payload)

        assert response.status_code == 503
        assert response.json()["code"] == "STORE_UNAVAILABLE"

    def test_fetch_with_store_down_and_cache_miss_is_503(self, client, store):
        store.make_unavailable()

        response = client.get("/data/not-cached")

        assert response.status_code == 503
        assert response.json()["code"] == "STORE_UNAVAILABLE"

    def test_error_carries_request_id(self, client):
        response = client.get("/data/missing", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"
        assert response.json()["trace_id"] == "req-123"

    def test_cache_outage_does_not_fail_reads(self, client, cache, payload):
        record_id = client.post("/data", json=payload).json()["id"]
        cache.always_fail = True

        response = client.get(f"/data/{record_id}")

        assert response.status_code == 200
        assert response.json()["payload"] == payload

    def test_health_check(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "ingestion"
        assert data["status"] == "ok"
        assert data["dependencies"] == {"cache": "ok", "store": "ok"}

    def test_health_degraded_when_cache_down(self, client, cache):
        cache.always_fail = True

        data = client.get("/health").json()

        assert data["status"] == "degraded"
        assert data["dependencies"]["cache"] == "error"

    def test_stats(self, client, service, payload):
        client.post("/data", json=payload)
        client.portal.call(service.dispatcher.drain)

        response = client.get("/stats")

        assert response.status_code == 200
        data = response.json()
        assert data["dispatcher"]["transport"] == "inprocess"
        assert data["dispatcher"]["published"] == 1
        assert data["cache_updates"]["applied"] == 1
        assert data["store_circuit"]["state"] == "closed"
        assert data["dead_letters"] == 0

    def test_metrics_endpoint(self, client, payload):
        record_id = client.post("/data", json=payload).json()["id"]
        client.get(f"/data/{record_id}")

        response = client.get("/metrics")

        assert response.status_code == 200
        body = response.text
        assert "http_requests_total" in body
        assert 'endpoint="/data/{record_id}"' in body
        assert "cache_misses_total" in body


class TestDeadLetterEndpoint:
    """Dead-letter inspection through the admin endpoint."""

    @pytest.fixture
    def cache(self):
        cache = InMemoryCache()
        cache.always_fail = True
        return cache

    @pytest.fixture
    def dispatcher(self):
        return RecordingDispatcher()

    @pytest.fixture
    def service(self, cache, dispatcher):
        return IngestionService(
            config=create_test_config(),
            store=InMemoryStore(),
            cache=cache,
            dispatcher=dispatcher
        )

    def test_exhausted_event_listed(self, service, dispatcher):
        payload = TestDataFactory.create_payload()

        with TestClient(service.app) as client:
            record_id = client.post("/data", json=payload).json()["id"]
            client.portal.call(dispatcher.deliver_all)

            response = client.get("/admin/dead-letters")

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        letter = data["dead_letters"][0]
        assert letter["event"]["id"] == record_id
        assert letter["attempts"] == 3
        # the write itself succeeded
        assert service.store.records[record_id].payload == payload

    def test_refused_publish_listed(self, cache):
        service = IngestionService(
            config=create_test_config(),
            store=InMemoryStore(),
            cache=cache,
            dispatcher=RecordingDispatcher(refuse=True)
        )

        with TestClient(service.app) as client:
            response = client.post("/data", json=TestDataFactory.create_payload())
            letters = client.get("/admin/dead-letters?limit=5").json()

        assert response.status_code == 201
        assert letters["total"] == 1
        assert letters["dead_letters"][0]["error"].startswith("publish failed")
