"""
Ingestion service: cache-aside record ingestion and retrieval.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import Body, Query

from shared.base_service import BaseService
from shared.circuit_breaker import CircuitBreaker
from shared.config import ServiceConfig, get_config
from shared.errors import CacheTransientError, StoreUnavailableError
from shared.retry import RetryConfig

from .cache.base import CacheAdapter
from .cache.redis_cache import RedisCache
from .coordinators.base import GuardedStore
from .coordinators.read_path import ReadPathCoordinator
from .coordinators.write_path import WritePathCoordinator
from .events.dispatcher import EventDispatcher, InProcessEventDispatcher
from .events.handler import CacheUpdateHandler, DeadLetterSink
from .events.kafka import KafkaEventDispatcher
from .models import DeadLetterResponse, Record, SubmitResponse
from .persistence.base import DurableStore
from .persistence.postgres import PostgreSQLStore

SERVICE_NAME = "ingestion"
SERVICE_PORT = 8020


class IngestionService(BaseService):
    """Ingestion service implementation.

    Adapters and the event transport default to the production backends
    named in the configuration; tests inject in-memory fakes.
    """

    def __init__(self,
                 config: Optional[ServiceConfig] = None,
                 store: Optional[DurableStore] = None,
                 cache: Optional[CacheAdapter] = None,
                 dispatcher: Optional[EventDispatcher] = None):
        super().__init__(SERVICE_NAME, SERVICE_PORT, config=config)

        # Initialize components
        self.store = store or PostgreSQLStore(self.config.store_dsn)
        self.cache = cache or RedisCache(self.config.cache_url)
        self.dead_letters = DeadLetterSink(
            max_entries=self.config.dead_letter_buffer_size,
            metrics=self.metrics
        )
        self.dispatcher = dispatcher or self._create_dispatcher()

        self.breaker = CircuitBreaker(
            failure_threshold=self.config.store_failure_threshold,
            recovery_timeout=self.config.store_recovery_timeout,
            expected_exception=StoreUnavailableError,
            name="durable_store"
        )
        guarded_store = GuardedStore(
            self.store,
            call_timeout=self.config.call_timeout_seconds,
            breaker=self.breaker,
            metrics=self.metrics
        )

        self.cache_updater = CacheUpdateHandler(
            self.cache,
            ttl_seconds=self.config.cache_ttl_seconds,
            retry_config=RetryConfig(
                max_attempts=self.config.cache_update_max_attempts,
                base_delay=self.config.cache_update_backoff_base,
                max_delay=self.config.cache_update_backoff_max
            ),
            dead_letters=self.dead_letters,
            call_timeout=self.config.call_timeout_seconds,
            metrics=self.metrics
        )
        self.writer = WritePathCoordinator(guarded_store, self.dispatcher, dead_letters=self.dead_letters)
        self.reader = ReadPathCoordinator(
            guarded_store,
            self.cache,
            ttl_seconds=self.config.cache_ttl_seconds,
            call_timeout=self.config.call_timeout_seconds,
            metrics=self.metrics
        )

        self._setup_ingestion_routes()

    def _create_dispatcher(self) -> EventDispatcher:
        if self.config.event_transport == "kafka":
            return KafkaEventDispatcher(
                self.config.kafka_bootstrap,
                topic=self.config.write_events_topic,
                group_id=self.config.event_consumer_group,
                dead_letters=self.dead_letters
            )
        return InProcessEventDispatcher(
            workers=self.config.event_workers,
            max_queue_size=self.config.event_queue_size,
            metrics=self.metrics
        )

    def _setup_ingestion_routes(self):
        """Set up ingestion-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": SERVICE_NAME,
                "message": "Data Ingestion Service",
                "version": "1.0.0",
                "capabilities": ["persistence", "cache_aside", "write_events"]
            }

        @self.app.post("/data", status_code=201, response_model=SubmitResponse)
        async def submit_record(payload: Any = Body(...)):
            """Persist a record; the cache converges asynchronously."""
            record_id = await self.writer.submit(payload)
            return SubmitResponse(id=record_id)

        @self.app.put("/data/{record_id}", response_model=SubmitResponse)
        async def replace_record(record_id: str, payload: Any = Body(...)):
            """Replace the full payload of an existing record."""
            await self.writer.replace(record_id, payload)
            return SubmitResponse(id=record_id)

        @self.app.get("/data/{record_id}", response_model=Record)
        async def fetch_record(record_id: str):
            """Read a record, cache first."""
            return await self.reader.fetch(record_id)

        @self.app.get("/admin/dead-letters")
        async def get_dead_letters(limit: int = Query(100, ge=1, le=1000)):
            """Recently dead-lettered write events."""
            letters = self.dead_letters.recent(limit)
            return {
                "total": self.dead_letters.total,
                "dead_letters": [
                    DeadLetterResponse(
                        event=letter.event,
                        error=letter.error,
                        attempts=letter.attempts,
                        dead_lettered_at=letter.dead_lettered_at
                    )
                    for letter in letters
                ]
            }

        @self.app.get("/stats")
        async def get_stats():
            """Get ingestion service statistics."""
            return {
                "cache_updates": dict(self.cache_updater.stats),
                "dispatcher": self.dispatcher.get_stats(),
                "dead_letters": self.dead_letters.total,
                "store_circuit": self.breaker.get_state(),
                "cache": await self._cache_stats(),
                "timestamp": datetime.now().isoformat()
            }

    async def _cache_stats(self) -> Dict[str, Any]:
        if not isinstance(self.cache, RedisCache):
            return {}
        try:
            return await self.cache.get_cache_stats()
        except CacheTransientError as e:
            self.logger.warning("Cache stats unavailable", error=str(e))
            return {"error": e.message}

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check ingestion service dependencies."""
        return {
            "cache": "ok" if await self.cache.health_check() else "error",
            "store": "ok" if await self.store.health_check() else "error",
        }

    async def start(self):
        """Start ingestion service components."""
        await self.store.start()
        await self.cache.start()
        await self.dispatcher.start(self.cache_updater.handle)

        self.logger.info(
            "Ingestion service started",
            event_transport=type(self.dispatcher).__name__,
            cache_ttl_seconds=self.config.cache_ttl_seconds
        )

    async def stop(self):
        """Stop ingestion service components."""
        await self.dispatcher.stop()
        await self.cache.stop()
        await self.store.stop()

        self.logger.info("Ingestion service stopped")


def create_app(config: Optional[ServiceConfig] = None):
    """Create ingestion service application."""
    service = IngestionService(config=config or get_config(SERVICE_NAME, SERVICE_PORT))
    return service.app


if __name__ == "__main__":
    service = IngestionService()
    service.run()
