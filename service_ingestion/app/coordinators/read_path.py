"""
Read path: cache first, durable store on miss, repopulate.
"""

import asyncio
from typing import Optional

from shared.errors import CacheTransientError, NotFoundError
from shared.logging import get_logger, set_record_context
from shared.metrics import MetricsCollector
from ..cache.base import CacheAdapter, record_key
from ..models import CacheEntry, Record
from .base import GuardedStore


class ReadPathCoordinator:
    """Serves records from the cache when possible.

    The cache only accelerates reads. A miss, a cache error and a cache
    timeout all fall through to the store, which alone decides existence.
    """

    def __init__(self, store: GuardedStore, cache: CacheAdapter,
                 ttl_seconds: int, call_timeout: float,
                 metrics: Optional[MetricsCollector] = None):
        self.store = store
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self.call_timeout = call_timeout
        self.metrics = metrics
        self.logger = get_logger("ingestion.coordinators.read")

    async def fetch(self, record_id: str) -> Record:
        """Return the record for ``record_id``.

        Raises:
            NotFoundError: the store has no such record.
            PersistenceError: cache missed and the store failed.
        """
        set_record_context(record_id)
        key = record_key(record_id)

        entry = await self._cache_lookup(key)
        if entry is not None:
            self._count_hit()
            return entry.record

        record = await self.store.get(record_id)
        if record is None:
            raise NotFoundError(record_id)

        await self._repopulate(key, record)
        return record

    async def _cache_lookup(self, key: str) -> Optional[CacheEntry]:
        try:
            entry = await asyncio.wait_for(self.cache.get(key), timeout=self.call_timeout)
        except asyncio.TimeoutError:
            self.logger.warning("Cache read timed out, falling back to store", cache_key=key)
            self._count_miss("timeout")
            return None
        except CacheTransientError as e:
            self.logger.warning("Cache read failed, falling back to store", cache_key=key, error=str(e))
            self._count_miss("error")
            return None

        if entry is None:
            self._count_miss("miss")
        return entry

    async def _repopulate(self, key: str, record: Record):
        """Conditional set so a slow read never overwrites a newer write."""
        try:
            await asyncio.wait_for(
                self.cache.set_if_newer(key, CacheEntry.for_record(record), self.ttl_seconds),
                timeout=self.call_timeout
            )
        except (CacheTransientError, asyncio.TimeoutError) as e:
            self.logger.warning("Cache repopulation failed", cache_key=key, error=str(e) or type(e).__name__)

    def _count_hit(self):
        if self.metrics:
            self.metrics.increment_counter("cache_hits_total")

    def _count_miss(self, reason: str):
        if self.metrics:
            self.metrics.increment_counter("cache_misses_total", reason=reason)
