"""
Redis caching layer for the Ingestion Service.
"""

from typing import Dict, Any, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError
from pydantic import ValidationError as PydanticValidationError

from shared.errors import CacheTransientError
from shared.logging import get_logger
from shared.retry import RetryConfig, RetryError, retry_on_exception
from ..models import CacheEntry
from .base import CacheAdapter

# KEYS[1] = cache key, ARGV = serialized entry, version, ttl seconds.
# Returns 1 when written, 0 when an equal or newer version is cached.
SET_IF_NEWER_SCRIPT = """
local current = redis.call('GET', KEYS[1])
if current then
    local ok, decoded = pcall(cjson.decode, current)
    if ok and type(decoded) == 'table' then
        local cached_version = tonumber(decoded['version'])
        if cached_version and cached_version >= tonumber(ARGV[2]) then
            return 0
        end
    end
end
redis.call('SET', KEYS[1], ARGV[1], 'EX', tonumber(ARGV[3]))
return 1
"""


class RedisCache(CacheAdapter):
    """Redis-backed cache of record snapshots."""

    def __init__(self, redis_url: str, socket_timeout: float = 5.0,
                 connect_retry: Optional[RetryConfig] = None):
        self.redis_url = redis_url
        self.socket_timeout = socket_timeout
        self.connect_retry = connect_retry or RetryConfig(max_attempts=3, base_delay=0.5, max_delay=2.0)
        self.logger = get_logger("ingestion.cache.redis")
        self.redis: Optional[redis.Redis] = None
        self._set_if_newer = None

    async def start(self):
        """Start the Redis cache.

        A cache that cannot be reached at startup is logged and left in
        place; reads degrade to the store and writes dead-letter until
        Redis comes back.
        """
        self.redis = redis.from_url(
            self.redis_url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=self.socket_timeout,
            socket_timeout=self.socket_timeout,
            retry_on_timeout=True,
            health_check_interval=30
        )
        self._set_if_newer = self.redis.register_script(SET_IF_NEWER_SCRIPT)

        @retry_on_exception((RedisError, OSError), self.connect_retry)
        async def ping():
            return await self.redis.ping()

        try:
            await ping()
            self.logger.info("Redis cache started")
        except RetryError as e:
            self.logger.warning("Redis cache unreachable at startup", error=str(e.last_exception))

    async def stop(self):
        """Stop the Redis cache."""
        if self.redis:
            await self.redis.aclose()
            self.redis = None
            self.logger.info("Redis cache stopped")

    def _client(self) -> redis.Redis:
        if self.redis is None:
            raise CacheTransientError("Redis cache not started")
        return self.redis

    async def get(self, key: str) -> Optional[CacheEntry]:
        """Get a cached entry."""
        try:
            cached_data = await self._client().get(key)
        except (RedisError, OSError) as e:
            raise CacheTransientError("Redis get failed", {"key": key, "error": str(e)}) from e

        if not cached_data:
            return None

        try:
            entry = CacheEntry.model_validate_json(cached_data)
        except PydanticValidationError as e:
            # Unreadable snapshot: treat as a miss and let the read path repopulate
            self.logger.warning("Discarding corrupt cache entry", cache_key=key, error=str(e))
            await self.delete(key)
            return None

        self.logger.debug("Cache hit", cache_key=key)
        return entry

    async def set(self, key: str, entry: CacheEntry, ttl_seconds: int) -> None:
        """Cache an entry unconditionally."""
        try:
            await self._client().setex(key, ttl_seconds, entry.model_dump_json())
        except (RedisError, OSError) as e:
            raise CacheTransientError("Redis set failed", {"key": key, "error": str(e)}) from e

        self.logger.debug("Cached entry", cache_key=key, ttl=ttl_seconds)

    async def set_if_newer(self, key: str, entry: CacheEntry, ttl_seconds: int) -> bool:
        """Cache an entry unless an equal or newer version is present."""
        self._client()
        try:
            written = await self._set_if_newer(
                keys=[key],
                args=[entry.model_dump_json(), entry.version, ttl_seconds]
            )
        except (RedisError, OSError) as e:
            raise CacheTransientError("Redis conditional set failed", {"key": key, "error": str(e)}) from e

        self.logger.debug("Conditional cache write", cache_key=key, version=entry.version, written=bool(written))
        return bool(written)

    async def delete(self, key: str) -> None:
        """Invalidate a cached entry."""
        try:
            await self._client().delete(key)
        except (RedisError, OSError) as e:
            raise CacheTransientError("Redis delete failed", {"key": key, "error": str(e)}) from e

    async def get_cache_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        try:
            info = await self._client().info()
            # O(1); counts every key in the selected database
            db_keys = await self._client().dbsize()
        except (RedisError, OSError) as e:
            raise CacheTransientError("Redis stats failed", {"error": str(e)}) from e

        return {
            "redis_version": info.get("redis_version"),
            "used_memory": info.get("used_memory_human"),
            "connected_clients": info.get("connected_clients"),
            "keyspace_hits": info.get("keyspace_hits"),
            "keyspace_misses": info.get("keyspace_misses"),
            "db_keys": db_keys,
            "hit_rate": self._calculate_hit_rate(info)
        }

    def _calculate_hit_rate(self, info: Dict[str, Any]) -> float:
        """Calculate cache hit rate."""
        hits = info.get("keyspace_hits", 0)
        misses = info.get("keyspace_misses", 0)
        total = hits + misses

        if total == 0:
            return 0.0

        return hits / total

    async def health_check(self) -> bool:
        """Check Redis health."""
        if self.redis is None:
            return False
        try:
            await self.redis.ping()
            return True
        except (RedisError, OSError):
            return False
