"""
Cache package for the Ingestion Service.

Currently provides a Redis-backed cache that stores record snapshots
with a TTL to accelerate reads. Entries carry the record version so
writers can apply last-write-wins atomically.
"""

from .base import CacheAdapter, record_key
from .redis_cache import RedisCache

__all__ = ["CacheAdapter", "RedisCache", "record_key"]
