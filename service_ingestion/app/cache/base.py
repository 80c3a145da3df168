"""
Cache adapter capability interface.
"""

from abc import ABC, abstractmethod
from typing import Optional

from ..models import CacheEntry

RECORD_PREFIX = "record:"


def record_key(record_id: str) -> str:
    """Cache key for a record id."""
    return f"{RECORD_PREFIX}{record_id}"


class CacheAdapter(ABC):
    """Volatile read accelerator.

    A miss is ``None``, never an exception. Backend failures raise
    ``CacheTransientError`` and callers decide how to degrade.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[CacheEntry]:
        """Return the entry stored under ``key`` or None on miss."""

    @abstractmethod
    async def set(self, key: str, entry: CacheEntry, ttl_seconds: int) -> None:
        """Store ``entry`` unconditionally."""

    @abstractmethod
    async def set_if_newer(self, key: str, entry: CacheEntry, ttl_seconds: int) -> bool:
        """Store ``entry`` only if no entry with an equal or higher version exists.

        Must be atomic with respect to concurrent writers. Returns True when
        the entry was written.
        """

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Invalidate ``key``."""

    async def start(self):
        """Open connections."""

    async def stop(self):
        """Close connections."""

    async def health_check(self) -> bool:
        return True
