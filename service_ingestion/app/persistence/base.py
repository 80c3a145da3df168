"""
Durable store capability interface.
"""

from abc import ABC, abstractmethod
from typing import Optional

from ..models import Record


class DurableStore(ABC):
    """System of record for Records.

    Implementations raise ``PersistenceError`` (or ``StoreUnavailableError``
    when the backend cannot be reached) instead of returning sentinels, and
    guarantee that ``updated_at`` strictly increases across successive
    writes to the same id.
    """

    @abstractmethod
    async def put(self, record: Record) -> Record:
        """Insert or fully replace ``record``; return it as persisted.

        The returned record keeps the original ``created_at`` of an existing
        id and carries the store-assigned ``updated_at``.
        """

    @abstractmethod
    async def get(self, record_id: str) -> Optional[Record]:
        """Return the latest record for ``record_id`` or None."""

    async def start(self):
        """Acquire connections."""

    async def stop(self):
        """Release connections."""

    async def health_check(self) -> bool:
        return True
