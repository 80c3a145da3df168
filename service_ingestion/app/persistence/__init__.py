"""
Persistence package for the Ingestion Service.

The durable store is the system of record. ``DurableStore`` is the
capability interface; ``PostgreSQLStore`` is the production backend.
"""

from .base import DurableStore
from .postgres import PostgreSQLStore

__all__ = ["DurableStore", "PostgreSQLStore"]
