"""
Guarded access to the durable store shared by both coordinators.
"""

import asyncio
from typing import Optional

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.errors import PersistenceError, StoreUnavailableError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..models import Record
from ..persistence.base import DurableStore


class GuardedStore:
    """Applies the per-call timeout and circuit breaker to store calls.

    Every failure leaves here as ``PersistenceError`` or its
    ``StoreUnavailableError`` subclass.
    """

    def __init__(self,
                 store: DurableStore,
                 call_timeout: float,
                 breaker: Optional[CircuitBreaker] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.store = store
        self.call_timeout = call_timeout
        self.breaker = breaker or CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=30.0,
            expected_exception=StoreUnavailableError,
            name="durable_store"
        )
        self.metrics = metrics
        self.logger = get_logger("ingestion.coordinators.store")

    async def put(self, record: Record) -> Record:
        return await self._call("put", self.store.put, record)

    async def get(self, record_id: str) -> Optional[Record]:
        return await self._call("get", self.store.get, record_id)

    async def _call(self, operation: str, func, *args):
        async def bounded():
            try:
                return await asyncio.wait_for(func(*args), timeout=self.call_timeout)
            except asyncio.TimeoutError as e:
                self.logger.warning("Durable store call timed out", operation=operation, timeout=self.call_timeout)
                raise StoreUnavailableError(
                    "Durable store timed out",
                    {"operation": operation, "timeout_seconds": self.call_timeout}
                ) from e

        try:
            if self.metrics:
                with self.metrics.time_operation("store_operation_duration_seconds", operation=operation):
                    return await self.breaker.call(bounded)
            return await self.breaker.call(bounded)
        except CircuitBreakerOpenException as e:
            raise StoreUnavailableError(
                "Durable store circuit open",
                {"operation": operation, "breaker": self.breaker.name}
            ) from e
        except PersistenceError:
            raise
        except Exception as e:
            # Adapters should only raise PersistenceError; keep the contract regardless
            self.logger.error("Unexpected durable store failure", operation=operation, error=str(e), exc_info=True)
            raise PersistenceError("Durable store failed", {"operation": operation, "error": str(e)}) from e
