"""
PostgreSQL persistence layer for the Ingestion Service.
"""

import json
from typing import Optional

import asyncpg

from shared.errors import PersistenceError, StoreUnavailableError
from shared.logging import get_logger
from shared.retry import RetryConfig, RetryError, retry_on_exception
from ..models import Record
from .base import DurableStore

# Connectivity failures surface as StoreUnavailableError (503), everything
# else the server rejects as PersistenceError (502).
_UNAVAILABLE_ERRORS = (
    OSError,
    asyncpg.InterfaceError,
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.CannotConnectNowError,
)

_UPSERT_SQL = """
    INSERT INTO records (id, payload, created_at, updated_at)
    VALUES ($1, $2::jsonb, clock_timestamp(), clock_timestamp())
    ON CONFLICT (id) DO UPDATE SET
        payload = EXCLUDED.payload,
        updated_at = GREATEST(EXCLUDED.updated_at, records.updated_at + interval '1 microsecond')
    RETURNING id, payload, created_at, updated_at
"""


async def _init_connection(conn: asyncpg.Connection):
    await conn.set_type_codec(
        "jsonb",
        encoder=json.dumps,
        decoder=json.loads,
        schema="pg_catalog"
    )


class PostgreSQLStore(DurableStore):
    """PostgreSQL-backed durable store for records."""

    def __init__(self, dsn: str, command_timeout: float = 30.0,
                 min_size: int = 2, max_size: int = 10,
                 connect_retry: Optional[RetryConfig] = None):
        self.dsn = dsn
        self.command_timeout = command_timeout
        self.min_size = min_size
        self.max_size = max_size
        self.connect_retry = connect_retry or RetryConfig(max_attempts=5, base_delay=0.5, max_delay=5.0)
        self.logger = get_logger("ingestion.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Start the persistence layer."""

        @retry_on_exception(_UNAVAILABLE_ERRORS, self.connect_retry)
        async def connect() -> asyncpg.Pool:
            return await asyncpg.create_pool(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=self.command_timeout,
                init=_init_connection
            )

        try:
            self.pool = await connect()
            await self._create_tables()
        except (RetryError, asyncpg.PostgresError) as e:
            self.logger.error("Failed to start PostgreSQL store", error=str(e))
            raise StoreUnavailableError("Failed to start PostgreSQL store", {"error": str(e)}) from e

        self.logger.info("PostgreSQL store started")

    async def stop(self):
        """Stop the persistence layer."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL store stopped")

    async def _create_tables(self):
        """Create database tables."""
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS records (
                    id VARCHAR(64) PRIMARY KEY,
                    payload JSONB NOT NULL,
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL,
                    updated_at TIMESTAMP WITH TIME ZONE NOT NULL
                );
            """)

    def _require_pool(self) -> asyncpg.Pool:
        if self.pool is None:
            raise StoreUnavailableError("PostgreSQL store not started")
        return self.pool

    async def put(self, record: Record) -> Record:
        """Upsert a record; the database assigns timestamps."""
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                row = await conn.fetchrow(_UPSERT_SQL, record.id, record.payload)
        except _UNAVAILABLE_ERRORS as e:
            self.logger.error("PostgreSQL unavailable saving record", record_id=record.id, error=str(e))
            raise StoreUnavailableError(details={"id": record.id, "error": str(e)}) from e
        except asyncpg.PostgresError as e:
            self.logger.error("Error saving record", record_id=record.id, error=str(e))
            raise PersistenceError("Failed to save record", {"id": record.id, "error": str(e)}) from e

        self.logger.debug("Record saved", record_id=record.id)
        return self._row_to_record(row)

    async def get(self, record_id: str) -> Optional[Record]:
        """Load a record from the database."""
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                row = await conn.fetchrow("""
                    SELECT id, payload, created_at, updated_at FROM records WHERE id = $1
                """, record_id)
        except _UNAVAILABLE_ERRORS as e:
            self.logger.error("PostgreSQL unavailable loading record", record_id=record_id, error=str(e))
            raise StoreUnavailableError(details={"id": record_id, "error": str(e)}) from e
        except asyncpg.PostgresError as e:
            self.logger.error("Error loading record", record_id=record_id, error=str(e))
            raise PersistenceError("Failed to load record", {"id": record_id, "error": str(e)}) from e

        if not row:
            return None
        return self._row_to_record(row)

    def _row_to_record(self, row) -> Record:
        """Convert database row to Record object."""
        return Record(
            id=row['id'],
            payload=row['payload'],
            created_at=row['created_at'],
            updated_at=row['updated_at']
        )

    async def health_check(self) -> bool:
        """Check database health."""
        if self.pool is None:
            return False
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
                return True
        except (asyncpg.PostgresError, *_UNAVAILABLE_ERRORS):
            return False
