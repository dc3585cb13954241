# src/infra/database.py
"""
PostgreSQL access shared by the order and delivery stores.

One asyncpg pool per process. JSONB columns (order items, addresses) are
exchanged as plain Python objects thanks to a codec installed on every
pooled connection, so repositories read and write documents directly.
"""

from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from functools import wraps
from typing import Any, AsyncGenerator, Callable, Optional, TypeVar
from uuid import UUID

import asyncpg
from asyncpg import Connection, Pool

from src.common.logger import log_error, log_info, log_warning
from src.common.constants import TypeMsg

T = TypeVar("T")

# Advisory lock held while migrations/init.sql runs; both services apply it on start
SCHEMA_LOCK_ID = 748201937

TRANSIENT_ERRORS = (
    asyncpg.PostgresConnectionError,
    asyncpg.InterfaceError,
    ConnectionRefusedError,
    OSError,
)


# =============================================================================
# ROW HELPERS
# =============================================================================

def as_uuid(value: Any) -> Optional[UUID]:
    """Parses a row id. Ids that are not UUIDs cannot exist, so they map to None."""
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


def record_to_dict(record: asyncpg.Record | None) -> Optional[dict]:
    return dict(record) if record is not None else None


def affected_rows(status: str) -> int:
    """Row count of an ``UPDATE n`` / ``DELETE n`` status string."""
    try:
        return int(status.split()[-1])
    except (AttributeError, IndexError, ValueError):
        return 0


# =============================================================================
# RETRY
# =============================================================================

def retry_on_connection_error(
    max_attempts: int = 3,
    delay: float = 1.0,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Retries a coroutine while PostgreSQL is unreachable. Query errors are
    raised at once.

    Args:
        max_attempts: Attempts before giving up
        delay: Base pause (seconds), grows linearly with the attempt number
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            attempt = 1
            while True:
                try:
                    return await func(*args, **kwargs)
                except TRANSIENT_ERRORS as e:
                    if attempt >= max_attempts:
                        await log_error(f"PostgreSQL unreachable after {max_attempts} attempts: {e}")
                        raise
                    await log_warning(
                        f"PostgreSQL connection error, retrying ({attempt}/{max_attempts}): {e}",
                        extra={"function": func.__name__},
                    )
                    await asyncio.sleep(delay * attempt)
                    attempt += 1

        return wrapper  # type: ignore

    return decorator


async def _init_connection(connection: Connection) -> None:
    await connection.set_type_codec(
        "jsonb",
        encoder=json.dumps,
        decoder=json.loads,
        schema="pg_catalog",
    )


# =============================================================================
# MANAGER
# =============================================================================

class DatabaseManager:
    """
    Process-wide owner of the asyncpg pool.
    """

    _instance: DatabaseManager | None = None
    _pool: Pool | None = None

    def __new__(cls) -> DatabaseManager:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if hasattr(self, "_initialized"):
            return
        self._initialized = True
        self._pool = None

    @property
    def pool(self) -> Pool:
        if self._pool is None:
            raise RuntimeError("PostgreSQL pool is not open, call connect() first")
        return self._pool

    @retry_on_connection_error(max_attempts=3, delay=1.0)
    async def connect(
        self,
        dsn: str | None = None,
        min_size: int = 5,
        max_size: int = 20,
        command_timeout: int = 60,
    ) -> None:
        """
        Opens the pool. Does nothing when it is already open.

        Args:
            dsn: Connection string, settings.database.dsn when None
            min_size: Minimum pool size
            max_size: Maximum pool size
            command_timeout: Statement timeout (seconds)
        """
        if self._pool is not None:
            return

        if dsn is None:
            from src.config import settings
            dsn = settings.database.dsn
            min_size = settings.database.DB_MIN_POOL_SIZE
            max_size = settings.database.DB_MAX_POOL_SIZE
            command_timeout = settings.database.DB_COMMAND_TIMEOUT

        self._pool = await asyncpg.create_pool(
            dsn=dsn,
            min_size=min_size,
            max_size=max_size,
            command_timeout=command_timeout,
            init=_init_connection,
        )
        await log_info(
            "PostgreSQL pool opened",
            type_msg=TypeMsg.INFO,
            extra={"min_size": min_size, "max_size": max_size},
        )

    async def disconnect(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            await log_info("PostgreSQL pool closed", type_msg=TypeMsg.INFO)

    @asynccontextmanager
    async def acquire(self) -> AsyncGenerator[Connection, None]:
        """
        Borrows a pooled connection for the duration of the block.

        Example:
            async with db.acquire() as connection:
                row = await connection.fetchrow(
                    "SELECT * FROM orders_schema.orders WHERE id = $1", order_id
                )
        """
        async with self.pool.acquire() as connection:
            yield connection

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[Connection, None]:
        """Like acquire(), inside a transaction that rolls back on error."""
        async with self.pool.acquire() as connection:
            async with connection.transaction():
                yield connection

    @retry_on_connection_error()
    async def fetchval(self, query: str, *args: Any) -> Any:
        async with self.acquire() as connection:
            return await connection.fetchval(query, *args)

    async def health_check(self) -> bool:
        """True when PostgreSQL answers ``SELECT 1``."""
        try:
            return await self.fetchval("SELECT 1") == 1
        except Exception as e:
            await log_error(f"PostgreSQL health check failed: {e}")
            return False


_db_manager: DatabaseManager | None = None


def get_db() -> DatabaseManager:
    """Returns the process-wide DatabaseManager."""
    global _db_manager
    if _db_manager is None:
        _db_manager = DatabaseManager()
    return _db_manager


async def init_db() -> None:
    """Opens the pool from settings and applies the schema."""
    from src.config import settings

    db = get_db()
    await db.connect(
        dsn=settings.database.dsn,
        min_size=settings.database.DB_MIN_POOL_SIZE,
        max_size=settings.database.DB_MAX_POOL_SIZE,
        command_timeout=settings.database.DB_COMMAND_TIMEOUT,
    )
    await log_info(
        f"PostgreSQL connected: {settings.database.DB_HOST}:{settings.database.DB_PORT}/{settings.database.DB_NAME}",
        type_msg=TypeMsg.INFO,
    )

    await _init_schema(db)


async def _init_schema(db: DatabaseManager) -> None:
    """Applies migrations/init.sql. Every statement in it is idempotent."""
    from src.config.loader import get_project_root

    schema_path = get_project_root() / "migrations" / "init.sql"
    if not schema_path.exists():
        await log_error(f"Schema file not found: {schema_path}")
        return

    schema_sql = schema_path.read_text(encoding="utf-8")

    try:
        async with db.transaction() as connection:
            await connection.execute("SELECT pg_advisory_xact_lock($1)", SCHEMA_LOCK_ID)
            await connection.execute(schema_sql)
    except asyncpg.PostgresError as e:
        await log_error(f"Schema initialisation failed: {e}")
        raise

    await log_info("Database schema applied", type_msg=TypeMsg.INFO, extra={"schema_file": schema_path.name})


async def close_db() -> None:
    """Closes the pool."""
    await get_db().disconnect()
