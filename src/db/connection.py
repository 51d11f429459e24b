"""Database connection management"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional
import psycopg
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool
from src.config import DATABASE_URL, DB_LOCK_POOL_MAX_SIZE, DB_POOL_MAX_SIZE, STORE_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


class Database:
    """Database connection pool manager

    Queries run on the main pool. Per-user advisory locks are held on
    connections from a second, smaller pool, so a lock holder never waits
    for a query connection that other lock holders are sitting on.
    """

    def __init__(
        self,
        connection_string: str = DATABASE_URL,
        timeout_seconds: float = STORE_TIMEOUT_SECONDS,
        pool_max_size: int = DB_POOL_MAX_SIZE,
        lock_pool_max_size: int = DB_LOCK_POOL_MAX_SIZE
    ):
        self.connection_string = connection_string
        self.timeout_seconds = timeout_seconds
        self.pool_max_size = pool_max_size
        self.lock_pool_max_size = lock_pool_max_size
        self._pool: Optional[AsyncConnectionPool] = None
        self._lock_pool: Optional[AsyncConnectionPool] = None

    async def init_pool(self) -> None:
        """Initialize the query and lock pools"""
        logger.info(
            f"Initializing database connection pools "
            f"(queries={self.pool_max_size}, locks={self.lock_pool_max_size})"
        )
        self._pool = AsyncConnectionPool(
            self.connection_string,
            min_size=2,
            max_size=self.pool_max_size,
            timeout=self.timeout_seconds,
            open=False
        )
        self._lock_pool = AsyncConnectionPool(
            self.connection_string,
            min_size=1,
            max_size=self.lock_pool_max_size,
            timeout=self.timeout_seconds,
            open=False
        )
        await self._pool.open()
        await self._lock_pool.open()

    async def close_pool(self) -> None:
        """Close both pools"""
        if self._pool:
            logger.info("Closing database connection pool")
            await self._pool.close()
            self._pool = None
        if self._lock_pool:
            await self._lock_pool.close()
            self._lock_pool = None

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """Get database connection from pool"""
        if not self._pool:
            raise RuntimeError("Database pool not initialized")

        async with self._pool.connection() as conn:
            conn.row_factory = dict_row
            yield conn

    @asynccontextmanager
    async def lock_connection(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """Get a connection for holding session-level advisory locks"""
        if not self._lock_pool:
            raise RuntimeError("Database pool not initialized")

        async with self._lock_pool.connection() as conn:
            conn.row_factory = dict_row
            yield conn


# Global database instance
db = Database()
