"""Database connection management"""

import json
import logging
from contextlib import asynccontextmanager
from typing import Optional

import asyncpg

from core.exceptions import DatabaseError
from config import settings


logger = logging.getLogger(__name__)


async def _init_connection(conn) -> None:
    """Decode JSON columns to Python values"""
    for type_name in ("json", "jsonb"):
        await conn.set_type_codec(
            type_name,
            encoder=json.dumps,
            decoder=json.loads,
            schema="pg_catalog",
        )


class DatabaseManager:
    """PostgreSQL connection manager"""

    def __init__(self, connection_string: Optional[str] = None):
        self.connection_string = connection_string or settings.DATABASE_URL
        self.pool: Optional[asyncpg.Pool] = None

        if not self.connection_string:
            raise DatabaseError("No database connection string provided")

    async def create_pool(self, min_size: int = 1, max_size: int = 10) -> None:
        """
        Open a connection pool; without one every call opens its own connection

        Args:
            min_size: Minimum pool size
            max_size: Maximum pool size
        """
        if self.pool:
            return
        try:
            self.pool = await asyncpg.create_pool(
                self.connection_string,
                min_size=min_size,
                max_size=max_size,
                command_timeout=30.0,
                init=_init_connection,
            )
        except (asyncpg.PostgresError, OSError) as e:
            raise DatabaseError(f"Failed to create connection pool: {e}") from e
        logger.info("Opened connection pool (min=%d, max=%d)", min_size, max_size)

    async def close(self) -> None:
        if self.pool:
            await self.pool.close()
            self.pool = None

    @asynccontextmanager
    async def get_connection(self):
        """Get async database connection"""
        if self.pool:
            async with self.pool.acquire() as conn:
                yield conn
            return

        try:
            conn = await asyncpg.connect(self.connection_string)
            await _init_connection(conn)
        except (asyncpg.PostgresError, OSError) as e:
            raise DatabaseError(f"Database connection failed: {e}") from e
        try:
            yield conn
        finally:
            await conn.close()

    async def execute(self, query: str, *args) -> list:
        """Execute query and return results"""
        async with self.get_connection() as conn:
            return await conn.fetch(query, *args)

    async def execute_one(self, query: str, *args):
        """Execute query and return single result"""
        async with self.get_connection() as conn:
            return await conn.fetchrow(query, *args)

    async def execute_write(self, query: str, *args) -> str:
        """Execute write query (INSERT, UPDATE, DELETE)"""
        async with self.get_connection() as conn:
            return await conn.execute(query, *args)
