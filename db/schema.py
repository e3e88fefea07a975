"""Schema management operations"""

import logging

import asyncpg

from core.exceptions import DatabaseError
from .connection import DatabaseManager


logger = logging.getLogger(__name__)


# Creation order matters: later tables reference earlier ones
TABLES = {
    "trackers": """
        CREATE TABLE IF NOT EXISTS trackers (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            slug TEXT NOT NULL UNIQUE,
            is_active BOOLEAN NOT NULL DEFAULT TRUE,
            doc JSONB NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
    """,
    "tracker_rows": """
        CREATE TABLE IF NOT EXISTS tracker_rows (
            seq BIGSERIAL PRIMARY KEY,
            tracker_id TEXT NOT NULL REFERENCES trackers (id) ON DELETE CASCADE,
            row_id TEXT NOT NULL,
            data JSONB NOT NULL DEFAULT '{}'::jsonb,
            version INTEGER NOT NULL DEFAULT 1,
            created_by TEXT NOT NULL,
            created_at TIMESTAMPTZ NOT NULL,
            updated_by TEXT NOT NULL,
            updated_at TIMESTAMPTZ NOT NULL,
            UNIQUE (tracker_id, row_id)
        );
    """,
    "tracker_aliases": """
        CREATE TABLE IF NOT EXISTS tracker_aliases (
            id TEXT PRIMARY KEY,
            tracker_id TEXT NOT NULL REFERENCES trackers (id) ON DELETE CASCADE,
            row_id TEXT NOT NULL,
            alias TEXT NOT NULL,
            user_id TEXT NOT NULL,
            created_at TIMESTAMPTZ NOT NULL,
            UNIQUE (tracker_id, alias)
        );
    """,
    "tracker_updates": """
        CREATE TABLE IF NOT EXISTS tracker_updates (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            processed BOOLEAN NOT NULL DEFAULT FALSE,
            doc JSONB NOT NULL,
            created_at TIMESTAMPTZ NOT NULL
        );
    """,
}

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_trackers_user_id ON trackers (user_id);",
    "CREATE INDEX IF NOT EXISTS idx_tracker_aliases_row ON tracker_aliases (tracker_id, row_id);",
    "CREATE INDEX IF NOT EXISTS idx_tracker_updates_user ON tracker_updates (user_id, created_at DESC);",
]


class SchemaManager:
    """PostgreSQL schema operations"""

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    async def create_tables(self) -> None:
        """Create every engine table and index if missing"""
        for table_name, sql in TABLES.items():
            try:
                await self.db.execute_write(sql)
            except asyncpg.PostgresError as e:
                raise DatabaseError(f"Failed to create table {table_name}: {e}") from e
            logger.info("Ensured table %s", table_name)

        for sql in INDEXES:
            try:
                await self.db.execute_write(sql)
            except asyncpg.PostgresError as e:
                raise DatabaseError(f"Failed to create index: {e}") from e

    async def drop_tables(self) -> None:
        """Drop every engine table"""
        for table_name in reversed(list(TABLES)):
            try:
                await self.db.execute_write(f"DROP TABLE IF EXISTS {table_name} CASCADE;")
            except asyncpg.PostgresError as e:
                raise DatabaseError(f"Failed to drop table {table_name}: {e}") from e
