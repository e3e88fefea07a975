"""Database layer"""

from typing import Optional

from config import Settings, settings as default_settings
from core.interfaces import TrackerStore
from .connection import DatabaseManager
from .schema import SchemaManager
from .memory import InMemoryStore
from .postgres import PostgresStore


def create_store(config: Optional[Settings] = None) -> TrackerStore:
    """Build the store selected by STORE_BACKEND"""
    config = config or default_settings
    backend = config.get_store_backend()

    if backend == "memory":
        return InMemoryStore()
    if backend == "postgres":
        return PostgresStore(DatabaseManager(config.DATABASE_URL))
    raise ValueError(f"Unknown store backend: {config.STORE_BACKEND}")


__all__ = [
    "DatabaseManager",
    "SchemaManager",
    "InMemoryStore",
    "PostgresStore",
    "create_store",
]
