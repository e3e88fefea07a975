"""PostgreSQL tracker store"""

from typing import Any, Optional

import asyncpg
from pydantic_core import to_jsonable_python

from core.exceptions import DuplicateKeyError, NotFoundError, VersionConflictError
from core.interfaces import TrackerStore
from core.models import Alias, Row, Tracker, Update, utc_now
from .connection import DatabaseManager


def _affected(status: str) -> int:
    """Row count from a command tag such as 'UPDATE 3'"""
    try:
        return int(status.split()[-1])
    except (ValueError, IndexError):
        return 0


def _row_from_record(record) -> Row:
    return Row(
        tracker_id=record["tracker_id"],
        row_id=record["row_id"],
        data=record["data"] or {},
        seq=record["seq"],
        version=record["version"],
        created_by=record["created_by"],
        created_at=record["created_at"],
        updated_by=record["updated_by"],
        updated_at=record["updated_at"],
    )


def _alias_from_record(record) -> Alias:
    return Alias(**dict(record))


class PostgresStore(TrackerStore):
    """
    asyncpg-backed store

    Uniqueness is enforced by table constraints: ``UNIQUE (tracker_id, row_id)``
    for rows, ``UNIQUE (slug)`` for trackers and ``UNIQUE (tracker_id, alias)``
    for aliases. Violations surface as DuplicateKeyError.
    """

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    # Trackers

    async def insert_tracker(self, tracker: Tracker) -> Tracker:
        query = """
            INSERT INTO trackers (id, user_id, slug, is_active, doc, created_at)
            VALUES ($1, $2, $3, $4, $5, $6)
        """
        try:
            await self.db.execute_write(
                query,
                tracker.id,
                tracker.user_id,
                tracker.slug,
                tracker.is_active,
                tracker.model_dump(mode="json"),
                tracker.created_at,
            )
        except asyncpg.UniqueViolationError as e:
            raise DuplicateKeyError(f"Slug {tracker.slug!r} is already taken", key=tracker.slug) from e
        return tracker

    async def get_tracker(self, tracker_id: str) -> Optional[Tracker]:
        record = await self.db.execute_one("SELECT doc FROM trackers WHERE id = $1", tracker_id)
        return Tracker.model_validate(record["doc"]) if record else None

    async def get_tracker_by_slug(self, slug: str) -> Optional[Tracker]:
        record = await self.db.execute_one("SELECT doc FROM trackers WHERE slug = $1", slug)
        return Tracker.model_validate(record["doc"]) if record else None

    async def list_trackers(self, user_id: str, active_only: bool = False) -> list[Tracker]:
        query = """
            SELECT doc FROM trackers
            WHERE user_id = $1 AND (NOT $2 OR is_active)
            ORDER BY created_at
        """
        records = await self.db.execute(query, user_id, active_only)
        return [Tracker.model_validate(r["doc"]) for r in records]

    async def save_tracker(self, tracker: Tracker) -> Tracker:
        query = """
            UPDATE trackers SET slug = $2, is_active = $3, doc = $4
            WHERE id = $1
            RETURNING doc
        """
        record = await self.db.execute_one(
            query, tracker.id, tracker.slug, tracker.is_active, tracker.model_dump(mode="json")
        )
        if record is None:
            raise NotFoundError(f"Tracker {tracker.id} not found", resource="tracker")
        return Tracker.model_validate(record["doc"])

    async def delete_tracker(self, tracker_id: str) -> None:
        # rows and aliases cascade through their foreign keys
        await self.db.execute_write("DELETE FROM trackers WHERE id = $1", tracker_id)

    # Rows

    async def get_row(self, tracker_id: str, row_id: str) -> Optional[Row]:
        record = await self.db.execute_one(
            "SELECT * FROM tracker_rows WHERE tracker_id = $1 AND row_id = $2", tracker_id, row_id
        )
        return _row_from_record(record) if record else None

    async def insert_row(self, row: Row) -> Row:
        query = """
            INSERT INTO tracker_rows
                (tracker_id, row_id, data, version, created_by, created_at, updated_by, updated_at)
            VALUES ($1, $2, $3, 1, $4, $5, $6, $7)
            RETURNING *
        """
        try:
            record = await self.db.execute_one(
                query,
                row.tracker_id,
                row.row_id,
                row.data,
                row.created_by,
                row.created_at,
                row.updated_by,
                row.updated_at,
            )
        except asyncpg.UniqueViolationError as e:
            raise DuplicateKeyError(
                f'Row with primary key "{row.row_id}" is a duplicate of an existing row', key=row.row_id
            ) from e
        except asyncpg.ForeignKeyViolationError as e:
            raise NotFoundError(f"Tracker {row.tracker_id} not found", resource="tracker") from e
        return _row_from_record(record)

    async def patch_row(
        self,
        tracker_id: str,
        row_id: str,
        data: dict[str, Any],
        updated_by: str,
        expected_version: Optional[int] = None,
        new_row_id: Optional[str] = None,
    ) -> Row:
        target_id = new_row_id or row_id
        query = """
            UPDATE tracker_rows
            SET row_id = $3, data = $4, version = version + 1, updated_by = $5, updated_at = $6
            WHERE tracker_id = $1 AND row_id = $2 AND ($7::integer IS NULL OR version = $7)
            RETURNING *
        """
        try:
            record = await self.db.execute_one(
                query, tracker_id, row_id, target_id, data, updated_by, utc_now(), expected_version
            )
        except asyncpg.UniqueViolationError as e:
            raise DuplicateKeyError(
                f'Row with primary key "{target_id}" is a duplicate of an existing row', key=target_id
            ) from e

        if record is None:
            current = await self.get_row(tracker_id, row_id)
            if current is None:
                raise NotFoundError(f"Row {row_id} not found", resource="row")
            raise VersionConflictError(
                f"Row {row_id} was modified concurrently",
                expected=expected_version,
                actual=current.version,
            )
        return _row_from_record(record)

    async def delete_row(self, tracker_id: str, row_id: str) -> bool:
        status = await self.db.execute_write(
            "DELETE FROM tracker_rows WHERE tracker_id = $1 AND row_id = $2", tracker_id, row_id
        )
        return _affected(status) > 0

    async def delete_all_rows(self, tracker_id: str) -> int:
        status = await self.db.execute_write("DELETE FROM tracker_rows WHERE tracker_id = $1", tracker_id)
        return _affected(status)

    async def list_rows(self, tracker_id: str, after_seq: Optional[int] = None, limit: int = 50) -> list[Row]:
        query = """
            SELECT * FROM tracker_rows
            WHERE tracker_id = $1 AND seq > $2
            ORDER BY seq
            LIMIT $3
        """
        records = await self.db.execute(query, tracker_id, after_seq or 0, limit)
        return [_row_from_record(r) for r in records]

    async def drop_row_keys(self, tracker_id: str, keys: list[str]) -> int:
        query = """
            UPDATE tracker_rows
            SET data = data - $2::text[], version = version + 1
            WHERE tracker_id = $1 AND data ?| $2::text[]
        """
        status = await self.db.execute_write(query, tracker_id, keys)
        return _affected(status)

    # Aliases

    async def insert_alias(self, alias: Alias) -> Alias:
        query = """
            INSERT INTO tracker_aliases (id, tracker_id, row_id, alias, user_id, created_at)
            VALUES ($1, $2, $3, $4, $5, $6)
        """
        try:
            await self.db.execute_write(
                query, alias.id, alias.tracker_id, alias.row_id, alias.alias, alias.user_id, alias.created_at
            )
        except asyncpg.UniqueViolationError as e:
            raise DuplicateKeyError(
                f'Alias "{alias.alias}" is already in use for this tracker', key=alias.alias
            ) from e
        return alias

    async def get_alias(self, tracker_id: str, alias: str) -> Optional[Alias]:
        record = await self.db.execute_one(
            "SELECT * FROM tracker_aliases WHERE tracker_id = $1 AND alias = $2", tracker_id, alias
        )
        return _alias_from_record(record) if record else None

    async def get_alias_by_id(self, alias_id: str) -> Optional[Alias]:
        record = await self.db.execute_one("SELECT * FROM tracker_aliases WHERE id = $1", alias_id)
        return _alias_from_record(record) if record else None

    async def delete_alias(self, alias_id: str) -> bool:
        status = await self.db.execute_write("DELETE FROM tracker_aliases WHERE id = $1", alias_id)
        return _affected(status) > 0

    async def list_aliases(self, tracker_id: str, row_id: Optional[str] = None) -> list[Alias]:
        query = """
            SELECT * FROM tracker_aliases
            WHERE tracker_id = $1 AND ($2::text IS NULL OR row_id = $2)
            ORDER BY created_at
        """
        records = await self.db.execute(query, tracker_id, row_id)
        return [_alias_from_record(r) for r in records]

    async def rebind_aliases(self, tracker_id: str, old_row_id: str, new_row_id: str) -> int:
        status = await self.db.execute_write(
            "UPDATE tracker_aliases SET row_id = $3 WHERE tracker_id = $1 AND row_id = $2",
            tracker_id,
            old_row_id,
            new_row_id,
        )
        return _affected(status)

    # Updates

    async def insert_update(self, update: Update) -> Update:
        query = """
            INSERT INTO tracker_updates (id, user_id, processed, doc, created_at)
            VALUES ($1, $2, $3, $4, $5)
        """
        try:
            await self.db.execute_write(
                query, update.id, update.user_id, update.processed, update.model_dump(mode="json"), update.created_at
            )
        except asyncpg.UniqueViolationError as e:
            raise DuplicateKeyError(f"Update {update.id} already exists", key=update.id) from e
        return update

    async def get_update(self, update_id: str) -> Optional[Update]:
        record = await self.db.execute_one("SELECT doc FROM tracker_updates WHERE id = $1", update_id)
        return Update.model_validate(record["doc"]) if record else None

    async def patch_update(self, update_id: str, fields: dict[str, Any]) -> Update:
        query = """
            UPDATE tracker_updates
            SET doc = doc || $2::jsonb,
                processed = COALESCE(($2::jsonb ->> 'processed')::boolean, processed)
            WHERE id = $1
            RETURNING doc
        """
        record = await self.db.execute_one(query, update_id, to_jsonable_python(fields))
        if record is None:
            raise NotFoundError(f"Update {update_id} not found", resource="update")
        return Update.model_validate(record["doc"])

    async def claim_update(self, update_id: str, fields: dict[str, Any]) -> Optional[Update]:
        query = """
            UPDATE tracker_updates
            SET processed = TRUE, doc = doc || $2::jsonb
            WHERE id = $1 AND NOT processed
            RETURNING doc
        """
        record = await self.db.execute_one(query, update_id, to_jsonable_python({**fields, "processed": True}))
        if record is None:
            if await self.get_update(update_id) is None:
                raise NotFoundError(f"Update {update_id} not found", resource="update")
            return None
        return Update.model_validate(record["doc"])

    async def list_updates(self, user_id: str) -> list[Update]:
        records = await self.db.execute(
            "SELECT doc FROM tracker_updates WHERE user_id = $1 ORDER BY created_at DESC", user_id
        )
        return [Update.model_validate(r["doc"]) for r in records]
