"""In-process tracker store"""

import asyncio
import itertools
from typing import Any, Optional

from core.exceptions import DuplicateKeyError, NotFoundError, VersionConflictError
from core.interfaces import TrackerStore
from core.models import Alias, Row, Tracker, Update, utc_now


class InMemoryStore(TrackerStore):
    """
    Dictionary-backed store for tests and single-process deployments

    Every operation runs under one asyncio.Lock, so a uniqueness check and
    the write it guards happen as a single step. Returned models are copies.
    """

    def __init__(self):
        self._lock = asyncio.Lock()
        self._seq = itertools.count(1)
        self._trackers: dict[str, Tracker] = {}
        self._rows: dict[str, dict[str, Row]] = {}
        self._aliases: dict[str, Alias] = {}
        self._updates: dict[str, Update] = {}

    # Trackers

    async def insert_tracker(self, tracker: Tracker) -> Tracker:
        async with self._lock:
            if tracker.id in self._trackers:
                raise DuplicateKeyError(f"Tracker {tracker.id} already exists", key=tracker.id)
            if any(t.slug == tracker.slug for t in self._trackers.values()):
                raise DuplicateKeyError(f"Slug {tracker.slug!r} is already taken", key=tracker.slug)
            self._trackers[tracker.id] = tracker.model_copy(deep=True)
            self._rows[tracker.id] = {}
            return tracker.model_copy(deep=True)

    async def get_tracker(self, tracker_id: str) -> Optional[Tracker]:
        async with self._lock:
            tracker = self._trackers.get(tracker_id)
            return tracker.model_copy(deep=True) if tracker else None

    async def get_tracker_by_slug(self, slug: str) -> Optional[Tracker]:
        async with self._lock:
            for tracker in self._trackers.values():
                if tracker.slug == slug:
                    return tracker.model_copy(deep=True)
            return None

    async def list_trackers(self, user_id: str, active_only: bool = False) -> list[Tracker]:
        async with self._lock:
            return [
                t.model_copy(deep=True)
                for t in self._trackers.values()
                if t.user_id == user_id and (t.is_active or not active_only)
            ]

    async def save_tracker(self, tracker: Tracker) -> Tracker:
        async with self._lock:
            if tracker.id not in self._trackers:
                raise NotFoundError(f"Tracker {tracker.id} not found", resource="tracker")
            self._trackers[tracker.id] = tracker.model_copy(deep=True)
            return tracker.model_copy(deep=True)

    async def delete_tracker(self, tracker_id: str) -> None:
        async with self._lock:
            self._trackers.pop(tracker_id, None)
            self._rows.pop(tracker_id, None)
            for alias_id in [a.id for a in self._aliases.values() if a.tracker_id == tracker_id]:
                del self._aliases[alias_id]

    # Rows

    def _tracker_rows(self, tracker_id: str) -> dict[str, Row]:
        rows = self._rows.get(tracker_id)
        if rows is None:
            raise NotFoundError(f"Tracker {tracker_id} not found", resource="tracker")
        return rows

    async def get_row(self, tracker_id: str, row_id: str) -> Optional[Row]:
        async with self._lock:
            row = self._rows.get(tracker_id, {}).get(row_id)
            return row.model_copy(deep=True) if row else None

    async def insert_row(self, row: Row) -> Row:
        async with self._lock:
            rows = self._tracker_rows(row.tracker_id)
            if row.row_id in rows:
                raise DuplicateKeyError(
                    f'Row with primary key "{row.row_id}" is a duplicate of an existing row', key=row.row_id
                )
            stored = row.model_copy(deep=True, update={"seq": next(self._seq), "version": 1})
            rows[row.row_id] = stored
            return stored.model_copy(deep=True)

    async def patch_row(
        self,
        tracker_id: str,
        row_id: str,
        data: dict[str, Any],
        updated_by: str,
        expected_version: Optional[int] = None,
        new_row_id: Optional[str] = None,
    ) -> Row:
        async with self._lock:
            rows = self._tracker_rows(tracker_id)
            current = rows.get(row_id)
            if current is None:
                raise NotFoundError(f"Row {row_id} not found", resource="row")
            if expected_version is not None and current.version != expected_version:
                raise VersionConflictError(
                    f"Row {row_id} was modified concurrently",
                    expected=expected_version,
                    actual=current.version,
                )

            target_id = new_row_id or row_id
            if target_id != row_id and target_id in rows:
                raise DuplicateKeyError(
                    f'Row with primary key "{target_id}" is a duplicate of an existing row', key=target_id
                )

            stored = current.model_copy(deep=True, update={
                "row_id": target_id,
                "data": dict(data),
                "version": current.version + 1,
                "updated_by": updated_by,
                "updated_at": utc_now(),
            })
            if target_id != row_id:
                del rows[row_id]
            rows[target_id] = stored
            return stored.model_copy(deep=True)

    async def delete_row(self, tracker_id: str, row_id: str) -> bool:
        async with self._lock:
            return self._rows.get(tracker_id, {}).pop(row_id, None) is not None

    async def delete_all_rows(self, tracker_id: str) -> int:
        async with self._lock:
            rows = self._rows.get(tracker_id, {})
            count = len(rows)
            rows.clear()
            return count

    async def list_rows(self, tracker_id: str, after_seq: Optional[int] = None, limit: int = 50) -> list[Row]:
        async with self._lock:
            rows = sorted(self._rows.get(tracker_id, {}).values(), key=lambda r: r.seq)
            if after_seq is not None:
                rows = [r for r in rows if r.seq > after_seq]
            return [r.model_copy(deep=True) for r in rows[:limit]]

    async def drop_row_keys(self, tracker_id: str, keys: list[str]) -> int:
        async with self._lock:
            changed = 0
            for row in self._rows.get(tracker_id, {}).values():
                if any(key in row.data for key in keys):
                    for key in keys:
                        row.data.pop(key, None)
                    row.version += 1
                    changed += 1
            return changed

    # Aliases

    async def insert_alias(self, alias: Alias) -> Alias:
        async with self._lock:
            for existing in self._aliases.values():
                if existing.tracker_id == alias.tracker_id and existing.alias == alias.alias:
                    raise DuplicateKeyError(
                        f'Alias "{alias.alias}" is already in use for this tracker', key=alias.alias
                    )
            self._aliases[alias.id] = alias.model_copy(deep=True)
            return alias.model_copy(deep=True)

    async def get_alias(self, tracker_id: str, alias: str) -> Optional[Alias]:
        async with self._lock:
            for existing in self._aliases.values():
                if existing.tracker_id == tracker_id and existing.alias == alias:
                    return existing.model_copy(deep=True)
            return None

    async def get_alias_by_id(self, alias_id: str) -> Optional[Alias]:
        async with self._lock:
            alias = self._aliases.get(alias_id)
            return alias.model_copy(deep=True) if alias else None

    async def delete_alias(self, alias_id: str) -> bool:
        async with self._lock:
            return self._aliases.pop(alias_id, None) is not None

    async def list_aliases(self, tracker_id: str, row_id: Optional[str] = None) -> list[Alias]:
        async with self._lock:
            return [
                a.model_copy(deep=True)
                for a in sorted(self._aliases.values(), key=lambda a: a.created_at)
                if a.tracker_id == tracker_id and (row_id is None or a.row_id == row_id)
            ]

    async def rebind_aliases(self, tracker_id: str, old_row_id: str, new_row_id: str) -> int:
        async with self._lock:
            count = 0
            for alias in self._aliases.values():
                if alias.tracker_id == tracker_id and alias.row_id == old_row_id:
                    alias.row_id = new_row_id
                    count += 1
            return count

    # Updates

    async def insert_update(self, update: Update) -> Update:
        async with self._lock:
            if update.id in self._updates:
                raise DuplicateKeyError(f"Update {update.id} already exists", key=update.id)
            self._updates[update.id] = update.model_copy(deep=True)
            return update.model_copy(deep=True)

    async def get_update(self, update_id: str) -> Optional[Update]:
        async with self._lock:
            update = self._updates.get(update_id)
            return update.model_copy(deep=True) if update else None

    async def patch_update(self, update_id: str, fields: dict[str, Any]) -> Update:
        async with self._lock:
            current = self._updates.get(update_id)
            if current is None:
                raise NotFoundError(f"Update {update_id} not found", resource="update")
            stored = current.model_copy(deep=True, update=fields)
            self._updates[update_id] = stored
            return stored.model_copy(deep=True)

    async def claim_update(self, update_id: str, fields: dict[str, Any]) -> Optional[Update]:
        async with self._lock:
            current = self._updates.get(update_id)
            if current is None:
                raise NotFoundError(f"Update {update_id} not found", resource="update")
            if current.processed:
                return None
            stored = current.model_copy(deep=True, update={**fields, "processed": True})
            self._updates[update_id] = stored
            return stored.model_copy(deep=True)

    async def list_updates(self, user_id: str) -> list[Update]:
        async with self._lock:
            updates = [u for u in self._updates.values() if u.user_id == user_id]
            updates.sort(key=lambda u: u.created_at, reverse=True)
            return [u.model_copy(deep=True) for u in updates]
