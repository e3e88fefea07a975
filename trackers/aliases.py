"""Alternate names that resolve to tracker rows"""

import logging
import uuid
from typing import Optional

from config import Settings, settings as default_settings
from core.exceptions import (
    AuthorizationError,
    DuplicateKeyError,
    NotFoundError,
    ValidationError,
)
from core.interfaces import TrackerStore
from core.models import Alias, AliasBulkResult, AliasFailure, FieldError, Tracker
from .rows import load_owned_tracker


logger = logging.getLogger(__name__)


def normalize_alias(alias: str) -> str:
    return alias.strip().lower()


class AliasService:
    """Per-tracker alias registry"""

    def __init__(self, store: TrackerStore, config: Optional[Settings] = None):
        self.store = store
        self.settings = config or default_settings

    async def resolve_alias(self, tracker_id: str, term: str) -> Optional[str]:
        """Row id bound to ``term`` within the tracker, or None"""
        normalized = normalize_alias(term)
        if not normalized:
            return None
        alias = await self.store.get_alias(tracker_id, normalized)
        return alias.row_id if alias else None

    async def add_alias(self, user_id: str, tracker_id: str, row_id: str, alias: str) -> Alias:
        """
        Bind an alias to a row

        Raises:
            ValidationError: Empty, too long, or equal to the row id
            DuplicateKeyError: Alias already bound within the tracker
            NotFoundError: Tracker or row missing
        """
        tracker = await load_owned_tracker(self.store, user_id, tracker_id)
        return await self._insert(tracker, user_id, row_id, alias)

    async def bulk_add_aliases(self, user_id: str, tracker_id: str, items: list[tuple[str, str]]) -> AliasBulkResult:
        """Add ``(row_id, alias)`` pairs, reporting each failure instead of raising"""
        tracker = await load_owned_tracker(self.store, user_id, tracker_id)
        result = AliasBulkResult()

        for row_id, alias in items:
            try:
                await self._insert(tracker, user_id, row_id, alias)
            except (ValidationError, DuplicateKeyError, NotFoundError) as e:
                result.failed.append(AliasFailure(alias=alias, reason=str(e)))
                continue
            result.success.append(alias)

        logger.info(
            "Bulk alias add on tracker %s: %d added, %d failed",
            tracker.id, len(result.success), len(result.failed),
        )
        return result

    async def remove_alias(self, user_id: str, alias_id: str) -> None:
        alias = await self.store.get_alias_by_id(alias_id)
        if alias is None:
            raise NotFoundError("Alias not found", resource="alias")

        tracker = await self.store.get_tracker(alias.tracker_id)
        if tracker is None or tracker.user_id != user_id:
            raise AuthorizationError("Not authorized to remove this alias")

        await self.store.delete_alias(alias_id)
        logger.info("Removed alias %s from tracker %s", alias_id, alias.tracker_id)

    async def list_row_aliases(self, user_id: str, tracker_id: str, row_id: str) -> list[Alias]:
        await load_owned_tracker(self.store, user_id, tracker_id)
        return await self.store.list_aliases(tracker_id, row_id)

    async def list_tracker_aliases(self, user_id: str, tracker_id: str) -> dict[str, list[Alias]]:
        """All aliases of a tracker grouped by row id"""
        await load_owned_tracker(self.store, user_id, tracker_id)
        grouped: dict[str, list[Alias]] = {}
        for alias in await self.store.list_aliases(tracker_id):
            grouped.setdefault(alias.row_id, []).append(alias)
        return grouped

    async def _insert(self, tracker: Tracker, user_id: str, row_id: str, alias: str) -> Alias:
        normalized = normalize_alias(alias)
        if not normalized:
            raise ValidationError(
                "Alias cannot be empty",
                errors=[FieldError(field="alias", message="Alias cannot be empty")],
            )
        if len(normalized) > self.settings.ALIAS_MAX_LENGTH:
            message = f"Alias must be {self.settings.ALIAS_MAX_LENGTH} characters or less"
            raise ValidationError(message, errors=[FieldError(field="alias", message=message)])
        if normalized == row_id.lower():
            message = "Cannot create an alias that is the same as the row ID"
            raise ValidationError(message, errors=[FieldError(field="alias", message=message)])

        if await self.store.get_row(tracker.id, row_id) is None:
            raise NotFoundError(f"Row {row_id} not found", resource="row")

        existing = await self.store.get_alias(tracker.id, normalized)
        if existing is not None:
            if existing.row_id == row_id:
                raise DuplicateKeyError(f'Alias "{alias}" already exists for this row', key=normalized)
            raise DuplicateKeyError(
                f'Alias "{alias}" is already used for row "{existing.row_id}"', key=normalized
            )

        record = await self.store.insert_alias(Alias(
            id=str(uuid.uuid4()),
            tracker_id=tracker.id,
            row_id=row_id,
            alias=normalized,
            user_id=user_id,
        ))
        logger.info("Added alias for row %s in tracker %s", row_id, tracker.id)
        return record
