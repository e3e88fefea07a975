"""Tracker lifecycle: creation, schema changes and deletion"""

import logging
import uuid
from typing import Any, Optional, Union

from config import Settings, settings as default_settings
from core.exceptions import (
    AuthorizationError,
    DuplicateKeyError,
    MalformedInputError,
    NotFoundError,
    SizeLimitError,
    ValidationError,
)
from core.interfaces import TrackerStore
from core.models import ColumnDefinition, FieldError, Tracker, TrackerTemplate, utc_now
from .rows import load_owned_tracker
from .templates import DEFAULT_TEMPLATES, get_templates
from .validation import format_errors, generate_slug, validate_columns


logger = logging.getLogger(__name__)

ColumnInput = Union[ColumnDefinition, dict[str, Any]]


class TrackerManager:
    """Create, change and remove trackers"""

    def __init__(self, store: TrackerStore, config: Optional[Settings] = None):
        self.store = store
        self.settings = config or default_settings

    async def create_tracker(
        self,
        user_id: str,
        name: str,
        columns: Optional[list[ColumnInput]] = None,
        primary_key_column: Optional[str] = None,
        description: Optional[str] = None,
        template_key: Optional[str] = None,
    ) -> Tracker:
        """
        Create a tracker with a unique slug

        A template, when given, supplies the columns and primary key.

        Raises:
            ValidationError: Bad name, description, columns or primary key
            SizeLimitError: Too many columns
            NotFoundError: Unknown template
        """
        self._check_name(name)
        self._check_description(description)

        if template_key is not None:
            template = DEFAULT_TEMPLATES.get(template_key)
            if template is None:
                raise NotFoundError(f"Template {template_key} not found", resource="template")
            column_defs = [c.model_copy(deep=True) for c in template.columns]
            primary_key_column = template.primary_key_column
        else:
            column_defs = [ColumnDefinition.model_validate(c) for c in columns or []]

        self._check_columns(column_defs, primary_key_column)

        base_slug = generate_slug(name, self.settings.SLUG_MAX_LENGTH)
        for counter in range(self.settings.MAX_SLUG_GENERATION_ATTEMPTS + 1):
            slug = base_slug if counter == 0 else f"{base_slug}-{counter}"
            if await self.store.get_tracker_by_slug(slug) is not None:
                continue

            now = utc_now()
            tracker = Tracker(
                id=str(uuid.uuid4()),
                user_id=user_id,
                name=name.strip(),
                slug=slug,
                description=description,
                columns=column_defs,
                primary_key_column=primary_key_column,
                created_at=now,
                updated_at=now,
            )
            try:
                created = await self.store.insert_tracker(tracker)
            except DuplicateKeyError:
                # Slug taken between the lookup and the insert
                continue

            logger.info("Created tracker %s (%s) with %d columns", created.id, created.slug, len(column_defs))
            return created

        raise DuplicateKeyError("Unable to generate unique slug. Please try a different name.", key=base_slug)

    async def update_tracker(
        self,
        user_id: str,
        tracker_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        columns: Optional[list[ColumnInput]] = None,
        primary_key_column: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> Tracker:
        """
        Change tracker metadata or columns

        Column keys cannot change for an existing column id. Data of removed
        columns is deleted from every row.
        """
        tracker = await load_owned_tracker(self.store, user_id, tracker_id)
        changes: dict[str, Any] = {}

        if name is not None:
            self._check_name(name)
            changes["name"] = name.strip()
        if description is not None:
            self._check_description(description)
            changes["description"] = description
        if is_active is not None:
            changes["is_active"] = is_active

        new_columns = tracker.columns
        if columns is not None:
            new_columns = [ColumnDefinition.model_validate(c) for c in columns]
            self._check_key_identity(tracker.columns, new_columns)
            changes["columns"] = new_columns

        new_primary_key = primary_key_column or tracker.primary_key_column
        if columns is not None or primary_key_column is not None:
            self._check_columns(new_columns, new_primary_key)

        if new_primary_key != tracker.primary_key_column:
            if await self.store.list_rows(tracker.id, limit=1):
                raise ValidationError(
                    "Cannot change the primary key column of a tracker that has rows",
                    errors=[FieldError(field="primary_key_column", message="Tracker has rows")],
                )
            changes["primary_key_column"] = new_primary_key

        removed_keys = sorted(tracker.column_keys() - {c.key for c in new_columns})

        updated = await self.store.save_tracker(tracker.model_copy(update={**changes, "updated_at": utc_now()}))
        if removed_keys:
            pruned = await self.store.drop_row_keys(tracker.id, removed_keys)
            logger.info("Removed columns %s from tracker %s (%d rows pruned)", removed_keys, tracker.id, pruned)

        logger.info("Updated tracker %s", tracker.id)
        return updated

    async def set_column_ai_enabled(self, user_id: str, tracker_id: str, column_id: str, enabled: bool) -> Tracker:
        """Toggle whether automated update extraction may propose values for one column"""
        tracker = await load_owned_tracker(self.store, user_id, tracker_id)
        if not any(c.id == column_id for c in tracker.columns):
            raise NotFoundError(f"Column {column_id} not found", resource="column")

        columns = [
            c.model_copy(update={"ai_enabled": enabled}) if c.id == column_id else c
            for c in tracker.columns
        ]
        updated = await self.store.save_tracker(
            tracker.model_copy(update={"columns": columns, "updated_at": utc_now()})
        )
        logger.info("Set ai_enabled=%s on column %s of tracker %s", enabled, column_id, tracker_id)
        return updated

    async def delete_tracker(self, user_id: str, tracker_id: str) -> None:
        await load_owned_tracker(self.store, user_id, tracker_id)
        await self.store.delete_tracker(tracker_id)
        logger.info("Deleted tracker %s", tracker_id)

    async def get_tracker(
        self,
        tracker_id: Optional[str] = None,
        slug: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Tracker:
        """Look a tracker up by id or slug; ``user_id`` restricts it to its owner"""
        if tracker_id:
            tracker = await self.store.get_tracker(tracker_id)
        elif slug:
            tracker = await self.store.get_tracker_by_slug(slug)
        else:
            raise MalformedInputError("Either tracker_id or slug must be provided")

        if tracker is None:
            raise NotFoundError("Tracker not found", resource="tracker")
        if user_id is not None and tracker.user_id != user_id:
            raise AuthorizationError("Not authorized to access this tracker")
        return tracker

    async def list_trackers(self, user_id: str, active_only: bool = False) -> list[Tracker]:
        trackers = await self.store.list_trackers(user_id, active_only)
        return sorted(trackers, key=lambda t: t.created_at, reverse=True)

    def get_templates(self) -> list[TrackerTemplate]:
        return get_templates()

    # Checks

    def _check_name(self, name: str) -> None:
        if not name or not name.strip():
            raise ValidationError(
                "Tracker name cannot be empty",
                errors=[FieldError(field="name", message="Tracker name cannot be empty")],
            )
        if len(name) > self.settings.NAME_MAX_LENGTH:
            message = f"Tracker name must be {self.settings.NAME_MAX_LENGTH} characters or less"
            raise ValidationError(message, errors=[FieldError(field="name", message=message)])

    def _check_description(self, description: Optional[str]) -> None:
        if description and len(description) > self.settings.DESCRIPTION_MAX_LENGTH:
            message = f"Description must be {self.settings.DESCRIPTION_MAX_LENGTH} characters or less"
            raise ValidationError(message, errors=[FieldError(field="description", message=message)])

    def _check_columns(self, columns: list[ColumnDefinition], primary_key_column: Optional[str]) -> None:
        if len(columns) > self.settings.MAX_COLUMNS:
            raise SizeLimitError(
                f"Cannot create more than {self.settings.MAX_COLUMNS} columns",
                limit=self.settings.MAX_COLUMNS,
            )
        if not columns:
            raise ValidationError(
                "A tracker needs at least one column",
                errors=[FieldError(field="columns", message="A tracker needs at least one column")],
            )

        result = validate_columns(columns)
        if not result.is_valid:
            raise ValidationError(f"Invalid columns: {format_errors(result.errors)}", errors=result.errors)

        if not primary_key_column or not any(c.key == primary_key_column for c in columns):
            message = f'Primary key column "{primary_key_column}" does not exist'
            raise ValidationError(message, errors=[FieldError(field="primary_key_column", message=message)])

    def _check_key_identity(self, old: list[ColumnDefinition], new: list[ColumnDefinition]) -> None:
        old_keys = {c.id: c.key for c in old}
        errors = [
            FieldError(field=c.key, message=f"Column {c.id} cannot change its key from {old_keys[c.id]} to {c.key}")
            for c in new
            if c.id in old_keys and old_keys[c.id] != c.key
        ]
        if errors:
            raise ValidationError(f"Invalid columns: {format_errors(errors)}", errors=errors)
