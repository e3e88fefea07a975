"""Row store operations and the bulk import pipeline"""

import logging
from typing import Any, Optional, Union

from config import Settings, settings as default_settings
from core.enums import ImportMode
from core.exceptions import (
    AuthorizationError,
    DuplicateKeyError,
    MalformedInputError,
    NotFoundError,
    SizeLimitError,
    ValidationError,
    VersionConflictError,
)
from core.interfaces import TrackerStore
from core.models import FieldError, ImportFailure, ImportResult, Row, RowResult, Tracker, utc_now
from .csv_import import map_to_records, parse_csv
from .validation import format_errors, primary_key_string, validate_row_data


logger = logging.getLogger(__name__)

# Failures recorded against a single import row instead of aborting the batch
ROW_LEVEL_ERRORS = (
    DuplicateKeyError,
    MalformedInputError,
    NotFoundError,
    ValidationError,
    VersionConflictError,
)


async def load_owned_tracker(store: TrackerStore, user_id: str, tracker_id: str) -> Tracker:
    """Fetch a tracker and verify the caller owns it"""
    tracker = await store.get_tracker(tracker_id)
    if tracker is None:
        raise NotFoundError(f"Tracker {tracker_id} not found", resource="tracker")
    if tracker.user_id != user_id:
        raise AuthorizationError("Not authorized to access this tracker")
    return tracker


def _primary_key_error(tracker: Tracker) -> FieldError:
    column = tracker.get_column(tracker.primary_key_column)
    name = column.name if column else tracker.primary_key_column
    return FieldError(field=tracker.primary_key_column, message=f"Primary key {name} is required")


class RowService:
    """Primary-key addressed row CRUD for one store"""

    def __init__(self, store: TrackerStore, config: Optional[Settings] = None):
        self.store = store
        self.settings = config or default_settings

    # ─────────────────────────────────────────────────────────────
    # Single rows
    # ─────────────────────────────────────────────────────────────

    async def get_row(self, user_id: str, tracker_id: str, row_id: str) -> Row:
        await load_owned_tracker(self.store, user_id, tracker_id)
        row = await self.store.get_row(tracker_id, row_id)
        if row is None:
            raise NotFoundError(f"Row {row_id} not found", resource="row")
        return row

    async def add_row(self, user_id: str, tracker_id: str, raw: dict[str, Any]) -> RowResult:
        """
        Validate and insert a new row

        Args:
            user_id: Caller subject
            tracker_id: Target tracker
            raw: Raw field values keyed by column key

        Returns:
            RowResult; field errors are reported in ``errors``

        Raises:
            DuplicateKeyError: If a row with the same primary key exists
        """
        tracker = await load_owned_tracker(self.store, user_id, tracker_id)
        return await self.insert_into(tracker, user_id, raw)

    async def update_row(self, user_id: str, tracker_id: str, row_id: str, partial: dict[str, Any]) -> RowResult:
        """
        Merge ``partial`` onto a row and re-validate the result

        Keys present in ``partial`` overwrite, including explicit None;
        absent keys keep their stored value. A changed primary-key value
        re-keys the row.
        """
        tracker = await load_owned_tracker(self.store, user_id, tracker_id)
        return await self.merge_into(tracker, user_id, row_id, partial)

    async def delete_row(self, user_id: str, tracker_id: str, row_id: str) -> None:
        await load_owned_tracker(self.store, user_id, tracker_id)
        if not await self.store.delete_row(tracker_id, row_id):
            raise NotFoundError(f"Row {row_id} not found", resource="row")

        for alias in await self.store.list_aliases(tracker_id, row_id):
            await self.store.delete_alias(alias.id)
        logger.info("Deleted row %s from tracker %s", row_id, tracker_id)

    async def insert_into(self, tracker: Tracker, user_id: str, raw: dict[str, Any]) -> RowResult:
        """Insert into an already authorized tracker"""
        result = validate_row_data(tracker.columns, raw, self.settings.TEXT_FIELD_MAX_LENGTH)
        if not result.is_valid:
            return RowResult(success=False, errors=result.errors)

        row_id = primary_key_string(result.data.get(tracker.primary_key_column))
        if row_id is None:
            return RowResult(success=False, errors=[_primary_key_error(tracker)])

        # The store enforces uniqueness again on insert
        if await self.store.get_row(tracker.id, row_id) is not None:
            raise DuplicateKeyError(
                f'Row with primary key "{row_id}" is a duplicate of an existing row', key=row_id
            )

        now = utc_now()
        row = await self.store.insert_row(Row(
            tracker_id=tracker.id,
            row_id=row_id,
            data=result.data,
            created_by=user_id,
            created_at=now,
            updated_by=user_id,
            updated_at=now,
        ))
        logger.info("Inserted row %s into tracker %s", row.row_id, tracker.id)
        return RowResult(success=True, row_id=row.row_id, data=row.data)

    async def merge_into(self, tracker: Tracker, user_id: str, row_id: str, partial: dict[str, Any]) -> RowResult:
        """Merge-update a row of an already authorized tracker"""
        attempts = self.settings.ROW_UPDATE_MAX_RETRIES

        for attempt in range(1, attempts + 1):
            current = await self.store.get_row(tracker.id, row_id)
            if current is None:
                raise NotFoundError(f"Row {row_id} not found", resource="row")

            merged = {**current.data, **partial}
            result = validate_row_data(tracker.columns, merged, self.settings.TEXT_FIELD_MAX_LENGTH)
            if not result.is_valid:
                return RowResult(success=False, row_id=row_id, errors=result.errors)

            new_row_id = primary_key_string(result.data.get(tracker.primary_key_column))
            if new_row_id is None:
                return RowResult(success=False, row_id=row_id, errors=[_primary_key_error(tracker)])

            try:
                row = await self.store.patch_row(
                    tracker.id,
                    row_id,
                    result.data,
                    user_id,
                    expected_version=current.version,
                    new_row_id=new_row_id if new_row_id != row_id else None,
                )
            except VersionConflictError:
                logger.warning(
                    "Row %s of tracker %s changed during update (attempt %d/%d)",
                    row_id, tracker.id, attempt, attempts,
                )
                continue

            if row.row_id != row_id:
                await self._move_aliases(tracker.id, row_id, row.row_id)
                logger.info("Re-keyed row %s to %s in tracker %s", row_id, row.row_id, tracker.id)
            else:
                logger.info("Updated row %s in tracker %s", row_id, tracker.id)
            return RowResult(success=True, row_id=row.row_id, data=row.data)

        raise VersionConflictError(f"Row {row_id} kept changing; gave up after {attempts} attempts")

    async def _move_aliases(self, tracker_id: str, old_row_id: str, new_row_id: str) -> None:
        # An alias spelling the new primary key would point at itself
        for alias in await self.store.list_aliases(tracker_id, old_row_id):
            if alias.alias == new_row_id.strip().lower():
                await self.store.delete_alias(alias.id)
                logger.info("Dropped alias %r now equal to row id %s", alias.alias, new_row_id)

        await self.store.rebind_aliases(tracker_id, old_row_id, new_row_id)

    # ─────────────────────────────────────────────────────────────
    # Bulk import
    # ─────────────────────────────────────────────────────────────

    async def bulk_import(
        self,
        user_id: str,
        tracker_id: str,
        rows: list[dict[str, Any]],
        mode: Union[ImportMode, str] = ImportMode.APPEND,
    ) -> ImportResult:
        """
        Import many rows, collecting per-row failures

        Size limits are checked before anything is written. Rows are
        processed one at a time in input order.

        Args:
            user_id: Caller subject
            tracker_id: Target tracker
            rows: Raw records keyed by column key
            mode: append, update (upsert) or replace

        Returns:
            ImportResult with 1-based indices for failed rows

        Raises:
            SizeLimitError: If the batch or one of its cells is too large
        """
        tracker = await load_owned_tracker(self.store, user_id, tracker_id)
        return await self._import_records(tracker, user_id, rows, self._parse_mode(mode))

    async def import_csv(
        self,
        user_id: str,
        tracker_id: str,
        csv_text: str,
        mode: Union[ImportMode, str] = ImportMode.APPEND,
        delimiter: Optional[str] = ",",
    ) -> ImportResult:
        """Parse delimited text and feed it through the bulk import"""
        tracker = await load_owned_tracker(self.store, user_id, tracker_id)
        import_mode = self._parse_mode(mode)

        size = len(csv_text.encode("utf-8"))
        if size > self.settings.MAX_CSV_SIZE_BYTES:
            raise SizeLimitError(
                f"CSV is {size} bytes; the limit is {self.settings.MAX_CSV_SIZE_BYTES}",
                limit=self.settings.MAX_CSV_SIZE_BYTES,
            )

        parsed = parse_csv(csv_text, delimiter)
        if not parsed.rows:
            raise MalformedInputError("CSV contains no data rows")

        records = map_to_records(parsed.headers, parsed.rows, tracker.columns)
        logger.info(
            "Parsed CSV for tracker %s: %d columns, %d rows",
            tracker.id, len(parsed.headers), len(records),
        )
        return await self._import_records(tracker, user_id, records, import_mode)

    def _parse_mode(self, mode: Union[ImportMode, str]) -> ImportMode:
        try:
            return ImportMode(mode)
        except ValueError as e:
            raise MalformedInputError(f"Unknown import mode: {mode}") from e

    def _check_limits(self, rows: list[dict[str, Any]]) -> None:
        """Reject oversized batches before any row is processed"""
        if len(rows) > self.settings.MAX_IMPORT_ROWS:
            raise SizeLimitError(
                f"Cannot import more than {self.settings.MAX_IMPORT_ROWS} rows at once",
                limit=self.settings.MAX_IMPORT_ROWS,
            )

        max_length = self.settings.TEXT_FIELD_MAX_LENGTH
        for index, raw in enumerate(rows, start=1):
            if not isinstance(raw, dict):
                raise MalformedInputError(f"Row {index} is not a record")
            for key, value in raw.items():
                if isinstance(value, str) and len(value) > max_length:
                    raise SizeLimitError(
                        f"Row {index}: {key} exceeds {max_length} characters",
                        limit=max_length,
                    )

    async def _import_records(
        self,
        tracker: Tracker,
        user_id: str,
        rows: list[dict[str, Any]],
        mode: ImportMode,
    ) -> ImportResult:
        self._check_limits(rows)

        if mode is ImportMode.REPLACE:
            removed = await self.store.delete_all_rows(tracker.id)
            logger.info("Replace import cleared %d rows from tracker %s", removed, tracker.id)

        result = ImportResult()
        batch_size = self.settings.IMPORT_BATCH_SIZE

        for start in range(0, len(rows), batch_size):
            batch = rows[start:start + batch_size]

            for offset, raw in enumerate(batch):
                index = start + offset + 1
                try:
                    outcome, row_result = await self._import_one(tracker, user_id, raw, mode)
                except ROW_LEVEL_ERRORS as e:
                    result.failed.append(ImportFailure(row=index, error=str(e)))
                    logger.debug("Import row %d for tracker %s failed: %s", index, tracker.id, e)
                    continue

                if not row_result.success:
                    result.failed.append(ImportFailure(row=index, error=format_errors(row_result.errors)))
                    logger.debug("Import row %d for tracker %s is invalid", index, tracker.id)
                elif outcome == "updated":
                    result.updated += 1
                else:
                    result.imported += 1

            logger.debug(
                "Processed import rows %d-%d for tracker %s",
                start + 1, start + len(batch), tracker.id,
            )

        logger.info(
            "Imported into tracker %s (%s): %d imported, %d updated, %d failed",
            tracker.id, mode.value, result.imported, result.updated, len(result.failed),
        )
        return result

    async def _import_one(
        self,
        tracker: Tracker,
        user_id: str,
        raw: dict[str, Any],
        mode: ImportMode,
    ) -> tuple[str, RowResult]:
        if mode is not ImportMode.UPDATE:
            return "imported", await self.insert_into(tracker, user_id, raw)

        validated = validate_row_data(tracker.columns, raw, self.settings.TEXT_FIELD_MAX_LENGTH)
        if not validated.is_valid:
            return "updated", RowResult(success=False, errors=validated.errors)

        row_id = primary_key_string(validated.data.get(tracker.primary_key_column))
        if row_id is None:
            return "updated", RowResult(success=False, errors=[_primary_key_error(tracker)])

        if await self.store.get_row(tracker.id, row_id) is None:
            return "imported", await self.insert_into(tracker, user_id, validated.data)
        return "updated", await self.merge_into(tracker, user_id, row_id, validated.data)
