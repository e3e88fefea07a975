"""Row validation and type coercion against column definitions"""

import math
import re
from functools import partial
from typing import Any, Callable, Optional

import pandas as pd

from core.enums import ColumnType
from core.exceptions import MalformedInputError
from core.models import ColumnDefinition, FieldError, ValidationResult
from config import settings


TRUTHY_VALUES = (True, "true", 1, "1", "yes")
COLUMN_KEY_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")


def format_scalar(value: Any) -> str:
    """String form of a cell value: booleans lower-case, integral floats without '.0'"""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return str(int(value))
    return str(value)


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value == "")


def primary_key_string(value: Any) -> Optional[str]:
    """Row id for a primary-key value, None when the value is missing"""
    if is_blank(value):
        return None
    return format_scalar(value)


# ─────────────────────────────────────────────────────────────
# Coercers
# ─────────────────────────────────────────────────────────────

def coerce_text(column: ColumnDefinition, value: Any, max_length: Optional[int] = None) -> str:
    limit = max_length if max_length is not None else settings.TEXT_FIELD_MAX_LENGTH
    text = format_scalar(value)
    if len(text) > limit:
        raise MalformedInputError(f"{column.name} must be {limit} characters or less")
    return text


def coerce_number(column: ColumnDefinition, value: Any):
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, (bool, float)):
        number = float(value)
    elif isinstance(value, str):
        text = value.strip()
        # float() accepts digit separators, JSON numbers do not
        if not text or "_" in text:
            raise MalformedInputError(f"{column.name} must be a number")
        try:
            number = float(text)
        except ValueError as e:
            raise MalformedInputError(f"{column.name} must be a number") from e
    else:
        raise MalformedInputError(f"{column.name} must be a number")

    if not math.isfinite(number):
        raise MalformedInputError(f"{column.name} must be a number")
    if number.is_integer():
        return int(number)
    return number


def _format_timestamp(ts: pd.Timestamp) -> str:
    aware = ts.tzinfo is not None
    if aware:
        ts = ts.tz_convert("UTC").tz_localize(None)

    if ts == ts.normalize():
        return f"{ts.year:04d}-{ts.month:02d}-{ts.day:02d}"

    text = ts.isoformat()
    return f"{text}Z" if aware else text


def coerce_date(column: ColumnDefinition, value: Any) -> str:
    """Parse any common date representation; numbers are epoch milliseconds"""
    message = f"{column.name} must be a valid date"
    if isinstance(value, bool):
        raise MalformedInputError(message)

    try:
        if isinstance(value, (int, float)):
            if not math.isfinite(value):
                raise MalformedInputError(message)
            ts = pd.to_datetime(value, unit="ms", utc=True)
        elif isinstance(value, str):
            ts = pd.to_datetime(value.strip())
        else:
            raise MalformedInputError(message)
    except (ValueError, TypeError, OverflowError) as e:
        raise MalformedInputError(message) from e

    if pd.isna(ts):
        raise MalformedInputError(message)
    return _format_timestamp(ts)


def coerce_select(column: ColumnDefinition, value: Any) -> str:
    text = format_scalar(value)
    if column.options and text not in column.options:
        raise MalformedInputError(f"{column.name} must be one of: {', '.join(column.options)}")
    return text


def coerce_boolean(column: ColumnDefinition, value: Any) -> bool:
    return value in TRUTHY_VALUES


COERCERS: dict[ColumnType, Callable[[ColumnDefinition, Any], Any]] = {
    ColumnType.TEXT: coerce_text,
    ColumnType.NUMBER: coerce_number,
    ColumnType.DATE: coerce_date,
    ColumnType.SELECT: coerce_select,
    ColumnType.BOOLEAN: coerce_boolean,
}


def get_coercer(column_type: ColumnType, max_text_length: Optional[int] = None) -> Callable[[ColumnDefinition, Any], Any]:
    if column_type is ColumnType.TEXT and max_text_length is not None:
        return partial(coerce_text, max_length=max_text_length)
    return COERCERS[column_type]


# ─────────────────────────────────────────────────────────────
# Validation
# ─────────────────────────────────────────────────────────────

def validate_row_data(
    columns: list[ColumnDefinition],
    data: dict[str, Any],
    max_text_length: Optional[int] = None,
) -> ValidationResult:
    """
    Validate and coerce a raw record against column definitions

    Every column is checked; errors are collected rather than raised.
    Keys that are not column keys are dropped from the output.

    Args:
        columns: Tracker columns
        data: Raw record (strings, numbers, booleans, None)
        max_text_length: Override for the text length limit

    Returns:
        ValidationResult with the normalized data
    """
    errors: list[FieldError] = []
    validated: dict[str, Any] = {}

    for column in columns:
        present = column.key in data
        value = data.get(column.key)

        if column.required and is_blank(value):
            errors.append(FieldError(field=column.key, message=f"{column.name} is required"))
            continue

        # Absent and empty-string values on optional columns are omitted
        if not present or value == "":
            continue

        # Explicit null on an optional column is kept
        if value is None:
            validated[column.key] = None
            continue

        coerce = get_coercer(column.type, max_text_length)
        try:
            validated[column.key] = coerce(column, value)
        except MalformedInputError as e:
            errors.append(FieldError(field=column.key, message=str(e)))

    return ValidationResult(is_valid=not errors, errors=errors, data=validated)


def validate_columns(columns: list[ColumnDefinition]) -> ValidationResult:
    """Check column definitions for duplicates and incomplete select columns"""
    errors: list[FieldError] = []
    column_ids: set[str] = set()
    column_keys: set[str] = set()

    for column in columns:
        if column.id in column_ids:
            errors.append(FieldError(field="columns", message=f"Duplicate column ID: {column.id}"))
        column_ids.add(column.id)

        if column.key in column_keys:
            errors.append(FieldError(field="columns", message=f"Duplicate column key: {column.key}"))
        column_keys.add(column.key)

        if not COLUMN_KEY_PATTERN.match(column.key):
            errors.append(FieldError(
                field="columns",
                message=f"Column key {column.key!r} may only contain letters, digits, '_' and '-'",
            ))

        if not column.name.strip():
            errors.append(FieldError(field=column.key, message="Column name cannot be empty"))

        if column.type is ColumnType.SELECT and not column.options:
            errors.append(FieldError(field=column.key, message=f'Select column "{column.name}" must have options'))

    return ValidationResult(is_valid=not errors, errors=errors, data={})


def generate_slug(name: str, max_length: Optional[int] = None) -> str:
    """URL-safe slug from a tracker name"""
    limit = max_length if max_length is not None else settings.SLUG_MAX_LENGTH
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")[:limit].strip("-")
    return slug or "tracker"


def format_errors(errors: list[FieldError]) -> str:
    return ", ".join(error.message for error in errors)
