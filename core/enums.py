"""Core enumerations for the tracker engine"""

from enum import Enum


class ColumnType(str, Enum):
    """Supported column types"""
    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    SELECT = "select"
    BOOLEAN = "boolean"


class ImportMode(str, Enum):
    """Bulk import modes"""
    APPEND = "append"
    UPDATE = "update"
    REPLACE = "replace"


class SortOrder(str, Enum):
    """Page-local sort direction"""
    ASC = "asc"
    DESC = "desc"


class UpdateSource(str, Enum):
    """Origin of an update"""
    EMAIL = "email"
    MANUAL = "manual"


class UpdateViewMode(str, Enum):
    """Update list filter"""
    ACTIVE = "active"
    ARCHIVED = "archived"


class ProposalOutcome(str, Enum):
    """Result of applying a single proposal"""
    SUCCESS = "success"
    DUPLICATE_KEY = "duplicate_key"
    VALIDATION_ERROR = "validation_error"
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    CONFLICT = "conflict"  # row kept changing under concurrent writers
