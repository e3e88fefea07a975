"""Core abstractions for the tracker engine"""

from .models import *
from .enums import *
from .exceptions import *
from .interfaces import *

__all__ = [
    # Models
    "ColumnDefinition",
    "Tracker",
    "TrackerTemplate",
    "Row",
    "FieldError",
    "ValidationResult",
    "RowResult",
    "ImportFailure",
    "ImportResult",
    "ParsedCSV",
    "Page",
    "Alias",
    "AliasFailure",
    "AliasBulkResult",
    "ColumnUpdate",
    "Proposal",
    "Update",
    "ColumnEdit",
    "EditedProposal",
    "ProposalResult",
    "ApplyResult",
    "UpdatePage",
    "UpdateStats",
    "utc_now",
    # Enums
    "ColumnType",
    "ImportMode",
    "SortOrder",
    "UpdateSource",
    "UpdateViewMode",
    "ProposalOutcome",
    # Exceptions
    "TrackerEngineError",
    "ValidationError",
    "DuplicateKeyError",
    "NotFoundError",
    "AuthorizationError",
    "SizeLimitError",
    "MalformedInputError",
    "VersionConflictError",
    "DatabaseError",
    # Interfaces
    "TrackerStore",
]
