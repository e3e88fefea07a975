"""Core data models for the tracker engine"""

from pydantic import BaseModel, Field
from typing import Optional, Any
from datetime import datetime, timezone
from .enums import ColumnType, ProposalOutcome, UpdateSource


def utc_now() -> datetime:
    """Timezone-aware current time used for audit stamps"""
    return datetime.now(timezone.utc)


# ─────────────────────────────────────────────────────────────
# Schema
# ─────────────────────────────────────────────────────────────

class ColumnDefinition(BaseModel):
    """Typed column of a tracker"""
    id: str
    key: str
    name: str
    type: ColumnType
    required: bool = False
    options: Optional[list[str]] = None  # select only
    order: int = 0
    description: Optional[str] = None
    ai_enabled: bool = True
    ai_aliases: list[str] = []


class Tracker(BaseModel):
    """User-defined typed table"""
    id: str
    user_id: str
    name: str
    slug: str
    description: Optional[str] = None
    columns: list[ColumnDefinition] = []
    primary_key_column: str
    is_active: bool = True
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def get_column(self, key: str) -> Optional[ColumnDefinition]:
        """Column by key, or None"""
        for column in self.columns:
            if column.key == key:
                return column
        return None

    def column_keys(self) -> set[str]:
        return {column.key for column in self.columns}


class TrackerTemplate(BaseModel):
    """Predefined column layout"""
    key: str
    name: str
    description: str = ""
    columns: list[ColumnDefinition]
    primary_key_column: str


# ─────────────────────────────────────────────────────────────
# Rows
# ─────────────────────────────────────────────────────────────

class Row(BaseModel):
    """Primary-key addressed record of a tracker"""
    tracker_id: str
    row_id: str
    data: dict[str, Any] = {}
    seq: int = 0  # insertion order, assigned by the store
    version: int = 1
    created_by: str
    created_at: datetime = Field(default_factory=utc_now)
    updated_by: str
    updated_at: datetime = Field(default_factory=utc_now)


class FieldError(BaseModel):
    """Single field-level validation failure"""
    field: str
    message: str


class ValidationResult(BaseModel):
    """Outcome of validating one raw record"""
    is_valid: bool
    errors: list[FieldError] = []
    data: dict[str, Any] = {}


class RowResult(BaseModel):
    """Outcome of a single-row mutation"""
    success: bool
    row_id: Optional[str] = None
    data: dict[str, Any] = {}
    errors: list[FieldError] = []


class ImportFailure(BaseModel):
    """Row that could not be imported (1-based index)"""
    row: int
    error: str


class ImportResult(BaseModel):
    """Summary of a bulk import"""
    imported: int = 0
    updated: int = 0
    failed: list[ImportFailure] = []


class ParsedCSV(BaseModel):
    """Tokenized delimited text"""
    headers: list[str] = []
    rows: list[list[str]] = []


class Page(BaseModel):
    """One page of tracker rows"""
    tracker: Tracker
    page: list[Row] = []
    is_done: bool = True
    continue_cursor: Optional[str] = None


# ─────────────────────────────────────────────────────────────
# Aliases
# ─────────────────────────────────────────────────────────────

class Alias(BaseModel):
    """Alternate name resolving to a row id"""
    id: str
    tracker_id: str
    row_id: str
    alias: str
    user_id: str
    created_at: datetime = Field(default_factory=utc_now)


class AliasFailure(BaseModel):
    alias: str
    reason: str


class AliasBulkResult(BaseModel):
    success: list[str] = []
    failed: list[AliasFailure] = []


# ─────────────────────────────────────────────────────────────
# Proposals & updates
# ─────────────────────────────────────────────────────────────

class ColumnUpdate(BaseModel):
    """Suggested value for one column"""
    column_key: str
    column_name: str = ""
    column_type: ColumnType = ColumnType.TEXT
    current_value: Any = None
    proposed_value: Any = None
    confidence: float = Field(ge=0, le=1, default=0.0)


class Proposal(BaseModel):
    """Suggested edits targeting one row of one tracker"""
    tracker_id: str
    tracker_name: str = ""
    row_id: str
    is_new_row: bool = False
    column_updates: list[ColumnUpdate] = []


class Update(BaseModel):
    """Proposals from a single source event plus the user's decision"""
    id: str
    user_id: str
    source: UpdateSource = UpdateSource.EMAIL
    source_id: Optional[str] = None
    title: str = ""
    summary: Optional[str] = None
    proposals: list[Proposal] = []
    processed: bool = False
    processed_at: Optional[datetime] = None
    approved: bool = False
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    rejected: bool = False
    rejected_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None
    viewed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)


class ColumnEdit(BaseModel):
    """User-edited value, optionally remapped to another column"""
    column_key: str
    new_value: Any = None
    target_column_key: Optional[str] = None


class EditedProposal(BaseModel):
    """Proposal as approved by the user"""
    tracker_id: str
    row_id: str
    is_new_row: bool = False
    edited_columns: list[ColumnEdit] = []


class ProposalResult(BaseModel):
    tracker_id: str
    row_id: str
    success: bool
    outcome: ProposalOutcome
    error: Optional[str] = None


class ApplyResult(BaseModel):
    """Outcome of approving an update"""
    success: bool = True
    update_id: str
    already_processed: bool = False
    results: list[ProposalResult] = []


class UpdatePage(BaseModel):
    page: list[Update] = []
    is_done: bool = True
    continue_cursor: Optional[str] = None


class UpdateStats(BaseModel):
    total: int = 0
    active: int = 0
    archived: int = 0
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    with_proposals: int = 0
    unread: int = 0
