"""Tracker data engine services"""

from .validation import validate_row_data, validate_columns, generate_slug, COERCERS
from .csv_import import parse_csv, sanitize_cell, map_to_records, detect_delimiter
from .rows import RowService, load_owned_tracker
from .pagination import PageReader, encode_cursor, decode_cursor
from .aliases import AliasService
from .proposals import ProposalEngine
from .manager import TrackerManager
from .templates import DEFAULT_TEMPLATES, get_templates

__all__ = [
    "validate_row_data",
    "validate_columns",
    "generate_slug",
    "COERCERS",
    "parse_csv",
    "sanitize_cell",
    "map_to_records",
    "detect_delimiter",
    "RowService",
    "load_owned_tracker",
    "PageReader",
    "encode_cursor",
    "decode_cursor",
    "AliasService",
    "ProposalEngine",
    "TrackerManager",
    "DEFAULT_TEMPLATES",
    "get_templates",
]
