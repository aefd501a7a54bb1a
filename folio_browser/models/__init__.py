"""Data models for Folio Browser."""

from .row import (
    KNOWN_COLUMNS,
    NUMERIC_COLUMNS,
    DISPLAY_COLUMNS,
    COLUMN_ALIASES,
    DEFAULT_SORT_COLUMN,
    Row,
    normalize_row,
    value_of,
    derive_row_key,
)
from .query import QueryDescriptor, plan, require_filters
from .progress import Progress, estimate_eta

__all__ = [
    "KNOWN_COLUMNS",
    "NUMERIC_COLUMNS",
    "DISPLAY_COLUMNS",
    "COLUMN_ALIASES",
    "DEFAULT_SORT_COLUMN",
    "Row",
    "normalize_row",
    "value_of",
    "derive_row_key",
    "QueryDescriptor",
    "plan",
    "require_filters",
    "Progress",
    "estimate_eta",
]
