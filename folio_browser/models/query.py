"""Query descriptor and planner.

The planner turns loosely typed request parameters (CLI options, HTTP-style
query strings) into a canonical, validated :class:`QueryDescriptor`. It never
fails on malformed input; it clamps and substitutes defaults instead.
"""

import json
import math
from typing import Any, Dict, Literal, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .row import DEFAULT_SORT_COLUMN, KNOWN_COLUMNS, NUMERIC_COLUMNS, canonical_column
from ..utils.error_handling import ValidationError


MIN_PAGE_SIZE = 1
MAX_PAGE_SIZE = 10000
DEFAULT_PAGE_SIZE = 20

SortDirection = Literal["asc", "desc"]


class QueryDescriptor(BaseModel):
    """Validated filter/sort/pagination request.

    Immutable and hashable: two descriptors are equal exactly when every
    field is equal, which is what the page cache and request fencing key on.
    """

    model_config = ConfigDict(frozen=True)

    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=DEFAULT_PAGE_SIZE, ge=MIN_PAGE_SIZE, le=MAX_PAGE_SIZE)
    sort_column: str = Field(default=DEFAULT_SORT_COLUMN)
    sort_direction: SortDirection = Field(default="asc")
    filters: Tuple[Tuple[str, str], ...] = Field(
        default=(), description="(column, pattern) pairs in schema order"
    )

    @property
    def offset(self) -> int:
        """Zero-based index of the first row on this page."""
        return (self.page - 1) * self.page_size

    def filter_map(self) -> Dict[str, str]:
        """Get filters as a column -> pattern dict."""
        return dict(self.filters)

    def with_page(self, page: int) -> "QueryDescriptor":
        """Copy of this descriptor pointing at another page."""
        return self.model_copy(update={"page": max(1, int(page))})

    def with_page_size(self, page_size: int) -> "QueryDescriptor":
        """Copy of this descriptor with another page size (clamped)."""
        size = min(max(int(page_size), MIN_PAGE_SIZE), MAX_PAGE_SIZE)
        return self.model_copy(update={"page_size": size})

    def cache_key(self) -> str:
        """Canonical serialization used for exact-match caching."""
        return json.dumps(
            self.model_dump(mode="json"),
            sort_keys=True,
            separators=(",", ":"),
        )

    def to_params(self) -> Dict[str, Any]:
        """Render as remote query parameters.

        Returns:
            Dict with page, pageSize, sortBy, sortDir and one entry per filter
        """
        params: Dict[str, Any] = {
            "page": self.page,
            "pageSize": self.page_size,
            "sortBy": self.sort_column,
            "sortDir": self.sort_direction,
        }
        params.update(self.filter_map())
        return params


def _parse_int(value: Any, fallback: int) -> int:
    if value is None or isinstance(value, bool):
        return fallback
    if isinstance(value, float) and not math.isfinite(value):
        return fallback
    if isinstance(value, (int, float)):
        return int(value)
    try:
        return int(str(value).strip())
    except ValueError:
        return fallback


def _normalize_direction(value: Any) -> Optional[str]:
    if value is None:
        return None
    direction = str(value).strip().lower()
    if direction in ("asc", "desc"):
        return direction
    return None


def _first(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return None


def _collect_filters(raw: Mapping[str, Any]) -> Tuple[Tuple[str, str], ...]:
    sources: Dict[str, Any] = {}
    nested = raw.get("filters")
    if isinstance(nested, Mapping):
        sources.update(nested)
    sources.update({k: v for k, v in raw.items() if k != "filters"})

    patterns: Dict[str, str] = {}
    for key, value in sources.items():
        column = canonical_column(str(key))
        if column is None or value is None:
            continue
        pattern = str(value).strip()
        if pattern:
            patterns[column] = pattern

    return tuple((column, patterns[column]) for column in KNOWN_COLUMNS if column in patterns)


def plan(
    raw_params: Optional[Mapping[str, Any]],
    default_page_size: int = DEFAULT_PAGE_SIZE,
    default_sort_column: str = DEFAULT_SORT_COLUMN,
) -> QueryDescriptor:
    """Build a canonical query descriptor from raw parameters.

    Accepts both the remote parameter spelling (``pageSize``, ``sortBy``,
    ``sortDir``) and snake_case (``page_size``, ``sort_column``,
    ``sort_direction``). Filters are read from top-level keys named after
    known columns (or their aliases) and from an optional ``filters`` mapping.

    Args:
        raw_params: Loosely typed request parameters
        default_page_size: Page size when none (or garbage) is given
        default_sort_column: Sort column substituted for unknown columns

    Returns:
        Validated QueryDescriptor
    """
    raw: Mapping[str, Any] = raw_params or {}

    if default_sort_column not in KNOWN_COLUMNS:
        default_sort_column = DEFAULT_SORT_COLUMN

    page = max(_parse_int(_first(raw, "page"), 1), 1)
    page_size = _parse_int(_first(raw, "pageSize", "page_size"), default_page_size)
    page_size = min(max(page_size, MIN_PAGE_SIZE), MAX_PAGE_SIZE)

    # Allow-list only; the column name reaches backend query strings
    sort_column = _first(raw, "sortBy", "sort_column", "sortColumn")
    sort_column = canonical_column(str(sort_column)) if sort_column is not None else None
    if sort_column is None:
        sort_column = default_sort_column

    direction = _normalize_direction(
        _first(raw, "sortDir", "sort_direction", "sortDirection")
    ) or "asc"

    numeric_order = _normalize_direction(_first(raw, "numericOrder", "numeric_order"))
    if numeric_order and sort_column in NUMERIC_COLUMNS:
        direction = numeric_order

    return QueryDescriptor(
        page=page,
        page_size=page_size,
        sort_column=sort_column,
        sort_direction=direction,
        filters=_collect_filters(raw),
    )


def require_filters(raw_params: Any) -> Mapping[str, Any]:
    """Check that a bulk operation received a usable parameter mapping.

    Args:
        raw_params: Parameters passed to sync/export

    Returns:
        The parameters (empty dict for None)

    Raises:
        ValidationError: If the parameters or their ``filters`` entry are
            not mappings
    """
    if raw_params is None:
        return {}
    if not isinstance(raw_params, Mapping):
        raise ValidationError(
            f"Expected a mapping of query parameters, got {type(raw_params).__name__}"
        )
    nested = raw_params.get("filters")
    if nested is not None and not isinstance(nested, Mapping):
        raise ValidationError(
            f"Expected 'filters' to be a mapping, got {type(nested).__name__}"
        )
    return raw_params
