"""Filter and sort semantics shared by every row store.

Both adapters must agree on these rules exactly; the local store applies
them in Python and the test fakes use them to mimic the remote server.
"""

import math
from typing import Any, Iterable, List, Mapping, Tuple

from ..models.row import NUMERIC_COLUMNS, Row, value_of


def cell_text(value: Any) -> str:
    """Render a cell value as text for matching and display.

    Integral floats lose their trailing ``.0`` so ``1500.0`` matches ``1500``.

    Args:
        value: Raw cell value

    Returns:
        Text form ("" for None)
    """
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def row_matches(row: Mapping[str, Any], filters: Mapping[str, str]) -> bool:
    """Check a row against a filter set.

    A row matches when, for every column with a non-blank pattern, the
    column's text contains the pattern, ignoring case.

    Args:
        row: Normalized row
        filters: Column -> substring pattern

    Returns:
        True if the row satisfies every pattern
    """
    for column, pattern in filters.items():
        if pattern is None:
            continue
        needle = str(pattern).strip().lower()
        if not needle:
            continue
        if needle not in cell_text(value_of(row, column)).lower():
            return False
    return True


def filter_rows(rows: Iterable[Row], filters: Mapping[str, str]) -> List[Row]:
    """Keep rows that match the filter set, preserving order."""
    return [row for row in rows if row_matches(row, filters)]


def _as_number(value: Any):
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = cell_text(value).replace(",", "").strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    # NaN has no ordering; treat it like a non-numeric cell
    return None if math.isnan(number) else number


def _numeric_key(value: Any, descending: bool) -> Tuple[int, Any]:
    number = _as_number(value)
    if number is None:
        # Blank and non-numeric cells go last in either direction
        return (1, cell_text(value).casefold())
    return (0, -number if descending else number)


def _text_key(value: Any) -> Tuple[str, str]:
    text = cell_text(value)
    return (text.casefold(), text)


def sort_rows(rows: Iterable[Row], column: str, direction: str = "asc") -> List[Row]:
    """Sort rows by one column.

    Numeric columns compare as numbers; everything else compares as text,
    case-insensitively first and by exact spelling to break case-only ties.
    The sort is stable, so rows that compare equal keep their input order
    in both directions.

    Args:
        rows: Rows to sort
        column: Canonical column name
        direction: "asc" or "desc"

    Returns:
        New sorted list
    """
    descending = direction == "desc"

    if column in NUMERIC_COLUMNS:
        return sorted(rows, key=lambda r: _numeric_key(value_of(r, column), descending))

    return sorted(rows, key=lambda r: _text_key(value_of(r, column)), reverse=descending)
