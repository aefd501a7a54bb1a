"""Row schema, column alias normalization and row identity.

Source rows are not consistent about column spelling (``Valutation`` vs
``Valuation``, ``no_of_shares`` vs ``No_of_Shares``), so every row is mapped
onto the canonical column names before it is filtered, sorted or shown.
"""

from typing import Any, Dict, List, Mapping, Optional


Row = Dict[str, Any]

# Fixed schema, in display/export order
KNOWN_COLUMNS: List[str] = [
    "Investor_First_Name",
    "Investor_Middle_Name",
    "Investor_Last_Name",
    "Father_or_Husband_First Name",
    "Father_or_Husband_Middle_Name",
    "Father_or_Husband_Last_Name",
    "Address",
    "Folio_Dpid",
    "Company_Name",
    "No_of_Shares",
    "Valuation",
    "Case",
]

NUMERIC_COLUMNS = frozenset({"No_of_Shares", "Valuation"})

DISPLAY_COLUMNS: List[str] = [c for c in KNOWN_COLUMNS if c != "Folio_Dpid"]

DEFAULT_SORT_COLUMN = "Company_Name"

# Canonical column -> accepted source spellings (canonical spelling first)
COLUMN_ALIASES: Dict[str, List[str]] = {
    "Investor_First_Name": ["Investor_First_Name"],
    "Investor_Middle_Name": ["Investor_Middle_Name"],
    "Investor_Last_Name": ["Investor_Last_Name"],
    "Father_or_Husband_First Name": [
        "Father_or_Husband_First Name",
        "Father_or_Husband_First_Name",
    ],
    "Father_or_Husband_Middle_Name": ["Father_or_Husband_Middle_Name"],
    "Father_or_Husband_Last_Name": ["Father_or_Husband_Last_Name"],
    "Address": ["Address"],
    "Folio_Dpid": ["Folio_Dpid"],
    "Company_Name": ["Company_Name"],
    "No_of_Shares": ["No_of_Shares", "No_of_share", "no_of_shares", "NO_OF_SHARES"],
    "Valuation": ["Valuation", "Valutation", "valuation", "valutation", "VALUATION"],
    "Case": ["Case", "case", "CASE"],
}

_ALIAS_LOOKUP: Dict[str, str] = {
    alias: canonical
    for canonical, aliases in COLUMN_ALIASES.items()
    for alias in aliases
}


def canonical_column(name: str) -> Optional[str]:
    """Resolve a source column spelling to its canonical name.

    Args:
        name: Column name as it appears in a source row

    Returns:
        Canonical column name, or None if the name is not a known alias
    """
    return _ALIAS_LOOKUP.get(name)


def normalize_row(raw: Mapping[str, Any]) -> Row:
    """Map a source row onto canonical column names.

    For each known column the first non-null value among its aliases is
    kept. Keys that are not aliases of a known column are carried over
    unchanged so exports can still show them.

    Args:
        raw: Row as received from a source

    Returns:
        New row dict with canonical keys first, extra keys after
    """
    row: Row = {}
    for column in KNOWN_COLUMNS:
        for key in COLUMN_ALIASES[column]:
            value = raw.get(key)
            if value is not None:
                row[column] = value
                break

    for key, value in raw.items():
        if key not in _ALIAS_LOOKUP:
            row[key] = value

    return row


def value_of(row: Mapping[str, Any], column: str) -> Any:
    """Alias-aware column lookup.

    Args:
        row: Row (normalized or raw)
        column: Canonical column name

    Returns:
        Column value, or "" when the column is absent or null
    """
    for key in COLUMN_ALIASES.get(column, [column]):
        value = row.get(key)
        if value is not None:
            return value
    return ""


def _present(value: Any) -> bool:
    return value is not None and str(value).strip() != ""


def derive_row_key(row: Mapping[str, Any], ordinal: int) -> str:
    """Derive the identity of a row within the local mirror.

    Preference order: explicit ``id`` field, then ``Folio_Dpid``, then a
    composite of company, first name, last name and the row's position in
    its source batch.

    Args:
        row: Normalized row
        ordinal: 0-based position of the row in the batch it arrived in

    Returns:
        Row key string
    """
    if _present(row.get("id")):
        return str(row["id"])

    folio = value_of(row, "Folio_Dpid")
    if _present(folio):
        return str(folio)

    company = value_of(row, "Company_Name") or "row"
    first = value_of(row, "Investor_First_Name")
    last = value_of(row, "Investor_Last_Name")
    return f"{company}-{first}-{last}-{ordinal}"
