"""Local cache store for Folio Browser.

A DuckDB-backed mirror holding one entry per row key. Queries are answered
by a full scan: every stored row is loaded, filtered and sorted in Python
with the same rules the remote server applies, then sliced to the page.
That is linear in the mirror size and fine for interactive browsing of a
replicated dataset.
"""

import json
import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional

import duckdb

from .schema import CacheSchema
from ..config import default_cache_path
from ..models.query import QueryDescriptor
from ..models.row import Row, derive_row_key, normalize_row
from ..utils.error_handling import SourceUnavailable
from ..utils.row_filter import filter_rows, row_matches, sort_rows

logger = logging.getLogger(__name__)


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


class LocalCacheStore:
    """Persistent keyed mirror of dataset rows."""

    def __init__(
        self,
        db_path: Optional[str] = None,
        read_only: bool = False,
    ):
        """Initialize the store.

        Args:
            db_path: Path to DuckDB database file (default: ~/.cache/folio-browser/mirror.duckdb)
            read_only: Open database in read-only mode
        """
        self.db_path = Path(db_path or default_cache_path()).expanduser()
        if not read_only:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._read_only = read_only
        self._conn: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = threading.RLock()

    @contextmanager
    def _storage_errors(self, action: str) -> Iterator[None]:
        try:
            yield
        except (duckdb.Error, OSError) as e:
            logger.error("Local store failed while %s: %s", action, e)
            raise SourceUnavailable(f"Local store failed while {action}: {e}") from e

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        """Get or create database connection.

        Returns:
            DuckDB connection
        """
        if self._conn is None:
            self._conn = duckdb.connect(
                str(self.db_path),
                read_only=self._read_only,
            )
            if not self._read_only and CacheSchema.needs_migration(self._conn):
                CacheSchema.migrate(self._conn)
        return self._conn

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> "LocalCacheStore":
        with self._lock, self._storage_errors("opening"):
            self._get_connection()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # === Writes ===

    def clear(self) -> None:
        """Remove every stored row (metadata is kept)."""
        with self._lock, self._storage_errors("clearing"):
            self._get_connection().execute("DELETE FROM mirror_rows")
        logger.debug("Cleared local store %s", self.db_path)

    def upsert(self, rows: Iterable[Mapping[str, Any]]) -> int:
        """Write a batch of rows, replacing entries with the same key.

        Keys are derived from each row and its position within this batch.
        Within one batch, later rows win over earlier rows with the same key.
        Re-applying the same batch leaves the store unchanged.

        Args:
            rows: Rows to store (normalized here if needed)

        Returns:
            Number of distinct keys written
        """
        entries: Dict[str, str] = {}
        for ordinal, raw in enumerate(rows):
            row = normalize_row(raw)
            key = derive_row_key(row, ordinal)
            entries[key] = json.dumps(row, default=_json_default)

        if not entries:
            return 0

        with self._lock, self._storage_errors("writing rows"):
            conn = self._get_connection()
            conn.execute("BEGIN TRANSACTION")
            try:
                conn.executemany(
                    """
                    INSERT OR REPLACE INTO mirror_rows (row_key, data, updated_at)
                    VALUES (?, ?, CURRENT_TIMESTAMP)
                    """,
                    [[key, data] for key, data in entries.items()],
                )
            except duckdb.Error:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

        return len(entries)

    # === Reads ===

    def _scan(self) -> List[Row]:
        """Load every stored row in row-key order."""
        with self._lock, self._storage_errors("reading rows"):
            result = self._get_connection().execute(
                "SELECT data FROM mirror_rows ORDER BY row_key"
            ).fetchall()
        return [json.loads(item[0]) for item in result]

    def all_rows(self) -> List[Row]:
        """Get every stored row in row-key order."""
        return self._scan()

    def count(self, filters: Optional[Mapping[str, str]] = None) -> int:
        """Count stored rows matching a filter set.

        Args:
            filters: Column -> substring pattern

        Returns:
            Number of matching rows
        """
        filters = filters or {}
        return sum(1 for row in self._scan() if row_matches(row, filters))

    def fetch_page(self, descriptor: QueryDescriptor) -> List[Row]:
        """Get one page of matching rows.

        Ties in the sort column keep row-key order, so consecutive pages
        neither repeat nor skip rows while the store is unchanged.

        Args:
            descriptor: Filters, sort and page window

        Returns:
            At most ``descriptor.page_size`` rows
        """
        matching = filter_rows(self._scan(), descriptor.filter_map())
        ordered = sort_rows(matching, descriptor.sort_column, descriptor.sort_direction)
        start = descriptor.offset
        return ordered[start:start + descriptor.page_size]

    def total_rows(self) -> int:
        """Number of stored rows, unfiltered."""
        with self._lock, self._storage_errors("counting rows"):
            return self._get_connection().execute(
                "SELECT COUNT(*) FROM mirror_rows"
            ).fetchone()[0]

    # === Metadata ===

    def set_meta(self, key: str, value: Any) -> None:
        """Store a JSON-serializable metadata value.

        Args:
            key: Metadata key
            value: Value to store
        """
        with self._lock, self._storage_errors("writing metadata"):
            self._get_connection().execute(
                """
                INSERT OR REPLACE INTO cache_meta (key, value, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                """,
                [key, json.dumps(value, default=_json_default)],
            )

    def get_meta(self, key: str) -> Optional[Any]:
        """Read a metadata value stored by :meth:`set_meta`.

        Args:
            key: Metadata key

        Returns:
            Stored value or None
        """
        with self._lock, self._storage_errors("reading metadata"):
            result = self._get_connection().execute(
                "SELECT value FROM cache_meta WHERE key = ?",
                [key],
            ).fetchone()
        if not result:
            return None
        try:
            return json.loads(result[0])
        except ValueError:
            return result[0]

    def get_stats(self) -> Dict[str, Any]:
        """Get store statistics.

        Returns:
            Dict with row count, last sync summary, file size and path
        """
        rows = self.total_rows()
        last_sync = self.get_meta("last_sync")
        db_size = self.db_path.stat().st_size if self.db_path.exists() else 0

        return {
            "rows": rows,
            "last_sync": last_sync,
            "db_size_bytes": db_size,
            "db_path": str(self.db_path),
        }
