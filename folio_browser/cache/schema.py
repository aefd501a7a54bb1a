"""DuckDB schema definitions for the local mirror.

Provides schema creation and migration for the mirror database.
"""

from typing import Optional

import duckdb


class CacheSchema:
    """Manages DuckDB schema for the mirror database."""

    SCHEMA_VERSION = 1

    CREATE_CACHE_META = """
    CREATE TABLE IF NOT EXISTS cache_meta (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """

    # One entry per row key; data holds the normalized row as JSON
    CREATE_MIRROR_ROWS = """
    CREATE TABLE IF NOT EXISTS mirror_rows (
        row_key TEXT PRIMARY KEY,
        data TEXT NOT NULL,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """

    @classmethod
    def create_schema(cls, conn: duckdb.DuckDBPyConnection) -> None:
        """Create all tables.

        Args:
            conn: DuckDB connection
        """
        conn.execute(cls.CREATE_CACHE_META)
        conn.execute(cls.CREATE_MIRROR_ROWS)

        conn.execute(
            """
            INSERT OR REPLACE INTO cache_meta (key, value, updated_at)
            VALUES ('schema_version', ?, CURRENT_TIMESTAMP)
            """,
            [str(cls.SCHEMA_VERSION)],
        )

    @classmethod
    def get_schema_version(cls, conn: duckdb.DuckDBPyConnection) -> Optional[int]:
        """Get current schema version from database.

        Args:
            conn: DuckDB connection

        Returns:
            Schema version or None if not set
        """
        try:
            result = conn.execute(
                "SELECT value FROM cache_meta WHERE key = 'schema_version'"
            ).fetchone()
            if result:
                return int(result[0])
        except duckdb.CatalogException:
            pass
        return None

    @classmethod
    def needs_migration(cls, conn: duckdb.DuckDBPyConnection) -> bool:
        """Check if schema needs migration.

        Args:
            conn: DuckDB connection

        Returns:
            True if migration is needed
        """
        current_version = cls.get_schema_version(conn)
        return current_version is None or current_version < cls.SCHEMA_VERSION

    @classmethod
    def migrate(cls, conn: duckdb.DuckDBPyConnection) -> None:
        """Migrate schema to latest version.

        Version 1 is the only layout so far, so bringing an empty or older
        file up to date means creating whatever is missing and stamping the
        version. Tables that already exist keep their rows.

        Args:
            conn: DuckDB connection
        """
        cls.create_schema(conn)
