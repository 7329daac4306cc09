"""DuckDB database adapter."""

from typing import Any

import duckdb

from relmap.db.base import BaseDatabaseAdapter


class DuckDBAdapter(BaseDatabaseAdapter):
    """DuckDB database adapter.

    Wraps DuckDB connection to provide unified adapter interface.
    """

    error_types = (duckdb.Error,)

    def __init__(self, path: str = ":memory:"):
        """Initialize DuckDB adapter.

        Args:
            path: Database file path or ":memory:" for in-memory database
        """
        self.path = path
        self.conn = duckdb.connect(path)

    def execute(self, sql: str, params: tuple | list = ()) -> list[dict[str, Any]]:
        """Execute SQL and return rows as dicts."""
        cursor = self.conn.execute(sql, list(params))
        return self.rows_from_cursor(cursor)

    def begin(self) -> None:
        """Start a transaction."""
        self.conn.begin()

    def commit(self) -> None:
        """Commit the current transaction."""
        self.conn.commit()

    def rollback(self) -> None:
        """Roll back the current transaction."""
        self.conn.rollback()

    def close(self) -> None:
        """Close database connection."""
        self.conn.close()

    @property
    def dialect(self) -> str:
        """Get SQLGlot dialect name."""
        return "duckdb"

    @property
    def raw_connection(self) -> Any:
        """Get underlying DuckDB connection."""
        return self.conn

    @classmethod
    def from_url(cls, url: str) -> "DuckDBAdapter":
        """Create adapter from connection URL.

        Args:
            url: Connection URL (e.g., "duckdb:///:memory:" or "duckdb:///path/to/db.duckdb")

        Returns:
            DuckDBAdapter instance
        """
        if not url.startswith("duckdb://"):
            raise ValueError(f"Invalid DuckDB URL: {url}")

        # duckdb:///:memory: -> :memory:
        # duckdb:///app.duckdb -> app.duckdb
        # duckdb:////tmp/app.duckdb -> /tmp/app.duckdb
        # duckdb:/// -> :memory:
        db_path = url[len("duckdb:///") :] if url.startswith("duckdb:///") else url[len("duckdb://") :]

        if db_path in (":memory:", ""):
            db_path = ":memory:"

        return cls(db_path)
