"""SQLite database adapter."""

import sqlite3
from typing import Any

from relmap.db.base import BaseDatabaseAdapter


class SQLiteAdapter(BaseDatabaseAdapter):
    """SQLite database adapter.

    The connection runs in autocommit mode; transactions are opened
    explicitly through :meth:`begin`.
    """

    error_types = (sqlite3.Error,)

    def __init__(self, path: str = ":memory:"):
        """Initialize SQLite adapter.

        Args:
            path: Database file path or ":memory:" for in-memory database
        """
        self.path = path
        # Access is serialized by the owning Database's session lock
        self.conn = sqlite3.connect(path, isolation_level=None, check_same_thread=False)
        self.conn.execute("PRAGMA foreign_keys = ON")

    def execute(self, sql: str, params: tuple | list = ()) -> list[dict[str, Any]]:
        """Execute SQL and return rows as dicts."""
        cursor = self.conn.execute(sql, tuple(params))
        try:
            return self.rows_from_cursor(cursor)
        finally:
            cursor.close()

    def begin(self) -> None:
        """Start an immediate transaction (takes the write lock up front)."""
        self.conn.execute("BEGIN IMMEDIATE")

    def commit(self) -> None:
        """Commit the current transaction."""
        self.conn.execute("COMMIT")

    def rollback(self) -> None:
        """Roll back the current transaction."""
        self.conn.execute("ROLLBACK")

    def close(self) -> None:
        """Close database connection."""
        self.conn.close()

    @property
    def dialect(self) -> str:
        """Get SQLGlot dialect name."""
        return "sqlite"

    @property
    def raw_connection(self) -> Any:
        """Get underlying sqlite3 connection."""
        return self.conn

    @classmethod
    def from_url(cls, url: str) -> "SQLiteAdapter":
        """Create adapter from connection URL.

        Args:
            url: Connection URL (e.g., "sqlite:///:memory:" or "sqlite:///path/to/app.db")

        Returns:
            SQLiteAdapter instance
        """
        if not url.startswith("sqlite://"):
            raise ValueError(f"Invalid SQLite URL: {url}")

        # sqlite:///:memory: -> :memory:
        # sqlite:///app.db -> app.db
        # sqlite:////tmp/app.db -> /tmp/app.db
        db_path = url[len("sqlite:///") :] if url.startswith("sqlite:///") else url[len("sqlite://") :]

        if db_path in (":memory:", ""):
            db_path = ":memory:"

        return cls(db_path)
