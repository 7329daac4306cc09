"""Base database adapter interface."""

import re
from abc import ABC, abstractmethod
from typing import Any

# Pattern for valid SQL identifiers: starts with letter or underscore,
# followed by letters, digits, or underscores.
_IDENTIFIER_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")


def validate_identifier(value: str, name: str = "identifier") -> str:
    """Validate that a value is a safe SQL identifier.

    Entity, table, column and alias names are the only caller-supplied text
    that ever reaches statement text, so they are restricted to letters,
    digits and underscores and must start with a letter or underscore.

    Args:
        value: The identifier value to validate
        name: Human-readable name for error messages (e.g., "table name", "column name")

    Returns:
        The validated identifier (unchanged if valid)

    Raises:
        ValueError: If the identifier contains invalid characters
    """
    if not value:
        raise ValueError(f"Invalid {name}: cannot be empty")

    if not _IDENTIFIER_PATTERN.match(value):
        raise ValueError(
            f"Invalid {name}: '{value}'. "
            f"Identifiers must start with a letter or underscore and contain only "
            f"letters, digits, and underscores."
        )

    return value


class BaseDatabaseAdapter(ABC):
    """Abstract base class for storage backends.

    Adapters expose the two contracts the engine relies on: statement
    execution with positional ``?`` parameters returning rows as
    column-name mappings, and explicit transaction control.
    """

    # Driver exception types, wrapped in ExecutionError by the engine
    error_types: tuple[type[Exception], ...] = ()

    @abstractmethod
    def execute(self, sql: str, params: tuple | list = ()) -> list[dict[str, Any]]:
        """Execute SQL and return all result rows.

        Args:
            sql: SQL statement with ``?`` placeholders
            params: Ordered parameter values

        Returns:
            List of rows keyed by column name (empty for statements without results)
        """
        raise NotImplementedError

    @abstractmethod
    def begin(self) -> None:
        """Start a transaction."""
        raise NotImplementedError

    @abstractmethod
    def commit(self) -> None:
        """Commit the current transaction."""
        raise NotImplementedError

    @abstractmethod
    def rollback(self) -> None:
        """Roll back the current transaction."""
        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        """Close database connection."""
        raise NotImplementedError

    @property
    @abstractmethod
    def dialect(self) -> str:
        """Get SQLGlot dialect name.

        Returns:
            Dialect name (e.g., 'sqlite', 'duckdb')
        """
        raise NotImplementedError

    @property
    @abstractmethod
    def raw_connection(self) -> Any:
        """Get underlying database connection object.

        Returns:
            Raw connection (sqlite3.Connection, DuckDBPyConnection, etc.)
        """
        raise NotImplementedError

    @staticmethod
    def rows_from_cursor(cursor: Any) -> list[dict[str, Any]]:
        """Convert a DB-API cursor's pending result into column-name mappings."""
        if cursor.description is None:
            return []
        columns = [col[0] for col in cursor.description]
        return [dict(zip(columns, row)) for row in cursor.fetchall()]
