"""Database adapter abstraction layer."""

from relmap.db.base import BaseDatabaseAdapter
from relmap.db.sqlite import SQLiteAdapter

__all__ = ["BaseDatabaseAdapter", "SQLiteAdapter", "create_adapter"]


def create_adapter(url: str) -> BaseDatabaseAdapter:
    """Create an adapter from a connection URL.

    Args:
        url: Connection URL (``sqlite:///...`` or ``duckdb:///...``)

    Returns:
        Adapter connected to the database

    Raises:
        NotImplementedError: If the URL scheme is not supported
    """
    if url.startswith("sqlite://"):
        return SQLiteAdapter.from_url(url)
    if url.startswith("duckdb://"):
        from relmap.db.duckdb import DuckDBAdapter

        return DuckDBAdapter.from_url(url)
    raise NotImplementedError(f"Connection type {url} not yet supported")


def __getattr__(name):
    """Lazy import database adapters to avoid importing optional dependencies."""
    if name == "DuckDBAdapter":
        from relmap.db.duckdb import DuckDBAdapter

        return DuckDBAdapter
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
