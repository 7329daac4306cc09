"""Configuration file format for relmap."""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field


class SQLiteConnection(BaseModel):
    """SQLite connection configuration."""

    type: Literal["sqlite"] = "sqlite"
    path: str = Field(default=":memory:", description="Path to SQLite database file or :memory:")


class DuckDBConnection(BaseModel):
    """DuckDB connection configuration."""

    type: Literal["duckdb"] = "duckdb"
    path: str = Field(default=":memory:", description="Path to DuckDB database file or :memory:")


Connection = SQLiteConnection | DuckDBConnection


class RelmapConfig(BaseModel):
    """relmap configuration file format.

    Can be saved as relmap.yaml or relmap.json.

    Example YAML:
        connection:
          type: sqlite
          path: data/app.db
        echo: true

    Example JSON:
        {
          "connection": {"type": "duckdb", "path": "data/app.duckdb"},
          "echo": false
        }
    """

    connection: Connection = Field(
        default_factory=SQLiteConnection, discriminator="type", description="Database connection configuration"
    )
    echo: bool = Field(default=False, description="Log every statement and its parameters at INFO level")

    def resolve_paths(self, base_dir: Path | None = None) -> "RelmapConfig":
        """Resolve a relative database path against ``base_dir``.

        Args:
            base_dir: Base directory for resolving relative paths (defaults to cwd)

        Returns:
            New config with resolved paths
        """
        base = base_dir or Path.cwd()

        connection = self.connection
        if connection.path != ":memory:":
            db_path = Path(connection.path)
            if not db_path.is_absolute():
                db_path = (base / db_path).resolve()
            connection = type(connection)(path=str(db_path))

        return RelmapConfig(connection=connection, echo=self.echo)


def load_config(config_path: Path) -> RelmapConfig:
    """Load configuration from YAML or JSON file.

    Args:
        config_path: Path to config file (relmap.yaml or relmap.json)

    Returns:
        Loaded and validated configuration

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config file format is invalid
    """
    import json

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    suffix = config_path.suffix.lower()

    if suffix in {".yaml", ".yml"}:
        import yaml

        with open(config_path) as f:
            data = yaml.safe_load(f)
    elif suffix == ".json":
        with open(config_path) as f:
            data = json.load(f)
    else:
        raise ValueError(f"Unsupported config format: {suffix}. Use .yaml, .yml, or .json")

    config = RelmapConfig(**(data or {}))

    # Resolve relative paths relative to config file directory
    return config.resolve_paths(config_path.parent)


def find_config(start_dir: Path | None = None) -> Path | None:
    """Find config file by searching up the directory tree.

    Searches for relmap.yaml, relmap.yml, or relmap.json.

    Args:
        start_dir: Directory to start searching from (defaults to cwd)

    Returns:
        Path to config file if found, None otherwise
    """
    current = (start_dir or Path.cwd()).resolve()

    while True:
        for name in ["relmap.yaml", "relmap.yml", "relmap.json"]:
            config_path = current / name
            if config_path.exists():
                return config_path

        parent = current.parent
        if parent == current:
            break
        current = parent

    return None


def build_connection_string(config: RelmapConfig) -> str:
    """Build database connection string from config.

    Args:
        config: relmap configuration

    Returns:
        Connection string for Database
    """
    connection = config.connection
    if isinstance(connection, SQLiteConnection):
        return f"sqlite:///{connection.path}"
    elif isinstance(connection, DuckDBConnection):
        return f"duckdb:///{connection.path}"
    else:
        raise ValueError(f"Unknown connection type: {type(connection)}")
