"""Test relmap.yaml / relmap.json loading."""

import json
import logging
from pathlib import Path

import pytest

from relmap import Database
from relmap.config import (
    DuckDBConnection,
    RelmapConfig,
    SQLiteConnection,
    build_connection_string,
    find_config,
    load_config,
)


def test_default_config_is_in_memory_sqlite():
    config = RelmapConfig()
    assert isinstance(config.connection, SQLiteConnection)
    assert build_connection_string(config) == "sqlite:///:memory:"
    assert config.echo is False


def test_yaml_relative_path_resolves_against_config_dir(tmp_path):
    config_file = tmp_path / "relmap.yaml"
    config_file.write_text("connection:\n  type: sqlite\n  path: data/app.db\necho: true\n")

    config = load_config(config_file)

    assert config.connection.path == str((tmp_path / "data" / "app.db").resolve())
    assert config.echo is True


def test_memory_path_is_kept(tmp_path):
    config_file = tmp_path / "relmap.yml"
    config_file.write_text("connection:\n  type: sqlite\n")

    assert build_connection_string(load_config(config_file)) == "sqlite:///:memory:"


def test_json_duckdb_connection(tmp_path):
    config_file = tmp_path / "relmap.json"
    config_file.write_text(json.dumps({"connection": {"type": "duckdb", "path": "app.duckdb"}}))

    config = load_config(config_file)

    assert isinstance(config.connection, DuckDBConnection)
    expected = Path(tmp_path / "app.duckdb").resolve()
    assert build_connection_string(config) == f"duckdb:///{expected}"


def test_empty_file_uses_defaults(tmp_path):
    config_file = tmp_path / "relmap.yaml"
    config_file.write_text("")
    assert load_config(config_file) == RelmapConfig()


def test_unsupported_format(tmp_path):
    config_file = tmp_path / "relmap.toml"
    config_file.write_text("")
    with pytest.raises(ValueError, match="Unsupported config format"):
        load_config(config_file)


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "relmap.yaml")


def test_invalid_connection_type(tmp_path):
    config_file = tmp_path / "relmap.yaml"
    config_file.write_text("connection:\n  type: oracle\n")
    with pytest.raises(ValueError):
        load_config(config_file)


def test_find_config_searches_upwards(tmp_path):
    config_file = tmp_path / "relmap.yaml"
    config_file.write_text("echo: true\n")
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)

    assert find_config(nested) == config_file.resolve()


def test_database_from_config_path(tmp_path, registry):
    config_file = tmp_path / "relmap.yaml"
    config_file.write_text("connection:\n  type: sqlite\n  path: app.db\necho: true\n")

    with Database.from_config(registry, config_file) as db:
        assert db.echo is True
        assert db.dialect == "sqlite"
        assert db.adapter.path == str((tmp_path / "app.db").resolve())


def test_database_from_discovered_config(tmp_path, registry, monkeypatch):
    (tmp_path / "relmap.json").write_text(json.dumps({"echo": True}))
    monkeypatch.chdir(tmp_path)

    with Database.from_config(registry) as db:
        assert db.echo is True
        assert db.adapter.path == ":memory:"


def test_echo_logs_statements_at_info(db, caplog):
    db.echo = True
    with caplog.at_level(logging.INFO, logger="relmap.core.database"):
        db.all(db.select("users"))
        db.execute(db.insert("users").values({"name": "Ada", "email": "ada@example.com"}))

    messages = [r.getMessage() for r in caplog.records if r.name == "relmap.core.database"]
    assert any(m.startswith("SELECT") for m in messages)
    assert any("INSERT INTO" in m and "'Ada'" in m for m in messages)


def test_statements_log_at_debug_without_echo(db, caplog):
    with caplog.at_level(logging.INFO, logger="relmap.core.database"):
        db.all(db.select("users"))
    assert not [r for r in caplog.records if r.name == "relmap.core.database"]
