"""State registry helpers tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from ubosctl.state import StateRegistry, StateRegistryError


def test_read_missing_files_returns_default(tmp_path: Path) -> None:
    """Missing files return the provided default structure."""
    registry = StateRegistry(tmp_path)

    result = registry.read("ports.yml", default={"ports": []})

    assert result == {"ports": []}


def test_write_and_read_roundtrip(tmp_path: Path) -> None:
    """Writing a registry file and reading it back succeeds."""
    registry = StateRegistry(tmp_path / "registry")
    payload = {"databases": [{"name": "maindb", "dbname": "maindb_0a1b"}]}

    registry.write("databases.yml", payload)

    path = tmp_path / "registry" / "databases.yml"
    assert path.exists()
    assert (path.stat().st_mode & 0o777) == 0o640
    assert not list((tmp_path / "registry").glob(".databases.yml.*"))

    loaded = registry.read("databases.yml")
    assert loaded == payload


def test_read_helpers(tmp_path: Path) -> None:
    """Helper methods normalise return values."""
    registry = StateRegistry(tmp_path)

    assert registry.read_ports() == []
    assert registry.read_databases() == []

    registry.write_ports([{"appconfigid": "a1", "name": "http", "protocol": "tcp", "port": 7000}])
    ports = registry.read_ports()

    assert ports[0]["port"] == 7000
    assert ports[0]["appconfigid"] == "a1"


def test_empty_file_returns_default(tmp_path: Path) -> None:
    """An empty registry file behaves like a missing one."""
    registry = StateRegistry(tmp_path)
    (tmp_path / "ports.yml").write_text("")

    assert registry.read_ports() == []


def test_invalid_yaml_raises(tmp_path: Path) -> None:
    """Invalid YAML raises a StateRegistryError."""
    registry = StateRegistry(tmp_path)
    path = tmp_path / "ports.yml"
    path.write_text("ports: [unterminated\n")

    with pytest.raises(StateRegistryError):
        registry.read("ports.yml")


def test_non_mapping_entries_raise(tmp_path: Path) -> None:
    """Each registry entry must be a mapping."""
    registry = StateRegistry(tmp_path)
    (tmp_path / "databases.yml").write_text("databases:\n  - just-a-string\n")

    with pytest.raises(StateRegistryError, match=r"databases\[0\] must be a mapping"):
        registry.read_databases()


def test_non_list_key_raises(tmp_path: Path) -> None:
    """The top-level key must hold a list."""
    registry = StateRegistry(tmp_path)
    (tmp_path / "ports.yml").write_text("ports: 7000\n")

    with pytest.raises(StateRegistryError, match="must contain a list"):
        registry.read_ports()
