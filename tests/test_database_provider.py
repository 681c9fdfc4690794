"""Tests for the mysql database provider."""
from __future__ import annotations

import gzip
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import pytest

from ubosctl.providers.database import DatabaseError, DatabaseProvider


class DummyResult:
    """Simple stand-in for ``subprocess.CompletedProcess``."""

    def __init__(self, returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        """Initialise the dummy result."""
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


@pytest.fixture
def recorded(monkeypatch: pytest.MonkeyPatch) -> list[tuple[list[str], str | None]]:
    """Capture every client invocation as ``(args, stdin)``."""
    calls: list[tuple[list[str], str | None]] = []

    def fake_run(args: Sequence[str], *, input: str | None = None, **kwargs: Any) -> DummyResult:
        calls.append((list(args), input))
        return DummyResult(stdout="-- dump of demo\n")

    monkeypatch.setattr("ubosctl.providers.database.subprocess.run", fake_run)
    return calls


def test_provision_creates_database_and_user(recorded: list[tuple[list[str], str | None]]) -> None:
    """Provisioning pipes CREATE and GRANT statements into the client."""
    provider = DatabaseProvider(defaults_file=Path("/etc/mysql/root-defaults.cnf"))

    provider.provision("maindb_1a2b", "umaindb_1a2b", "s3cr'et", "select, insert")

    args, stdin = recorded[0]
    assert args == ["mysql", "--defaults-file=/etc/mysql/root-defaults.cnf"]
    assert stdin is not None
    assert "CREATE DATABASE `maindb_1a2b`" in stdin
    assert "IDENTIFIED BY 's3cr\\'et'" in stdin
    assert "GRANT select, insert ON `maindb_1a2b`.* TO 'umaindb_1a2b'@'localhost'" in stdin


def test_run_sql_with_custom_delimiter(recorded: list[tuple[list[str], str | None]]) -> None:
    """Non-default delimiters are announced to the client."""
    DatabaseProvider().run_sql("maindb", "CREATE TRIGGER t |", "|")

    args, stdin = recorded[0]
    assert args == ["mysql", "maindb"]
    assert stdin == "DELIMITER |\nCREATE TRIGGER t |"


def test_run_sql_rejects_unknown_delimiter(recorded: list[tuple[list[str], str | None]]) -> None:
    """Only a fixed set of delimiters is allowed."""
    with pytest.raises(DatabaseError, match="Invalid statement delimiter"):
        DatabaseProvider().run_sql("maindb", "SELECT 1", "//")
    assert recorded == []


def test_identifiers_are_validated(recorded: list[tuple[list[str], str | None]]) -> None:
    """Quotes in identifiers are refused before anything runs."""
    with pytest.raises(DatabaseError, match="Invalid database identifier"):
        DatabaseProvider().unprovision("bad`name", "user")
    assert recorded == []


def test_export_and_import_compressed(
    tmp_path: Path,
    recorded: list[tuple[list[str], str | None]],
) -> None:
    """Dumps can be gzip-compressed and are transparently decompressed on import."""
    provider = DatabaseProvider()
    dump = tmp_path / "demo.sql.gz"

    provider.export("demo", dump, compress="gz")
    assert gzip.decompress(dump.read_bytes()) == b"-- dump of demo\n"
    assert recorded[0][0] == ["mysqldump", "--single-transaction", "demo"]

    provider.import_("demo", dump)
    assert recorded[1] == (["mysql", "demo"], "-- dump of demo\n")


def test_export_rejects_unknown_compression(
    tmp_path: Path,
    recorded: list[tuple[list[str], str | None]],
) -> None:
    """Only gzip compression is supported."""
    with pytest.raises(DatabaseError, match="Unsupported compression 'xz'"):
        DatabaseProvider().export("demo", tmp_path / "demo.sql.xz", compress="xz")


def test_failure_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    """A failing client raises DatabaseError with its stderr."""
    monkeypatch.setattr(
        "ubosctl.providers.database.subprocess.run",
        lambda args, **kwargs: DummyResult(returncode=1, stderr="ERROR 1007: database exists"),
    )

    with pytest.raises(DatabaseError, match="provision maindb failed"):
        DatabaseProvider().provision("maindb", "umaindb", "pw", "all")


def test_dry_run_skips_client(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Dry-run providers never shell out."""

    def fake_run(args: Sequence[str], **kwargs: Any) -> DummyResult:
        raise AssertionError("mysql must not run in dry-run mode")

    monkeypatch.setattr("ubosctl.providers.database.subprocess.run", fake_run)

    provider = DatabaseProvider(dry_run=True)
    provider.provision("maindb", "umaindb", "pw", "all")
    provider.export("maindb", tmp_path / "dump.sql")
    assert (tmp_path / "dump.sql").read_bytes() == b""
