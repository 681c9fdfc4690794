"""Zip file and update backup tests."""
from __future__ import annotations

import hashlib
import logging
import os
import shutil
import zipfile
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from ubosctl.backup import FILE_TYPE, BackupError, PreconditionError, UpdateBackup, ZipFileBackup
from ubosctl.backup.zipfile_backup import write_checksum_file
from ubosctl.deployment import deploy_site
from ubosctl.installable import Installable
from ubosctl.providers.database import GZIP_MAGIC
from ubosctl.runtime import RuntimeContext
from ubosctl.site import Site


@pytest.fixture
def notes_site(
    tmp_path: Path,
    runtime: RuntimeContext,
    make_installable: Callable[..., Installable],
    make_site: Callable[..., Site],
    fake_database: Any,
) -> Site:
    """Deploy an app with a database, a data directory and a config file, then add data."""
    owner = {"uname": str(os.getuid()), "gname": str(os.getgid())}
    make_installable(
        "notes",
        {
            "type": "app",
            "roles": {
                "mysql": {
                    "appconfigitems": [
                        {"type": "database", "name": "maindb", "privileges": "all",
                         "retentionpolicy": "keep", "retentionbucket": "maindb"},
                    ],
                },
                "apache2": {
                    "appconfigitems": [
                        {"type": "directory", "name": "${appconfig.datadir}", "filepermissions": "preserve",
                         "retentionpolicy": "keep", "retentionbucket": "data"},
                        {"type": "file", "name": "config.ini", "source": "config.ini", "permissions": "0640",
                         "retentionpolicy": "keep", "retentionbucket": "config", **owner},
                        {"type": "symlink", "name": "latest", "source": "config.ini",
                         "retentionpolicy": "keep", "retentionbucket": "latest"},
                    ],
                },
            },
        },
        {"config.ini": "[notes]\n"},
    )
    site = make_site("s1", [("a1", "notes")], context="/notes")
    assert deploy_site(site, runtime, set())

    data_dir = tmp_path / "data" / "a1"
    (data_dir / "2024").mkdir()
    (data_dir / "2024" / "note.txt").write_text("remember the milk")
    os.chmod(data_dir / "2024" / "note.txt", 0o600)
    os.symlink("2024/note.txt", data_dir / "latest.txt")
    (tmp_path / "http" / "s1" / "notes" / "config.ini").write_text("[notes]\ncolor = blue\n")
    (reservation,) = runtime.resources.list_databases()
    fake_database.databases[reservation.dbname] = "INSERT INTO notes VALUES (1);"
    return site


def _lose_data(tmp_path: Path, runtime: RuntimeContext, fake_database: Any) -> None:
    shutil.rmtree(tmp_path / "data" / "a1")
    (tmp_path / "http" / "s1" / "notes" / "config.ini").write_text("clobbered")
    for dbname in fake_database.databases:
        fake_database.databases[dbname] = ""


def _assert_data_restored(tmp_path: Path, runtime: RuntimeContext, fake_database: Any) -> None:
    data_dir = tmp_path / "data" / "a1"
    note = data_dir / "2024" / "note.txt"
    assert note.read_text() == "remember the milk"
    assert (note.stat().st_mode & 0o777) == 0o600
    assert os.readlink(data_dir / "latest.txt") == "2024/note.txt"

    config_file = tmp_path / "http" / "s1" / "notes" / "config.ini"
    assert config_file.read_text() == "[notes]\ncolor = blue\n"
    assert (config_file.stat().st_mode & 0o777) == 0o640

    (reservation,) = runtime.resources.list_databases()
    assert fake_database.databases[reservation.dbname] == "INSERT INTO notes VALUES (1);"


# ----------------------------------------------------------------------
# Zip file backups
# ----------------------------------------------------------------------
def test_zip_backup_round_trip(
    tmp_path: Path,
    runtime: RuntimeContext,
    notes_site: Site,
    fake_database: Any,
) -> None:
    """Retained data survives a backup and restore through a zip file."""
    out_file = tmp_path / "backups" / "s1.ubos-backup"

    assert ZipFileBackup(runtime).create([notes_site], notes_site.app_configs, out_file)

    with zipfile.ZipFile(out_file) as archive:
        names = set(archive.namelist())
        assert archive.read("filetype").decode() == FILE_TYPE
    assert {
        "sites/s1.json",
        "installables/notes.json",
        "appconfigs/a1.json",
        "appconfigs/a1/notes/mysql/maindb",
        "appconfigs/a1/notes/apache2/config",
        "appconfigs/a1/notes/apache2/data/2024/note.txt",
        "appconfigs/a1/notes/apache2/data/latest.txt",
    } <= names
    assert not any(name.startswith("appconfigs/a1/notes/apache2/latest") for name in names)
    assert (out_file.parent / "s1.ubos-backup.sha256").exists()
    assert (out_file.stat().st_mode & 0o777) == 0o640
    assert list((tmp_path / "tmp").glob("ubosctl-db-*")) == []

    _lose_data(tmp_path, runtime, fake_database)

    backup = ZipFileBackup.read(out_file, runtime)
    assert backup is not None
    try:
        assert set(backup.sites) == {"s1"}
        assert backup.start_time is not None
        app_config_in_backup = backup.app_configs["a1"]
        assert backup.restore_app_configuration("s1", "s1", app_config_in_backup, notes_site.app_configs[0])
    finally:
        backup.close()

    _assert_data_restored(tmp_path, runtime, fake_database)


def test_zip_backup_without_tls(tmp_path: Path, runtime: RuntimeContext, make_installable: Callable[..., Installable]) -> None:
    """``no_tls`` strips certificates from the stored Site JSON."""
    make_installable("empty", {"type": "app", "roles": {}})
    site = Site.from_json(
        {"siteid": "s9", "hostname": "s9.example.com", "tls": {"key": "KEY"},
         "appconfigs": [{"appconfigid": "a9", "appid": "empty"}]},
        runtime.manifests,
        runtime.host_vars(),
    )
    out_file = tmp_path / "s9.zip"

    assert ZipFileBackup(runtime).create([site], site.app_configs, out_file, no_tls=True)

    backup = ZipFileBackup.read(out_file, runtime)
    assert backup is not None
    assert not backup.sites["s9"].has_tls
    backup.close()


def test_read_rejects_other_files(tmp_path: Path, runtime: RuntimeContext) -> None:
    """Files that are not zip backups yield None."""
    not_zip = tmp_path / "plain.txt"
    not_zip.write_text("hello")
    wrong_marker = tmp_path / "other.zip"
    with zipfile.ZipFile(wrong_marker, "w") as archive:
        archive.writestr("filetype", "Something::Else;v2")

    assert ZipFileBackup.read(not_zip, runtime) is None
    assert ZipFileBackup.read(wrong_marker, runtime) is None


def test_read_closes_archive_on_corrupt_entry(
    tmp_path: Path,
    runtime: RuntimeContext,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A backup with the right marker but a broken entry raises and releases the archive."""
    corrupt = tmp_path / "corrupt.ubos-backup"
    with zipfile.ZipFile(corrupt, "w") as archive:
        archive.writestr("filetype", FILE_TYPE)
        archive.writestr("sites/s1.json", "{not json")
    closed: list[str] = []
    original_close = zipfile.ZipFile.close

    def recording_close(self: zipfile.ZipFile) -> None:
        closed.append(str(self.filename))
        original_close(self)

    monkeypatch.setattr(zipfile.ZipFile, "close", recording_close)

    with pytest.raises(BackupError, match="Cannot read zip file entry sites/s1.json"):
        ZipFileBackup.read(corrupt, runtime)
    assert closed == [str(corrupt)]


def test_checksum_file(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    """The side file holds the archive digest; a failed write is reported."""
    caplog.set_level(logging.WARNING, logger="ubosctl")
    archive_path = tmp_path / "s1.ubos-backup"
    archive_path.write_bytes(b"zip bytes")

    assert write_checksum_file(archive_path)
    expected = hashlib.sha256(b"zip bytes").hexdigest()
    checksum_path = tmp_path / "s1.ubos-backup.sha256"
    assert checksum_path.read_text() == f"{expected}  s1.ubos-backup\n"
    assert (checksum_path.stat().st_mode & 0o777) == 0o640

    checksum_path.unlink()
    checksum_path.mkdir()

    assert not write_checksum_file(archive_path)
    assert "Cannot write checksum file" in caplog.text


# ----------------------------------------------------------------------
# Update backups
# ----------------------------------------------------------------------
def test_update_backup_check_ready(runtime: RuntimeContext) -> None:
    """Leftovers in either backup directory block a new update backup."""
    backup = UpdateBackup(runtime)
    backup.check_ready()

    legacy = runtime.config.backups.legacy_update_dir
    legacy.mkdir(parents=True)
    (legacy / "s0.json").write_text("{}")

    with pytest.raises(PreconditionError) as excinfo:
        backup.check_ready()
    assert "backup directory is not empty" in str(excinfo.value)
    assert "ubosctl update-backup restore" in str(excinfo.value)


def test_update_backup_round_trip(
    tmp_path: Path,
    runtime: RuntimeContext,
    notes_site: Site,
    fake_database: Any,
) -> None:
    """Data is saved to the update directory, restored, then deleted."""
    update_dir = runtime.config.backups.update_dir

    assert UpdateBackup(runtime).create([notes_site])

    assert (update_dir / "s1.json").exists()
    assert ((update_dir / "s1.json").stat().st_mode & 0o777) == 0o600
    assert (update_dir / "a1" / "notes" / "mysql" / "maindb").read_bytes()[:2] == GZIP_MAGIC
    assert (update_dir / "a1" / "notes" / "apache2" / "data" / "2024" / "note.txt").exists()
    with pytest.raises(PreconditionError):
        UpdateBackup(runtime).check_ready()

    _lose_data(tmp_path, runtime, fake_database)

    restored = UpdateBackup(runtime)
    assert restored.read()
    assert set(restored.sites) == {"s1"}
    app_config_in_backup = restored.app_configs["a1"]
    assert restored.restore_app_configuration("s1", "s1", app_config_in_backup, notes_site.app_configs[0])
    _assert_data_restored(tmp_path, runtime, fake_database)

    assert restored.delete()
    assert list(update_dir.iterdir()) == []
    restored.check_ready()


def test_update_backup_refuses_to_overwrite(runtime: RuntimeContext, notes_site: Site) -> None:
    """A second update backup is refused while the first one is still present."""
    update_dir = runtime.config.backups.update_dir
    assert UpdateBackup(runtime).create([notes_site])
    saved = (update_dir / "s1.json").read_text()
    (update_dir / "s1.json").write_text(saved.replace("s1.example.com", "first.example.com"))

    with pytest.raises(PreconditionError, match="backup directory is not empty"):
        UpdateBackup(runtime).create([notes_site])
    assert "first.example.com" in (update_dir / "s1.json").read_text()


def test_update_backup_reads_legacy_directory(runtime: RuntimeContext, make_installable: Callable[..., Installable]) -> None:
    """Sites saved by older releases in the legacy directory are read too."""
    make_installable("empty", {"type": "app", "roles": {}})
    legacy = runtime.config.backups.legacy_update_dir
    legacy.mkdir(parents=True)
    (legacy / "old.json").write_text(
        '{"siteid": "old", "hostname": "old.example.com", "appconfigs": [{"appconfigid": "a0", "appid": "empty"}]}'
    )
    (legacy / "broken.json").write_text("{")

    backup = UpdateBackup(runtime)

    assert not backup.read()
    assert set(backup.sites) == {"old"}
    assert set(backup.app_configs) == {"a0"}
    assert backup.delete()
    assert list(legacy.iterdir()) == []
