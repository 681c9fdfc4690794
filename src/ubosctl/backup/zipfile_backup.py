"""Zip archive backups (``UBOS::Backup::ZipFileBackup;v1``).

Layout of the archive::

    filetype                                   marker, see FILE_TYPE
    starttime                                  YYYYMMDD-HHMMSS + newline
    sites/<siteid>.json
    installables/<package>.json
    appconfigs/<appconfigid>.json
    appconfigs/<appconfigid>/<package>/<role>/<bucket>[/...]

File modes are kept in the entries' external attributes; symbolic links
are stored as link entries.
"""
from __future__ import annotations

import hashlib
import json
import logging
import os
import re
import shutil
import stat
import tempfile
import zipfile
from collections.abc import Iterable, Mapping
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Any

from ..filesystem import time_to_string
from ..installable import Installable, ManifestStore
from ..site import AppConfiguration, Site
from .base import AbstractBackup, BackupError, delete_temp_files
from .context import BackupContext

if TYPE_CHECKING:
    from ..runtime import RuntimeContext

LOGGER = logging.getLogger(__name__)

FILE_TYPE = "UBOS::Backup::ZipFileBackup;v1"
FILE_TYPE_ENTRY = "filetype"
START_TIME_ENTRY = "starttime"
SITES_ENTRY = "sites"
INSTALLABLES_ENTRY = "installables"
APP_CONFIGS_ENTRY = "appconfigs"
CHECKSUM_CHUNK_SIZE = 1024 * 1024

_SITE_MEMBER = re.compile(rf"^{SITES_ENTRY}/([^/]+)\.json$")
_INSTALLABLE_MEMBER = re.compile(rf"^{INSTALLABLES_ENTRY}/([^/]+)\.json$")
_APP_CONFIG_MEMBER = re.compile(rf"^{APP_CONFIGS_ENTRY}/([^/]+)\.json$")


class ZipFileBackupContext(BackupContext):
    """Buckets stored below *prefix* inside an open zip archive."""

    def __init__(self, archive: zipfile.ZipFile, prefix: str) -> None:
        self.archive = archive
        self.prefix = prefix.rstrip("/")

    def __repr__(self) -> str:
        return f"ZipFileBackupContext({self.archive.filename}:{self.prefix})"

    def add_file(self, path: Path, bucket: str) -> bool:
        """Store *path* as ``<prefix>/<bucket>``."""
        try:
            self._write_entry(path, f"{self.prefix}/{bucket}")
        except OSError as exc:
            LOGGER.error("Cannot add %s to %r: %s", path, self, exc)
            return False
        return True

    def add_directory_hierarchy(self, path: Path, bucket: str) -> bool:
        """Store the tree at *path* below ``<prefix>/<bucket>/``."""
        if not path.is_dir():
            LOGGER.error("Cannot add directory hierarchy, not a directory: %s", path)
            return False
        root = f"{self.prefix}/{bucket}"
        try:
            self.archive.write(path, f"{root}/")
            for current, dirnames, filenames in os.walk(path):
                current_path = Path(current)
                relative = current_path.relative_to(path).as_posix()
                base = root if relative == "." else f"{root}/{relative}"
                for dirname in sorted(dirnames):
                    entry = current_path / dirname
                    self._write_entry(entry, f"{base}/{dirname}")
                for filename in sorted(filenames):
                    self._write_entry(current_path / filename, f"{base}/{filename}")
        except OSError as exc:
            LOGGER.error("Cannot add directory hierarchy %s to %r: %s", path, self, exc)
            return False
        return True

    def restore(self, bucket: str, path: Path) -> bool:
        """Extract ``<prefix>/<bucket>`` to *path*."""
        try:
            info = self.archive.getinfo(f"{self.prefix}/{bucket}")
        except KeyError:
            LOGGER.error("No entry for bucket %s in %r", bucket, self)
            return False
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            self._extract_entry(info, path)
        except OSError as exc:
            LOGGER.error("Cannot restore %s from %r: %s", path, self, exc)
            return False
        return True

    def restore_recursive(self, bucket: str, path: Path) -> bool:
        """Recreate the tree below ``<prefix>/<bucket>/`` at *path*."""
        root = f"{self.prefix}/{bucket}/"
        members = sorted(
            (info for info in self.archive.infolist() if info.filename.startswith(root)),
            key=lambda info: info.filename,
        )
        if not members:
            LOGGER.error("No entries for bucket %s in %r", bucket, self)
            return False

        ok = True
        directories: list[tuple[Path, int]] = []
        for info in members:
            relative = info.filename[len(root) :].rstrip("/")
            if relative and ".." in PurePosixPath(relative).parts:
                LOGGER.error("Refusing to restore entry outside of bucket: %s", info.filename)
                ok = False
                continue
            target = path / relative if relative else path
            try:
                if info.is_dir():
                    target.mkdir(parents=True, exist_ok=True)
                    directories.append((target, _entry_mode(info)))
                else:
                    target.parent.mkdir(parents=True, exist_ok=True)
                    self._extract_entry(info, target)
            except OSError as exc:
                LOGGER.error("Cannot restore %s from %r: %s", target, self, exc)
                ok = False

        # modes of directories last, so read-only directories can be filled first
        for directory, mode in reversed(directories):
            if mode:
                try:
                    os.chmod(directory, mode)
                except OSError as exc:
                    LOGGER.error("Cannot chmod %s: %s", directory, exc)
                    ok = False
        return ok

    # ------------------------------------------------------------------
    def _write_entry(self, path: Path, arcname: str) -> None:
        if path.is_symlink():
            info = zipfile.ZipInfo(arcname)
            info.create_system = 3
            info.external_attr = (stat.S_IFLNK | 0o777) << 16
            self.archive.writestr(info, os.readlink(path))
        elif path.is_dir():
            self.archive.write(path, f"{arcname}/")
        else:
            self.archive.write(path, arcname)

    def _extract_entry(self, info: zipfile.ZipInfo, target: Path) -> None:
        full_mode = info.external_attr >> 16
        if target.is_symlink() or (target.exists() and not target.is_dir()):
            target.unlink()
        if stat.S_ISLNK(full_mode):
            os.symlink(self.archive.read(info).decode("utf-8"), target)
            return
        with self.archive.open(info) as source, target.open("wb") as destination:
            shutil.copyfileobj(source, destination)
        mode = _entry_mode(info)
        if mode:
            os.chmod(target, mode)


def _entry_mode(info: zipfile.ZipInfo) -> int:
    return stat.S_IMODE(info.external_attr >> 16)


class ZipFileBackup(AbstractBackup):
    """A backup stored in a single zip file."""

    def __init__(self, runtime: RuntimeContext) -> None:
        super().__init__(runtime)
        self.file: Path | None = None
        self.archive: zipfile.ZipFile | None = None

    def create(
        self,
        sites: Iterable[Site],
        app_configs: Iterable[AppConfiguration],
        out_file: Path,
        *,
        no_tls: bool = False,
    ) -> bool:
        """Write the backup of *sites* and *app_configs* to *out_file*."""
        sites = list(sites)
        app_configs = list(app_configs)
        self.start_time = time_to_string()
        self.sites = {site.site_id: site for site in sites}
        self.app_configs = {app_config.app_config_id: app_config for app_config in app_configs}
        self.file = out_file
        LOGGER.debug("ZipFileBackup.create %s", out_file)

        out_file.parent.mkdir(parents=True, exist_ok=True)
        tmp_fd, tmp_name = tempfile.mkstemp(dir=str(out_file.parent), prefix=f".{out_file.name}.")
        os.close(tmp_fd)
        tmp_path = Path(tmp_name)
        temp_files: list[Path] = []
        ok = True
        try:
            with zipfile.ZipFile(tmp_path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
                archive.writestr(FILE_TYPE_ENTRY, FILE_TYPE)
                archive.writestr(START_TIME_ENTRY, f"{self.start_time}\n")

                archive.mkdir(SITES_ENTRY)
                for site in sites:
                    site_json = site.site_json_without_tls() if no_tls else site.site_json
                    archive.writestr(f"{SITES_ENTRY}/{site.site_id}.json", _to_json(site_json))

                archive.mkdir(INSTALLABLES_ENTRY)
                installables: dict[str, Installable] = {}
                for app_config in app_configs:
                    for installable in app_config.installables:
                        installables[installable.package_name] = installable
                for package_name, installable in sorted(installables.items()):
                    archive.writestr(
                        f"{INSTALLABLES_ENTRY}/{package_name}.json",
                        _to_json(installable.installable_json),
                    )

                archive.mkdir(APP_CONFIGS_ENTRY)
                for app_config in app_configs:
                    ok = self._add_app_configuration(archive, app_config, temp_files) and ok

            os.replace(tmp_path, out_file)
            os.chmod(out_file, 0o640)
        except OSError as exc:
            raise BackupError(f"Failed to write backup {out_file}: {exc}") from exc
        finally:
            tmp_path.unlink(missing_ok=True)
            ok = delete_temp_files(temp_files) and ok

        write_checksum_file(out_file)
        return ok

    def _add_app_configuration(
        self,
        archive: zipfile.ZipFile,
        app_config: AppConfiguration,
        temp_files: list[Path],
    ) -> bool:
        app_config_id = app_config.app_config_id
        archive.writestr(f"{APP_CONFIGS_ENTRY}/{app_config_id}.json", _to_json(app_config.app_configuration_json))
        archive.mkdir(f"{APP_CONFIGS_ENTRY}/{app_config_id}")
        for installable in app_config.installables:
            archive.mkdir(f"{APP_CONFIGS_ENTRY}/{app_config_id}/{installable.package_name}")

        def context_for(package_name: str, role_name: str) -> BackupContext:
            prefix = f"{APP_CONFIGS_ENTRY}/{app_config_id}/{package_name}/{role_name}"
            archive.mkdir(prefix)
            return ZipFileBackupContext(archive, prefix)

        return self._backup_app_configuration(app_config, context_for, temp_files)

    @classmethod
    def read(cls, archive_path: Path, runtime: RuntimeContext) -> ZipFileBackup | None:
        """Open *archive_path*; return ``None`` if it is not a zip backup."""
        LOGGER.debug("ZipFileBackup.read %s", archive_path)
        try:
            archive = zipfile.ZipFile(archive_path)
        except zipfile.BadZipFile:
            LOGGER.debug("Not a zip file: %s", archive_path)
            return None

        found = _read_text(archive, FILE_TYPE_ENTRY) or ""
        if found.strip() != FILE_TYPE:
            LOGGER.debug("Wrong or missing file type marker in %s: %r", archive_path, found)
            archive.close()
            return None

        backup = cls(runtime)
        backup.file = archive_path
        backup.archive = archive
        try:
            backup._load_contents(archive)
        except Exception:
            archive.close()
            raise
        return backup

    def _load_contents(self, archive: zipfile.ZipFile) -> None:
        start_time = _read_text(archive, START_TIME_ENTRY)
        self.start_time = start_time.strip() if start_time else None

        manifests = ManifestStore(self.runtime.manifests.manifest_dir)
        names = archive.namelist()
        for name in names:
            match = _INSTALLABLE_MEMBER.match(name)
            if match:
                manifests.add(Installable(match.group(1), _read_json(archive, name)))

        host_vars = self.runtime.host_vars()
        for name in names:
            if _SITE_MEMBER.match(name):
                site = Site.from_json(_read_json(archive, name), manifests, host_vars)
                self.sites[site.site_id] = site
                for app_config in site.app_configs:
                    self.app_configs[app_config.app_config_id] = app_config
        for name in names:
            match = _APP_CONFIG_MEMBER.match(name)
            if match and match.group(1) not in self.app_configs:
                app_config = AppConfiguration.from_json(_read_json(archive, name), manifests, host_vars)
                self.app_configs[app_config.app_config_id] = app_config

    def restore_app_configuration(
        self,
        site_id_in_backup: str,
        site_id_on_host: str,
        app_config_in_backup: AppConfiguration,
        app_config_on_host: AppConfiguration,
    ) -> bool:
        """Restore the retained data of *app_config_in_backup* into *app_config_on_host*."""
        if self.archive is None:
            raise BackupError("Backup has not been read.")
        archive = self.archive
        app_config_id = app_config_in_backup.app_config_id
        LOGGER.debug(
            "ZipFileBackup.restore_app_configuration %s -> %s",
            app_config_id,
            app_config_on_host.app_config_id,
        )

        def context_for(package_name: str, role_name: str) -> BackupContext | None:
            prefix = f"{APP_CONFIGS_ENTRY}/{app_config_id}/{package_name}/{role_name}"
            if f"{prefix}/" not in archive.NameToInfo:
                return None
            return ZipFileBackupContext(archive, prefix)

        return self._restore_app_configuration(app_config_in_backup, app_config_on_host, context_for)

    def close(self) -> None:
        """Close the underlying archive."""
        if self.archive is not None:
            self.archive.close()
            self.archive = None


def _read_text(archive: zipfile.ZipFile, name: str) -> str | None:
    try:
        return archive.read(name).decode("utf-8")
    except KeyError:
        return None
    except UnicodeDecodeError as exc:
        raise BackupError(f"Cannot read zip file entry {name}: {exc}") from exc


def _read_json(archive: zipfile.ZipFile, name: str) -> Mapping[str, Any]:
    try:
        data = json.loads(_read_text(archive, name) or "")
    except json.JSONDecodeError as exc:
        raise BackupError(f"Cannot read zip file entry {name}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise BackupError(f"Zip file entry {name} must contain a JSON object.")
    return data


def _to_json(value: object) -> str:
    return json.dumps(value, indent=4, sort_keys=True) + "\n"


def write_checksum_file(archive_path: Path) -> bool:
    """Write the SHA-256 of *archive_path* to ``<archive>.sha256``; return False if that fails."""
    checksum_path = archive_path.with_name(f"{archive_path.name}.sha256")
    digest = hashlib.sha256()
    try:
        with archive_path.open("rb") as handle:
            for chunk in iter(lambda: handle.read(CHECKSUM_CHUNK_SIZE), b""):
                digest.update(chunk)
        checksum_path.write_text(f"{digest.hexdigest()}  {archive_path.name}\n", encoding="utf-8")
        os.chmod(checksum_path, 0o640)
    except OSError as exc:
        LOGGER.warning("Cannot write checksum file %s: %s", checksum_path, exc)
        return False
    return True


__all__ = [
    "FILE_TYPE",
    "ZipFileBackup",
    "ZipFileBackupContext",
    "write_checksum_file",
]
