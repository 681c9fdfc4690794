"""Temporary backups kept on disk while the host is being updated.

The layout mirrors the zip backup but uses plain directories::

    <update_dir>/<siteid>.json
    <update_dir>/<appconfigid>/<package>/<role>/<bucket>

Backups written by older releases may still sit in the legacy directory;
they are read and deleted but never written.
"""
from __future__ import annotations

import json
import logging
import os
import shutil
from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING

from ..filesystem import delete_recursively, time_to_string
from ..site import AppConfiguration, Site, SiteError
from .base import AbstractBackup, BackupError, PreconditionError, delete_temp_files
from .context import BackupContext

if TYPE_CHECKING:
    from ..runtime import RuntimeContext

LOGGER = logging.getLogger(__name__)

NOT_EMPTY_REMEDIATION = """\
Did a previous ubosctl operation fail? Any data it saved is still in the
backup directory. To put it back in place, run:
    ubosctl update-backup restore
Once the data is safe, remove the directory contents and try again."""


class UpdateBackupContext(BackupContext):
    """Buckets stored as files and directories below *root*."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def __repr__(self) -> str:
        return f"UpdateBackupContext({self.root})"

    def add_file(self, path: Path, bucket: str) -> bool:
        """Copy *path* to ``<root>/<bucket>``."""
        try:
            shutil.copy2(path, self.root / bucket, follow_symlinks=False)
        except OSError as exc:
            LOGGER.error("Cannot add %s to %r: %s", path, self, exc)
            return False
        return True

    def add_directory_hierarchy(self, path: Path, bucket: str) -> bool:
        """Copy the tree at *path* to ``<root>/<bucket>``."""
        if not path.is_dir():
            LOGGER.error("Cannot add directory hierarchy, not a directory: %s", path)
            return False
        try:
            shutil.copytree(path, self.root / bucket, symlinks=True, dirs_exist_ok=True)
        except (OSError, shutil.Error) as exc:
            LOGGER.error("Cannot add directory hierarchy %s to %r: %s", path, self, exc)
            return False
        return True

    def restore(self, bucket: str, path: Path) -> bool:
        """Copy ``<root>/<bucket>`` back to *path*."""
        source = self.root / bucket
        if not (source.is_file() or source.is_symlink()):
            LOGGER.error("No file for bucket %s in %r", bucket, self)
            return False
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            if path.is_symlink():
                path.unlink()
            shutil.copy2(source, path, follow_symlinks=False)
        except OSError as exc:
            LOGGER.error("Cannot restore %s from %r: %s", path, self, exc)
            return False
        return True

    def restore_recursive(self, bucket: str, path: Path) -> bool:
        """Copy the tree ``<root>/<bucket>`` back to *path*."""
        source = self.root / bucket
        if not source.is_dir():
            LOGGER.error("No directory for bucket %s in %r", bucket, self)
            return False
        try:
            shutil.copytree(source, path, symlinks=True, dirs_exist_ok=True)
        except (OSError, shutil.Error) as exc:
            LOGGER.error("Cannot restore %s from %r: %s", path, self, exc)
            return False
        return True


class UpdateBackup(AbstractBackup):
    """Backup of all sites taken before an update and restored right after."""

    def __init__(self, runtime: RuntimeContext) -> None:
        super().__init__(runtime)
        self.update_dir = runtime.config.backups.update_dir
        self.legacy_update_dir = runtime.config.backups.legacy_update_dir

    def check_ready(self) -> None:
        """Raise :class:`PreconditionError` if a previous update backup is still around."""
        leftovers = [path for directory in self._directories() for path in _entries(directory)]
        if leftovers:
            raise PreconditionError(
                "Cannot create a temporary backup; the backup directory is not empty.",
                NOT_EMPTY_REMEDIATION,
            )

    def create(self, sites: Iterable[Site]) -> bool:
        """Save every site and the retained data of its AppConfigurations.

        Refuses with :class:`PreconditionError` while an earlier update backup is
        still present.
        """
        self.check_ready()
        sites = list(sites)
        self.start_time = time_to_string()
        self.sites = {site.site_id: site for site in sites}
        LOGGER.debug("UpdateBackup.create %s", ", ".join(self.sites))

        try:
            self.update_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        except OSError as exc:
            raise BackupError(f"Cannot create update backup directory {self.update_dir}: {exc}") from exc

        temp_files: list[Path] = []
        ok = True
        try:
            for site in sites:
                site_file = self.update_dir / f"{site.site_id}.json"
                site_file.write_text(json.dumps(site.site_json, indent=4, sort_keys=True) + "\n", encoding="utf-8")
                os.chmod(site_file, 0o600)

                for app_config in site.app_configs:
                    self.app_configs[app_config.app_config_id] = app_config
                    ok = self._add_app_configuration(app_config, temp_files) and ok
        except OSError as exc:
            raise BackupError(f"Failed to write update backup: {exc}") from exc
        finally:
            ok = delete_temp_files(temp_files) and ok
        return ok

    def _add_app_configuration(self, app_config: AppConfiguration, temp_files: list[Path]) -> bool:
        app_config_dir = self.update_dir / app_config.app_config_id
        _mkdir_private(app_config_dir)
        for installable in app_config.installables:
            _mkdir_private(app_config_dir / installable.package_name)

        def context_for(package_name: str, role_name: str) -> BackupContext:
            role_dir = app_config_dir / package_name / role_name
            _mkdir_private(role_dir)
            return UpdateBackupContext(role_dir)

        # database dumps are compressed; other items ignore compression
        return self._backup_app_configuration(app_config, context_for, temp_files, compress="gz")

    def read(self) -> bool:
        """Load the sites saved in the update and legacy directories."""
        LOGGER.debug("UpdateBackup.read")
        self.sites = {}
        self.app_configs = {}
        host_vars = self.runtime.host_vars()
        ok = True
        for directory in self._directories():
            for site_file in sorted(directory.glob("*.json")):
                try:
                    site_json = json.loads(site_file.read_text(encoding="utf-8"))
                    site = Site.from_json(site_json, self.runtime.manifests, host_vars)
                except (OSError, json.JSONDecodeError, SiteError) as exc:
                    LOGGER.error("Cannot read site from %s: %s", site_file, exc)
                    ok = False
                    continue
                self.sites[site.site_id] = site
                for app_config in site.app_configs:
                    self.app_configs[app_config.app_config_id] = app_config
        return ok

    def restore_app_configuration(
        self,
        site_id_in_backup: str,
        site_id_on_host: str,
        app_config_in_backup: AppConfiguration,
        app_config_on_host: AppConfiguration,
    ) -> bool:
        """Restore the retained data of *app_config_in_backup* into *app_config_on_host*."""
        app_config_id = app_config_in_backup.app_config_id
        LOGGER.debug("UpdateBackup.restore_app_configuration %s", app_config_id)

        def context_for(package_name: str, role_name: str) -> BackupContext | None:
            package_dir = self.update_dir / app_config_id / package_name
            if not package_dir.is_dir():
                package_dir = self.legacy_update_dir / app_config_id / package_name
            role_dir = package_dir / role_name
            if not role_dir.is_dir():
                return None
            return UpdateBackupContext(role_dir)

        return self._restore_app_configuration(app_config_in_backup, app_config_on_host, context_for)

    def delete(self) -> bool:
        """Remove the contents of the update and legacy directories."""
        LOGGER.debug("UpdateBackup.delete")
        return delete_recursively(*(path for directory in self._directories() for path in _entries(directory)))

    def _directories(self) -> tuple[Path, Path]:
        return (self.update_dir, self.legacy_update_dir)


def _entries(directory: Path) -> list[Path]:
    if not directory.is_dir():
        return []
    return sorted(directory.iterdir())


def _mkdir_private(path: Path) -> None:
    path.mkdir(mode=0o700, exist_ok=True)
    os.chmod(path, 0o700)


__all__ = ["NOT_EMPTY_REMEDIATION", "UpdateBackup", "UpdateBackupContext"]
