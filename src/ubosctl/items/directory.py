"""Directory items."""
from __future__ import annotations

import logging
from pathlib import Path

from ..backup.context import BackupContext
from ..filesystem import mkdir, rmdir
from ..permissions import DEFAULT_DIR_MODE, DEFAULT_FILE_MODE, apply_recursively
from ..variables import Variables
from .base import AppConfigurationItem, ItemType

LOGGER = logging.getLogger(__name__)


class DirectoryItem(AppConfigurationItem):
    """Creates a directory at each name; removes it again if empty."""

    item_type = ItemType.DIRECTORY

    def deploy_or_check(self, apply: bool, from_dir: str | None, to_dir: str | None, variables: Variables) -> bool:
        """Create each directory, including missing parents."""
        uid, gid = self._owner(variables)
        dir_mode = self._mode("dirpermissions", DEFAULT_DIR_MODE, variables)
        # filepermissions only apply on restore, but must still parse
        self._mode("filepermissions", DEFAULT_FILE_MODE, variables)

        ok = True
        for name in self.names():
            target = self._target_path(name, to_dir, variables)
            if apply:
                ok = mkdir(target, mode=dir_mode, uid=uid, gid=gid, parents=True) and ok
        return ok

    def undeploy_or_check(self, apply: bool, from_dir: str | None, to_dir: str | None, variables: Variables) -> bool:
        """Remove each directory; a missing directory only warns."""
        ok = True
        for name in reversed(self.names()):
            target = self._target_path(name, to_dir, variables)
            if apply:
                ok = rmdir(target) and ok
        return ok

    def backup(
        self,
        directory: str | None,
        variables: Variables,
        context: BackupContext,
        temp_files: list[Path],
        compress: str | None = None,
    ) -> bool:
        """Add the directory hierarchy to the retention bucket."""
        names = self.names()
        if len(names) != 1:
            LOGGER.error("Cannot back up directory item with more than one name: %s", names)
            return False
        if self.bucket is None:
            LOGGER.error("Cannot back up directory item without retention bucket: %r", self)
            return False
        return context.add_directory_hierarchy(self._target_path(names[0], directory, variables), self.bucket)

    def restore(self, directory: str | None, variables: Variables, context: BackupContext) -> bool:
        """Restore the hierarchy and re-apply owner and file/dir modes."""
        names = self.names()
        if len(names) != 1:
            LOGGER.error("Cannot restore directory item with more than one name: %s", names)
            return False
        if self.bucket is None:
            LOGGER.error("Cannot restore directory item without retention bucket: %r", self)
            return False
        target = self._target_path(names[0], directory, variables)
        ok = True
        if not context.restore_recursive(self.bucket, target):
            LOGGER.error("Cannot restore directory: bucket %s, path %s, context %r", self.bucket, target, context)
            ok = False
        uid, gid = self._owner(variables)
        file_mode = self._mode("filepermissions", DEFAULT_FILE_MODE, variables)
        dir_mode = self._mode("dirpermissions", DEFAULT_DIR_MODE, variables)
        if target.exists():
            ok = apply_recursively(target, uid=uid, gid=gid, file_mode=file_mode, dir_mode=dir_mode) and ok
        return ok


__all__ = ["DirectoryItem"]
