"""Directory tree items: recursive copies of a source tree."""
from __future__ import annotations

import logging
import shutil
from pathlib import Path

from ..backup.context import BackupContext
from ..filesystem import copy_recursively, delete_recursively
from ..permissions import DEFAULT_DIR_MODE, DEFAULT_FILE_MODE, PRESERVE_MODE, apply_recursively
from ..variables import Variables
from .base import AppConfigurationItem, ItemType

LOGGER = logging.getLogger(__name__)


class DirectoryTreeItem(AppConfigurationItem):
    """Copies ``source`` recursively to each name.

    In ``source``, ``$1`` stands for the name and ``$2`` for its last path
    component. With ``preserve`` for ``filepermissions`` or ``dirpermissions``
    the files or directories that already exist at the target keep their mode.
    """

    item_type = ItemType.DIRECTORYTREE

    def deploy_or_check(self, apply: bool, from_dir: str | None, to_dir: str | None, variables: Variables) -> bool:
        """Copy the tree and apply owner and file/dir modes."""
        uid, gid = self._owner(variables)
        file_mode = self._mode("filepermissions", DEFAULT_FILE_MODE, variables)
        dir_mode = self._mode("dirpermissions", DEFAULT_DIR_MODE, variables)

        ok = True
        for name in self.names():
            source = self._source_path(str(self.json["source"]), name, from_dir, variables)
            target = self._target_path(name, to_dir, variables)
            LOGGER.debug("DirectoryTree %s -> %s (apply=%s)", source, target, apply)
            if not source.exists():
                LOGGER.error("DirectoryTree source does not exist: %s", source)
                ok = False
                continue
            if not apply:
                continue
            copy_function = shutil.copyfile if file_mode == PRESERVE_MODE else shutil.copy2
            keep_dir_modes = dir_mode == PRESERVE_MODE
            if not copy_recursively(source, target, copy_function=copy_function, keep_dir_modes=keep_dir_modes):
                ok = False
                continue
            ok = apply_recursively(target, uid=uid, gid=gid, file_mode=file_mode, dir_mode=dir_mode) and ok
        return ok

    def undeploy_or_check(self, apply: bool, from_dir: str | None, to_dir: str | None, variables: Variables) -> bool:
        """Delete each tree; trees that are already gone are fine."""
        ok = True
        for name in reversed(self.names()):
            target = self._target_path(name, to_dir, variables)
            if apply:
                ok = delete_recursively(target) and ok
        return ok

    def backup(
        self,
        directory: str | None,
        variables: Variables,
        context: BackupContext,
        temp_files: list[Path],
        compress: str | None = None,
    ) -> bool:
        """Add the tree to the retention bucket; only a single name is supported."""
        names = self.names()
        if len(names) != 1:
            LOGGER.error("Cannot back up directorytree item with more than one name: %s", names)
            return False
        if self.bucket is None:
            LOGGER.error("Cannot back up directorytree item without retention bucket: %r", self)
            return False
        return context.add_directory_hierarchy(self._target_path(names[0], directory, variables), self.bucket)

    def restore(self, directory: str | None, variables: Variables, context: BackupContext) -> bool:
        """Restore the tree, then re-apply owner and file/dir modes."""
        names = self.names()
        if len(names) != 1:
            LOGGER.error("Cannot restore directorytree item with more than one name: %s", names)
            return False
        if self.bucket is None:
            LOGGER.error("Cannot restore directorytree item without retention bucket: %r", self)
            return False
        target = self._target_path(names[0], directory, variables)
        ok = True
        if not context.restore_recursive(self.bucket, target):
            LOGGER.error("Cannot restore directorytree: bucket %s, path %s, context %r", self.bucket, target, context)
            ok = False
        uid, gid = self._owner(variables)
        file_mode = self._mode("filepermissions", DEFAULT_FILE_MODE, variables)
        dir_mode = self._mode("dirpermissions", DEFAULT_DIR_MODE, variables)
        if target.exists():
            ok = apply_recursively(target, uid=uid, gid=gid, file_mode=file_mode, dir_mode=dir_mode) and ok
        return ok


__all__ = ["DirectoryTreeItem"]
