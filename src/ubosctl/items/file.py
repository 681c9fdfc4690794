"""File items: copied from ``source`` or rendered from ``template``."""
from __future__ import annotations

import logging
from pathlib import Path

from ..backup.context import BackupContext
from ..filesystem import copy_file, delete_file, save_file
from ..permissions import DEFAULT_FILE_MODE, apply_owner_and_mode
from ..variables import Variables
from .base import AppConfigurationItem, ItemType

LOGGER = logging.getLogger(__name__)


class FileItem(AppConfigurationItem):
    """Places one file at each name."""

    item_type = ItemType.FILE

    def deploy_or_check(self, apply: bool, from_dir: str | None, to_dir: str | None, variables: Variables) -> bool:
        """Copy or render the file to every name."""
        uid, gid = self._owner(variables)
        mode = self._mode("permissions", DEFAULT_FILE_MODE, variables)

        ok = True
        for name in self.names():
            origin = self._content_path(from_dir, variables, name)
            target = self._target_path(name, to_dir, variables)
            LOGGER.debug("File %s -> %s (apply=%s)", origin, target, apply)
            if not origin.is_file():
                LOGGER.error("File item source or template does not exist: %s", origin)
                ok = False
                continue
            if not apply:
                continue
            if self.json.get("source"):
                ok = copy_file(origin, target, mode=mode, uid=uid, gid=gid) and ok
            else:
                content = self._content(from_dir, variables, name)
                ok = save_file(target, content, mode=mode, uid=uid, gid=gid) and ok
        return ok

    def undeploy_or_check(self, apply: bool, from_dir: str | None, to_dir: str | None, variables: Variables) -> bool:
        """Delete every name; a missing file is a failure."""
        ok = True
        for name in reversed(self.names()):
            target = self._target_path(name, to_dir, variables)
            if apply:
                ok = delete_file(target) and ok
        return ok

    def backup(
        self,
        directory: str | None,
        variables: Variables,
        context: BackupContext,
        temp_files: list[Path],
        compress: str | None = None,
    ) -> bool:
        """Add the single named file to the retention bucket."""
        names = self.names()
        if len(names) != 1:
            LOGGER.error("Cannot back up file item with more than one name: %s", names)
            return False
        bucket = self.bucket
        if bucket is None:
            LOGGER.error("Cannot back up file item without retention bucket: %r", self)
            return False
        return context.add_file(self._target_path(names[0], directory, variables), bucket)

    def restore(self, directory: str | None, variables: Variables, context: BackupContext) -> bool:
        """Restore the single named file and re-apply owner and mode."""
        names = self.names()
        if len(names) != 1:
            LOGGER.error("Cannot restore file item with more than one name: %s", names)
            return False
        bucket = self.bucket
        if bucket is None:
            LOGGER.error("Cannot restore file item without retention bucket: %r", self)
            return False
        target = self._target_path(names[0], directory, variables)
        if not context.restore(bucket, target):
            LOGGER.error("Cannot restore file: bucket %s, path %s, context %r", bucket, target, context)
            return False
        uid, gid = self._owner(variables)
        mode = self._mode("permissions", DEFAULT_FILE_MODE, variables)
        return apply_owner_and_mode(target, uid=uid, gid=gid, mode=mode)


__all__ = ["FileItem"]
