"""Symlink items."""
from __future__ import annotations

import logging
from pathlib import Path

from ..backup.context import BackupContext
from ..filesystem import delete_file, symlink
from ..variables import Variables
from .base import AppConfigurationItem, ItemType

LOGGER = logging.getLogger(__name__)


class SymlinkItem(AppConfigurationItem):
    """Creates a symbolic link at each name pointing to ``source``."""

    item_type = ItemType.SYMLINK

    def deploy_or_check(self, apply: bool, from_dir: str | None, to_dir: str | None, variables: Variables) -> bool:
        """Create the links."""
        uid, gid = self._owner(variables)
        ok = True
        for name in self.names():
            source = self._source_path(str(self.json["source"]), name, from_dir, variables)
            link = self._target_path(name, to_dir, variables)
            LOGGER.debug("Symlink %s -> %s (apply=%s)", link, source, apply)
            if apply:
                ok = symlink(str(source), link, uid=uid, gid=gid) and ok
        return ok

    def undeploy_or_check(self, apply: bool, from_dir: str | None, to_dir: str | None, variables: Variables) -> bool:
        """Remove the links; a missing link is a failure."""
        ok = True
        for name in reversed(self.names()):
            link = self._target_path(name, to_dir, variables)
            if apply:
                ok = delete_file(link) and ok
        return ok

    def backup(
        self,
        directory: str | None,
        variables: Variables,
        context: BackupContext,
        temp_files: list[Path],
        compress: str | None = None,
    ) -> bool:
        """Links carry no data; they are recreated by deploy."""
        return True

    def restore(self, directory: str | None, variables: Variables, context: BackupContext) -> bool:
        """Links carry no data; they are recreated by deploy."""
        return True


__all__ = ["SymlinkItem"]
