"""Shared behaviour of AppConfigurationItems."""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any, ClassVar

from ..permissions import NO_OWNER, get_gid, get_uid, permission_to_mode
from ..variables import Variables

if TYPE_CHECKING:
    from ..backup.context import BackupContext
    from ..installable import Installable
    from ..role import Role
    from ..runtime import RuntimeContext
    from ..site import AppConfiguration

LOGGER = logging.getLogger(__name__)


class ItemType(StrEnum):
    """Closed set of AppConfigurationItem types."""

    FILE = "file"
    DIRECTORY = "directory"
    DIRECTORYTREE = "directorytree"
    SYMLINK = "symlink"
    PERLSCRIPT = "perlscript"
    SQLSCRIPT = "sqlscript"
    SYSTEMD_SERVICE = "systemd-service"
    SYSTEMD_TIMER = "systemd-timer"
    DATABASE = "database"
    TCPPORT = "tcpport"
    UDPPORT = "udpport"


class AppConfigurationItem(ABC):
    """One declarative unit of deployable state.

    Instances wrap a single manifest descriptor and are created fresh for
    every lifecycle call. Every operation returns ``True`` on success;
    failures are logged and reported as ``False``.
    """

    item_type: ClassVar[ItemType]

    def __init__(
        self,
        json: Mapping[str, Any],
        role: Role,
        app_config: AppConfiguration,
        installable: Installable,
    ) -> None:
        self.json = json
        self.role = role
        self.app_config = app_config
        self.installable = installable

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}({self.installable.package_name}/{self.role.name}: "
            f"{self.json.get('name') or self.json.get('names')})"
        )

    @property
    def runtime(self) -> RuntimeContext:
        """Return the per-invocation runtime context."""
        return self.role.runtime

    @property
    def bucket(self) -> str | None:
        """Return the retention bucket, if any."""
        value = self.json.get("retentionbucket")
        return str(value) if value else None

    def names(self) -> list[str]:
        """Return the raw names of this item (``names`` or ``[name]``)."""
        names = self.json.get("names")
        if names:
            return [str(name) for name in names]
        name = self.json.get("name")
        return [str(name)] if name is not None else []

    # Lifecycle --------------------------------------------------------
    @abstractmethod
    def deploy_or_check(self, apply: bool, from_dir: str | None, to_dir: str | None, variables: Variables) -> bool:
        """Deploy the item, or only validate it when *apply* is false."""

    @abstractmethod
    def undeploy_or_check(self, apply: bool, from_dir: str | None, to_dir: str | None, variables: Variables) -> bool:
        """Undeploy the item, or only validate it when *apply* is false."""

    def suspend(self, code_dir: str | None, directory: str | None, variables: Variables) -> bool:
        """Suspend the item; most items have nothing to do."""
        return True

    def resume(self, code_dir: str | None, directory: str | None, variables: Variables) -> bool:
        """Resume the item; most items have nothing to do."""
        return True

    def backup(
        self,
        directory: str | None,
        variables: Variables,
        context: BackupContext,
        temp_files: list[Path],
        compress: str | None = None,
    ) -> bool:
        """Add the item's data to *context*."""
        LOGGER.error("Cannot back up item of type %s: %r", self.item_type, self)
        return False

    def restore(self, directory: str | None, variables: Variables, context: BackupContext) -> bool:
        """Restore the item's data from *context*."""
        LOGGER.error("Cannot restore item of type %s: %r", self.item_type, self)
        return False

    def run_post_deploy_script(
        self,
        method: str,
        code_dir: str | None,
        directory: str | None,
        variables: Variables,
    ) -> bool:
        """Run as an installer, uninstaller or upgrader."""
        LOGGER.error("Item of type %s cannot be run as post-deploy script: %r", self.item_type, self)
        return False

    # Helpers ----------------------------------------------------------
    def _target_path(self, name: str, default_dir: str | None, variables: Variables) -> Path:
        resolved = variables.replace_variables(name) or ""
        path = Path(resolved)
        if path.is_absolute():
            return path
        if not default_dir:
            raise ValueError(f"Relative name '{resolved}' but no default directory for {self!r}")
        return Path(default_dir) / path

    def _source_path(self, source: str, name: str | None, default_dir: str | None, variables: Variables) -> Path:
        if name is not None:
            source = source.replace("$1", name).replace("$2", name.rsplit("/", 1)[-1])
        return self._target_path(source, default_dir, variables)

    def _owner(self, variables: Variables) -> tuple[int, int]:
        uname = variables.replace_variables(self.json.get("uname"))
        gname = variables.replace_variables(self.json.get("gname"))
        uid = get_uid(uname) if uname else NO_OWNER
        gid = get_gid(gname) if gname else NO_OWNER
        return uid, gid

    def _mode(self, field: str, default: int, variables: Variables) -> int:
        return permission_to_mode(variables.replace_variables(self.json.get(field)), default)

    def _content(self, from_dir: str | None, variables: Variables, name: str | None = None) -> str:
        """Return the copied or rendered content of ``source`` or ``template``."""
        source = self.json.get("source")
        if source:
            return self._source_path(str(source), name, from_dir, variables).read_text(encoding="utf-8")
        template = self._source_path(str(self.json["template"]), name, from_dir, variables)
        language = str(self.json.get("templatelang", "varsubst"))
        processor = self.runtime.template_processor(language)
        return processor.process(template.read_text(encoding="utf-8"), variables, str(template))

    def _content_path(self, from_dir: str | None, variables: Variables, name: str | None = None) -> Path:
        raw = self.json.get("source") or self.json.get("template")
        return self._source_path(str(raw), name, from_dir, variables)


__all__ = ["AppConfigurationItem", "ItemType"]
