"""Shared behaviour of backup stores."""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import TYPE_CHECKING

from .context import BackupContext

if TYPE_CHECKING:
    from ..runtime import RuntimeContext
    from ..site import AppConfiguration, Site

LOGGER = logging.getLogger(__name__)

ContextFactory = Callable[[str, str], BackupContext | None]


class BackupError(RuntimeError):
    """Raised when a backup cannot be written or read."""


class PreconditionError(BackupError):
    """Raised when the host is not in a state that allows the operation."""

    def __init__(self, message: str, remediation: str | None = None) -> None:
        super().__init__(message)
        self.remediation = remediation

    def __str__(self) -> str:
        base = super().__str__()
        return f"{base}\n{self.remediation}" if self.remediation else base


class AbstractBackup(ABC):
    """A set of sites and AppConfigurations together with their retained data."""

    def __init__(self, runtime: RuntimeContext) -> None:
        self.runtime = runtime
        self.start_time: str | None = None
        self.sites: dict[str, Site] = {}
        self.app_configs: dict[str, AppConfiguration] = {}

    @abstractmethod
    def restore_app_configuration(
        self,
        site_id_in_backup: str,
        site_id_on_host: str,
        app_config_in_backup: AppConfiguration,
        app_config_on_host: AppConfiguration,
    ) -> bool:
        """Restore the data of *app_config_in_backup* into *app_config_on_host*."""

    # ------------------------------------------------------------------
    def _backup_app_configuration(
        self,
        app_config: AppConfiguration,
        context_for: ContextFactory,
        temp_files: list[Path],
        compress: str | None = None,
    ) -> bool:
        """Back up every role of every installable that exists on this host."""
        roles = self.runtime.roles_on_host()
        ok = True
        for installable in app_config.installables:
            variables = app_config.obtain_installable_vars(installable, self.runtime.resources)
            for role_name in installable.role_names:
                role = roles.get(role_name)
                if role is None:
                    LOGGER.debug("Skipping role %s, not on this host", role_name)
                    continue
                context = context_for(installable.package_name, role_name)
                if context is None:
                    continue
                ok = role.backup(app_config, installable, variables, context, temp_files, compress) and ok
        return ok

    def _restore_app_configuration(
        self,
        app_config_in_backup: AppConfiguration,
        app_config_on_host: AppConfiguration,
        context_for: ContextFactory,
    ) -> bool:
        """Restore every role for which the backup holds data."""
        roles = self.runtime.roles_on_host()
        ok = True
        for installable in app_config_in_backup.installables:
            variables = app_config_on_host.obtain_installable_vars(installable, self.runtime.resources)
            for role_name in installable.role_names:
                role = roles.get(role_name)
                if role is None:
                    continue
                context = context_for(installable.package_name, role_name)
                if context is None:
                    LOGGER.debug(
                        "No data for %s/%s/%s in backup",
                        app_config_in_backup.app_config_id,
                        installable.package_name,
                        role_name,
                    )
                    continue
                ok = role.restore(app_config_on_host, installable, variables, context) and ok
        return ok


def delete_temp_files(paths: Iterable[Path]) -> bool:
    """Remove temporary files produced by items during a backup."""
    ok = True
    for path in paths:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            LOGGER.error("Could not unlink %s: %s", path, exc)
            ok = False
    return ok


__all__ = ["AbstractBackup", "BackupError", "PreconditionError", "delete_temp_files"]
