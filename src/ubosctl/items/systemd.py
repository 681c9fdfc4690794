"""Systemd service and timer items."""
from __future__ import annotations

import logging
from collections.abc import Callable

from ..providers.systemd import SystemdError
from ..variables import Variables
from .base import AppConfigurationItem, ItemType

LOGGER = logging.getLogger(__name__)


class _SystemdUnitItem(AppConfigurationItem):
    unit_suffix: str = ".service"

    def unit_name(self, variables: Variables) -> str:
        """Return the resolved unit name, with the default suffix if none was given."""
        name = variables.replace_variables(str(self.json["name"])) or ""
        if "." not in name.rsplit("@", 1)[-1]:
            name += self.unit_suffix
        return name

    def deploy_or_check(self, apply: bool, from_dir: str | None, to_dir: str | None, variables: Variables) -> bool:
        """Enable and start the unit."""
        unit = self.unit_name(variables)
        if not apply:
            return True
        systemd = self.runtime.systemd
        return self._call(unit, systemd.enable, systemd.start)

    def undeploy_or_check(self, apply: bool, from_dir: str | None, to_dir: str | None, variables: Variables) -> bool:
        """Stop and disable the unit."""
        unit = self.unit_name(variables)
        if not apply:
            return True
        systemd = self.runtime.systemd
        return self._call(unit, systemd.stop, systemd.disable)

    def suspend(self, code_dir: str | None, directory: str | None, variables: Variables) -> bool:
        """Stop the unit."""
        return self._call(self.unit_name(variables), self.runtime.systemd.stop)

    def resume(self, code_dir: str | None, directory: str | None, variables: Variables) -> bool:
        """Start the unit."""
        return self._call(self.unit_name(variables), self.runtime.systemd.start)

    def _call(self, unit: str, *actions: Callable[[str], object]) -> bool:
        ok = True
        for action in actions:
            try:
                action(unit)
            except SystemdError as exc:
                LOGGER.error("%s", exc)
                ok = False
        return ok


class SystemdServiceItem(_SystemdUnitItem):
    """A systemd service owned by the AppConfiguration."""

    item_type = ItemType.SYSTEMD_SERVICE
    unit_suffix = ".service"


class SystemdTimerItem(_SystemdUnitItem):
    """A systemd timer owned by the AppConfiguration."""

    item_type = ItemType.SYSTEMD_TIMER
    unit_suffix = ".timer"


__all__ = ["SystemdServiceItem", "SystemdTimerItem"]
