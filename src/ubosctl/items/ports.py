"""TCP and UDP port reservation items."""
from __future__ import annotations

import logging
from typing import ClassVar

from ..resources import Protocol, ResourceError
from ..variables import Variables
from .base import AppConfigurationItem, ItemType

LOGGER = logging.getLogger(__name__)


class _PortItem(AppConfigurationItem):
    protocol: ClassVar[Protocol]

    def deploy_or_check(self, apply: bool, from_dir: str | None, to_dir: str | None, variables: Variables) -> bool:
        """Reserve the port and expose it as ``appconfig.<protocol>port.<name>``."""
        name = variables.replace_variables(str(self.json["name"])) or ""
        if not apply:
            return True
        try:
            port = self.runtime.resources.reserve_port(self.app_config.app_config_id, name, self.protocol)
        except ResourceError as exc:
            LOGGER.error("Cannot reserve %s port '%s': %s", self.protocol, name, exc)
            return False
        LOGGER.info("Reserved %s port %d for %s", self.protocol, port, name)
        variables.put(f"appconfig.{self.protocol}port.{name}", port)
        return True

    def undeploy_or_check(self, apply: bool, from_dir: str | None, to_dir: str | None, variables: Variables) -> bool:
        """Release the port; releasing a port never reserved is a failure."""
        name = variables.replace_variables(str(self.json["name"])) or ""
        if not apply:
            return True
        try:
            self.runtime.resources.release_port(self.app_config.app_config_id, name, self.protocol)
        except ResourceError as exc:
            LOGGER.error("Cannot release %s port '%s': %s", self.protocol, name, exc)
            return False
        return True


class TcpPortItem(_PortItem):
    """Reserves a TCP port."""

    item_type = ItemType.TCPPORT
    protocol = "tcp"


class UdpPortItem(_PortItem):
    """Reserves a UDP port."""

    item_type = ItemType.UDPPORT
    protocol = "udp"


__all__ = ["TcpPortItem", "UdpPortItem"]
