"""AppConfigurationItem implementations and their factory."""
from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from ..installable import Installable, ManifestError
from .base import AppConfigurationItem, ItemType
from .database import DatabaseItem
from .directory import DirectoryItem
from .directorytree import DirectoryTreeItem
from .file import FileItem
from .perlscript import PerlscriptItem
from .ports import TcpPortItem, UdpPortItem
from .sqlscript import SqlscriptItem
from .symlink import SymlinkItem
from .systemd import SystemdServiceItem, SystemdTimerItem

if TYPE_CHECKING:
    from ..role import Role
    from ..site import AppConfiguration


def instantiate(
    json: Mapping[str, Any],
    role: Role,
    app_config: AppConfiguration,
    installable: Installable,
) -> AppConfigurationItem:
    """Return the item object for one manifest descriptor."""
    try:
        item_type = ItemType(json.get("type"))
    except ValueError:
        installable.my_fatal(f"roles section: role {role.name}: unknown appconfigitem type '{json.get('type')}'")

    match item_type:
        case ItemType.FILE:
            return FileItem(json, role, app_config, installable)
        case ItemType.DIRECTORY:
            return DirectoryItem(json, role, app_config, installable)
        case ItemType.DIRECTORYTREE:
            return DirectoryTreeItem(json, role, app_config, installable)
        case ItemType.SYMLINK:
            return SymlinkItem(json, role, app_config, installable)
        case ItemType.PERLSCRIPT:
            return PerlscriptItem(json, role, app_config, installable)
        case ItemType.SQLSCRIPT:
            return SqlscriptItem(json, role, app_config, installable)
        case ItemType.SYSTEMD_SERVICE:
            return SystemdServiceItem(json, role, app_config, installable)
        case ItemType.SYSTEMD_TIMER:
            return SystemdTimerItem(json, role, app_config, installable)
        case ItemType.DATABASE:
            return DatabaseItem(json, role, app_config, installable)
        case ItemType.TCPPORT:
            return TcpPortItem(json, role, app_config, installable)
        case ItemType.UDPPORT:
            return UdpPortItem(json, role, app_config, installable)
    raise ManifestError(f"Unhandled appconfigitem type '{item_type}'")


__all__ = [
    "AppConfigurationItem",
    "DatabaseItem",
    "DirectoryItem",
    "DirectoryTreeItem",
    "FileItem",
    "ItemType",
    "PerlscriptItem",
    "SqlscriptItem",
    "SymlinkItem",
    "SystemdServiceItem",
    "SystemdTimerItem",
    "TcpPortItem",
    "UdpPortItem",
    "instantiate",
]
