"""Port and database reservations backed by the state registry."""
from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Any, Literal

from .state import StateRegistry

Protocol = Literal["tcp", "udp"]
_CREDENTIAL_ALPHABET = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"


class ResourceError(RuntimeError):
    """Raised when a reservation cannot be made or released."""


@dataclass(frozen=True, slots=True)
class DatabaseReservation:
    """A provisioned database owned by one (appconfig, package, role, name)."""

    app_config_id: str
    package_name: str
    role_name: str
    name: str
    dbname: str
    dbuser: str
    credential: str
    privileges: str

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "appconfigid": self.app_config_id,
            "package": self.package_name,
            "role": self.role_name,
            "name": self.name,
            "dbname": self.dbname,
            "dbuser": self.dbuser,
            "credential": self.credential,
            "privileges": self.privileges,
        }

    @classmethod
    def from_dict(cls, entry: dict[str, Any]) -> DatabaseReservation:
        """Build a reservation from a registry entry."""
        try:
            return cls(
                app_config_id=str(entry["appconfigid"]),
                package_name=str(entry["package"]),
                role_name=str(entry["role"]),
                name=str(entry["name"]),
                dbname=str(entry["dbname"]),
                dbuser=str(entry["dbuser"]),
                credential=str(entry["credential"]),
                privileges=str(entry.get("privileges", "")),
            )
        except KeyError as exc:
            raise ResourceError(f"Database registry entry missing field {exc}.") from exc


@dataclass(slots=True)
class ResourceManager:
    """Manage ``ports.yml`` and ``databases.yml`` reservations."""

    registry: StateRegistry
    tcp_base: int = 7000
    udp_base: int = 7000

    def __post_init__(self) -> None:
        """Validate initialiser parameters."""
        if self.tcp_base < 1 or self.udp_base < 1:
            raise ResourceError("Base ports must be positive integers.")

    # Ports ------------------------------------------------------------
    def list_ports(self, protocol: Protocol | None = None) -> list[dict[str, Any]]:
        """Return port reservations sorted by port, optionally for one protocol."""
        entries: list[dict[str, Any]] = []
        for item in self.registry.read_ports():
            try:
                port = int(item["port"])
            except (KeyError, TypeError, ValueError):
                continue
            entry = {
                "appconfigid": str(item.get("appconfigid", "")),
                "name": str(item.get("name", "")),
                "protocol": str(item.get("protocol", "tcp")),
                "port": port,
            }
            if protocol is None or entry["protocol"] == protocol:
                entries.append(entry)
        entries.sort(key=lambda entry: (entry["protocol"], entry["port"]))
        return entries

    def get_port(self, app_config_id: str, name: str, protocol: Protocol) -> int | None:
        """Return the port reserved for *name* at *app_config_id*, if any."""
        for entry in self.list_ports(protocol):
            if entry["appconfigid"] == app_config_id and entry["name"] == name:
                return int(entry["port"])
        return None

    def reserve_port(self, app_config_id: str, name: str, protocol: Protocol) -> int:
        """Reserve a port and return it; an existing reservation is reused."""
        _require(app_config_id, "AppConfiguration id")
        _require(name, "Port name")
        existing = self.get_port(app_config_id, name, protocol)
        if existing is not None:
            return existing

        entries = self.list_ports()
        used = {entry["port"] for entry in entries if entry["protocol"] == protocol}
        candidate = self.tcp_base if protocol == "tcp" else self.udp_base
        while candidate in used:
            candidate += 1
        if candidate > 65535:
            raise ResourceError(f"No free {protocol} port left above the configured base.")

        entries.append(
            {"appconfigid": app_config_id, "name": name, "protocol": protocol, "port": candidate}
        )
        self.registry.write_ports(entries)
        return candidate

    def release_port(self, app_config_id: str, name: str, protocol: Protocol) -> int:
        """Release a reservation and return the freed port."""
        entries = self.list_ports()
        kept: list[dict[str, Any]] = []
        released: int | None = None
        for entry in entries:
            if (
                entry["appconfigid"] == app_config_id
                and entry["name"] == name
                and entry["protocol"] == protocol
            ):
                released = int(entry["port"])
                continue
            kept.append(entry)
        if released is None:
            raise ResourceError(
                f"No {protocol} port reservation found for '{name}' at {app_config_id}."
            )
        self.registry.write_ports(kept)
        return released

    # Databases --------------------------------------------------------
    def list_databases(self) -> list[DatabaseReservation]:
        """Return all provisioned databases."""
        return [DatabaseReservation.from_dict(entry) for entry in self.registry.read_databases()]

    def get_database(
        self,
        app_config_id: str,
        package_name: str,
        name: str,
    ) -> DatabaseReservation | None:
        """Return the reservation for a symbolic database name, if any."""
        for reservation in self.list_databases():
            if (
                reservation.app_config_id == app_config_id
                and reservation.package_name == package_name
                and reservation.name == name
            ):
                return reservation
        return None

    def allocate_database(
        self,
        app_config_id: str,
        package_name: str,
        role_name: str,
        name: str,
        privileges: str,
    ) -> DatabaseReservation:
        """Generate credentials for a new database without recording it yet."""
        _require(app_config_id, "AppConfiguration id")
        _require(name, "Database name")
        suffix = secrets.token_hex(4)
        return DatabaseReservation(
            app_config_id=app_config_id,
            package_name=package_name,
            role_name=role_name,
            name=name,
            dbname=_database_identifier(name, suffix),
            dbuser=_database_identifier(f"u{name}", suffix)[:32],
            credential="".join(secrets.choice(_CREDENTIAL_ALPHABET) for _ in range(24)),
            privileges=privileges,
        )

    def record_database(self, reservation: DatabaseReservation) -> None:
        """Persist a provisioned database."""
        entries = [entry.to_dict() for entry in self.list_databases()]
        entries.append(reservation.to_dict())
        self.registry.write_databases(entries)

    def forget_database(self, reservation: DatabaseReservation) -> None:
        """Remove a database from the registry."""
        entries = self.list_databases()
        kept = [entry.to_dict() for entry in entries if entry != reservation]
        if len(kept) == len(entries):
            raise ResourceError(f"Database '{reservation.name}' is not registered.")
        self.registry.write_databases(kept)


def _database_identifier(name: str, suffix: str) -> str:
    cleaned = "".join(char if char.isalnum() else "_" for char in name.lower())
    return f"{cleaned[:40]}_{suffix}"


def _require(value: str, label: str) -> None:
    if not value or not value.strip():
        raise ResourceError(f"{label} must be a non-empty string.")


__all__ = ["DatabaseReservation", "Protocol", "ResourceError", "ResourceManager"]
