"""Configuration loader for ubosctl.

This module centralises the logic for reading configuration values from
multiple sources:

1. Built-in defaults.
2. ``/etc/ubosctl/config.yml`` (or an override path).
3. Environment variables prefixed with ``UBOSCTL_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export UBOSCTL_PORTS__TCP_BASE=8000
    export UBOSCTL_BACKUPS__UPDATE_DIR=/srv/update-backup

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses`` for convenient access and type safety.

The ``variables`` section is the host-level layer of the variables resolver:
every key in it can be referenced from manifests as ``${key}``.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in tests
    raise RuntimeError(
        "PyYAML is required to load ubosctl configuration. Install with "
        "`pip install ubosctl` or ensure PyYAML>=6.0 is available."
    ) from exc


ENV_PREFIX = "UBOSCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class PortsConfig:
    """Port reservation defaults for tcpport/udpport items."""

    tcp_base: int = 7000
    udp_base: int = 7000

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"tcp_base": self.tcp_base, "udp_base": self.udp_base}


@dataclass(frozen=True)
class BackupConfig:
    """Locations used by update backups."""

    update_dir: Path = Path("/ubos/backups/update")
    legacy_update_dir: Path = Path("/var/lib/ubos/backups/update")

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "update_dir": str(self.update_dir),
            "legacy_update_dir": str(self.legacy_update_dir),
        }


@dataclass(frozen=True)
class SystemdConfig:
    """Systemd integration configuration values."""

    systemctl_bin: str = "systemctl"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"systemctl_bin": self.systemctl_bin}


@dataclass(frozen=True)
class DatabaseConfig:
    """Command line clients used to provision and dump databases."""

    client_bin: str = "mysql"
    dump_bin: str = "mysqldump"
    defaults_file: Path | None = None
    host: str = "localhost"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "client_bin": self.client_bin,
            "dump_bin": self.dump_bin,
            "defaults_file": str(self.defaults_file) if self.defaults_file else None,
            "host": self.host,
        }


@dataclass(frozen=True)
class ScriptsConfig:
    """Interpreters for perlscript items and templates."""

    perl_bin: str = "perl"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"perl_bin": self.perl_bin}


@dataclass(frozen=True)
class TriggerAction:
    """systemctl action executed when a trigger has been activated."""

    action: str
    unit: str

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"action": self.action, "unit": self.unit}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for ubosctl."""

    config_file: Path
    state_dir: Path
    registry_dir: Path
    logs_dir: Path
    manifest_dir: Path
    sites_dir: Path
    ports: PortsConfig
    backups: BackupConfig
    systemd: SystemdConfig
    database: DatabaseConfig
    scripts: ScriptsConfig
    roles: tuple[str, ...]
    variables: Mapping[str, str] = field(default_factory=dict)
    triggers: Mapping[str, TriggerAction] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "state_dir": str(self.state_dir),
            "registry_dir": str(self.registry_dir),
            "logs_dir": str(self.logs_dir),
            "manifest_dir": str(self.manifest_dir),
            "sites_dir": str(self.sites_dir),
            "ports": self.ports.to_dict(),
            "backups": self.backups.to_dict(),
            "systemd": self.systemd.to_dict(),
            "database": self.database.to_dict(),
            "scripts": self.scripts.to_dict(),
            "roles": list(self.roles),
            "variables": dict(self.variables),
            "triggers": {name: action.to_dict() for name, action in self.triggers.items()},
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/ubosctl/config.yml",
    "state_dir": "/var/lib/ubosctl",
    "registry_dir": None,  # derived from state_dir when absent
    "logs_dir": "/var/log/ubosctl",
    "manifest_dir": "/ubos/lib/ubos/manifests",
    "sites_dir": "/ubos/lib/ubos/sites",
    "ports": {
        "tcp_base": 7000,
        "udp_base": 7000,
    },
    "backups": {
        "update_dir": "/ubos/backups/update",
        "legacy_update_dir": "/var/lib/ubos/backups/update",
    },
    "systemd": {
        "systemctl_bin": "systemctl",
    },
    "database": {
        "client_bin": "mysql",
        "dump_bin": "mysqldump",
        "defaults_file": None,
        "host": "localhost",
    },
    "scripts": {
        "perl_bin": "perl",
    },
    "roles": ["mysql", "postgresql", "generic", "tomcat8", "apache2"],
    "variables": {
        "host.tmpdir": "/var/tmp",
        "package.codedir": "/ubos/share/${package.name}",
        "package.datadir": "/ubos/lib/${package.name}",
        "site.apache2.sitedocumentdir": "/ubos/http/sites/${site.siteid}",
        "appconfig.apache2.dir": "/ubos/http/sites/${site.siteid}${appconfig.context}",
        "appconfig.datadir": "/ubos/lib/${package.name}/${appconfig.appconfigid}",
        "appconfig.cachedir": "/ubos/cache/${package.name}/${appconfig.appconfigid}",
    },
    "triggers": {
        "httpd-reload": {"action": "reload-or-restart", "unit": "httpd.service"},
        "httpd-restart": {"action": "restart", "unit": "httpd.service"},
        "tomcat8-reload": {"action": "restart", "unit": "tomcat8.service"},
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_SECTION_KEYS: dict[str, set[str]] = {
    "ports": {"tcp_base", "udp_base"},
    "backups": {"update_dir", "legacy_update_dir"},
    "systemd": {"systemctl_bin"},
    "database": {"client_bin", "dump_bin", "defaults_file", "host"},
    "scripts": {"perl_bin"},
}
ALLOWED_TRIGGER_ACTIONS = {"reload", "restart", "reload-or-restart", "start", "stop"}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in ALLOWED_SECTION_KEYS.items():
        section_map = _as_dict(raw.get(section), section)
        unknown = set(section_map.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    roles = raw.get("roles")
    if roles is not None:
        for index, role in enumerate(_as_sequence(roles, "roles")):
            if not isinstance(role, str) or not role.strip():
                raise ConfigError(f"roles[{index}] must be a non-empty string.")

    variables = _as_dict(raw.get("variables"), "variables")
    for key, value in variables.items():
        if isinstance(value, (Mapping, list)):
            raise ConfigError(f"variables.{key} must be a scalar value.")

    triggers = _as_dict(raw.get("triggers"), "triggers")
    for name, entry in triggers.items():
        entry_map = _as_dict(entry, f"triggers.{name}")
        unknown = set(entry_map.keys()) - {"action", "unit"}
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown keys for triggers.{name}: {joined}.")
        action = str(entry_map.get("action", ""))
        if action not in ALLOWED_TRIGGER_ACTIONS:
            allowed = ", ".join(sorted(ALLOWED_TRIGGER_ACTIONS))
            raise ConfigError(
                f"Unsupported action '{action}' for trigger '{name}'. Allowed: {allowed}."
            )
        if not str(entry_map.get("unit", "")).strip():
            raise ConfigError(f"triggers.{name}.unit must be a non-empty string.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    config_file = _to_path(raw.get("config_file"))
    state_dir = _to_path(raw.get("state_dir"))
    logs_dir = _to_path(raw.get("logs_dir"))
    manifest_dir = _to_path(raw.get("manifest_dir"))
    sites_dir = _to_path(raw.get("sites_dir"))

    registry_dir_value = raw.get("registry_dir")
    registry_dir = _to_path(registry_dir_value) if registry_dir_value else state_dir / "registry"

    ports_mapping = _as_dict(raw.get("ports"), "ports")
    ports = PortsConfig(
        tcp_base=_expect_port(ports_mapping.get("tcp_base"), "ports.tcp_base", default=7000),
        udp_base=_expect_port(ports_mapping.get("udp_base"), "ports.udp_base", default=7000),
    )

    backups_mapping = _as_dict(raw.get("backups"), "backups")
    backups = BackupConfig(
        update_dir=_to_path(backups_mapping.get("update_dir", "/ubos/backups/update")),
        legacy_update_dir=_to_path(
            backups_mapping.get("legacy_update_dir", "/var/lib/ubos/backups/update")
        ),
    )

    systemd_mapping = _as_dict(raw.get("systemd"), "systemd")
    systemd = SystemdConfig(
        systemctl_bin=str(systemd_mapping.get("systemctl_bin", "systemctl")),
    )

    database_mapping = _as_dict(raw.get("database"), "database")
    defaults_file_value = database_mapping.get("defaults_file")
    database = DatabaseConfig(
        client_bin=str(database_mapping.get("client_bin", "mysql")),
        dump_bin=str(database_mapping.get("dump_bin", "mysqldump")),
        defaults_file=_to_path(defaults_file_value) if defaults_file_value else None,
        host=str(database_mapping.get("host", "localhost")),
    )

    scripts_mapping = _as_dict(raw.get("scripts"), "scripts")
    scripts = ScriptsConfig(perl_bin=str(scripts_mapping.get("perl_bin", "perl")))

    roles_raw = raw.get("roles")
    roles = tuple(
        str(role).strip() for role in _as_sequence(roles_raw if roles_raw else [], "roles")
    )

    variables = {
        key: "" if value is None else str(value)
        for key, value in _as_dict(raw.get("variables"), "variables").items()
    }

    triggers: dict[str, TriggerAction] = {}
    for name, entry in _as_dict(raw.get("triggers"), "triggers").items():
        entry_map = _as_dict(entry, f"triggers.{name}")
        triggers[name] = TriggerAction(
            action=str(entry_map["action"]),
            unit=str(entry_map["unit"]).strip(),
        )

    return AppConfig(
        config_file=config_file,
        state_dir=state_dir,
        registry_dir=registry_dir,
        logs_dir=logs_dir,
        manifest_dir=manifest_dir,
        sites_dir=sites_dir,
        ports=ports,
        backups=backups,
        systemd=systemd,
        database=database,
        scripts=scripts,
        roles=roles,
        variables=variables,
        triggers=triggers,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    if not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_port(value: object | None, label: str, *, default: int) -> int:
    port = _expect_int(value, label, default=default)
    if port < 1 or port > 65535:
        raise ConfigError(f"{label} must be between 1 and 65535. Got {port}.")
    return port


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "BackupConfig",
    "ConfigError",
    "DatabaseConfig",
    "PortsConfig",
    "ScriptsConfig",
    "SystemdConfig",
    "TriggerAction",
    "load_config",
]
