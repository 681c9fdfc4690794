"""Helpers for interacting with the ubosctl state registry.

The registry directory (``/var/lib/ubosctl/registry`` by default) stores YAML
artifacts such as ``ports.yml`` and ``databases.yml``. Each file is rewritten
atomically so an interrupted command never leaves a half-written registry.
"""
from __future__ import annotations

import os
import tempfile
from collections.abc import Iterable, Mapping
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path
from typing import Any

try:  # PyYAML is a runtime dependency declared in pyproject.toml
    import yaml
except Exception as exc:  # pragma: no cover - import failure handled in tests
    raise RuntimeError(
        "PyYAML is required to manage ubosctl state. Install with `pip install ubosctl`."
    ) from exc

PORTS_FILE = "ports.yml"
DATABASES_FILE = "databases.yml"


class StateRegistryError(RuntimeError):
    """Raised when state registry operations fail."""


@dataclass(frozen=True)
class StateRegistry:
    """High-level interface to the YAML registry."""

    root: Path

    def __post_init__(self) -> None:
        """Normalise the root path after initialisation."""
        object.__setattr__(self, "root", self.root.expanduser())

    def ensure_root(self) -> None:
        """Create the registry directory if it does not yet exist."""
        self.root.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Public helpers
    # ------------------------------------------------------------------
    def path_for(self, name: str) -> Path:
        """Return the filesystem path for a named registry file."""
        return self.root / name

    def read(self, name: str, *, default: object | None = None) -> object | None:
        """Read a registry file, returning *default* when missing."""
        path = self.path_for(name)
        if not path.exists():
            return deepcopy(default)
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:  # pragma: no cover - delegated to PyYAML
            raise StateRegistryError(f"Failed to parse registry file {path}: {exc}") from exc
        return data if data is not None else deepcopy(default)

    def write(self, name: str, payload: Mapping[str, object]) -> None:
        """Atomically write *payload* to the given registry file."""
        self.ensure_root()
        path = self.path_for(name)

        tmp_fd, tmp_name = tempfile.mkstemp(dir=str(self.root), prefix=f".{path.name}.")
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                yaml.safe_dump(payload, handle, sort_keys=False)
            os.replace(tmp_path, path)
            os.chmod(path, 0o640)
        finally:
            tmp_path.unlink(missing_ok=True)

    # Convenience wrappers -------------------------------------------------
    def read_ports(self) -> list[dict[str, Any]]:
        """Return the port reservations stored in ``ports.yml``."""
        return _load_entries(self.read(PORTS_FILE, default={"ports": []}), "ports")

    def write_ports(self, entries: Iterable[Mapping[str, object]]) -> None:
        """Persist port reservations to ``ports.yml``."""
        self.write(PORTS_FILE, {"ports": [dict(entry) for entry in entries]})

    def read_databases(self) -> list[dict[str, Any]]:
        """Return the provisioned databases stored in ``databases.yml``."""
        return _load_entries(self.read(DATABASES_FILE, default={"databases": []}), "databases")

    def write_databases(self, entries: Iterable[Mapping[str, object]]) -> None:
        """Persist provisioned databases to ``databases.yml``."""
        self.write(DATABASES_FILE, {"databases": [dict(entry) for entry in entries]})


def _load_entries(raw: object, key: str) -> list[dict[str, Any]]:
    if not isinstance(raw, Mapping):
        raise StateRegistryError(f"Registry file for '{key}' must contain a mapping.")
    raw_entries = raw.get(key, [])
    if raw_entries is None:
        return []
    if not isinstance(raw_entries, list):
        raise StateRegistryError(f"Registry key '{key}' must contain a list.")
    entries: list[dict[str, Any]] = []
    for index, item in enumerate(raw_entries):
        if not isinstance(item, Mapping):
            raise StateRegistryError(f"Registry entry {key}[{index}] must be a mapping.")
        entries.append(dict(item))
    return entries


__all__ = ["DATABASES_FILE", "PORTS_FILE", "StateRegistry", "StateRegistryError"]
