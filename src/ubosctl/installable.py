"""Installable packages and their JSON manifests."""
from __future__ import annotations

import json
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, NoReturn

from .variables import Variables

INSTALLABLE_KINDS = ("app", "accessory")
_PACKAGE_NAME = re.compile(r"^[a-z0-9][-_.+a-z0-9]*$")


class ManifestError(RuntimeError):
    """Raised when a manifest violates the manifest schema."""


@dataclass(slots=True)
class Installable:
    """An app or accessory package together with its manifest JSON."""

    package_name: str
    installable_json: Mapping[str, Any]

    @classmethod
    def from_file(cls, path: Path, package_name: str | None = None) -> Installable:
        """Load a manifest file; the package name defaults to the file stem."""
        name = package_name or path.stem
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise ManifestError(f"No manifest found for package {name} at {path}.") from exc
        except (OSError, json.JSONDecodeError) as exc:
            raise ManifestError(f"Cannot read manifest for package {name}: {exc}") from exc
        if not isinstance(data, Mapping):
            raise ManifestError(f"Manifest JSON for package {name}: top level must be an object.")
        return cls(package_name=name, installable_json=data)

    @property
    def kind(self) -> str | None:
        """Return the manifest ``type`` (``app`` or ``accessory``)."""
        value = self.installable_json.get("type")
        return value if isinstance(value, str) else None

    @property
    def is_app(self) -> bool:
        """Return True when this installable is an app."""
        return self.kind == "app"

    @property
    def role_names(self) -> list[str]:
        """Return the role names declared by the manifest, in manifest order."""
        roles = self.installable_json.get("roles")
        if not isinstance(roles, Mapping):
            return []
        return [str(name) for name in roles]

    def role_json(self, role_name: str) -> Mapping[str, Any] | None:
        """Return the manifest fragment for *role_name*, if declared."""
        roles = self.installable_json.get("roles")
        if not isinstance(roles, Mapping):
            return None
        fragment = roles.get(role_name)
        return fragment if isinstance(fragment, Mapping) else None

    def app_config_items_in_role(self, role_name: str) -> list[Mapping[str, Any]]:
        """Return the ``appconfigitems`` of *role_name* (empty if none)."""
        fragment = self.role_json(role_name)
        if fragment is None:
            return []
        items = fragment.get("appconfigitems")
        return list(items) if isinstance(items, list) else []

    def customization_points(self) -> Mapping[str, Any]:
        """Return the declared customization points."""
        points = self.installable_json.get("customizationpoints")
        return points if isinstance(points, Mapping) else {}

    def my_fatal(self, message: str) -> NoReturn:
        """Raise a :class:`ManifestError` naming this package."""
        raise ManifestError(f"Manifest JSON for package {self.package_name}: {message}")

    def check_vars(self, host_vars: Variables) -> Variables:
        """Return variables suitable for validating this manifest."""
        return host_vars.child(f"installable:{self.package_name}", {"package.name": self.package_name})


class ManifestStore:
    """Lookup of installables by package name.

    Manifests are read lazily from ``<manifest_dir>/<package>.json``; manifests
    embedded in backups are registered with :meth:`add`.
    """

    def __init__(self, manifest_dir: Path | None = None, installables: Iterable[Installable] = ()) -> None:
        self.manifest_dir = manifest_dir
        self._cache: dict[str, Installable] = {}
        for installable in installables:
            self.add(installable)

    def add(self, installable: Installable) -> None:
        """Register *installable*, replacing any earlier manifest of that name."""
        self._cache[installable.package_name] = installable

    def get(self, package_name: str) -> Installable:
        """Return the installable for *package_name*."""
        cached = self._cache.get(package_name)
        if cached is not None:
            return cached
        if not _PACKAGE_NAME.match(package_name):
            raise ManifestError(f"Invalid package name '{package_name}'.")
        if self.manifest_dir is None:
            raise ManifestError(f"Unknown package '{package_name}'.")
        installable = Installable.from_file(self.manifest_dir / f"{package_name}.json", package_name)
        self._cache[package_name] = installable
        return installable

    def __contains__(self, package_name: object) -> bool:
        return package_name in self._cache


def valid_filename(code_dir: str | Path, filename: str, name: str | None = None) -> bool:
    """Return True when *filename* exists, relative names resolved in *code_dir*.

    ``$1`` and ``$2`` in *filename* stand for *name* and its basename.
    """
    if name is not None:
        filename = filename.replace("$1", name).replace("$2", name.rsplit("/", 1)[-1])
    path = Path(filename)
    if not path.is_absolute():
        path = Path(code_dir) / path
    return path.exists() or path.is_symlink()


__all__ = [
    "INSTALLABLE_KINDS",
    "Installable",
    "ManifestError",
    "ManifestStore",
    "valid_filename",
]
