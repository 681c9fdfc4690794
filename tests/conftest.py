"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import gzip
import json
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

import pytest

from ubosctl.config import AppConfig, load_config
from ubosctl.installable import Installable
from ubosctl.providers.database import GZIP_MAGIC, DatabaseError
from ubosctl.providers.scripts import ScriptError
from ubosctl.providers.systemd import SystemdError
from ubosctl.runtime import RuntimeContext, build_runtime
from ubosctl.site import Site
from ubosctl.templates import template_processors


class FakeSystemd:
    """Records systemctl calls instead of running them."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self.failing: set[str] = set()

    def _call(self, action: str, unit: str) -> None:
        self.calls.append((action, unit))
        if unit in self.failing:
            raise SystemdError(f"systemctl {action} {unit} failed (exit 1): boom")

    def enable(self, unit: str) -> None:
        self._call("enable", unit)

    def disable(self, unit: str) -> None:
        self._call("disable", unit)

    def start(self, unit: str) -> None:
        self._call("start", unit)

    def stop(self, unit: str) -> None:
        self._call("stop", unit)

    def run_action(self, action: str, unit: str) -> None:
        self._call(action, unit)


class FakeDatabase:
    """In-memory stand-in for the mysql provider."""

    def __init__(self) -> None:
        self.databases: dict[str, str] = {}
        self.users: dict[str, str] = {}
        self.scripts: list[tuple[str, str, str | None]] = []

    def provision(self, dbname: str, dbuser: str, credential: str, privileges: str) -> None:
        if dbname in self.databases:
            raise DatabaseError(f"database {dbname} exists")
        self.databases[dbname] = ""
        self.users[dbuser] = credential

    def unprovision(self, dbname: str, dbuser: str) -> None:
        self.databases.pop(dbname, None)
        self.users.pop(dbuser, None)

    def run_sql(self, dbname: str, sql: str, delimiter: str | None = None) -> None:
        if dbname not in self.databases:
            raise DatabaseError(f"unknown database {dbname}")
        self.scripts.append((dbname, sql, delimiter))
        self.databases[dbname] += sql

    def export(self, dbname: str, target: Path, compress: str | None = None) -> None:
        data = self.databases[dbname].encode("utf-8")
        if compress == "gz":
            with gzip.open(target, "wb") as handle:
                handle.write(data)
        else:
            target.write_bytes(data)

    def import_(self, dbname: str, source: Path) -> None:
        raw = source.read_bytes()
        if raw[:2] == GZIP_MAGIC:
            raw = gzip.decompress(raw)
        self.databases[dbname] = raw.decode("utf-8")


class FakePerl:
    """Records perl invocations; templates render to a fixed marker."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self.failing: set[str] = set()

    def run_script(self, script: Path, operation: str, variables: Mapping[str, str]) -> None:
        self.calls.append((script.name, operation))
        if script.name in self.failing:
            raise ScriptError(f"perl {script} {operation} failed (exit 1): boom")

    def run_code(self, code: str, operation: str, variables: Mapping[str, str]) -> None:
        self.calls.append(("<code>", operation))

    def render(self, code: str, variables: Mapping[str, str]) -> str:
        return f"rendered for {variables.get('appconfig.appconfigid', '?')}\n"


@pytest.fixture()
def fake_systemd() -> FakeSystemd:
    """Return a recording systemd provider."""
    return FakeSystemd()


@pytest.fixture()
def fake_database() -> FakeDatabase:
    """Return an in-memory database provider."""
    return FakeDatabase()


@pytest.fixture()
def fake_perl() -> FakePerl:
    """Return a recording perl runner."""
    return FakePerl()


@pytest.fixture()
def host_overrides(tmp_path: Path) -> dict[str, object]:
    """Configuration overrides that keep every path below ``tmp_path``."""
    (tmp_path / "tmp").mkdir()
    return {
        "state_dir": str(tmp_path / "state"),
        "logs_dir": str(tmp_path / "logs"),
        "manifest_dir": str(tmp_path / "manifests"),
        "sites_dir": str(tmp_path / "sites"),
        "backups": {
            "update_dir": str(tmp_path / "update"),
            "legacy_update_dir": str(tmp_path / "legacy-update"),
        },
        "variables": {
            "host.tmpdir": str(tmp_path / "tmp"),
            "package.codedir": str(tmp_path / "code" / "${package.name}"),
            "site.apache2.sitedocumentdir": str(tmp_path / "http" / "${site.siteid}"),
            "appconfig.apache2.dir": str(tmp_path / "http" / "${site.siteid}${appconfig.context}"),
            "appconfig.datadir": str(tmp_path / "data" / "${appconfig.appconfigid}"),
        },
    }


@pytest.fixture()
def config(tmp_path: Path, host_overrides: dict[str, object]) -> AppConfig:
    """Return a configuration rooted in ``tmp_path``."""
    return load_config(config_file=tmp_path / "absent.yml", env={}, overrides=host_overrides)


@pytest.fixture()
def runtime(
    config: AppConfig,
    fake_systemd: FakeSystemd,
    fake_database: FakeDatabase,
    fake_perl: FakePerl,
) -> RuntimeContext:
    """Return a runtime whose external commands are all fakes."""
    runtime = build_runtime(config)
    runtime.systemd = fake_systemd  # type: ignore[assignment]
    runtime.perl = fake_perl  # type: ignore[assignment]
    runtime.databases = {"mysql": fake_database, "postgresql": None}  # type: ignore[dict-item]
    runtime.processors = template_processors(fake_perl)  # type: ignore[arg-type]
    return runtime


@pytest.fixture()
def make_installable(tmp_path: Path, config: AppConfig) -> Callable[..., Installable]:
    """Write a manifest (and its code files) and return the installable."""

    def factory(
        name: str,
        manifest: Mapping[str, Any],
        files: Mapping[str, str] | None = None,
    ) -> Installable:
        code_dir = tmp_path / "code" / name
        code_dir.mkdir(parents=True, exist_ok=True)
        for relative, content in (files or {}).items():
            target = code_dir / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        config.manifest_dir.mkdir(parents=True, exist_ok=True)
        (config.manifest_dir / f"{name}.json").write_text(json.dumps(manifest), encoding="utf-8")
        return Installable(name, manifest)

    return factory


@pytest.fixture()
def make_site(runtime: RuntimeContext) -> Callable[..., Site]:
    """Build a Site with one AppConfiguration per ``(appconfigid, appid)`` pair."""

    def factory(
        site_id: str = "s1",
        app_configs: list[tuple[str, str]] | None = None,
        *,
        context: str = "",
        accessories: list[str] | None = None,
    ) -> Site:
        entries = [
            {
                "appconfigid": app_config_id,
                "appid": app_id,
                "context": context,
                "accessoryids": list(accessories or []),
            }
            for app_config_id, app_id in (app_configs or [("a1", "demo")])
        ]
        site_json = {"siteid": site_id, "hostname": f"{site_id}.example.com", "appconfigs": entries}
        return Site.from_json(site_json, runtime.manifests, runtime.host_vars())

    return factory
