"""Per-invocation runtime objects shared by roles, items and backups."""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

from .config import AppConfig
from .installable import ManifestStore
from .logging import StructuredLogger
from .providers.database import DatabaseProvider
from .providers.scripts import PerlRunner
from .providers.systemd import SystemdProvider
from .resources import ResourceManager
from .role import Role, roles_on_host
from .state import StateRegistry
from .templates import TemplateProcessor, template_processors
from .variables import Variables

# postgresql items are accepted in manifests but have no provider yet
DATABASE_ROLES = ("mysql", "postgresql")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects for one command invocation."""

    config: AppConfig
    registry: StateRegistry
    resources: ResourceManager
    systemd: SystemdProvider
    perl: PerlRunner
    databases: Mapping[str, DatabaseProvider | None]
    manifests: ManifestStore
    logger: StructuredLogger
    processors: Mapping[str, TemplateProcessor] = field(default_factory=dict)
    dry_run: bool = False
    _roles: dict[str, Role] | None = field(default=None, repr=False)

    def host_vars(self) -> Variables:
        """Return the host-level variable layer from the configuration."""
        return Variables("host", self.config.variables)

    def template_processor(self, language: str) -> TemplateProcessor:
        """Return the processor for ``templatelang`` *language*."""
        processor = self.processors.get(language)
        if processor is None:
            raise ValueError(f"Unknown template language '{language}'")
        return processor

    def database_provider(self, role_name: str) -> DatabaseProvider | None:
        """Return the database provider for *role_name*, if the host has one."""
        return self.databases.get(role_name)

    def roles_on_host(self) -> dict[str, Role]:
        """Return the roles enabled on this host, keyed by name, in configured order."""
        if self._roles is None:
            self._roles = roles_on_host(self)
        return self._roles


def build_runtime(config: AppConfig, *, dry_run: bool = False) -> RuntimeContext:
    """Create the runtime objects for *config*."""
    registry = StateRegistry(config.registry_dir)
    resources = ResourceManager(
        registry,
        tcp_base=config.ports.tcp_base,
        udp_base=config.ports.udp_base,
    )
    systemd = SystemdProvider(systemctl_bin=config.systemd.systemctl_bin, dry_run=dry_run)
    perl = PerlRunner(perl_bin=config.scripts.perl_bin, dry_run=dry_run)
    mysql = DatabaseProvider(
        client_bin=config.database.client_bin,
        dump_bin=config.database.dump_bin,
        defaults_file=config.database.defaults_file,
        host=config.database.host,
        dry_run=dry_run,
    )
    databases: dict[str, DatabaseProvider | None] = {name: None for name in DATABASE_ROLES}
    databases["mysql"] = mysql
    return RuntimeContext(
        config=config,
        registry=registry,
        resources=resources,
        systemd=systemd,
        perl=perl,
        databases=databases,
        manifests=ManifestStore(config.manifest_dir),
        logger=StructuredLogger(config.logs_dir),
        processors=template_processors(perl),
        dry_run=dry_run,
    )


__all__ = ["DATABASE_ROLES", "RuntimeContext", "build_runtime"]
