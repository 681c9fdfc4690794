"""Sites and the app configurations deployed at them."""
from __future__ import annotations

from collections.abc import Mapping
from copy import deepcopy
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .installable import Installable, ManifestStore
from .variables import Variables

if TYPE_CHECKING:
    from .resources import ResourceManager


class SiteError(RuntimeError):
    """Raised when Site JSON or AppConfiguration JSON is malformed."""


@dataclass(slots=True)
class AppConfiguration:
    """One app (plus accessories) deployed at a context path of a site."""

    app_configuration_json: Mapping[str, Any]
    installables: list[Installable]
    host_vars: Variables
    site: Site | None = None

    @classmethod
    def from_json(
        cls,
        json_value: Mapping[str, Any],
        manifests: ManifestStore,
        host_vars: Variables,
        site: Site | None = None,
    ) -> AppConfiguration:
        """Build an AppConfiguration, resolving its app and accessories."""
        if not isinstance(json_value, Mapping):
            raise SiteError("AppConfiguration JSON must be an object.")
        for key in ("appconfigid", "appid"):
            if not isinstance(json_value.get(key), str) or not json_value[key]:
                raise SiteError(f"AppConfiguration JSON: field '{key}' must be a non-empty string.")
        accessories = json_value.get("accessoryids", [])
        if not isinstance(accessories, list):
            raise SiteError("AppConfiguration JSON: field 'accessoryids' must be an array.")
        installables = [manifests.get(json_value["appid"])]
        installables.extend(manifests.get(str(accessory)) for accessory in accessories)
        return cls(dict(json_value), installables, host_vars, site)

    @property
    def app_config_id(self) -> str:
        """Return the AppConfiguration id."""
        return str(self.app_configuration_json["appconfigid"])

    @property
    def app_id(self) -> str:
        """Return the package name of the app."""
        return str(self.app_configuration_json["appid"])

    @property
    def context(self) -> str:
        """Return the context path, empty for the root of the site."""
        return str(self.app_configuration_json.get("context", "") or "")

    def vars(self) -> Variables:
        """Return the site and AppConfiguration variable layers."""
        base = self.host_vars
        if self.site is not None:
            base = base.child(f"site:{self.site.site_id}", self.site.site_vars())
        return base.child(
            f"appconfig:{self.app_config_id}",
            {
                "appconfig.appconfigid": self.app_config_id,
                "appconfig.appid": self.app_id,
                "appconfig.context": self.context,
                "appconfig.contextorslash": self.context or "/",
            },
        )

    def obtain_installable_vars(
        self,
        installable: Installable,
        resources: ResourceManager | None = None,
    ) -> Variables:
        """Return the variables of *installable* as deployed at this AppConfiguration."""
        values: dict[str, object] = {"package.name": installable.package_name}

        configured = self.app_configuration_json.get("customizationpoints", {})
        package_points = configured.get(installable.package_name, {}) if isinstance(configured, Mapping) else {}
        for name, declaration in installable.customization_points().items():
            value: object = None
            if isinstance(package_points, Mapping) and isinstance(package_points.get(name), Mapping):
                value = package_points[name].get("value")
            elif isinstance(declaration, Mapping) and isinstance(declaration.get("default"), Mapping):
                value = declaration["default"].get("value")
            values[f"installable.customizationpoints.{name}.value"] = value

        if resources is not None:
            for entry in resources.list_ports():
                if entry["appconfigid"] == self.app_config_id:
                    values[f"appconfig.{entry['protocol']}port.{entry['name']}"] = entry["port"]
            for database in resources.list_databases():
                if (
                    database.app_config_id == self.app_config_id
                    and database.package_name == installable.package_name
                ):
                    prefix = f"appconfig.{database.role_name}"
                    values[f"{prefix}.dbname.{database.name}"] = database.dbname
                    values[f"{prefix}.dbuser.{database.name}"] = database.dbuser
                    values[f"{prefix}.dbusercredential.{database.name}"] = database.credential

        return self.vars().child(f"installable:{installable.package_name}", values)


@dataclass(slots=True)
class Site:
    """A virtual host with zero or more AppConfigurations."""

    site_json: Mapping[str, Any]
    app_configs: list[AppConfiguration] = field(default_factory=list)

    @classmethod
    def from_json(
        cls,
        json_value: Mapping[str, Any],
        manifests: ManifestStore,
        host_vars: Variables,
    ) -> Site:
        """Build a Site and its AppConfigurations from Site JSON."""
        if not isinstance(json_value, Mapping):
            raise SiteError("Site JSON must be an object.")
        for key in ("siteid", "hostname"):
            if not isinstance(json_value.get(key), str) or not json_value[key]:
                raise SiteError(f"Site JSON: field '{key}' must be a non-empty string.")
        raw_app_configs = json_value.get("appconfigs", [])
        if not isinstance(raw_app_configs, list):
            raise SiteError("Site JSON: field 'appconfigs' must be an array.")

        site = cls(site_json=deepcopy(dict(json_value)))
        site.app_configs = [
            AppConfiguration.from_json(entry, manifests, host_vars, site) for entry in raw_app_configs
        ]
        return site

    @property
    def site_id(self) -> str:
        """Return the site id."""
        return str(self.site_json["siteid"])

    @property
    def hostname(self) -> str:
        """Return the site hostname."""
        return str(self.site_json["hostname"])

    @property
    def has_tls(self) -> bool:
        """Return True when the site carries TLS information."""
        return bool(self.site_json.get("tls"))

    def site_json_without_tls(self) -> dict[str, Any]:
        """Return a copy of the Site JSON with TLS keys and certificates removed."""
        stripped = deepcopy(dict(self.site_json))
        stripped.pop("tls", None)
        return stripped

    def site_vars(self) -> dict[str, object]:
        """Return the ``site.*`` variables."""
        values: dict[str, object] = {
            "site.siteid": self.site_id,
            "site.hostname": self.hostname,
            "site.protocol": "https" if self.has_tls else "http",
        }
        admin = self.site_json.get("admin")
        if isinstance(admin, Mapping):
            for key in ("userid", "username", "email"):
                if key in admin:
                    values[f"site.admin.{key}"] = admin[key]
        return values


__all__ = ["AppConfiguration", "Site", "SiteError"]
