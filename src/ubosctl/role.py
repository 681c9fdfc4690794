"""Roles: the host subsystems (web server, databases, ...) that items are deployed into.

A :class:`Role` walks the ``appconfigitems`` an installable declares for it
and drives every item through a lifecycle transition. Results are combined
best-effort: every item is attempted and the role reports ``True`` only if
all of them succeeded.

The ``check_*`` functions validate manifests statically and raise
:class:`~ubosctl.installable.ManifestError` on the first violation.
"""
from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Mapping, MutableSet
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import TYPE_CHECKING, Any, NoReturn

from .backup.context import BackupContext
from .config import ConfigError
from .filesystem import mkdir, rmdir
from .installable import INSTALLABLE_KINDS, Installable, valid_filename
from .items import AppConfigurationItem, ItemType, instantiate
from .permissions import DEFAULT_DIR_MODE
from .providers.database import ALLOWED_DELIMITERS, DatabaseError
from .providers.scripts import ScriptError
from .providers.systemd import SystemdError
from .resources import ResourceError
from .state import StateRegistryError
from .templates import TEMPLATE_LANGUAGES
from .variables import Variables, VariablesError, has_placeholder

if TYPE_CHECKING:
    from .runtime import RuntimeContext
    from .site import AppConfiguration

LOGGER = logging.getLogger(__name__)

ITEM_ERRORS = (
    VariablesError,
    ResourceError,
    SystemdError,
    DatabaseError,
    ScriptError,
    StateRegistryError,
    ValueError,
    OSError,
)

POST_DEPLOY_CATEGORIES: Mapping[str, str] = {
    "installers": "install",
    "uninstallers": "uninstall",
    "upgraders": "upgrade",
}

_DEPENDS = re.compile(r"^[-_a-z0-9]+$")
_TRIGGER = re.compile(r"^[a-z][-a-z0-9]*$")
_ACCOUNT = re.compile(r"^[-a-z0-9]+$")
_PERMISSION = re.compile(r"^(preserve|[0-7]{3,4})$")
_SINGLE_NAME_TYPES = frozenset(
    {ItemType.SYSTEMD_SERVICE, ItemType.SYSTEMD_TIMER, ItemType.TCPPORT, ItemType.UDPPORT}
)
_TREE_TYPES = frozenset({ItemType.DIRECTORY, ItemType.DIRECTORYTREE})

_FILESYSTEM_TYPES = frozenset(
    {
        ItemType.DIRECTORY,
        ItemType.DIRECTORYTREE,
        ItemType.FILE,
        ItemType.PERLSCRIPT,
        ItemType.SYMLINK,
    }
)
_SERVICE_TYPES = frozenset(
    {ItemType.SYSTEMD_SERVICE, ItemType.SYSTEMD_TIMER, ItemType.TCPPORT, ItemType.UDPPORT}
)
_DATABASE_TYPES = frozenset({ItemType.DATABASE, ItemType.PERLSCRIPT, ItemType.SQLSCRIPT})
_SCRIPT_TYPES = frozenset({ItemType.PERLSCRIPT})


@dataclass(frozen=True, slots=True)
class RoleDefinition:
    """Static description of a role: which item types it accepts."""

    name: str
    item_types: frozenset[ItemType]
    installer_types: frozenset[ItemType]


KNOWN_ROLES: Mapping[str, RoleDefinition] = {
    "apache2": RoleDefinition("apache2", _FILESYSTEM_TYPES | _SERVICE_TYPES, _SCRIPT_TYPES),
    "generic": RoleDefinition("generic", _FILESYSTEM_TYPES | _SERVICE_TYPES, _SCRIPT_TYPES),
    "tomcat8": RoleDefinition("tomcat8", _FILESYSTEM_TYPES, _SCRIPT_TYPES),
    "mysql": RoleDefinition("mysql", _DATABASE_TYPES, _DATABASE_TYPES - {ItemType.DATABASE}),
    "postgresql": RoleDefinition("postgresql", _DATABASE_TYPES, _DATABASE_TYPES - {ItemType.DATABASE}),
}


class Role:
    """One role on this host."""

    def __init__(self, definition: RoleDefinition, runtime: RuntimeContext) -> None:
        self.definition = definition
        self.runtime = runtime

    def __repr__(self) -> str:
        return f"Role({self.name})"

    @property
    def name(self) -> str:
        """Return the role name."""
        return self.definition.name

    # Lifecycle --------------------------------------------------------
    def deploy_or_check(
        self,
        apply: bool,
        app_config: AppConfiguration,
        installable: Installable,
        variables: Variables,
        triggers: MutableSet[str] | None = None,
    ) -> bool:
        """Deploy the installable's items for this role in manifest order."""
        LOGGER.debug(
            "Role.deploy_or_check %s apply=%s %s %s",
            self.name,
            apply,
            app_config.app_config_id,
            installable.package_name,
        )
        ok = True
        if apply and installable.is_app:
            ok = self._create_app_config_dir(variables)

        items = self._items(app_config, installable)
        if items:
            code_dir, directory = self._dirs(variables)
            for index, item in enumerate(items):
                if apply:
                    LOGGER.debug("Deploying item %d of %s in role %s", index, installable.package_name, self.name)
                deploy = partial(item.deploy_or_check, apply, code_dir, directory, variables)
                ok = self._invoke(item, "deploy", deploy) and ok

        if apply and triggers is not None:
            triggers.update(self._triggers(installable))
        return ok

    def undeploy_or_check(
        self,
        apply: bool,
        app_config: AppConfiguration,
        installable: Installable,
        variables: Variables,
        triggers: MutableSet[str] | None = None,
    ) -> bool:
        """Undeploy the installable's items for this role in reverse manifest order."""
        LOGGER.debug(
            "Role.undeploy_or_check %s apply=%s %s %s",
            self.name,
            apply,
            app_config.app_config_id,
            installable.package_name,
        )
        ok = True
        items = self._items(app_config, installable)
        if items:
            code_dir, directory = self._dirs(variables)
            for item in reversed(items):
                undeploy = partial(item.undeploy_or_check, apply, code_dir, directory, variables)
                ok = self._invoke(item, "undeploy", undeploy) and ok

        if apply and installable.is_app:
            ok = self._remove_app_config_dir(variables) and ok
        if apply and triggers is not None:
            triggers.update(self._triggers(installable))
        return ok

    def suspend(self, app_config: AppConfiguration, installable: Installable, variables: Variables) -> bool:
        """Suspend the items in reverse manifest order."""
        LOGGER.debug("Role.suspend %s %s %s", self.name, app_config.app_config_id, installable.package_name)
        items = self._items(app_config, installable)
        if not items:
            return True
        code_dir, directory = self._dirs(variables)
        ok = True
        for item in reversed(items):
            ok = self._invoke(item, "suspend", partial(item.suspend, code_dir, directory, variables)) and ok
        return ok

    def resume(self, app_config: AppConfiguration, installable: Installable, variables: Variables) -> bool:
        """Resume the items in manifest order."""
        LOGGER.debug("Role.resume %s %s %s", self.name, app_config.app_config_id, installable.package_name)
        items = self._items(app_config, installable)
        if not items:
            return True
        code_dir, directory = self._dirs(variables)
        ok = True
        for item in items:
            ok = self._invoke(item, "resume", partial(item.resume, code_dir, directory, variables)) and ok
        return ok

    def backup(
        self,
        app_config: AppConfiguration,
        installable: Installable,
        variables: Variables,
        context: BackupContext,
        temp_files: list[Path],
        compress: str | None = None,
    ) -> bool:
        """Back up every item that declares a retention policy."""
        directory = variables.get_resolve_or_null(f"appconfig.{self.name}.dir")
        ok = True
        for item in self._retained_items(app_config, installable):
            ok = self._invoke(
                item,
                "backup",
                partial(item.backup, directory, variables, context, temp_files, compress),
            ) and ok
        return ok

    def restore(
        self,
        app_config: AppConfiguration,
        installable: Installable,
        variables: Variables,
        context: BackupContext,
    ) -> bool:
        """Restore every item that declares a retention policy."""
        directory = variables.get_resolve_or_null(f"appconfig.{self.name}.dir")
        ok = True
        for item in self._retained_items(app_config, installable):
            ok = self._invoke(item, "restore", partial(item.restore, directory, variables, context)) and ok
        return ok

    def run_post_deploy_scripts(
        self,
        category: str,
        app_config: AppConfiguration,
        installable: Installable,
        variables: Variables,
    ) -> bool:
        """Run the ``installers``, ``uninstallers`` or ``upgraders`` of this role."""
        method = POST_DEPLOY_CATEGORIES[category]
        fragment = installable.role_json(self.name) or {}
        scripts = fragment.get(category) or []
        if not scripts:
            return True
        code_dir, directory = self._dirs(variables)
        ok = True
        for json in scripts:
            item = self.instantiate_app_configuration_item(json, app_config, installable)
            ok = self._invoke(
                item,
                method,
                partial(item.run_post_deploy_script, method, code_dir, directory, variables),
            ) and ok
        return ok

    def instantiate_app_configuration_item(
        self,
        json: Mapping[str, Any],
        app_config: AppConfiguration,
        installable: Installable,
    ) -> AppConfigurationItem:
        """Create the item object for *json*."""
        return instantiate(json, self, app_config, installable)

    # Manifest checks --------------------------------------------------
    def check_app_manifest_for_role(
        self,
        installable: Installable,
        json_fragment: Mapping[str, Any],
        retention_buckets: set[str],
        skip_filesystem_checks: bool,
        variables: Variables,
    ) -> None:
        """Validate the role section of an app manifest."""
        self._check_installable_manifest_for_role(
            installable, json_fragment, retention_buckets, skip_filesystem_checks, variables
        )

    def check_accessory_manifest_for_role(
        self,
        installable: Installable,
        json_fragment: Mapping[str, Any],
        retention_buckets: set[str],
        skip_filesystem_checks: bool,
        variables: Variables,
    ) -> None:
        """Validate the role section of an accessory manifest."""
        self._check_installable_manifest_for_role(
            installable, json_fragment, retention_buckets, skip_filesystem_checks, variables
        )

    def _check_installable_manifest_for_role(
        self,
        installable: Installable,
        json_fragment: Mapping[str, Any],
        retention_buckets: set[str],
        skip_filesystem_checks: bool,
        variables: Variables,
    ) -> None:
        check_manifest_generic_depends(self.name, installable, json_fragment)
        check_manifest_generic_app_config_items(
            self.name,
            installable,
            json_fragment,
            self.definition.item_types,
            retention_buckets,
            skip_filesystem_checks,
            variables,
        )
        check_manifest_generic_triggers_activate(self.name, installable, json_fragment)
        check_manifest_generic_installers_etc(
            self.name,
            installable,
            json_fragment,
            self.definition.installer_types,
            skip_filesystem_checks,
            variables,
        )

    # ------------------------------------------------------------------
    def _items(self, app_config: AppConfiguration, installable: Installable) -> list[AppConfigurationItem]:
        return [
            self.instantiate_app_configuration_item(json, app_config, installable)
            for json in installable.app_config_items_in_role(self.name)
        ]

    def _retained_items(self, app_config: AppConfiguration, installable: Installable) -> list[AppConfigurationItem]:
        return [
            self.instantiate_app_configuration_item(json, app_config, installable)
            for json in installable.app_config_items_in_role(self.name)
            if json.get("retentionpolicy")
        ]

    def _dirs(self, variables: Variables) -> tuple[str | None, str | None]:
        code_dir = variables.get_resolve("package.codedir")
        directory = variables.get_resolve_or_null(f"appconfig.{self.name}.dir")
        return code_dir, directory

    def _triggers(self, installable: Installable) -> list[str]:
        fragment = installable.role_json(self.name) or {}
        return [str(trigger) for trigger in fragment.get("triggersactivate") or []]

    def _create_app_config_dir(self, variables: Variables) -> bool:
        site_document_dir = variables.get_resolve_or_null(f"site.{self.name}.sitedocumentdir")
        if not site_document_dir:
            return True
        directory = variables.get_resolve_or_null(f"appconfig.{self.name}.dir")
        if directory and directory != site_document_dir:
            return mkdir(Path(directory), mode=DEFAULT_DIR_MODE, parents=True)
        return True

    def _remove_app_config_dir(self, variables: Variables) -> bool:
        site_document_dir = variables.get_resolve_or_null(f"site.{self.name}.sitedocumentdir")
        if not site_document_dir:
            return True
        directory = variables.get_resolve_or_null(f"appconfig.{self.name}.dir")
        if directory and directory != site_document_dir:
            return rmdir(Path(directory))
        return True

    def _invoke(self, item: AppConfigurationItem, operation: str, call: Callable[[], bool]) -> bool:
        try:
            return bool(call())
        except ITEM_ERRORS as exc:
            LOGGER.error("Cannot %s %r: %s", operation, item, exc)
            return False


# ----------------------------------------------------------------------
# Host
# ----------------------------------------------------------------------
def roles_on_host(runtime: RuntimeContext) -> dict[str, Role]:
    """Return the roles enabled in the configuration, in configured order."""
    roles: dict[str, Role] = {}
    for name in runtime.config.roles:
        definition = KNOWN_ROLES.get(name)
        if definition is None:
            known = ", ".join(sorted(KNOWN_ROLES))
            raise ConfigError(f"Unknown role '{name}' in configuration. Known roles: {known}.")
        roles[name] = Role(definition, runtime)
    return roles


def check_installable_manifest(
    installable: Installable,
    roles: Mapping[str, Role],
    host_vars: Variables,
    *,
    skip_filesystem_checks: bool = False,
) -> None:
    """Validate a whole manifest against the roles present on this host."""
    manifest = installable.installable_json
    kind = manifest.get("type")
    if kind not in INSTALLABLE_KINDS:
        installable.my_fatal(f"type must be one of {', '.join(INSTALLABLE_KINDS)}, is: {kind}")

    roles_json = manifest.get("roles", {})
    if not isinstance(roles_json, Mapping):
        installable.my_fatal("roles section: not a JSON object")

    variables = installable.check_vars(host_vars)
    retention_buckets: set[str] = set()
    for role_name, fragment in roles_json.items():
        if role_name not in KNOWN_ROLES:
            installable.my_fatal(f"roles section: unknown role {role_name}")
        if not isinstance(fragment, Mapping):
            installable.my_fatal(f"roles section: role {role_name}: not a JSON object")
        role = roles.get(role_name)
        if role is None:
            LOGGER.debug("Skipping checks for role %s of %s, not on this host", role_name, installable.package_name)
            continue
        if kind == "app":
            role.check_app_manifest_for_role(installable, fragment, retention_buckets, skip_filesystem_checks, variables)
        else:
            role.check_accessory_manifest_for_role(
                installable, fragment, retention_buckets, skip_filesystem_checks, variables
            )


# ----------------------------------------------------------------------
# Generic manifest checks shared by all roles
# ----------------------------------------------------------------------
def check_manifest_generic_depends(
    role_name: str,
    installable: Installable,
    json_fragment: Mapping[str, Any],
) -> None:
    """Check the ``depends`` list of a role section."""
    if "depends" not in json_fragment:
        return
    depends = json_fragment["depends"]
    if not isinstance(depends, list):
        installable.my_fatal(f"roles section: role {role_name}: depends is not an array")
    for index, entry in enumerate(depends):
        if not isinstance(entry, str):
            installable.my_fatal(f"roles section: role {role_name}: depends[{index}] must be string")
        if not _DEPENDS.match(entry):
            installable.my_fatal(f"roles section: role {role_name}: depends[{index}] invalid: {entry}")


def check_manifest_generic_app_config_items(
    role_name: str,
    installable: Installable,
    json_fragment: Mapping[str, Any],
    allowed_types: Iterable[ItemType],
    retention_buckets: set[str],
    skip_filesystem_checks: bool,
    variables: Variables,
) -> None:
    """Check the ``appconfigitems`` of a role section."""
    if "appconfigitems" not in json_fragment:
        return
    items = json_fragment["appconfigitems"]
    if not isinstance(items, list):
        installable.my_fatal(f"roles section: role {role_name}: not an array")

    allowed = frozenset(allowed_types)
    code_dir = variables.get_resolve("package.codedir") or ""
    database_names: set[str] = set()

    for index, item in enumerate(items):
        _ItemCheck(
            role_name,
            installable,
            item,
            index,
            allowed,
            skip_filesystem_checks,
            variables,
            code_dir,
        ).run(retention_buckets, database_names)


def check_manifest_generic_triggers_activate(
    role_name: str,
    installable: Installable,
    json_fragment: Mapping[str, Any],
) -> None:
    """Check ``triggersactivate``: names must be well-formed and unique."""
    if "triggersactivate" not in json_fragment:
        return
    triggers = json_fragment["triggersactivate"]
    if not isinstance(triggers, list):
        installable.my_fatal(f"roles section: role {role_name}: triggersactivate: not an array")
    seen: set[str] = set()
    for index, trigger in enumerate(triggers):
        if not isinstance(trigger, str):
            installable.my_fatal(f"roles section: role {role_name}: triggersactivate[{index}]: must be string")
        if not _TRIGGER.match(trigger):
            installable.my_fatal(
                f"roles section: role {role_name}: triggersactivate[{index}]: invalid trigger name: {trigger}"
            )
        if trigger in seen:
            installable.my_fatal(f"roles section: role {role_name}: triggersactivate[{index}] is not unique: {trigger}")
        seen.add(trigger)


def check_manifest_generic_installers_etc(
    role_name: str,
    installable: Installable,
    json_fragment: Mapping[str, Any],
    allowed_types: Iterable[ItemType],
    skip_filesystem_checks: bool,
    variables: Variables,
) -> None:
    """Check ``installers``, ``uninstallers`` and ``upgraders``."""
    allowed = frozenset(allowed_types)
    code_dir = variables.get_resolve("package.codedir") or ""

    for category in POST_DEPLOY_CATEGORIES:
        if json_fragment.get(category) is None:
            continue
        scripts = json_fragment[category]
        if not isinstance(scripts, list):
            installable.my_fatal(f"roles section: role {role_name}: {category}: not an array")
        for index, script in enumerate(scripts):
            where = f"roles section: role {role_name}: {category}[{index}]"
            if not isinstance(script, Mapping):
                installable.my_fatal(f"{where}: not a JSON object")
            kind = script.get("type")
            if not isinstance(kind, str):
                installable.my_fatal(f"{where}: field 'type' must be string")
            if kind not in allowed:
                installable.my_fatal(f"{where}: unknown type: {kind}")

            if script.get("source"):
                if script.get("template"):
                    installable.my_fatal(f"{where} of type '{kind}': specify source or template, not both")
                if not isinstance(script["source"], str):
                    installable.my_fatal(f"{where} of type '{kind}': field 'source' must be string")
                if not skip_filesystem_checks and not _file_exists(code_dir, script["source"], None, variables):
                    installable.my_fatal(f"{where}: invalid source")
            else:
                if not script.get("template"):
                    installable.my_fatal(f"{where} of type '{kind}': specify source or template")
                if not isinstance(script["template"], str):
                    installable.my_fatal(f"{where} of type '{kind}': field 'template' must be string")
                if not skip_filesystem_checks and not _file_exists(code_dir, script["template"], None, variables):
                    installable.my_fatal(f"{where}: invalid template")
                language = script.get("templatelang")
                if not isinstance(language, str):
                    installable.my_fatal(f"{where} of type '{kind}': field 'templatelang' must be string")
                if language not in TEMPLATE_LANGUAGES:
                    installable.my_fatal(f"{where} of type '{kind}': invalid templatelang: {language}")

            if kind == ItemType.SQLSCRIPT:
                name = script.get("name")
                if not name:
                    installable.my_fatal(f"{where}: must specify 'name'")
                if not isinstance(name, str):
                    installable.my_fatal(f"{where}: invalid 'name'")
                delimiter = script.get("delimiter")
                if delimiter and (not isinstance(delimiter, str) or delimiter not in ALLOWED_DELIMITERS):
                    installable.my_fatal(f"{where}: invalid delimiter")


def _file_exists(code_dir: str, filename: str, name: str | None, variables: Variables) -> bool:
    resolved = variables.replace_variables(filename, allow_missing=True) or ""
    if has_placeholder(resolved):
        # depends on AppConfiguration values only known at deploy time
        return True
    return valid_filename(code_dir, resolved, name)


class _ItemCheck:
    """Validation of a single ``appconfigitems`` entry."""

    def __init__(
        self,
        role_name: str,
        installable: Installable,
        item: object,
        index: int,
        allowed: frozenset[ItemType],
        skip_filesystem_checks: bool,
        variables: Variables,
        code_dir: str,
    ) -> None:
        self.role_name = role_name
        self.installable = installable
        self.item: Mapping[str, Any] = item if isinstance(item, Mapping) else {}
        self.index = index
        self.allowed = allowed
        self.skip_filesystem_checks = skip_filesystem_checks
        self.variables = variables
        self.code_dir = code_dir
        self.where = f"roles section: role {role_name}: appconfigitem[{index}]"
        if not isinstance(item, Mapping):
            self.fatal(": not a JSON object")

    def fatal(self, message: str) -> NoReturn:
        self.installable.my_fatal(f"{self.where}{message}")

    def run(self, retention_buckets: set[str], database_names: set[str]) -> None:
        kind = self.item.get("type")
        if not isinstance(kind, str):
            self.fatal(": field 'type' must be string")
        if kind not in self.allowed:
            allowed = ", ".join(sorted(self.allowed))
            self.fatal(f" has unknown or disallowed type: {kind}. Allowed types are: {allowed}")
        item_type = ItemType(kind)

        if item_type == ItemType.PERLSCRIPT:
            self._check_perlscript()
            return
        if item_type == ItemType.SQLSCRIPT:
            self._check_sqlscript()
            return
        if item_type in _SINGLE_NAME_TYPES:
            self._check_single_name()
            return

        names = self._names()
        match item_type:
            case ItemType.FILE:
                self._check_file(names)
            case ItemType.DIRECTORY:
                pass
            case ItemType.DIRECTORYTREE:
                self._check_directorytree(names)
            case ItemType.SYMLINK:
                self._check_symlink(names)
            case ItemType.DATABASE:
                self._check_database(database_names)

        self._check_owner()
        self._check_permissions(item_type)
        self._check_retention(retention_buckets)

    # Per type ---------------------------------------------------------
    def _check_perlscript(self) -> None:
        source = self.item.get("source")
        if not source:
            self.fatal(" of type perlscript: must specify source")
        if not isinstance(source, str):
            self.fatal(" of type perlscript: field 'source' must be string")
        if not self.skip_filesystem_checks and not self._exists(source):
            self.fatal(f" of type perlscript has invalid source: {source}")
        if "name" in self.item and not isinstance(self.item["name"], str):
            self.fatal(": field 'name' must be string")
        if self.item.get("names") is not None:
            self.fatal(" of type perlscript: names not permitted for type perlscript")

    def _check_sqlscript(self) -> None:
        where = " of type 'sqlscript'"
        if "name" in self.item and not isinstance(self.item["name"], str):
            self.fatal(f"{where}: field 'name' must be string")
        if self.item.get("names") is not None:
            self.fatal(f"{where}: names not permitted for type sqlscript")
        self._check_source_or_template(where, [None])
        delimiter = self.item.get("delimiter")
        if delimiter and (not isinstance(delimiter, str) or delimiter not in ALLOWED_DELIMITERS):
            self.fatal(f"{where}: invalid delimiter: {delimiter}")

    def _check_single_name(self) -> None:
        if self.item.get("names") is not None:
            self.fatal(": specify name; names not allowed")
        name = self.item.get("name")
        if not isinstance(name, str) or not name:
            self.fatal(": field 'name' must be string")

    def _check_file(self, names: list[str]) -> None:
        self._check_source_or_template(" of type 'file'", names)

    def _check_directorytree(self, names: list[str]) -> None:
        where = " of type 'directorytree'"
        source = self.item.get("source")
        if not source:
            self.fatal(f"{where}: must specify source")
        if not isinstance(source, str):
            self.fatal(f"{where}: field 'source' must be string")
        if not self.skip_filesystem_checks:
            for name in names:
                if not self._exists(source, name):
                    self.fatal(f"{where}: invalid source: {source} for name {name}")

    def _check_symlink(self, names: list[str]) -> None:
        where = " of type 'symlink'"
        source = self.item.get("source")
        if not source:
            self.fatal(f"{where}: must specify source")
        if not isinstance(source, str):
            self.fatal(f"{where}: field 'source' must be string")
        if has_placeholder(source) or self.skip_filesystem_checks:
            return
        for name in names:
            if not self._exists(source, name):
                self.fatal(f"{where}: invalid source: {source} for name {name}")

    def _check_database(self, database_names: set[str]) -> None:
        name = self.item.get("name")
        if not isinstance(name, str):
            self.fatal(": specify name; names not allowed")
        if name in database_names:
            self.fatal(" has non-unique symbolic database name")
        database_names.add(str(name))
        privileges = self.item.get("privileges")
        if not privileges:
            self.fatal(": field 'privileges' must be given")
        if not isinstance(privileges, str):
            self.fatal(": field 'privileges' must be string")

    # Shared -----------------------------------------------------------
    def _names(self) -> list[str]:
        if self.item.get("name") is not None:
            if self.item.get("names") is not None:
                self.fatal(": specify name or names, not both")
            if not isinstance(self.item["name"], str):
                self.fatal(": field 'name' must be string")
            return [self.item["name"]]

        names = self.item.get("names")
        if not names:
            self.fatal(": must specify name or names")
        if not isinstance(names, list):
            self.fatal(": names must be an array")
        for index, name in enumerate(names):
            if not isinstance(name, str):
                self.fatal(f": names[{index}] must be string")
        return list(names)

    def _check_source_or_template(self, where: str, names: list[str] | list[None]) -> None:
        source = self.item.get("source")
        template = self.item.get("template")
        if source:
            if template:
                self.fatal(f"{where}: specify source or template, not both")
            if not isinstance(source, str):
                self.fatal(f"{where}: field 'source' must be string")
            if not self.skip_filesystem_checks:
                for name in names:
                    if not self._exists(source, name):
                        suffix = f" for name {name}" if name is not None else ""
                        self.fatal(f"{where}: invalid source: {source}{suffix}")
        elif template:
            language = self.item.get("templatelang")
            if not language:
                self.fatal(f"{where}: if specifying template, must specify templatelang as well")
            if not isinstance(template, str):
                self.fatal(f"{where}: field 'template' must be string")
            if not self.skip_filesystem_checks:
                for name in names:
                    if not self._exists(template, name):
                        suffix = f" for name {name}" if name is not None else ""
                        self.fatal(f"{where}: invalid template: {template}{suffix}")
            if not isinstance(language, str):
                self.fatal(f"{where}: field 'templatelang' must be string")
            if language not in TEMPLATE_LANGUAGES:
                self.fatal(f"{where}: invalid templatelang: {language}")
        else:
            self.fatal(f"{where}: must specify source or template")

    def _check_owner(self) -> None:
        uname = self.item.get("uname")
        gname = self.item.get("gname")
        for field, value, other, other_value in (
            ("uname", uname, "gname", gname),
            ("gname", gname, "uname", uname),
        ):
            if not value:
                continue
            if not isinstance(value, str):
                self.fatal(f": field '{field}' must be string")
            resolved = self.variables.replace_variables(value, allow_missing=True) or ""
            if not has_placeholder(resolved) and not _ACCOUNT.match(resolved):
                self.fatal(f": invalid {field}: {value}")
            if not other_value:
                self.fatal(f": field '{other}' must be given if '{field}' is given.")

    def _check_permissions(self, item_type: ItemType) -> None:
        if item_type in _TREE_TYPES:
            for field in ("filepermissions", "dirpermissions"):
                self._check_permission_value(field)
            if "permissions" in self.item:
                self.fatal(": use fields 'filepermissions' and 'dirpermissions' instead of 'permissions'.")
        else:
            self._check_permission_value("permissions")
            for field in ("filepermissions", "dirpermissions"):
                if field in self.item:
                    self.fatal(f": use field 'permissions' instead of '{field}'.")

    def _check_permission_value(self, field: str) -> None:
        if self.item.get(field) is None:
            return
        value = self.item[field]
        if not isinstance(value, str):
            self.fatal(f": field '{field}' must be string (octal)")
        resolved = self.variables.replace_variables(value, allow_missing=True) or ""
        if not has_placeholder(resolved) and not _PERMISSION.match(resolved):
            self.fatal(f": invalid {field} (need octal, no leading zero): {value}")

    def _check_retention(self, retention_buckets: set[str]) -> None:
        if "retentionpolicy" in self.item:
            policy = self.item["retentionpolicy"]
            if not isinstance(policy, str):
                self.fatal(": field 'retentionpolicy' must be string")
            if policy != "keep":
                self.fatal(f" has unknown value for field 'retentionpolicy': {policy}")
            if "retentionbucket" not in self.item:
                self.fatal(": if specifying 'retentionpolicy', also specify 'retentionbucket'")
            bucket = self.item["retentionbucket"]
            if not isinstance(bucket, str):
                self.fatal(": field 'retentionbucket' must be string")
            if bucket in retention_buckets:
                self.fatal(f": field 'retentionbucket' must be unique: {bucket}")
            retention_buckets.add(bucket)
        elif "retentionbucket" in self.item:
            self.fatal(": if specifying 'retentionbucket', also specify 'retentionpolicy'")

    def _exists(self, filename: str, name: str | None = None) -> bool:
        return _file_exists(self.code_dir, filename, name, self.variables)


__all__ = [
    "ITEM_ERRORS",
    "KNOWN_ROLES",
    "POST_DEPLOY_CATEGORIES",
    "Role",
    "RoleDefinition",
    "check_installable_manifest",
    "check_manifest_generic_app_config_items",
    "check_manifest_generic_depends",
    "check_manifest_generic_installers_etc",
    "check_manifest_generic_triggers_activate",
    "roles_on_host",
]
