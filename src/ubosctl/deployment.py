"""Site-level orchestration of role lifecycle operations.

A site is deployed one AppConfiguration at a time. Within an
AppConfiguration the app comes before its accessories and roles run in the
order configured for the host (databases before the web server); undeploy
and suspend walk the same structure in reverse.
"""
from __future__ import annotations

import json
import logging
import os
import signal
import tempfile
from collections.abc import Iterable, Iterator, Mapping, MutableSet
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .filesystem import insert_slurped_files
from .installable import Installable
from .providers.systemd import SystemdError
from .role import Role, check_installable_manifest
from .site import AppConfiguration, Site, SiteError
from .variables import Variables

if TYPE_CHECKING:
    from .runtime import RuntimeContext

LOGGER = logging.getLogger(__name__)

INTERRUPTION_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGHUP)
SITE_FILE_MODE = 0o600


# ----------------------------------------------------------------------
# Site JSON
# ----------------------------------------------------------------------
def load_sites(path: Path, runtime: RuntimeContext) -> list[Site]:
    """Read one Site JSON object, or an array of them, from *path*."""
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise SiteError(f"Cannot read site file {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise SiteError(f"Site file {path} is not valid JSON: {exc}") from exc

    raw = insert_slurped_files(raw, path.parent)
    if isinstance(raw, Mapping):
        entries: list[Any] = [raw]
    elif isinstance(raw, list):
        entries = raw
    else:
        raise SiteError(f"Site file {path} must contain a JSON object or array.")
    if not entries:
        raise SiteError(f"No site given in {path}.")

    host_vars = runtime.host_vars()
    sites = [Site.from_json(entry, runtime.manifests, host_vars) for entry in entries]
    seen: set[str] = set()
    for site in sites:
        if site.site_id in seen:
            raise SiteError(f"Site {site.site_id} appears more than once in {path}.")
        seen.add(site.site_id)
    return sites


def deployed_sites(runtime: RuntimeContext) -> dict[str, Site]:
    """Return the sites recorded as deployed on this host, keyed by site id."""
    sites_dir = runtime.config.sites_dir
    if not sites_dir.is_dir():
        return {}
    host_vars = runtime.host_vars()
    sites: dict[str, Site] = {}
    for site_file in sorted(sites_dir.glob("*.json")):
        try:
            site_json = json.loads(site_file.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise SiteError(f"Cannot read deployed site {site_file}: {exc}") from exc
        site = Site.from_json(site_json, runtime.manifests, host_vars)
        sites[site.site_id] = site
    return sites


def find_deployed_site(runtime: RuntimeContext, site_id: str) -> Site:
    """Return the deployed site whose id is *site_id* or starts with it."""
    sites = deployed_sites(runtime)
    if site_id in sites:
        return sites[site_id]
    candidates = [site for key, site in sites.items() if key.startswith(site_id)]
    if len(candidates) == 1:
        return candidates[0]
    if not candidates:
        raise SiteError(f"No deployed site with id {site_id}.")
    raise SiteError(f"Site id {site_id} is ambiguous: {', '.join(site.site_id for site in candidates)}.")


def record_site(runtime: RuntimeContext, site: Site) -> None:
    """Persist the Site JSON of a deployed site."""
    sites_dir = runtime.config.sites_dir
    sites_dir.mkdir(parents=True, exist_ok=True)
    target = sites_dir / f"{site.site_id}.json"
    tmp_fd, tmp_name = tempfile.mkstemp(dir=str(sites_dir), prefix=f".{site.site_id}.", suffix=".json")
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
            json.dump(site.site_json, handle, indent=4, sort_keys=True)
            handle.write("\n")
        os.chmod(tmp_name, SITE_FILE_MODE)
        os.replace(tmp_name, target)
    finally:
        Path(tmp_name).unlink(missing_ok=True)


def forget_site(runtime: RuntimeContext, site: Site) -> None:
    """Remove the persisted Site JSON of *site*."""
    (runtime.config.sites_dir / f"{site.site_id}.json").unlink(missing_ok=True)


# ----------------------------------------------------------------------
# Lifecycle
# ----------------------------------------------------------------------
def check_site(site: Site, runtime: RuntimeContext, *, skip_filesystem_checks: bool = False) -> bool:
    """Validate the manifests of *site* and dry-run its deployment.

    Manifest violations raise :class:`~ubosctl.installable.ManifestError`;
    the return value reports whether every item could be deployed.
    """
    LOGGER.debug("check_site %s", site.site_id)
    roles = runtime.roles_on_host()
    host_vars = runtime.host_vars()
    checked: set[str] = set()
    for app_config in site.app_configs:
        for installable in app_config.installables:
            if installable.package_name in checked:
                continue
            check_installable_manifest(
                installable,
                roles,
                host_vars,
                skip_filesystem_checks=skip_filesystem_checks,
            )
            checked.add(installable.package_name)

    ok = True
    for app_config in site.app_configs:
        for installable, variables, role in _walk(app_config, runtime):
            ok = role.deploy_or_check(False, app_config, installable, variables) and ok
    return ok


def deploy_site(site: Site, runtime: RuntimeContext, triggers: MutableSet[str]) -> bool:
    """Deploy every AppConfiguration of *site*, then run the installers."""
    LOGGER.info("Deploying site %s (%s)", site.site_id, site.hostname)
    ok = True
    for app_config in site.app_configs:
        ok = deploy_app_configuration(app_config, runtime, triggers) and ok
    if ok and not runtime.dry_run:
        record_site(runtime, site)
    return ok


def deploy_app_configuration(
    app_config: AppConfiguration,
    runtime: RuntimeContext,
    triggers: MutableSet[str],
) -> bool:
    """Deploy one AppConfiguration and run its ``installers``."""
    LOGGER.debug("deploy_app_configuration %s", app_config.app_config_id)
    ok = True
    walked = list(_walk(app_config, runtime))
    for installable, variables, role in walked:
        ok = role.deploy_or_check(True, app_config, installable, variables, triggers) and ok
    for installable, variables, role in walked:
        ok = role.run_post_deploy_scripts("installers", app_config, installable, variables) and ok
    return ok


def undeploy_site(site: Site, runtime: RuntimeContext, triggers: MutableSet[str]) -> bool:
    """Run the uninstallers of *site*, then undeploy it in reverse order."""
    LOGGER.info("Undeploying site %s (%s)", site.site_id, site.hostname)
    ok = True
    for app_config in reversed(site.app_configs):
        ok = undeploy_app_configuration(app_config, runtime, triggers) and ok
    if not runtime.dry_run:
        forget_site(runtime, site)
    return ok


def undeploy_app_configuration(
    app_config: AppConfiguration,
    runtime: RuntimeContext,
    triggers: MutableSet[str],
) -> bool:
    """Run the ``uninstallers`` of one AppConfiguration, then undeploy its items."""
    LOGGER.debug("undeploy_app_configuration %s", app_config.app_config_id)
    ok = True
    walked = list(_walk(app_config, runtime, reverse=True))
    for installable, variables, role in walked:
        ok = role.run_post_deploy_scripts("uninstallers", app_config, installable, variables) and ok
    for installable, variables, role in walked:
        ok = role.undeploy_or_check(True, app_config, installable, variables, triggers) and ok
    return ok


def suspend_site(site: Site, runtime: RuntimeContext) -> bool:
    """Suspend every AppConfiguration of *site* in reverse order."""
    LOGGER.info("Suspending site %s", site.site_id)
    ok = True
    for app_config in reversed(site.app_configs):
        for installable, variables, role in _walk(app_config, runtime, reverse=True):
            ok = role.suspend(app_config, installable, variables) and ok
    return ok


def resume_site(site: Site, runtime: RuntimeContext) -> bool:
    """Resume every AppConfiguration of *site*."""
    LOGGER.info("Resuming site %s", site.site_id)
    ok = True
    for app_config in site.app_configs:
        for installable, variables, role in _walk(app_config, runtime):
            ok = role.resume(app_config, installable, variables) and ok
    return ok


def execute_triggers(triggers: Iterable[str], runtime: RuntimeContext) -> bool:
    """Run the systemctl action configured for every activated trigger."""
    ok = True
    for name in sorted(set(triggers)):
        action = runtime.config.triggers.get(name)
        if action is None:
            LOGGER.warning("Unknown trigger %s, ignoring", name)
            continue
        LOGGER.info("Executing trigger %s: %s %s", name, action.action, action.unit)
        try:
            runtime.systemd.run_action(action.action, action.unit)
        except SystemdError as exc:
            LOGGER.error("Trigger %s failed: %s", name, exc)
            ok = False
    return ok


@contextmanager
def prevent_interruptions() -> Iterator[None]:
    """Ignore SIGINT, SIGTERM and SIGHUP for the duration of the block."""
    previous = {signum: signal.getsignal(signum) for signum in INTERRUPTION_SIGNALS}
    for signum in INTERRUPTION_SIGNALS:
        signal.signal(signum, signal.SIG_IGN)
    try:
        yield
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)


def _walk(
    app_config: AppConfiguration,
    runtime: RuntimeContext,
    *,
    reverse: bool = False,
) -> Iterator[tuple[Installable, Variables, Role]]:
    """Yield ``(installable, variables, role)`` in deployment order."""
    roles = list(runtime.roles_on_host().values())
    installables = list(app_config.installables)
    if reverse:
        roles.reverse()
        installables.reverse()
    for installable in installables:
        variables = app_config.obtain_installable_vars(installable, runtime.resources)
        wanted = set(installable.role_names)
        for role in roles:
            if role.name in wanted:
                yield installable, variables, role


__all__ = [
    "check_site",
    "deploy_app_configuration",
    "deploy_site",
    "deployed_sites",
    "execute_triggers",
    "find_deployed_site",
    "forget_site",
    "load_sites",
    "prevent_interruptions",
    "record_site",
    "resume_site",
    "suspend_site",
    "undeploy_app_configuration",
    "undeploy_site",
]
