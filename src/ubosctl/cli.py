"""Typer-powered command line entry point for ``ubosctl``.

The commands are thin wrappers around :mod:`ubosctl.deployment` and
:mod:`ubosctl.backup`; every invocation is recorded as one operation in the
structured operations log.
"""
from __future__ import annotations

import os
import textwrap
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .backup import BackupError, PreconditionError, UpdateBackup, ZipFileBackup
from .config import ConfigError, load_config
from .deployment import (
    check_site,
    deploy_site,
    deployed_sites,
    execute_triggers,
    find_deployed_site,
    load_sites,
    prevent_interruptions,
    resume_site,
    suspend_site,
    undeploy_site,
)
from .exit_codes import ExitCode
from .installable import Installable, ManifestError
from .logging import OperationScope, configure_console_logging
from .providers import DatabaseError, ScriptError, SystemdError
from .resources import ResourceError
from .role import check_installable_manifest
from .runtime import RuntimeContext, build_runtime
from .site import Site, SiteError
from .state import StateRegistryError

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to ubosctl's YAML config file.",
)

DRY_RUN_OPTION = typer.Option(
    False,
    "--dry-run",
    help="Check what would be done without changing the host.",
)

SKIP_FS_CHECKS_OPTION = typer.Option(
    False,
    "--skip-filesystem-checks",
    help="Do not verify that files referenced by manifests exist.",
)

SITE_ID_OPTION = typer.Option(
    None,
    "--siteid",
    help="Site id (or unique prefix) to act on. May be repeated.",
)

ALL_SITES_OPTION = typer.Option(
    False,
    "--all",
    help="Act on every site deployed on this host.",
)

SITE_FILE_OPTION = typer.Option(
    None,
    "--file",
    exists=True,
    dir_okay=False,
    readable=True,
    help="Site JSON file holding one site or an array of sites.",
)

# Exception type -> exit code; first match wins.
ERROR_EXIT_CODES: tuple[tuple[type[BaseException], ExitCode], ...] = (
    (ManifestError, ExitCode.VALIDATION),
    (SiteError, ExitCode.VALIDATION),
    (ConfigError, ExitCode.VALIDATION),
    (PreconditionError, ExitCode.ENVIRONMENT),
    (SystemdError, ExitCode.PROVIDER),
    (DatabaseError, ExitCode.PROVIDER),
    (ScriptError, ExitCode.PROVIDER),
    (BackupError, ExitCode.FAILED),
    (ResourceError, ExitCode.FAILED),
    (StateRegistryError, ExitCode.FAILED),
)
HANDLED_ERRORS = tuple(error_type for error_type, _ in ERROR_EXIT_CODES)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        UBOS site deployment CLI.

        Deploys, undeploys, suspends and resumes sites described by Site JSON,
        validates app and accessory manifests, and backs up and restores the
        data their AppConfigurations retain.
        """
    ).strip(),
)

backup_app = typer.Typer(help="Create and restore zip backups of sites.")
update_backup_app = typer.Typer(help="Inspect the temporary backup kept during host updates.")

app.add_typer(backup_app, name="backup")
app.add_typer(update_backup_app, name="update-backup")


@dataclass
class CliState:
    """Global options captured by the root callback."""

    config_file: Path | None = None
    debug: bool = False
    runtime: RuntimeContext | None = None


def _state(ctx: typer.Context) -> CliState:
    state = ctx.obj
    if isinstance(state, CliState):
        return state
    state = CliState()
    ctx.obj = state
    return state


def _get_runtime(ctx: typer.Context, *, dry_run: bool = False) -> RuntimeContext:
    state = _state(ctx)
    if state.runtime is not None and state.runtime.dry_run == dry_run:
        return state.runtime
    try:
        config = load_config(config_file=state.config_file)
    except ConfigError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=ExitCode.VALIDATION) from exc
    state.runtime = build_runtime(config, dry_run=dry_run)
    return state.runtime


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the ubosctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Display extra output. May be repeated for even more output.",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Print a traceback when a command fails.",
    ),
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"ubosctl {__version__}")
        raise typer.Exit(code=0)

    configure_console_logging(verbose)
    ctx.obj = CliState(config_file=config_file, debug=debug)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


def _is_root() -> bool:
    return os.geteuid() == 0


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.VALIDATION,
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), rc=rc)
    raise typer.Exit(code=rc)


def _handle_error(ctx: typer.Context, op: OperationScope, prefix: str, exc: BaseException) -> NoReturn:
    """Map a handled exception to its exit code and terminate the command."""
    if _state(ctx).debug:
        console.print_exception()
    rc = next(code for error_type, code in ERROR_EXIT_CODES if isinstance(exc, error_type))
    _command_error(op, f"{prefix}: {exc}", rc=rc)


def _require_root(op: OperationScope) -> None:
    if not _is_root():
        _command_error(op, "This command must be run as root.", rc=ExitCode.ENVIRONMENT)


def _dry_run_complete(op: OperationScope, summary: str) -> None:
    """Standardise dry-run completion messaging."""
    console.print(f"[yellow]Dry run[/yellow]: {summary}")
    op.success("Dry run complete.", changed=0)


def _select_deployed_sites(
    runtime: RuntimeContext,
    site_ids: Sequence[str] | None,
    all_sites: bool,
    site_file: Path | None,
) -> list[Site]:
    """Resolve ``--siteid`` / ``--all`` / ``--file`` to deployed sites."""
    given = sum(1 for value in (bool(site_ids), all_sites, site_file is not None) if value)
    if given != 1:
        raise SiteError("Specify exactly one of --siteid, --all or --file.")
    if all_sites:
        return list(deployed_sites(runtime).values())
    if site_file is not None:
        site_ids = [site.site_id for site in load_sites(site_file, runtime)]
    return [find_deployed_site(runtime, site_id) for site_id in site_ids or []]


def _site_ids(sites: Iterable[Site]) -> list[str]:
    return [site.site_id for site in sites]


# ----------------------------------------------------------------------
# Manifest
# ----------------------------------------------------------------------
@app.command("check-manifest")
def check_manifest(
    ctx: typer.Context,
    package: str = typer.Argument(..., help="Package name, or path to a manifest JSON file."),
    skip_filesystem_checks: bool = SKIP_FS_CHECKS_OPTION,
) -> None:
    """Validate an app or accessory manifest against the roles on this host."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "check-manifest",
        args={"skip_filesystem_checks": skip_filesystem_checks},
        target={"kind": "manifest", "package": package},
    ) as op:
        try:
            path = Path(package)
            installable = Installable.from_file(path) if path.is_file() else runtime.manifests.get(package)
            check_installable_manifest(
                installable,
                runtime.roles_on_host(),
                runtime.host_vars(),
                skip_filesystem_checks=skip_filesystem_checks,
            )
        except HANDLED_ERRORS as exc:
            _handle_error(ctx, op, "Manifest check failed", exc)

        console.print(f"[green]Manifest of {installable.package_name} is valid.[/green]")
        op.success("Manifest is valid.", changed=0)


# ----------------------------------------------------------------------
# Site lifecycle
# ----------------------------------------------------------------------
@app.command("deploy")
def deploy(
    ctx: typer.Context,
    site_file: Path = typer.Option(
        ...,
        "--file",
        exists=True,
        dir_okay=False,
        readable=True,
        help="Site JSON file holding one site or an array of sites.",
    ),
    dry_run: bool = DRY_RUN_OPTION,
    skip_filesystem_checks: bool = SKIP_FS_CHECKS_OPTION,
) -> None:
    """Deploy the site(s) described in a Site JSON file."""
    runtime = _get_runtime(ctx, dry_run=dry_run)
    with runtime.logger.operation(
        "deploy",
        args={"file": str(site_file), "dry_run": dry_run},
        target={"kind": "site"},
    ) as op:
        try:
            sites = load_sites(site_file, runtime)
            for site in sites:
                if not check_site(site, runtime, skip_filesystem_checks=skip_filesystem_checks):
                    _command_error(op, f"Site {site.site_id} cannot be deployed.", rc=ExitCode.FAILED)
                op.add_step("check", status="success", detail=site.site_id)
        except HANDLED_ERRORS as exc:
            _handle_error(ctx, op, "Deploy check failed", exc)

        if dry_run:
            _dry_run_complete(op, f"would deploy {', '.join(_site_ids(sites))}.")
            return
        _require_root(op)

        already = deployed_sites(runtime)
        for site in sites:
            if site.site_id in already:
                _command_error(
                    op,
                    f"Site {site.site_id} is deployed already; undeploy it first.",
                    rc=ExitCode.ENVIRONMENT,
                )

        ok = True
        triggers: set[str] = set()
        try:
            with prevent_interruptions():
                for site in sites:
                    site_ok = deploy_site(site, runtime, triggers)
                    op.add_step("deploy", status="success" if site_ok else "error", detail=site.site_id)
                    ok = site_ok and ok
                ok = execute_triggers(triggers, runtime) and ok
        except HANDLED_ERRORS as exc:
            _handle_error(ctx, op, "Deploy failed", exc)

        if not ok:
            _command_error(op, "Deploy failed.", rc=ExitCode.FAILED)
        console.print(f"[green]Deployed {', '.join(_site_ids(sites))}.[/green]")
        op.success("Sites deployed.", changed=len(sites), context={"triggers": sorted(triggers)})


@app.command("undeploy")
def undeploy(
    ctx: typer.Context,
    site_ids: list[str] | None = SITE_ID_OPTION,
    all_sites: bool = ALL_SITES_OPTION,
    site_file: Path | None = SITE_FILE_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
) -> None:
    """Undeploy site(s) and delete all of their data."""
    runtime = _get_runtime(ctx, dry_run=dry_run)
    with runtime.logger.operation(
        "undeploy",
        args={"siteid": list(site_ids or []), "all": all_sites, "dry_run": dry_run},
        target={"kind": "site"},
    ) as op:
        try:
            sites = _select_deployed_sites(runtime, site_ids, all_sites, site_file)
        except HANDLED_ERRORS as exc:
            _handle_error(ctx, op, "Cannot find sites", exc)

        if dry_run:
            _dry_run_complete(op, f"would undeploy {', '.join(_site_ids(sites)) or 'nothing'}.")
            return
        _require_root(op)

        ok = True
        try:
            with prevent_interruptions():
                for site in sites:
                    ok = suspend_site(site, runtime) and ok

                undeploy_triggers: set[str] = set()
                for site in sites:
                    site_ok = undeploy_site(site, runtime, undeploy_triggers)
                    op.add_step("undeploy", status="success" if site_ok else "error", detail=site.site_id)
                    ok = site_ok and ok
                ok = execute_triggers(undeploy_triggers, runtime) and ok
        except HANDLED_ERRORS as exc:
            _handle_error(ctx, op, "Undeploy failed", exc)

        if not ok:
            _command_error(op, "Undeploy failed.", rc=ExitCode.FAILED)
        console.print(f"[green]Undeployed {', '.join(_site_ids(sites)) or 'nothing'}.[/green]")
        op.success("Sites undeployed.", changed=len(sites))


def _suspend_or_resume(
    ctx: typer.Context,
    command: str,
    site_ids: list[str] | None,
    all_sites: bool,
) -> None:
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        command,
        args={"siteid": list(site_ids or []), "all": all_sites},
        target={"kind": "site"},
    ) as op:
        try:
            sites = _select_deployed_sites(runtime, site_ids, all_sites, None)
        except HANDLED_ERRORS as exc:
            _handle_error(ctx, op, "Cannot find sites", exc)
        _require_root(op)

        action = suspend_site if command == "suspend" else resume_site
        ok = True
        try:
            for site in sites:
                ok = action(site, runtime) and ok
        except HANDLED_ERRORS as exc:
            _handle_error(ctx, op, f"{command.capitalize()} failed", exc)
        if not ok:
            _command_error(op, f"{command.capitalize()} failed.", rc=ExitCode.FAILED)
        done = "Suspended" if command == "suspend" else "Resumed"
        console.print(f"[green]{done} {', '.join(_site_ids(sites)) or 'nothing'}.[/green]")
        op.success(f"Sites {done.lower()}.", changed=len(sites))


@app.command("suspend")
def suspend(
    ctx: typer.Context,
    site_ids: list[str] | None = SITE_ID_OPTION,
    all_sites: bool = ALL_SITES_OPTION,
) -> None:
    """Stop the services of deployed site(s) without removing anything."""
    _suspend_or_resume(ctx, "suspend", site_ids, all_sites)


@app.command("resume")
def resume(
    ctx: typer.Context,
    site_ids: list[str] | None = SITE_ID_OPTION,
    all_sites: bool = ALL_SITES_OPTION,
) -> None:
    """Start the services of suspended site(s) again."""
    _suspend_or_resume(ctx, "resume", site_ids, all_sites)


@app.command("list-sites")
def list_sites(ctx: typer.Context) -> None:
    """List the sites deployed on this host."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation("list-sites", target={"kind": "site"}) as op:
        try:
            sites = deployed_sites(runtime)
        except HANDLED_ERRORS as exc:
            _handle_error(ctx, op, "Cannot read deployed sites", exc)

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Site", style="bold")
        table.add_column("Hostname")
        table.add_column("AppConfigurations")
        if not sites:
            table.add_row("(none)", "", "")
        for site in sites.values():
            table.add_row(
                site.site_id,
                site.hostname,
                ", ".join(f"{ac.app_config_id} ({ac.app_id})" for ac in site.app_configs),
            )
        console.print(table)
        op.success("Reported deployed sites.", changed=0)


# ----------------------------------------------------------------------
# Zip backups
# ----------------------------------------------------------------------
@backup_app.command("create")
def backup_create(
    ctx: typer.Context,
    out_file: Path = typer.Option(..., "--out", dir_okay=False, help="Zip file to write."),
    site_ids: list[str] | None = SITE_ID_OPTION,
    no_tls: bool = typer.Option(False, "--notls", help="Leave TLS keys and certificates out of the backup."),
) -> None:
    """Back up deployed site(s) into a zip file."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "backup create",
        args={"out": str(out_file), "siteid": list(site_ids or []), "notls": no_tls},
        target={"kind": "backup", "path": str(out_file)},
    ) as op:
        _require_root(op)
        try:
            if site_ids:
                sites = [find_deployed_site(runtime, site_id) for site_id in site_ids]
            else:
                sites = list(deployed_sites(runtime).values())
            app_configs = [app_config for site in sites for app_config in site.app_configs]
            ok = ZipFileBackup(runtime).create(sites, app_configs, out_file, no_tls=no_tls)
        except HANDLED_ERRORS as exc:
            _handle_error(ctx, op, "Backup failed", exc)

        if not ok:
            _command_error(op, f"Backup {out_file} is incomplete.", rc=ExitCode.FAILED)
        console.print(f"[green]Backed up {', '.join(_site_ids(sites)) or 'nothing'} to {out_file}.[/green]")
        op.success("Backup created.", changed=1, backups=[str(out_file)])


@backup_app.command("restore")
def backup_restore(
    ctx: typer.Context,
    in_file: Path = typer.Option(
        ...,
        "--in",
        exists=True,
        dir_okay=False,
        readable=True,
        help="Zip backup to restore from.",
    ),
    site_ids: list[str] | None = SITE_ID_OPTION,
) -> None:
    """Deploy the site(s) contained in a zip backup and restore their data."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "backup restore",
        args={"in": str(in_file), "siteid": list(site_ids or [])},
        target={"kind": "backup", "path": str(in_file)},
    ) as op:
        _require_root(op)
        try:
            backup = ZipFileBackup.read(in_file, runtime)
        except HANDLED_ERRORS as exc:
            _handle_error(ctx, op, "Cannot read backup", exc)
        if backup is None:
            _command_error(op, f"{in_file} is not a ubosctl backup.", rc=ExitCode.VALIDATION)
        try:
            sites = [site for site in backup.sites.values() if not site_ids or site.site_id in site_ids]
            ok = _deploy_and_restore(runtime, backup, sites, op)
        except HANDLED_ERRORS as exc:
            _handle_error(ctx, op, "Restore failed", exc)
        finally:
            backup.close()

        if not ok:
            _command_error(op, "Restore failed.", rc=ExitCode.FAILED)
        console.print(f"[green]Restored {', '.join(_site_ids(sites)) or 'nothing'} from {in_file}.[/green]")
        op.success("Backup restored.", changed=len(sites))


def _deploy_and_restore(
    runtime: RuntimeContext,
    backup: ZipFileBackup | UpdateBackup,
    sites: Sequence[Site],
    op: OperationScope,
) -> bool:
    """Deploy *sites* where needed and restore their AppConfigurations from *backup*."""
    already = deployed_sites(runtime)
    for site in sites:
        if site.site_id not in already and not check_site(site, runtime):
            raise SiteError(f"Site {site.site_id} from the backup cannot be deployed.")

    ok = True
    triggers: set[str] = set()
    with prevent_interruptions():
        for site in sites:
            if site.site_id not in already:
                ok = deploy_site(site, runtime, triggers) and ok
            for app_config in site.app_configs:
                restored = backup.restore_app_configuration(site.site_id, site.site_id, app_config, app_config)
                op.add_step("restore", status="success" if restored else "error", detail=app_config.app_config_id)
                ok = restored and ok
        ok = execute_triggers(triggers, runtime) and ok
    return ok


# ----------------------------------------------------------------------
# Update backups
# ----------------------------------------------------------------------
@update_backup_app.command("check")
def update_backup_check(ctx: typer.Context) -> None:
    """Fail if a temporary update backup is still present."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation("update-backup check", target={"kind": "update-backup"}) as op:
        try:
            UpdateBackup(runtime).check_ready()
        except HANDLED_ERRORS as exc:
            _handle_error(ctx, op, "Update backup check failed", exc)
        console.print("[green]No temporary update backup present.[/green]")
        op.success("Update backup directory is empty.", changed=0)


@update_backup_app.command("create")
def update_backup_create(ctx: typer.Context, site_ids: list[str] | None = SITE_ID_OPTION) -> None:
    """Save deployed site(s) into the temporary update backup."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "update-backup create",
        args={"siteid": list(site_ids or [])},
        target={"kind": "update-backup"},
    ) as op:
        _require_root(op)
        try:
            if site_ids:
                sites = [find_deployed_site(runtime, site_id) for site_id in site_ids]
            else:
                sites = list(deployed_sites(runtime).values())
            ok = UpdateBackup(runtime).create(sites)
        except HANDLED_ERRORS as exc:
            _handle_error(ctx, op, "Update backup failed", exc)

        if not ok:
            _command_error(op, "The update backup is incomplete.", rc=ExitCode.FAILED)
        console.print(f"[green]Saved {', '.join(_site_ids(sites)) or 'nothing'} to the update backup.[/green]")
        op.success("Update backup created.", changed=len(sites))


@update_backup_app.command("restore")
def update_backup_restore(ctx: typer.Context) -> None:
    """Redeploy the sites saved in the temporary update backup and restore their data."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation("update-backup restore", target={"kind": "update-backup"}) as op:
        _require_root(op)
        backup = UpdateBackup(runtime)
        try:
            read_ok = backup.read()
            sites = list(backup.sites.values())
            ok = _deploy_and_restore(runtime, backup, sites, op) and read_ok
        except HANDLED_ERRORS as exc:
            _handle_error(ctx, op, "Restore failed", exc)

        if not ok:
            _command_error(op, "Restore from the update backup failed.", rc=ExitCode.FAILED)
        console.print(f"[green]Restored {', '.join(_site_ids(sites)) or 'nothing'} from the update backup.[/green]")
        op.success("Update backup restored.", changed=len(sites))


@update_backup_app.command("delete")
def update_backup_delete(ctx: typer.Context) -> None:
    """Remove the temporary update backup."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation("update-backup delete", target={"kind": "update-backup"}) as op:
        _require_root(op)
        if not UpdateBackup(runtime).delete():
            _command_error(op, "Cannot delete the update backup.", rc=ExitCode.FAILED)
        console.print("[green]Update backup deleted.[/green]")
        op.success("Update backup deleted.", changed=1)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main"]
