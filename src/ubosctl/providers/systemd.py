"""Systemd provider for units declared by systemd-service and systemd-timer items."""
from __future__ import annotations

import logging
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass

LOGGER = logging.getLogger(__name__)

UNIT_ACTIONS = ("enable", "disable", "start", "stop", "restart", "reload", "reload-or-restart")


class SystemdError(RuntimeError):
    """Raised when systemd operations fail."""


@dataclass(slots=True)
class SystemdProvider:
    """Run ``systemctl`` against named units."""

    systemctl_bin: str = "systemctl"
    dry_run: bool = False

    def enable(self, unit: str) -> subprocess.CompletedProcess[str]:
        """Enable *unit*."""
        return self._systemctl("enable", unit)

    def disable(self, unit: str) -> subprocess.CompletedProcess[str]:
        """Disable *unit*."""
        return self._systemctl("disable", unit)

    def start(self, unit: str) -> subprocess.CompletedProcess[str]:
        """Start *unit*."""
        return self._systemctl("start", unit)

    def stop(self, unit: str) -> subprocess.CompletedProcess[str]:
        """Stop *unit*."""
        return self._systemctl("stop", unit)

    def run_action(self, action: str, unit: str) -> subprocess.CompletedProcess[str]:
        """Run one of :data:`UNIT_ACTIONS` against *unit*."""
        if action not in UNIT_ACTIONS:
            raise SystemdError(f"Unsupported systemctl action '{action}'.")
        return self._systemctl(action, unit)

    def daemon_reload(self) -> None:
        """Ask systemd to reload unit files; a missing systemctl is ignored."""
        try:
            self._systemctl("daemon-reload")
        except SystemdError as exc:
            if "not found" in str(exc).lower():
                return
            raise

    # ------------------------------------------------------------------
    def _systemctl(
        self,
        command: str,
        unit: str | None = None,
        *,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        args: list[str] = [self.systemctl_bin, command]
        if unit is not None:
            args.append(unit)
        return self._run_command(args, check=check, error_prefix=f"{self.systemctl_bin} {command}")

    def _run_command(
        self,
        args: Sequence[str],
        *,
        check: bool,
        error_prefix: str,
    ) -> subprocess.CompletedProcess[str]:
        LOGGER.debug("Running %s", " ".join(args))
        if self.dry_run:
            return subprocess.CompletedProcess(list(args), returncode=0, stdout="", stderr="")
        try:
            result = subprocess.run(  # noqa: S603, S607
                list(args),
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise SystemdError(f"{args[0]} not found: {exc}") from exc
        if check and result.returncode != 0:
            stdout = getattr(result, "stdout", "") or ""
            stderr = getattr(result, "stderr", "") or ""
            message = stderr.strip() or stdout.strip() or "no output"
            raise SystemdError(f"{error_prefix} failed (exit {result.returncode}): {message}")
        return result


__all__ = ["SystemdError", "SystemdProvider", "UNIT_ACTIONS"]
