"""Tests for the systemd provider."""
from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import pytest

from ubosctl.providers.systemd import SystemdError, SystemdProvider


class DummyResult:
    """Simple stand-in for ``subprocess.CompletedProcess``."""

    def __init__(self, returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        """Initialise the dummy result."""
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


@pytest.fixture
def provider() -> SystemdProvider:
    """Return a provider whose systemctl is never invoked directly."""
    return SystemdProvider(systemctl_bin="systemctl")


@pytest.mark.parametrize("command", ["enable", "disable", "start", "stop"])
def test_unit_management_calls_systemctl(
    monkeypatch: pytest.MonkeyPatch,
    provider: SystemdProvider,
    command: str,
) -> None:
    """Enable/disable/start/stop delegate to systemctl with the unit name."""
    captured: list[list[str]] = []

    def fake_run(args: Sequence[str], **kwargs: Any) -> DummyResult:
        captured.append(list(args))
        return DummyResult()

    monkeypatch.setattr("ubosctl.providers.systemd.subprocess.run", fake_run)

    getattr(provider, command)("demo.service")
    assert captured == [["systemctl", command, "demo.service"]]


def test_run_action_rejects_unknown_actions(provider: SystemdProvider) -> None:
    """Only the configured systemctl verbs are accepted."""
    with pytest.raises(SystemdError, match="Unsupported systemctl action 'kill'"):
        provider.run_action("kill", "httpd.service")


def test_failure_raises_with_stderr(
    monkeypatch: pytest.MonkeyPatch,
    provider: SystemdProvider,
) -> None:
    """A non-zero exit surfaces stderr in the error message."""
    monkeypatch.setattr(
        "ubosctl.providers.systemd.subprocess.run",
        lambda args, **kwargs: DummyResult(returncode=5, stderr="Unit demo.service not loaded.\n"),
    )

    with pytest.raises(SystemdError, match=r"systemctl start failed \(exit 5\): Unit demo.service not loaded."):
        provider.start("demo.service")


def test_missing_binary_raises(
    monkeypatch: pytest.MonkeyPatch,
    provider: SystemdProvider,
) -> None:
    """A missing systemctl binary raises SystemdError."""

    def fake_run(args: Sequence[str], **kwargs: Any) -> DummyResult:
        raise FileNotFoundError(args[0])

    monkeypatch.setattr("ubosctl.providers.systemd.subprocess.run", fake_run)

    with pytest.raises(SystemdError, match="not found"):
        provider.enable("demo.service")


def test_daemon_reload_ignores_missing_binary(
    monkeypatch: pytest.MonkeyPatch,
    provider: SystemdProvider,
) -> None:
    """Hosts without systemctl skip daemon-reload silently."""

    def fake_run(args: Sequence[str], **kwargs: Any) -> DummyResult:
        raise FileNotFoundError(args[0])

    monkeypatch.setattr("ubosctl.providers.systemd.subprocess.run", fake_run)

    provider.daemon_reload()


def test_dry_run_skips_systemctl(monkeypatch: pytest.MonkeyPatch) -> None:
    """Dry-run requests avoid executing systemctl and still report success."""

    def fake_run(args: Sequence[str], **kwargs: Any) -> DummyResult:
        raise AssertionError("systemctl must not run in dry-run mode")

    monkeypatch.setattr("ubosctl.providers.systemd.subprocess.run", fake_run)

    result = SystemdProvider(dry_run=True).run_action("reload-or-restart", "httpd.service")
    assert result.returncode == 0
    assert result.args == ["systemctl", "reload-or-restart", "httpd.service"]
