"""Logging helpers for ubosctl.

Two layers are provided:

* module loggers (``logging.getLogger(__name__)``) carry the trace of what
  roles, items and backups do. :func:`configure_console_logging` routes them
  to stderr through :class:`rich.logging.RichHandler`.
* :class:`StructuredLogger` appends one JSON record per CLI operation to
  ``operations.jsonl`` under the logs directory. Failures to write never
  break the operation; the logger disables itself instead.
"""
from __future__ import annotations

import getpass
import json
import logging
import os
import time
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

LOGGER = logging.getLogger(__name__)

OPERATIONS_LOG_NAME = "operations.jsonl"
_VERBOSITY_LEVELS = (logging.WARNING, logging.INFO, logging.DEBUG)


def configure_console_logging(verbosity: int = 0, *, console: Console | None = None) -> None:
    """Install a rich stderr handler on the ``ubosctl`` logger hierarchy."""
    level = _VERBOSITY_LEVELS[min(max(verbosity, 0), len(_VERBOSITY_LEVELS) - 1)]
    root = logging.getLogger("ubosctl")
    for handler in list(root.handlers):
        if isinstance(handler, RichHandler):
            root.removeHandler(handler)
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_time=verbosity > 1,
        show_path=verbosity > 1,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(handler)
    root.setLevel(level)


def _now_iso() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


def _sanitize(value: object) -> object:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): _sanitize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitize(item) for item in value]
    return str(value)


@dataclass(slots=True)
class OperationScope:
    """Collects the outcome of a single CLI operation."""

    command: str
    args: Mapping[str, object]
    target: Mapping[str, object]
    actor: Mapping[str, object]
    started: float = field(default_factory=time.monotonic)
    steps: list[dict[str, object]] = field(default_factory=list)
    result: dict[str, object] | None = None

    def add_step(self, name: str, *, status: str, detail: str | None = None) -> None:
        """Record an intermediate step."""
        step: dict[str, object] = {"name": name, "status": status}
        if detail is not None:
            step["detail"] = detail
        self.steps.append(step)

    def success(
        self,
        message: str,
        *,
        changed: int = 0,
        backups: Sequence[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as successful."""
        self._record("success", message, changed=changed, backups=backups, context=context)

    def warning(
        self,
        message: str,
        *,
        warnings: Sequence[str] | None = None,
        errors: Sequence[str] | None = None,
        changed: int = 0,
        backups: Sequence[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as completed with warnings."""
        self._record(
            "warning",
            message,
            warnings=warnings,
            errors=errors,
            changed=changed,
            backups=backups,
            context=context,
        )

    def error(
        self,
        message: str,
        *,
        errors: Sequence[str] | None = None,
        rc: int = 1,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as failed."""
        self._record(
            "error",
            message,
            errors=list(errors) if errors else [message],
            rc=rc,
            context=context,
        )

    def _record(
        self,
        status: str,
        message: str,
        *,
        warnings: Sequence[str] | None = None,
        errors: Sequence[str] | None = None,
        changed: int = 0,
        backups: Sequence[str] | None = None,
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        result: dict[str, object] = {
            "status": status,
            "message": message,
            "changed": changed,
            "warnings": list(warnings or []),
            "errors": list(errors or []),
            "backups": list(backups or []),
            "context": _sanitize(dict(context or {})),
        }
        if rc is not None:
            result["rc"] = rc
        self.result = result

    def to_record(self) -> dict[str, object]:
        """Return the JSON-serialisable operation record."""
        return {
            "ts": _now_iso(),
            "command": self.command,
            "args": _sanitize(dict(self.args)),
            "target": _sanitize(dict(self.target)),
            "actor": _sanitize(dict(self.actor)),
            "duration_ms": int((time.monotonic() - self.started) * 1000),
            "steps": list(self.steps),
            "result": self.result,
        }


class StructuredLogger:
    """Append-only JSON-lines log of CLI operations."""

    def __init__(self, logs_dir: Path) -> None:
        """Prepare the log directory; disable the logger when unavailable."""
        self._logs_dir = logs_dir.expanduser()
        self._operations_log_path = self._logs_dir / OPERATIONS_LOG_NAME
        self._enabled = True
        try:
            self._logs_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            LOGGER.debug("Operations log disabled, cannot create %s: %s", self._logs_dir, exc)
            self._enabled = False

    @property
    def enabled(self) -> bool:
        """Return whether records are still written."""
        return self._enabled

    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Yield an :class:`OperationScope` and persist it on exit."""
        scope = OperationScope(
            command=command,
            args=dict(args or {}),
            target=dict(target or {}),
            actor=_current_actor(),
        )
        try:
            yield scope
        except BaseException as exc:
            if scope.result is None:
                scope.error(f"Operation aborted: {exc.__class__.__name__}", errors=[str(exc)])
            raise
        finally:
            if scope.result is None:
                scope.success("Operation finished without explicit result.")
            self._write(scope.to_record())

    def _write(self, record: Mapping[str, object]) -> None:
        if not self._enabled:
            return
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=False))
                handle.write("\n")
        except OSError as exc:
            LOGGER.debug("Disabling operations log after write failure: %s", exc)
            self._enabled = False


def _current_actor() -> dict[str, object]:
    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        user = None
    return {"user": user, "uid": os.getuid(), "pid": os.getpid()}


__all__ = [
    "LOGGER",
    "OperationScope",
    "StructuredLogger",
    "configure_console_logging",
]
