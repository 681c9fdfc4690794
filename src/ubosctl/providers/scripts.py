"""Perl interpreter used by perlscript items and perlscript templates.

Scripts receive the operation name as their single argument. The resolved
variables of the calling item are passed as a JSON object in the
``UBOSCTL_VARS`` environment variable.
"""
from __future__ import annotations

import json
import logging
import os
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

LOGGER = logging.getLogger(__name__)

VARS_ENV = "UBOSCTL_VARS"
OPERATION_ENV = "UBOSCTL_OPERATION"


class ScriptError(RuntimeError):
    """Raised when a script exits unsuccessfully."""


@dataclass(slots=True)
class PerlRunner:
    """Execute perl scripts and code snippets."""

    perl_bin: str = "perl"
    dry_run: bool = False

    def run_script(
        self,
        script: Path,
        operation: str,
        variables: Mapping[str, str],
    ) -> subprocess.CompletedProcess[str]:
        """Run the script file *script* for *operation*."""
        return self._run([self.perl_bin, str(script), operation], None, operation, variables)

    def run_code(
        self,
        code: str,
        operation: str,
        variables: Mapping[str, str],
    ) -> subprocess.CompletedProcess[str]:
        """Run perl *code* read from stdin for *operation*."""
        return self._run([self.perl_bin, "-", operation], code, operation, variables)

    def render(self, code: str, variables: Mapping[str, str]) -> str:
        """Run *code* as a template program and return what it prints."""
        if self.dry_run:
            return ""
        return self._run([self.perl_bin, "-", "render"], code, "render", variables).stdout

    # ------------------------------------------------------------------
    def _run(
        self,
        args: Sequence[str],
        stdin: str | None,
        operation: str,
        variables: Mapping[str, str],
    ) -> subprocess.CompletedProcess[str]:
        LOGGER.debug("Running %s", " ".join(args))
        if self.dry_run:
            return subprocess.CompletedProcess(list(args), returncode=0, stdout="", stderr="")
        env = os.environ.copy()
        env[VARS_ENV] = json.dumps(dict(variables), sort_keys=True)
        env[OPERATION_ENV] = operation
        try:
            result = subprocess.run(  # noqa: S603, S607
                list(args),
                input=stdin,
                capture_output=True,
                text=True,
                env=env,
                check=False,
            )
        except FileNotFoundError as exc:
            raise ScriptError(f"{args[0]} not found: {exc}") from exc
        if result.returncode != 0:
            message = (result.stderr or "").strip() or (result.stdout or "").strip() or "no output"
            raise ScriptError(f"{' '.join(args)} failed (exit {result.returncode}): {message}")
        return result


__all__ = ["OPERATION_ENV", "PerlRunner", "ScriptError", "VARS_ENV"]
