"""Perlscript items: hooks run at lifecycle transitions."""
from __future__ import annotations

import logging

from ..providers.scripts import ScriptError
from ..variables import Variables
from .base import AppConfigurationItem, ItemType

LOGGER = logging.getLogger(__name__)


class PerlscriptItem(AppConfigurationItem):
    """Runs ``perl <source> <operation>``.

    Operations are ``deploy``, ``undeploy``, ``suspend``, ``resume`` and, when
    used as installer/uninstaller/upgrader, ``install``, ``uninstall`` and
    ``upgrade``. Check passes only confirm that the script exists.
    """

    item_type = ItemType.PERLSCRIPT

    def deploy_or_check(self, apply: bool, from_dir: str | None, to_dir: str | None, variables: Variables) -> bool:
        """Run the script with operation ``deploy``."""
        return self._run("deploy", apply, from_dir, variables)

    def undeploy_or_check(self, apply: bool, from_dir: str | None, to_dir: str | None, variables: Variables) -> bool:
        """Run the script with operation ``undeploy``."""
        return self._run("undeploy", apply, from_dir, variables)

    def suspend(self, code_dir: str | None, directory: str | None, variables: Variables) -> bool:
        """Run the script with operation ``suspend``."""
        return self._run("suspend", True, code_dir, variables)

    def resume(self, code_dir: str | None, directory: str | None, variables: Variables) -> bool:
        """Run the script with operation ``resume``."""
        return self._run("resume", True, code_dir, variables)

    def run_post_deploy_script(
        self,
        method: str,
        code_dir: str | None,
        directory: str | None,
        variables: Variables,
    ) -> bool:
        """Run the script with operation *method*."""
        return self._run(method, True, code_dir, variables)

    def _run(self, operation: str, apply: bool, code_dir: str | None, variables: Variables) -> bool:
        script = self._content_path(code_dir, variables)
        if not script.is_file():
            LOGGER.error("Perlscript does not exist: %s", script)
            return False
        if not apply:
            return True
        LOGGER.info("Running perlscript %s %s", script, operation)
        try:
            if self.json.get("source"):
                self.runtime.perl.run_script(script, operation, variables.as_dict())
            else:
                self.runtime.perl.run_code(self._content(code_dir, variables), operation, variables.as_dict())
        except ScriptError as exc:
            LOGGER.error("Perlscript %s failed: %s", script, exc)
            return False
        return True


__all__ = ["PerlscriptItem"]
