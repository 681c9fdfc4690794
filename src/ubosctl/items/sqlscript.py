"""Sqlscript items: SQL run against a database provisioned by the same role."""
from __future__ import annotations

import logging

from ..providers.database import DatabaseError
from ..variables import Variables
from .base import AppConfigurationItem, ItemType

LOGGER = logging.getLogger(__name__)


class SqlscriptItem(AppConfigurationItem):
    """Runs ``source`` or a rendered ``template`` against the database ``name``."""

    item_type = ItemType.SQLSCRIPT

    def deploy_or_check(self, apply: bool, from_dir: str | None, to_dir: str | None, variables: Variables) -> bool:
        """Run the script once the database exists."""
        return self._run(apply, from_dir, variables)

    def undeploy_or_check(self, apply: bool, from_dir: str | None, to_dir: str | None, variables: Variables) -> bool:
        """Nothing to undo; the database itself is dropped by its database item."""
        return True

    def run_post_deploy_script(
        self,
        method: str,
        code_dir: str | None,
        directory: str | None,
        variables: Variables,
    ) -> bool:
        """Run the script as installer, uninstaller or upgrader."""
        return self._run(True, code_dir, variables)

    def _run(self, apply: bool, code_dir: str | None, variables: Variables) -> bool:
        script = self._content_path(code_dir, variables)
        if not script.is_file():
            LOGGER.error("Sqlscript source or template does not exist: %s", script)
            return False
        if not apply:
            return True

        name = variables.replace_variables(str(self.json.get("name", ""))) or ""
        reservation = self.runtime.resources.get_database(
            self.app_config.app_config_id, self.installable.package_name, name
        )
        if reservation is None:
            LOGGER.error("Sqlscript %s refers to unknown database '%s'", script, name)
            return False
        provider = self.runtime.database_provider(self.role.name)
        if provider is None:
            LOGGER.error("No database provider for role %s", self.role.name)
            return False

        LOGGER.info("Running sqlscript %s against %s", script, reservation.dbname)
        try:
            provider.run_sql(reservation.dbname, self._content(code_dir, variables), self.json.get("delimiter"))
        except DatabaseError as exc:
            LOGGER.error("Sqlscript %s failed: %s", script, exc)
            return False
        return True


__all__ = ["SqlscriptItem"]
