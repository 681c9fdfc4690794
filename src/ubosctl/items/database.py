"""Database items: a symbolic database provisioned for one AppConfiguration."""
from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from ..backup.context import BackupContext
from ..providers.database import DatabaseError, DatabaseProvider
from ..resources import DatabaseReservation, ResourceError
from ..variables import Variables
from .base import AppConfigurationItem, ItemType

LOGGER = logging.getLogger(__name__)


class DatabaseItem(AppConfigurationItem):
    """Provisions the database ``name`` with ``privileges``.

    Once provisioned, the generated identifiers are available as
    ``appconfig.<role>.dbname.<name>``, ``appconfig.<role>.dbuser.<name>`` and
    ``appconfig.<role>.dbusercredential.<name>``.
    """

    item_type = ItemType.DATABASE

    def deploy_or_check(self, apply: bool, from_dir: str | None, to_dir: str | None, variables: Variables) -> bool:
        """Provision the database unless it exists already."""
        name = self._name(variables)
        privileges = variables.replace_variables(str(self.json.get("privileges", ""))) or ""
        if not apply:
            return True
        provider = self._provider()
        if provider is None:
            return False

        resources = self.runtime.resources
        reservation = resources.get_database(self.app_config.app_config_id, self.installable.package_name, name)
        if reservation is None:
            reservation = resources.allocate_database(
                self.app_config.app_config_id,
                self.installable.package_name,
                self.role.name,
                name,
                privileges,
            )
            try:
                provider.provision(reservation.dbname, reservation.dbuser, reservation.credential, privileges)
            except DatabaseError as exc:
                LOGGER.error("Cannot provision database '%s': %s", name, exc)
                return False
            resources.record_database(reservation)
            LOGGER.info("Provisioned database %s for %s", reservation.dbname, name)
        self._export_variables(reservation, variables)
        return True

    def undeploy_or_check(self, apply: bool, from_dir: str | None, to_dir: str | None, variables: Variables) -> bool:
        """Drop the database; an unknown database is a failure."""
        name = self._name(variables)
        if not apply:
            return True
        reservation = self._reservation(name)
        if reservation is None:
            return False
        provider = self._provider()
        if provider is None:
            return False
        try:
            provider.unprovision(reservation.dbname, reservation.dbuser)
            self.runtime.resources.forget_database(reservation)
        except (DatabaseError, ResourceError) as exc:
            LOGGER.error("Cannot unprovision database '%s': %s", name, exc)
            return False
        return True

    def backup(
        self,
        directory: str | None,
        variables: Variables,
        context: BackupContext,
        temp_files: list[Path],
        compress: str | None = None,
    ) -> bool:
        """Dump the database into a temporary file and add it to the bucket."""
        if self.bucket is None:
            LOGGER.error("Cannot back up database item without retention bucket: %r", self)
            return False
        reservation = self._reservation(self._name(variables))
        provider = self._provider()
        if reservation is None or provider is None:
            return False

        suffix = ".sql.gz" if compress == "gz" else ".sql"
        handle, name = tempfile.mkstemp(prefix="ubosctl-db-", suffix=suffix, dir=self._tmpdir(variables))
        os.close(handle)
        dump = Path(name)
        temp_files.append(dump)
        try:
            provider.export(reservation.dbname, dump, compress)
        except DatabaseError as exc:
            LOGGER.error("Cannot dump database %s: %s", reservation.dbname, exc)
            return False
        return context.add_file(dump, self.bucket)

    def restore(self, directory: str | None, variables: Variables, context: BackupContext) -> bool:
        """Load the dump stored in the bucket into the database."""
        if self.bucket is None:
            LOGGER.error("Cannot restore database item without retention bucket: %r", self)
            return False
        reservation = self._reservation(self._name(variables))
        provider = self._provider()
        if reservation is None or provider is None:
            return False

        handle, name = tempfile.mkstemp(prefix="ubosctl-db-", suffix=".sql", dir=self._tmpdir(variables))
        os.close(handle)
        dump = Path(name)
        try:
            if not context.restore(self.bucket, dump):
                LOGGER.error("Cannot restore database: bucket %s, context %r", self.bucket, context)
                return False
            provider.import_(reservation.dbname, dump)
        except DatabaseError as exc:
            LOGGER.error("Cannot import database %s: %s", reservation.dbname, exc)
            return False
        finally:
            dump.unlink(missing_ok=True)
        return True

    # ------------------------------------------------------------------
    def _name(self, variables: Variables) -> str:
        return variables.replace_variables(str(self.json["name"])) or ""

    def _provider(self) -> DatabaseProvider | None:
        provider = self.runtime.database_provider(self.role.name)
        if provider is None:
            LOGGER.error("No database provider for role %s", self.role.name)
        return provider

    def _reservation(self, name: str) -> DatabaseReservation | None:
        reservation = self.runtime.resources.get_database(
            self.app_config.app_config_id, self.installable.package_name, name
        )
        if reservation is None:
            LOGGER.error(
                "Database '%s' is not provisioned for %s at %s",
                name,
                self.installable.package_name,
                self.app_config.app_config_id,
            )
        return reservation

    def _tmpdir(self, variables: Variables) -> str | None:
        return variables.get_resolve_or_null("host.tmpdir")

    def _export_variables(self, reservation: DatabaseReservation, variables: Variables) -> None:
        prefix = f"appconfig.{self.role.name}"
        variables.put(f"{prefix}.dbname.{reservation.name}", reservation.dbname)
        variables.put(f"{prefix}.dbuser.{reservation.name}", reservation.dbuser)
        variables.put(f"{prefix}.dbusercredential.{reservation.name}", reservation.credential)


__all__ = ["DatabaseItem"]
