"""MySQL/MariaDB provider for database and sqlscript items.

Everything goes through the ``mysql`` and ``mysqldump`` command line clients;
credentials for the administrative connection come from an optional
``--defaults-file``.
"""
from __future__ import annotations

import gzip
import logging
import shutil
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

LOGGER = logging.getLogger(__name__)

ALLOWED_DELIMITERS = (";", "|", "$")
GZIP_MAGIC = b"\x1f\x8b"


class DatabaseError(RuntimeError):
    """Raised when a database command fails."""


@dataclass(slots=True)
class DatabaseProvider:
    """Provision, script, dump and load databases with the mysql clients."""

    client_bin: str = "mysql"
    dump_bin: str = "mysqldump"
    defaults_file: Path | None = None
    host: str = "localhost"
    dry_run: bool = False

    def provision(self, dbname: str, dbuser: str, credential: str, privileges: str) -> None:
        """Create *dbname* and a user holding *privileges* on it."""
        statements = [
            f"CREATE DATABASE `{_identifier(dbname)}` CHARACTER SET utf8mb4;",
            f"CREATE USER '{_identifier(dbuser)}'@'{self.host}' IDENTIFIED BY '{_literal(credential)}';",
            f"GRANT {privileges} ON `{_identifier(dbname)}`.* TO '{_identifier(dbuser)}'@'{self.host}';",
            "FLUSH PRIVILEGES;",
        ]
        self._client([], "\n".join(statements) + "\n", error_prefix=f"provision {dbname}")

    def unprovision(self, dbname: str, dbuser: str) -> None:
        """Drop *dbname* and its user."""
        statements = [
            f"DROP DATABASE IF EXISTS `{_identifier(dbname)}`;",
            f"DROP USER IF EXISTS '{_identifier(dbuser)}'@'{self.host}';",
            "FLUSH PRIVILEGES;",
        ]
        self._client([], "\n".join(statements) + "\n", error_prefix=f"unprovision {dbname}")

    def run_sql(self, dbname: str, sql: str, delimiter: str | None = None) -> None:
        """Execute *sql* against *dbname*."""
        if delimiter and delimiter not in ALLOWED_DELIMITERS:
            raise DatabaseError(f"Invalid statement delimiter {delimiter!r}.")
        if delimiter and delimiter != ";":
            sql = f"DELIMITER {delimiter}\n{sql}"
        self._client([dbname], sql, error_prefix=f"sql script on {dbname}")

    def export(self, dbname: str, target: Path, compress: str | None = None) -> None:
        """Dump *dbname* into *target*, gzip-compressed when *compress* is ``gz``."""
        result = self._run(
            [self.dump_bin, *self._connection_args(), "--single-transaction", dbname],
            stdin=None,
            error_prefix=f"{self.dump_bin} {dbname}",
        )
        data = result.stdout.encode("utf-8") if isinstance(result.stdout, str) else result.stdout
        if compress == "gz":
            with gzip.open(target, "wb") as handle:
                handle.write(data or b"")
        elif compress is None:
            target.write_bytes(data or b"")
        else:
            raise DatabaseError(f"Unsupported compression '{compress}'.")

    def import_(self, dbname: str, source: Path) -> None:
        """Load a (possibly gzip-compressed) dump from *source* into *dbname*."""
        with source.open("rb") as handle:
            compressed = handle.read(2) == GZIP_MAGIC
        if compressed:
            with gzip.open(source, "rb") as handle:
                payload = handle.read()
        else:
            payload = source.read_bytes()
        self._client([dbname], payload.decode("utf-8"), error_prefix=f"import into {dbname}")

    def available(self) -> bool:
        """Return True when the client binary can be found."""
        return shutil.which(self.client_bin) is not None

    # ------------------------------------------------------------------
    def _connection_args(self) -> list[str]:
        args: list[str] = []
        if self.defaults_file is not None:
            args.append(f"--defaults-file={self.defaults_file}")
        return args

    def _client(self, extra: Sequence[str], stdin: str, *, error_prefix: str) -> None:
        self._run(
            [self.client_bin, *self._connection_args(), *extra],
            stdin=stdin,
            error_prefix=error_prefix,
        )

    def _run(
        self,
        args: Sequence[str],
        *,
        stdin: str | None,
        error_prefix: str,
    ) -> subprocess.CompletedProcess[str]:
        LOGGER.debug("Running %s", " ".join(args))
        if self.dry_run:
            return subprocess.CompletedProcess(list(args), returncode=0, stdout="", stderr="")
        try:
            result = subprocess.run(  # noqa: S603, S607
                list(args),
                input=stdin,
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise DatabaseError(f"{args[0]} not found: {exc}") from exc
        if result.returncode != 0:
            message = (result.stderr or "").strip() or (result.stdout or "").strip() or "no output"
            raise DatabaseError(f"{error_prefix} failed (exit {result.returncode}): {message}")
        return result


def _identifier(value: str) -> str:
    if not value or any(char in value for char in "`'\"\\\n"):
        raise DatabaseError(f"Invalid database identifier {value!r}.")
    return value


def _literal(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


__all__ = ["ALLOWED_DELIMITERS", "DatabaseError", "DatabaseProvider"]
