"""Backup stores for AppConfiguration data."""
from __future__ import annotations

from .base import AbstractBackup, BackupError, PreconditionError
from .context import BackupContext
from .update_backup import UpdateBackup, UpdateBackupContext
from .zipfile_backup import FILE_TYPE, ZipFileBackup, ZipFileBackupContext

__all__ = [
    "AbstractBackup",
    "BackupContext",
    "BackupError",
    "FILE_TYPE",
    "PreconditionError",
    "UpdateBackup",
    "UpdateBackupContext",
    "ZipFileBackup",
    "ZipFileBackupContext",
]
