"""Interface between AppConfigurationItems and a backup store."""
from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path


class BackupContext(ABC):
    """Scope of one backup store for one AppConfiguration, installable and role.

    Items address their data by retention bucket; the context decides where
    in the backup that data lives.
    """

    @abstractmethod
    def add_file(self, path: Path, bucket: str) -> bool:
        """Store the file at *path* as *bucket*."""

    @abstractmethod
    def add_directory_hierarchy(self, path: Path, bucket: str) -> bool:
        """Store the directory tree at *path* as *bucket*."""

    @abstractmethod
    def restore(self, bucket: str, path: Path) -> bool:
        """Write the file stored as *bucket* to *path*."""

    @abstractmethod
    def restore_recursive(self, bucket: str, path: Path) -> bool:
        """Recreate the directory tree stored as *bucket* at *path*."""


__all__ = ["BackupContext"]
