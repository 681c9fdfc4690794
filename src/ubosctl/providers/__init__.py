"""Provider interfaces for ubosctl."""
from __future__ import annotations

from .database import DatabaseError, DatabaseProvider
from .scripts import PerlRunner, ScriptError
from .systemd import SystemdError, SystemdProvider

__all__ = [
    "DatabaseError",
    "DatabaseProvider",
    "PerlRunner",
    "ScriptError",
    "SystemdError",
    "SystemdProvider",
]
