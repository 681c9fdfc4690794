"""Owner and permission resolution for deployed items."""
from __future__ import annotations

import grp
import logging
import os
import pwd
import re
from pathlib import Path

LOGGER = logging.getLogger(__name__)

PRESERVE = "preserve"
PRESERVE_MODE = -1
NO_OWNER = -1
DEFAULT_FILE_MODE = 0o644
DEFAULT_DIR_MODE = 0o755

_PERMISSION_PATTERN = re.compile(r"^(preserve|[0-7]{3,4})$")
_NUMERIC_PATTERN = re.compile(r"^[0-9]+$")


def is_valid_permission(value: str) -> bool:
    """Return True when *value* is ``preserve`` or a 3-4 digit octal string."""
    return bool(_PERMISSION_PATTERN.match(value))


def permission_to_mode(value: str | None, default: int) -> int:
    """Translate a manifest permission string into a numeric mode.

    ``None`` and the empty string select *default*; ``preserve`` yields
    :data:`PRESERVE_MODE`, which callers treat as "do not chmod".
    """
    if value is None or value == "":
        return default
    if value == PRESERVE:
        return PRESERVE_MODE
    if not _PERMISSION_PATTERN.match(value):
        raise ValueError(f"Invalid permissions (need octal, no leading zero): {value!r}")
    return int(value, 8)


def get_uid(uname: str | None) -> int:
    """Return the numeric uid for *uname*, falling back to ``nobody``."""
    if not uname:
        return NO_OWNER
    if _NUMERIC_PATTERN.match(uname):
        return int(uname)
    try:
        return pwd.getpwnam(uname).pw_uid
    except KeyError:
        LOGGER.warning("Cannot find user %s, using 'nobody' instead.", uname)
    try:
        return pwd.getpwnam("nobody").pw_uid
    except KeyError:
        LOGGER.error("Cannot find user 'nobody' either, leaving owner unchanged.")
        return NO_OWNER


def get_gid(gname: str | None) -> int:
    """Return the numeric gid for *gname*, falling back to ``nogroup``."""
    if not gname:
        return NO_OWNER
    if _NUMERIC_PATTERN.match(gname):
        return int(gname)
    try:
        return grp.getgrnam(gname).gr_gid
    except KeyError:
        LOGGER.warning("Cannot find group %s, using 'nogroup' instead.", gname)
    try:
        return grp.getgrnam("nogroup").gr_gid
    except KeyError:
        LOGGER.error("Cannot find group 'nogroup' either, leaving group unchanged.")
        return NO_OWNER


def apply_owner_and_mode(path: Path, *, uid: int = NO_OWNER, gid: int = NO_OWNER, mode: int = PRESERVE_MODE) -> bool:
    """Apply ownership and mode to a single path without following symlinks."""
    ok = True
    if mode != PRESERVE_MODE and not path.is_symlink():
        try:
            os.chmod(path, mode)
        except OSError as exc:
            LOGGER.error("Failed to chmod %o %s: %s", mode, path, exc)
            ok = False
    if uid != NO_OWNER or gid != NO_OWNER:
        try:
            os.chown(path, uid, gid, follow_symlinks=False)
        except OSError as exc:
            LOGGER.error("Failed to chown %s:%s %s: %s", uid, gid, path, exc)
            ok = False
    return ok


def apply_recursively(
    root: Path,
    *,
    uid: int = NO_OWNER,
    gid: int = NO_OWNER,
    file_mode: int = PRESERVE_MODE,
    dir_mode: int = PRESERVE_MODE,
) -> bool:
    """Apply owner and file/dir modes to *root* and everything below it."""
    if uid == NO_OWNER and gid == NO_OWNER and file_mode == PRESERVE_MODE and dir_mode == PRESERVE_MODE:
        return True
    if not root.is_dir() or root.is_symlink():
        return apply_owner_and_mode(root, uid=uid, gid=gid, mode=file_mode)

    ok = apply_owner_and_mode(root, uid=uid, gid=gid, mode=dir_mode)
    for current, dirnames, filenames in os.walk(root):
        base = Path(current)
        for name in dirnames:
            child = base / name
            mode = PRESERVE_MODE if child.is_symlink() else dir_mode
            ok = apply_owner_and_mode(child, uid=uid, gid=gid, mode=mode) and ok
        for name in filenames:
            ok = apply_owner_and_mode(base / name, uid=uid, gid=gid, mode=file_mode) and ok
    return ok


__all__ = [
    "DEFAULT_DIR_MODE",
    "DEFAULT_FILE_MODE",
    "NO_OWNER",
    "PRESERVE",
    "PRESERVE_MODE",
    "apply_owner_and_mode",
    "apply_recursively",
    "get_gid",
    "get_uid",
    "is_valid_permission",
    "permission_to_mode",
]
