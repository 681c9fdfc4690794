"""Filesystem mutation helpers used by items and backups.

All helpers use native ``os``/``shutil`` calls, log failures through the
module logger and return ``True``/``False`` so callers can fold the outcome
into an aggregate result.
"""
from __future__ import annotations

import calendar
import logging
import os
import re
import shutil
import time
from collections.abc import Callable, Mapping
from pathlib import Path

from .permissions import (
    DEFAULT_DIR_MODE,
    DEFAULT_FILE_MODE,
    NO_OWNER,
    apply_owner_and_mode,
)

LOGGER = logging.getLogger(__name__)

TIME_FORMAT = "%Y%m%d-%H%M%S"
_TIME_PATTERN = re.compile(r"^\d{8}-\d{6}$")


def save_file(
    path: Path,
    content: str | bytes,
    *,
    mode: int = DEFAULT_FILE_MODE,
    uid: int = NO_OWNER,
    gid: int = NO_OWNER,
) -> bool:
    """Write *content* to *path* and apply owner and mode."""
    data = content.encode("utf-8") if isinstance(content, str) else content
    LOGGER.debug("Saving %s (%d bytes, mode %o)", path, len(data), mode)
    try:
        path.write_bytes(data)
    except OSError as exc:
        LOGGER.error("Could not write to file %s: %s", path, exc)
        return False
    return apply_owner_and_mode(path, uid=uid, gid=gid, mode=mode)


def copy_file(
    source: Path,
    target: Path,
    *,
    mode: int = DEFAULT_FILE_MODE,
    uid: int = NO_OWNER,
    gid: int = NO_OWNER,
) -> bool:
    """Copy the content of *source* onto *target* and apply owner and mode."""
    try:
        shutil.copyfile(source, target)
    except OSError as exc:
        LOGGER.error("Failed to copy %s to %s: %s", source, target, exc)
        return False
    return apply_owner_and_mode(target, uid=uid, gid=gid, mode=mode)


def delete_file(*paths: Path) -> bool:
    """Delete files or symlinks; anything missing or not a file is an error."""
    ok = True
    for path in paths:
        if path.is_symlink() or path.is_file():
            try:
                path.unlink()
            except OSError as exc:
                LOGGER.error("Failed to delete file %s: %s", path, exc)
                ok = False
        elif path.exists():
            LOGGER.error("Cannot delete file %s, it isn't a file or symlink", path)
            ok = False
        else:
            LOGGER.error("Cannot delete file %s, it doesn't exist", path)
            ok = False
    return ok


def mkdir(
    path: Path,
    *,
    mode: int = DEFAULT_DIR_MODE,
    uid: int = NO_OWNER,
    gid: int = NO_OWNER,
    parents: bool = False,
) -> bool:
    """Create *path*; an existing directory is a warning, not a failure."""
    if path.is_dir():
        LOGGER.warning("Directory exists already: %s", path)
        return True
    if path.exists() or path.is_symlink():
        LOGGER.error("Failed to create directory, something is there already: %s", path)
        return False

    missing = [path]
    if parents:
        parent = path.parent
        while not parent.exists() and parent != parent.parent:
            missing.append(parent)
            parent = parent.parent

    ok = True
    for current in reversed(missing):
        LOGGER.debug("Creating directory %s", current)
        try:
            os.mkdir(current)
        except OSError as exc:
            LOGGER.error("Failed to create directory %s: %s", current, exc)
            return False
        ok = apply_owner_and_mode(current, uid=uid, gid=gid, mode=mode) and ok
    return ok


def rmdir(*paths: Path) -> bool:
    """Remove empty directories; a missing directory only warns."""
    ok = True
    for path in paths:
        if path.is_dir() and not path.is_symlink():
            try:
                os.rmdir(path)
            except OSError as exc:
                LOGGER.error("Failed to delete directory %s: %s", path, exc)
                ok = False
        elif path.exists() or path.is_symlink():
            LOGGER.error("Cannot delete directory. File exists but isn't a directory: %s", path)
            ok = False
        else:
            LOGGER.warning("Cannot delete directory, does not exist: %s", path)
    return ok


def delete_recursively(*paths: Path) -> bool:
    """Remove files and directory trees; missing paths are ignored."""
    ok = True
    for path in paths:
        LOGGER.debug("Recursively deleting %s", path)
        try:
            if path.is_dir() and not path.is_symlink():
                shutil.rmtree(path)
            elif path.exists() or path.is_symlink():
                path.unlink()
        except OSError as exc:
            LOGGER.error("Failed to delete %s: %s", path, exc)
            ok = False
    return ok


def copy_recursively(
    source: Path,
    target: Path,
    *,
    copy_function: Callable[..., object] = shutil.copy2,
    keep_dir_modes: bool = False,
) -> bool:
    """Copy *source* (file or tree) to *target*, keeping symlinks.

    The default ``copy_function`` also keeps modes and timestamps; pass
    :func:`shutil.copyfile` to leave the modes of existing targets alone.
    With ``keep_dir_modes`` directories that already exist below *target*
    keep their mode instead of taking the source's.
    """
    try:
        if source.is_dir() and not source.is_symlink():
            existing = _dir_modes(target) if keep_dir_modes else {}
            shutil.copytree(
                source,
                target,
                symlinks=True,
                copy_function=copy_function,
                dirs_exist_ok=True,
            )
            for path, mode in existing.items():
                os.chmod(path, mode)
        elif source.is_symlink():
            shutil.copy2(source, target, follow_symlinks=False)
        else:
            copy_function(source, target)
    except (OSError, shutil.Error) as exc:
        LOGGER.error("Failed to copy %s to %s: %s", source, target, exc)
        return False
    return True


def _dir_modes(root: Path) -> dict[Path, int]:
    if not root.is_dir() or root.is_symlink():
        return {}
    modes = {root: root.stat().st_mode & 0o7777}
    for current, dirnames, _ in os.walk(root):
        for name in dirnames:
            child = Path(current) / name
            if not child.is_symlink():
                modes[child] = child.stat().st_mode & 0o7777
    return modes


def symlink(
    source: str,
    link: Path,
    *,
    uid: int = NO_OWNER,
    gid: int = NO_OWNER,
) -> bool:
    """Create *link* pointing at *source* and set its ownership."""
    LOGGER.debug("Symlink %s -> %s", link, source)
    try:
        os.symlink(source, link)
    except OSError as exc:
        LOGGER.error("Failed to symlink %s %s: %s", source, link, exc)
        return False
    return apply_owner_and_mode(link, uid=uid, gid=gid)


def is_dir_empty(path: Path) -> bool:
    """Return True when *path* is a directory without entries."""
    try:
        with os.scandir(path) as entries:
            return next(entries, None) is None
    except OSError as exc:
        LOGGER.error("Not a directory: %s (%s)", path, exc)
        return False


def slurp_file(path: Path) -> str | None:
    """Return the text content of *path*, or ``None`` when unreadable."""
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        LOGGER.error("Cannot read file %s: %s", path, exc)
        return None


def insert_slurped_files(json_value: object, base_dir: Path) -> object:
    """Replace ``@path`` string values anywhere in *json_value* by file content.

    Relative paths are resolved against *base_dir*.
    """
    if isinstance(json_value, list):
        return [insert_slurped_files(item, base_dir) for item in json_value]
    if isinstance(json_value, Mapping):
        return {key: insert_slurped_files(value, base_dir) for key, value in json_value.items()}
    if isinstance(json_value, str) and json_value.startswith("@"):
        target = Path(json_value[1:])
        if not target.is_absolute():
            target = base_dir / target
        return slurp_file(target)
    return json_value


def time_to_string(timestamp: float | None = None) -> str:
    """Format *timestamp* (default: now) as ``YYYYMMDD-HHMMSS`` in UTC."""
    return time.strftime(TIME_FORMAT, time.gmtime(time.time() if timestamp is None else timestamp))


def string_to_time(value: str) -> int | None:
    """Parse a ``YYYYMMDD-HHMMSS`` UTC string into epoch seconds."""
    value = value.strip()
    if not _TIME_PATTERN.match(value):
        LOGGER.error("Cannot parse time string %s", value)
        return None
    return calendar.timegm(time.strptime(value, TIME_FORMAT))


__all__ = [
    "TIME_FORMAT",
    "copy_file",
    "copy_recursively",
    "delete_file",
    "delete_recursively",
    "insert_slurped_files",
    "is_dir_empty",
    "mkdir",
    "rmdir",
    "save_file",
    "slurp_file",
    "string_to_time",
    "symlink",
    "time_to_string",
]
