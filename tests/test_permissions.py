"""Tests for owner and permission resolution."""
from __future__ import annotations

import os
from pathlib import Path

import pytest

from ubosctl import permissions
from ubosctl.permissions import (
    NO_OWNER,
    PRESERVE_MODE,
    apply_recursively,
    get_gid,
    get_uid,
    is_valid_permission,
    permission_to_mode,
)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (None, 0o644),
        ("", 0o644),
        ("preserve", PRESERVE_MODE),
        ("0640", 0o640),
        ("755", 0o755),
    ],
)
def test_permission_to_mode(value: str | None, expected: int) -> None:
    """Manifest permission strings translate into numeric modes."""
    assert permission_to_mode(value, 0o644) == expected


@pytest.mark.parametrize("value", ["rwx", "99", "12345", "0x1ff"])
def test_invalid_permission_raises(value: str) -> None:
    """Anything but preserve or 3-4 octal digits is rejected."""
    assert not is_valid_permission(value)
    with pytest.raises(ValueError, match="Invalid permissions"):
        permission_to_mode(value, 0o644)


def test_numeric_and_empty_owner_names() -> None:
    """Numeric names are used as-is and empty names leave owners alone."""
    assert get_uid(None) == NO_OWNER
    assert get_uid("1234") == 1234
    assert get_gid("") == NO_OWNER
    assert get_gid("42") == 42


def test_unknown_user_falls_back_to_nobody(monkeypatch: pytest.MonkeyPatch) -> None:
    """An unknown user resolves to the uid of nobody."""

    class Entry:
        pw_uid = 65534

    def fake_getpwnam(name: str) -> Entry:
        if name == "nobody":
            return Entry()
        raise KeyError(name)

    monkeypatch.setattr(permissions.pwd, "getpwnam", fake_getpwnam)

    assert get_uid("no-such-user") == 65534


def test_apply_recursively_sets_file_and_dir_modes(tmp_path: Path) -> None:
    """Directories and files receive their own modes; symlinks are skipped."""
    root = tmp_path / "tree"
    (root / "sub").mkdir(parents=True)
    (root / "sub" / "file.txt").write_text("x")
    os.symlink("sub/file.txt", root / "link")

    assert apply_recursively(root, file_mode=0o600, dir_mode=0o750)

    assert (root.stat().st_mode & 0o777) == 0o750
    assert ((root / "sub").stat().st_mode & 0o777) == 0o750
    assert ((root / "sub" / "file.txt").stat().st_mode & 0o777) == 0o600
    assert (root / "link").is_symlink()


def test_apply_recursively_preserve_is_noop(tmp_path: Path) -> None:
    """With nothing to change the tree is left untouched."""
    target = tmp_path / "file.txt"
    target.write_text("x")
    os.chmod(target, 0o604)

    assert apply_recursively(target)
    assert (target.stat().st_mode & 0o777) == 0o604
