"""Presence checks against the installation prefix and the host."""

from __future__ import annotations

import os
import shutil
from collections.abc import Iterable
from pathlib import Path

from toolstrap.errors import MissingSystemBinaryError, ValidationError

SYSTEM_PKGCONFIG_DIRS: tuple[Path, ...] = (
    Path("/usr/lib/pkgconfig"),
    Path("/usr/lib64/pkgconfig"),
    Path("/usr/lib/x86_64-linux-gnu/pkgconfig"),
    Path("/usr/lib/i386-linux-gnu/pkgconfig"),
    Path("/usr/lib/aarch64-linux-gnu/pkgconfig"),
    Path("/usr/share/pkgconfig"),
    Path("/usr/local/lib/pkgconfig"),
    Path("/usr/local/share/pkgconfig"),
)


def find_binary(binary: str, search_path: str | None = None) -> Path | None:
    """Locate an executable by path or by name on *search_path* (``PATH`` if omitted)."""
    if not binary:
        raise ValidationError("Binary name must not be empty.")
    candidate = Path(binary)
    if candidate.is_absolute() or os.sep in binary:
        if candidate.is_file() and os.access(candidate, os.X_OK):
            return candidate
        return None
    found = shutil.which(binary, path=search_path if search_path is not None else os.environ.get("PATH", ""))
    return Path(found) if found is not None else None


def require_binary(binary: str, search_path: str | None = None) -> Path:
    found = find_binary(binary, search_path)
    if found is None:
        raise MissingSystemBinaryError(binary, search_path=search_path or os.environ.get("PATH", ""))
    return found


def pkgconfig_dirs(prefix: Path, *, include_system: bool = True) -> list[Path]:
    dirs = [
        prefix / "lib" / "pkgconfig",
        prefix / "lib64" / "pkgconfig",
        prefix / "share" / "pkgconfig",
    ]
    env_path = os.environ.get("PKG_CONFIG_PATH", "")
    dirs.extend(Path(entry) for entry in env_path.split(os.pathsep) if entry)
    if include_system:
        dirs.extend(SYSTEM_PKGCONFIG_DIRS)
    return dirs


def has_pkgconfig_module(name: str, prefix: Path, *, extra_dirs: Iterable[Path] = (), include_system: bool = True) -> bool:
    """Return whether a ``<name>.pc`` file exists in the prefix or a known system directory."""
    filename = f"{name}.pc"
    for directory in (*pkgconfig_dirs(prefix, include_system=include_system), *extra_dirs):
        if (directory / filename).is_file():
            return True
    return False


__all__ = [
    "SYSTEM_PKGCONFIG_DIRS",
    "find_binary",
    "has_pkgconfig_module",
    "pkgconfig_dirs",
    "require_binary",
]
