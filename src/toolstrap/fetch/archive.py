"""Archive extraction that restores permission bits and modification times.

Entries are resolved relative to the parent of the destination directory,
since source tarballs carry their own top-level directory
(``zlib-1.2.11/...``) and the destination names that directory.
"""

from __future__ import annotations

import lzma
import os
import shutil
import tarfile
import time
import zipfile
from pathlib import Path

from toolstrap.errors import ExtractionError
from toolstrap.models import ArchiveKind

_TAR_MODES = {"tar.gz": "r:gz", "tar.xz": "r:xz"}
_PERMISSION_BITS = 0o777


def extract_archive(source: str | Path, kind: ArchiveKind, destination: str | Path) -> None:
    """Extract *source* of the given *kind* so that it populates *destination*."""
    source_path = Path(source)
    destination_path = Path(destination)
    if kind not in _TAR_MODES and kind != "zip":
        raise ValueError(f"Unsupported archive kind for extraction: {kind}")
    if destination_path.exists() and not destination_path.is_dir():
        raise ExtractionError(
            "Extraction destination exists and is not a directory.",
            hint="Remove the file or choose another destination.",
            context={"source": str(source_path), "destination": str(destination_path)},
        )
    root = destination_path.parent
    root.mkdir(parents=True, exist_ok=True)
    try:
        if kind == "zip":
            destination_path.mkdir(parents=True, exist_ok=True)
            _extract_zip(source_path, root)
        else:
            _extract_tar(source_path, _TAR_MODES[kind], root)
    except ExtractionError:
        raise
    except (tarfile.TarError, zipfile.BadZipFile, lzma.LZMAError, EOFError, OSError) as exc:
        raise ExtractionError(
            f"Failed to extract archive: {exc}",
            context={"source": str(source_path), "kind": kind, "destination": str(destination_path)},
        ) from exc


def _extract_tar(source: Path, mode: str, root: Path) -> None:
    root_real = Path(os.path.realpath(root))
    directories: list[tarfile.TarInfo] = []
    with tarfile.open(source, mode) as archive:
        for member in archive:
            target = _member_path(root_real, member.name)
            if member.isdir():
                if target == root_real:
                    # "." entries describe the shared download directory
                    continue
                target.mkdir(parents=True, exist_ok=True)
                directories.append(member)
            elif member.isfile():
                target.parent.mkdir(parents=True, exist_ok=True)
                extracted = archive.extractfile(member)
                assert extracted is not None
                with extracted, target.open("wb") as handle:
                    shutil.copyfileobj(extracted, handle)
                os.chmod(target, member.mode & _PERMISSION_BITS)
                os.utime(target, (member.mtime, member.mtime))
            elif member.issym():
                target.parent.mkdir(parents=True, exist_ok=True)
                if target.is_symlink() or target.exists():
                    target.unlink()
                os.symlink(member.linkname, target)
            elif member.islnk():
                link_source = _member_path(root_real, member.linkname)
                target.parent.mkdir(parents=True, exist_ok=True)
                if target.is_symlink() or target.exists():
                    target.unlink()
                os.link(link_source, target)
            # devices and fifos are not part of source archives

    # deepest first so a parent's mtime is set after its children are done
    directories.sort(key=lambda member: member.name.count("/"), reverse=True)
    for member in directories:
        target = _member_path(root_real, member.name)
        os.chmod(target, member.mode & _PERMISSION_BITS)
        os.utime(target, (member.mtime, member.mtime))


def _extract_zip(source: Path, root: Path) -> None:
    root_real = Path(os.path.realpath(root))
    directories: list[tuple[Path, float]] = []
    with zipfile.ZipFile(source) as archive:
        for info in archive.infolist():
            target = _member_path(root_real, info.filename)
            mtime = time.mktime((*info.date_time, 0, 0, -1))
            if info.is_dir():
                if target == root_real:
                    continue
                target.mkdir(parents=True, exist_ok=True)
                directories.append((target, mtime))
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            with archive.open(info) as extracted, target.open("wb") as handle:
                shutil.copyfileobj(extracted, handle)
            os.utime(target, (mtime, mtime))

    directories.sort(key=lambda item: len(item[0].parts), reverse=True)
    for target, mtime in directories:
        os.utime(target, (mtime, mtime))


def _member_path(root_real: Path, name: str) -> Path:
    candidate = root_real / name
    # symlinks already on disk are followed for the parent, not for the entry itself
    parent_real = Path(os.path.realpath(candidate.parent))
    resolved = Path(os.path.normpath(parent_real / candidate.name)) if candidate.name else parent_real
    if resolved != root_real and not resolved.is_relative_to(root_real):
        raise ExtractionError(
            "Archive member escapes the extraction root.",
            hint="The archive is malformed or malicious; verify its source.",
            context={"member": name, "root": str(root_real)},
        )
    return resolved
