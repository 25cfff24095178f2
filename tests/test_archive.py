import io
import os
import tarfile
import time
import zipfile
from pathlib import Path

import pytest

from fakes import build_tarball
from toolstrap.errors import ExtractionError
from toolstrap.fetch.archive import extract_archive

MTIME = 1_500_000_000


def test_tar_gz_restores_mode_and_mtime(tmp_path: Path) -> None:
    archive = build_tarball(
        tmp_path / "pkg-1.0.tar.gz",
        {
            "pkg-1.0": (None, 0o755, MTIME),
            "pkg-1.0/bin": (None, 0o750, MTIME + 10),
            "pkg-1.0/bin/run": (b"#!/bin/sh\necho run\n", 0o755, MTIME + 20),
            "pkg-1.0/README": (b"hello\n", 0o644, MTIME + 30),
        },
    )
    destination = tmp_path / "out" / "pkg-1.0"

    extract_archive(archive, "tar.gz", destination)

    run = destination / "bin" / "run"
    assert run.read_bytes() == b"#!/bin/sh\necho run\n"
    assert run.stat().st_mode & 0o777 == 0o755
    assert run.stat().st_mtime == MTIME + 20
    assert (destination / "README").stat().st_mode & 0o777 == 0o644
    assert (destination / "bin").stat().st_mode & 0o777 == 0o750
    assert (destination / "bin").stat().st_mtime == MTIME + 10
    assert destination.stat().st_mtime == MTIME


def test_tar_xz_extracts_relative_to_destination_parent(tmp_path: Path) -> None:
    archive = build_tarball(
        tmp_path / "gettext.tar.xz",
        {"gettext-0.19.8.1/configure": (b"#!/bin/sh\n", 0o755, MTIME)},
        mode="w:xz",
    )
    destination = tmp_path / "downloads" / "gettext-0.19.8.1"

    extract_archive(archive, "tar.xz", destination)

    assert (destination / "configure").is_file()
    assert sorted(os.listdir(tmp_path / "downloads")) == ["gettext-0.19.8.1"]


def test_tar_recreates_symlinks(tmp_path: Path) -> None:
    archive_path = tmp_path / "links.tar.gz"
    with tarfile.open(archive_path, "w:gz") as archive:
        target = tarfile.TarInfo("links/real.txt")
        target.size = 4
        archive.addfile(target, io.BytesIO(b"real"))
        link = tarfile.TarInfo("links/alias.txt")
        link.type = tarfile.SYMTYPE
        link.linkname = "real.txt"
        archive.addfile(link)

    extract_archive(archive_path, "tar.gz", tmp_path / "links")

    alias = tmp_path / "links" / "alias.txt"
    assert alias.is_symlink()
    assert alias.read_text(encoding="utf-8") == "real"


def test_tar_member_escaping_root_is_rejected(tmp_path: Path) -> None:
    archive = build_tarball(tmp_path / "evil.tar.gz", {"../evil.txt": (b"x", 0o644, MTIME)})

    with pytest.raises(ExtractionError):
        extract_archive(archive, "tar.gz", tmp_path / "work" / "evil")

    assert not (tmp_path / "evil.txt").exists()


def test_tar_dot_entry_leaves_download_dir_untouched(tmp_path: Path) -> None:
    downloads = tmp_path / "downloads"
    downloads.mkdir()
    downloads.chmod(0o755)
    before = downloads.stat().st_mtime
    archive = build_tarball(
        tmp_path / "pkg-1.0.tar.gz",
        {
            "./": (None, 0o555, MTIME),
            "./pkg-1.0/configure": (b"#!/bin/sh\n", 0o755, MTIME),
        },
    )

    extract_archive(archive, "tar.gz", downloads / "pkg-1.0")

    assert (downloads / "pkg-1.0" / "configure").is_file()
    assert downloads.stat().st_mode & 0o777 == 0o755
    assert downloads.stat().st_mtime != MTIME
    assert downloads.stat().st_mtime >= before


def test_zip_dot_entry_leaves_download_dir_untouched(tmp_path: Path) -> None:
    downloads = tmp_path / "downloads"
    downloads.mkdir()
    archive_path = tmp_path / "tool.zip"
    date_time = (2020, 1, 2, 3, 4, 6)
    with zipfile.ZipFile(archive_path, "w") as archive:
        archive.writestr(zipfile.ZipInfo("./", date_time=date_time), "")
        archive.writestr(zipfile.ZipInfo("tool/data.txt", date_time=date_time), "data")

    extract_archive(archive_path, "zip", downloads / "tool")

    assert (downloads / "tool" / "data.txt").is_file()
    assert downloads.stat().st_mtime != time.mktime((*date_time, 0, 0, -1))


def test_zip_restores_mtime(tmp_path: Path) -> None:
    archive_path = tmp_path / "tool.zip"
    date_time = (2020, 1, 2, 3, 4, 6)
    with zipfile.ZipFile(archive_path, "w") as archive:
        archive.writestr(zipfile.ZipInfo("tool/", date_time=date_time), "")
        archive.writestr(zipfile.ZipInfo("tool/lib/data.txt", date_time=date_time), "data")

    destination = tmp_path / "tool"
    extract_archive(archive_path, "zip", destination)

    data = destination / "lib" / "data.txt"
    assert data.read_text(encoding="utf-8") == "data"
    assert data.stat().st_mtime == time.mktime((*date_time, 0, 0, -1))


def test_destination_that_is_a_file_is_rejected(tmp_path: Path) -> None:
    archive = build_tarball(tmp_path / "pkg.tar.gz", {"pkg/file": (b"x", 0o644, MTIME)})
    destination = tmp_path / "pkg"
    destination.write_text("not a directory", encoding="utf-8")

    with pytest.raises(ExtractionError) as excinfo:
        extract_archive(archive, "tar.gz", destination)

    assert excinfo.value.code == "E_EXTRACTION"


def test_corrupt_archive_raises_extraction_error(tmp_path: Path) -> None:
    archive = tmp_path / "broken.tar.gz"
    archive.write_bytes(b"definitely not gzip")

    with pytest.raises(ExtractionError):
        extract_archive(archive, "tar.gz", tmp_path / "broken")


def test_unsupported_kind_is_a_programming_error(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        extract_archive(tmp_path / "x", "none", tmp_path / "out")
