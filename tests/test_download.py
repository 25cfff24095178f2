import hashlib
from pathlib import Path
from typing import Any

import pytest

from fakes import build_tarball
from toolstrap.cancellation import CancellationToken
from toolstrap.errors import (
    ChecksumMismatchError,
    DownloadFailureError,
    EmptyDownloadError,
    ExtractionError,
    PolicyError,
)
from toolstrap.fetch import download as download_module
from toolstrap.fetch.download import AutoInteraction, Downloader, md5_of_file
from toolstrap.models import DownloadSpec
from toolstrap.observability import StructuredLogger
from toolstrap.policy import AlwaysCancel, RetryUpTo


@pytest.fixture
def transfers(monkeypatch: pytest.MonkeyPatch) -> list[str]:
    """Count every URL the downloader opens."""
    opened: list[str] = []
    real_urlopen = download_module.urlopen

    def counting_urlopen(url: str, *args: Any, **kwargs: Any) -> Any:
        opened.append(url)
        return real_urlopen(url, *args, **kwargs)

    monkeypatch.setattr(download_module, "urlopen", counting_urlopen)
    return opened


def _source(tmp_path: Path, payload: bytes = b"zlib source") -> Path:
    source = tmp_path / "mirror" / "zlib-1.2.11.tar"
    source.parent.mkdir(parents=True, exist_ok=True)
    source.write_bytes(payload)
    return source


def test_md5_of_file(tmp_path: Path) -> None:
    path = _source(tmp_path, b"payload")
    assert md5_of_file(path) == hashlib.md5(b"payload").hexdigest()


def test_fetch_downloads_and_verifies(tmp_path: Path, transfers: list[str]) -> None:
    source = _source(tmp_path)
    spec = DownloadSpec(
        url=source.as_uri(),
        target=tmp_path / "downloads" / "zlib.tar",
        checksum=hashlib.md5(b"zlib source").hexdigest().upper(),
    )

    outcome = Downloader().fetch(spec)

    assert outcome.ok
    assert spec.target.read_bytes() == b"zlib source"
    assert transfers == [source.as_uri()]


def test_fetch_skips_when_target_matches_checksum(tmp_path: Path, transfers: list[str]) -> None:
    source = _source(tmp_path)
    spec = DownloadSpec(
        url=source.as_uri(),
        target=tmp_path / "zlib.tar",
        checksum=hashlib.md5(b"zlib source").hexdigest(),
    )
    downloader = Downloader()

    assert downloader.fetch(spec).ok
    source.unlink()
    assert downloader.fetch(spec).ok
    assert len(transfers) == 1


def test_skip_checksum_trusts_existing_target(tmp_path: Path, transfers: list[str]) -> None:
    source = _source(tmp_path)
    target = tmp_path / "zlib.tar"
    target.write_bytes(b"stale but present")
    spec = DownloadSpec(url=source.as_uri(), target=target, checksum="0" * 32)

    assert Downloader().fetch(spec, skip_checksum=True).ok
    assert transfers == []
    assert target.read_bytes() == b"stale but present"


def test_checksum_mismatch_is_retried_exactly_n_times(tmp_path: Path, transfers: list[str]) -> None:
    source = _source(tmp_path)
    spec = DownloadSpec(url=source.as_uri(), target=tmp_path / "zlib.tar", checksum="0" * 32)

    outcome = Downloader().fetch(spec, on_checksum_mismatch=RetryUpTo(3))

    assert outcome.is_cancelled
    assert isinstance(outcome.error, ChecksumMismatchError)
    assert outcome.error.actual == hashlib.md5(b"zlib source").hexdigest()
    assert len(transfers) == 3


def test_empty_download_consults_its_policy(tmp_path: Path, transfers: list[str]) -> None:
    source = _source(tmp_path, b"")
    spec = DownloadSpec(url=source.as_uri(), target=tmp_path / "empty")

    cancelled = Downloader().fetch(spec, on_empty_download=AlwaysCancel())
    retried = Downloader().fetch(spec, on_empty_download=RetryUpTo(2))

    assert cancelled.is_cancelled
    assert isinstance(cancelled.error, EmptyDownloadError)
    assert retried.is_cancelled
    assert len(transfers) == 3


def test_transfer_failure_is_wrapped_and_retried(tmp_path: Path, transfers: list[str]) -> None:
    missing = (tmp_path / "nowhere" / "zlib.tar").as_uri()
    spec = DownloadSpec(url=missing, target=tmp_path / "zlib.tar")

    outcome = Downloader().fetch(spec, on_failure=RetryUpTo(2))

    assert outcome.is_cancelled
    assert isinstance(outcome.error, DownloadFailureError)
    assert isinstance(outcome.error.__cause__, OSError)
    assert transfers == [missing, missing]


def test_transfer_failure_rotates_to_mirror(tmp_path: Path, transfers: list[str]) -> None:
    source = _source(tmp_path)
    missing = (tmp_path / "nowhere" / "zlib.tar").as_uri()
    spec = DownloadSpec(url=missing, target=tmp_path / "zlib.tar", mirrors=(source.as_uri(),))

    outcome = Downloader().fetch(spec)

    assert outcome.ok
    assert outcome.value is not None and outcome.value.url == source.as_uri()
    assert transfers == [missing, source.as_uri()]


def test_cancelled_token_prevents_transfer(tmp_path: Path, transfers: list[str]) -> None:
    token = CancellationToken()
    token.cancel()
    spec = DownloadSpec(url=_source(tmp_path).as_uri(), target=tmp_path / "zlib.tar")

    outcome = Downloader(interaction=AutoInteraction(token)).fetch(spec)

    assert outcome.is_cancelled
    assert outcome.error is None
    assert transfers == []


def test_offline_mode_refuses_transfer_but_accepts_cached_target(tmp_path: Path) -> None:
    source = _source(tmp_path)
    checksum = hashlib.md5(b"zlib source").hexdigest()
    spec = DownloadSpec(url=source.as_uri(), target=tmp_path / "zlib.tar", checksum=checksum)
    downloader = Downloader(network_mode="offline")

    with pytest.raises(PolicyError):
        downloader.fetch(spec)

    spec.target.write_bytes(b"zlib source")
    assert downloader.fetch(spec).ok


def test_fetch_extracts_archive_once(tmp_path: Path) -> None:
    (tmp_path / "mirror").mkdir()
    archive = build_tarball(tmp_path / "mirror" / "libfoo-1.0.tar.gz", {"libfoo-1.0/configure": (b"#!/bin/sh\n", 0o755, 0)})
    destination = tmp_path / "downloads" / "libfoo-1.0"
    spec = DownloadSpec(
        url=archive.as_uri(),
        target=tmp_path / "downloads" / "libfoo-1.0.tar.gz",
        archive="tar.gz",
        destination=destination,
    )
    logger = StructuredLogger()

    assert Downloader(logger=logger).fetch(spec).ok
    assert (destination / "configure").is_file()

    (destination / "configure").unlink()
    (destination / "marker").write_text("keep", encoding="utf-8")
    assert Downloader(logger=logger).fetch(spec).ok
    assert not (destination / "configure").exists()
    assert any("skipping extraction" in record["message"] for record in logger.records_for_operation("extract"))


def test_extraction_failure_is_a_failure_outcome(tmp_path: Path, transfers: list[str]) -> None:
    archive = tmp_path / "mirror" / "broken.tar.gz"
    archive.parent.mkdir()
    archive.write_bytes(b"not gzip at all")
    spec = DownloadSpec(
        url=archive.as_uri(),
        target=tmp_path / "broken.tar.gz",
        archive="tar.gz",
        destination=tmp_path / "broken",
    )

    outcome = Downloader().fetch(spec)

    assert outcome.status == "failure"
    assert isinstance(outcome.error, ExtractionError)
    assert len(transfers) == 1
