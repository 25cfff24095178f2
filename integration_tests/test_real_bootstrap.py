"""Integration tests against real upstream mirrors and a real host toolchain.

These tests need network access plus ``gcc`` and ``make`` on PATH.
Run with: pytest integration_tests -m integration
"""

from __future__ import annotations

import shutil
from pathlib import Path

import pytest

from toolstrap import Bootstrapper, BootstrapConfig, Downloader, StructuredLogger
from toolstrap.platform import SupportedOS
from toolstrap.prerequisites import default_prerequisites

pytestmark = pytest.mark.integration


def test_zlib_tarball_downloads_verifies_and_extracts(tmp_path: Path) -> None:
    config = BootstrapConfig(installation_prefix=tmp_path / "prefix", download_dir=tmp_path / "downloads")
    zlib = {spec.name: spec for spec in default_prerequisites(config, host=SupportedOS.LINUX_64)}["zlib"]
    assert zlib.download is not None

    outcome = Downloader(logger=StructuredLogger()).fetch(zlib.download)

    assert outcome.ok
    assert (zlib.download.destination / "configure").is_file()  # type: ignore[operator]


@pytest.mark.skipif(shutil.which("gcc") is None or shutil.which("make") is None, reason="needs gcc and make")
def test_zlib_builds_into_prefix(tmp_path: Path) -> None:
    config = BootstrapConfig(installation_prefix=tmp_path / "prefix", download_dir=tmp_path / "downloads")
    chain = {spec.name: spec for spec in default_prerequisites(config, host=SupportedOS.LINUX_64)}
    # an empty system pkg-config search forces the build
    bootstrapper = Bootstrapper(
        config=config,
        prerequisites=(chain["cc"], chain["zlib"]),
        pkgconfig_lookup=lambda name, prefix: (prefix / "lib" / "pkgconfig" / f"{name}.pc").is_file(),
    )

    outcome = bootstrapper.ensure_prerequisites()

    assert outcome.ok
    assert (config.installation_prefix / "lib" / "pkgconfig" / "zlib.pc").is_file()
    assert outcome.unwrap().status_of("zlib") == "installed"  # type: ignore[union-attr]
