"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from fakes import make_executable
from toolstrap.config import BootstrapConfig


@pytest.fixture
def host_bin(tmp_path: Path) -> Path:
    """A stand-in host PATH directory with the binaries every bootstrap needs."""
    directory = tmp_path / "host-bin"
    for name in ("gcc", "make", "patch", "git"):
        make_executable(directory, name)
    return directory


@pytest.fixture
def config(tmp_path: Path) -> BootstrapConfig:
    return BootstrapConfig(
        installation_prefix=tmp_path / "prefix",
        download_dir=tmp_path / "downloads",
        parallelism=2,
    )
