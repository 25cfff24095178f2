from pathlib import Path

import pytest

from toolstrap.config import DEFAULT_POLICIES, BootstrapConfig, calculate_parallelism
from toolstrap.errors import ValidationError


def test_calculate_parallelism_is_positive() -> None:
    assert calculate_parallelism() >= 1


def test_parallelism_must_be_positive(tmp_path: Path) -> None:
    for value in (0, -3):
        with pytest.raises(ValidationError) as excinfo:
            BootstrapConfig(installation_prefix=tmp_path, download_dir=tmp_path, parallelism=value)
        assert excinfo.value.context["parallelism"] == str(value)


def test_paths_are_made_absolute(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    config = BootstrapConfig(installation_prefix=Path("prefix"), download_dir=Path("downloads"))

    assert config.installation_prefix == tmp_path / "prefix"
    assert config.download_dir.is_absolute()


def test_policies_fall_back_to_defaults(tmp_path: Path) -> None:
    config = BootstrapConfig(installation_prefix=tmp_path, download_dir=tmp_path, policies={"git": "fail"})

    assert config.policy_for("git") == "fail"
    assert config.policy_for("zlib") == "download"
    assert config.policy_for("cc") == DEFAULT_POLICIES["cc"] == "fail"


def test_unknown_policy_entries_are_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValidationError):
        BootstrapConfig(installation_prefix=tmp_path, download_dir=tmp_path, policies={"rustc": "download"})
    with pytest.raises(ValidationError):
        BootstrapConfig(installation_prefix=tmp_path, download_dir=tmp_path, policies={"git": "ignore"})  # type: ignore[dict-item]


def test_empty_binary_name_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValidationError) as excinfo:
        BootstrapConfig(installation_prefix=tmp_path, download_dir=tmp_path, make="")

    assert excinfo.value.context["field"] == "make"


def test_to_dict_is_serializable(tmp_path: Path) -> None:
    config = BootstrapConfig(installation_prefix=tmp_path, download_dir=tmp_path / "d", parallelism=3)
    payload = config.to_dict()

    assert payload["installation_prefix"] == str(tmp_path)
    assert payload["parallelism"] == 3
    assert payload["policies"] == {}
    assert payload["network_mode"] == "online"
