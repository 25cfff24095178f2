"""Bootstrap configuration and validation."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path
from types import MappingProxyType

from toolstrap.errors import ValidationError
from toolstrap.models import MissingBinaryPolicy
from toolstrap.policy import NetworkMode

PREREQUISITE_ORDER: tuple[str, ...] = (
    "cc",
    "cpan",
    "msgfmt",
    "zlib",
    "libffi",
    "git",
    "openssl",
    "python",
    "jhbuild",
)

DEFAULT_POLICIES: Mapping[str, MissingBinaryPolicy] = MappingProxyType(
    {name: ("fail" if name == "cc" else "download") for name in PREREQUISITE_ORDER}
)

_BINARY_FIELDS = ("sh", "make", "cc", "patch", "git", "jhbuild", "python", "msgfmt", "cpan")


def calculate_parallelism() -> int:
    """Number of CPUs this process may run on, at least 1."""
    if hasattr(os, "sched_getaffinity"):
        return max(1, len(os.sched_getaffinity(0)))
    return max(1, os.cpu_count() or 1)


@dataclass(frozen=True, slots=True)
class BootstrapConfig:
    installation_prefix: Path
    download_dir: Path
    sh: str = "sh"
    make: str = "make"
    cc: str = "gcc"
    patch: str = "patch"
    git: str = "git"
    jhbuild: str = "jhbuild"
    python: str = "python3"
    msgfmt: str = "msgfmt"
    cpan: str = "cpan"
    policies: Mapping[str, MissingBinaryPolicy] = field(default_factory=dict)
    skip_checksum: bool = False
    capture_stdout: bool = True
    capture_stderr: bool = True
    parallelism: int = field(default_factory=calculate_parallelism)
    run_checks: bool = False
    network_mode: NetworkMode = "online"

    def __post_init__(self) -> None:
        object.__setattr__(self, "installation_prefix", Path(self.installation_prefix).absolute())
        object.__setattr__(self, "download_dir", Path(self.download_dir).absolute())
        object.__setattr__(self, "policies", MappingProxyType(dict(self.policies)))

        for name in _BINARY_FIELDS:
            if not getattr(self, name):
                raise ValidationError(
                    f"Binary `{name}` must not be empty.",
                    hint="Pass a binary name to look up on PATH or an absolute path.",
                    context={"field": name},
                )
        if self.parallelism < 1:
            raise ValidationError(
                "Parallelism must be at least 1.",
                hint="Omit parallelism to use calculate_parallelism().",
                context={"parallelism": str(self.parallelism)},
            )
        for name, policy in self.policies.items():
            if name not in DEFAULT_POLICIES:
                raise ValidationError(
                    f"Unknown prerequisite `{name}` in policies.",
                    context={"prerequisite": name, "known": ", ".join(PREREQUISITE_ORDER)},
                )
            if policy not in ("fail", "download"):
                raise ValidationError(
                    f"Unknown missing-binary policy `{policy}`.",
                    hint="Use 'fail' or 'download'.",
                    context={"prerequisite": name, "policy": str(policy)},
                )
        if self.network_mode not in ("online", "offline"):
            raise ValidationError(
                f"Unknown network mode `{self.network_mode}`.",
                context={"network_mode": str(self.network_mode)},
            )

    def policy_for(self, name: str) -> MissingBinaryPolicy:
        return self.policies.get(name, DEFAULT_POLICIES.get(name, "download"))

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {}
        for item in fields(self):
            value = getattr(self, item.name)
            if isinstance(value, Path):
                value = str(value)
            elif isinstance(value, Mapping):
                value = dict(value)
            payload[item.name] = value
        return payload


__all__ = [
    "DEFAULT_POLICIES",
    "PREREQUISITE_ORDER",
    "BootstrapConfig",
    "calculate_parallelism",
]
