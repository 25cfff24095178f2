"""Core typed dataclasses for prerequisites, downloads, steps and outcomes."""

from __future__ import annotations

import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from enum import StrEnum
from pathlib import Path
from typing import Generic, Literal, TypeVar

from toolstrap.errors import ValidationError

ArchiveKind = Literal["tar.gz", "tar.xz", "zip", "none"]
MissingBinaryPolicy = Literal["fail", "download"]
PresenceCheck = Literal["binary", "pkgconfig"]
OutcomeStatus = Literal["success", "failure", "cancelled"]

ARCHIVE_KINDS: tuple[ArchiveKind, ...] = ("tar.gz", "tar.xz", "zip", "none")

T = TypeVar("T")


class BuildStepKind(StrEnum):
    """Step at which a prerequisite or module build can fail."""

    # Any local duplication of a remote source root, whatever the SCM calls it.
    CLONE = "clone"
    # Bootstrapping script (autogen.sh); it usually runs configure itself.
    BOOTSTRAP = "bootstrap"
    CONFIGURE = "configure"
    MAKE = "make"
    MAKE_CHECK = "make_check"
    MAKE_INSTALL = "make_install"
    INTERPRETER_BUILD = "interpreter_build"
    INTERPRETER_TEST = "interpreter_test"
    INTERPRETER_INSTALL = "interpreter_install"


@dataclass(frozen=True, slots=True)
class DownloadSpec:
    url: str
    target: Path
    archive: ArchiveKind = "none"
    destination: Path | None = None
    checksum: str = ""
    mirrors: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.archive not in ARCHIVE_KINDS:
            raise ValidationError(
                f"Unsupported archive kind: {self.archive}",
                context={"url": self.url, "archive": str(self.archive)},
            )
        if self.archive != "none" and self.destination is None:
            raise ValidationError(
                "An extraction destination is required for archive downloads.",
                context={"url": self.url, "archive": self.archive},
            )

    def next_mirror(self) -> DownloadSpec:
        """Return a spec that downloads from the next mirror, rotating the current URL last."""
        if not self.mirrors:
            return self
        return replace(self, url=self.mirrors[0], mirrors=(*self.mirrors[1:], self.url))


@dataclass(frozen=True, slots=True)
class Command:
    parts: tuple[str, ...]
    env: Mapping[str, str] = field(default_factory=dict)
    cwd: Path | None = None

    def joined(self) -> str:
        return " ".join(self.parts)


@dataclass(frozen=True, slots=True)
class BuildContext:
    """Everything a step factory needs to render its command."""

    prefix: Path
    shell: str = "sh"
    make: str = "make"
    python: str = "python3"
    git: str = "git"
    parallelism: int = 1
    base_path: str = ""

    @property
    def search_path(self) -> str:
        bin_dir = str(self.prefix / "bin")
        if not self.base_path:
            return bin_dir
        return os.pathsep.join((bin_dir, self.base_path))

    def env(self) -> dict[str, str]:
        include_dir = self.prefix / "include"
        lib_dir = self.prefix / "lib"
        return {
            "PATH": self.search_path,
            "CFLAGS": f"-I{include_dir} -L{lib_dir}",
            "CPPFLAGS": f"-I{include_dir}",
            "LDFLAGS": f"-L{lib_dir} -Wl,-rpath,{lib_dir}",
            "PKG_CONFIG_PATH": os.pathsep.join(
                (str(lib_dir / "pkgconfig"), str(self.prefix / "share" / "pkgconfig")),
            ),
        }


StepFactory = Callable[[Path, BuildContext], Command]


@dataclass(frozen=True, slots=True)
class BuildStep:
    kind: BuildStepKind
    factory: StepFactory

    def command(self, source_dir: Path, context: BuildContext) -> Command:
        return self.factory(source_dir, context)


@dataclass(frozen=True, slots=True)
class CloneSpec:
    """Acquisition by cloning a repository instead of downloading an archive."""

    repository: str
    destination: Path


@dataclass(frozen=True, slots=True)
class PrerequisiteSpec:
    name: str
    binary: str
    policy: MissingBinaryPolicy = "download"
    check: PresenceCheck = "binary"
    download: DownloadSpec | None = None
    clone: CloneSpec | None = None
    patches: tuple[DownloadSpec, ...] = ()
    steps: tuple[BuildStep, ...] = ()

    def __post_init__(self) -> None:
        if self.download is not None and self.clone is not None:
            raise ValidationError(
                "A prerequisite is either downloaded or cloned, not both.",
                context={"prerequisite": self.name},
            )

    @property
    def source_dir(self) -> Path | None:
        if self.clone is not None:
            return self.clone.destination
        if self.download is None:
            return None
        return self.download.destination


@dataclass(frozen=True, slots=True)
class Outcome(Generic[T]):
    """Result of an operation: success with a value, failure with an error, or cancelled.

    A cancelled outcome may carry the error that led a retry policy to give up.
    """

    status: OutcomeStatus
    value: T | None = None
    error: Exception | None = None

    @classmethod
    def success(cls, value: T | None = None) -> Outcome[T]:
        return cls(status="success", value=value)

    @classmethod
    def failure(cls, error: Exception) -> Outcome[T]:
        return cls(status="failure", error=error)

    @classmethod
    def cancelled(cls, cause: Exception | None = None) -> Outcome[T]:
        return cls(status="cancelled", error=cause)

    @property
    def ok(self) -> bool:
        return self.status == "success"

    @property
    def is_cancelled(self) -> bool:
        return self.status == "cancelled"

    def unwrap(self) -> T | None:
        """Return the value, raising the carried error for failures."""
        if self.status == "failure":
            assert self.error is not None
            raise self.error
        return self.value
