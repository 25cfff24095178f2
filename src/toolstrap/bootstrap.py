"""Prerequisite chain orchestration and module builds through JHBuild.

The :class:`Bootstrapper` walks the prerequisites in order. Each one is
either found (on the installation prefix or the host ``PATH``, or as a
pkg-config module) or acquired: fetched or cloned, patched, and built with
its steps. Once the chain is complete, JHBuild builds the requested module
into the same prefix.

Everything runs on the calling thread. :meth:`Bootstrapper.cancel` is the
only method meant to be called from another thread.
"""

from __future__ import annotations

import os
import tempfile
from collections.abc import Callable
from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from typing import Protocol

from toolstrap.binaries import find_binary, has_pkgconfig_module
from toolstrap.cancellation import CancellationToken, OperationCancelled
from toolstrap.config import BootstrapConfig
from toolstrap.errors import (
    BuildFailureError,
    ConfigurationError,
    MissingSystemBinaryError,
    ModuleBuildFailureError,
    PatchApplicationError,
    ToolstrapError,
    ValidationError,
)
from toolstrap.fetch.download import AutoInteraction, Downloader
from toolstrap.models import (
    BuildContext,
    BuildStepKind,
    Command,
    DownloadSpec,
    Outcome,
    PrerequisiteSpec,
)
from toolstrap.observability import StructuredLogger
from toolstrap.policy import RetryPolicy, RetryUpTo, ensure_network_allowed
from toolstrap.prerequisites import default_prerequisites
from toolstrap.process import ProcessRunner
from toolstrap.report import BootstrapReport

DEFAULT_MODULESET = "moduleset-default.xml"


class Fetcher(Protocol):
    def fetch(
        self,
        spec: DownloadSpec,
        *,
        skip_checksum: bool = False,
        on_failure: RetryPolicy | None = None,
        on_checksum_mismatch: RetryPolicy | None = None,
        on_empty_download: RetryPolicy | None = None,
    ) -> Outcome[DownloadSpec]:
        """Ensure the download target is present, verified and extracted."""


class RunningProcess(Protocol):
    def wait(self) -> int:
        """Block until the process exits and return its exit status."""

    def stdout(self) -> str | None:
        """Captured stdout, ``None`` if not captured."""

    def stderr(self) -> str | None:
        """Captured stderr, ``None`` if not captured."""


class Runner(Protocol):
    def run(
        self,
        command: Command,
        *,
        capture_stdout: bool = False,
        capture_stderr: bool = False,
    ) -> RunningProcess:
        """Spawn *command*; raise OperationCancelled if cancellation was requested."""


FailureFactory = Callable[[int, RunningProcess], ToolstrapError]


def default_moduleset() -> str:
    return resources.files("toolstrap").joinpath("data").joinpath(DEFAULT_MODULESET).read_text(encoding="utf-8")


def render_jhbuildrc(*, prefix: Path, download_dir: Path, parallelism: int) -> str:
    lines = [
        f"prefix = {str(prefix)!r}",
        f"checkoutroot = {str(download_dir / 'checkout')!r}",
        f"tarballdir = {str(download_dir / 'tarballs')!r}",
        f"makeargs = {f'-j{parallelism}'!r}",
    ]
    return "\n".join(lines) + "\n"


@dataclass(slots=True)
class Bootstrapper:
    """Bootstraps the prerequisite chain and builds modules with JHBuild.

    Collaborators default to the real implementations. When a downloader or
    runner is injected it should observe :attr:`cancellation`, otherwise
    :meth:`cancel` only takes effect between steps.
    """

    config: BootstrapConfig
    logger: StructuredLogger = field(default_factory=StructuredLogger)
    cancellation: CancellationToken = field(default_factory=CancellationToken)
    downloader: Fetcher | None = None
    runner: Runner | None = None
    prerequisites: tuple[PrerequisiteSpec, ...] | None = None
    binary_lookup: Callable[[str, str], Path | None] = find_binary
    pkgconfig_lookup: Callable[[str, Path], bool] = has_pkgconfig_module
    on_failure: RetryPolicy = field(default_factory=RetryUpTo)
    on_checksum_mismatch: RetryPolicy = field(default_factory=RetryUpTo)
    on_empty_download: RetryPolicy = field(default_factory=RetryUpTo)
    base_path: str = field(default_factory=lambda: os.environ.get("PATH", ""))
    last_report: BootstrapReport | None = field(init=False, default=None)

    def __post_init__(self) -> None:
        if self.downloader is None:
            self.downloader = Downloader(
                interaction=AutoInteraction(self.cancellation),
                network_mode=self.config.network_mode,
                logger=self.logger,
            )
        if self.runner is None:
            self.runner = ProcessRunner(shell=self.config.sh, cancellation=self.cancellation, logger=self.logger)
        if self.prerequisites is None:
            self.prerequisites = default_prerequisites(self.config)

    @property
    def context(self) -> BuildContext:
        return BuildContext(
            prefix=self.config.installation_prefix,
            shell=self.config.sh,
            make=self.config.make,
            python=self.config.python,
            git=self.config.git,
            parallelism=self.config.parallelism,
            base_path=self.base_path,
        )

    def cancel(self) -> None:
        """Request cancellation and kill the running child process, if any."""
        self.logger.log(
            operation="cancel",
            prerequisite=None,
            step=None,
            message="Cancellation requested.",
            level="warning",
        )
        self.cancellation.cancel()

    def ensure_prerequisites(self) -> Outcome[BootstrapReport]:
        """Find or install every prerequisite in order.

        Returns a cancelled outcome if cancellation was requested or a retry
        policy gave up; raises :class:`toolstrap.errors.ToolstrapError`
        subclasses for failures. The installation prefix is left as is
        either way.
        """
        self.config.installation_prefix.mkdir(parents=True, exist_ok=True)
        self.config.download_dir.mkdir(parents=True, exist_ok=True)
        report = BootstrapReport(installation_prefix=str(self.config.installation_prefix))
        self.last_report = report
        assert self.prerequisites is not None
        for spec in self.prerequisites:
            try:
                outcome = self._ensure(spec, report)
            except Exception:
                report.record(spec.name, "failed")
                self._log("install", spec.name, None, "Prerequisite failed; bootstrap stopped.", level="error")
                raise
            if outcome.is_cancelled:
                report.record(spec.name, "cancelled")
                self._log("install", spec.name, None, "Bootstrap cancelled.", level="warning")
                return Outcome.cancelled(cause=outcome.error)
        return Outcome.success(report)

    def install_module(self, module_name: str, moduleset: str | Path | None = None) -> Outcome[BootstrapReport]:
        """Bootstrap the prerequisites, then build *module_name* with JHBuild.

        *moduleset* is the path of a JHBuild moduleset file; the packaged
        default moduleset is used when it is omitted.
        """
        if not module_name:
            raise ValidationError("Module name must not be empty.")
        if moduleset is not None:
            moduleset_text = Path(moduleset).read_text(encoding="utf-8")
        else:
            moduleset_text = default_moduleset()

        prerequisites = self.ensure_prerequisites()
        if not prerequisites.ok:
            return prerequisites
        report = prerequisites.unwrap()
        assert report is not None
        report.module = module_name

        try:
            outcome = self._build_module(module_name, moduleset_text)
        except Exception:
            report.module_status = "failed"
            raise
        if outcome.is_cancelled:
            report.module_status = "cancelled"
            return Outcome.cancelled(cause=outcome.error)
        report.module_status = "built"
        return Outcome.success(report)

    def _ensure(self, spec: PrerequisiteSpec, report: BootstrapReport) -> Outcome[None]:
        location = self._locate(spec)
        if location is not None:
            self._log("check", spec.name, None, "Prerequisite present.", extra={"location": location})
            report.record(spec.name, "present", location)
            return Outcome.success()

        if spec.policy == "fail" or (spec.download is None and spec.clone is None):
            raise MissingSystemBinaryError(spec.binary, search_path=self.context.search_path)

        self._log("install", spec.name, None, "Prerequisite missing; installing.")
        if self.cancellation.is_cancelled():
            return Outcome.cancelled()

        acquired = self._acquire(spec)
        if not acquired.ok:
            return acquired

        source_dir = spec.source_dir
        assert source_dir is not None
        if spec.patches:
            patched = self._apply_patches(spec, source_dir)
            if not patched.ok:
                return patched

        self._require(self.config.make)
        for step in spec.steps:
            command = step.command(source_dir, self.context)
            outcome = self._execute(
                command,
                prerequisite=spec.name,
                step=step.kind,
                failure=lambda returncode, handle, kind=step.kind: BuildFailureError(
                    spec.name,
                    kind,
                    stdout=handle.stdout(),
                    stderr=handle.stderr(),
                    returncode=returncode,
                ),
            )
            if not outcome.ok:
                return outcome

        location = self._locate(spec)
        if location is None:
            raise AssertionError(f"`{spec.binary}` is still missing after installing {spec.name}.")
        self._log("install", spec.name, None, "Prerequisite installed.", extra={"location": location})
        report.record(spec.name, "installed", location)
        return Outcome.success()

    def _acquire(self, spec: PrerequisiteSpec) -> Outcome[None]:
        if spec.download is not None:
            return self._fetch(spec.name, spec.download)
        assert spec.clone is not None
        destination = spec.clone.destination
        if destination.is_dir() and any(destination.iterdir()):
            status = self._execute(
                Command(parts=(self.config.git, "status"), env=self.context.env(), cwd=destination),
                prerequisite=spec.name,
                step=BuildStepKind.CLONE,
                failure=lambda returncode, handle: ConfigurationError(
                    f"Clone directory {destination} exists, is not empty and is not a valid source root.",
                    hint="This may be left over from a failed checkout; delete it or use another download directory.",
                    context={"prerequisite": spec.name, "directory": str(destination)},
                ),
            )
            if status.ok:
                self._log("clone", spec.name, BuildStepKind.CLONE, "Reusing existing checkout.")
            return status
        ensure_network_allowed(
            network_mode=self.config.network_mode,
            operation="clone",
            url=spec.clone.repository,
        )
        return self._execute(
            Command(
                parts=(self.config.git, "clone", spec.clone.repository, str(destination)),
                env=self.context.env(),
                cwd=self.config.download_dir,
            ),
            prerequisite=spec.name,
            step=BuildStepKind.CLONE,
            failure=lambda returncode, handle: BuildFailureError(
                spec.name,
                BuildStepKind.CLONE,
                stdout=handle.stdout(),
                stderr=handle.stderr(),
                returncode=returncode,
            ),
        )

    def _fetch(self, prerequisite: str, download: DownloadSpec) -> Outcome[None]:
        assert self.downloader is not None
        self._log("fetch", prerequisite, None, "Fetching.", extra={"url": download.url})
        outcome = self.downloader.fetch(
            download,
            skip_checksum=self.config.skip_checksum,
            on_failure=self.on_failure,
            on_checksum_mismatch=self.on_checksum_mismatch,
            on_empty_download=self.on_empty_download,
        )
        if outcome.is_cancelled:
            return Outcome.cancelled(cause=outcome.error)
        outcome.unwrap()
        return Outcome.success()

    def _apply_patches(self, spec: PrerequisiteSpec, source_dir: Path) -> Outcome[None]:
        self._require(self.config.patch)
        for patch in spec.patches:
            fetched = self._fetch(spec.name, patch)
            if not fetched.ok:
                return fetched
            outcome = self._execute(
                Command(
                    parts=(self.config.patch, "-p1", "-i", str(patch.target)),
                    env=self.context.env(),
                    cwd=source_dir,
                ),
                prerequisite=spec.name,
                step=None,
                failure=lambda returncode, handle, patch=patch: PatchApplicationError(
                    f"Patch {patch.target.name} did not apply to {spec.name}.",
                    hint="The patch may not match this source version.",
                    context={
                        "prerequisite": spec.name,
                        "patch": str(patch.target),
                        "returncode": str(returncode),
                        "stderr": handle.stderr() or "",
                    },
                ),
            )
            if not outcome.ok:
                return outcome
        return Outcome.success()

    def _build_module(self, module_name: str, moduleset_text: str) -> Outcome[None]:
        self._log("module", module_name, None, "Building module.")
        with tempfile.TemporaryDirectory(prefix="toolstrap-") as scratch:
            rc_file = Path(scratch) / "jhbuildrc"
            moduleset_file = Path(scratch) / "moduleset.modules"
            rc_file.write_text(
                render_jhbuildrc(
                    prefix=self.config.installation_prefix,
                    download_dir=self.config.download_dir,
                    parallelism=self.config.parallelism,
                ),
                encoding="utf-8",
            )
            moduleset_file.write_text(moduleset_text, encoding="utf-8")
            env = self.context.env()
            commands = (
                (
                    BuildStepKind.BOOTSTRAP,
                    Command(parts=(self.config.jhbuild, f"--file={rc_file}", "--no-interact", "bootstrap"), env=env),
                ),
                # jhbuild drives the whole configure/make/install cycle; MAKE is the closest step kind
                (
                    BuildStepKind.MAKE,
                    Command(
                        parts=(
                            self.config.jhbuild,
                            f"--file={rc_file}",
                            f"--moduleset={moduleset_file}",
                            "--no-interact",
                            "build",
                            "--nodeps",
                            module_name,
                        ),
                        env=env,
                    ),
                ),
            )
            for kind, command in commands:
                outcome = self._execute(
                    command,
                    prerequisite=module_name,
                    step=kind,
                    failure=lambda returncode, handle, kind=kind: ModuleBuildFailureError(
                        module_name,
                        kind,
                        stdout=handle.stdout(),
                        stderr=handle.stderr(),
                        returncode=returncode,
                    ),
                )
                if not outcome.ok:
                    return outcome
        self._log("module", module_name, None, "Module built.")
        return Outcome.success()

    def _execute(
        self,
        command: Command,
        *,
        prerequisite: str,
        step: BuildStepKind | None,
        failure: FailureFactory,
    ) -> Outcome[None]:
        """Run *command* to completion; raise ``failure(...)`` on a non-zero exit."""
        if self.cancellation.is_cancelled():
            return Outcome.cancelled()
        assert self.runner is not None
        self._log("step", prerequisite, step, "Running command.", extra={"command": command.joined()})
        try:
            handle = self.runner.run(
                command,
                capture_stdout=self.config.capture_stdout,
                capture_stderr=self.config.capture_stderr,
            )
        except OperationCancelled:
            return Outcome.cancelled()
        try:
            returncode = handle.wait()
        finally:
            self.cancellation.clear(handle)
        if self.cancellation.is_cancelled():
            return Outcome.cancelled()
        if returncode != 0:
            error = failure(returncode, handle)
            self._log("step", prerequisite, step, "Command failed.", level="error", extra=error.to_dict())
            raise error
        return Outcome.success()

    def _locate(self, spec: PrerequisiteSpec) -> str | None:
        if spec.check == "pkgconfig":
            if self.pkgconfig_lookup(spec.binary, self.config.installation_prefix):
                return f"pkgconfig:{spec.binary}"
            return None
        found = self.binary_lookup(spec.binary, self.context.search_path)
        return str(found) if found is not None else None

    def _require(self, binary: str) -> Path:
        search_path = self.context.search_path
        found = self.binary_lookup(binary, search_path)
        if found is None:
            raise MissingSystemBinaryError(binary, search_path=search_path)
        return found

    def _log(
        self,
        operation: str,
        prerequisite: str | None,
        step: BuildStepKind | None,
        message: str,
        *,
        level: str = "info",
        extra: dict[str, object] | None = None,
    ) -> None:
        self.logger.log(
            operation=operation,
            prerequisite=prerequisite,
            step=step.value if step is not None else None,
            message=message,
            level=level,
            extra=extra,
        )


__all__ = [
    "DEFAULT_MODULESET",
    "Bootstrapper",
    "Fetcher",
    "Runner",
    "RunningProcess",
    "default_moduleset",
    "render_jhbuildrc",
]
