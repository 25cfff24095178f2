"""Typed error model with stable, machine-readable error codes."""

from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from toolstrap.models import BuildStepKind


class ErrorCode(StrEnum):
    """Stable error identifiers used across API surfaces."""

    VALIDATION = "E_VALIDATION"
    CONFIGURATION = "E_CONFIGURATION"
    POLICY = "E_POLICY"
    MISSING_BINARY = "E_MISSING_BINARY"
    DOWNLOAD = "E_DOWNLOAD"
    CHECKSUM = "E_CHECKSUM"
    EMPTY_DOWNLOAD = "E_EMPTY_DOWNLOAD"
    EXTRACTION = "E_EXTRACTION"
    PATCH = "E_PATCH"
    BUILD = "E_BUILD"
    MODULE_BUILD = "E_MODULE_BUILD"


class ToolstrapError(Exception):
    """Base error class that carries code, optional hint, and context."""

    code: str
    hint: str | None
    context: Mapping[str, str]

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code.value
        self.hint = hint
        self.context = dict(context or {})

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.hint:
            parts.append(f"Hint: {self.hint}")
        if self.context:
            for k, v in self.context.items():
                if v:
                    parts.append(f"  {k}: {v}")
        return "\n".join(parts)

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "code": self.code,
            "message": str(self),
            "context": dict(self.context),
        }
        if self.hint is not None:
            payload["hint"] = self.hint
        return payload


class ValidationError(ToolstrapError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.VALIDATION, hint=hint, context=context)


class ConfigurationError(ToolstrapError):
    """The on-disk state needs operator intervention before a rerun."""

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.CONFIGURATION, hint=hint, context=context)


class PolicyError(ToolstrapError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.POLICY, hint=hint, context=context)


class MissingSystemBinaryError(ToolstrapError):
    """A binary this package cannot build itself is absent."""

    binary: str

    def __init__(
        self,
        binary: str,
        *,
        search_path: str = "",
        hint: str | None = None,
    ) -> None:
        super().__init__(
            f"Required system binary `{binary}` was not found.",
            code=ErrorCode.MISSING_BINARY,
            hint=hint or f"Install `{binary}` or add its directory to PATH.",
            context={"binary": binary, "search_path": search_path},
        )
        self.binary = binary


class DownloadFailureError(ToolstrapError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.DOWNLOAD, hint=hint, context=context)


class ChecksumMismatchError(ToolstrapError):
    expected: str
    actual: str

    def __init__(self, *, url: str, target: str, expected: str, actual: str) -> None:
        super().__init__(
            "Downloaded file does not match the expected checksum.",
            code=ErrorCode.CHECKSUM,
            hint="Retry the download or update the expected checksum.",
            context={"url": url, "target": target, "expected": expected, "actual": actual},
        )
        self.expected = expected
        self.actual = actual


class EmptyDownloadError(ToolstrapError):
    def __init__(self, *, url: str, target: str) -> None:
        super().__init__(
            "Download produced an empty file.",
            code=ErrorCode.EMPTY_DOWNLOAD,
            hint="This is usually a transient server or proxy issue; retry later.",
            context={"url": url, "target": target},
        )


class ExtractionError(ToolstrapError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.EXTRACTION, hint=hint, context=context)


class PatchApplicationError(ToolstrapError):
    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        context: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.PATCH, hint=hint, context=context)


class BuildFailureError(ToolstrapError):
    """A build step exited non-zero.

    ``stdout`` and ``stderr`` are ``None`` when the stream was not captured.
    """

    module: str
    step: BuildStepKind
    stdout: str | None
    stderr: str | None

    def __init__(
        self,
        module: str,
        step: BuildStepKind,
        *,
        stdout: str | None,
        stderr: str | None,
        returncode: int | None = None,
        code: ErrorCode = ErrorCode.BUILD,
    ) -> None:
        super().__init__(
            f"Build of `{module}` failed in step {step.name}.",
            code=code,
            hint="Inspect the captured output; rerunning skips prerequisites already installed.",
            context={
                "module": module,
                "step": step.name,
                "returncode": "" if returncode is None else str(returncode),
                "stdout": _tail(stdout),
                "stderr": _tail(stderr),
            },
        )
        self.module = module
        self.step = step
        self.stdout = stdout
        self.stderr = stderr


class ModuleBuildFailureError(BuildFailureError):
    """The build manager failed to build the requested module."""

    def __init__(
        self,
        module: str,
        step: BuildStepKind,
        *,
        stdout: str | None,
        stderr: str | None,
        returncode: int | None = None,
    ) -> None:
        super().__init__(
            module,
            step,
            stdout=stdout,
            stderr=stderr,
            returncode=returncode,
            code=ErrorCode.MODULE_BUILD,
        )


def _tail(text: str | None, limit: int = 2000) -> str:
    if text is None:
        return "<unavailable>"
    return text[-limit:]


__all__ = [
    "BuildFailureError",
    "ChecksumMismatchError",
    "ConfigurationError",
    "DownloadFailureError",
    "EmptyDownloadError",
    "ErrorCode",
    "ExtractionError",
    "MissingSystemBinaryError",
    "ModuleBuildFailureError",
    "PatchApplicationError",
    "PolicyError",
    "ToolstrapError",
    "ValidationError",
]
