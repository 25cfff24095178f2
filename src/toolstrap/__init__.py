"""Public package entrypoint for toolstrap, an unprivileged native toolchain bootstrapper."""

from .bootstrap import Bootstrapper
from .cancellation import CancellationToken, OperationCancelled
from .config import BootstrapConfig, calculate_parallelism
from .errors import (
    BuildFailureError,
    ChecksumMismatchError,
    ConfigurationError,
    DownloadFailureError,
    EmptyDownloadError,
    ErrorCode,
    ExtractionError,
    MissingSystemBinaryError,
    ModuleBuildFailureError,
    PatchApplicationError,
    PolicyError,
    ToolstrapError,
    ValidationError,
)
from .fetch import Downloader, extract_archive
from .models import BuildStep, BuildStepKind, Command, DownloadSpec, Outcome, PrerequisiteSpec
from .observability import StructuredLogger
from .platform import SupportedOS, current_os
from .policy import AlwaysCancel, AlwaysRetry, Interactive, Reaction, RetryContext, RetryUpTo
from .process import ProcessRunner
from .report import BootstrapReport

__all__ = [
    "AlwaysCancel",
    "AlwaysRetry",
    "BootstrapConfig",
    "BootstrapReport",
    "Bootstrapper",
    "BuildFailureError",
    "BuildStep",
    "BuildStepKind",
    "CancellationToken",
    "ChecksumMismatchError",
    "Command",
    "ConfigurationError",
    "DownloadFailureError",
    "DownloadSpec",
    "Downloader",
    "EmptyDownloadError",
    "ErrorCode",
    "ExtractionError",
    "Interactive",
    "MissingSystemBinaryError",
    "ModuleBuildFailureError",
    "OperationCancelled",
    "Outcome",
    "PatchApplicationError",
    "PolicyError",
    "PrerequisiteSpec",
    "ProcessRunner",
    "Reaction",
    "RetryContext",
    "RetryUpTo",
    "StructuredLogger",
    "SupportedOS",
    "ToolstrapError",
    "ValidationError",
    "calculate_parallelism",
    "current_os",
    "extract_archive",
]
