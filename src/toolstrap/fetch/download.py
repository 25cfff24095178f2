"""Checksum-verified downloads with policy-driven retries and extraction."""

from __future__ import annotations

import hashlib
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol
from urllib.request import urlopen

from toolstrap.cancellation import CancellationToken
from toolstrap.errors import (
    ChecksumMismatchError,
    DownloadFailureError,
    EmptyDownloadError,
    ExtractionError,
)
from toolstrap.fetch.archive import extract_archive
from toolstrap.models import DownloadSpec, Outcome
from toolstrap.observability import StructuredLogger
from toolstrap.policy import (
    NetworkMode,
    Reaction,
    RetryContext,
    RetryPolicy,
    RetryUpTo,
    ensure_network_allowed,
)

CHUNK_SIZE = 65536


def md5_of_file(path: str | Path) -> str:
    digest = hashlib.md5(usedforsecurity=False)
    with Path(path).open("rb") as handle:
        for chunk in iter(lambda: handle.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def checksum_matches(path: str | Path, expected: str) -> bool:
    return md5_of_file(path) == expected.lower()


class InteractionStrategy(Protocol):
    """How a download run reports cancellation and reacts to transfer failures."""

    def is_cancelled(self) -> bool:
        """Return whether the run should stop at the next poll point."""

    def handle_failure(
        self,
        error: DownloadFailureError,
        spec: DownloadSpec,
        retries: int,
        policy: RetryPolicy,
    ) -> DownloadSpec | None:
        """Return the spec to retry with, or ``None`` to give up."""


@dataclass(slots=True)
class AutoInteraction:
    """Unattended interaction: cancellation comes from a token, failures go to the policy."""

    cancellation: CancellationToken = field(default_factory=CancellationToken)

    def is_cancelled(self) -> bool:
        return self.cancellation.is_cancelled()

    def handle_failure(
        self,
        error: DownloadFailureError,
        spec: DownloadSpec,
        retries: int,
        policy: RetryPolicy,
    ) -> DownloadSpec | None:
        context = RetryContext(trigger="download_failure", url=spec.url, retries=retries, error=error)
        if policy(context) is Reaction.RETRY:
            return spec.next_mirror()
        return None


@dataclass(slots=True)
class Downloader:
    interaction: InteractionStrategy = field(default_factory=AutoInteraction)
    network_mode: NetworkMode = "online"
    logger: StructuredLogger | None = None
    chunk_size: int = CHUNK_SIZE

    def fetch(
        self,
        spec: DownloadSpec,
        *,
        skip_checksum: bool = False,
        on_failure: RetryPolicy | None = None,
        on_checksum_mismatch: RetryPolicy | None = None,
        on_empty_download: RetryPolicy | None = None,
    ) -> Outcome[DownloadSpec]:
        """Make sure ``spec.target`` holds verified content and is extracted.

        Transfer failures are retried according to *on_failure*, each retry
        possibly from another mirror. Extraction failures are returned as a
        failure outcome and never retried. Raises
        :class:`toolstrap.errors.PolicyError` if a transfer is needed while
        the network is disabled.
        """
        on_failure = on_failure or RetryUpTo()
        on_checksum_mismatch = on_checksum_mismatch or RetryUpTo()
        on_empty_download = on_empty_download or RetryUpTo()

        current = spec
        failures = 0
        while True:
            try:
                return self._fetch_once(
                    current,
                    skip_checksum=skip_checksum,
                    on_checksum_mismatch=on_checksum_mismatch,
                    on_empty_download=on_empty_download,
                )
            except ExtractionError as exc:
                self._log("extract", current, "Extraction failed.", level="error", extra=exc.to_dict())
                return Outcome.failure(exc)
            except OSError as exc:
                error = DownloadFailureError(
                    f"Download of {current.url} failed: {exc}",
                    hint="Check network connectivity or configure a mirror.",
                    context={"url": current.url, "target": str(current.target), "attempt": str(failures + 1)},
                )
                error.__cause__ = exc
                self._log("download", current, "Transfer failed.", level="warning", extra=error.to_dict())
                next_spec = self.interaction.handle_failure(error, current, failures, on_failure)
                if next_spec is None:
                    return Outcome.cancelled(cause=error)
                failures += 1
                current = next_spec

    def _fetch_once(
        self,
        spec: DownloadSpec,
        *,
        skip_checksum: bool,
        on_checksum_mismatch: RetryPolicy,
        on_empty_download: RetryPolicy,
    ) -> Outcome[DownloadSpec]:
        if self._needs_download(spec, skip_checksum=skip_checksum):
            if self.interaction.is_cancelled():
                return Outcome.cancelled()
            ensure_network_allowed(network_mode=self.network_mode, operation="download", url=spec.url)
            mismatches = 0
            empties = 0
            while True:
                if not self._transfer(spec):
                    return Outcome.cancelled()
                if self.interaction.is_cancelled():
                    return Outcome.cancelled()
                if spec.target.stat().st_size == 0:
                    empty = EmptyDownloadError(url=spec.url, target=str(spec.target))
                    self._log("download", spec, "Downloaded file is empty.", level="warning")
                    reaction = on_empty_download(
                        RetryContext(trigger="empty_download", url=spec.url, retries=empties, error=empty)
                    )
                    if reaction is Reaction.CANCEL:
                        return Outcome.cancelled(cause=empty)
                    empties += 1
                    continue
                if spec.checksum:
                    actual = md5_of_file(spec.target)
                    if actual != spec.checksum.lower():
                        mismatch = ChecksumMismatchError(
                            url=spec.url,
                            target=str(spec.target),
                            expected=spec.checksum,
                            actual=actual,
                        )
                        self._log("verify", spec, "Checksum mismatch.", level="warning", extra=mismatch.to_dict())
                        reaction = on_checksum_mismatch(
                            RetryContext(
                                trigger="checksum_mismatch",
                                url=spec.url,
                                retries=mismatches,
                                error=mismatch,
                                expected=spec.checksum,
                                actual=actual,
                            )
                        )
                        if reaction is Reaction.CANCEL:
                            return Outcome.cancelled(cause=mismatch)
                        mismatches += 1
                        continue
                break

        if self.interaction.is_cancelled():
            return Outcome.cancelled()
        if spec.archive == "none":
            return Outcome.success(spec)

        destination = spec.destination
        assert destination is not None
        if destination.is_dir() and any(destination.iterdir()):
            # existing content is trusted without inspection
            self._log("extract", spec, "Destination already populated; skipping extraction.")
            return Outcome.success(spec)
        self._log("extract", spec, "Extracting archive.", extra={"destination": str(destination)})
        extract_archive(spec.target, spec.archive, destination)
        return Outcome.success(spec)

    def _needs_download(self, spec: DownloadSpec, *, skip_checksum: bool) -> bool:
        if skip_checksum:
            needed = not spec.target.exists()
        elif spec.target.exists() and spec.checksum:
            needed = not checksum_matches(spec.target, spec.checksum)
        else:
            needed = True
        self._log("check", spec, "Download needed." if needed else "Target is up to date.")
        return needed

    def _transfer(self, spec: DownloadSpec) -> bool:
        """Stream ``spec.url`` into ``spec.target``; ``False`` if cancelled midway."""
        spec.target.parent.mkdir(parents=True, exist_ok=True)
        temp_path = spec.target.with_name(spec.target.name + ".part")
        self._log("download", spec, "Downloading.", extra={"target": str(spec.target)})
        try:
            with urlopen(spec.url) as response, temp_path.open("wb") as handle:  # noqa: S310 - checksum verified by caller
                while chunk := response.read(self.chunk_size):
                    if self.interaction.is_cancelled():
                        return False
                    handle.write(chunk)
            os.replace(temp_path, spec.target)
        finally:
            temp_path.unlink(missing_ok=True)
        return True

    def _log(
        self,
        operation: str,
        spec: DownloadSpec,
        message: str,
        *,
        level: str = "info",
        extra: dict[str, object] | None = None,
    ) -> None:
        if self.logger is None:
            return
        payload: dict[str, object] = {"url": spec.url}
        if extra:
            payload.update(extra)
        self.logger.log(
            operation=operation,
            prerequisite=None,
            step=None,
            message=message,
            level=level,
            extra=payload,
        )


__all__ = [
    "AutoInteraction",
    "Downloader",
    "InteractionStrategy",
    "checksum_matches",
    "md5_of_file",
]
