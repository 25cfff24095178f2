"""Retry/cancel decision policies and network policy enforcement."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Literal, Protocol

from toolstrap.errors import PolicyError, ValidationError

NetworkMode = Literal["online", "offline"]
RetryTrigger = Literal["download_failure", "checksum_mismatch", "empty_download"]

DEFAULT_RETRY_ATTEMPTS = 5


class Reaction(StrEnum):
    RETRY = "retry"
    CANCEL = "cancel"


@dataclass(frozen=True, slots=True)
class RetryContext:
    """What went wrong, passed to a retry policy.

    ``retries`` counts how many times this trigger already led to a retry,
    starting with 0 for the first failure.
    """

    trigger: RetryTrigger
    url: str
    retries: int
    error: Exception | None = None
    expected: str | None = None
    actual: str | None = None


class RetryPolicy(Protocol):
    def __call__(self, context: RetryContext) -> Reaction:
        """Decide whether the failed operation is retried."""


@dataclass(frozen=True, slots=True)
class RetryUpTo:
    """Allow at most ``attempts`` attempts of the guarded operation, then cancel."""

    attempts: int = DEFAULT_RETRY_ATTEMPTS

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValidationError(
                "RetryUpTo requires at least one attempt.",
                context={"attempts": str(self.attempts)},
            )

    def __call__(self, context: RetryContext) -> Reaction:
        if context.retries + 1 < self.attempts:
            return Reaction.RETRY
        return Reaction.CANCEL


@dataclass(frozen=True, slots=True)
class AlwaysRetry:
    def __call__(self, context: RetryContext) -> Reaction:
        return Reaction.RETRY


@dataclass(frozen=True, slots=True)
class AlwaysCancel:
    def __call__(self, context: RetryContext) -> Reaction:
        return Reaction.CANCEL


@dataclass(frozen=True, slots=True)
class Interactive:
    """Delegate the decision to a caller-supplied handler, e.g. a prompt."""

    handler: Callable[[RetryContext], Reaction]

    def __call__(self, context: RetryContext) -> Reaction:
        return Reaction(self.handler(context))


def ensure_network_allowed(*, network_mode: NetworkMode, operation: str, url: str = "") -> None:
    if network_mode == "offline":
        raise PolicyError(
            "Network operations are disabled by policy.",
            hint="Switch network_mode to 'online' or pre-populate the download directory.",
            context={"operation": operation, "url": url},
        )


__all__ = [
    "DEFAULT_RETRY_ATTEMPTS",
    "AlwaysCancel",
    "AlwaysRetry",
    "Interactive",
    "NetworkMode",
    "Reaction",
    "RetryContext",
    "RetryPolicy",
    "RetryTrigger",
    "RetryUpTo",
    "ensure_network_allowed",
]
