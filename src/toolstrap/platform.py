"""Host OS and architecture detection."""

from __future__ import annotations

import os
import platform
import sys
from collections.abc import Mapping
from enum import StrEnum

from toolstrap.errors import ValidationError

_LINUX_64_MACHINES = frozenset({"x86_64", "amd64", "aarch64", "arm64"})
_LINUX_32_MACHINES = frozenset({"i386", "i486", "i586", "i686", "x86"})
_MACOS_64_MACHINES = frozenset({"x86_64", "arm64"})


class SupportedOS(StrEnum):
    LINUX_32 = "linux-32"
    LINUX_64 = "linux-64"
    WINDOWS_32 = "windows-32"
    WINDOWS_64 = "windows-64"
    MACOS_64 = "macos-64"


def current_os(
    *,
    system: str | None = None,
    machine: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> SupportedOS:
    """Map the running host to a :class:`SupportedOS`.

    Windows reports 32-bit architectures to 32-bit processes on 64-bit hosts,
    so its bitness comes from ``PROCESSOR_ARCHITECTURE`` and
    ``PROCESSOR_ARCHITEW6432`` instead.
    """
    system = system if system is not None else sys.platform
    machine = (machine if machine is not None else platform.machine()).lower()
    environ = environ if environ is not None else os.environ

    if system.startswith("linux"):
        if machine in _LINUX_64_MACHINES:
            return SupportedOS.LINUX_64
        if machine in _LINUX_32_MACHINES:
            return SupportedOS.LINUX_32
    elif system in {"win32", "cygwin"}:
        arch = environ.get("PROCESSOR_ARCHITECTURE", "")
        wow64_arch = environ.get("PROCESSOR_ARCHITEW6432", "")
        if arch.endswith("64") or wow64_arch.endswith("64"):
            return SupportedOS.WINDOWS_64
        return SupportedOS.WINDOWS_32
    elif system == "darwin":
        if machine in _MACOS_64_MACHINES:
            return SupportedOS.MACOS_64
    else:
        raise ValidationError(
            f"Unsupported operating system: {system}",
            context={"system": system, "machine": machine},
        )
    raise ValidationError(
        f"Unsupported architecture `{machine}` on {system}.",
        context={"system": system, "machine": machine},
    )


__all__ = ["SupportedOS", "current_os"]
