"""Cooperative cancellation shared between the orchestrator and one external thread.

The token holds a flag and a lock-protected cell referencing the currently
active child process. Spawning happens under the same lock as cancellation,
so once :meth:`CancellationToken.cancel` returns no new process can start and
the one that was running has been sent a termination signal.
"""

from __future__ import annotations

import threading
import weakref
from collections.abc import Callable
from typing import Protocol, TypeVar


class OperationCancelled(Exception):
    """Raised when work is refused because cancellation was requested."""


class Terminable(Protocol):
    def terminate(self) -> None:
        """Forcibly stop the underlying process."""


H = TypeVar("H", bound=Terminable)


class CancellationToken:
    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._active: weakref.ref[Terminable] | None = None

    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            self._event.set()
            handle = self._active() if self._active is not None else None
            if handle is not None:
                handle.terminate()

    def spawn(self, factory: Callable[[], H]) -> H:
        """Create a process via *factory* and register it as the active one.

        Raises :class:`OperationCancelled` without calling *factory* if the
        token is already cancelled.
        """
        with self._lock:
            if self._event.is_set():
                raise OperationCancelled("Cancellation was requested before spawning.")
            handle = factory()
            self._active = weakref.ref(handle)
            return handle

    def clear(self, handle: Terminable | None = None) -> None:
        """Forget the active process, or only *handle* if it is still the active one."""
        with self._lock:
            if self._active is None:
                return
            if handle is None or self._active() is handle:
                self._active = None

    def terminate_active(self) -> bool:
        with self._lock:
            handle = self._active() if self._active is not None else None
            if handle is None:
                return False
            handle.terminate()
            return True

    def active(self) -> Terminable | None:
        with self._lock:
            return self._active() if self._active is not None else None
