"""Shell-wrapped child process execution with background output draining.

Every command runs as ``<shell> -c "<joined parts>"`` so that a per-call
``PATH`` overlay is honoured by binary lookup inside the child. Captured
streams are drained by threads that poll the pipe instead of blocking in a
buffered read: after a forced termination a blocking read can hang on a pipe
that a grandchild still holds open, while the polling drain gives up once the
handle is terminated and the pipe has gone quiet.
"""

from __future__ import annotations

import contextlib
import os
import selectors
import signal
import subprocess
import threading
from collections.abc import Mapping, Sequence
from concurrent.futures import Future
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO

from toolstrap.cancellation import CancellationToken
from toolstrap.models import Command
from toolstrap.observability import StructuredLogger

SH_DEFAULT = "sh"
_CHUNK_SIZE = 65536
_POLL_INTERVAL = 0.05


class OutputDrain:
    """Reads one pipe on a background thread; resolves a future with the full text at EOF."""

    def __init__(self, stream: IO[bytes], *, name: str, poll_interval: float = _POLL_INTERVAL) -> None:
        self._stream = stream
        self._poll_interval = poll_interval
        self._abandoned = threading.Event()
        self._result: Future[str] = Future()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._thread.start()

    def abandon(self) -> None:
        """Stop at the next quiet poll instead of waiting for EOF."""
        self._abandoned.set()

    def text(self, timeout: float | None = None) -> str:
        """Block until the drain finished and return everything it read."""
        return self._result.result(timeout=timeout)

    def _run(self) -> None:
        chunks: list[bytes] = []
        fd = self._stream.fileno()
        try:
            with selectors.DefaultSelector() as selector:
                selector.register(fd, selectors.EVENT_READ)
                while True:
                    if not selector.select(timeout=self._poll_interval):
                        if self._abandoned.is_set():
                            break
                        continue
                    chunk = os.read(fd, _CHUNK_SIZE)
                    if not chunk:
                        break
                    chunks.append(chunk)
        except (OSError, ValueError) as exc:
            self._stream.close()
            self._result.set_exception(exc)
            return
        self._stream.close()
        self._result.set_result(b"".join(chunks).decode("utf-8", errors="replace"))


class ProcessHandle:
    """A live child process plus the drains of its captured streams."""

    def __init__(
        self,
        process: subprocess.Popen[bytes],
        command: Command,
        *,
        stdout_drain: OutputDrain | None = None,
        stderr_drain: OutputDrain | None = None,
    ) -> None:
        self._process = process
        self.command = command
        self._stdout_drain = stdout_drain
        self._stderr_drain = stderr_drain
        self._terminated = threading.Event()

    @classmethod
    def start(
        cls,
        command: Command,
        *,
        shell: str = SH_DEFAULT,
        capture_stdout: bool = False,
        capture_stderr: bool = False,
    ) -> ProcessHandle:
        env = dict(os.environ)
        env.update(command.env)
        process = subprocess.Popen(
            [shell, "-c", command.joined()],
            cwd=str(command.cwd) if command.cwd is not None else None,
            env=env,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE if capture_stdout else None,
            stderr=subprocess.PIPE if capture_stderr else None,
            start_new_session=os.name == "posix",
        )
        stdout_drain = None
        stderr_drain = None
        if process.stdout is not None:
            stdout_drain = OutputDrain(process.stdout, name=f"stdout-drain-{process.pid}")
        if process.stderr is not None:
            stderr_drain = OutputDrain(process.stderr, name=f"stderr-drain-{process.pid}")
        return cls(process, command, stdout_drain=stdout_drain, stderr_drain=stderr_drain)

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.poll()

    @property
    def terminated(self) -> bool:
        return self._terminated.is_set()

    def wait(self) -> int:
        return self._process.wait()

    def terminate(self) -> None:
        """Kill the process (its whole process group on POSIX) without waiting for it."""
        self._terminated.set()
        if self._process.poll() is None:
            # already reaped between poll() and the signal
            with contextlib.suppress(ProcessLookupError):
                if os.name == "posix":
                    os.killpg(self._process.pid, signal.SIGKILL)
                else:
                    self._process.kill()
        for drain in (self._stdout_drain, self._stderr_drain):
            if drain is not None:
                drain.abandon()

    def stdout(self) -> str | None:
        """Captured stdout, or ``None`` if stdout was inherited."""
        if self._stdout_drain is None:
            return None
        return self._stdout_drain.text()

    def stderr(self) -> str | None:
        """Captured stderr, or ``None`` if stderr was inherited."""
        if self._stderr_drain is None:
            return None
        return self._stderr_drain.text()


@dataclass(slots=True)
class ProcessRunner:
    shell: str = SH_DEFAULT
    cancellation: CancellationToken = field(default_factory=CancellationToken)
    logger: StructuredLogger | None = None

    def run(
        self,
        command: Command,
        *,
        capture_stdout: bool = False,
        capture_stderr: bool = False,
    ) -> ProcessHandle:
        """Spawn *command* and register it as the active process.

        Raises :class:`toolstrap.cancellation.OperationCancelled` if
        cancellation was requested before the spawn.
        """
        handle = self.cancellation.spawn(
            lambda: ProcessHandle.start(
                command,
                shell=self.shell,
                capture_stdout=capture_stdout,
                capture_stderr=capture_stderr,
            )
        )
        if self.logger is not None:
            self.logger.log(
                operation="spawn",
                prerequisite=None,
                step=None,
                message="Spawned child process.",
                level="debug",
                extra={
                    "pid": handle.pid,
                    "command": command.joined(),
                    "cwd": str(command.cwd) if command.cwd is not None else None,
                    "env": dict(sorted(command.env.items())),
                },
            )
        return handle

    def run_parts(
        self,
        parts: Sequence[str],
        *,
        working_dir: Path | None = None,
        env: Mapping[str, str] | None = None,
        capture_stdout: bool = False,
        capture_stderr: bool = False,
    ) -> ProcessHandle:
        command = Command(parts=tuple(parts), env=dict(env or {}), cwd=working_dir)
        return self.run(command, capture_stdout=capture_stdout, capture_stderr=capture_stderr)
