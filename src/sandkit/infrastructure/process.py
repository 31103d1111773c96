"""Spawn-with-timeout-and-capture primitive shared by the probe and every engine."""

from __future__ import annotations

import asyncio
import contextlib
import os
import signal
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence


class ProcessError(Exception):
    """A command could not be run to completion."""

    def __init__(self, argv: Sequence[str], message: str) -> None:
        super().__init__(message)
        self.argv = tuple(argv)


class ProcessLaunchError(ProcessError):
    """The executable could not be started (missing binary, permissions)."""


class ProcessTimeoutError(ProcessError):
    """The command outlived its timeout and was killed."""

    def __init__(self, argv: Sequence[str], timeout: float) -> None:
        super().__init__(argv, f"Command timed out after {timeout:g}s: {' '.join(argv)}")
        self.timeout = timeout


class CommandFailedError(ProcessError):
    """The command ran but exited non-zero."""

    def __init__(self, argv: Sequence[str], exit_code: int, stderr: str) -> None:
        detail = stderr.strip() or f"exit code {exit_code}"
        super().__init__(argv, f"{' '.join(argv)}: {detail}")
        self.exit_code = exit_code
        self.stderr = stderr


@dataclass(frozen=True)
class ProcessResult:
    argv: tuple[str, ...]
    exit_code: int
    stdout: str
    stderr: str
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def check(self) -> ProcessResult:
        """Return self, or raise CommandFailedError on a non-zero exit."""
        if self.exit_code != 0:
            raise CommandFailedError(self.argv, self.exit_code, self.stderr)
        return self


CommandRunner = Callable[[Sequence[str], float | None], Awaitable[ProcessResult]]

_POSIX = os.name == "posix"


async def _kill(proc: asyncio.subprocess.Process) -> None:
    # Kill the whole group so grandchildren holding our pipes die too
    with contextlib.suppress(ProcessLookupError, PermissionError):
        if _POSIX:
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()
    await proc.wait()


async def run_command(argv: Sequence[str], timeout: float | None = None) -> ProcessResult:
    """Run *argv* and capture its output.

    A non-zero exit is returned, not raised. Raises ProcessLaunchError when
    the binary cannot be started and ProcessTimeoutError when *timeout*
    elapses; in both the timeout and the cancellation case the child is
    killed and reaped before the error propagates.
    """
    argv = tuple(argv)
    started = time.monotonic()
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=_POSIX,
        )
    except OSError as exc:
        raise ProcessLaunchError(argv, f"Failed to start {argv[0]}: {exc}") from exc

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError as exc:
        await _kill(proc)
        raise ProcessTimeoutError(argv, timeout or 0) from exc
    except asyncio.CancelledError:
        await _kill(proc)
        raise

    return ProcessResult(
        argv=argv,
        exit_code=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout.decode(errors="replace"),
        stderr=stderr.decode(errors="replace"),
        duration_ms=int((time.monotonic() - started) * 1000),
    )
