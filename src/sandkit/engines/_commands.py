"""Checked command execution shared by the engine adapters."""

from __future__ import annotations

import time
from typing import Mapping, Sequence

from sandkit.containers.errors import (
    ContainerConflictError,
    ContainerCreateError,
    ContainerOperationError,
)
from sandkit.containers.types import ExecResult
from sandkit.infrastructure.logger import logger
from sandkit.infrastructure.process import (
    CommandFailedError,
    CommandRunner,
    ProcessError,
    ProcessResult,
)
from sandkit.runtime.types import RuntimeKind

_CONFLICT_MARKERS = ("already in use", "already exists", "conflict")
_UNREACHABLE_MARKERS = (
    "cannot connect to the docker daemon",
    "error during connect",
    "error response from daemon",
    "no such container",
    "unable to connect to podman",
    "xpc connection error",
)
# Exit codes the runtimes use for a command that could not be run inside the container
_COMMAND_EXIT_CODES = (126, 127)


def is_name_conflict(stderr: str) -> bool:
    lowered = stderr.lower()
    return any(marker in lowered for marker in _CONFLICT_MARKERS)


def is_runtime_unreachable(stderr: str) -> bool:
    lowered = stderr.lower()
    return any(marker in lowered for marker in _UNREACHABLE_MARKERS)


async def run_checked(
    runner: CommandRunner,
    argv: Sequence[str],
    error_cls: type[ContainerOperationError],
    runtime: RuntimeKind,
    target: str,
    timeout: float | None = None,
) -> ProcessResult:
    """Run *argv*; turn any failure into *error_cls* with the runtime's stderr."""
    try:
        return (await runner(argv, timeout)).check()
    except CommandFailedError as exc:
        logger.error(
            "Container command failed",
            runtime=str(runtime),
            target=target,
            code=exc.exit_code,
            stderr=exc.stderr.strip(),
        )
        if error_cls is ContainerCreateError and is_name_conflict(exc.stderr):
            raise ContainerConflictError(runtime, target, exc.stderr, exc.exit_code) from exc
        raise error_cls(runtime, target, exc.stderr, exc.exit_code) from exc
    except ProcessError as exc:
        logger.error("Container command did not complete", runtime=str(runtime), target=target, err=str(exc))
        raise error_cls(runtime, target, str(exc)) from exc


async def run_exec(runner: CommandRunner, argv: Sequence[str], timeout: float | None) -> ExecResult:
    """Run an exec invocation, folding transport failures into exit_code -1.

    A non-zero exit whose stderr comes from the runtime rather than the
    command (daemon down, container gone) is also reported as -1.
    """
    started = time.monotonic()
    try:
        result = await runner(argv, timeout)
    except ProcessError as exc:
        return ExecResult(
            exit_code=-1,
            stdout="",
            stderr=str(exc),
            execution_time_ms=int((time.monotonic() - started) * 1000),
        )
    elapsed = result.duration_ms or int((time.monotonic() - started) * 1000)
    if result.exit_code not in (0, *_COMMAND_EXIT_CODES) and is_runtime_unreachable(result.stderr):
        logger.warning("Exec did not reach the container", argv=list(argv[:3]), stderr=result.stderr.strip())
        return ExecResult(exit_code=-1, stdout=result.stdout, stderr=result.stderr, execution_time_ms=elapsed)
    return ExecResult(
        exit_code=result.exit_code,
        stdout=result.stdout,
        stderr=result.stderr,
        execution_time_ms=elapsed,
    )


def filter_args(labels: Mapping[str, str], flag: str = "--filter", prefix: str = "label=") -> list[str]:
    args: list[str] = []
    for key, value in labels.items():
        args.extend([flag, f"{prefix}{key}={value}"])
    return args
