"""Error taxonomy for container orchestration.

Only construction-time "no runtime at all" is fatal. Lifecycle failures are
ContainerOperationError subclasses carrying the runtime's own stderr so the
message is actionable without shell access to the host.
"""

from __future__ import annotations

from typing import Sequence

from sandkit.runtime.types import KNOWN_RUNTIMES, HostPlatform, RuntimeKind


class ContainerError(Exception):
    """Base class for everything this package raises."""


class NoRuntimeAvailableError(ContainerError):
    def __init__(self, host: HostPlatform, known_runtimes: Sequence[RuntimeKind] = KNOWN_RUNTIMES) -> None:
        self.host = host
        self.known_runtimes = tuple(known_runtimes)
        names = ", ".join(str(kind) for kind in self.known_runtimes)
        super().__init__(
            f"No container runtime available on this host ({host}). "
            f"Install and start one of: {names}."
        )


class EngineNotAvailableError(ContainerError):
    def __init__(self, requested: RuntimeKind | str, available: Sequence[RuntimeKind]) -> None:
        self.requested = requested
        self.available = tuple(available)
        names = ", ".join(str(kind) for kind in self.available) or "none"
        super().__init__(f"Engine {requested} not available (available: {names})")


class ContainerOperationError(ContainerError):
    operation = "operate on container"

    def __init__(
        self,
        runtime: RuntimeKind,
        target: str,
        stderr: str = "",
        exit_code: int | None = None,
    ) -> None:
        self.runtime = runtime
        self.target = target
        self.stderr = stderr.strip()
        self.exit_code = exit_code
        detail = self.stderr or (f"exit code {exit_code}" if exit_code is not None else "unknown error")
        super().__init__(f"Failed to {self.operation} {target} ({runtime}): {detail}")


class ContainerCreateError(ContainerOperationError):
    operation = "create container"


class ContainerConflictError(ContainerCreateError):
    """The requested container name is already taken."""


class ContainerStartError(ContainerOperationError):
    operation = "start container"


class ContainerStopError(ContainerOperationError):
    operation = "stop container"


class ContainerRemoveError(ContainerOperationError):
    operation = "remove container"


class ContainerLogsError(ContainerOperationError):
    operation = "read logs of container"


class ContainerStatsError(ContainerOperationError):
    operation = "get stats for container"


class ImagePullError(ContainerOperationError):
    operation = "pull image"
