"""Barrel re-export of all domain types."""

from sandkit.containers.errors import (
    ContainerConflictError,
    ContainerCreateError,
    ContainerError,
    ContainerLogsError,
    ContainerOperationError,
    ContainerRemoveError,
    ContainerStartError,
    ContainerStatsError,
    ContainerStopError,
    EngineNotAvailableError,
    ImagePullError,
    NoRuntimeAvailableError,
)
from sandkit.containers.types import (
    Container,
    ContainerConfig,
    ContainerState,
    ContainerStats,
    ExecResult,
    Mount,
    ResourceLimits,
    SecurityOptions,
)
from sandkit.runtime.types import HostPlatform, RuntimeInfo, RuntimeKind

__all__ = [
    "Container",
    "ContainerConfig",
    "ContainerConflictError",
    "ContainerCreateError",
    "ContainerError",
    "ContainerLogsError",
    "ContainerOperationError",
    "ContainerRemoveError",
    "ContainerStartError",
    "ContainerState",
    "ContainerStats",
    "ContainerStatsError",
    "ContainerStopError",
    "EngineNotAvailableError",
    "ExecResult",
    "HostPlatform",
    "ImagePullError",
    "Mount",
    "NoRuntimeAvailableError",
    "ResourceLimits",
    "RuntimeInfo",
    "RuntimeKind",
    "SecurityOptions",
]
