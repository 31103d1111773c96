"""Container domain types."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class ContainerState(str, Enum):
    PENDING = "pending"  # Created, not yet confirmed running
    RUNNING = "running"
    STOPPED = "stopped"  # Clean or forced stop, including non-zero exit
    ERROR = "error"  # Runtime-reported failure or failed inspection

    @property
    def is_terminal(self) -> bool:
        return self in (ContainerState.STOPPED, ContainerState.ERROR)

    def __str__(self) -> str:
        return self.value


class Mount(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: str = ""  # Absolute host path; unused for tmpfs
    target: str
    type: Literal["bind", "tmpfs"] = "bind"
    read_only: bool = False


class ResourceLimits(BaseModel):
    model_config = ConfigDict(frozen=True)

    memory_mb: int | None = 2048
    cpu_cores: float | None = 2.0
    timeout_minutes: int | None = 60  # Ceiling for exec calls made through the manager


class SecurityOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    read_only_root_filesystem: bool = False
    no_new_privileges: bool = True
    drop_capabilities: list[str] = Field(default_factory=lambda: ["ALL"])
    seccomp_profile: str | None = None


class ContainerConfig(BaseModel):
    """Everything needed to create one container. Never mutated after creation."""

    model_config = ConfigDict(frozen=True)

    name: str
    image: str
    env: dict[str, str] = Field(default_factory=dict)
    mounts: list[Mount] = Field(default_factory=list)
    resources: ResourceLimits = Field(default_factory=ResourceLimits)
    security: SecurityOptions = Field(default_factory=SecurityOptions)
    working_dir: str | None = None
    labels: dict[str, str] = Field(default_factory=dict)
    command: list[str] | None = None
    network: Literal["none", "bridge", "host"] | None = None


class Container(BaseModel):
    container_id: str
    name: str = ""
    image: str = ""
    state: ContainerState = ContainerState.PENDING
    labels: dict[str, str] = Field(default_factory=dict)
    created_at: datetime | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    exit_code: int | None = None
    error: str | None = None


class ContainerStats(BaseModel):
    cpu_percent: float = 0.0
    memory_used_bytes: int = 0
    memory_limit_bytes: int = 0
    memory_percent: float = 0.0
    net_rx_bytes: int = 0
    net_tx_bytes: int = 0
    block_read_bytes: int = 0
    block_write_bytes: int = 0
    pids: int = 0


@dataclass
class ExecResult:
    """Outcome of a command run inside a container.

    exit_code -1 means the command could not be run at all (runtime
    unreachable, timeout); stderr then holds the failure description.
    """

    exit_code: int
    stdout: str = ""
    stderr: str = ""
    execution_time_ms: int = 0

    @property
    def transport_failed(self) -> bool:
        return self.exit_code == -1
