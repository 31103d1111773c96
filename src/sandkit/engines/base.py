"""Container engine contract implemented once per runtime."""

from __future__ import annotations

from typing import Mapping, Protocol, Sequence, runtime_checkable

from sandkit.containers.types import Container, ContainerConfig, ContainerStats, ExecResult
from sandkit.runtime.types import RuntimeKind


@runtime_checkable
class ContainerEngine(Protocol):
    """Interface for container engines (Docker, Podman, Apple Container).

    Lifecycle failures raise ContainerOperationError subclasses. Status,
    listing and exec never raise for the common runtime-side failures; see
    each method.
    """

    kind: RuntimeKind
    version: str

    async def is_available(self) -> bool: ...

    async def create_container(self, config: ContainerConfig) -> Container: ...

    async def start_container(self, container_id: str) -> None: ...

    async def stop_container(self, container_id: str, timeout: int = 30) -> None: ...

    async def remove_container(self, container_id: str, force: bool = False) -> None: ...

    async def exec_in_container(
        self,
        container_id: str,
        command: Sequence[str],
        timeout: float | None = None,
        working_dir: str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> ExecResult:
        """Non-zero exit is a normal result; exit_code -1 means transport failure."""
        ...

    async def get_container_status(self, container_id: str) -> Container:
        """Unknown native states map to pending; a missing container maps to error."""
        ...

    async def get_container(self, container_id: str) -> Container | None: ...

    async def get_container_logs(self, container_id: str, tail: int = 100) -> str: ...

    async def get_stats(self, container_id: str) -> ContainerStats: ...

    async def list_containers(self, labels: Mapping[str, str] | None = None) -> list[Container]:
        """Managed containers only; empty on zero matches or a failed listing."""
        ...

    async def pull_image(self, image: str) -> None: ...
