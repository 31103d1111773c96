"""ContainerManager: selects an engine and exposes the container lifecycle.

The manager keeps no registry of containers. Apart from the cached runtime
info it only remembers which engine is active; every call is forwarded to
that engine as-is, without retries.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Mapping, Sequence

from sandkit.containers.errors import ContainerError, EngineNotAvailableError, NoRuntimeAvailableError
from sandkit.containers.labels import MANAGED_FILTER, is_managed, managed_labels
from sandkit.containers.types import (
    Container,
    ContainerConfig,
    ContainerState,
    ContainerStats,
    ExecResult,
    Mount,
)
from sandkit.engines.apple_container import AppleContainerEngine
from sandkit.engines.base import ContainerEngine
from sandkit.engines.docker import DockerEngine
from sandkit.engines.podman import PodmanEngine
from sandkit.infrastructure.config import (
    CONTAINER_NAME_PREFIX,
    DEFAULT_LOG_TAIL,
    STOP_TIMEOUT,
    ManagerConfig,
)
from sandkit.infrastructure.logger import logger
from sandkit.infrastructure.process import CommandRunner, run_command
from sandkit.runtime.probe import RuntimeProbe
from sandkit.runtime.types import HostPlatform, RuntimeInfo, RuntimeKind, runtime_priority


def default_engines(runner: CommandRunner = run_command, host: HostPlatform | None = None) -> list[ContainerEngine]:
    return [
        DockerEngine(runner),
        PodmanEngine(runner),
        AppleContainerEngine(runner, host=host),
    ]


class ContainerManager:
    """Single entry point for the agent-execution service."""

    def __init__(
        self,
        engines: Mapping[RuntimeKind, ContainerEngine],
        config: ManagerConfig | None = None,
        *,
        host: HostPlatform | None = None,
        probe: RuntimeProbe | None = None,
    ) -> None:
        """*engines* must already be filtered to the available ones; see create()."""
        self._config = config or ManagerConfig()
        self._host = host or HostPlatform.current()
        self._probe = probe or RuntimeProbe(host=self._host)
        self._engines: dict[RuntimeKind, ContainerEngine] = dict(engines)
        self._active: ContainerEngine = self._select_active_engine()

    @classmethod
    async def create(
        cls,
        config: ManagerConfig | None = None,
        *,
        engines: Sequence[ContainerEngine] | None = None,
        host: HostPlatform | None = None,
        probe: RuntimeProbe | None = None,
        runner: CommandRunner = run_command,
    ) -> ContainerManager:
        """Probe every candidate engine concurrently and build a manager.

        Raises NoRuntimeAvailableError when none of them is usable.
        """
        host = host or HostPlatform.current()
        candidates = list(engines) if engines is not None else default_engines(runner, host)

        results = await asyncio.gather(*(engine.is_available() for engine in candidates), return_exceptions=True)

        available: dict[RuntimeKind, ContainerEngine] = {}
        for engine, result in zip(candidates, results):
            if isinstance(result, BaseException):
                logger.debug("Engine availability check raised", engine=str(engine.kind), err=str(result))
            elif result:
                available[engine.kind] = engine
                logger.info("Container engine available", engine=str(engine.kind), version=engine.version)
            else:
                logger.debug("Container engine not available", engine=str(engine.kind))

        return cls(available, config, host=host, probe=probe or RuntimeProbe(runner=runner, host=host))

    def _select_active_engine(self) -> ContainerEngine:
        preferred = self._config.engine
        if preferred != "auto":
            engine = self._engines.get(RuntimeKind(preferred))
            if engine is not None:
                logger.info("Using preferred engine", engine=str(preferred))
                return engine
            logger.warning("Preferred engine not available, auto-selecting", engine=str(preferred))

        for kind in runtime_priority(self._host):
            engine = self._engines.get(kind)
            if engine is not None:
                logger.info("Auto-selected engine", engine=str(kind), host=str(self._host))
                return engine

        raise NoRuntimeAvailableError(self._host)

    # -- Engine selection ------------------------------------------------

    @property
    def config(self) -> ManagerConfig:
        return self._config

    @property
    def active_kind(self) -> RuntimeKind:
        return self._active.kind

    @property
    def available_engines(self) -> list[RuntimeKind]:
        return list(self._engines)

    def get_active_engine(self) -> ContainerEngine:
        return self._active

    def switch_engine(self, kind: RuntimeKind | str) -> None:
        """Make *kind* the active engine; leaves the current one on failure."""
        try:
            engine = self._engines.get(RuntimeKind(kind))
        except ValueError:
            engine = None
        if engine is None:
            raise EngineNotAvailableError(kind, self.available_engines)
        self._active = engine
        logger.info("Switched engine", engine=str(engine.kind))

    async def runtime_info(self) -> RuntimeInfo | None:
        return await self._probe.get_runtime_info(self._active.kind)

    # -- Pass-through operations -----------------------------------------

    async def create_container(self, config: ContainerConfig) -> Container:
        return await self._active.create_container(config)

    async def start_container(self, container_id: str) -> None:
        await self._active.start_container(container_id)

    async def stop_container(self, container_id: str, timeout: int = STOP_TIMEOUT) -> None:
        await self._active.stop_container(container_id, timeout)

    async def remove_container(self, container_id: str, force: bool = False) -> None:
        await self._active.remove_container(container_id, force)

    async def list_containers(self, labels: Mapping[str, str] | None = None) -> list[Container]:
        return await self._active.list_containers(labels)

    async def get_container(self, container_id: str) -> Container | None:
        return await self._active.get_container(container_id)

    async def get_container_status(self, container_id: str) -> Container:
        return await self._active.get_container_status(container_id)

    async def get_container_logs(self, container_id: str, tail: int = DEFAULT_LOG_TAIL) -> str:
        return await self._active.get_container_logs(container_id, tail)

    async def get_stats(self, container_id: str) -> ContainerStats:
        return await self._active.get_stats(container_id)

    async def exec(
        self,
        container_id: str,
        command: Sequence[str],
        timeout: float | None = None,
        working_dir: str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> ExecResult:
        """Run *command* in a container.

        Without an explicit *timeout* the configured resources.timeout_minutes
        bounds the call; a ceiling of zero or None means unlimited.
        """
        if timeout is None and self._config.resources.timeout_minutes:
            timeout = self._config.resources.timeout_minutes * 60
        return await self._active.exec_in_container(
            container_id, command, timeout=timeout, working_dir=working_dir, env=env
        )

    async def pull_image(self, image: str) -> None:
        await self._active.pull_image(image)

    # -- Sandboxes -------------------------------------------------------

    def build_sandbox_config(
        self,
        run_id: str,
        workspace_path: str,
        env: Mapping[str, str],
        now: datetime | None = None,
    ) -> ContainerConfig:
        workdir = self._config.workdir
        return ContainerConfig(
            name=f"{CONTAINER_NAME_PREFIX}{run_id}",
            image=self._config.image,
            env=dict(env),
            mounts=[Mount(source=workspace_path, target=workdir, type="bind", read_only=False)],
            resources=self._config.resources,
            security=self._config.security,
            working_dir=workdir,
            labels=managed_labels(run_id, now or datetime.now(timezone.utc)),
            network=self._config.network,
        )

    async def create_sandboxed_container(
        self,
        run_id: str,
        workspace_path: str,
        env: Mapping[str, str],
    ) -> Container:
        """Create a sandbox for *run_id* with *workspace_path* mounted read-write."""
        config = self.build_sandbox_config(run_id, workspace_path, env)
        logger.info("Creating sandbox", run_id=run_id, image=config.image, engine=str(self.active_kind))
        return await self.create_container(config)

    async def list_managed_containers(self) -> list[Container]:
        containers = await self.list_containers(MANAGED_FILTER)
        return [c for c in containers if is_managed(c.labels)]

    async def cleanup_managed_containers(self) -> int:
        """Stop and force-remove every managed container.

        Each container is handled on its own: a failure is logged and the loop
        moves on. Returns how many containers were actually removed.
        """
        containers = await self.list_managed_containers()
        removed = 0

        for container in containers:
            try:
                if container.state is ContainerState.RUNNING:
                    await self.stop_container(container.container_id, self._config.cleanup_stop_timeout)
                await self.remove_container(container.container_id, force=True)
            except ContainerError as exc:
                logger.error(
                    "Failed to clean up container",
                    container_id=container.container_id,
                    name=container.name,
                    err=str(exc),
                )
                continue
            removed += 1
            logger.info("Cleaned up container", container_id=container.container_id, name=container.name)

        logger.info("Managed container cleanup finished", removed=removed, total=len(containers))
        return removed
