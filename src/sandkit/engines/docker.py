"""Docker container engine, driven through the docker CLI."""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from typing import Any, Mapping, Sequence

from sandkit.containers.errors import (
    ContainerCreateError,
    ContainerLogsError,
    ContainerRemoveError,
    ContainerStartError,
    ContainerStatsError,
    ContainerStopError,
    ImagePullError,
)
from sandkit.containers.labels import listing_filter, with_managed_labels
from sandkit.containers.types import (
    Container,
    ContainerConfig,
    ContainerState,
    ContainerStats,
    ExecResult,
)
from sandkit.engines._commands import filter_args, run_checked, run_exec
from sandkit.engines._parsing import (
    last_line,
    parse_int,
    parse_label_string,
    parse_percent,
    parse_size_pair,
    parse_timestamp,
)
from sandkit.infrastructure.config import (
    COMMAND_TIMEOUT,
    DEFAULT_LOG_TAIL,
    PROBE_TIMEOUT,
    STOP_COMMAND_SLACK,
    STOP_TIMEOUT,
)
from sandkit.infrastructure.logger import logger
from sandkit.infrastructure.process import CommandRunner, ProcessError, run_command
from sandkit.runtime.types import RuntimeKind

_STATE_MAP: dict[str, ContainerState] = {
    "running": ContainerState.RUNNING,
    "exited": ContainerState.STOPPED,
    "dead": ContainerState.ERROR,
}

_INSPECT_FORMAT = "{{.State.Status}}|{{.State.ExitCode}}|{{.State.StartedAt}}|{{.State.FinishedAt}}"
_VERSION_RE = re.compile(r"Version:\s*(\S+)")


def _map_state(native: str) -> ContainerState:
    return _STATE_MAP.get(native.strip().lower(), ContainerState.PENDING)


class DockerEngine:
    """Docker (or any Docker-compatible daemon) driven through its CLI."""

    kind = RuntimeKind.DOCKER

    def __init__(self, runner: CommandRunner = run_command, binary: str = "docker") -> None:
        self._run = runner
        self._bin = binary
        self.version = "unknown"

    async def is_available(self) -> bool:
        try:
            result = await self._run([self._bin, "version"], PROBE_TIMEOUT)
        except ProcessError as exc:
            logger.debug("Docker not available", err=str(exc))
            return False
        if not result.ok:
            return False
        match = _VERSION_RE.search(result.stdout)
        if match:
            self.version = match.group(1)
        return True

    # -- Lifecycle -------------------------------------------------------

    def build_create_args(self, config: ContainerConfig, now: datetime | None = None) -> list[str]:
        args = ["run", "--detach", f"--name={config.name}"]

        resources = config.resources
        if resources.memory_mb:
            args.append(f"--memory={resources.memory_mb}m")
        if resources.cpu_cores:
            args.append(f"--cpus={resources.cpu_cores:g}")

        security = config.security
        if security.read_only_root_filesystem:
            args.append("--read-only")
        if security.no_new_privileges:
            args.append("--security-opt=no-new-privileges:true")
        if "ALL" in security.drop_capabilities:
            args.append("--cap-drop=ALL")
        else:
            args.extend(f"--cap-drop={cap}" for cap in security.drop_capabilities)
        if security.seccomp_profile:
            args.append(f"--security-opt=seccomp={security.seccomp_profile}")

        if config.network:
            args.append(f"--network={config.network}")
        if config.working_dir:
            args.append(f"--workdir={config.working_dir}")

        for mount in config.mounts:
            if mount.type == "bind":
                ro = ":ro" if mount.read_only else ""
                args.extend(["-v", f"{mount.source}:{mount.target}{ro}"])
            else:
                args.append(f"--mount=type=tmpfs,destination={mount.target}")

        for key, value in config.env.items():
            args.append(f"--env={key}={value}")

        for key, value in with_managed_labels(config.labels, config.name, now).items():
            args.append(f"--label={key}={value}")

        args.append(config.image)
        if config.command:
            args.extend(config.command)
        return args

    async def create_container(self, config: ContainerConfig) -> Container:
        now = datetime.now(timezone.utc)
        args = self.build_create_args(config, now)
        logger.info("Creating container", runtime="docker", name=config.name, image=config.image)

        result = await run_checked(self._run, [self._bin, *args], ContainerCreateError, self.kind, config.name)
        container_id = last_line(result.stdout)

        logger.info("Container created", runtime="docker", name=config.name, container_id=container_id[:12])
        return Container(
            container_id=container_id,
            name=config.name,
            image=config.image,
            state=ContainerState.RUNNING,
            labels=with_managed_labels(config.labels, config.name, now),
            created_at=now,
            started_at=now,
        )

    async def start_container(self, container_id: str) -> None:
        await run_checked(
            self._run,
            [self._bin, "start", container_id],
            ContainerStartError,
            self.kind,
            container_id,
            timeout=COMMAND_TIMEOUT,
        )
        logger.info("Container started", runtime="docker", container_id=container_id)

    async def stop_container(self, container_id: str, timeout: int = STOP_TIMEOUT) -> None:
        await run_checked(
            self._run,
            [self._bin, "stop", "-t", str(timeout), container_id],
            ContainerStopError,
            self.kind,
            container_id,
            timeout=timeout + STOP_COMMAND_SLACK,
        )
        logger.info("Container stopped", runtime="docker", container_id=container_id)

    async def remove_container(self, container_id: str, force: bool = False) -> None:
        args = [self._bin, "rm"]
        if force:
            args.append("-f")
        args.append(container_id)
        await run_checked(self._run, args, ContainerRemoveError, self.kind, container_id, timeout=COMMAND_TIMEOUT)
        logger.info("Container removed", runtime="docker", container_id=container_id, force=force)

    async def exec_in_container(
        self,
        container_id: str,
        command: Sequence[str],
        timeout: float | None = None,
        working_dir: str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> ExecResult:
        args = [self._bin, "exec"]
        if working_dir:
            args.extend(["-w", working_dir])
        for key, value in (env or {}).items():
            args.extend(["-e", f"{key}={value}"])
        args.extend([container_id, *command])
        return await run_exec(self._run, args, timeout)

    # -- Inspection ------------------------------------------------------

    async def get_container_status(self, container_id: str) -> Container:
        try:
            result = await self._run([self._bin, "inspect", "-f", _INSPECT_FORMAT, container_id], COMMAND_TIMEOUT)
        except ProcessError as exc:
            return Container(container_id=container_id, state=ContainerState.ERROR, error=str(exc))
        if not result.ok:
            detail = result.stderr.strip() or "Container not found"
            return Container(container_id=container_id, state=ContainerState.ERROR, error=detail)

        status, exit_code, started_at, finished_at = (result.stdout.strip().split("|") + ["", "", "", ""])[:4]
        return Container(
            container_id=container_id,
            state=_map_state(status),
            started_at=parse_timestamp(started_at),
            finished_at=parse_timestamp(finished_at),
            exit_code=parse_int(exit_code),
        )

    async def get_container(self, container_id: str) -> Container | None:
        try:
            result = await self._run([self._bin, "inspect", "--format", "{{json .}}", container_id], COMMAND_TIMEOUT)
        except ProcessError:
            return None
        if not result.ok or not result.stdout.strip():
            return None
        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError:
            logger.warning("Unparseable docker inspect output", container_id=container_id)
            return None
        return self._parse_inspect(data)

    async def get_container_logs(self, container_id: str, tail: int = DEFAULT_LOG_TAIL) -> str:
        result = await run_checked(
            self._run,
            [self._bin, "logs", "--tail", str(tail), container_id],
            ContainerLogsError,
            self.kind,
            container_id,
            timeout=COMMAND_TIMEOUT,
        )
        return result.stdout

    async def get_stats(self, container_id: str) -> ContainerStats:
        result = await run_checked(
            self._run,
            [self._bin, "stats", container_id, "--no-stream", "--format", "{{json .}}"],
            ContainerStatsError,
            self.kind,
            container_id,
            timeout=COMMAND_TIMEOUT,
        )
        try:
            data = json.loads(last_line(result.stdout) or "{}")
        except json.JSONDecodeError as exc:
            raise ContainerStatsError(self.kind, container_id, f"Unparseable stats output: {exc}") from exc

        mem_used, mem_limit = parse_size_pair(data.get("MemUsage", ""))
        net_rx, net_tx = parse_size_pair(data.get("NetIO", ""))
        block_read, block_write = parse_size_pair(data.get("BlockIO", ""))
        return ContainerStats(
            cpu_percent=parse_percent(data.get("CPUPerc", "")),
            memory_used_bytes=mem_used,
            memory_limit_bytes=mem_limit,
            memory_percent=parse_percent(data.get("MemPerc", "")),
            net_rx_bytes=net_rx,
            net_tx_bytes=net_tx,
            block_read_bytes=block_read,
            block_write_bytes=block_write,
            pids=parse_int(data.get("PIDs")) or 0,
        )

    async def list_containers(self, labels: Mapping[str, str] | None = None) -> list[Container]:
        args = [self._bin, "ps", "-a", "--no-trunc", "--format", "{{json .}}"]
        args.extend(filter_args(listing_filter(labels)))
        try:
            result = (await self._run(args, COMMAND_TIMEOUT)).check()
        except ProcessError as exc:
            logger.warning("Failed to list containers", runtime="docker", err=str(exc))
            return []

        containers: list[Container] = []
        for line in result.stdout.strip().splitlines():
            if not line.strip():
                continue
            try:
                data = json.loads(line)
            except json.JSONDecodeError:
                logger.debug("Skipping unparseable docker ps line", line=line)
                continue
            containers.append(
                Container(
                    container_id=data.get("ID", ""),
                    name=str(data.get("Names", "")).lstrip("/"),
                    image=data.get("Image", ""),
                    state=_map_state(data.get("State", "")),
                    labels=parse_label_string(data.get("Labels", "")),
                    created_at=parse_timestamp(data.get("CreatedAt")),
                )
            )
        return containers

    async def pull_image(self, image: str) -> None:
        logger.info("Pulling image", runtime="docker", image=image)
        await run_checked(self._run, [self._bin, "pull", image], ImagePullError, self.kind, image)
        logger.info("Image pulled", runtime="docker", image=image)

    # -- Parsing ---------------------------------------------------------

    @staticmethod
    def _parse_inspect(data: dict[str, Any]) -> Container:
        state = data.get("State") or {}
        config = data.get("Config") or {}
        return Container(
            container_id=data.get("Id", ""),
            name=str(data.get("Name", "")).lstrip("/"),
            image=config.get("Image", ""),
            state=_map_state(state.get("Status", "")),
            labels=config.get("Labels") or {},
            created_at=parse_timestamp(data.get("Created")),
            started_at=parse_timestamp(state.get("StartedAt")),
            finished_at=parse_timestamp(state.get("FinishedAt")),
            exit_code=state.get("ExitCode"),
            error=state.get("Error") or None,
        )
