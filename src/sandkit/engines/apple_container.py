"""Apple Container engine (macOS only).

Apple's `container` CLI runs each container in a lightweight VM on Apple
silicon. Its vocabulary differs from Docker's: memory is --memory-limit,
mounts are --volume=src:dst[,readonly], listing and inspection print JSON
and there is no server-side label filter, so managed-label filtering
happens here. Capability and seccomp flags have no equivalent.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Sequence

from sandkit.containers.errors import (
    ContainerCreateError,
    ContainerRemoveError,
    ContainerStartError,
    ContainerStatsError,
    ContainerStopError,
    EngineNotAvailableError,
    ImagePullError,
)
from sandkit.containers.labels import listing_filter, matches, with_managed_labels
from sandkit.containers.types import (
    Container,
    ContainerConfig,
    ContainerState,
    ContainerStats,
    ExecResult,
)
from sandkit.engines._commands import run_checked, run_exec
from sandkit.engines._parsing import last_line, parse_timestamp, tail_lines
from sandkit.infrastructure.config import (
    COMMAND_TIMEOUT,
    DEFAULT_LOG_TAIL,
    PROBE_TIMEOUT,
    STOP_COMMAND_SLACK,
    STOP_TIMEOUT,
)
from sandkit.infrastructure.logger import logger
from sandkit.infrastructure.process import CommandFailedError, CommandRunner, ProcessError, run_command
from sandkit.runtime.types import HostPlatform, RuntimeKind

_STATE_MAP: dict[str, ContainerState] = {
    "running": ContainerState.RUNNING,
    "stopped": ContainerState.STOPPED,
    "exited": ContainerState.STOPPED,
    "error": ContainerState.ERROR,
    "dead": ContainerState.ERROR,
}

_VERSION_RE = re.compile(r"version\s+(\S+)")


def _map_state(native: str) -> ContainerState:
    return _STATE_MAP.get(native.strip().lower(), ContainerState.PENDING)


@dataclass
class AppleSystemStatus:
    installed: bool
    running: bool
    version: str | None = None
    error: str | None = None


class AppleContainerEngine:
    """Apple's native container runtime driven through the `container` CLI."""

    kind = RuntimeKind.APPLE_CONTAINER

    def __init__(
        self,
        runner: CommandRunner = run_command,
        binary: str = "container",
        host: HostPlatform | None = None,
    ) -> None:
        self._run = runner
        self._bin = binary
        self._host = host or HostPlatform.current()
        self.version = "unknown"

    def _require_macos(self) -> None:
        if not self._host.is_macos:
            raise EngineNotAvailableError(self.kind, [])

    async def is_available(self) -> bool:
        if not self._host.is_macos:
            return False
        try:
            result = await self._run([self._bin, "--version"], PROBE_TIMEOUT)
        except ProcessError as exc:
            logger.debug("Apple Container not available", err=str(exc))
            return False
        if not result.ok:
            return False
        match = _VERSION_RE.search(result.stdout)
        if match:
            self.version = match.group(1)
        return True

    async def system_status(self) -> AppleSystemStatus:
        """Whether the CLI is installed and its background service is running."""
        if not self._host.is_macos:
            return AppleSystemStatus(installed=False, running=False, error="Not macOS")
        try:
            result = (await self._run([self._bin, "--version"], PROBE_TIMEOUT)).check()
        except ProcessError:
            return AppleSystemStatus(
                installed=False,
                running=False,
                error="Apple Container not installed. See: https://github.com/apple/container",
            )
        match = _VERSION_RE.search(result.stdout)
        version = match.group(1) if match else "unknown"
        try:
            (await self._run([self._bin, "system", "status"], PROBE_TIMEOUT)).check()
        except ProcessError:
            return AppleSystemStatus(
                installed=True,
                running=False,
                version=version,
                error="Container service not running. Run: container system start",
            )
        return AppleSystemStatus(installed=True, running=True, version=version)

    def build_create_args(self, config: ContainerConfig, now: datetime | None = None) -> list[str]:
        args = ["run", "--detach", f"--name={config.name}"]

        resources = config.resources
        if resources.memory_mb:
            args.append(f"--memory-limit={resources.memory_mb}m")
        if resources.cpu_cores:
            args.append(f"--cpus={resources.cpu_cores:g}")

        security = config.security
        if security.read_only_root_filesystem:
            args.append("--read-only")
        ignored = [
            name
            for name, value in (
                ("drop_capabilities", security.drop_capabilities),
                ("seccomp_profile", security.seccomp_profile),
                ("no_new_privileges", security.no_new_privileges),
                ("network", config.network),
            )
            if value
        ]
        if ignored:
            logger.warning("Options not supported by Apple Container, ignoring", name=config.name, options=ignored)

        if config.working_dir:
            args.append(f"--workdir={config.working_dir}")

        for mount in config.mounts:
            if mount.type == "bind":
                ro = ",readonly" if mount.read_only else ""
                args.append(f"--volume={mount.source}:{mount.target}{ro}")
            else:
                args.append(f"--tmpfs={mount.target}")

        for key, value in config.env.items():
            args.append(f"--env={key}={value}")

        for key, value in with_managed_labels(config.labels, config.name, now).items():
            args.append(f"--label={key}={value}")

        args.append(config.image)
        if config.command:
            args.extend(["--", *config.command])
        return args

    async def create_container(self, config: ContainerConfig) -> Container:
        self._require_macos()
        now = datetime.now(timezone.utc)
        logger.info("Creating container", runtime="apple-container", name=config.name, image=config.image)
        result = await run_checked(
            self._run,
            [self._bin, *self.build_create_args(config, now)],
            ContainerCreateError,
            self.kind,
            config.name,
        )
        container_id = last_line(result.stdout) or config.name
        logger.info("Container created", runtime="apple-container", name=config.name, container_id=container_id)
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
        self._require_macos()
        await run_checked(
            self._run,
            [self._bin, "start", container_id],
            ContainerStartError,
            self.kind,
            container_id,
            timeout=COMMAND_TIMEOUT,
        )
        logger.info("Container started", runtime="apple-container", container_id=container_id)

    async def stop_container(self, container_id: str, timeout: int = STOP_TIMEOUT) -> None:
        self._require_macos()
        await run_checked(
            self._run,
            [self._bin, "stop", "--timeout", str(timeout), container_id],
            ContainerStopError,
            self.kind,
            container_id,
            timeout=timeout + STOP_COMMAND_SLACK,
        )
        logger.info("Container stopped", runtime="apple-container", container_id=container_id)

    async def remove_container(self, container_id: str, force: bool = False) -> None:
        self._require_macos()
        args = [self._bin, "rm"]
        if force:
            args.append("--force")
        args.append(container_id)
        await run_checked(self._run, args, ContainerRemoveError, self.kind, container_id, timeout=COMMAND_TIMEOUT)
        logger.info("Container removed", runtime="apple-container", container_id=container_id, force=force)

    async def exec_in_container(
        self,
        container_id: str,
        command: Sequence[str],
        timeout: float | None = None,
        working_dir: str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> ExecResult:
        if not self._host.is_macos:
            return ExecResult(exit_code=-1, stderr="Apple Container is only supported on macOS")
        args = [self._bin, "exec"]
        if working_dir:
            args.extend(["--workdir", working_dir])
        for key, value in (env or {}).items():
            args.append(f"--env={key}={value}")
        args.extend([container_id, "--", *command])
        return await run_exec(self._run, args, timeout)

    async def _inspect(self, container_id: str) -> tuple[dict[str, Any] | None, str]:
        """Raw inspect entry for *container_id*, or None with a reason."""
        try:
            result = await self._run([self._bin, "inspect", container_id], COMMAND_TIMEOUT)
        except ProcessError as exc:
            return None, str(exc)
        if not result.ok:
            return None, result.stderr.strip() or "Container not found"
        try:
            data = json.loads(result.stdout or "[]")
        except json.JSONDecodeError:
            return None, "Unparseable inspect output"
        if isinstance(data, dict):
            data = [data]
        if not data:
            return None, "Container not found"
        return data[0], ""

    @staticmethod
    def _to_container(data: dict[str, Any], fallback_id: str = "") -> Container:
        configuration = data.get("configuration") or {}
        image = configuration.get("image") or {}
        exit_code = data.get("exitCode")
        return Container(
            container_id=configuration.get("id") or fallback_id,
            name=configuration.get("id") or fallback_id,
            image=image.get("reference", "") if isinstance(image, dict) else str(image),
            state=_map_state(str(data.get("status", ""))),
            labels=configuration.get("labels") or {},
            created_at=parse_timestamp(data.get("created")),
            exit_code=exit_code if isinstance(exit_code, int) else None,
        )

    async def get_container_status(self, container_id: str) -> Container:
        if not self._host.is_macos:
            return Container(container_id=container_id, state=ContainerState.ERROR, error="Not macOS")
        data, reason = await self._inspect(container_id)
        if data is None:
            return Container(container_id=container_id, state=ContainerState.ERROR, error=reason)
        container = self._to_container(data, container_id)
        return Container(
            container_id=container_id,
            state=container.state,
            started_at=container.created_at,
            exit_code=container.exit_code,
        )

    async def get_container(self, container_id: str) -> Container | None:
        if not self._host.is_macos:
            return None
        data, _ = await self._inspect(container_id)
        return self._to_container(data, container_id) if data is not None else None

    async def get_container_logs(self, container_id: str, tail: int = DEFAULT_LOG_TAIL) -> str:
        self._require_macos()
        argv = [self._bin, "logs", "--tail", str(tail), container_id]
        try:
            return (await self._run(argv, COMMAND_TIMEOUT)).check().stdout
        except ProcessError as exc:
            logger.debug("Log tail flag rejected, slicing full log", container_id=container_id, err=str(exc))

        try:
            result = (await self._run([self._bin, "logs", container_id], COMMAND_TIMEOUT)).check()
        except ProcessError as exc:
            detail = exc.stderr.strip() if isinstance(exc, CommandFailedError) else str(exc)
            logger.warning("Container logs unavailable", container_id=container_id, err=detail)
            return f"Error getting logs: {detail}"
        return tail_lines(result.stdout, tail)

    async def get_stats(self, container_id: str) -> ContainerStats:
        self._require_macos()
        data, reason = await self._inspect(container_id)
        if data is None:
            raise ContainerStatsError(self.kind, container_id, reason)
        # No live usage figures from this runtime; report an empty sample
        return ContainerStats()

    async def list_containers(self, labels: Mapping[str, str] | None = None) -> list[Container]:
        if not self._host.is_macos:
            return []
        wanted = listing_filter(labels)
        try:
            result = (await self._run([self._bin, "list", "--all", "--format", "json"], COMMAND_TIMEOUT)).check()
            entries = json.loads(result.stdout or "[]")
        except (ProcessError, json.JSONDecodeError) as exc:
            logger.warning("Failed to list containers", runtime="apple-container", err=str(exc))
            return []

        containers = [self._to_container(entry) for entry in entries or [] if isinstance(entry, dict)]
        return [c for c in containers if matches(c.labels, wanted)]

    async def pull_image(self, image: str) -> None:
        self._require_macos()
        logger.info("Pulling image", runtime="apple-container", image=image)
        await run_checked(self._run, [self._bin, "image", "pull", image], ImagePullError, self.kind, image)
        logger.info("Image pulled", runtime="apple-container", image=image)
