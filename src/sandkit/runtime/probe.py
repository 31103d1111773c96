"""Runtime probing: which container runtimes are installed and responsive.

Every probe degrades to "unavailable" / "no info" instead of raising; the
caller decides whether having no runtime at all is fatal.
"""

from __future__ import annotations

import re
import shutil
import time
from dataclasses import dataclass, field
from typing import Callable

from sandkit.infrastructure.config import PROBE_TIMEOUT, RUNTIME_INFO_TTL
from sandkit.infrastructure.logger import logger
from sandkit.infrastructure.process import CommandRunner, ProcessError, run_command
from sandkit.runtime.types import (
    RUNTIME_BINARIES,
    HostPlatform,
    RuntimeInfo,
    RuntimeKind,
    runtime_priority,
)

AVAILABILITY_COMMANDS: dict[RuntimeKind, list[str]] = {
    RuntimeKind.DOCKER: ["docker", "version"],
    RuntimeKind.PODMAN: ["podman", "version"],
    RuntimeKind.APPLE_CONTAINER: ["container", "--version"],
}

VERSION_COMMANDS: dict[RuntimeKind, list[str]] = {
    RuntimeKind.DOCKER: ["docker", "version", "--format", "{{.Server.Version}}"],
    RuntimeKind.PODMAN: ["podman", "version", "--format", "{{.Version}}"],
    RuntimeKind.APPLE_CONTAINER: ["container", "--version"],
}

_APPLE_VERSION_RE = re.compile(r"version\s+(\d+\.\d+\.\d+)")


@dataclass
class _InfoCache:
    """One cache generation: all entries share a single expiry."""

    entries: dict[RuntimeKind, RuntimeInfo | None] = field(default_factory=dict)
    expires_at: float = 0.0


class RuntimeProbe:
    """Availability checks and cached runtime metadata for the current host."""

    def __init__(
        self,
        runner: CommandRunner = run_command,
        host: HostPlatform | None = None,
        ttl: float = RUNTIME_INFO_TTL,
        timeout: float = PROBE_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
        which: Callable[[str], str | None] = shutil.which,
    ) -> None:
        self._run = runner
        self._host = host or HostPlatform.current()
        self._ttl = ttl
        self._timeout = timeout
        self._clock = clock
        self._which = which
        self._cache = _InfoCache()

    @property
    def host(self) -> HostPlatform:
        return self._host

    def _applicable(self, kind: RuntimeKind) -> bool:
        # The Apple runtime only exists on macOS; don't even spawn elsewhere
        return kind is not RuntimeKind.APPLE_CONTAINER or self._host.is_macos

    async def check_available(self, kind: RuntimeKind) -> bool:
        """Run a side-effect-free version query; any failure means unavailable."""
        if not self._applicable(kind):
            return False
        try:
            result = await self._run(AVAILABILITY_COMMANDS[kind], self._timeout)
        except ProcessError as exc:
            logger.debug("Runtime probe failed", runtime=str(kind), err=str(exc))
            return False
        if not result.ok:
            logger.debug("Runtime probe exited non-zero", runtime=str(kind), code=result.exit_code)
        return result.ok

    async def detect_best_runtime(self) -> RuntimeKind | None:
        """First available runtime in this host's priority order, or None."""
        for kind in runtime_priority(self._host):
            if await self.check_available(kind):
                logger.debug("Best runtime detected", runtime=str(kind), host=str(self._host))
                return kind
        logger.debug("No container runtime detected", host=str(self._host))
        return None

    async def get_runtime_info(self, kind: RuntimeKind) -> RuntimeInfo | None:
        """Version and executable path, served from cache while it is fresh."""
        now = self._clock()
        if kind in self._cache.entries and now < self._cache.expires_at:
            return self._cache.entries[kind]

        info = await self._fetch_info(kind)
        self._cache.entries[kind] = info
        self._cache.expires_at = now + self._ttl
        return info

    def clear_cache(self) -> None:
        self._cache = _InfoCache()

    async def _fetch_info(self, kind: RuntimeKind) -> RuntimeInfo | None:
        if not self._applicable(kind):
            return None
        try:
            result = (await self._run(VERSION_COMMANDS[kind], self._timeout)).check()
        except ProcessError as exc:
            logger.debug("Runtime info lookup failed", runtime=str(kind), err=str(exc))
            return None

        output = result.stdout.strip()
        if kind is RuntimeKind.APPLE_CONTAINER:
            match = _APPLE_VERSION_RE.search(output)
            version = match.group(1) if match else "unknown"
        else:
            version = output.splitlines()[0].strip() if output else "unknown"

        binary = RUNTIME_BINARIES[kind]
        return RuntimeInfo(kind=kind, version=version, executable_path=self._which(binary) or binary)
