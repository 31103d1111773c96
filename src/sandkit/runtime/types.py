"""Runtime domain types: which engines exist and what host we are on."""

from __future__ import annotations

import platform
import sys
from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, ConfigDict


class RuntimeKind(str, Enum):
    DOCKER = "docker"
    PODMAN = "podman"
    APPLE_CONTAINER = "apple-container"

    def __str__(self) -> str:
        return self.value


KNOWN_RUNTIMES: tuple[RuntimeKind, ...] = tuple(RuntimeKind)

# CLI binary for each runtime
RUNTIME_BINARIES: dict[RuntimeKind, str] = {
    RuntimeKind.DOCKER: "docker",
    RuntimeKind.PODMAN: "podman",
    RuntimeKind.APPLE_CONTAINER: "container",
}


class RuntimeInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: RuntimeKind
    version: str
    executable_path: str


@dataclass(frozen=True)
class HostPlatform:
    """Operating system and CPU architecture, as seen by runtime selection."""

    system: str  # sys.platform style: "darwin", "linux", ...
    machine: str  # "arm64", "x86_64", ...

    @classmethod
    def current(cls) -> HostPlatform:
        return cls(system=sys.platform, machine=platform.machine().lower())

    @property
    def is_macos(self) -> bool:
        return self.system == "darwin"

    @property
    def is_linux(self) -> bool:
        return self.system.startswith("linux")

    @property
    def is_apple_silicon(self) -> bool:
        return self.is_macos and self.machine in ("arm64", "aarch64")

    def __str__(self) -> str:
        return f"{self.system}/{self.machine}"


def runtime_priority(host: HostPlatform) -> tuple[RuntimeKind, ...]:
    """Runtimes worth trying on *host*, best first.

    Apple silicon Macs prefer the native runtime; every other supported host
    only ever considers Docker-compatible engines and Podman. Hosts outside
    macOS and Linux get an empty order.
    """
    if host.is_apple_silicon:
        return (RuntimeKind.APPLE_CONTAINER, RuntimeKind.DOCKER, RuntimeKind.PODMAN)
    if host.is_macos or host.is_linux:
        return (RuntimeKind.DOCKER, RuntimeKind.PODMAN)
    return ()
