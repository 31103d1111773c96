"""Shared fixtures: a scripted command runner and a scripted engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

import pytest

from sandkit.containers.errors import ContainerRemoveError, ContainerStopError
from sandkit.containers.types import Container, ContainerConfig, ContainerStats, ExecResult
from sandkit.infrastructure.process import ProcessError, ProcessResult
from sandkit.runtime.types import RuntimeKind


@dataclass
class _Rule:
    prefix: tuple[str, ...]
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    raises: ProcessError | None = None


class FakeRunner:
    """Stands in for run_command: records argv, replays scripted results.

    Rules match on an argv prefix; the most recently added matching rule
    wins. Unmatched commands succeed with empty output.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[tuple[str, ...], float | None]] = []
        self._rules: list[_Rule] = []

    def on(self, *prefix: str, stdout: str = "", stderr: str = "", exit_code: int = 0,
           raises: ProcessError | None = None) -> FakeRunner:
        self._rules.append(_Rule(tuple(prefix), stdout, stderr, exit_code, raises))
        return self

    async def __call__(self, argv: Sequence[str], timeout: float | None = None) -> ProcessResult:
        argv = tuple(argv)
        self.calls.append((argv, timeout))
        for rule in reversed(self._rules):
            if argv[: len(rule.prefix)] == rule.prefix:
                if rule.raises is not None:
                    raise rule.raises
                return ProcessResult(argv=argv, exit_code=rule.exit_code, stdout=rule.stdout, stderr=rule.stderr)
        return ProcessResult(argv=argv, exit_code=0, stdout="", stderr="")

    @property
    def argvs(self) -> list[tuple[str, ...]]:
        return [argv for argv, _ in self.calls]

    def calls_to(self, *prefix: str) -> list[tuple[str, ...]]:
        return [argv for argv in self.argvs if argv[: len(prefix)] == prefix]


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@dataclass
class FakeEngine:
    """In-memory ContainerEngine with switchable failures."""

    kind: RuntimeKind
    available: bool = True
    version: str = "1.0.0"
    containers: list[Container] = field(default_factory=list)
    fail_stop: set[str] = field(default_factory=set)
    fail_remove: set[str] = field(default_factory=set)
    calls: list[tuple[str, Any]] = field(default_factory=list)
    created: list[ContainerConfig] = field(default_factory=list)
    availability_checks: int = 0

    async def is_available(self) -> bool:
        self.availability_checks += 1
        return self.available

    async def create_container(self, config: ContainerConfig) -> Container:
        self.calls.append(("create", config.name))
        self.created.append(config)
        return Container(container_id=f"id-{config.name}", name=config.name, labels=dict(config.labels))

    async def start_container(self, container_id: str) -> None:
        self.calls.append(("start", container_id))

    async def stop_container(self, container_id: str, timeout: int = 30) -> None:
        self.calls.append(("stop", (container_id, timeout)))
        if container_id in self.fail_stop:
            raise ContainerStopError(self.kind, container_id, "stop failed")

    async def remove_container(self, container_id: str, force: bool = False) -> None:
        self.calls.append(("remove", (container_id, force)))
        if container_id in self.fail_remove:
            raise ContainerRemoveError(self.kind, container_id, "device or resource busy")

    async def exec_in_container(self, container_id: str, command: Sequence[str], timeout: float | None = None,
                                working_dir: str | None = None, env: Mapping[str, str] | None = None) -> ExecResult:
        self.calls.append(("exec", (container_id, tuple(command), timeout, working_dir)))
        return ExecResult(exit_code=0, stdout="ok")

    async def get_container_status(self, container_id: str) -> Container:
        self.calls.append(("status", container_id))
        return Container(container_id=container_id)

    async def get_container(self, container_id: str) -> Container | None:
        self.calls.append(("get", container_id))
        return next((c for c in self.containers if c.container_id == container_id), None)

    async def get_container_logs(self, container_id: str, tail: int = 100) -> str:
        self.calls.append(("logs", (container_id, tail)))
        return "log line"

    async def get_stats(self, container_id: str) -> ContainerStats:
        self.calls.append(("stats", container_id))
        return ContainerStats(pids=3)

    async def list_containers(self, labels: Mapping[str, str] | None = None) -> list[Container]:
        # Ignores the filter and returns everything
        self.calls.append(("list", dict(labels or {})))
        return list(self.containers)

    async def pull_image(self, image: str) -> None:
        self.calls.append(("pull", image))


@pytest.fixture
def make_engine():
    def factory(kind: RuntimeKind, **kwargs: Any) -> FakeEngine:
        return FakeEngine(kind=kind, **kwargs)

    return factory
