"""Tests for ContainerManager engine selection, sandboxes and cleanup."""

from datetime import datetime, timezone

import pytest

from sandkit.containers.errors import EngineNotAvailableError, NoRuntimeAvailableError
from sandkit.containers.labels import CREATED_LABEL, MANAGED_LABEL, RUN_ID_LABEL
from sandkit.containers.types import Container, ContainerState, Mount, ResourceLimits
from sandkit.infrastructure.config import ManagerConfig
from sandkit.orchestration.manager import ContainerManager
from sandkit.runtime.probe import RuntimeProbe
from sandkit.runtime.types import KNOWN_RUNTIMES, HostPlatform, RuntimeKind

MAC_ARM = HostPlatform("darwin", "arm64")
LINUX = HostPlatform("linux", "x86_64")
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _managed(container_id, state=ContainerState.RUNNING):
    return Container(
        container_id=container_id,
        name=f"sandkit-{container_id}",
        state=state,
        labels={MANAGED_LABEL: "true", RUN_ID_LABEL: container_id},
    )


def _manager(engines, config=None, host=LINUX):
    return ContainerManager({engine.kind: engine for engine in engines}, config, host=host)


class TestCreate:
    @pytest.mark.asyncio
    async def test_no_runtime_available(self, make_engine):
        engines = [make_engine(kind, available=False) for kind in RuntimeKind]
        with pytest.raises(NoRuntimeAvailableError) as exc_info:
            await ContainerManager.create(engines=engines, host=LINUX)

        err = exc_info.value
        assert err.known_runtimes == KNOWN_RUNTIMES
        assert "docker" in str(err)
        assert "podman" in str(err)
        assert "apple-container" in str(err)

    @pytest.mark.asyncio
    async def test_probes_every_engine(self, make_engine):
        engines = [make_engine(kind) for kind in RuntimeKind]
        manager = await ContainerManager.create(engines=engines, host=MAC_ARM)

        assert all(engine.availability_checks == 1 for engine in engines)
        assert set(manager.available_engines) == set(RuntimeKind)
        assert manager.active_kind is RuntimeKind.APPLE_CONTAINER

    @pytest.mark.asyncio
    async def test_failed_probe_counts_as_unavailable(self, make_engine):
        class Exploding:
            kind = RuntimeKind.DOCKER
            version = "unknown"

            async def is_available(self):
                raise RuntimeError("boom")

        podman = make_engine(RuntimeKind.PODMAN)
        manager = await ContainerManager.create(engines=[Exploding(), podman], host=LINUX)
        assert manager.get_active_engine() is podman

    @pytest.mark.asyncio
    async def test_linux_auto_selects_docker(self, make_engine):
        engines = [make_engine(RuntimeKind.PODMAN), make_engine(RuntimeKind.DOCKER)]
        manager = await ContainerManager.create(engines=engines, host=LINUX)
        assert manager.active_kind is RuntimeKind.DOCKER

    @pytest.mark.asyncio
    async def test_apple_engine_ignored_off_macos(self, make_engine):
        engines = [make_engine(RuntimeKind.APPLE_CONTAINER), make_engine(RuntimeKind.PODMAN)]
        manager = await ContainerManager.create(engines=engines, host=LINUX)
        assert manager.active_kind is RuntimeKind.PODMAN


class TestEngineSelection:
    def test_preference_honoured(self, make_engine):
        engines = [make_engine(RuntimeKind.DOCKER), make_engine(RuntimeKind.PODMAN)]
        manager = _manager(engines, ManagerConfig(engine="podman"))
        assert manager.active_kind is RuntimeKind.PODMAN

    def test_unavailable_preference_falls_back(self, make_engine):
        manager = _manager([make_engine(RuntimeKind.DOCKER)], ManagerConfig(engine="podman"))
        assert manager.active_kind is RuntimeKind.DOCKER

    def test_switch_engine(self, make_engine):
        manager = _manager([make_engine(RuntimeKind.DOCKER), make_engine(RuntimeKind.PODMAN)])
        manager.switch_engine(RuntimeKind.PODMAN)
        assert manager.active_kind is RuntimeKind.PODMAN
        manager.switch_engine("docker")
        assert manager.active_kind is RuntimeKind.DOCKER

    def test_switch_to_unavailable_keeps_active(self, make_engine):
        docker = make_engine(RuntimeKind.DOCKER)
        manager = _manager([docker])

        with pytest.raises(EngineNotAvailableError) as exc_info:
            manager.switch_engine(RuntimeKind.PODMAN)
        assert exc_info.value.available == (RuntimeKind.DOCKER,)
        assert manager.get_active_engine() is docker

        with pytest.raises(EngineNotAvailableError):
            manager.switch_engine("lxc")
        assert manager.get_active_engine() is docker


class TestPassThrough:
    @pytest.mark.asyncio
    async def test_calls_reach_active_engine_only(self, make_engine):
        docker = make_engine(RuntimeKind.DOCKER)
        podman = make_engine(RuntimeKind.PODMAN)
        manager = _manager([docker, podman])

        await manager.start_container("abc")
        await manager.stop_container("abc")
        await manager.remove_container("abc", force=True)
        assert await manager.get_container_logs("abc") == "log line"
        assert (await manager.get_stats("abc")).pids == 3
        await manager.pull_image("node:20")

        assert [name for name, _ in docker.calls] == ["start", "stop", "remove", "logs", "stats", "pull"]
        assert ("stop", ("abc", 30)) in docker.calls
        assert ("logs", ("abc", 100)) in docker.calls
        assert podman.calls == []

    @pytest.mark.asyncio
    async def test_exec_defaults_to_configured_ceiling(self, make_engine):
        docker = make_engine(RuntimeKind.DOCKER)
        config = ManagerConfig(resources=ResourceLimits(timeout_minutes=2))
        manager = _manager([docker], config)

        await manager.exec("abc", ["ls"])
        await manager.exec("abc", ["ls"], timeout=5, working_dir="/src")

        assert docker.calls == [
            ("exec", ("abc", ("ls",), 120, None)),
            ("exec", ("abc", ("ls",), 5, "/src")),
        ]

    @pytest.mark.asyncio
    async def test_exec_without_ceiling(self, make_engine):
        docker = make_engine(RuntimeKind.DOCKER)
        manager = _manager([docker], ManagerConfig(resources=ResourceLimits(timeout_minutes=None)))
        await manager.exec("abc", ["ls"])
        assert docker.calls[0][1][2] is None


class TestSandbox:
    def test_sandbox_config(self, make_engine):
        manager = _manager([make_engine(RuntimeKind.DOCKER)])
        config = manager.build_sandbox_config("run-42", "/work/abc", {"FOO": "bar"}, now=NOW)

        assert config.name == "sandkit-run-42"
        assert config.image == manager.config.image
        assert config.env == {"FOO": "bar"}
        assert config.mounts == [Mount(source="/work/abc", target="/workspace", type="bind", read_only=False)]
        assert config.working_dir == "/workspace"
        assert config.labels == {
            MANAGED_LABEL: "true",
            RUN_ID_LABEL: "run-42",
            CREATED_LABEL: "2026-03-01T12:00:00+00:00",
        }
        assert config.security.drop_capabilities == ["ALL"]
        assert config.security.no_new_privileges is True

    def test_sandbox_uses_configured_image_and_limits(self, make_engine):
        settings = ManagerConfig(image="python:3.12", resources=ResourceLimits(memory_mb=512), network="none")
        manager = _manager([make_engine(RuntimeKind.DOCKER)], settings)
        config = manager.build_sandbox_config("r", "/w", {})
        assert config.image == "python:3.12"
        assert config.resources.memory_mb == 512
        assert config.network == "none"

    @pytest.mark.asyncio
    async def test_create_sandboxed_container(self, make_engine):
        docker = make_engine(RuntimeKind.DOCKER)
        manager = _manager([docker])

        container = await manager.create_sandboxed_container("run-42", "/work/abc", {"FOO": "bar"})

        assert container.name == "sandkit-run-42"
        assert docker.created[0].labels[RUN_ID_LABEL] == "run-42"


class TestManagedContainers:
    @pytest.mark.asyncio
    async def test_list_excludes_unmanaged(self, make_engine):
        foreign = Container(container_id="foreign", labels={"com.example": "1"})
        disowned = Container(container_id="disowned", labels={MANAGED_LABEL: "false"})
        docker = make_engine(RuntimeKind.DOCKER, containers=[_managed("a"), foreign, disowned, _managed("b")])
        manager = _manager([docker])

        containers = await manager.list_managed_containers()

        assert [c.container_id for c in containers] == ["a", "b"]
        assert docker.calls[0] == ("list", {MANAGED_LABEL: "true"})

    @pytest.mark.asyncio
    async def test_cleanup_continues_past_failures(self, make_engine):
        docker = make_engine(
            RuntimeKind.DOCKER,
            containers=[_managed("a"), _managed("b"), _managed("c")],
            fail_remove={"b"},
        )
        manager = _manager([docker])

        removed = await manager.cleanup_managed_containers()

        assert removed == 2
        removes = [args for name, args in docker.calls if name == "remove"]
        assert removes == [("a", True), ("b", True), ("c", True)]

    @pytest.mark.asyncio
    async def test_cleanup_skips_stop_for_stopped(self, make_engine):
        docker = make_engine(
            RuntimeKind.DOCKER,
            containers=[_managed("a"), _managed("b", ContainerState.STOPPED)],
        )
        manager = _manager([docker], ManagerConfig(cleanup_stop_timeout=7))

        assert await manager.cleanup_managed_containers() == 2
        stops = [args for name, args in docker.calls if name == "stop"]
        assert stops == [("a", 7)]

    @pytest.mark.asyncio
    async def test_failed_stop_skips_remove(self, make_engine):
        docker = make_engine(RuntimeKind.DOCKER, containers=[_managed("a"), _managed("b")], fail_stop={"a"})
        manager = _manager([docker])

        assert await manager.cleanup_managed_containers() == 1
        removes = [args[0] for name, args in docker.calls if name == "remove"]
        assert removes == ["b"]

    @pytest.mark.asyncio
    async def test_cleanup_never_touches_unmanaged(self, make_engine):
        foreign = Container(container_id="foreign", state=ContainerState.RUNNING)
        docker = make_engine(RuntimeKind.DOCKER, containers=[foreign])
        manager = _manager([docker])

        assert await manager.cleanup_managed_containers() == 0
        assert [name for name, _ in docker.calls] == ["list"]


class TestRuntimeInfo:
    @pytest.mark.asyncio
    async def test_info_for_active_engine(self, make_engine, runner):
        runner.on("podman", "version", stdout="5.2.0\n")
        probe = RuntimeProbe(runner=runner, host=LINUX, which=lambda binary: f"/usr/bin/{binary}")
        manager = ContainerManager({RuntimeKind.PODMAN: make_engine(RuntimeKind.PODMAN)}, host=LINUX, probe=probe)

        info = await manager.runtime_info()
        await manager.runtime_info()

        assert info.kind is RuntimeKind.PODMAN
        assert info.version == "5.2.0"
        assert len(runner.calls) == 1
