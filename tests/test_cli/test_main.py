"""Tests for the command-line entry point."""

import pytest

import sandkit.__main__ as cli
from sandkit.containers.errors import NoRuntimeAvailableError
from sandkit.containers.types import Container
from sandkit.runtime.types import HostPlatform, RuntimeInfo, RuntimeKind


class FakeProbe:
    def __init__(self, best=None, info=None):
        self.best = best
        self.info = info

    async def detect_best_runtime(self):
        return self.best

    async def get_runtime_info(self, kind):
        return self.info if self.info and self.info.kind is kind else None


class FakeManager:
    def __init__(self, removed=0):
        self.removed = removed

    async def list_managed_containers(self):
        return []

    async def cleanup_managed_containers(self):
        return self.removed


class TestParser:
    def test_logs_defaults(self):
        args = cli.build_parser().parse_args(["logs", "abc"])
        assert args.container_id == "abc"
        assert args.tail == 100

    def test_rejects_unknown_runtime(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["info", "--runtime", "lxc"])


class TestMain:
    @pytest.mark.asyncio
    async def test_detect(self, monkeypatch, capsys):
        monkeypatch.setattr(cli, "RuntimeProbe", lambda: FakeProbe(best=RuntimeKind.PODMAN))
        assert await cli.main(["detect"]) == 0
        assert capsys.readouterr().out.strip() == "podman"

    @pytest.mark.asyncio
    async def test_detect_none(self, monkeypatch):
        monkeypatch.setattr(cli, "RuntimeProbe", lambda: FakeProbe())
        assert await cli.main(["detect"]) == 1

    @pytest.mark.asyncio
    async def test_info(self, monkeypatch, capsys):
        info = RuntimeInfo(kind=RuntimeKind.DOCKER, version="27.0.0", executable_path="/usr/bin/docker")
        monkeypatch.setattr(cli, "RuntimeProbe", lambda: FakeProbe(info=info))
        assert await cli.main(["info", "--runtime", "docker"]) == 0
        assert "27.0.0" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_cleanup(self, monkeypatch, capsys):
        async def create(config=None):
            return FakeManager(removed=3)

        monkeypatch.setattr(cli.ContainerManager, "create", create)
        assert await cli.main(["cleanup"]) == 0
        assert "Removed 3" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_no_runtime_reported(self, monkeypatch, capsys):
        async def create(config=None):
            raise NoRuntimeAvailableError(HostPlatform("linux", "x86_64"))

        monkeypatch.setattr(cli.ContainerManager, "create", create)
        assert await cli.main(["ps"]) == 1
        assert "No container runtime available" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_ps_and_logs(self, monkeypatch, capsys):
        class Listing(FakeManager):
            async def list_managed_containers(self):
                return [Container(container_id="0123456789abcdef", name="sandkit-run-1", image="node:20")]

            async def get_container_logs(self, container_id, tail):
                return f"{container_id} last {tail}"

        async def create(config=None):
            return Listing()

        monkeypatch.setattr(cli.ContainerManager, "create", create)
        assert await cli.main(["ps"]) == 0
        assert await cli.main(["logs", "abc", "--tail", "5"]) == 0
        out = capsys.readouterr().out
        assert "0123456789ab\tpending\tsandkit-run-1\tnode:20" in out
        assert "abc last 5" in out
