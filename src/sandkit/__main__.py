"""Entry point: python -m sandkit <command>"""

from __future__ import annotations

import argparse
import asyncio
import sys

from sandkit.containers.errors import ContainerError
from sandkit.infrastructure.config import DEFAULT_LOG_TAIL, load_manager_config
from sandkit.orchestration.manager import ContainerManager
from sandkit.runtime.probe import RuntimeProbe
from sandkit.runtime.types import RuntimeKind


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sandkit", description="Sandbox container orchestration")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("detect", help="Print the best container runtime for this host")

    info = sub.add_parser("info", help="Show version and path of a runtime")
    info.add_argument("--runtime", choices=[kind.value for kind in RuntimeKind], help="Defaults to the detected one")

    sub.add_parser("ps", help="List managed containers")

    logs = sub.add_parser("logs", help="Print the tail of a container's logs")
    logs.add_argument("container_id")
    logs.add_argument("--tail", type=int, default=DEFAULT_LOG_TAIL)

    sub.add_parser("cleanup", help="Stop and remove every managed container")
    return parser


async def _detect() -> int:
    kind = await RuntimeProbe().detect_best_runtime()
    if kind is None:
        print("none", file=sys.stderr)
        return 1
    print(kind)
    return 0


async def _info(runtime: str | None) -> int:
    probe = RuntimeProbe()
    kind = RuntimeKind(runtime) if runtime else await probe.detect_best_runtime()
    info = await probe.get_runtime_info(kind) if kind else None
    if info is None:
        print(f"Runtime not available: {kind or 'none'}", file=sys.stderr)
        return 1
    print(info.model_dump_json(indent=2))
    return 0


async def _ps() -> int:
    manager = await ContainerManager.create(load_manager_config())
    for container in await manager.list_managed_containers():
        print(f"{container.container_id[:12]}\t{container.state}\t{container.name}\t{container.image}")
    return 0


async def _logs(container_id: str, tail: int) -> int:
    manager = await ContainerManager.create(load_manager_config())
    print(await manager.get_container_logs(container_id, tail))
    return 0


async def _cleanup() -> int:
    manager = await ContainerManager.create(load_manager_config())
    removed = await manager.cleanup_managed_containers()
    print(f"Removed {removed} container(s)")
    return 0


async def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        if args.command == "detect":
            return await _detect()
        if args.command == "info":
            return await _info(args.runtime)
        if args.command == "ps":
            return await _ps()
        if args.command == "logs":
            return await _logs(args.container_id, args.tail)
        return await _cleanup()
    except ContainerError as exc:
        print(str(exc), file=sys.stderr)
        return 1


def run() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
