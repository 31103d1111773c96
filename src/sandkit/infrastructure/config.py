"""Configuration constants, .env parsing, and manager settings."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, ValidationError

from sandkit.containers.types import ResourceLimits, SecurityOptions
from sandkit.infrastructure.logger import logger
from sandkit.runtime.types import RuntimeKind


def read_env_file(keys: list[str]) -> dict[str, str]:
    """Parse .env file and return values for requested keys.

    Does NOT load into os.environ; callers decide what to do with values,
    so nothing read here leaks into the environment of spawned runtimes.
    """
    env_file = Path.cwd() / ".env"
    try:
        content = env_file.read_text()
    except OSError:
        return {}

    result: dict[str, str] = {}
    wanted = set(keys)

    for line in content.splitlines():
        trimmed = line.strip()
        if not trimmed or trimmed.startswith("#"):
            continue
        eq_idx = trimmed.find("=")
        if eq_idx == -1:
            continue
        key = trimmed[:eq_idx].strip()
        if key not in wanted:
            continue
        value = trimmed[eq_idx + 1 :].strip()
        if (value.startswith('"') and value.endswith('"')) or (value.startswith("'") and value.endswith("'")):
            value = value[1:-1]
        if value:
            result[key] = value

    return result


_ENV_KEYS = [
    "SANDKIT_ENGINE",
    "SANDKIT_IMAGE",
    "SANDKIT_CONFIG",
    "SANDKIT_PROBE_TIMEOUT",
    "SANDKIT_COMMAND_TIMEOUT",
]
_env_config = read_env_file(_ENV_KEYS)


def _setting(key: str, default: str = "") -> str:
    return os.environ.get(key) or _env_config.get(key, default)


# Timeouts (seconds)
PROBE_TIMEOUT: float = float(_setting("SANDKIT_PROBE_TIMEOUT", "5"))
# Bound for inspect, list, start, rm, logs and stats; create, pull and exec are caller-bounded
COMMAND_TIMEOUT: float = float(_setting("SANDKIT_COMMAND_TIMEOUT", "30"))
RUNTIME_INFO_TTL: float = 60.0
STOP_TIMEOUT: int = 30
CLEANUP_STOP_TIMEOUT: int = 10
# Extra headroom on top of a stop grace period before the CLI itself is killed
STOP_COMMAND_SLACK: float = 15.0

DEFAULT_LOG_TAIL: int = 100
DEFAULT_SANDBOX_IMAGE: str = "mcr.microsoft.com/devcontainers/typescript-node:20"
SANDBOX_WORKDIR: str = "/workspace"
CONTAINER_NAME_PREFIX: str = "sandkit-"

CONFIG_PATH: Path = Path(
    _setting("SANDKIT_CONFIG", str(Path.home() / ".config" / "sandkit" / "config.yaml"))
).expanduser()


EnginePreference = Literal["auto"] | RuntimeKind


class ManagerConfig(BaseModel):
    engine: EnginePreference = "auto"
    image: str = DEFAULT_SANDBOX_IMAGE
    workdir: str = SANDBOX_WORKDIR
    resources: ResourceLimits = Field(default_factory=ResourceLimits)
    security: SecurityOptions = Field(default_factory=SecurityOptions)
    network: Literal["none", "bridge", "host"] | None = None
    cleanup_stop_timeout: int = CLEANUP_STOP_TIMEOUT


def _read_config_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text())
    except (OSError, yaml.YAMLError):
        logger.warning("Failed to read config file, using defaults", path=str(path))
        return {}
    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning("Config file is not a mapping, using defaults", path=str(path))
        return {}
    return data


def load_manager_config(path: Path | None = None) -> ManagerConfig:
    """Build ManagerConfig from the YAML config file plus env overrides.

    SANDKIT_ENGINE and SANDKIT_IMAGE take precedence over the file.
    """
    config_path = path or CONFIG_PATH
    data = _read_config_file(config_path)

    engine = _setting("SANDKIT_ENGINE")
    if engine:
        data["engine"] = engine.lower()
    image = _setting("SANDKIT_IMAGE")
    if image:
        data["image"] = image

    try:
        return ManagerConfig.model_validate(data)
    except ValidationError as exc:
        logger.warning("Invalid manager config, using defaults", path=str(config_path), err=str(exc))
        return ManagerConfig()
