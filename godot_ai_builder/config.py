"""Environment-driven settings shared by the editor bridge and the MCP tool proxy."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from godot_ai_builder.exceptions import ConfigurationError

DEFAULT_BRIDGE_HOST: str = "127.0.0.1"
DEFAULT_BRIDGE_PORT: int = 6100
# Ordinary calls vs. calls that trigger a full error recomputation.
DEFAULT_TIMEOUT: float = 5.0
DEFAULT_DETAILED_TIMEOUT: float = 8.0

STATE_DIR_NAME: str = ".claude"


@dataclass(frozen=True)
class Settings:
    """Resolved configuration for one project."""

    project_path: Path
    bridge_host: str = DEFAULT_BRIDGE_HOST
    bridge_port: int = DEFAULT_BRIDGE_PORT
    request_timeout: float = DEFAULT_TIMEOUT
    detailed_timeout: float = DEFAULT_DETAILED_TIMEOUT
    godot_binary: str | None = None
    log_level: str = "INFO"

    @property
    def state_dir(self) -> Path:
        return self.project_path / STATE_DIR_NAME

    @property
    def phase_state_path(self) -> Path:
        return self.state_dir / "current_phase.json"

    @property
    def build_state_path(self) -> Path:
        return self.state_dir / "build_state.json"

    @property
    def quality_reports_dir(self) -> Path:
        return self.state_dir / "quality_reports"


def _parse_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be an integer", {"value": raw}) from exc
    if value <= 0:
        raise ConfigurationError(f"{key} must be positive", {"value": raw})
    return value


def _parse_seconds(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be a number of seconds", {"value": raw}) from exc
    if value <= 0:
        raise ConfigurationError(f"{key} must be positive", {"value": raw})
    return value


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    """Build Settings from environment variables (``os.environ`` by default)."""
    env = os.environ if env is None else env
    project = Path(env.get("GODOT_PROJECT_PATH") or ".").expanduser().resolve()
    return Settings(
        project_path=project,
        bridge_host=env.get("GODOT_BRIDGE_HOST") or DEFAULT_BRIDGE_HOST,
        bridge_port=_parse_int(env, "GODOT_BRIDGE_PORT", DEFAULT_BRIDGE_PORT),
        request_timeout=_parse_seconds(env, "GODOT_BRIDGE_TIMEOUT", DEFAULT_TIMEOUT),
        detailed_timeout=_parse_seconds(
            env, "GODOT_BRIDGE_DETAILED_TIMEOUT", DEFAULT_DETAILED_TIMEOUT
        ),
        godot_binary=env.get("GODOT_PATH") or None,
        log_level=env.get("GODOT_AI_BUILDER_LOG_LEVEL") or "INFO",
    )
