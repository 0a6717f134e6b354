"""Test helpers: project fixtures on disk and a scriptable editor host."""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any

import httpx

from godot_ai_builder.config import Settings
from godot_ai_builder.editor_bridge.errors import ErrorCollector
from godot_ai_builder.editor_bridge.host import HeadlessEditorHost, ScriptCheck
from godot_ai_builder.editor_bridge.phase import (
    FilePhaseStateRepository,
    InMemoryPhaseStateRepository,
    PhaseStateStore,
)
from godot_ai_builder.editor_bridge.server import BridgeServer
from godot_ai_builder.mcp_server.client import BridgeClient
from godot_ai_builder.mcp_server.context import ToolContext

PROJECT_GODOT = """\
; Engine configuration file.
config_version=5

[application]

config/name="Space Dodger"
run/main_scene="res://scenes/main.tscn"
config/features=PackedStringArray("4.3")

[display]

window/size/viewport_width=1280
"""

MAIN_SCENE = """\
[gd_scene load_steps=2 format=3 uid="uid://b1main"]

[ext_resource type="Script" path="res://scripts/main.gd" id="1_main"]

[node name="Main" type="Node2D"]
script = ExtResource("1_main")

[node name="Player" type="CharacterBody2D" parent="."]
position = Vector2(100, 200)

[node name="Sprite" type="Sprite2D" parent="Player"]
"""

MAIN_SCRIPT = """\
extends Node2D

func _ready() -> void:
\tprint("ready")
"""


def write_file(root: Path, relative: str, content: str = "") -> Path:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


class FakeEditorHost(HeadlessEditorHost):
    """Headless host over a real directory, with scripted check and play results."""

    def __init__(self, project_root: Path) -> None:
        super().__init__(project_root)
        self.failing: dict[str, ScriptCheck] = {}
        self.playing: str | None = None
        self.played: list[str] = []
        self.rescans = 0

    def validate_script(self, res_path: str) -> ScriptCheck:
        if res_path in self.failing:
            return self.failing[res_path]
        return super().validate_script(res_path)

    def play_scene(self, res_path: str) -> None:
        self.playing = res_path
        self.played.append(res_path)

    def stop_scene(self) -> bool:
        was_playing = self.playing is not None
        self.playing = None
        return was_playing

    def is_playing(self) -> bool:
        return self.playing is not None

    def rescan(self) -> None:
        self.rescans += 1
        super().rescan()


class SlowCheckHost(FakeEditorHost):
    """Fake host whose script checks sleep first: all of them, or only those in *slow*."""

    def __init__(self, project_root: Path, delay: float, slow: set[str] | None = None) -> None:
        super().__init__(project_root)
        self.delay = delay
        self.slow = slow

    def validate_script(self, res_path: str) -> ScriptCheck:
        if self.slow is None or res_path in self.slow:
            time.sleep(self.delay)
        return super().validate_script(res_path)


def make_server(host: HeadlessEditorHost, phase_file: Path | None = None, **kwargs: Any) -> BridgeServer:
    """Bridge on an ephemeral port, reading no editor logs."""
    repository = FilePhaseStateRepository(phase_file) if phase_file else InMemoryPhaseStateRepository()
    return BridgeServer(
        host=host,
        collector=ErrorCollector(host, host.project_root, log_paths=[]),
        phases=PhaseStateStore(repository),
        port=0,
        **kwargs,
    )


class MockBridge:
    """Canned bridge responses keyed by (method, path), served through httpx.MockTransport.

    A value may be a dict (200 JSON), an int (that status with an error body) or
    an exception class raised as a transport failure. Unlisted routes answer 404
    like the real bridge.
    """

    def __init__(self, routes: dict[tuple[str, str], Any] | None = None) -> None:
        self.routes = dict(routes or {})
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        answer = self.routes.get((request.method, request.url.path))
        if isinstance(answer, type) and issubclass(answer, httpx.TransportError):
            raise answer("mock failure", request=request)
        if answer is None:
            return httpx.Response(404, json={"error": "Not found"})
        if isinstance(answer, int):
            return httpx.Response(answer, json={"ok": False, "error": f"status {answer}"})
        return httpx.Response(200, json=answer)

    def client(self) -> BridgeClient:
        return BridgeClient("127.0.0.1", 6100, transport=httpx.MockTransport(self.handler))

    def calls(self, method: str, path: str) -> list[dict[str, Any]]:
        return [
            json.loads(r.content or b"{}") for r in self.requests
            if r.method == method and r.url.path == path
        ]

    def logs(self) -> list[str]:
        return [body["message"] for body in self.calls("POST", "/log")]


def make_context(project_root: Path, bridge: BridgeClient) -> ToolContext:
    return ToolContext.from_settings(Settings(project_path=project_root), bridge=bridge)
