"""Tests for the project inspection and editor control tools."""

from __future__ import annotations

import asyncio
from pathlib import Path

import httpx
import pytest

from godot_ai_builder.exceptions import BuilderError, ProjectPathError
from godot_ai_builder.mcp_server import editor_tools
from godot_ai_builder.mcp_server.client import BridgeClient
from helpers import FakeEditorHost, MockBridge, make_context, make_server, write_file

STATUS = {"connected": True, "project_name": "Space Dodger", "is_playing": False}


def test_project_state_with_editor_online(godot_project: Path) -> None:
    write_file(godot_project, "art/ship.png")
    write_file(godot_project, "themes/hud.tres")
    bridge = MockBridge({("GET", "/status"): STATUS, ("POST", "/log"): {"ok": True}})
    ctx = make_context(godot_project, bridge.client())

    result = asyncio.run(editor_tools.get_project_state(ctx))

    assert result["editor_connected"] is True
    assert result["project_name"] == "Space Dodger"
    assert result["main_scene"] == "res://scenes/main.tscn"
    assert result["files"] == {
        "scripts": ["res://scripts/main.gd"],
        "scenes": ["res://scenes/main.tscn"],
        "resources": ["res://themes/hud.tres"],
        "assets": ["res://art/ship.png"],
    }
    assert result["editor_status"] == STATUS
    assert bridge.logs()[0] == "[MCP] Getting project state..."


def test_project_state_with_editor_offline(godot_project: Path) -> None:
    bridge = MockBridge({("GET", "/status"): httpx.ConnectError, ("POST", "/log"): httpx.ConnectError})
    ctx = make_context(godot_project, bridge.client())

    result = asyncio.run(editor_tools.get_project_state(ctx))

    assert result["editor_connected"] is False
    assert "editor_status" not in result
    assert result["files"]["scripts"] == ["res://scripts/main.gd"]


def test_reload_reports_error_state(godot_project: Path) -> None:
    errors = [
        {"message": "Parse Error", "file": "res://scripts/a.gd", "line": 3},
        {"message": "Invalid call", "file": "", "line": -1},
    ]
    bridge = MockBridge({
        ("POST", "/reload"): {"ok": True},
        ("GET", "/errors"): {"errors": errors, "warnings": [], "error_count": 2},
    })
    ctx = make_context(godot_project, bridge.client())

    result = asyncio.run(editor_tools.reload_filesystem(ctx))

    assert result["ok"] is True
    assert result["_error_count"] == 2
    assert result["_error_files"] == ["res://scripts/a.gd", "Invalid call"]
    assert result["_action_required"].startswith("STOP: 2 errors detected")


def test_reload_with_clean_project(godot_project: Path) -> None:
    bridge = MockBridge({("POST", "/reload"): {"ok": True}, ("GET", "/errors"): {"errors": []}})
    ctx = make_context(godot_project, bridge.client())

    result = asyncio.run(editor_tools.reload_filesystem(ctx))

    assert result["_error_count"] == 0
    assert result["_error_files"] == []
    assert result["_action_required"] is None


def test_reload_still_succeeds_when_error_check_fails(godot_project: Path) -> None:
    bridge = MockBridge({("POST", "/reload"): {"ok": True}, ("GET", "/errors"): httpx.ReadTimeout})
    ctx = make_context(godot_project, bridge.client())

    result = asyncio.run(editor_tools.reload_filesystem(ctx))

    assert result["ok"] is True
    assert result["_error_count"] == 0


def test_get_errors_falls_back_to_fast_check(godot_project: Path) -> None:
    fast = {"errors": [{"message": "boom", "file": "res://scripts/main.gd"}], "warnings": []}
    bridge = MockBridge({("GET", "/detailed_errors"): httpx.ReadTimeout, ("GET", "/errors"): fast})
    ctx = make_context(godot_project, bridge.client())

    result = asyncio.run(editor_tools.get_errors(ctx))

    assert result == fast
    assert any("falling back to fast check" in line for line in bridge.logs())


def test_get_errors_without_fallback_propagates(godot_project: Path) -> None:
    bridge = MockBridge({("GET", "/errors"): httpx.ConnectError})
    ctx = make_context(godot_project, bridge.client())

    with pytest.raises(BuilderError, match="Cannot connect"):
        asyncio.run(editor_tools.get_errors(ctx, detailed=False))


def test_run_and_stop_forward_to_bridge(godot_project: Path) -> None:
    bridge = MockBridge({
        ("POST", "/run"): {"ok": True, "scene_path": "res://scenes/main.tscn", "restarted": False},
        ("POST", "/stop"): {"ok": True, "was_playing": True},
    })
    ctx = make_context(godot_project, bridge.client())

    async def scenario() -> None:
        await editor_tools.run_scene(ctx)
        await editor_tools.stop_scene(ctx)

    asyncio.run(scenario())

    assert bridge.calls("POST", "/run") == [{"scene_path": ""}]
    assert len(bridge.calls("POST", "/stop")) == 1


def test_scan_and_read_setting(godot_project: Path) -> None:
    write_file(godot_project, "sfx/jump.ogg")
    ctx = make_context(godot_project, MockBridge().client())

    scanned = asyncio.run(editor_tools.scan_project_files(ctx))
    only_audio = asyncio.run(editor_tools.scan_project_files(ctx, ["ogg"]))
    setting = asyncio.run(editor_tools.read_project_setting(ctx, "application/config/name"))
    missing = asyncio.run(editor_tools.read_project_setting(ctx, "display/window/vsync"))

    assert scanned["total"] == 3
    assert only_audio["files"] == ["res://sfx/jump.ogg"]
    assert setting == {"key": "application/config/name", "found": True, "value": "Space Dodger"}
    assert missing == {"key": "display/window/vsync", "found": False, "value": None}


def test_parse_scene_from_disk(godot_project: Path) -> None:
    ctx = make_context(godot_project, MockBridge().client())

    result = asyncio.run(editor_tools.parse_scene(ctx, "res://scenes/main.tscn"))

    assert [node["name"] for node in result["nodes"]] == ["Main", "Player", "Sprite"]
    with pytest.raises(ProjectPathError):
        asyncio.run(editor_tools.parse_scene(ctx, "res://../outside.tscn"))


def test_log_forwards_message(godot_project: Path) -> None:
    bridge = MockBridge({("POST", "/log"): {"ok": True}})
    ctx = make_context(godot_project, bridge.client())

    result = asyncio.run(editor_tools.log(ctx, "Writing player.gd"))

    assert result == {"ok": True, "message": "Writing player.gd"}
    assert bridge.logs() == ["Writing player.gd"]


def test_build_state_save_and_restore(godot_project: Path) -> None:
    bridge = MockBridge({("POST", "/log"): {"ok": True}})
    ctx = make_context(godot_project, bridge.client())
    state = {"game_name": "Space Dodger", "current_phase": {"number": 2, "name": "Player Abilities"}}

    saved = asyncio.run(editor_tools.save_build_state(ctx, state))
    loaded = asyncio.run(editor_tools.get_build_state(ctx))

    assert saved == {"ok": True, "path": str(godot_project / ".claude" / "build_state.json")}
    assert loaded == {"found": True, "state": state}
    assert "[MCP] Found checkpoint: Space Dodger, Phase 2" in bridge.logs()


def test_unserializable_build_state_raises(godot_project: Path) -> None:
    ctx = make_context(godot_project, MockBridge().client())

    with pytest.raises(BuilderError, match="Failed to save build state"):
        asyncio.run(editor_tools.save_build_state(ctx, {"bad": object()}))


def test_missing_build_state(godot_project: Path) -> None:
    bridge = MockBridge({("POST", "/log"): {"ok": True}})
    ctx = make_context(godot_project, bridge.client())

    assert asyncio.run(editor_tools.get_build_state(ctx)) == {"found": False, "state": None}
    assert bridge.logs()[-1] == "[MCP] No build checkpoint found"


def test_node_tools_forward_and_log(godot_project: Path) -> None:
    bridge = MockBridge({
        ("POST", "/log"): {"ok": True},
        ("POST", "/add_node"): {"ok": True, "scene_path": "res://scenes/main.tscn", "node_path": "Player/Shadow"},
        ("POST", "/update_node"): {"ok": False, "error": "Node not found: Ghost"},
        ("POST", "/delete_node"): {"ok": True, "scene_path": "res://scenes/main.tscn", "removed": ["Player"]},
    })
    ctx = make_context(godot_project, bridge.client())

    async def scenario() -> list[dict[str, object]]:
        return [
            await editor_tools.add_node(ctx, "Shadow", "Sprite2D", "Player"),
            await editor_tools.update_node(ctx, "Ghost", {"visible": True}),
            await editor_tools.delete_node(ctx, "Player"),
        ]

    added, missing, deleted = asyncio.run(scenario())

    assert added["node_path"] == "Player/Shadow"
    assert missing["ok"] is False
    assert deleted["removed"] == ["Player"]
    assert bridge.calls("POST", "/add_node")[0]["parent_path"] == "Player"
    assert bridge.logs() == [
        "[MCP] Adding Sprite2D 'Shadow' under Player...",
        "[MCP] Added Player/Shadow in res://scenes/main.tscn",
        "[MCP] Updating Ghost: visible",
        "[MCP] Scene edit failed: Node not found: Ghost",
        "[MCP] Deleting Player...",
        "[MCP] Deleted Player (1 node) in res://scenes/main.tscn",
    ]


def test_node_tools_edit_a_real_scene(fake_host: FakeEditorHost) -> None:
    server = make_server(fake_host)

    async def scenario() -> dict[str, object]:
        await server.start()
        try:
            ctx = make_context(fake_host.project_root, BridgeClient("127.0.0.1", server.port))
            await editor_tools.add_node(ctx, "Coin", "Area2D", properties={"position": {"x": 5, "y": 5}})
            return await editor_tools.get_scene_tree(ctx)
        finally:
            await server.close()

    tree = asyncio.run(scenario())

    assert tree["node_count"] == 4
    assert tree["root"]["children"][-1]["name"] == "Coin"
