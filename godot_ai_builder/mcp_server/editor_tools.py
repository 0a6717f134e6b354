"""MCP tool definitions for project inspection and editor control.

These tools read the Godot project straight from disk and forward run/stop,
reload and error queries to the editor bridge. Every call also mirrors an
``[MCP] ...`` progress line to the editor dock.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastmcp import FastMCP

from godot_ai_builder import scanner
from godot_ai_builder.exceptions import BridgeError, BuilderError
from godot_ai_builder.mcp_server.context import ToolContext
from godot_ai_builder.mcp_server.utils import describe, error_files, plural
from godot_ai_builder.scene_parser import parse_scene as _parse_scene

logger = logging.getLogger(__name__)

PROJECT_STATE_EXTENSIONS = ("gd", "tscn", "tres", "svg", "png", "jpg")
DEFAULT_SCAN_EXTENSIONS = ("gd", "tscn", "tres", "svg", "png", "ogg", "wav")
RELOAD_ERROR_FILES = 5


async def get_project_state(ctx: ToolContext) -> dict[str, Any]:
    await ctx.bridge.send_log("[MCP] Getting project state...")
    connected = await ctx.bridge.is_connected()
    root = ctx.project_root
    files = await asyncio.to_thread(scanner.scan_project_files, root, PROJECT_STATE_EXTENSIONS)
    settings = await asyncio.to_thread(scanner.read_project_settings, root)

    result: dict[str, Any] = {
        "editor_connected": connected,
        "project_path": str(root),
        "project_name": settings.get("application/config/name", "Unknown"),
        "main_scene": settings.get("application/run/main_scene", ""),
        "files": {
            "scripts": scanner.filter_by_extension(files, ("gd",)),
            "scenes": scanner.filter_by_extension(files, ("tscn",)),
            "resources": scanner.filter_by_extension(files, ("tres",)),
            "assets": scanner.filter_by_extension(files, ("svg", "png", "jpg")),
        },
    }
    if connected:
        try:
            result["editor_status"] = await ctx.bridge.get_status()
        except BridgeError as exc:
            logger.debug("Editor status unavailable: %s", exc)

    await ctx.bridge.send_log(
        f"[MCP] Project: {result['project_name']} ({plural(len(files), 'file')}), "
        f"editor {'connected' if connected else 'offline'}"
    )
    return result


async def run_scene(ctx: ToolContext, scene_path: str = "") -> dict[str, Any]:
    await ctx.bridge.send_log(f"[MCP] Running {scene_path or 'main scene'}...")
    return await ctx.bridge.run_scene(scene_path)


async def stop_scene(ctx: ToolContext) -> dict[str, Any]:
    await ctx.bridge.send_log("[MCP] Stopping scene...")
    return await ctx.bridge.stop_scene()


def _counts(result: dict[str, Any]) -> tuple[int, int]:
    return len(result.get("errors") or []), len(result.get("warnings") or [])


async def get_errors(ctx: ToolContext, detailed: bool = True) -> dict[str, Any]:
    """Detailed check with source context; falls back to the fast check on failure."""
    if detailed:
        await ctx.bridge.send_log("[MCP] Running detailed error check...")
        try:
            result = await ctx.bridge.get_detailed_errors()
        except BridgeError as exc:
            await ctx.bridge.send_log(f"[MCP] Detailed check failed ({exc}), falling back to fast check...")
            result = await ctx.bridge.get_errors()
            label = "Fast check"
        else:
            label = "Detailed check"
    else:
        await ctx.bridge.send_log("[MCP] Running fast error check...")
        result = await ctx.bridge.get_errors()
        label = "Fast check"
    errors, warnings = _counts(result)
    await ctx.bridge.send_log(f"[MCP] {label}: {plural(errors, 'error')}, {plural(warnings, 'warning')}")
    return result


async def reload_filesystem(ctx: ToolContext) -> dict[str, Any]:
    """Rescan, then fetch the error list so the agent always sees its error state."""
    await ctx.bridge.send_log("[MCP] Reloading filesystem...")
    result = await ctx.bridge.reload_filesystem()

    error_count = 0
    files: list[str] = []
    try:
        report = await ctx.bridge.get_errors()
    except BridgeError as exc:
        logger.debug("Post-reload error check failed: %s", exc)
    else:
        errors = report.get("errors") or []
        error_count = len(errors)
        files = error_files(errors, RELOAD_ERROR_FILES)
        if error_count:
            await ctx.bridge.send_log(
                f"[MCP] {plural(error_count, 'error')} detected after reload. "
                "Call godot_get_errors() and fix them before writing more files."
            )
        else:
            await ctx.bridge.send_log("[MCP] Reload complete, 0 errors.")

    return {
        **result,
        "_error_count": error_count,
        "_error_files": files,
        "_action_required": (
            f"STOP: {plural(error_count, 'error')} detected. Call godot_get_errors() to see "
            "details and fix them NOW before writing any more files. Do NOT continue building with errors."
            if error_count else None
        ),
    }


async def parse_scene(ctx: ToolContext, scene_path: str) -> dict[str, Any]:
    await ctx.bridge.send_log(f"[MCP] Parsing scene: {scene_path}")
    result = await asyncio.to_thread(_parse_scene, ctx.project_root, scene_path)
    await ctx.bridge.send_log(f"[MCP] Scene parsed: {scene_path}")
    return result


async def get_scene_tree(ctx: ToolContext, scene_path: str = "", max_depth: int = 10) -> dict[str, Any]:
    await ctx.bridge.send_log("[MCP] Getting scene tree...")
    result = await ctx.bridge.get_scene_tree(scene_path, max_depth)
    await ctx.bridge.send_log(f"[MCP] Scene tree: {plural(result.get('node_count', 0), 'node')}")
    return result


async def add_node(
    ctx: ToolContext,
    node_name: str,
    node_type: str,
    parent_path: str = ".",
    properties: dict[str, Any] | None = None,
    scene_path: str = "",
) -> dict[str, Any]:
    await ctx.bridge.send_log(f"[MCP] Adding {node_type} '{node_name}' under {parent_path or '.'}...")
    result = await ctx.bridge.add_node(node_name, node_type, parent_path, properties, scene_path)
    await _log_scene_edit(ctx, result, f"Added {result.get('node_path', node_name)}")
    return result


async def update_node(
    ctx: ToolContext, node_path: str, properties: dict[str, Any], scene_path: str = "",
) -> dict[str, Any]:
    await ctx.bridge.send_log(f"[MCP] Updating {node_path}: {', '.join(properties) or 'no properties'}")
    result = await ctx.bridge.update_node(node_path, properties, scene_path)
    await _log_scene_edit(ctx, result, f"Updated {node_path}")
    return result


async def delete_node(ctx: ToolContext, node_path: str, scene_path: str = "") -> dict[str, Any]:
    await ctx.bridge.send_log(f"[MCP] Deleting {node_path}...")
    result = await ctx.bridge.delete_node(node_path, scene_path)
    await _log_scene_edit(
        ctx, result, f"Deleted {node_path} ({plural(len(result.get('removed') or []), 'node')})"
    )
    return result


async def _log_scene_edit(ctx: ToolContext, result: dict[str, Any], done: str) -> None:
    if result.get("ok"):
        await ctx.bridge.send_log(f"[MCP] {done} in {result.get('scene_path', 'scene')}")
    else:
        await ctx.bridge.send_log(f"[MCP] Scene edit failed: {result.get('error', 'unknown error')}")


async def scan_project_files(ctx: ToolContext, extensions: list[str] | None = None) -> dict[str, Any]:
    await ctx.bridge.send_log("[MCP] Scanning project files...")
    exts = tuple(extensions) if extensions else DEFAULT_SCAN_EXTENSIONS
    files = await asyncio.to_thread(scanner.scan_project_files, ctx.project_root, exts)
    await ctx.bridge.send_log(f"[MCP] Found {plural(len(files), 'project file')}")
    return {"project_path": str(ctx.project_root), "total": len(files), "files": files}


async def read_project_setting(ctx: ToolContext, key: str) -> dict[str, Any]:
    await ctx.bridge.send_log(f"[MCP] Reading setting: {key}")
    settings = await asyncio.to_thread(scanner.read_project_settings, ctx.project_root)
    if key not in settings:
        return {"key": key, "found": False, "value": None}
    return {"key": key, "found": True, "value": settings[key]}


async def log(ctx: ToolContext, message: str) -> dict[str, Any]:
    await ctx.bridge.send_log(message)
    return {"ok": True, "message": message}


async def save_build_state(ctx: ToolContext, state: dict[str, Any]) -> dict[str, Any]:
    await ctx.bridge.send_log("[MCP] Saving build checkpoint...")
    try:
        path = await asyncio.to_thread(ctx.build_state.save, state)
    except (OSError, TypeError, ValueError) as exc:
        await ctx.bridge.send_log(f"[MCP] Failed to save checkpoint: {exc}")
        raise BuilderError(f"Failed to save build state: {exc}", {"path": str(ctx.build_state.path)}) from exc
    await ctx.bridge.send_log("[MCP] Build checkpoint saved")
    return {"ok": True, "path": str(path)}


async def get_build_state(ctx: ToolContext) -> dict[str, Any]:
    await ctx.bridge.send_log("[MCP] Checking for build checkpoint...")
    result = await asyncio.to_thread(ctx.build_state.load)
    if result["found"]:
        state = result["state"] if isinstance(result["state"], dict) else {}
        phase = state.get("current_phase")
        phase = phase if isinstance(phase, dict) else {}
        await ctx.bridge.send_log(
            f"[MCP] Found checkpoint: {state.get('game_name') or 'unknown'}, "
            f"Phase {phase.get('number', '?')}"
        )
    elif "error" in result:
        await ctx.bridge.send_log(f"[MCP] Checkpoint file corrupted: {result['error']}")
    else:
        await ctx.bridge.send_log("[MCP] No build checkpoint found")
    return result


def register_editor_tools(mcp: FastMCP, ctx: ToolContext) -> None:
    """Register all project and editor tools with the MCP server."""

    # --- Project ---

    @mcp.tool
    async def godot_get_project_state() -> dict[str, Any]:
        """Get the current Godot project state: name, main scene, scripts, scenes,
        resources, assets, and whether the editor bridge is connected.

        Always call this first to understand the project before generating code.
        """
        result = await get_project_state(ctx)
        return describe(result, f"📁 {result['project_name']} (editor {'online' if result['editor_connected'] else 'offline'})")

    @mcp.tool
    async def godot_scan_project_files(extensions: list[str] | None = None) -> dict[str, Any]:
        """List project files by extension, as res:// paths. Skips addons/, docs/ and hidden dirs.

        Args:
            extensions: Extensions without the dot (default: gd, tscn, tres, svg, png, ogg, wav).
        """
        result = await scan_project_files(ctx, extensions)
        return describe(result, f"🗂️ {plural(result['total'], 'file')}")

    @mcp.tool
    async def godot_read_project_setting(key: str) -> dict[str, Any]:
        """Read one value from project.godot.

        Args:
            key: Setting path as 'section/key' (e.g., 'application/run/main_scene').
        """
        result = await read_project_setting(ctx, key)
        return describe(result, f"⚙️ {key} = {result['value']}" if result["found"] else f"⚙️ {key} not set")

    @mcp.tool
    async def godot_parse_scene(scene_path: str) -> dict[str, Any]:
        """Parse a .tscn file from disk into ext_resources, sub_resources and nodes.

        Args:
            scene_path: Resource path to the scene (e.g., 'res://scenes/main.tscn').
        """
        result = await parse_scene(ctx, scene_path)
        return describe(result, f"🧩 {scene_path}: {plural(len(result['nodes']), 'node')}")

    # --- Editor ---

    @mcp.tool
    async def godot_get_scene_tree(scene_path: str = "", max_depth: int = 10) -> dict[str, Any]:
        """Get the node tree of a scene (the main scene by default) from the editor.

        Args:
            scene_path: Scene to inspect; empty means the configured main scene.
            max_depth: Nodes deeper than this are cut off and marked truncated.
        """
        result = await get_scene_tree(ctx, scene_path, max_depth)
        return describe(result, f"🌳 {result.get('scene_path', scene_path or 'main scene')}")

    @mcp.tool
    async def godot_add_node(
        node_name: str,
        node_type: str,
        parent_path: str = ".",
        properties: dict[str, Any] | None = None,
        scene_path: str = "",
    ) -> dict[str, Any]:
        """Add a node to a scene and save it. Use this instead of rewriting .tscn files
        for simple scene changes.

        Args:
            node_name: Name for the new node.
            node_type: Godot node class (e.g., 'Sprite2D', 'CharacterBody2D', 'Label').
            parent_path: NodePath of the parent, relative to the scene root ('.' is the root).
            properties: Optional properties. Vector2 as {"x":0,"y":0}, Color as
                        {"r":1,"g":0,"b":0}, resources as "res://..." paths.
            scene_path: Scene to edit; empty means the configured main scene.
        """
        result = await add_node(ctx, node_name, node_type, parent_path, properties, scene_path)
        if not result.get("ok"):
            return describe(result, f"⚠️ {result.get('error', 'Add node failed')}")
        return describe(result, f"➕ {result['node_path']} ({node_type})")

    @mcp.tool
    async def godot_update_node(
        node_path: str,
        properties: dict[str, Any],
        scene_path: str = "",
    ) -> dict[str, Any]:
        """Set properties on an existing node (position, scale, visibility...) and save the scene.

        Args:
            node_path: NodePath of the node, relative to the scene root.
            properties: Properties to set, encoded like godot_add_node. null removes a property.
            scene_path: Scene to edit; empty means the configured main scene.
        """
        result = await update_node(ctx, node_path, properties, scene_path)
        if not result.get("ok"):
            return describe(result, f"⚠️ {result.get('error', 'Update node failed')}")
        return describe(result, f"✏️ {node_path} updated")

    @mcp.tool
    async def godot_delete_node(node_path: str, scene_path: str = "") -> dict[str, Any]:
        """Remove a node and its children from a scene and save it.

        Args:
            node_path: NodePath of the node to delete; the scene root cannot be deleted.
            scene_path: Scene to edit; empty means the configured main scene.
        """
        result = await delete_node(ctx, node_path, scene_path)
        if not result.get("ok"):
            return describe(result, f"⚠️ {result.get('error', 'Delete node failed')}")
        return describe(result, f"🗑️ Deleted {plural(len(result['removed']), 'node')}")

    @mcp.tool
    async def godot_run_scene(scene_path: str = "") -> dict[str, Any]:
        """Start playing a scene. Restarts it if something is already playing.

        Args:
            scene_path: Scene to run; empty means the configured main scene.
        """
        result = await run_scene(ctx, scene_path)
        return describe(result, f"▶️ Running {result.get('scene_path') or scene_path or 'main scene'}")

    @mcp.tool
    async def godot_stop_scene() -> dict[str, Any]:
        """Stop the currently playing scene, if any."""
        result = await stop_scene(ctx)
        return describe(result, "⏹️ Scene stopped" if result.get("was_playing") else "⏹️ Nothing was playing")

    @mcp.tool
    async def godot_get_errors(detailed: bool = True) -> dict[str, Any]:
        """Get script errors and warnings for the whole project.

        Every script is force-loaded and the editor logs are scanned, so errors
        show up even in files that never ran.

        Args:
            detailed: Include source lines around each error (slower; falls back
                      to the fast check if the editor is slow to answer).
        """
        result = await get_errors(ctx, detailed)
        errors, warnings = _counts(result)
        return describe(result, f"{'❌' if errors else '✅'} {plural(errors, 'error')}, {plural(warnings, 'warning')}")

    @mcp.tool
    async def godot_reload_filesystem() -> dict[str, Any]:
        """Rescan the project after writing files, then report the resulting error count.

        If `_action_required` is set, fix the errors before writing more files.
        """
        result = await reload_filesystem(ctx)
        return describe(result, f"🔄 Reloaded, {plural(result['_error_count'], 'error')}")

    @mcp.tool
    async def godot_log(message: str) -> dict[str, Any]:
        """Send a progress message to the Godot editor dock.

        Call this before and after every file write, when starting or finishing a
        phase, and whenever you hit or fix an error. The dock is the user's only
        view of what the build is doing.

        Args:
            message: The line to show.
        """
        result = await log(ctx, message)
        return describe(result, "📝 Logged")

    # --- Checkpoints ---

    @mcp.tool
    async def godot_save_build_state(state: dict[str, Any]) -> dict[str, Any]:
        """Save a build checkpoint to .claude/build_state.json so the build can resume later.

        Args:
            state: Arbitrary JSON object (game_name, current_phase, completed files...).
        """
        result = await save_build_state(ctx, state)
        return describe(result, "💾 Checkpoint saved")

    @mcp.tool
    async def godot_get_build_state() -> dict[str, Any]:
        """Load the last build checkpoint, if any."""
        result = await get_build_state(ctx)
        return describe(result, "💾 Checkpoint found" if result["found"] else "💾 No checkpoint")
