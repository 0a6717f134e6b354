"""Godot AI Builder, MCP tool server.

Exposes project, editor and quality-gate tools to a coding agent over stdio.
The editor bridge must be running (``godot-ai-builder-bridge``) for run/stop,
error and phase tools; project scans and quality evaluation read the project
directly from GODOT_PROJECT_PATH.

Configure as an MCP server:
{
    "mcpServers": {
        "godot-ai-builder": {
            "command": "godot-ai-builder-mcp",
            "env": {"GODOT_PROJECT_PATH": "/path/to/project"}
        }
    }
}
"""

from __future__ import annotations

import logging

from fastmcp import FastMCP

from godot_ai_builder.config import load_settings
from godot_ai_builder.logging_config import configure_logging
from godot_ai_builder.mcp_server.context import ToolContext
from godot_ai_builder.mcp_server.editor_tools import register_editor_tools
from godot_ai_builder.mcp_server.quality_tools import register_quality_tools

logger = logging.getLogger(__name__)

INSTRUCTIONS = (
    "You have access to tools for building a Godot 4 game phase by phase. "
    "Call godot_get_project_state first, and godot_get_build_state to resume "
    "an interrupted build.\n\n"

    "## Build loop\n\n"
    "For every file you write:\n"
    "  1. godot_log what you are about to write.\n"
    "  2. Write the file.\n"
    "  3. godot_reload_filesystem(). If `_action_required` is set, call "
    "godot_get_errors() and fix every error before writing anything else.\n\n"

    "## Phases\n\n"
    "0 Discovery & PRD, 1 Foundation, 2 Player Abilities, 3 Enemies & Challenges, "
    "4 UI & Game Flow, 5 Polish & Game Feel, 6 Final QA.\n"
    "Report progress with godot_update_phase. Completion is validated: it is "
    "rejected while any script error exists, and from phase 5 on while any "
    "objective quality gate fails. A rejection is a normal result with "
    "ok=false, rejected=true and a reason listing what to fix. Fix it and "
    "retry; do not move on to the next phase.\n"
    "Use godot_evaluate_quality_gates to check gates before completing phases "
    "5 and 6, and godot_save_build_state after each phase.\n\n"

    "## Scene edits\n\n"
    "For small scene changes use godot_add_node, godot_update_node and "
    "godot_delete_node instead of rewriting .tscn files. Node paths are relative "
    "to the scene root ('.' is the root).\n\n"

    "## Error Recovery\n\n"
    "Errors from these tools are yours to fix. Read the error file and line, "
    "fix the script, reload, and re-check. If the editor bridge is unreachable, "
    "ask the user to open the project with the AI Game Builder plugin enabled."
)


def create_server(ctx: ToolContext) -> FastMCP:
    mcp = FastMCP("godot-ai-builder", instructions=INSTRUCTIONS)
    register_editor_tools(mcp, ctx)
    register_quality_tools(mcp, ctx)
    return mcp


def main() -> None:
    settings = load_settings()
    configure_logging(settings.log_level)
    logger.info(
        "MCP server for %s (bridge %s:%d)",
        settings.project_path, settings.bridge_host, settings.bridge_port,
    )
    create_server(ToolContext.from_settings(settings)).run()


if __name__ == "__main__":
    main()
