"""MCP tool proxy: forwards agent tool calls to the editor bridge and enforces quality gates."""

from godot_ai_builder.mcp_server.client import BridgeClient
from godot_ai_builder.mcp_server.context import ToolContext
from godot_ai_builder.mcp_server.server import create_server

__all__ = ["BridgeClient", "ToolContext", "create_server"]
