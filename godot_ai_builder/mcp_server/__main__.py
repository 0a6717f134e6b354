"""Run the MCP server over stdio: ``python -m godot_ai_builder.mcp_server``."""

from godot_ai_builder.mcp_server.server import main

main()
