"""Godot AI Builder: editor bridge and MCP tool proxy for agent-driven Godot builds."""

__version__ = "0.2.0"
