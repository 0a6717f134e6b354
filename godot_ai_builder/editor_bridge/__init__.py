"""In-editor HTTP bridge: status, run control, error collection and phase state."""

from godot_ai_builder.editor_bridge.server import BridgeServer, build_server, serve

__all__ = ["BridgeServer", "build_server", "serve"]
