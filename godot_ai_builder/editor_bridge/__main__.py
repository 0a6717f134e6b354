"""Run the editor bridge: ``python -m godot_ai_builder.editor_bridge``."""

from __future__ import annotations

import asyncio
import logging

from godot_ai_builder.config import load_settings
from godot_ai_builder.editor_bridge.server import serve
from godot_ai_builder.logging_config import configure_logging

logger = logging.getLogger("godot_ai_builder.editor_bridge")


def main() -> None:
    settings = load_settings()
    configure_logging(settings.log_level)
    logger.info("Serving project %s", settings.project_path)
    try:
        asyncio.run(serve(settings))
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
