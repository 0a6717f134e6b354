"""Everything a tool call needs, bundled so tools stay plain async functions."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from godot_ai_builder.config import Settings
from godot_ai_builder.mcp_server.client import BridgeClient
from godot_ai_builder.mcp_server.reports import BuildStateStore, QualityReportStore


@dataclass
class ToolContext:
    settings: Settings
    bridge: BridgeClient
    reports: QualityReportStore
    build_state: BuildStateStore

    @classmethod
    def from_settings(cls, settings: Settings, bridge: BridgeClient | None = None) -> "ToolContext":
        return cls(
            settings=settings,
            bridge=bridge or BridgeClient.from_settings(settings),
            reports=QualityReportStore(settings.project_path, settings.quality_reports_dir),
            build_state=BuildStateStore(settings.build_state_path),
        )

    @property
    def project_root(self) -> Path:
        return self.settings.project_path
