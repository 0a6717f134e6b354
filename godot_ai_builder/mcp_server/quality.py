"""Objective quality signals and per-phase quality gates.

Signals come from a fresh scan of the project on every evaluation: file counts
by kind, keyword evidence in the lowercased script and scene text, the main
scene setting, and the number of ``pass``-only function stubs. Gates are
thresholds over those signals, switched on by phase number (5 and up for
polish, 6 for final QA).

An evaluation is an immutable snapshot. Callers that want to keep it persist
``to_dict()`` through the report store.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from godot_ai_builder import scanner

logger = logging.getLogger(__name__)

QUALITY_SCAN_EXTENSIONS = (
    *scanner.SCRIPT_EXTENSIONS,
    *scanner.SCENE_EXTENSIONS,
    "tres",
    *scanner.IMAGE_EXTENSIONS,
    *scanner.AUDIO_EXTENSIONS,
)

UI_STYLE_KEYWORDS = (
    "styleboxflat",
    "theme_override_styles",
    "theme_override_colors",
    "theme_override_font_sizes",
    "add_theme_stylebox_override",
    "add_theme_color_override",
    "add_theme_font_size_override",
    "theme =",
    "theme_type_variation",
)

POLISH_FX_KEYWORDS = (
    "gpuparticles2d",
    "cpuparticles2d",
    "shadermaterial",
    "shader",
    "create_tween",
    "tween",
    "screen_shake",
    "hit_flash",
    "dissolve",
    "vignette",
    "trail",
    "animationplayer",
)

DEPTH_LAYER_KEYWORDS = (
    "parallaxbackground",
    "parallax2d",
    "canvaslayer",
    "midground",
    "foreground",
    "vignette",
    "gradient",
    "background",
)

FEEDBACK_CATEGORIES: dict[str, tuple[str, ...]] = {
    "damage": ("take_damage", "damage", "hurt", "hit_flash", "on_hit"),
    "death": ("die", "death", "explode", "dissolve", "destroyed"),
    "pickup_score": ("pickup", "collect", "score", "combo", "pop_score"),
    "ability": ("shoot", "dash", "jump", "ability", "cast", "fire"),
}

FLOW_CATEGORIES: dict[str, tuple[str, ...]] = {
    "menu": ("main_menu", "mainmenu", "menu"),
    "game_over": ("game_over", "gameover", "defeat", "you lose"),
    "restart_retry": ("restart", "retry", "new_game"),
    "pause": ("pause", "paused", "get_tree().paused", "esc"),
}

PHASE_NAMES = {
    0: "Discovery & PRD",
    1: "Foundation",
    2: "Player Abilities",
    3: "Enemies & Challenges",
    4: "UI & Game Flow",
    5: "Polish & Game Feel",
    6: "Final QA",
}

POLISH_PHASE = 5
FINAL_QA_PHASE = 6

_FUNC_RE = re.compile(r"^\s*func\s+")
_PASS_RE = re.compile(r"^pass(\s+#.*)?$")


def phase_name_for_number(phase_number: int) -> str:
    return PHASE_NAMES.get(phase_number, f"Phase {phase_number}")


def find_keyword_hits(text: str, keywords: tuple[str, ...]) -> list[str]:
    """Keywords present in *text* (already lowercased), in keyword order."""
    return [kw for kw in keywords if kw.lower() in text]


def find_category_hits(text: str, categories: Mapping[str, tuple[str, ...]]) -> list[str]:
    """Names of categories with at least one pattern present in *text*."""
    return [
        name for name, patterns in categories.items()
        if any(p.lower() in text for p in patterns)
    ]


def count_pass_stubs(content: str) -> int:
    """Count functions whose first non-blank, non-comment body line is ``pass``."""
    lines = content.split("\n")
    count = 0
    for i, line in enumerate(lines):
        if not _FUNC_RE.match(line):
            continue
        for following in lines[i + 1:]:
            body = following.strip()
            if not body or body.startswith("#"):
                continue
            if _PASS_RE.match(body):
                count += 1
            break
    return count


def resolve_main_scene_path(project_root: Path, main_scene: str, scene_paths: list[str]) -> str:
    """Resolve the configured main scene to an existing scene path, or "".

    ``res://`` paths must exist on disk; ``uid://`` references are matched
    against the ``uid="..."`` marker inside each scene file.
    """
    if not main_scene:
        return ""
    if main_scene.startswith(scanner.RES_PREFIX):
        return main_scene if scanner.res_to_absolute(project_root, main_scene).is_file() else ""
    if main_scene.startswith("uid://"):
        marker = f'uid="{main_scene}"'
        for scene_path in scene_paths:
            try:
                content = scanner.res_to_absolute(project_root, scene_path).read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError):
                continue
            if marker in content:
                return scene_path
        return ""
    return main_scene if (project_root / main_scene).is_file() else ""


@dataclass(frozen=True)
class QualitySignals:
    script_count: int = 0
    scene_count: int = 0
    image_asset_count: int = 0
    audio_asset_count: int = 0
    main_scene: str = ""
    resolved_main_scene_path: str = ""
    ui_style_hits: tuple[str, ...] = ()
    polish_fx_hits: tuple[str, ...] = ()
    depth_layer_hits: tuple[str, ...] = ()
    feedback_categories: tuple[str, ...] = ()
    flow_categories: tuple[str, ...] = ()
    pass_stub_count: int = 0

    @property
    def main_scene_exists(self) -> bool:
        return bool(self.resolved_main_scene_path)

    @property
    def feedback_category_count(self) -> int:
        return len(self.feedback_categories)

    @property
    def flow_category_count(self) -> int:
        return len(self.flow_categories)

    def metrics(self) -> dict[str, Any]:
        return {
            "script_count": self.script_count,
            "scene_count": self.scene_count,
            "image_asset_count": self.image_asset_count,
            "audio_asset_count": self.audio_asset_count,
            "main_scene": self.main_scene,
            "resolved_main_scene_path": self.resolved_main_scene_path,
            "main_scene_exists": self.main_scene_exists,
            "ui_style_hits": len(self.ui_style_hits),
            "polish_fx_hits": len(self.polish_fx_hits),
            "depth_layer_hits": len(self.depth_layer_hits),
            "feedback_category_count": self.feedback_category_count,
            "flow_category_count": self.flow_category_count,
            "pass_stub_count": self.pass_stub_count,
        }


def collect_quality_signals(project_root: Path) -> QualitySignals:
    """Scan the project and compute every signal from scratch."""
    files = scanner.scan_project_files(project_root, QUALITY_SCAN_EXTENSIONS)
    settings = scanner.read_project_settings(project_root)

    scripts = scanner.filter_by_extension(files, scanner.SCRIPT_EXTENSIONS)
    scenes = scanner.filter_by_extension(files, scanner.SCENE_EXTENSIONS)
    images = scanner.filter_by_extension(files, scanner.IMAGE_EXTENSIONS)
    audio = scanner.filter_by_extension(files, scanner.AUDIO_EXTENSIONS)

    script_contents = scanner.read_text_files(project_root, scripts)
    scene_contents = scanner.read_text_files(project_root, scenes)
    text = "\n".join(script_contents).lower() + "\n" + "\n".join(scene_contents).lower()

    main_scene = settings.get("application/run/main_scene", "")
    signals = QualitySignals(
        script_count=len(scripts),
        scene_count=len(scenes),
        image_asset_count=len(images),
        audio_asset_count=len(audio),
        main_scene=main_scene,
        resolved_main_scene_path=resolve_main_scene_path(project_root, main_scene, scenes),
        ui_style_hits=tuple(find_keyword_hits(text, UI_STYLE_KEYWORDS)),
        polish_fx_hits=tuple(find_keyword_hits(text, POLISH_FX_KEYWORDS)),
        depth_layer_hits=tuple(find_keyword_hits(text, DEPTH_LAYER_KEYWORDS)),
        feedback_categories=tuple(find_category_hits(text, FEEDBACK_CATEGORIES)),
        flow_categories=tuple(find_category_hits(text, FLOW_CATEGORIES)),
        pass_stub_count=sum(count_pass_stubs(c) for c in script_contents),
    )
    logger.debug("Quality signals for %s: %s", project_root, signals.metrics())
    return signals


@dataclass(frozen=True)
class GateDetail:
    passed: bool
    expected: str
    actual: Any
    hint: str

    def to_dict(self) -> dict[str, Any]:
        return {"passed": self.passed, "expected": self.expected, "actual": self.actual, "hint": self.hint}


@dataclass(frozen=True)
class QualityEvaluation:
    phase_number: int
    phase_name: str
    # (name, detail) pairs in evaluation order
    gates: tuple[tuple[str, GateDetail], ...] = ()
    reported_quality_gates: tuple[tuple[str, bool], ...] = ()
    quality_metrics: Mapping[str, Any] = field(default_factory=dict)

    @property
    def failed_quality_gates(self) -> list[str]:
        return [name for name, detail in self.gates if not detail.passed]

    @property
    def gates_passed(self) -> bool:
        return not self.failed_quality_gates

    @property
    def computed_quality_gates(self) -> dict[str, bool]:
        return {name: detail.passed for name, detail in self.gates}

    @property
    def merged_quality_gates(self) -> dict[str, bool]:
        """Agent-reported gates overlaid by computed ones."""
        return {**dict(self.reported_quality_gates), **self.computed_quality_gates}

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.gates_passed,
            "phase_number": self.phase_number,
            "phase_name": self.phase_name,
            "gates_passed": self.gates_passed,
            "failed_quality_gates": self.failed_quality_gates,
            "computed_quality_gates": self.computed_quality_gates,
            "merged_quality_gates": self.merged_quality_gates,
            "gate_details": {name: detail.to_dict() for name, detail in self.gates},
            "quality_metrics": dict(self.quality_metrics),
        }


def _hits(values: tuple[str, ...], key: str = "hits") -> dict[str, Any]:
    return {"count": len(values), key: list(values)}


def evaluate_phase_quality_gates(
    signals: QualitySignals,
    phase_number: int,
    phase_name: str = "",
    reported_quality_gates: Mapping[str, bool] | None = None,
) -> QualityEvaluation:
    """Apply the gates enabled for *phase_number* to *signals*.

    Phases below 5 have no computed gates and always pass.
    """
    gates: list[tuple[str, GateDetail]] = []

    def add(name: str, passed: bool, expected: str, actual: Any, hint: str) -> None:
        gates.append((name, GateDetail(bool(passed), expected, actual, hint)))

    if phase_number >= POLISH_PHASE:
        add(
            "auto_visual_assets_coverage",
            signals.image_asset_count >= 6,
            ">= 6 image assets used for gameplay/UI",
            signals.image_asset_count,
            "Import or draw more coherent image assets for gameplay and UI.",
        )
        add(
            "auto_ui_styling_signals",
            len(signals.ui_style_hits) >= 2,
            ">= 2 UI styling markers",
            _hits(signals.ui_style_hits),
            "Style menus/HUD with theme overrides, StyleBoxFlat, or custom theme APIs.",
        )
        add(
            "auto_polish_fx_signals",
            len(signals.polish_fx_hits) >= 3,
            ">= 3 polish/FX markers",
            _hits(signals.polish_fx_hits),
            "Add screen shake, particles, shaders, tweens, trails, or hit/death FX.",
        )
        add(
            "auto_visual_depth_layering",
            len(signals.depth_layer_hits) >= 2,
            ">= 2 depth/layering markers",
            _hits(signals.depth_layer_hits),
            "Add layered background/foreground composition (e.g. parallax, vignette, gradient layers).",
        )
        add(
            "auto_feedback_event_coverage",
            signals.feedback_category_count >= 3,
            ">= 3 feedback event categories",
            _hits(signals.feedback_categories, "categories"),
            "Ensure hit/damage, death, pickup/score, and ability events have explicit feedback hooks.",
        )

    if phase_number >= FINAL_QA_PHASE:
        add(
            "auto_main_scene_configured",
            signals.main_scene_exists,
            "project.godot has a valid existing main scene",
            {
                "main_scene": signals.main_scene,
                "resolved_main_scene_path": signals.resolved_main_scene_path,
                "exists": signals.main_scene_exists,
            },
            "Set application/run/main_scene to a valid .tscn path.",
        )
        add(
            "auto_flow_state_signals",
            signals.flow_category_count >= 3,
            ">= 3 flow state categories (menu, game_over, retry/restart, pause)",
            _hits(signals.flow_categories, "categories"),
            "Wire complete menu -> play -> game over -> retry/menu flow with explicit handlers.",
        )
        add(
            "auto_scene_coverage",
            signals.scene_count >= 2,
            ">= 2 scenes (gameplay + menu/flow scene)",
            signals.scene_count,
            "Add dedicated flow scenes (menu/gameplay/game-over) instead of a single monolithic scene.",
        )
        add(
            "auto_no_stub_pass_methods",
            signals.pass_stub_count == 0,
            "0 function stubs that immediately use 'pass'",
            signals.pass_stub_count,
            "Replace pass stubs with real implementation or explicit temporary behavior.",
        )

    reported = reported_quality_gates if isinstance(reported_quality_gates, Mapping) else {}
    return QualityEvaluation(
        phase_number=phase_number,
        phase_name=phase_name or phase_name_for_number(phase_number),
        gates=tuple(gates),
        reported_quality_gates=tuple((str(k), bool(v)) for k, v in reported.items()),
        quality_metrics=signals.metrics(),
    )


def evaluate_project(
    project_root: Path,
    phase_number: int,
    phase_name: str = "",
    reported_quality_gates: Mapping[str, bool] | None = None,
) -> QualityEvaluation:
    """Collect fresh signals and evaluate them in one step."""
    signals = collect_quality_signals(project_root)
    return evaluate_phase_quality_gates(signals, phase_number, phase_name, reported_quality_gates)
