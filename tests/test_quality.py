"""Tests for quality signals and phase gates."""

from __future__ import annotations

from pathlib import Path

from godot_ai_builder.mcp_server.quality import (
    FEEDBACK_CATEGORIES,
    QualitySignals,
    collect_quality_signals,
    count_pass_stubs,
    evaluate_phase_quality_gates,
    evaluate_project,
    find_category_hits,
    find_keyword_hits,
    phase_name_for_number,
    resolve_main_scene_path,
)
from helpers import write_file

POLISHED_SCRIPT = """\
extends Node2D

var style := StyleBoxFlat.new()

func _ready() -> void:
\tadd_theme_color_override("font_color", Color.WHITE)
\tvar tween := create_tween()
\t$CanvasLayer/Background.visible = true

func take_damage(amount: int) -> void:
\thit_flash()
\tif amount > 10:
\t\tdie()

func collect(item) -> void:
\tscore += 1

func _on_restart_pressed() -> void:
\tget_tree().change_scene_to_file("res://scenes/main_menu.tscn")

func _on_game_over() -> void:
\tget_tree().paused = true
"""


def _add_images(root: Path, count: int) -> None:
    for i in range(count):
        write_file(root, f"art/sprite_{i}.png")


def test_pass_stub_detection() -> None:
    assert count_pass_stubs("func foo():\n    pass") == 1
    assert count_pass_stubs('func foo():\n    print("x")') == 0
    assert count_pass_stubs("func foo():\n\n    # todo\n    pass  # later\n") == 1
    assert count_pass_stubs("func a():\nfunc b():\n\tpass\n") == 1
    assert count_pass_stubs("func foo(): pass\n") == 0


def test_keyword_and_category_hits() -> None:
    text = "var t = create_tween() # take_damage then die, then collect"

    assert find_keyword_hits(text, ("create_tween", "tween", "shader")) == ["create_tween", "tween"]
    assert find_category_hits(text, FEEDBACK_CATEGORIES) == ["damage", "death", "pickup_score"]


def test_resolve_main_scene_by_path_and_uid(godot_project: Path) -> None:
    scenes = ["res://scenes/main.tscn"]

    assert resolve_main_scene_path(godot_project, "res://scenes/main.tscn", scenes) == "res://scenes/main.tscn"
    assert resolve_main_scene_path(godot_project, "res://scenes/menu.tscn", scenes) == ""
    assert resolve_main_scene_path(godot_project, "uid://b1main", scenes) == "res://scenes/main.tscn"
    assert resolve_main_scene_path(godot_project, "uid://missing", scenes) == ""
    assert resolve_main_scene_path(godot_project, "scenes/main.tscn", scenes) == "scenes/main.tscn"
    assert resolve_main_scene_path(godot_project, "", scenes) == ""


def test_signals_count_files_by_kind(godot_project: Path) -> None:
    _add_images(godot_project, 2)
    write_file(godot_project, "sfx/hit.wav")
    write_file(godot_project, "addons/tool/icon.png")

    signals = collect_quality_signals(godot_project)

    assert signals.script_count == 1
    assert signals.scene_count == 1
    assert signals.image_asset_count == 2
    assert signals.audio_asset_count == 1
    assert signals.main_scene_exists is True


def test_visual_assets_gate_boundary() -> None:
    five = evaluate_phase_quality_gates(QualitySignals(image_asset_count=5), 5)
    six = evaluate_phase_quality_gates(QualitySignals(image_asset_count=6), 5)

    assert "auto_visual_assets_coverage" in five.failed_quality_gates
    assert "auto_visual_assets_coverage" not in six.failed_quality_gates


def test_feedback_category_gate_boundary() -> None:
    three = evaluate_phase_quality_gates(QualitySignals(feedback_categories=("damage", "death", "ability")), 5)
    two = evaluate_phase_quality_gates(QualitySignals(feedback_categories=("damage", "death")), 5)

    assert three.computed_quality_gates["auto_feedback_event_coverage"] is True
    assert two.computed_quality_gates["auto_feedback_event_coverage"] is False


def test_gates_depend_on_phase_number() -> None:
    signals = QualitySignals()

    early = evaluate_phase_quality_gates(signals, 4)
    polish = evaluate_phase_quality_gates(signals, 5)
    final = evaluate_phase_quality_gates(signals, 6)

    assert early.gates_passed is True
    assert early.computed_quality_gates == {}
    assert len(polish.computed_quality_gates) == 5
    assert len(final.computed_quality_gates) == 9
    assert polish.phase_name == "Polish & Game Feel"


def test_reported_gates_are_overridden_by_computed_ones() -> None:
    evaluation = evaluate_phase_quality_gates(
        QualitySignals(), 5, "Polish", {"auto_visual_assets_coverage": True, "custom_juice": True},
    )

    assert evaluation.merged_quality_gates["auto_visual_assets_coverage"] is False
    assert evaluation.merged_quality_gates["custom_juice"] is True
    assert "custom_juice" not in evaluation.computed_quality_gates


def test_missing_main_scene_fails_final_gate(godot_project: Path) -> None:
    settings = godot_project / "project.godot"
    settings.write_text(
        settings.read_text(encoding="utf-8").replace("res://scenes/main.tscn", "res://scenes/menu.tscn"),
        encoding="utf-8",
    )

    detail = evaluate_project(godot_project, 6).to_dict()["gate_details"]["auto_main_scene_configured"]

    assert detail["passed"] is False
    assert detail["actual"]["exists"] is False
    assert detail["actual"]["main_scene"] == "res://scenes/menu.tscn"


def test_polished_project_passes_final_qa(godot_project: Path) -> None:
    _add_images(godot_project, 6)
    write_file(godot_project, "scripts/game.gd", POLISHED_SCRIPT)
    write_file(
        godot_project,
        "scenes/main_menu.tscn",
        '[gd_scene format=3]\n\n[node name="Menu" type="Control"]\n\n'
        '[node name="Particles" type="GPUParticles2D" parent="."]\n'
        '[node name="Parallax" type="ParallaxBackground" parent="."]\n'
        '[node name="Anim" type="AnimationPlayer" parent="."]\n',
    )

    evaluation = evaluate_project(godot_project, 6, "Final QA")

    assert evaluation.failed_quality_gates == []
    report = evaluation.to_dict()
    assert report["ok"] is True
    assert report["quality_metrics"]["pass_stub_count"] == 0
    assert report["quality_metrics"]["image_asset_count"] == 6


def test_evaluation_snapshot_is_stable() -> None:
    evaluation = evaluate_phase_quality_gates(QualitySignals(), 6)
    first = evaluation.to_dict()
    first["failed_quality_gates"].clear()

    assert evaluation.to_dict()["failed_quality_gates"] != []


def test_default_phase_names() -> None:
    assert phase_name_for_number(0) == "Discovery & PRD"
    assert phase_name_for_number(6) == "Final QA"
    assert phase_name_for_number(9) == "Phase 9"
