"""Tests for the .tscn parser and scene tree builder."""

from __future__ import annotations

from pathlib import Path

import pytest

from godot_ai_builder.exceptions import ProjectPathError
from godot_ai_builder.scene_parser import build_scene_tree, count_nodes, parse_scene, parse_tscn
from helpers import MAIN_SCENE


def test_parse_tscn_sections() -> None:
    parsed = parse_tscn(MAIN_SCENE)

    assert parsed["format"] == 3
    assert parsed["load_steps"] == 2
    assert parsed["uid"] == "uid://b1main"
    assert parsed["ext_resources"] == [
        {"type": "Script", "path": "res://scripts/main.gd", "id": "1_main"}
    ]
    assert [n["name"] for n in parsed["nodes"]] == ["Main", "Player", "Sprite"]
    player = parsed["nodes"][1]
    assert player["type"] == "CharacterBody2D"
    assert player["parent"] == "."
    assert player["position"] == "Vector2(100, 200)"


def test_build_scene_tree_nests_by_parent_path() -> None:
    tree = build_scene_tree(parse_tscn(MAIN_SCENE))

    assert tree is not None
    assert tree["name"] == "Main"
    (player,) = tree["children"]
    assert player["path"] == "Player"
    assert player["children"][0]["path"] == "Player/Sprite"
    assert count_nodes(tree) == 3


def test_build_scene_tree_marks_truncation() -> None:
    tree = build_scene_tree(parse_tscn(MAIN_SCENE), max_depth=1)

    assert tree is not None
    player = tree["children"][0]
    assert player["children"] == []
    assert player["truncated"] is True
    assert count_nodes(tree) == 2


def test_empty_scene_has_no_tree() -> None:
    assert build_scene_tree(parse_tscn("")) is None
    assert count_nodes(None) == 0


def test_parse_scene_reads_from_project(godot_project: Path) -> None:
    assert len(parse_scene(godot_project, "res://scenes/main.tscn")["nodes"]) == 3
    with pytest.raises(FileNotFoundError):
        parse_scene(godot_project, "res://scenes/missing.tscn")
    with pytest.raises(ProjectPathError):
        parse_scene(godot_project, "res://../../etc/passwd")


def test_non_numeric_header_values_fall_back_to_defaults() -> None:
    parsed = parse_tscn('[gd_scene load_steps=x format="x"]\n\n[node name="Root" type="Node"]\n')

    assert parsed["format"] == 3
    assert parsed["load_steps"] == 0
    assert [n["name"] for n in parsed["nodes"]] == ["Root"]


def test_quoted_header_numbers_are_read() -> None:
    assert parse_tscn('[gd_scene load_steps="4" format="3"]\n')["load_steps"] == 4
