"""Tests for node-level edits on .tscn text."""

from __future__ import annotations

import pytest

from godot_ai_builder.exceptions import SceneEditError
from godot_ai_builder.scene_editor import add_node, delete_node, format_value, update_node
from godot_ai_builder.scene_parser import build_scene_tree, parse_tscn
from helpers import MAIN_SCENE

WIRED_SCENE = """\
[gd_scene load_steps=2 format=3]

[ext_resource type="Script" path="res://scripts/main.gd" id="1_main"]

[node name="Main" type="Node2D"]
script = ExtResource("1_main")

[node name="Spawner" type="Node2D" parent="."]

[node name="Timer" type="Timer" parent="Spawner"]
wait_time = 2.0

[node name="Path" type="Line2D" parent="."]
points = PackedVector2Array(0, 0,
100, 0)
width = 4.0

[connection signal="timeout" from="Spawner/Timer" to="." method="_on_spawn"]
[connection signal="ready" from="." to="." method="_on_ready"]
"""


def _names(text: str) -> list[str]:
    return [node["name"] for node in parse_tscn(text)["nodes"]]


def test_format_value_covers_godot_literals() -> None:
    refs: list[str] = []

    def ref(path: str) -> str:
        refs.append(path)
        return "3_tex"

    assert format_value(True) == "true"
    assert format_value(None) == "null"
    assert format_value(1.5) == "1.5"
    assert format_value('say "hi"') == '"say \\"hi\\""'
    assert format_value({"x": 1.0, "y": -2.5}) == "Vector2(1, -2.5)"
    assert format_value({"x": 1, "y": 2, "z": 3}) == "Vector3(1, 2, 3)"
    assert format_value({"r": 1, "g": 0.5, "b": 0}) == "Color(1, 0.5, 0, 1)"
    assert format_value([1, "a"]) == '[1, "a"]'
    assert format_value({"speed": 3}) == '{"speed": 3}'
    assert format_value("res://art/ship.png", ref) == 'ExtResource("3_tex")'
    assert format_value("res://art/ship.png") == '"res://art/ship.png"'
    assert refs == ["res://art/ship.png"]
    with pytest.raises(SceneEditError):
        format_value({"x": "left", "y": 0})


def test_add_under_root_goes_before_connections() -> None:
    text, info = add_node(WIRED_SCENE, ".", "Score", "Label", {"text": "0", "visible": True})

    assert info == {"node_path": "Score", "node_type": "Label"}
    assert _names(text) == ["Main", "Spawner", "Timer", "Path", "Score"]
    assert text.index('[node name="Score" type="Label" parent="."]') < text.index("[connection")
    assert 'text = "0"\nvisible = true' in text
    assert "points = PackedVector2Array(0, 0,\n100, 0)" in text


def test_add_child_lands_after_parent_subtree() -> None:
    text, info = add_node(WIRED_SCENE, "Spawner", "Marker", "Marker2D")

    assert info["node_path"] == "Spawner/Marker"
    assert _names(text) == ["Main", "Spawner", "Timer", "Marker", "Path"]
    tree = build_scene_tree(parse_tscn(text))
    assert tree is not None
    spawner = tree["children"][0]
    assert [child["path"] for child in spawner["children"]] == ["Spawner/Timer", "Spawner/Marker"]


def test_add_reuses_known_resources_and_counts_new_ones() -> None:
    text, _ = add_node(MAIN_SCENE, "Main", "Logic", "Node", {"script": "res://scripts/main.gd"})
    assert 'script = ExtResource("1_main")' in text.split('[node name="Logic"')[1]
    assert text.startswith("[gd_scene load_steps=2 ")

    text, _ = add_node(text, "Player", "Hit", "AudioStreamPlayer2D", {"stream": "res://sfx/hit.ogg"})
    assert '[ext_resource type="AudioStream" path="res://sfx/hit.ogg" id="2_hit"]' in text
    assert text.startswith("[gd_scene load_steps=3 ")
    assert text.index("2_hit") < text.index("[node")


def test_add_rejects_clashes_and_bad_input() -> None:
    with pytest.raises(SceneEditError, match="already exists"):
        add_node(MAIN_SCENE, ".", "Player", "Node2D")
    with pytest.raises(SceneEditError, match="Node not found"):
        add_node(MAIN_SCENE, "Enemies", "Bat", "Area2D")
    with pytest.raises(SceneEditError, match="Invalid node name"):
        add_node(MAIN_SCENE, ".", "a/b", "Node2D")
    with pytest.raises(SceneEditError, match="Invalid property name"):
        add_node(MAIN_SCENE, ".", "Bat", "Area2D", {"bad key": 1})
    with pytest.raises(SceneEditError, match="no root node"):
        add_node("[gd_scene format=3]\n", ".", "Bat", "Area2D")


def test_update_replaces_multiline_value_and_removes_nulls() -> None:
    text, info = update_node(WIRED_SCENE, "Path", {"points": [1, 2], "width": None, "visible": False})

    assert info == {"node_path": "Path", "updated": ["points", "visible"], "removed": ["width"]}
    section = text.split('[node name="Path" type="Line2D" parent="."]\n')[1].split("\n\n")[0]
    assert section == "points = [1, 2]\nvisible = false"


def test_update_accepts_root_name_prefixed_paths() -> None:
    text, info = update_node(MAIN_SCENE, "Main/Player/Sprite", {"flip_h": True})

    assert info["node_path"] == "Player/Sprite"
    assert text.rstrip().endswith('[node name="Sprite" type="Sprite2D" parent="Player"]\nflip_h = true')


def test_update_requires_properties() -> None:
    with pytest.raises(SceneEditError, match="No properties"):
        update_node(MAIN_SCENE, "Player", {})


def test_delete_removes_subtree_and_its_connections() -> None:
    text, info = delete_node(WIRED_SCENE, "./Spawner")

    assert info == {"node_path": "Spawner", "removed": ["Spawner", "Spawner/Timer"], "removed_connections": 1}
    assert _names(text) == ["Main", "Path"]
    assert 'method="_on_ready"' in text
    assert "_on_spawn" not in text


def test_delete_refuses_root() -> None:
    with pytest.raises(SceneEditError, match="scene root"):
        delete_node(MAIN_SCENE, "Main")
