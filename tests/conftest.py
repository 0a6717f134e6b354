"""Shared pytest fixtures for the Godot AI Builder test suite."""

from __future__ import annotations

from pathlib import Path

import pytest

from helpers import MAIN_SCENE, MAIN_SCRIPT, PROJECT_GODOT, FakeEditorHost, write_file


@pytest.fixture()
def godot_project(tmp_path: Path) -> Path:
    """A minimal, error-free Godot project: one scene, one script."""
    root = tmp_path / "project"
    root.mkdir()
    write_file(root, "project.godot", PROJECT_GODOT)
    write_file(root, "scenes/main.tscn", MAIN_SCENE)
    write_file(root, "scripts/main.gd", MAIN_SCRIPT)
    return root


@pytest.fixture()
def fake_host(godot_project: Path) -> FakeEditorHost:
    return FakeEditorHost(godot_project)
