"""Node-level edits on Godot 4 ``.tscn`` text.

A scene is handled as a list of sections, each one a ``[...]`` header line
followed by its property lines. Edits work on that list and render it back
with one blank line between sections, the layout Godot itself writes.
Sections an edit does not touch keep their text.

Node paths are relative to the scene root: ``"."`` is the root, ``"Player"``
a direct child, ``"Player/Sprite"`` a grandchild. Property values are plain
JSON: ``{"x", "y"}`` becomes ``Vector2``, ``{"x", "y", "z"}`` ``Vector3``,
``{"r", "g", "b"[, "a"]}`` ``Color``, and a ``res://`` string an
``ExtResource`` reference added to the scene's resource list.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any, Callable

from godot_ai_builder.exceptions import SceneEditError
from godot_ai_builder.scene_parser import parse_section_header, unquote

_PROPERTY_LINE_RE = re.compile(r"^([\w/:]+)\s*=")
_PROPERTY_KEY_RE = re.compile(r"^[\w/:]+$")
_INVALID_NAME_RE = re.compile(r'[.:@/"%]')
_LOAD_STEPS_RE = re.compile(r"load_steps=\d+")

RESOURCE_TYPES = {
    "gd": "Script",
    "tscn": "PackedScene",
    "scn": "PackedScene",
    "tres": "Resource",
    "res": "Resource",
    "png": "Texture2D",
    "jpg": "Texture2D",
    "jpeg": "Texture2D",
    "svg": "Texture2D",
    "webp": "Texture2D",
    "ogg": "AudioStream",
    "wav": "AudioStream",
    "mp3": "AudioStream",
    "ttf": "FontFile",
    "otf": "FontFile",
}


@dataclass
class _Section:
    kind: str
    attrs: dict[str, str]
    lines: list[str]

    def render(self) -> str:
        lines = list(self.lines)
        while len(lines) > 1 and not lines[-1].strip():
            lines.pop()
        return "\n".join(lines)

    def property_span(self, key: str) -> tuple[int, int] | None:
        """Line range of ``key = ...`` including continuation lines of a multi-line value."""
        for i in range(1, len(self.lines)):
            match = _PROPERTY_LINE_RE.match(self.lines[i])
            if match and match.group(1) == key:
                end = i + 1
                while (
                    end < len(self.lines)
                    and self.lines[end].strip()
                    and not _PROPERTY_LINE_RE.match(self.lines[end])
                ):
                    end += 1
                return i, end
        return None

    def set_property(self, key: str, rendered: str) -> None:
        line = f"{key} = {rendered}"
        span = self.property_span(key)
        if span is None:
            while len(self.lines) > 1 and not self.lines[-1].strip():
                self.lines.pop()
            self.lines.append(line)
        else:
            self.lines[span[0]:span[1]] = [line]

    def remove_property(self, key: str) -> bool:
        span = self.property_span(key)
        if span is None:
            return False
        del self.lines[span[0]:span[1]]
        return True


def _number(value: Any) -> str:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise SceneEditError(f"Expected a number, got {value!r}")
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return repr(value) if isinstance(value, float) else str(value)


def format_value(value: Any, resource_ref: Callable[[str], str] | None = None) -> str:
    """Render a JSON value as ``.tscn`` property text."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return repr(value)
    if isinstance(value, str):
        if value.startswith("res://") and resource_ref is not None:
            return f'ExtResource("{resource_ref(value)}")'
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, dict):
        keys = set(value)
        if keys == {"x", "y"}:
            return f"Vector2({_number(value['x'])}, {_number(value['y'])})"
        if keys == {"x", "y", "z"}:
            return f"Vector3({_number(value['x'])}, {_number(value['y'])}, {_number(value['z'])})"
        if keys in ({"r", "g", "b"}, {"r", "g", "b", "a"}):
            channels = [value["r"], value["g"], value["b"], value.get("a", 1)]
            return f"Color({', '.join(_number(c) for c in channels)})"
        items = ", ".join(
            f"{json.dumps(str(k), ensure_ascii=False)}: {format_value(v, resource_ref)}"
            for k, v in value.items()
        )
        return "{" + items + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(format_value(v, resource_ref) for v in value) + "]"
    raise SceneEditError(f"Unsupported property value: {value!r}")


def _normalize_path(path: str | None) -> str:
    path = (path or ".").strip()
    while path.startswith("./"):
        path = path[2:]
    path = path.strip("/")
    return path or "."


def _is_within(path: str, ancestor: str) -> bool:
    if ancestor == ".":
        return True
    return path == ancestor or path.startswith(ancestor + "/")


class _Scene:
    def __init__(self, text: str) -> None:
        self.preamble: list[str] = []
        self.sections: list[_Section] = []
        self.resources_added = 0
        for line in text.splitlines():
            header = parse_section_header(line)
            if header is not None:
                self.sections.append(_Section(header[0], header[1], [line.strip()]))
            elif self.sections:
                self.sections[-1].lines.append(line)
            else:
                self.preamble.append(line)

    def render(self) -> str:
        if self.resources_added:
            self._refresh_load_steps()
        blocks = [section.render() for section in self.sections]
        head = "\n".join(self.preamble).strip("\n")
        if head.strip():
            blocks.insert(0, head)
        return "\n\n".join(blocks) + "\n"

    def _refresh_load_steps(self) -> None:
        steps = 1 + sum(1 for s in self.sections if s.kind in ("ext_resource", "sub_resource"))
        for section in self.sections:
            if section.kind == "gd_scene":
                section.lines[0] = _LOAD_STEPS_RE.sub(f"load_steps={steps}", section.lines[0])

    # --- nodes ---

    def node_paths(self) -> dict[int, str]:
        """Section index of every node mapped to its path from the root."""
        paths: dict[int, str] = {}
        for i, section in enumerate(self.sections):
            if section.kind != "node":
                continue
            name = unquote(section.attrs.get("name"))
            if "parent" not in section.attrs:
                if "." in paths.values():
                    continue
                paths[i] = "."
                continue
            parent = unquote(section.attrs["parent"])
            paths[i] = name if parent == "." else f"{parent}/{name}"
        return paths

    def root_name(self) -> str:
        for i, path in self.node_paths().items():
            if path == ".":
                return unquote(self.sections[i].attrs.get("name"))
        raise SceneEditError("Scene has no root node")

    def resolve(self, node_path: str | None) -> tuple[int, str]:
        wanted = _normalize_path(node_path)
        paths = self.node_paths()
        root = self.root_name()
        candidates = [wanted]
        if wanted == root:
            candidates.append(".")
        elif wanted.startswith(root + "/"):
            candidates.append(wanted[len(root) + 1:])
        for candidate in candidates:
            for index, path in paths.items():
                if path == candidate:
                    return index, path
        raise SceneEditError(f"Node not found: {node_path or '.'}")

    # --- resources ---

    def resource_ref(self, res_path: str) -> str:
        """Id of the ext_resource for *res_path*, adding the entry if it is missing."""
        existing = [s for s in self.sections if s.kind == "ext_resource"]
        for section in existing:
            if unquote(section.attrs.get("path")) == res_path:
                return unquote(section.attrs.get("id"))

        taken = {unquote(s.attrs.get("id")) for s in existing}
        stem = re.sub(r"\W", "_", PurePosixPath(res_path).stem) or "res"
        number = len(existing) + 1
        while f"{number}_{stem}" in taken:
            number += 1
        new_id = f"{number}_{stem}"
        kind = RESOURCE_TYPES.get(PurePosixPath(res_path).suffix.lstrip(".").lower(), "Resource")
        header = f'[ext_resource type="{kind}" path="{res_path}" id="{new_id}"]'
        entry = _Section("ext_resource", {"type": f'"{kind}"', "path": f'"{res_path}"', "id": f'"{new_id}"'}, [header])

        position = 0
        for i, section in enumerate(self.sections):
            if section.kind in ("gd_scene", "ext_resource"):
                position = i + 1
        self.sections.insert(position, entry)
        self.resources_added += 1
        return new_id

    def render_properties(self, properties: dict[str, Any]) -> dict[str, str | None]:
        rendered: dict[str, str | None] = {}
        for key, value in properties.items():
            if not _PROPERTY_KEY_RE.match(key):
                raise SceneEditError(f"Invalid property name: {key!r}")
            rendered[key] = None if value is None else format_value(value, self.resource_ref)
        return rendered


def add_node(
    text: str,
    parent_path: str | None,
    node_name: str,
    node_type: str,
    properties: dict[str, Any] | None = None,
) -> tuple[str, dict[str, Any]]:
    """Add a child node under *parent_path*, after the parent's existing subtree."""
    if not node_name or _INVALID_NAME_RE.search(node_name):
        raise SceneEditError(f"Invalid node name: {node_name!r}")
    if not node_type or not re.fullmatch(r"\w+", node_type):
        raise SceneEditError(f"Invalid node type: {node_type!r}")

    scene = _Scene(text)
    _, parent = scene.resolve(parent_path)
    new_path = node_name if parent == "." else f"{parent}/{node_name}"
    if new_path in scene.node_paths().values():
        raise SceneEditError(f"Node already exists: {new_path}")

    rendered = scene.render_properties(properties or {})
    section = _Section(
        "node",
        {"name": f'"{node_name}"', "type": f'"{node_type}"', "parent": f'"{parent}"'},
        [f'[node name="{node_name}" type="{node_type}" parent="{parent}"]'],
    )
    for key, value in rendered.items():
        if value is not None:
            section.lines.append(f"{key} = {value}")

    subtree = [i for i, path in scene.node_paths().items() if _is_within(path, parent)]
    scene.sections.insert(max(subtree) + 1, section)
    return scene.render(), {"node_path": new_path, "node_type": node_type}


def update_node(text: str, node_path: str, properties: dict[str, Any]) -> tuple[str, dict[str, Any]]:
    """Set properties on an existing node. A ``None`` value removes the property."""
    if not properties:
        raise SceneEditError("No properties given")
    scene = _Scene(text)
    scene.resolve(node_path)
    rendered = scene.render_properties(properties)
    # resource entries may have been inserted above the node
    index, path = scene.resolve(node_path)
    section = scene.sections[index]

    updated: list[str] = []
    removed: list[str] = []
    for key, value in rendered.items():
        if value is None:
            if section.remove_property(key):
                removed.append(key)
        else:
            section.set_property(key, value)
            updated.append(key)
    return scene.render(), {"node_path": path, "updated": updated, "removed": removed}


def delete_node(text: str, node_path: str) -> tuple[str, dict[str, Any]]:
    """Remove a node, its descendants and the signal connections that touch them."""
    scene = _Scene(text)
    _, path = scene.resolve(node_path)
    if path == ".":
        raise SceneEditError("Cannot delete the scene root")

    doomed = {i: p for i, p in scene.node_paths().items() if _is_within(p, path)}
    kept: list[_Section] = []
    connections = 0
    for i, section in enumerate(scene.sections):
        if i in doomed:
            continue
        if section.kind == "connection":
            ends = (unquote(section.attrs.get("from")), unquote(section.attrs.get("to")))
            if any(_is_within(_normalize_path(end), path) for end in ends):
                connections += 1
                continue
        kept.append(section)
    scene.sections = kept
    return scene.render(), {
        "node_path": path,
        "removed": list(doomed.values()),
        "removed_connections": connections,
    }
