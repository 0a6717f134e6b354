"""Line-oriented parser for Godot 4 ``.tscn`` text scenes."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any

from godot_ai_builder.scanner import resolve_project_path

_SECTION_RE = re.compile(r"^\[(\w+)(.*?)\]$")
_PROPERTY_RE = re.compile(r"^([\w/:]+)\s*=\s*(.+)$")
_INLINE_PROP_RE = re.compile(r'(\w+)\s*=\s*("(?:[^"\\]|\\.)*"|\S+)')


def unquote(value: str | None) -> str:
    if not value:
        return ""
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        return value[1:-1]
    return value


def _parse_inline_props(text: str) -> dict[str, str]:
    return {m.group(1): m.group(2) for m in _INLINE_PROP_RE.finditer(text)}


def parse_section_header(line: str) -> tuple[str, dict[str, str]] | None:
    """Split a ``[kind key=value ...]`` line into its kind and raw attributes."""
    header = _SECTION_RE.match(line.strip())
    if not header:
        return None
    return header.group(1), _parse_inline_props(header.group(2))


def _int_or(value: str | None, default: int) -> int:
    try:
        return int(unquote(value)) if value else default
    except ValueError:
        return default


def _flush_section(result: dict[str, Any], section: str, data: dict[str, str]) -> None:
    if section == "gd_scene":
        result["format"] = _int_or(data.get("format"), 3)
        result["load_steps"] = _int_or(data.get("load_steps"), 0)
        if "uid" in data:
            result["uid"] = unquote(data["uid"])
    elif section == "ext_resource":
        result["ext_resources"].append({
            "type": unquote(data.get("type")),
            "path": unquote(data.get("path")),
            "id": unquote(data.get("id")),
        })
    elif section == "sub_resource":
        entry = dict(data)
        entry["type"] = unquote(data.get("type"))
        entry["id"] = unquote(data.get("id"))
        result["sub_resources"].append(entry)
    elif section == "node":
        entry = dict(data)
        entry["name"] = unquote(data.get("name"))
        entry["type"] = unquote(data.get("type"))
        entry["parent"] = unquote(data.get("parent"))
        result["nodes"].append(entry)
    # connection/editable/resource sections carry nothing the callers need


def parse_tscn(content: str) -> dict[str, Any]:
    """Parse raw ``.tscn`` text into format/load_steps/ext_resources/sub_resources/nodes.

    Header attributes keep their raw (quoted) form on sub_resource and node
    entries, except for the well-known keys which are unquoted.
    """
    result: dict[str, Any] = {
        "format": None,
        "load_steps": 0,
        "ext_resources": [],
        "sub_resources": [],
        "nodes": [],
    }
    section: str | None = None
    data: dict[str, str] = {}

    for line in content.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith(";"):
            continue

        header = _SECTION_RE.match(stripped)
        if header:
            if section:
                _flush_section(result, section, data)
            section = header.group(1)
            data = _parse_inline_props(header.group(2))
            continue

        prop = _PROPERTY_RE.match(stripped)
        if prop and section:
            data[prop.group(1)] = prop.group(2)

    if section:
        _flush_section(result, section, data)
    return result


def parse_scene(project_root: Path, scene_path: str) -> dict[str, Any]:
    """Read and parse a scene given as ``res://`` path.

    Raises OSError if missing, ProjectPathError if outside the project.
    """
    content = resolve_project_path(project_root, scene_path).read_text(encoding="utf-8")
    return parse_tscn(content)


def build_scene_tree(parsed: dict[str, Any], max_depth: int = 10) -> dict[str, Any] | None:
    """Nest parsed nodes by their ``parent`` paths.

    The root node has no parent; direct children use ``parent="."``; deeper
    nodes use a slash path relative to the root. Nodes below *max_depth* are
    dropped and their parent gets ``truncated: True``.
    """
    nodes = parsed.get("nodes", [])
    if not nodes:
        return None

    root_src = nodes[0]
    root: dict[str, Any] = {
        "name": root_src["name"],
        "type": root_src["type"],
        "path": ".",
        "children": [],
    }
    by_path: dict[str, dict[str, Any]] = {".": root}
    depth_of: dict[str, int] = {".": 0}

    for src in nodes[1:]:
        parent_path = src.get("parent") or "."
        parent = by_path.get(parent_path)
        if parent is None:
            continue
        own_path = src["name"] if parent_path == "." else f"{parent_path}/{src['name']}"
        depth = depth_of[parent_path] + 1
        if depth > max_depth:
            parent["truncated"] = True
            continue
        node: dict[str, Any] = {
            "name": src["name"],
            "type": src["type"],
            "path": own_path,
            "children": [],
        }
        if "instance" in src:
            node["instance"] = src["instance"]
        parent["children"].append(node)
        by_path[own_path] = node
        depth_of[own_path] = depth
    return root


def count_nodes(tree: dict[str, Any] | None) -> int:
    if not tree:
        return 0
    return 1 + sum(count_nodes(child) for child in tree.get("children", []))
