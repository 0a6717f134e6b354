"""Project filesystem helpers: res:// path mapping, extension scans, log tails.

Shared by the editor bridge (status, error collection) and the MCP tool proxy
(quality signals). Everything here is synchronous and bounded by the size of
the project tree.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable

from godot_ai_builder.exceptions import ProjectPathError

logger = logging.getLogger(__name__)

RES_PREFIX = "res://"

# Directories never descended into: add-ons ship their own scripts and the
# reference docs folder holds example code that is not part of the game.
SKIP_DIRS: frozenset[str] = frozenset({"addons", "docs"})

SCRIPT_EXTENSIONS = ("gd",)
SCENE_EXTENSIONS = ("tscn",)
IMAGE_EXTENSIONS = ("svg", "png", "jpg", "jpeg", "webp")
AUDIO_EXTENSIONS = ("ogg", "wav")

# 50 KB tail is enough to cover the last few hundred editor log lines.
DEFAULT_TAIL_BYTES = 50_000


def res_to_absolute(project_root: Path, res_path: str) -> Path:
    """Map a ``res://`` path (or a project-relative path) onto the filesystem."""
    relative = res_path[len(RES_PREFIX):] if res_path.startswith(RES_PREFIX) else res_path
    return project_root / relative


def resolve_project_path(project_root: Path, path_like: str) -> Path:
    """Like res_to_absolute, but refuse paths that escape the project root."""
    clean = str(path_like or "")
    if clean.startswith(RES_PREFIX):
        clean = clean[len(RES_PREFIX):]
    clean = clean.lstrip("/")
    root = project_root.resolve()
    target = (root / clean).resolve()
    if target == root or root not in target.parents:
        raise ProjectPathError("Path escapes project root", {"path": path_like})
    return target


def absolute_to_res(project_root: Path, path: Path) -> str:
    return RES_PREFIX + path.relative_to(project_root).as_posix()


def scan_project_files(
    project_root: Path,
    extensions: Iterable[str],
    skip_dirs: Iterable[str] = SKIP_DIRS,
) -> list[str]:
    """Return sorted ``res://`` paths of every file with one of *extensions*.

    Hidden directories (``.godot``, ``.claude``, ``.git``...) and *skip_dirs*
    are pruned. A missing root yields an empty list.
    """
    wanted = {ext.lower().lstrip(".") for ext in extensions}
    skipped = set(skip_dirs)
    results: list[str] = []
    if not project_root.is_dir():
        return results

    for dirpath, dirnames, filenames in os.walk(project_root):
        dirnames[:] = sorted(
            d for d in dirnames if not d.startswith(".") and d not in skipped
        )
        for name in filenames:
            ext = name.rsplit(".", 1)[-1].lower() if "." in name else ""
            if ext in wanted:
                results.append(absolute_to_res(project_root, Path(dirpath) / name))
    results.sort()
    return results


def filter_by_extension(paths: Iterable[str], extensions: Iterable[str]) -> list[str]:
    suffixes = tuple("." + ext.lstrip(".").lower() for ext in extensions)
    return [p for p in paths if p.lower().endswith(suffixes)]


def tail_text_file(path: Path, max_bytes: int = DEFAULT_TAIL_BYTES) -> str:
    """Return at most the last *max_bytes* of *path* decoded as UTF-8.

    A partial first line left by the cut is dropped. Missing files give "".
    """
    try:
        size = path.stat().st_size
        with path.open("rb") as fh:
            if size > max_bytes:
                fh.seek(size - max_bytes)
                data = fh.read()
                newline = data.find(b"\n")
                data = data[newline + 1:] if newline != -1 else data
            else:
                data = fh.read()
    except FileNotFoundError:
        return ""
    except OSError as exc:
        logger.debug("Could not tail %s: %s", path, exc)
        return ""
    return data.decode("utf-8", errors="replace")


def read_text_files(project_root: Path, res_paths: Iterable[str]) -> list[str]:
    """Read every readable file; unreadable ones are skipped."""
    contents: list[str] = []
    for res_path in res_paths:
        try:
            contents.append(res_to_absolute(project_root, res_path).read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError):
            logger.debug("Skipping unreadable file %s", res_path)
    return contents


def _unquote(value: str) -> str:
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        return value[1:-1]
    return value


def parse_project_settings(content: str) -> dict[str, str]:
    """Parse ``project.godot`` into flat ``section/key`` -> value strings."""
    settings: dict[str, str] = {}
    section = ""
    for line in content.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith(";"):
            continue
        if stripped.startswith("[") and stripped.endswith("]"):
            section = stripped[1:-1].strip()
            continue
        key, sep, value = stripped.partition("=")
        if not sep or not key or not (key[0].isalnum() or key[0] == "_"):
            continue
        full_key = f"{section}/{key.strip()}" if section else key.strip()
        settings[full_key] = _unquote(value.strip())
    return settings


def read_project_settings(project_root: Path) -> dict[str, str]:
    try:
        content = (project_root / "project.godot").read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return {}
    return parse_project_settings(content)
