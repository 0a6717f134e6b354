"""Shared utilities for MCP tool modules."""

from __future__ import annotations

from typing import Any, Iterable


def plural(count: int, word: str) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


def error_files(errors: Iterable[dict[str, Any]], limit: int) -> list[str]:
    """Best label for each of the first *limit* errors: file, else message."""
    labels: list[str] = []
    for entry in errors:
        if len(labels) >= limit:
            break
        labels.append(entry.get("file") or entry.get("message") or "unknown")
    return labels


def describe(result: dict[str, Any], text: str) -> dict[str, Any]:
    """Attach a one-line ``_description`` unless the result already has one."""
    if "_description" not in result:
        result["_description"] = text
    return result
