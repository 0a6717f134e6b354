"""Regex-based classifiers for free-text editor log lines.

Both classifiers are pure functions of a line (plus, for file references,
the line after it) so they can be tested against fixed strings and swapped
without touching the server or the error collector.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal, Protocol

Severity = Literal["error", "warning"]

ERROR_MARKERS: tuple[str, ...] = ("ERROR:", "SCRIPT ERROR:", "Parse Error:", "Parser Error:")
WARNING_MARKER = "WARNING:"
PROJECT_PATH_MARKER = "res://"

# res://scripts/player.gd:42
FILE_LINE_RE = re.compile(r"(res://[^\s:,()\"']+\.gd):(\d+)")


class LogLineClassifier(Protocol):
    def classify(self, line: str) -> Severity | None: ...


class ErrorLineClassifier:
    """Sort editor/runtime output lines into errors, warnings, or noise."""

    def classify(self, line: str) -> Severity | None:
        if not line.strip():
            return None
        if any(marker in line for marker in ERROR_MARKERS):
            return "error"
        if "error(" in line.lower() and PROJECT_PATH_MARKER in line:
            return "error"
        if WARNING_MARKER in line:
            return "warning"
        return None


def extract_file_line(line: str, next_line: str | None = None) -> tuple[str, int]:
    """Find a ``res://<path>.gd:<line>`` reference on *line*, else on *next_line*.

    Godot prints the stack frame ("at: GDScript::reload (res://x.gd:3)") on the
    line after the message. Returns ``("", -1)`` when neither has one.
    """
    for candidate in (line, next_line):
        if not candidate:
            continue
        match = FILE_LINE_RE.search(candidate)
        if match:
            return match.group(1), int(match.group(2))
    return "", -1


# --- Phase transitions announced in free text ---

PhaseStatus = Literal["pending", "in_progress", "completed"]

_STATUS_WORDS: dict[str, PhaseStatus] = {
    "pending": "pending",
    "in_progress": "in_progress",
    "in progress": "in_progress",
    "started": "in_progress",
    "completed": "completed",
    "complete": "completed",
    "done": "completed",
}

# "Phase 3: Enemies & Challenges — in_progress" (em dash, en dash or hyphen)
_PHASE_STATUS_RE = re.compile(
    r"Phase\s+(\d+)\s*:\s*(.+?)\s+[—–-]+\s+(pending|in[_ ]progress|completed?|started|done)\b",
    re.IGNORECASE,
)
# "Starting Phase 2: Player Abilities"
_PHASE_START_RE = re.compile(r"\bStarting\s+Phase\s+(\d+)\s*(?::\s*(.+))?$", re.IGNORECASE)
# "Phase 4 complete", "Phase 4 (UI & Game Flow) completed"
_PHASE_DONE_RE = re.compile(r"\bPhase\s+(\d+)\b(?:\s*\(([^)]*)\))?.*?\bcompleted?\b", re.IGNORECASE)


@dataclass(frozen=True)
class PhaseHint:
    phase_number: int
    phase_name: str
    status: PhaseStatus


class PhaseLineClassifier:
    """Detect phase-transition phrases in a dock log message."""

    def classify(self, message: str) -> PhaseHint | None:
        text = message.strip()
        if not text:
            return None

        match = _PHASE_STATUS_RE.search(text)
        if match:
            status = _STATUS_WORDS[match.group(3).lower()]
            return PhaseHint(int(match.group(1)), match.group(2).strip(), status)

        match = _PHASE_START_RE.search(text)
        if match:
            return PhaseHint(int(match.group(1)), (match.group(2) or "").strip(), "in_progress")

        # Rejections mention the phase and "completed" but are not completions.
        lowered = text.lower()
        if "rejected" in lowered or "blocked" in lowered or "validating" in lowered:
            return None
        match = _PHASE_DONE_RE.search(text)
        if match:
            return PhaseHint(int(match.group(1)), (match.group(2) or "").strip(), "completed")
        return None
