"""On-disk artifacts kept by the tool proxy under the project's ``.claude`` dir.

Quality reports form an append-only audit log: one JSON file per evaluation,
named ``<timestamp>-phase<N>-<trigger>.json``, never rewritten. The build
checkpoint is a single JSON document the agent saves and restores freely.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Mapping

from godot_ai_builder import scanner

logger = logging.getLogger(__name__)

REPORT_VERSION = "1.0"
MAX_REPORTS_PER_READ = 10

TRIGGER_MANUAL = "manual_evaluation"
TRIGGER_PHASE_COMPLETION = "phase_completion_check"
TRIGGER_POC_RUBRIC = "poc_rubric_score"

_PHASE_IN_NAME = re.compile(r"-phase(\d+)-")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def isoformat_utc(moment: datetime) -> str:
    """``2026-01-02T03:04:05.678Z`` style timestamp, millisecond precision."""
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.") + (
        f"{moment.microsecond // 1000:03d}Z"
    )


def timestamp_slug(moment: datetime) -> str:
    return re.sub(r"[:.]", "-", isoformat_utc(moment))


def extract_phase_number(report_path: str) -> int | None:
    match = _PHASE_IN_NAME.search(report_path)
    return int(match.group(1)) if match else None


def clamp_limit(limit: Any, default: int = 1) -> int:
    try:
        value = int(limit)
    except (TypeError, ValueError):
        return default
    return max(1, min(MAX_REPORTS_PER_READ, value))


class QualityReportStore:
    def __init__(
        self,
        project_root: Path,
        reports_dir: Path,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.project_root = project_root
        self.reports_dir = reports_dir
        self.clock = clock

    def _res_path(self, path: Path) -> str:
        try:
            return scanner.absolute_to_res(self.project_root, path)
        except ValueError:
            return str(path)

    def persist(self, report: Mapping[str, Any], trigger: str, meta: Mapping[str, Any] | None = None) -> str:
        """Write one new report file and return its ``res://`` path.

        Returns "" when the file could not be written; report persistence
        never fails the tool call that produced the report.
        """
        moment = self.clock()
        phase = report.get("phase_number")
        phase_tag = phase if isinstance(phase, int) and not isinstance(phase, bool) else "x"
        stem = f"{timestamp_slug(moment)}-phase{phase_tag}-{trigger}"
        payload = {
            "version": REPORT_VERSION,
            "generated_at": isoformat_utc(moment),
            "trigger": trigger,
            "meta": dict(meta or {}),
            "report": dict(report),
        }
        text = json.dumps(payload, indent=2, ensure_ascii=False, default=str)

        try:
            self.reports_dir.mkdir(parents=True, exist_ok=True)
            path = self._create(stem, text)
        except OSError as exc:
            logger.warning("Could not persist quality report %s: %s", stem, exc)
            return ""
        logger.debug("Quality report written to %s", path)
        return self._res_path(path)

    def _create(self, stem: str, text: str) -> Path:
        # Exclusive create; a same-millisecond collision gets a numeric suffix.
        suffix = 1
        while True:
            name = f"{stem}.json" if suffix == 1 else f"{stem}-{suffix}.json"
            path = self.reports_dir / name
            try:
                with path.open("x", encoding="utf-8") as fh:
                    fh.write(text)
            except FileExistsError:
                suffix += 1
                continue
            return path

    def list_paths(self) -> list[str]:
        """``res://`` paths of every report, newest first."""
        try:
            names = [p.name for p in self.reports_dir.iterdir() if p.is_file() and p.suffix == ".json"]
        except OSError:
            return []
        names.sort(reverse=True)
        return [self._res_path(self.reports_dir / name) for name in names]

    def read(self, report_path: str) -> dict[str, Any]:
        path = scanner.res_to_absolute(self.project_root, report_path)
        return json.loads(path.read_text(encoding="utf-8"))

    def latest(self, phase_number: int | None = None, limit: Any = 1) -> dict[str, Any]:
        """Most recent reports, optionally only those for *phase_number*."""
        max_reports = clamp_limit(limit)
        paths = self.list_paths()
        if phase_number is not None:
            paths = [p for p in paths if extract_phase_number(p) == phase_number]
        if not paths:
            return {"found": False, "total": 0, "reports": [], "phase_number": phase_number}

        reports: list[dict[str, Any]] = []
        for report_path in paths[:max_reports]:
            try:
                reports.append({"path": report_path, "data": self.read(report_path)})
            except (OSError, ValueError) as exc:
                reports.append({"path": report_path, "error": f"Failed to read report: {exc}"})
        return {
            "found": True,
            "total": len(paths),
            "returned": len(reports),
            "phase_number": phase_number,
            "reports": reports,
        }


class BuildStateStore:
    """The agent's resumable build checkpoint (``build_state.json``)."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def save(self, state: Mapping[str, Any]) -> Path:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(dict(state), indent=2, ensure_ascii=False), encoding="utf-8")
        tmp.replace(self.path)
        return self.path

    def load(self) -> dict[str, Any]:
        try:
            content = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {"found": False, "state": None}
        except (OSError, UnicodeDecodeError) as exc:
            return {"found": False, "state": None, "error": str(exc)}
        try:
            state = json.loads(content)
        except ValueError as exc:
            return {"found": False, "state": None, "error": str(exc)}
        return {"found": True, "state": state}
