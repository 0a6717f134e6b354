"""Tests for the quality report audit log and the build checkpoint."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

from godot_ai_builder.mcp_server.reports import (
    BuildStateStore,
    QualityReportStore,
    clamp_limit,
    extract_phase_number,
    isoformat_utc,
    timestamp_slug,
)

START = datetime(2026, 3, 4, 5, 6, 7, 890_000, tzinfo=timezone.utc)


class StepClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self, start: datetime = START, step: timedelta = timedelta(seconds=1)) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now += self.step
        return current


def _store(root: Path, clock=None) -> QualityReportStore:
    return QualityReportStore(root, root / ".claude" / "quality_reports", clock=clock or StepClock())


def test_timestamp_formats() -> None:
    assert isoformat_utc(START) == "2026-03-04T05:06:07.890Z"
    assert timestamp_slug(START) == "2026-03-04T05-06-07-890Z"
    assert extract_phase_number("res://x/2026-phase12-manual_evaluation.json") == 12
    assert extract_phase_number("res://x/2026-phasex-poc.json") is None


def test_clamp_limit() -> None:
    assert clamp_limit(0) == 1
    assert clamp_limit(50) == 10
    assert clamp_limit("3") == 3
    assert clamp_limit(None) == 1


def test_persist_writes_enveloped_report(tmp_path: Path) -> None:
    store = _store(tmp_path)

    path = store.persist({"phase_number": 5, "ok": False}, "phase_completion_check", {"error_count": 2})

    assert path == "res://.claude/quality_reports/2026-03-04T05-06-07-890Z-phase5-phase_completion_check.json"
    payload = store.read(path)
    assert payload == {
        "version": "1.0",
        "generated_at": "2026-03-04T05:06:07.890Z",
        "trigger": "phase_completion_check",
        "meta": {"error_count": 2},
        "report": {"phase_number": 5, "ok": False},
    }


def test_report_without_phase_number_is_tagged_x(tmp_path: Path) -> None:
    path = _store(tmp_path).persist({"verdict": "go"}, "poc_rubric_score")

    assert "-phasex-poc_rubric_score" in path


def test_same_instant_reports_never_overwrite(tmp_path: Path) -> None:
    store = _store(tmp_path, StepClock(step=timedelta(0)))

    first = store.persist({"phase_number": 5, "n": 1}, "manual_evaluation")
    second = store.persist({"phase_number": 5, "n": 2}, "manual_evaluation")

    assert first != second
    assert second.endswith("-manual_evaluation-2.json")
    assert store.read(first)["report"]["n"] == 1
    assert store.read(second)["report"]["n"] == 2


def test_persist_failure_returns_empty_path(tmp_path: Path) -> None:
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("", encoding="utf-8")
    store = QualityReportStore(tmp_path, blocker / "reports", clock=StepClock())

    assert store.persist({"phase_number": 1}, "manual_evaluation") == ""


def test_latest_filters_by_phase_and_clamps_limit(tmp_path: Path) -> None:
    store = _store(tmp_path)
    for phase in (4, 5, 5, 6, 5):
        store.persist({"phase_number": phase}, "manual_evaluation")

    newest = store.latest()
    phase5 = store.latest(phase_number=5, limit=99)

    assert newest["found"] is True
    assert newest["total"] == 5
    assert newest["returned"] == 1
    assert newest["reports"][0]["data"]["report"]["phase_number"] == 5
    assert phase5["total"] == 3
    assert phase5["returned"] == 3
    times = [r["data"]["generated_at"] for r in phase5["reports"]]
    assert times == sorted(times, reverse=True)


def test_latest_with_no_reports(tmp_path: Path) -> None:
    assert _store(tmp_path).latest(phase_number=3) == {
        "found": False, "total": 0, "reports": [], "phase_number": 3,
    }


def test_unreadable_report_is_listed_with_error(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.reports_dir.mkdir(parents=True)
    (store.reports_dir / "2026-01-01T00-00-00-000Z-phase2-manual_evaluation.json").write_text(
        "{truncated", encoding="utf-8"
    )

    (entry,) = store.latest(phase_number=2)["reports"]

    assert "data" not in entry
    assert entry["error"].startswith("Failed to read report:")


def test_build_state_roundtrip(tmp_path: Path) -> None:
    store = BuildStateStore(tmp_path / ".claude" / "build_state.json")
    assert store.load() == {"found": False, "state": None}

    state = {"phase": {"number": 3}, "notes": ["enemies spawn"], "title": "Space Dodger"}
    path = store.save(state)

    assert json.loads(path.read_text(encoding="utf-8")) == state
    assert store.load() == {"found": True, "state": state}
    assert not path.with_suffix(".json.tmp").exists()


def test_corrupt_build_state_reports_error(tmp_path: Path) -> None:
    path = tmp_path / "build_state.json"
    path.write_text("{oops", encoding="utf-8")

    result = BuildStateStore(path).load()

    assert result["found"] is False
    assert result["state"] is None
    assert result["error"]
