"""Weighted proof-of-concept rubric for the final QA pass.

The agent (acting as evaluator) fills in hard-gate and visual checklists and
six 1..5 category scores. This module turns them into a verdict:
``go``, ``needs_iteration``, or ``no_go`` once the iteration budget is spent.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Mapping

from godot_ai_builder.mcp_server.reports import isoformat_utc

SCHEMA_VERSION = "poc-quality-report-v1"
DEFAULT_MAX_ITERATIONS = 3
MAX_NEXT_ACTIONS = 8

SCORE_WEIGHTS: dict[str, int] = {
    "core_loop_fun": 20,
    "controls_game_feel": 20,
    "progression_variety": 20,
    "encounter_depth": 15,
    "visual_polish_cohesion": 15,
    "ux_onboarding_feedback": 10,
}

HARD_GATE_HINTS: dict[str, str] = {
    "zero_script_errors": "Fix all remaining script errors before attempting completion.",
    "no_critical_warnings": "Resolve critical warnings that impact runtime correctness.",
    "play_loop_complete": "Wire complete flow: menu -> gameplay -> win/lose -> restart/menu.",
    "controls_clear": "Improve control responsiveness and add in-game control guidance.",
    "no_soft_lock": "Remove dead-end states and verify at least 10 minutes of continuous play.",
    "quality_gates_passed": "Re-run objective quality gates and fix every failed gate hint.",
}

VISUAL_CHECK_HINTS: dict[str, str] = {
    "named_art_direction": "Define and apply one explicit art direction pillar across scenes and UI.",
    "palette_discipline": "Constrain palette and use accent colors intentionally.",
    "silhouette_readability": "Improve player/enemy/hazard silhouettes for fast gameplay readability.",
    "layering_depth": "Add stronger background/midground/foreground layering and depth cues.",
    "feedback_clarity": "Add distinct visual feedback for hit/death/pickup/ability events.",
    "ui_theme_consistency": "Style HUD/menu to match gameplay art direction.",
    "no_raw_placeholder_feel": "Replace or stylize placeholder visuals and default-looking UI elements.",
}


class ScoreError(ValueError):
    """A rubric score is missing, non-numeric, or outside 1..5."""


def normalize_checklist(source: Mapping[str, Any] | None, required: Mapping[str, str]) -> dict[str, bool]:
    source = source or {}
    return {key: bool(source.get(key)) for key in required}


def checklist_failures(checklist: Mapping[str, bool]) -> list[str]:
    return [name for name, passed in checklist.items() if not passed]


def normalize_scores(source: Mapping[str, Any] | None) -> dict[str, float]:
    source = source or {}
    scores: dict[str, float] = {}
    for key in SCORE_WEIGHTS:
        raw = source.get(key)
        try:
            value = float(raw)
        except (TypeError, ValueError):
            raise ScoreError(f"Missing numeric score for '{key}'") from None
        if value != value or value < 1 or value > 5:
            raise ScoreError(f"Score '{key}' must be between 1 and 5")
        scores[key] = int(value) if value.is_integer() else value
    return scores


def weighted_total(scores: Mapping[str, float]) -> float:
    total = sum(scores[key] / 5 * weight for key, weight in SCORE_WEIGHTS.items())
    return round(total, 1)


def next_actions(
    hard_failures: list[str],
    visual_failures: list[str],
    scores: Mapping[str, float],
    escalation_required: bool,
    max_actions: int = MAX_NEXT_ACTIONS,
) -> list[str]:
    actions = [HARD_GATE_HINTS.get(f, f"Fix hard gate: {f}") for f in hard_failures]
    actions += [VISUAL_CHECK_HINTS.get(f, f"Fix visual gate: {f}") for f in visual_failures]
    weakest = sorted(scores.items(), key=lambda item: item[1])[:2]
    actions += [f"Improve rubric category: {name}" for name, _ in weakest]
    if escalation_required:
        actions.append("Max quality iterations reached. Escalate for user direction before further loops.")
    # dict.fromkeys keeps first-seen order
    return list(dict.fromkeys(actions))[:max_actions]


def _positive_int(value: Any, default: int) -> int:
    try:
        return max(1, int(value))
    except (TypeError, ValueError):
        return default


def score_poc(
    scores: Mapping[str, Any] | None,
    hard_gates: Mapping[str, Any] | None = None,
    visual_checks: Mapping[str, Any] | None = None,
    iteration_count: Any = 1,
    max_iterations: Any = DEFAULT_MAX_ITERATIONS,
    signature_moments: list[Any] | None = None,
    benchmark_id: str = "",
    run_id: str = "",
    notes: str = "",
) -> dict[str, Any]:
    """Build the rubric report. Raises ScoreError for unusable scores."""
    normalized = normalize_scores(scores)
    iterations = _positive_int(iteration_count, 1)
    budget = _positive_int(max_iterations, DEFAULT_MAX_ITERATIONS)
    benchmark = benchmark_id or "poc_prompt_unknown"
    run = run_id or f"{benchmark}-{int(time.time() * 1000)}"
    moments = [m for m in (signature_moments or []) if isinstance(m, str) and m.strip()]

    gates = normalize_checklist(hard_gates, HARD_GATE_HINTS)
    visual = normalize_checklist(visual_checks, VISUAL_CHECK_HINTS)
    hard_failures = checklist_failures(gates)
    visual_failures = checklist_failures(visual)

    total = weighted_total(normalized)
    values = list(normalized.values())
    category_min_pass = all(v >= 3 for v in values)
    two_at_least_four = sum(1 for v in values if v >= 4) >= 2

    gates_passed = (
        not hard_failures
        and not visual_failures
        and total >= 80
        and category_min_pass
        and two_at_least_four
        and normalized["visual_polish_cohesion"] >= 4
    )
    very_good = (
        gates_passed
        and total >= 85
        and normalized["controls_game_feel"] >= 4
        and normalized["progression_variety"] >= 4
        and normalized["visual_polish_cohesion"] >= 4
        and len(moments) >= 2
    )
    escalation = not gates_passed and iterations >= budget
    if gates_passed:
        verdict = "go"
    elif escalation:
        verdict = "no_go"
    else:
        verdict = "needs_iteration"

    return {
        "ok": gates_passed,
        "phase_number": 6,
        "phase_name": "Final QA (PoC Rubric)",
        "schema_version": SCHEMA_VERSION,
        "benchmark_id": benchmark,
        "run_id": run,
        "timestamp_utc": isoformat_utc(datetime.now(timezone.utc)),
        "max_iterations": budget,
        "iteration_count": iterations,
        "objective_quality": {
            "gates_passed": not hard_failures,
            "failed_quality_gates": hard_failures,
            "quality_report_paths": [],
        },
        "hard_gates": gates,
        "anti_tutorial_visual_checks": visual,
        "hard_gate_failures": hard_failures,
        "anti_tutorial_failures": visual_failures,
        "scores": normalized,
        "weighted_total_score": total,
        "category_min_pass": category_min_pass,
        "two_categories_at_least_four": two_at_least_four,
        "signature_moments": moments,
        "very_good_status": very_good,
        "verdict": verdict,
        "escalation_required": escalation,
        "gates_passed": gates_passed,
        "next_actions": next_actions(hard_failures, visual_failures, normalized, escalation),
        "notes": notes if isinstance(notes, str) else "",
    }
