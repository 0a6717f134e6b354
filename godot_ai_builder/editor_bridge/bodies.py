"""Per-endpoint request bodies, with defaults applied at the HTTP boundary.

Phase updates never fail validation: a field of the wrong type or out of
range falls back to its default, so ``POST /phase`` always stores a state.
Node edits only require the fields that name what to change.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from godot_ai_builder.editor_bridge.phase import PhaseState, PhaseStatus

_STATUSES = ("pending", "in_progress", "completed")


class _Body(BaseModel):
    model_config = ConfigDict(extra="ignore")


class RunRequest(_Body):
    scene_path: str | None = None


class LogRequest(_Body):
    message: str | None = None


class PhaseUpdateRequest(_Body):
    phase_number: int = 0
    phase_name: str = ""
    status: PhaseStatus = "pending"
    quality_gates: dict[str, bool] = Field(default_factory=dict)

    @field_validator("phase_number", mode="before")
    @classmethod
    def _coerce_number(cls, value: Any) -> int:
        if isinstance(value, bool):
            return 0
        try:
            number = int(value)
        except (TypeError, ValueError, OverflowError):
            return 0
        return max(number, 0)

    @field_validator("phase_name", mode="before")
    @classmethod
    def _coerce_name(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: Any) -> str:
        return value if value in _STATUSES else "pending"

    @field_validator("quality_gates", mode="before")
    @classmethod
    def _coerce_gates(cls, value: Any) -> dict[str, bool]:
        if not isinstance(value, dict):
            return {}
        return {str(name): bool(passed) for name, passed in value.items()}

    def to_state(self) -> PhaseState:
        return PhaseState(
            phase_number=self.phase_number,
            phase_name=self.phase_name,
            status=self.status,
            quality_gates=dict(self.quality_gates),
        )


class AddNodeRequest(_Body):
    scene_path: str | None = None
    parent_path: str = "."
    node_name: str
    node_type: str
    properties: dict[str, Any] = Field(default_factory=dict)


class UpdateNodeRequest(_Body):
    scene_path: str | None = None
    node_path: str
    properties: dict[str, Any]


class DeleteNodeRequest(_Body):
    scene_path: str | None = None
    node_path: str
