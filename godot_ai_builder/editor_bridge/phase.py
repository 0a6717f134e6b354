"""Build-phase state owned by the bridge and mirrored to ``.claude/current_phase.json``."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Literal, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)

PhaseStatus = Literal["pending", "in_progress", "completed"]


class PhaseState(BaseModel):
    """Current build phase. Replaced wholesale on every update, never patched."""

    model_config = ConfigDict(frozen=True)

    phase_number: int = Field(default=0, ge=0)
    phase_name: str = ""
    status: PhaseStatus = "pending"
    quality_gates: dict[str, bool] = Field(default_factory=dict)


class PhaseStateRepository(Protocol):
    def load(self) -> PhaseState | None: ...

    def save(self, state: PhaseState) -> None: ...

    def delete(self) -> None: ...


class InMemoryPhaseStateRepository:
    def __init__(self, initial: PhaseState | None = None) -> None:
        self.state = initial
        self.saves = 0

    def load(self) -> PhaseState | None:
        return self.state

    def save(self, state: PhaseState) -> None:
        self.state = state
        self.saves += 1

    def delete(self) -> None:
        self.state = None


class FilePhaseStateRepository:
    """JSON file persistence. The file is the durability boundary across restarts."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> PhaseState | None:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            return PhaseState.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as exc:
            logger.warning("Ignoring unreadable phase state %s: %s", self.path, exc)
            return None

    def save(self, state: PhaseState) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(state.model_dump(), indent=2), encoding="utf-8")
        tmp.replace(self.path)

    def delete(self) -> None:
        self.path.unlink(missing_ok=True)


class PhaseStateStore:
    """The single live PhaseState, injected into the bridge's routing layer."""

    def __init__(self, repository: PhaseStateRepository) -> None:
        self._repository = repository
        self._state = repository.load() or PhaseState()

    @property
    def current(self) -> PhaseState:
        return self._state

    def replace(self, state: PhaseState) -> PhaseState:
        self._state = state
        self._repository.save(state)
        logger.info(
            "Phase %d (%s) -> %s", state.phase_number, state.phase_name or "?", state.status
        )
        return state

    def reset(self) -> None:
        self._state = PhaseState()
        self._repository.delete()
