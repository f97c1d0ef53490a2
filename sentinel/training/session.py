"""
Training session aggregate and its immutable history record.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from sentinel.errors import TrainingError
from sentinel.types import TrainingMode


class SessionState(str, Enum):
    """Orchestrator states; a session records the ones it passes through."""
    IDLE = "idle"
    GATING = "gating"
    BATCHING = "batching"
    TRAINING_ANN = "training_ann"
    TRAINING_SNN = "training_snn"
    TRAINING_META = "training_meta"
    CHECKPOINTING = "checkpointing"
    FEDERATING = "federating"
    FAILED = "failed"


def _result_payload(result: Any) -> Any:
    to_dict = getattr(result, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return result


@dataclass(frozen=True)
class SessionRecord:
    """Closed session, as stored in TrainingHistory."""
    session_id: str
    mode: str
    started_at: float
    finished_at: float
    success: bool
    sample_count: int
    states: Tuple[str, ...]
    results: Dict[str, Any]
    skipped_phases: Tuple[str, ...] = ()
    budget_note: Optional[str] = None
    error: Optional[str] = None

    @property
    def duration_ms(self) -> float:
        return (self.finished_at - self.started_at) * 1000.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "mode": self.mode,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "duration_ms": self.duration_ms,
            "success": self.success,
            "sample_count": self.sample_count,
            "states": list(self.states),
            "results": self.results,
            "skipped_phases": list(self.skipped_phases),
            "budget_note": self.budget_note,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "SessionRecord":
        return cls(
            session_id=payload["session_id"],
            mode=payload["mode"],
            started_at=float(payload["started_at"]),
            finished_at=float(payload["finished_at"]),
            success=bool(payload["success"]),
            sample_count=int(payload.get("sample_count", 0)),
            states=tuple(payload.get("states", ())),
            results=dict(payload.get("results", {})),
            skipped_phases=tuple(payload.get("skipped_phases", ())),
            budget_note=payload.get("budget_note"),
            error=payload.get("error"),
        )


@dataclass
class TrainingSession:
    """Mutable while running; frozen into a SessionRecord by close()."""
    mode: TrainingMode
    sample_count: int = 0
    id: str = field(default_factory=lambda: f"session_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}")
    started_at: float = field(default_factory=time.time)
    results: Dict[str, Any] = field(default_factory=dict)
    states: List[SessionState] = field(default_factory=list)
    skipped_phases: List[str] = field(default_factory=list)
    budget_note: Optional[str] = None
    error: Optional[str] = None
    _record: Optional[SessionRecord] = field(default=None, repr=False)

    @property
    def closed(self) -> bool:
        return self._record is not None

    def _check_open(self) -> None:
        if self._record is not None:
            raise TrainingError(f"Session {self.id} is closed")

    def transition(self, state: SessionState) -> None:
        self._check_open()
        self.states.append(SessionState(state))

    def add_result(self, phase: str, result: Any) -> None:
        self._check_open()
        self.results[phase] = result

    def skip(self, phase: str, note: str) -> None:
        self._check_open()
        self.skipped_phases.append(phase)
        self.budget_note = note

    def mark_failed(self, error: str) -> None:
        self._check_open()
        self.error = error
        self.states.append(SessionState.FAILED)

    def get_metrics(self) -> Dict[str, Any]:
        return {
            "session_id": self.id,
            "mode": self.mode.value,
            "duration_ms": (time.time() - self.started_at) * 1000.0,
            "components": list(self.results),
            "results": {k: _result_payload(v) for k, v in self.results.items()},
            "sample_count": self.sample_count,
            "skipped_phases": list(self.skipped_phases),
        }

    def close(self, success: bool) -> SessionRecord:
        """Freeze the session. Any later mutation raises TrainingError."""
        self._check_open()
        self._record = SessionRecord(
            session_id=self.id,
            mode=self.mode.value,
            started_at=self.started_at,
            finished_at=time.time(),
            success=success,
            sample_count=self.sample_count,
            states=tuple(s.value for s in self.states),
            results={k: _result_payload(v) for k, v in self.results.items()},
            skipped_phases=tuple(self.skipped_phases),
            budget_note=self.budget_note,
            error=self.error,
        )
        return self._record
