"""
Core value types for on-device training.

Samples, priorities and the three per-mode training configurations. All of
them are immutable once built; the mode configurations are constructed once
at import time and shared.
"""

from __future__ import annotations

import itertools
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, Mapping, Optional, Sequence

import numpy as np


class TrainingMode(str, Enum):
    """Training intensity, ordered LIGHT < BALANCED < INTENSIVE."""
    LIGHT = "light"
    BALANCED = "balanced"
    INTENSIVE = "intensive"

    @property
    def rank(self) -> int:
        return _MODE_RANK[self]


_MODE_RANK = {TrainingMode.LIGHT: 0, TrainingMode.BALANCED: 1, TrainingMode.INTENSIVE: 2}


class TrainingPriority(IntEnum):
    """Sample urgency; lower value is more urgent."""
    CRITICAL = 1    # security update needed
    HIGH = 2        # significant false positives
    NORMAL = 3
    LOW = 4


_SEQ = itertools.count()


@dataclass(frozen=True)
class TrainingSample:
    """A labelled observation submitted by the inference engine."""
    features: np.ndarray
    label: int
    priority: TrainingPriority = TrainingPriority.NORMAL
    timestamp: float = field(default_factory=time.time)
    id: str = field(default_factory=lambda: f"sample_{uuid.uuid4().hex[:12]}")
    seq: int = field(default_factory=lambda: next(_SEQ))

    def __post_init__(self):
        features = np.array(self.features, dtype=np.float32).reshape(-1)
        features.setflags(write=False)
        object.__setattr__(self, "features", features)
        if not float(self.label).is_integer():
            raise ValueError(f"label must be an integer class index, got {self.label!r}")
        object.__setattr__(self, "label", int(self.label))
        object.__setattr__(self, "priority", TrainingPriority(self.priority))

    def sort_key(self):
        """Best first: priority ascending, then most recent."""
        return (int(self.priority), -self.timestamp, -self.seq)


@dataclass(frozen=True)
class TrainingConfig:
    """Resource and optimisation budget for one session in a given mode."""
    mode: TrainingMode
    max_battery_drain: float      # fraction of full charge per session
    max_memory_mb: int
    max_duration_minutes: float
    min_samples_required: int
    learning_rate: float
    batch_size: int
    epochs_per_session: int

    TUNABLES = (
        "min_samples_required",
        "learning_rate",
        "batch_size",
        "epochs_per_session",
        "max_duration_minutes",
        "max_battery_drain",
        "max_memory_mb",
    )

    @property
    def max_duration_seconds(self) -> float:
        return self.max_duration_minutes * 60.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        payload = {name: getattr(self, name) for name in self.TUNABLES}
        payload["mode"] = self.mode.value
        return payload

    @staticmethod
    def for_mode(mode: TrainingMode) -> "TrainingConfig":
        return MODE_CONFIGS[TrainingMode(mode)]


MODE_CONFIGS: Mapping[TrainingMode, TrainingConfig] = {
    TrainingMode.LIGHT: TrainingConfig(
        mode=TrainingMode.LIGHT,
        max_battery_drain=0.01,
        max_memory_mb=100,
        max_duration_minutes=5,
        min_samples_required=20,
        learning_rate=1e-4,
        batch_size=4,
        epochs_per_session=1,
    ),
    TrainingMode.BALANCED: TrainingConfig(
        mode=TrainingMode.BALANCED,
        max_battery_drain=0.02,
        max_memory_mb=200,
        max_duration_minutes=10,
        min_samples_required=50,
        learning_rate=1e-3,
        batch_size=8,
        epochs_per_session=3,
    ),
    TrainingMode.INTENSIVE: TrainingConfig(
        mode=TrainingMode.INTENSIVE,
        max_battery_drain=0.05,
        max_memory_mb=400,
        max_duration_minutes=20,
        min_samples_required=100,
        learning_rate=1e-2,
        batch_size=16,
        epochs_per_session=5,
    ),
}


@dataclass(frozen=True)
class GateResult:
    """Outcome of the ordered pre-session checks."""
    can_train: bool
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {"canTrain": self.can_train, "reason": self.reason}


@dataclass
class TrainingOutcome:
    """Soft result returned by a training attempt; never raised."""
    success: bool
    reason: Optional[str] = None
    error: Optional[str] = None
    duration_ms: float = 0.0
    session_id: Optional[str] = None
    metrics: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, omitting fields that do not apply."""
        payload: Dict[str, Any] = {"success": self.success}
        if self.reason is not None:
            payload["reason"] = self.reason
        if self.error is not None:
            payload["error"] = self.error
        if self.success:
            payload["duration"] = self.duration_ms
            payload["metrics"] = dict(self.metrics)
        return payload


def stack_samples(samples: Sequence[TrainingSample]):
    """Return (features, labels) arrays for a batch of samples."""
    if not samples:
        return np.zeros((0, 0), dtype=np.float32), np.zeros(0, dtype=np.int64)
    features = np.stack([s.features for s in samples]).astype(np.float32)
    labels = np.array([s.label for s in samples], dtype=np.int64)
    return features, labels
