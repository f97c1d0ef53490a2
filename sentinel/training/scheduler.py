"""
Time-of-day scheduler for background training.

This module declares recurring training windows (for example "02:00-05:00
while charging") and answers whether a given hour falls inside any of them.
Window conditions are carried as plain strings; evaluating them against the
current resource snapshot is the orchestrator's job, so time policy and
resource policy can evolve independently.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrainingWindow:
    """A recurring daily interval [start_hour, end_hour) with a resource condition."""
    start_hour: int
    end_hour: int
    condition: str = "always"
    max_duration_minutes: float = 30.0

    def __post_init__(self):
        if not 0 <= self.start_hour <= 23:
            raise ValueError(f"start_hour must be in [0, 23], got {self.start_hour}")
        if not 0 < self.end_hour <= 24:
            raise ValueError(f"end_hour must be in (0, 24], got {self.end_hour}")
        if self.max_duration_minutes <= 0:
            raise ValueError("max_duration_minutes must be positive")

    def contains(self, hour: int) -> bool:
        """True if ``hour`` lies inside the window; start > end wraps past midnight."""
        hour = int(hour) % 24
        if self.start_hour < self.end_hour:
            return self.start_hour <= hour < self.end_hour
        if self.start_hour > self.end_hour:
            return hour >= self.start_hour or hour < self.end_hour
        return False

    @classmethod
    def from_dict(cls, payload: dict) -> "TrainingWindow":
        """Create from a dict using either snake_case or camelCase keys."""
        duration = payload.get("max_duration_minutes", payload.get("maxDurationMinutes", payload.get("maxDuration", 30.0)))
        return cls(
            start_hour=int(payload.get("start_hour", payload.get("startHour"))),
            end_hour=int(payload.get("end_hour", payload.get("endHour"))),
            condition=str(payload.get("condition", "always")),
            max_duration_minutes=float(duration),
        )


DEFAULT_WINDOWS = (
    TrainingWindow(2, 5, "charging", 30),
    TrainingWindow(12, 13, "idle_and_charging", 10),
    TrainingWindow(22, 23, "wifi_connected", 15),
)


class TrainingScheduler:
    """
    Holds the declared training windows.

    Windows are additive: an hour is a training window if any declared window
    contains it.
    """

    def __init__(self, windows: Optional[Iterable[TrainingWindow]] = None):
        self._windows: List[TrainingWindow] = []
        if windows is not None:
            self.define_windows(windows)

    @property
    def windows(self) -> Sequence[TrainingWindow]:
        return tuple(self._windows)

    def define_windows(self, windows: Iterable) -> None:
        """Replace the declared windows. Accepts TrainingWindow objects or dicts."""
        parsed = [w if isinstance(w, TrainingWindow) else TrainingWindow.from_dict(w) for w in windows]
        self._windows = parsed
        logger.info(f"Training windows defined: {[(w.start_hour, w.end_hour, w.condition) for w in parsed]}")

    def add_window(self, window: TrainingWindow) -> None:
        self._windows.append(window)

    def is_window(self, hour: int) -> bool:
        """Return True if ``hour`` falls inside any declared window."""
        return any(w.contains(hour) for w in self._windows)

    def active_windows(self, hour: int) -> List[TrainingWindow]:
        """All windows containing ``hour``, in declaration order."""
        return [w for w in self._windows if w.contains(hour)]
