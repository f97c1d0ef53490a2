"""
Privacy budget accounting for federated contributions.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Tuple


class PrivacyAccountant:
    """
    Tracks the (epsilon, delta) spent by this install across contributions.

    Uses simple composition, which is conservative.
    """

    def __init__(self, total_epsilon: float, total_delta: float):
        self.total_epsilon = total_epsilon
        self.total_delta = total_delta
        self._spent_epsilon: float = 0.0
        self._spent_delta: float = 0.0
        self._release_count: int = 0

    def spend(self, epsilon: float, delta: float) -> bool:
        """Record a release. Returns False (and spends nothing) if it would exceed the budget."""
        if not self.can_release(epsilon, delta):
            return False
        self._spent_epsilon += epsilon
        self._spent_delta += delta
        self._release_count += 1
        return True

    def can_release(self, epsilon: float, delta: float) -> bool:
        if self._spent_epsilon + epsilon > self.total_epsilon + 1e-12:
            return False
        if self._spent_delta + delta > self.total_delta + 1e-18:
            return False
        return True

    def remaining(self) -> Tuple[float, float]:
        """Return remaining (epsilon, delta) budget."""
        return (
            max(0.0, self.total_epsilon - self._spent_epsilon),
            max(0.0, self.total_delta - self._spent_delta),
        )

    @property
    def release_count(self) -> int:
        return self._release_count

    def state_dict(self) -> Dict[str, Any]:
        return {
            "spent_epsilon": self._spent_epsilon,
            "spent_delta": self._spent_delta,
            "release_count": self._release_count,
        }

    def load_state_dict(self, payload: Mapping[str, Any]) -> None:
        self._spent_epsilon = float(payload.get("spent_epsilon", 0.0))
        self._spent_delta = float(payload.get("spent_delta", 0.0))
        self._release_count = int(payload.get("release_count", 0))
