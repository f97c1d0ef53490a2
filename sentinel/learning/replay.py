"""
Experience replay buffer.

Fixed-capacity circular store of past (features, label) pairs. Once full,
each insertion overwrites the oldest entry.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np


@dataclass
class ReplayConfig:
    """Configuration for ExperienceReplayBuffer."""
    capacity: int = 1000


@dataclass(frozen=True)
class ReplayBufferEntry:
    features: np.ndarray
    label: int
    timestamp: float


class ExperienceReplayBuffer:
    """Ring buffer backed by preallocated numpy arrays."""

    def __init__(self, feature_dim: int, config: Optional[ReplayConfig] = None, rng: Optional[np.random.Generator] = None):
        self.config = config or ReplayConfig()
        if self.config.capacity <= 0:
            raise ValueError("capacity must be positive")
        self.feature_dim = feature_dim
        self.rng = rng or np.random.default_rng()
        cap = self.config.capacity
        self._features = np.zeros((cap, feature_dim), dtype=np.float32)
        self._labels = np.zeros(cap, dtype=np.int64)
        self._timestamps = np.zeros(cap, dtype=np.float64)
        self._head = 0      # next write position
        self._size = 0

    def __len__(self) -> int:
        return self._size

    @property
    def capacity(self) -> int:
        return self.config.capacity

    def add(self, features: np.ndarray, labels: np.ndarray, timestamp: Optional[float] = None) -> None:
        """Insert a batch row by row, overwriting the oldest entries when full."""
        features = np.asarray(features, dtype=np.float32).reshape(-1, self.feature_dim)
        labels = np.asarray(labels, dtype=np.int64).reshape(-1)
        if features.shape[0] != labels.shape[0]:
            raise ValueError("features and labels must have the same length")
        now = time.time() if timestamp is None else timestamp
        cap = self.config.capacity
        for row, label in zip(features, labels):
            self._features[self._head] = row
            self._labels[self._head] = label
            self._timestamps[self._head] = now
            self._head = (self._head + 1) % cap
            self._size = min(self._size + 1, cap)

    def _ordered_indices(self) -> np.ndarray:
        if self._size < self.config.capacity:
            return np.arange(self._size)
        return (np.arange(self._size) + self._head) % self.config.capacity

    def sample(self, size: int):
        """Draw up to ``size`` entries uniformly without replacement."""
        size = min(max(int(size), 0), self._size)
        if size == 0:
            return np.zeros((0, self.feature_dim), dtype=np.float32), np.zeros(0, dtype=np.int64)
        idx = self.rng.choice(self._size, size=size, replace=False)
        return self._features[idx].copy(), self._labels[idx].copy()

    def entries(self) -> List[ReplayBufferEntry]:
        """All entries, oldest first."""
        return [
            ReplayBufferEntry(self._features[i].copy(), int(self._labels[i]), float(self._timestamps[i]))
            for i in self._ordered_indices()
        ]

    def state_dict(self) -> Dict[str, np.ndarray]:
        return {
            "features": self._features.copy(),
            "labels": self._labels.copy(),
            "timestamps": self._timestamps.copy(),
            "cursor": np.array([self._head, self._size], dtype=np.int64),
        }

    def load_state_dict(self, state: Dict[str, np.ndarray]) -> None:
        if state["features"].shape != self._features.shape:
            raise ValueError(f"replay shape mismatch: {state['features'].shape} vs {self._features.shape}")
        self._features = np.array(state["features"], dtype=np.float32, copy=True)
        self._labels = np.array(state["labels"], dtype=np.int64, copy=True)
        self._timestamps = np.array(state["timestamps"], dtype=np.float64, copy=True)
        self._head, self._size = (int(v) for v in state["cursor"])
