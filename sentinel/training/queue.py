"""
Bounded, priority-ordered store of incoming training samples.

The queue is owned by the training orchestrator; nothing else mutates it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

from sentinel.types import TrainingPriority, TrainingSample

logger = logging.getLogger(__name__)


@dataclass
class QueueConfig:
    """Configuration for TrainingQueue."""
    capacity: int = 1000
    retention_ratio: float = 0.8


class TrainingQueue:
    """
    Multiset of samples bounded at ``capacity``.

    When an insertion pushes the size past capacity the queue keeps the best
    ``retention_ratio`` share, ranked by priority and then recency, and drops
    the rest.
    """

    def __init__(self, config: Optional[QueueConfig] = None):
        self.config = config or QueueConfig()
        if self.config.capacity <= 0:
            raise ValueError("capacity must be positive")
        if not 0.0 < self.config.retention_ratio <= 1.0:
            raise ValueError("retention_ratio must be in (0, 1]")
        self._samples: List[TrainingSample] = []
        self._evicted_total = 0

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self):
        return iter(list(self._samples))

    def __contains__(self, sample_id: object) -> bool:
        return any(s.id == sample_id for s in self._samples)

    @property
    def capacity(self) -> int:
        return self.config.capacity

    @property
    def retention_target(self) -> int:
        return max(1, int(self.config.capacity * self.config.retention_ratio))

    @property
    def evicted_total(self) -> int:
        return self._evicted_total

    def push(self, sample: TrainingSample) -> int:
        """
        Add a sample, evicting if the capacity is exceeded.

        Returns:
            Number of samples evicted by this insertion.
        """
        self._samples.append(sample)
        if len(self._samples) <= self.config.capacity:
            return 0
        ranked = sorted(self._samples, key=TrainingSample.sort_key)
        keep = self.retention_target
        evicted = len(ranked) - keep
        self._samples = ranked[:keep]
        self._evicted_total += evicted
        logger.info(f"Training queue over capacity; evicted {evicted} samples (kept {keep})")
        return evicted

    def select_batch(self, limit: int) -> List[TrainingSample]:
        """Return up to ``limit`` samples, highest priority and most recent first."""
        if limit <= 0:
            return []
        return sorted(self._samples, key=TrainingSample.sort_key)[:limit]

    def remove(self, sample_ids: Iterable[str]) -> int:
        """Drop consumed samples. Returns how many were removed."""
        ids = set(sample_ids)
        before = len(self._samples)
        self._samples = [s for s in self._samples if s.id not in ids]
        return before - len(self._samples)

    def count_by_priority(self) -> dict:
        counts = {p.name: 0 for p in TrainingPriority}
        for sample in self._samples:
            counts[sample.priority.name] += 1
        return counts

    def snapshot(self) -> List[TrainingSample]:
        """Samples in best-first order (copies of references; samples are immutable)."""
        return sorted(self._samples, key=TrainingSample.sort_key)
