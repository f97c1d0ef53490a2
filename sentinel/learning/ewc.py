"""
Elastic weight consolidation.

Penalises drift of parameters that mattered for previously learned data,
weighted by a diagonal Fisher-information estimate. Consolidation is online:
each commit blends the new Fisher into the running one instead of keeping a
separate term per session.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional

import numpy as np

from sentinel.learning.model import Params

logger = logging.getLogger(__name__)


class ElasticWeightConsolidation:
    """Holds the consolidated Fisher diagonal and the optimal parameters."""

    def __init__(self, decay: float = 0.9):
        if not 0.0 <= decay <= 1.0:
            raise ValueError("decay must be in [0, 1]")
        self.decay = decay
        self.fisher: Dict[str, np.ndarray] = {}
        self.optimal: Dict[str, np.ndarray] = {}
        self.consolidations = 0

    @property
    def active(self) -> bool:
        return bool(self.fisher)

    def penalty(self, params: Params) -> float:
        """0.5 * sum F * (theta - theta*)^2 over all consolidated parameters."""
        if not self.active:
            return 0.0
        total = 0.0
        for name, fisher in self.fisher.items():
            diff = params[name] - self.optimal[name]
            total += float(np.sum(fisher * diff * diff))
        return 0.5 * total

    def penalty_gradient(self, params: Params) -> Params:
        if not self.active:
            return {name: np.zeros_like(value) for name, value in params.items()}
        return {name: self.fisher[name] * (params[name] - self.optimal[name]) for name in params}

    def consolidate(self, params: Params, fisher: Params) -> None:
        """Commit ``params`` as the new anchor and fold ``fisher`` into the running estimate."""
        if self.active:
            self.fisher = {k: self.decay * self.fisher[k] + fisher[k] for k in fisher}
        else:
            self.fisher = {k: v.copy() for k, v in fisher.items()}
        self.optimal = {k: v.copy() for k, v in params.items()}
        self.consolidations += 1
        logger.debug(f"EWC consolidated (n={self.consolidations})")

    def state_dict(self) -> Dict[str, np.ndarray]:
        state = {f"fisher.{k}": v.copy() for k, v in self.fisher.items()}
        state.update({f"optimal.{k}": v.copy() for k, v in self.optimal.items()})
        state["consolidations"] = np.array([self.consolidations], dtype=np.int64)
        return state

    def load_state_dict(self, state: Optional[Dict[str, np.ndarray]]) -> None:
        state = state or {}
        self.fisher = {k.split(".", 1)[1]: np.array(v, copy=True) for k, v in state.items() if k.startswith("fisher.")}
        self.optimal = {k.split(".", 1)[1]: np.array(v, copy=True) for k, v in state.items() if k.startswith("optimal.")}
        counter = state.get("consolidations")
        self.consolidations = int(counter[0]) if counter is not None else 0
