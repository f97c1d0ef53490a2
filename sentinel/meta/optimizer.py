"""
Meta-parameter optimizer for the intensive training phase.

Maintains a prior over the learner's multipliers (learning-rate scale and
EWC-lambda scale) and moves it Reptile-style toward a per-session target.
The interpolation factor shrinks under resource pressure and grows when the
device is charging. A sharp drop in session reward rolls the prior back to
the previous version.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

import numpy as np

logger = logging.getLogger(__name__)

META_KEYS = ("lr_scale", "ewc_scale")


@dataclass
class MetaOptimizerConfig:
    """Configuration for MetaParameterOptimizer."""
    beta_init: float = 0.1
    beta_max: float = 0.3
    beta_decay_rate: float = 0.8    # multiplier under resource pressure
    beta_growth_rate: float = 1.1   # multiplier while charging
    beta_min_factor: float = 0.5
    ema_alpha: float = 0.3
    rollback_delta: float = 0.1
    backup_versions: int = 10
    min_scale: float = 0.1
    max_scale: float = 10.0
    lr_step: float = 0.5
    ewc_step: float = 0.5


@dataclass
class MetaOptimizerState:
    prior: Dict[str, float] = field(default_factory=lambda: {k: 1.0 for k in META_KEYS})
    beta: float = 0.1
    reward_ema: float = 0.0
    history: List[Dict[str, float]] = field(default_factory=list)
    last_reward: float = 0.0
    steps: int = 0


class MetaParameterOptimizer:
    """Tunes IncrementalLearner multipliers from session outcomes."""

    def __init__(self, config: Optional[MetaOptimizerConfig] = None):
        self.config = config or MetaOptimizerConfig()
        self.state = MetaOptimizerState(beta=self.config.beta_init)

    @property
    def prior(self) -> Dict[str, float]:
        return dict(self.state.prior)

    def step(self, reward: float, loss_terms: Mapping[str, float], pressure: Mapping[str, float]) -> Dict[str, float]:
        """
        Update the prior from one session.

        Args:
            reward: Session reward (the ANN accuracy).
            loss_terms: Breakdown of the composite loss ("task", "ewc", "distillation").
            pressure: Resource profile; truthy "constrained" shrinks beta,
                truthy "charging" grows it.

        Returns:
            The multipliers to apply to the learner.
        """
        cfg = self.config
        state = self.state

        if state.steps and self.should_rollback(reward):
            restored = self.rollback()
            logger.info(f"Meta prior rolled back after reward drop to {reward:.3f}")
            self._update_reward(reward)
            return restored

        self._update_beta(pressure)
        self._record_history()

        # Improving reward pushes toward larger steps; a large regulariser
        # share relative to the task loss pushes toward weaker anchoring.
        improvement = float(np.clip(reward - state.reward_ema, -1.0, 1.0)) if state.steps else 0.0
        task = max(float(loss_terms.get("task", 0.0)), 1e-8)
        reg_share = float(loss_terms.get("distillation", 0.0) + loss_terms.get("ewc", 0.0)) / task
        target = {
            "lr_scale": state.prior["lr_scale"] * (1.0 + cfg.lr_step * improvement),
            "ewc_scale": state.prior["ewc_scale"] * (1.0 - cfg.ewc_step * float(np.clip(reg_share - 1.0, -1.0, 1.0))),
        }

        prior_vector = np.array([state.prior[k] for k in META_KEYS])
        target_vector = np.array([target[k] for k in META_KEYS])
        updated = np.clip(prior_vector + state.beta * (target_vector - prior_vector), cfg.min_scale, cfg.max_scale)
        state.prior = dict(zip(META_KEYS, updated.tolist()))
        state.steps += 1
        self._update_reward(reward)
        return dict(state.prior)

    def rollback(self) -> Dict[str, float]:
        """Restore the previous prior; a no-op without history."""
        if not self.state.history:
            return dict(self.state.prior)
        self.state.prior = self.state.history.pop()
        return dict(self.state.prior)

    def should_rollback(self, reward: float) -> bool:
        return self.state.reward_ema - reward > self.config.rollback_delta

    def _update_beta(self, pressure: Mapping[str, float]) -> None:
        cfg = self.config
        beta = self.state.beta
        if pressure.get("constrained"):
            beta *= cfg.beta_decay_rate
        if pressure.get("charging"):
            beta *= cfg.beta_growth_rate
        self.state.beta = min(cfg.beta_max, max(cfg.beta_init * cfg.beta_min_factor, beta))

    def _update_reward(self, reward: float) -> None:
        state = self.state
        if state.steps <= 1 and state.reward_ema == 0.0:
            state.reward_ema = reward
        else:
            alpha = self.config.ema_alpha
            state.reward_ema = (1 - alpha) * state.reward_ema + alpha * reward
        state.last_reward = reward

    def _record_history(self) -> None:
        state = self.state
        state.history.append(dict(state.prior))
        if len(state.history) > self.config.backup_versions:
            state.history = state.history[-self.config.backup_versions :]

    def state_dict(self) -> Dict[str, Any]:
        s = self.state
        return {
            "prior": dict(s.prior),
            "beta": s.beta,
            "reward_ema": s.reward_ema,
            "history": [dict(h) for h in s.history],
            "last_reward": s.last_reward,
            "steps": s.steps,
        }

    def load_state_dict(self, payload: Mapping[str, Any]) -> None:
        self.state = MetaOptimizerState(
            prior={k: float(v) for k, v in payload.get("prior", {k: 1.0 for k in META_KEYS}).items()},
            beta=float(payload.get("beta", self.config.beta_init)),
            reward_ema=float(payload.get("reward_ema", 0.0)),
            history=[dict(h) for h in payload.get("history", [])],
            last_reward=float(payload.get("last_reward", 0.0)),
            steps=int(payload.get("steps", 0)),
        )
