"""
Incremental learner with anti-forgetting regularisation.

Each session trains the feed-forward classifier on the new batch plus a
replay draw, minimising

    task cross-entropy + lambda * EWC penalty + mu * distillation

where the distillation term pulls the softened outputs toward a frozen
reference copy of the model taken at the last checkpoint. The Fisher
estimate from a session is held as pending until ``consolidate()`` commits
it, so a failed session leaves the EWC anchor untouched.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Dict, Optional, Tuple

import numpy as np

from sentinel.errors import TrainingError
from sentinel.learning.ewc import ElasticWeightConsolidation
from sentinel.learning.model import FeedForwardClassifier, Params, log_softmax, one_hot, softmax
from sentinel.learning.replay import ExperienceReplayBuffer
from sentinel.types import TrainingConfig

logger = logging.getLogger(__name__)


@dataclass
class IncrementalConfig:
    """Configuration for IncrementalLearner."""
    ewc_lambda: float = 0.1
    distillation_weight: float = 0.3
    temperature: float = 3.0
    fisher_decay: float = 0.9
    beta1: float = 0.9
    beta2: float = 0.999
    eps: float = 1e-8
    grad_clip: float = 5.0


@dataclass
class IncrementalResult:
    loss: float
    accuracy: float
    duration_ms: float
    samples_processed: int
    loss_terms: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


class AdamOptimizer:
    """Adam over a dict of numpy parameters; updates in place."""

    def __init__(self, lr: float, beta1: float = 0.9, beta2: float = 0.999, eps: float = 1e-8):
        self.lr = lr
        self.beta1 = beta1
        self.beta2 = beta2
        self.eps = eps
        self.t = 0
        self.m: Params = {}
        self.v: Params = {}

    def step(self, params: Params, grads: Params) -> None:
        self.t += 1
        for name, grad in grads.items():
            m = self.m.get(name, np.zeros_like(grad))
            v = self.v.get(name, np.zeros_like(grad))
            m = self.beta1 * m + (1 - self.beta1) * grad
            v = self.beta2 * v + (1 - self.beta2) * grad * grad
            self.m[name], self.v[name] = m, v
            m_hat = m / (1 - self.beta1 ** self.t)
            v_hat = v / (1 - self.beta2 ** self.t)
            params[name] -= self.lr * m_hat / (np.sqrt(v_hat) + self.eps)


class IncrementalLearner:
    """Owns the classifier, its frozen reference copy, the EWC state and the replay buffer."""

    def __init__(
        self,
        model: FeedForwardClassifier,
        replay: ExperienceReplayBuffer,
        config: Optional[IncrementalConfig] = None,
    ):
        self.model = model
        self.replay = replay
        self.config = config or IncrementalConfig()
        self.reference = model.copy()
        self.ewc = ElasticWeightConsolidation(decay=self.config.fisher_decay)
        # Multipliers tuned by the meta-parameter phase.
        self.lr_scale = 1.0
        self.ewc_scale = 1.0
        self._pending_fisher: Optional[Params] = None

    def replay_draw_size(self, batch_size: int) -> int:
        return min(batch_size // 2, len(self.replay))

    def scales(self) -> Dict[str, float]:
        return {"lr_scale": float(self.lr_scale), "ewc_scale": float(self.ewc_scale)}

    def set_scales(self, scales: Dict[str, float]) -> None:
        self.lr_scale = float(scales.get("lr_scale", self.lr_scale))
        self.ewc_scale = float(scales.get("ewc_scale", self.ewc_scale))

    def composite_loss(
        self, features: np.ndarray, labels: np.ndarray, reference_probs: np.ndarray
    ) -> Tuple[float, Dict[str, float], Params]:
        """Return (total loss, per-term breakdown, gradients) for the current parameters."""
        cfg = self.config
        n = max(features.shape[0], 1)
        temperature = cfg.temperature
        logits, cache = self.model.forward(features)

        targets = one_hot(labels, self.model.num_classes)
        task = float(-(targets * log_softmax(logits)).sum() / n)
        dlogits = (softmax(logits) - targets) / n

        # KL(reference || student) on softened outputs, scaled by T^2
        log_student = log_softmax(logits, temperature)
        log_reference = np.log(np.clip(reference_probs, 1e-12, None))
        distill = float((reference_probs * (log_reference - log_student)).sum() / n) * temperature ** 2
        dlogits += cfg.distillation_weight * temperature * (np.exp(log_student) - reference_probs) / n

        grads = self.model.backward(cache, dlogits)

        ewc_weight = cfg.ewc_lambda * self.ewc_scale
        ewc_penalty = self.ewc.penalty(self.model.params)
        if self.ewc.active:
            for name, g in self.ewc.penalty_gradient(self.model.params).items():
                grads[name] += ewc_weight * g

        total = task + ewc_weight * ewc_penalty + cfg.distillation_weight * distill
        terms = {"task": task, "ewc": ewc_penalty, "distillation": distill}
        return total, terms, grads

    def _clip(self, grads: Params) -> Params:
        norm = float(np.sqrt(sum(np.sum(g * g) for g in grads.values())))
        if norm > self.config.grad_clip > 0:
            scale = self.config.grad_clip / norm
            return {k: g * scale for k, g in grads.items()}
        return grads

    def train_incremental(self, features: np.ndarray, labels: np.ndarray, config: TrainingConfig) -> IncrementalResult:
        """
        Run one incremental session on ``features``/``labels``.

        Args:
            features: New samples, shape (n, feature_dim).
            labels: Integer class labels, shape (n,).
            config: Per-mode budget; supplies learning rate, batch size and epochs.

        Returns:
            IncrementalResult with the post-training loss and accuracy on the
            combined (new + replay) batch.

        Raises:
            TrainingError: if the batch is empty or the loss diverges.
        """
        start = time.perf_counter()
        features = np.asarray(features, dtype=np.float32)
        labels = np.asarray(labels, dtype=np.int64)

        replay_x, replay_y = self.replay.sample(self.replay_draw_size(config.batch_size))
        if len(replay_y):
            batch_x = np.concatenate([features, replay_x])
            batch_y = np.concatenate([labels, replay_y])
        else:
            batch_x, batch_y = features, labels
        if batch_x.shape[0] == 0:
            raise TrainingError("Empty training batch")

        cfg = self.config
        optimizer = AdamOptimizer(config.learning_rate * self.lr_scale, cfg.beta1, cfg.beta2, cfg.eps)
        reference_probs = softmax(self.reference.logits(batch_x), cfg.temperature)

        for epoch in range(config.epochs_per_session):
            loss, _, grads = self.composite_loss(batch_x, batch_y, reference_probs)
            if not np.isfinite(loss):
                raise TrainingError(f"Non-finite loss at epoch {epoch}")
            optimizer.step(self.model.params, self._clip(grads))

        loss, terms, _ = self.composite_loss(batch_x, batch_y, reference_probs)
        if not np.isfinite(loss):
            raise TrainingError("Non-finite loss after training")
        accuracy = self.model.accuracy(batch_x, batch_y)

        self.replay.add(features, labels)
        self._pending_fisher = self.model.per_sample_squared_gradients(batch_x, batch_y)

        duration_ms = (time.perf_counter() - start) * 1000.0
        logger.debug(f"ANN phase: loss={loss:.4f} acc={accuracy:.3f} n={batch_x.shape[0]}")
        return IncrementalResult(
            loss=float(loss),
            accuracy=float(accuracy),
            duration_ms=duration_ms,
            samples_processed=int(batch_x.shape[0]),
            loss_terms=terms,
        )

    @property
    def has_pending_consolidation(self) -> bool:
        return self._pending_fisher is not None

    def consolidate(self) -> None:
        """Commit the pending Fisher estimate and refresh the reference model."""
        if self._pending_fisher is None:
            return
        self.ewc.consolidate(self.model.state_dict(), self._pending_fisher)
        self.reference = self.model.copy()
        self._pending_fisher = None

    def discard_pending(self) -> None:
        self._pending_fisher = None
