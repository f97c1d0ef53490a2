"""
Spike-timing-dependent plasticity on a single leaky integrate-and-fire layer.

Feature vectors are rate coded into Bernoulli spike trains. Weights change
by pair-based STDP implemented with exponentially decaying traces: a
presynaptic spike shortly before a postsynaptic spike potentiates the
synapse, the reverse order depresses it. Thresholds adapt homeostatically so
the layer fires near a target rate.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import asdict, dataclass
from typing import Dict, Optional

import numpy as np

from sentinel.types import TrainingConfig

logger = logging.getLogger(__name__)


@dataclass
class STDPConfig:
    """Configuration for SpikingNetwork and STDPLearner."""
    output_neurons: int = 16
    time_steps: int = 25
    max_spike_probability: float = 0.1
    rate_gain: float = 0.1
    tau_plus: float = 20.0
    tau_minus: float = 20.0
    a_plus: float = 1.0
    a_minus: float = 1.05
    lr_factor: float = 0.1
    w_min: float = 0.0
    w_max: float = 1.0
    membrane_decay: float = 0.9
    initial_threshold: float = 1.0
    threshold_min: float = 0.1
    threshold_max: float = 10.0
    target_rate: float = 0.05
    homeostasis_rate: float = 0.1
    spikes_per_label: float = 10.0


@dataclass
class STDPResult:
    accuracy: float
    duration_ms: float
    spike_count: int
    samples_processed: int

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


class SpikingNetwork:
    """Input layer fully connected to a LIF output layer."""

    def __init__(self, input_dim: int, config: Optional[STDPConfig] = None, rng: Optional[np.random.Generator] = None):
        self.config = config or STDPConfig()
        self.input_dim = input_dim
        rng = rng or np.random.default_rng()
        cfg = self.config
        self.weights = rng.uniform(cfg.w_min, cfg.w_min + 0.1 * (cfg.w_max - cfg.w_min), size=(input_dim, cfg.output_neurons))
        self.thresholds = np.full(cfg.output_neurons, cfg.initial_threshold)

    def step(self, potential: np.ndarray, pre_spikes: np.ndarray):
        """Integrate one time step. Returns (new potential, post spikes)."""
        potential = potential * self.config.membrane_decay + pre_spikes @ self.weights
        post = potential >= self.thresholds
        potential = np.where(post, 0.0, potential)
        return potential, post.astype(np.float64)

    def state_dict(self) -> Dict[str, np.ndarray]:
        return {"weights": self.weights.copy(), "thresholds": self.thresholds.copy()}

    def load_state_dict(self, state: Dict[str, np.ndarray]) -> None:
        if state["weights"].shape != self.weights.shape:
            raise ValueError(f"SNN weight shape mismatch: {state['weights'].shape} vs {self.weights.shape}")
        self.weights = np.array(state["weights"], dtype=np.float64, copy=True)
        self.thresholds = np.array(state["thresholds"], dtype=np.float64, copy=True)


class STDPLearner:
    """Trains a SpikingNetwork sample by sample."""

    def __init__(self, network: SpikingNetwork, rng: Optional[np.random.Generator] = None):
        self.network = network
        self.rng = rng or np.random.default_rng()

    @property
    def config(self) -> STDPConfig:
        return self.network.config

    def encode(self, features: np.ndarray) -> np.ndarray:
        """Rate-code one feature vector into a (time_steps, input_dim) 0/1 spike train."""
        cfg = self.config
        prob = np.minimum(np.abs(features) * cfg.rate_gain, cfg.max_spike_probability)
        return (self.rng.random((cfg.time_steps, features.shape[0])) < prob).astype(np.float64)

    def _run_sample(self, spikes_in: np.ndarray, eta: float) -> np.ndarray:
        """Simulate one spike train with plasticity on; returns per-neuron spike counts."""
        cfg = self.config
        net = self.network
        decay_plus = math.exp(-1.0 / cfg.tau_plus)
        decay_minus = math.exp(-1.0 / cfg.tau_minus)

        potential = np.zeros(cfg.output_neurons)
        pre_trace = np.zeros(net.input_dim)
        post_trace = np.zeros(cfg.output_neurons)
        counts = np.zeros(cfg.output_neurons)

        for pre in spikes_in:
            potential, post = net.step(potential, pre)
            pre_trace = pre_trace * decay_plus + pre
            post_trace = post_trace * decay_minus
            # pre before post -> LTP; post before pre -> LTD
            delta = cfg.a_plus * np.outer(pre_trace, post) - cfg.a_minus * np.outer(pre, post_trace)
            if delta.any():
                net.weights += eta * delta
                np.clip(net.weights, cfg.w_min, cfg.w_max, out=net.weights)
            post_trace = post_trace + post
            counts += post
        return counts

    def _homeostasis(self, counts: np.ndarray) -> None:
        cfg = self.config
        rate = counts / cfg.time_steps
        self.network.thresholds += cfg.homeostasis_rate * (rate - cfg.target_rate)
        np.clip(self.network.thresholds, cfg.threshold_min, cfg.threshold_max, out=self.network.thresholds)

    def train_stdp(self, features: np.ndarray, labels: np.ndarray, config: TrainingConfig) -> STDPResult:
        """
        One unsupervised pass over the batch.

        Accuracy is a proxy: per sample, 1 - |spikes - expected| / max(expected, 1)
        where expected = label * spikes_per_label, floored at zero.
        """
        start = time.perf_counter()
        cfg = self.config
        eta = config.learning_rate * cfg.lr_factor
        features = np.asarray(features, dtype=np.float64)
        labels = np.asarray(labels)

        total_spikes = 0
        scores = []
        for x, y in zip(features, labels):
            counts = self._run_sample(self.encode(x), eta)
            self._homeostasis(counts)
            actual = float(counts.sum())
            expected = float(y) * cfg.spikes_per_label
            scores.append(max(0.0, 1.0 - abs(actual - expected) / max(expected, 1.0)))
            total_spikes += int(actual)

        accuracy = float(np.mean(scores)) if scores else 0.0
        duration_ms = (time.perf_counter() - start) * 1000.0
        logger.debug(f"SNN phase: acc={accuracy:.3f} spikes={total_spikes} n={len(scores)}")
        return STDPResult(
            accuracy=accuracy,
            duration_ms=duration_ms,
            spike_count=total_spikes,
            samples_processed=len(scores),
        )
