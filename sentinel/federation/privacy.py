"""
Differential-privacy mechanisms for federated contributions.

Implements L2 clipping and calibrated noise injection (Gaussian or Laplace)
on a model delta before it leaves the device.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

import numpy as np


@dataclass
class PrivacyConfig:
    """Configuration for DifferentialPrivacy."""
    epsilon: float = 1.0
    delta: float = 1e-5
    clip_norm: float = 1.0
    noise_sigma: float = 0.0            # explicit override; 0 derives sigma from (epsilon, delta)
    noise_type: str = "gaussian"        # gaussian | laplace


class DifferentialPrivacy:
    """
    Clips and noises vectors.

    With the Gaussian mechanism, sigma = S * sqrt(2 ln(1.25 / delta)) / epsilon.
    With Laplace, the scale is S / epsilon. S is the L2 sensitivity, which
    callers pass explicitly or leave to be taken from the vector's own norm.
    """

    def __init__(self, config: Optional[PrivacyConfig] = None, rng: Optional[np.random.Generator] = None):
        self.config = config or PrivacyConfig()
        self.rng = rng or np.random.default_rng()
        if self.config.epsilon <= 0 and self.config.noise_sigma <= 0:
            raise ValueError("epsilon must be positive unless noise_sigma is set")

    def clip(self, vector: np.ndarray, max_norm: Optional[float] = None) -> np.ndarray:
        """Scale ``vector`` down so its L2 norm is at most ``max_norm``."""
        bound = self.config.clip_norm if max_norm is None else max_norm
        array = np.asarray(vector, dtype=np.float64)
        norm = float(np.linalg.norm(array))
        if bound > 0 and norm > bound:
            return array * (bound / norm)
        return array.copy()

    def resolve_sigma(self, sensitivity: float) -> float:
        cfg = self.config
        if cfg.noise_sigma > 0:
            return cfg.noise_sigma
        if cfg.noise_type.lower() == "laplace":
            return sensitivity / cfg.epsilon
        if cfg.delta > 0:
            return sensitivity * math.sqrt(2 * math.log(1.25 / cfg.delta)) / cfg.epsilon
        return 0.0

    def add_noise(self, vector: np.ndarray, sensitivity: Optional[float] = None) -> np.ndarray:
        """
        Return a noised copy of ``vector`` with the same length.

        Args:
            vector: Values to privatise.
            sensitivity: L2 sensitivity; defaults to the vector's L2 norm.
        """
        array = np.asarray(vector, dtype=np.float64)
        if sensitivity is None:
            sensitivity = float(np.linalg.norm(array))
        sigma = self.resolve_sigma(sensitivity)
        if sigma <= 0:
            return array.copy()
        if self.config.noise_type.lower() == "laplace":
            noise = self.rng.laplace(0.0, sigma, size=array.shape)
        else:
            noise = self.rng.normal(0.0, sigma, size=array.shape)
        return array + noise

    def clip_and_noise(self, vector: np.ndarray):
        """Clip to ``clip_norm`` then noise with sensitivity min(norm, clip). Returns (noised, sigma)."""
        clipped = self.clip(vector)
        norm = float(np.linalg.norm(clipped))
        bound = self.config.clip_norm
        sensitivity = min(norm, bound) if bound > 0 else norm
        sigma = self.resolve_sigma(sensitivity)
        return self.add_noise(clipped, sensitivity=sensitivity), sigma
