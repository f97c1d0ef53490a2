"""
Payload schema for federated contributions.

An update carries a noised parameter delta and coarse metadata only; raw
samples never appear in it. Updates are built per contribution and never
persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List
import time

import numpy as np


@dataclass
class FederatedUpdate:
    """One device's privatised contribution to a federated round."""
    anonymous_id: str
    delta: np.ndarray
    sample_count: int
    device_class: str
    timestamp: float = field(default_factory=time.time)
    parameter_shapes: Dict[str, List[int]] = field(default_factory=dict)
    sigma: float = 0.0
    epsilon: float = 0.0
    dp_delta: float = 0.0
    round_id: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-ready dictionary."""
        return {
            "anonymous_id": self.anonymous_id,
            "delta": np.asarray(self.delta, dtype=np.float64).tolist(),
            "sample_count": int(self.sample_count),
            "device_class": self.device_class,
            "timestamp": float(self.timestamp),
            "parameter_shapes": {k: list(v) for k, v in self.parameter_shapes.items()},
            "privacy": {
                "sigma": float(self.sigma),
                "epsilon": float(self.epsilon),
                "delta": float(self.dp_delta),
            },
            "round_id": int(self.round_id),
        }

    @staticmethod
    def from_dict(payload: Dict[str, Any]) -> "FederatedUpdate":
        """Create from dictionary."""
        privacy = payload.get("privacy", {})
        return FederatedUpdate(
            anonymous_id=payload["anonymous_id"],
            delta=np.asarray(payload["delta"], dtype=np.float64),
            sample_count=int(payload["sample_count"]),
            device_class=payload["device_class"],
            timestamp=float(payload.get("timestamp", time.time())),
            parameter_shapes={k: list(v) for k, v in payload.get("parameter_shapes", {}).items()},
            sigma=float(privacy.get("sigma", 0.0)),
            epsilon=float(privacy.get("epsilon", 0.0)),
            dp_delta=float(privacy.get("delta", 0.0)),
            round_id=int(payload.get("round_id", 0)),
        )
