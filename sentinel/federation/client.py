"""
Federated client for opt-in model contributions.

After a successful session the client computes the parameter delta since its
last contribution, clips and noises it with the Gaussian mechanism, and
ships it to the aggregator through a transport. Only the privatised delta
and coarse metadata leave the device.
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import numpy as np

from sentinel.errors import FederationError
from sentinel.runtime import EventBus, get_bus
from .accountant import PrivacyAccountant
from .packets import FederatedUpdate
from .privacy import DifferentialPrivacy, PrivacyConfig
from .transport import BaseTransport, TransportConfig, build_transport

logger = logging.getLogger(__name__)

ANONYMOUS_ID_FILE = "anonymous_id"


@dataclass
class FederatedClientConfig:
    """Configuration for FederatedClient."""
    enabled: bool = False
    min_samples: int = 20
    total_epsilon: float = 10.0
    total_delta: float = 1e-4
    device_class: Optional[str] = None
    state_dir: Optional[Path] = None
    privacy: PrivacyConfig = field(default_factory=PrivacyConfig)
    transport: TransportConfig = field(default_factory=lambda: TransportConfig(protocol="loopback"))


def _flatten(params: Mapping[str, np.ndarray]) -> np.ndarray:
    return np.concatenate([np.asarray(params[k], dtype=np.float64).ravel() for k in sorted(params)])


class FederatedClient:
    """
    Prepares and submits privatised updates for one device install.

    The anonymous id is random, carries no link to account identity, and is
    stable across restarts when a state directory is configured.
    """

    def __init__(
        self,
        config: Optional[FederatedClientConfig] = None,
        transport: Optional[BaseTransport] = None,
        bus: Optional[EventBus] = None,
        device_class: str = "desktop",
        rng: Optional[np.random.Generator] = None,
    ):
        self.config = config or FederatedClientConfig()
        self.transport = transport or build_transport(self.config.transport)
        self.bus = bus or get_bus()
        self.device_class = self.config.device_class or device_class
        self.privacy = DifferentialPrivacy(self.config.privacy, rng=rng)
        self.accountant = PrivacyAccountant(self.config.total_epsilon, self.config.total_delta)
        self.anonymous_id = self._load_or_create_id()
        self._baseline: Optional[Dict[str, np.ndarray]] = None
        self._round = 0
        self.submitted = 0
        self.failed = 0

    def _load_or_create_id(self) -> str:
        state_dir = self.config.state_dir
        path = Path(state_dir) / ANONYMOUS_ID_FILE if state_dir else None
        if path is not None and path.exists():
            stored = path.read_text(encoding="utf-8").strip()
            if stored:
                return stored
        anonymous_id = f"anon_{secrets.token_hex(8)}"
        if path is not None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(anonymous_id, encoding="utf-8")
        return anonymous_id

    @property
    def baseline(self) -> Optional[Dict[str, np.ndarray]]:
        return self._baseline

    def set_baseline(self, params: Mapping[str, np.ndarray]) -> None:
        """Anchor future deltas at ``params`` (called once the global model is known)."""
        self._baseline = {k: np.array(v, copy=True) for k, v in params.items()}

    def should_contribute_to_federation(self, sample_count: int = 0) -> bool:
        cfg = self.config
        if not cfg.enabled:
            return False
        if sample_count < cfg.min_samples:
            return False
        return self.accountant.can_release(cfg.privacy.epsilon, cfg.privacy.delta)

    def prepare_update(self, sample_count: int, params: Mapping[str, np.ndarray]) -> FederatedUpdate:
        """
        Build a privatised update from the current model parameters.

        Args:
            sample_count: Samples consumed by the session.
            params: Current classifier parameters.

        Returns:
            FederatedUpdate holding the clipped, noised delta.

        Raises:
            FederationError: if the privacy budget is exhausted.
        """
        cfg = self.config.privacy
        if self._baseline is None:
            self.set_baseline({k: np.zeros_like(v) for k, v in params.items()})
        if not self.accountant.spend(cfg.epsilon, cfg.delta):
            raise FederationError("Privacy budget exhausted")

        delta = _flatten(params) - _flatten(self._baseline)
        noised, sigma = self.privacy.clip_and_noise(delta)
        self._round += 1
        self.set_baseline(params)
        return FederatedUpdate(
            anonymous_id=self.anonymous_id,
            delta=noised,
            sample_count=int(sample_count),
            device_class=self.device_class,
            timestamp=time.time(),
            parameter_shapes={k: list(np.shape(params[k])) for k in sorted(params)},
            sigma=sigma,
            epsilon=cfg.epsilon,
            dp_delta=cfg.delta,
            round_id=self._round,
        )

    async def submit(self, update: FederatedUpdate) -> bool:
        """Send an update; delivery failures are logged and reported as False."""
        payload = update.to_dict()
        try:
            await self.transport.send("sentinel.federated_update", payload)
        except FederationError as e:
            self.failed += 1
            logger.warning(f"Federated contribution not delivered: {e}")
            return False
        self.submitted += 1
        await self.bus.publish(
            "sentinel.federated_update",
            {
                "round_id": update.round_id,
                "sample_count": update.sample_count,
                "sigma": update.sigma,
                "timestamp": update.timestamp,
            },
        )
        return True

    def state_dict(self) -> Dict[str, Any]:
        return {
            "anonymous_id": self.anonymous_id,
            "round": self._round,
            "submitted": self.submitted,
            "failed": self.failed,
            "accountant": self.accountant.state_dict(),
            "baseline": None if self._baseline is None else {k: v.tolist() for k, v in self._baseline.items()},
        }

    def load_state_dict(self, payload: Mapping[str, Any]) -> None:
        self._round = int(payload.get("round", 0))
        self.submitted = int(payload.get("submitted", 0))
        self.failed = int(payload.get("failed", 0))
        self.accountant.load_state_dict(payload.get("accountant", {}))
        baseline = payload.get("baseline")
        self._baseline = None if baseline is None else {k: np.asarray(v, dtype=np.float64) for k, v in baseline.items()}
