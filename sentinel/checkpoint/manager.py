"""
Checkpointing of all learnable state.

The manager captures a typed, immutable snapshot of every learnable
component (classifier, reference model, EWC anchor, replay buffer, spiking
network, meta-optimizer, federated client) and holds exactly one of them as
"current". A session's mutations become durable only when ``save`` swaps in
a new checkpoint; ``restore`` puts every component back to the current one.
"""

from __future__ import annotations

import dataclasses
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

import numpy as np

from sentinel.errors import CheckpointError, CheckpointRestoreError
from sentinel.federation import FederatedClient
from sentinel.learning import IncrementalLearner, STDPLearner
from sentinel.meta import MetaParameterOptimizer
from .storage import CheckpointStorage

logger = logging.getLogger(__name__)

CHECKPOINT_VERSION = 1

ARRAY_GROUPS = ("ann", "reference", "ewc", "replay", "snn")


def _frozen(arrays: Mapping[str, np.ndarray]) -> Dict[str, np.ndarray]:
    out = {}
    for key, value in arrays.items():
        copy = np.array(value, copy=True)
        copy.setflags(write=False)
        out[key] = copy
    return out


@dataclass(frozen=True)
class Checkpoint:
    """Snapshot of the learnable state after a successful session."""
    version: int
    created_at: float
    session_id: Optional[str]
    ann_params: Dict[str, np.ndarray]
    reference_params: Dict[str, np.ndarray]
    ewc_state: Dict[str, np.ndarray]
    replay_state: Dict[str, np.ndarray]
    snn_state: Dict[str, np.ndarray]
    learner_scales: Dict[str, float] = field(default_factory=dict)
    meta_state: Dict[str, Any] = field(default_factory=dict)
    federated_state: Dict[str, Any] = field(default_factory=dict)

    def arrays(self) -> Dict[str, np.ndarray]:
        """All array state keyed as ``group/name``."""
        groups = {
            "ann": self.ann_params,
            "reference": self.reference_params,
            "ewc": self.ewc_state,
            "replay": self.replay_state,
            "snn": self.snn_state,
        }
        return {f"{group}/{name}": value for group, items in groups.items() for name, value in items.items()}

    def manifest(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "created_at": self.created_at,
            "session_id": self.session_id,
            "learner_scales": dict(self.learner_scales),
            "meta_state": self.meta_state,
            "federated_state": self.federated_state,
        }

    @classmethod
    def from_payload(cls, arrays: Mapping[str, np.ndarray], manifest: Mapping[str, Any]) -> "Checkpoint":
        version = int(manifest.get("version", 0))
        if version != CHECKPOINT_VERSION:
            raise CheckpointError(f"Unsupported checkpoint version {version}")
        groups: Dict[str, Dict[str, np.ndarray]] = {g: {} for g in ARRAY_GROUPS}
        for key, value in arrays.items():
            group, _, name = key.partition("/")
            if group in groups:
                groups[group][name] = value
        return cls(
            version=version,
            created_at=float(manifest["created_at"]),
            session_id=manifest.get("session_id"),
            ann_params=_frozen(groups["ann"]),
            reference_params=_frozen(groups["reference"]),
            ewc_state=_frozen(groups["ewc"]),
            replay_state=_frozen(groups["replay"]),
            snn_state=_frozen(groups["snn"]),
            learner_scales=dict(manifest.get("learner_scales", {})),
            meta_state=dict(manifest.get("meta_state", {})),
            federated_state=dict(manifest.get("federated_state", {})),
        )


class CheckpointManager:
    """Owns the single current checkpoint and moves component state in and out of it."""

    def __init__(
        self,
        learner: IncrementalLearner,
        stdp: STDPLearner,
        meta: MetaParameterOptimizer,
        federated: FederatedClient,
        storage: Optional[CheckpointStorage] = None,
    ):
        self.learner = learner
        self.stdp = stdp
        self.meta = meta
        self.federated = federated
        self.storage = storage
        self._current: Optional[Checkpoint] = None

    @property
    def current(self) -> Optional[Checkpoint]:
        return self._current

    def capture(self, session_id: Optional[str] = None) -> Checkpoint:
        """Snapshot live component state without installing it."""
        learner = self.learner
        return Checkpoint(
            version=CHECKPOINT_VERSION,
            created_at=time.time(),
            session_id=session_id,
            ann_params=_frozen(learner.model.state_dict()),
            reference_params=_frozen(learner.reference.state_dict()),
            ewc_state=_frozen(learner.ewc.state_dict()),
            replay_state=_frozen(learner.replay.state_dict()),
            snn_state=_frozen(self.stdp.network.state_dict()),
            learner_scales=learner.scales(),
            meta_state=self.meta.state_dict(),
            federated_state=self.federated.state_dict(),
        )

    def ensure_baseline(self) -> Checkpoint:
        """
        Make sure a current checkpoint exists.

        Loads the newest stored checkpoint when storage is configured and
        holds one, otherwise captures the initial state.
        """
        if self._current is not None:
            return self._current
        if self.storage is not None:
            loaded = self.storage.load_latest()
            if loaded is not None:
                try:
                    checkpoint = Checkpoint.from_payload(*loaded)
                    self._apply(checkpoint)
                except (CheckpointError, KeyError, ValueError) as e:
                    logger.warning(f"Stored checkpoint unusable, starting fresh: {e}")
                else:
                    self._current = checkpoint
                    logger.info(f"Resumed from checkpoint (session={checkpoint.session_id})")
                    return checkpoint
        self._current = self.capture()
        return self._current

    def save(self, session=None) -> Checkpoint:
        """
        Capture and install a new current checkpoint.

        Args:
            session: The TrainingSession that produced the state, if any.

        The previous checkpoint stays current if persistence fails.

        Raises:
            CheckpointError: if the storage write fails.
        """
        session_id = session.id if session is not None else None
        checkpoint = self.capture(session_id)
        if self.storage is not None:
            self.storage.save(checkpoint.arrays(), checkpoint.manifest())
        self._current = checkpoint
        logger.debug(f"Checkpoint saved (session={session_id})")
        return checkpoint

    def amend_federated_state(self) -> Checkpoint:
        """Fold the federated client's post-contribution state into the current checkpoint."""
        if self._current is None:
            raise CheckpointError("No current checkpoint to amend")
        checkpoint = dataclasses.replace(self._current, federated_state=self.federated.state_dict())
        if self.storage is not None:
            self.storage.save(checkpoint.arrays(), checkpoint.manifest())
        self._current = checkpoint
        return checkpoint

    def restore(self) -> Checkpoint:
        """
        Reinstate every component from the current checkpoint.

        Raises:
            CheckpointRestoreError: if there is nothing to restore or the
                checkpoint cannot be applied.
        """
        if self._current is None:
            raise CheckpointRestoreError("No checkpoint to restore")
        try:
            self._apply(self._current)
        except (KeyError, ValueError) as e:
            raise CheckpointRestoreError(f"Checkpoint could not be applied: {e}") from e
        logger.info(f"Restored checkpoint (session={self._current.session_id})")
        return self._current

    def _apply(self, checkpoint: Checkpoint) -> None:
        learner = self.learner
        learner.model.load_state_dict(checkpoint.ann_params)
        learner.reference.load_state_dict(checkpoint.reference_params)
        learner.ewc.load_state_dict(checkpoint.ewc_state)
        learner.replay.load_state_dict(checkpoint.replay_state)
        learner.set_scales(checkpoint.learner_scales)
        learner.discard_pending()
        self.stdp.network.load_state_dict(checkpoint.snn_state)
        self.meta.load_state_dict(checkpoint.meta_state)
        self.federated.load_state_dict(checkpoint.federated_state)

    def model_snapshot(self) -> Dict[str, Dict[str, np.ndarray]]:
        """Read-only views of the current checkpoint's learnable state."""
        checkpoint = self.ensure_baseline()
        return {
            "ann": dict(checkpoint.ann_params),
            "snn": dict(checkpoint.snn_state),
        }
