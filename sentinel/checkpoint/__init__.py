"""
Checkpoint capture, rollback and persistence.
"""

from .storage import CheckpointStorage, CheckpointStorageConfig
from .manager import CHECKPOINT_VERSION, Checkpoint, CheckpointManager

__all__ = [
    "CHECKPOINT_VERSION",
    "Checkpoint",
    "CheckpointManager",
    "CheckpointStorage",
    "CheckpointStorageConfig",
]
