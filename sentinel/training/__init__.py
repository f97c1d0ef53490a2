"""
On-device training loop.

Exposes the orchestrator together with the queue, privacy guard, scheduler
and session records it coordinates.
"""

from .queue import QueueConfig, TrainingQueue
from .privacy_guard import PrivacyGuard, PrivacyGuardConfig
from .scheduler import DEFAULT_WINDOWS, TrainingScheduler, TrainingWindow
from .session import SessionRecord, SessionState, TrainingSession
from .history import TrainingHistory
from .orchestrator import OrchestratorConfig, TrainingOrchestrator

__all__ = [
    "DEFAULT_WINDOWS",
    "OrchestratorConfig",
    "PrivacyGuard",
    "PrivacyGuardConfig",
    "QueueConfig",
    "SessionRecord",
    "SessionState",
    "TrainingHistory",
    "TrainingOrchestrator",
    "TrainingQueue",
    "TrainingScheduler",
    "TrainingSession",
    "TrainingWindow",
]
