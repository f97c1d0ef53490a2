"""
Telemetry helpers for the training loop.

Builds metric snapshots and publishes them, together with closed session
records, on the event bus.
"""

from __future__ import annotations

import time
from typing import Any, Dict, Optional

from sentinel.runtime import EventBus, get_bus
from .session import SessionRecord


def build_training_metrics_snapshot(
    total_sessions: int,
    total_samples: int,
    average_accuracy: float,
    queue_size: int,
    extras: Optional[Dict[str, float]] = None,
) -> Dict[str, float]:
    """
    Construct a metrics dictionary for publication.

    Args:
        total_sessions: Successful sessions so far.
        total_samples: Queue samples consumed by successful sessions.
        average_accuracy: Moving average of ANN accuracy.
        queue_size: Samples currently waiting.
        extras: Optional additional numeric metrics.

    Returns:
        Dictionary of metrics with a timestamp.
    """
    snapshot = {
        "training_total_sessions": float(total_sessions),
        "training_total_samples": float(total_samples),
        "training_average_accuracy": float(average_accuracy),
        "training_queue_size": float(queue_size),
        "timestamp": time.time(),
    }
    if extras:
        snapshot.update({k: float(v) for k, v in extras.items()})
    return snapshot


async def publish_training_metrics(bus: Optional[EventBus], snapshot: Dict[str, float]) -> None:
    """Publish a metrics snapshot on 'sentinel.training_metrics'."""
    await (bus or get_bus()).publish("sentinel.training_metrics", snapshot)


async def publish_session_record(bus: Optional[EventBus], record: SessionRecord) -> None:
    """Publish a closed session on 'sentinel.training_session'."""
    payload: Dict[str, Any] = record.to_dict()
    await (bus or get_bus()).publish("sentinel.training_session", payload)
