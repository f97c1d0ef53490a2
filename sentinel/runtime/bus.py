"""
In-process event bus used by the training subsystem.

Components publish snapshots (resource readings, session records, metrics,
federated contributions) on named topics; the surrounding application
subscribes async handlers to observe them.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

Handler = Callable[[str, Any], Awaitable[None]]


class EventBus:
    """
    Minimal async publish/subscribe hub.

    Handlers are awaited sequentially in subscription order. A failing handler
    is logged and skipped so one observer cannot break the publisher.
    """

    def __init__(self):
        self._subscribers: Dict[str, List[Handler]] = defaultdict(list)
        self._published: Dict[str, int] = defaultdict(int)

    def subscribe(self, topic: str, handler: Handler) -> None:
        """Register an async handler taking (topic, payload)."""
        if handler not in self._subscribers[topic]:
            self._subscribers[topic].append(handler)

    def unsubscribe(self, topic: str, handler: Handler) -> None:
        """Remove a previously registered handler (no-op if absent)."""
        handlers = self._subscribers.get(topic, [])
        if handler in handlers:
            handlers.remove(handler)

    async def publish(self, topic: str, payload: Any) -> None:
        """Deliver a payload to every handler subscribed to the topic."""
        self._published[topic] += 1
        for handler in list(self._subscribers.get(topic, [])):
            try:
                await handler(topic, payload)
            except Exception as e:
                logger.warning(f"Handler {getattr(handler, '__name__', handler)} failed on '{topic}': {e}")

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, []))

    def statistics(self) -> Dict[str, int]:
        """Number of publications per topic since creation."""
        return dict(self._published)


_BUS: Optional[EventBus] = None


def get_bus() -> EventBus:
    """Return the process-wide bus, creating it on first use."""
    global _BUS
    if _BUS is None:
        _BUS = EventBus()
    return _BUS
