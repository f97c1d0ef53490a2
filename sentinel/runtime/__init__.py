"""Runtime plumbing shared by the training components."""

from .bus import EventBus, get_bus

__all__ = ["EventBus", "get_bus"]
