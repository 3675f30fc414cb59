"""In-process event bus for zero-coupling fan-out between features."""

from prism.events.bus import EventBus, EventHandler

__all__ = [
    "EventBus",
    "EventHandler",
]
