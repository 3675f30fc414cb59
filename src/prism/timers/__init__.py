"""Timers: schedule Actions and route them when they fire."""

from prism.timers.service import TimerService, message_event
from prism.timers.types import (
    Action,
    EventAction,
    MessageAction,
    NotifyAction,
    TimerEntry,
    TimerStatus,
    parse_action,
)

__all__ = [
    "Action",
    "EventAction",
    "MessageAction",
    "NotifyAction",
    "TimerEntry",
    "TimerService",
    "TimerStatus",
    "message_event",
    "parse_action",
]
