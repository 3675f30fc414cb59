"""Notification delivery: persistence, realtime push and channel handlers."""

from prism.notifications.realtime import RealtimeMessage, RealtimeSession, SessionHub
from prism.notifications.service import NotificationService
from prism.notifications.types import (
    DEFAULT_CHANNEL,
    IMMEDIATE,
    ChannelHandler,
    NotificationPage,
    NotifyPayload,
    RealtimeSink,
)

__all__ = [
    "DEFAULT_CHANNEL",
    "IMMEDIATE",
    "ChannelHandler",
    "NotificationPage",
    "NotificationService",
    "NotifyPayload",
    "RealtimeMessage",
    "RealtimeSession",
    "RealtimeSink",
    "SessionHub",
]
