"""Notification types."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field

from prism.db.models import Notification

DEFAULT_CHANNEL = "default"

# Returned by NotificationService.schedule when the notification was sent inline
IMMEDIATE = "immediate"


class NotifyPayload(BaseModel):
    """What to deliver, to whom, and over which channel."""

    model_config = ConfigDict(frozen=True)

    user_id: str = Field(min_length=1)
    title: str
    body: str
    # None means the service's configured default channel
    channel: str | None = None
    meta: dict[str, Any] = Field(default_factory=dict)


ChannelHandler = Callable[[NotifyPayload], Awaitable[None]]


class RealtimeSink(Protocol):
    """Delivers a payload to every live session of a user, best effort."""

    async def push(self, user_id: str, event: str, payload: dict[str, Any]) -> None: ...


@dataclass
class NotificationPage:
    """One page of a user's notification history."""

    items: list[Notification]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return -(-self.total // self.limit) if self.limit else 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "data": [item.to_dict() for item in self.items],
            "pagination": {
                "page": self.page,
                "limit": self.limit,
                "total": self.total,
                "pages": self.pages,
            },
        }
