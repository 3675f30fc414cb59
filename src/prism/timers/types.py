"""Timer types.

Public types:
- Action: What a fired timer does (NotifyAction | EventAction | MessageAction)
- TimerStatus: pending, fired, cancelled, failed
- TimerEntry: Process-local record of one timer's lifecycle
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from prism.notifications.types import NotifyPayload


class NotifyAction(BaseModel):
    """Deliver a notification through the notification service."""

    model_config = ConfigDict(frozen=True)

    type: Literal["notify"] = "notify"
    payload: NotifyPayload


class EventAction(BaseModel):
    """Publish `payload` on the event bus under `event`."""

    model_config = ConfigDict(frozen=True)

    type: Literal["event"] = "event"
    event: str = Field(min_length=1)
    payload: Any = None


class MessageAction(BaseModel):
    """Publish `payload` on the event bus under the namespaced `msg:<channel>`."""

    model_config = ConfigDict(frozen=True)

    type: Literal["message"] = "message"
    channel: str = Field(min_length=1)
    payload: Any = None


Action = Annotated[
    NotifyAction | EventAction | MessageAction, Field(discriminator="type")
]

_action_adapter: TypeAdapter[Action] = TypeAdapter(Action)


def parse_action(data: Any) -> Action:
    """Validate a raw dict (e.g. request JSON) into an Action."""
    return _action_adapter.validate_python(data)


class TimerStatus(StrEnum):
    PENDING = "pending"
    FIRED = "fired"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class TimerEntry:
    """One outstanding or historical timer.

    Exactly one of `fire_at` (one-shot) and `cron` (recurring) is set.
    Entries are replaced, never mutated, on each status transition.
    """

    id: str
    label: str
    action: Action
    status: TimerStatus = TimerStatus.PENDING
    fire_at: datetime | None = None
    cron: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_recurring(self) -> bool:
        return self.cron is not None

    @property
    def job_name(self) -> str:
        return f"timer:{self.id}"

    def to_dict(self) -> dict[str, Any]:
        if self.cron is not None:
            fire_at = f"cron:{self.cron}"
        else:
            fire_at = self.fire_at.isoformat() if self.fire_at else None
        return {
            "id": self.id,
            "label": self.label,
            "action": self.action.model_dump(mode="json"),
            "status": self.status.value,
            "fire_at": fire_at,
            "created_at": self.created_at.isoformat(),
        }
