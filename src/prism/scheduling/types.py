"""Scheduling types.

Public types:
- JobKind: cron, delayed or repeating
- ScheduledJob: The scheduler's local bookkeeping record
- QueuedJob: A job record as stored in the broker
- JobFn: Async handler invoked when a job fires
"""

import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter

from prism.errors import InvalidSchedule

logger = logging.getLogger(__name__)


class JobKind(StrEnum):
    CRON = "cron"
    DELAYED = "delayed"
    REPEATING = "repeating"


@dataclass(frozen=True)
class ScheduledJob:
    """Local record of a job added through this process.

    Lost on restart; the broker copy is the one that actually fires.
    """

    id: str  # Assigned by the broker
    name: str
    kind: JobKind


# Handler receives the broker job id and the job's data payload
JobFn = Callable[[str, dict[str, Any]], Awaitable[None]]


def validate_cron(expression: str) -> None:
    """Raise InvalidSchedule unless `expression` is a valid cron expression."""
    if not croniter.is_valid(expression):
        raise InvalidSchedule(f"Invalid cron expression: {expression!r}")


def next_cron_time(expression: str, after: datetime, timezone: str = "UTC") -> datetime:
    """Next occurrence of `expression` strictly after `after`, in UTC.

    The expression is evaluated in `timezone` so "0 8 * * *" means 8 AM
    local time, including across DST changes.
    """
    try:
        tz = ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("invalid_timezone", extra={"schedule.timezone": timezone})
        tz = ZoneInfo("UTC")

    base = after.astimezone(tz)
    next_local = croniter(expression, base).get_next(datetime)
    return next_local.astimezone(UTC)


def to_ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def from_ms(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000, UTC)


@dataclass
class QueuedJob:
    """A job as persisted in the broker."""

    id: str
    name: str
    kind: JobKind
    fire_at: int  # epoch milliseconds of the next run
    data: dict[str, Any] = field(default_factory=dict)
    every_ms: int | None = None  # repeating
    cron: str | None = None  # cron
    timezone: str = "UTC"

    @property
    def is_recurring(self) -> bool:
        return self.kind in (JobKind.CRON, JobKind.REPEATING)

    def next_fire_at(self, now_ms: int) -> int | None:
        """Epoch ms of the run after `now_ms`, or None for one-shot jobs."""
        if self.kind == JobKind.REPEATING and self.every_ms:
            return now_ms + self.every_ms
        if self.kind == JobKind.CRON and self.cron:
            return to_ms(next_cron_time(self.cron, from_ms(now_ms), self.timezone))
        return None

    def to_json(self) -> str:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "kind": self.kind.value,
            "fire_at": self.fire_at,
            "data": self.data,
            "timezone": self.timezone,
        }
        if self.every_ms is not None:
            data["every_ms"] = self.every_ms
        if self.cron is not None:
            data["cron"] = self.cron
        return json.dumps(data)

    @classmethod
    def from_json(cls, raw: str | bytes) -> "QueuedJob | None":
        """Parse a broker record, returning None for malformed data."""
        try:
            data = json.loads(raw)
            return cls(
                id=str(data["id"]),
                name=data["name"],
                kind=JobKind(data["kind"]),
                fire_at=int(data["fire_at"]),
                data=data.get("data") or {},
                every_ms=data.get("every_ms"),
                cron=data.get("cron"),
                timezone=data.get("timezone", "UTC"),
            )
        except (json.JSONDecodeError, KeyError, TypeError, ValueError):
            return None
