"""Timer service: high-level scheduling API that routes fired timers.

Callers describe *what* should happen (an Action) and *when*; the service
realises the delay through the Scheduler and, on fire, hands the action to
the notification service or the event bus. Features can schedule work for
each other without importing each other.

Timer bookkeeping is process-local and best effort: after a restart the
broker still fires jobs scheduled earlier, but this process can no longer
list or cancel them, and without a registered handler they are dropped.
"""

import logging
import threading
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any, assert_never
from uuid import uuid4

from prism.errors import InvalidSchedule, TimerNotFound
from prism.timers.types import (
    Action,
    EventAction,
    MessageAction,
    NotifyAction,
    TimerEntry,
    TimerStatus,
)

if TYPE_CHECKING:
    from prism.events import EventBus
    from prism.notifications import NotificationService
    from prism.scheduling import Scheduler

logger = logging.getLogger(__name__)


def message_event(channel: str) -> str:
    """Event bus topic for a message channel, kept apart from plain event names."""
    return f"msg:{channel}"


class TimerService:
    """Schedules Actions after a delay, at a time, or on a cron schedule."""

    def __init__(
        self,
        scheduler: "Scheduler",
        events: "EventBus",
        notify: "NotificationService",
    ):
        self._scheduler = scheduler
        self._events = events
        self._notify = notify
        self._entries: dict[str, TimerEntry] = {}
        self._lock = threading.Lock()

    async def _dispatch(self, action: Action) -> None:
        """Route an action to the one service its type names."""
        match action:
            case NotifyAction(payload=payload):
                await self._notify.send(payload)
            case EventAction(event=event, payload=payload):
                self._events.emit(event, payload)
            case MessageAction(channel=channel, payload=payload):
                self._events.emit(message_event(channel), payload)
            case _:
                assert_never(action)

    def _mark(self, timer_id: str, status: TimerStatus) -> TimerEntry | None:
        with self._lock:
            entry = self._entries.get(timer_id)
            if entry is None:
                return None
            if entry.status == TimerStatus.CANCELLED:
                return entry
            updated = replace(entry, status=status)
            self._entries[timer_id] = updated
            return updated

    async def _fire(self, timer_id: str, action: Action, *, recurring: bool) -> None:
        entry = self._mark(timer_id, TimerStatus.FIRED)
        if entry is None or entry.status == TimerStatus.CANCELLED:
            logger.debug("timer_fire_skipped", extra={"timer.id": timer_id})
            return

        logger.info(
            "timer_fired",
            extra={"timer.id": timer_id, "timer.label": entry.label, "action.type": action.type},
        )
        try:
            await self._dispatch(action)
        except Exception:
            self._mark(timer_id, TimerStatus.FAILED)
            raise

        if recurring:
            self._mark(timer_id, TimerStatus.PENDING)

    async def after(self, label: str, delay_ms: int, action: Action) -> str:
        """Fire `action` after `delay_ms` milliseconds.

        Returns:
            The timer id; use it with cancel().

        Raises:
            SchedulerUnavailable: If the broker is not connected.
        """
        now = datetime.now(UTC)
        entry = TimerEntry(
            id=str(uuid4()),
            label=label,
            action=action,
            fire_at=now + timedelta(milliseconds=max(0, delay_ms)),
            created_at=now,
        )
        with self._lock:
            self._entries[entry.id] = entry

        async def fire(job_id: str, data: dict[str, Any]) -> None:
            await self._fire(entry.id, action, recurring=False)

        try:
            await self._scheduler.add_delayed(entry.job_name, delay_ms, fire)
        except Exception:
            with self._lock:
                self._entries.pop(entry.id, None)
            raise
        logger.info(
            "timer_scheduled",
            extra={"timer.id": entry.id, "timer.label": label, "timer.delay_ms": delay_ms},
        )
        return entry.id

    async def at(self, label: str, target: datetime, action: Action) -> str:
        """Fire `action` at an absolute time.

        Raises:
            InvalidSchedule: If `target` is in the past.
            SchedulerUnavailable: If the broker is not connected.
        """
        if target.tzinfo is None:
            target = target.replace(tzinfo=UTC)
        delay_ms = int((target - datetime.now(UTC)).total_seconds() * 1000)
        if delay_ms < 0:
            raise InvalidSchedule(f"Target time is in the past ({target.isoformat()})")
        return await self.after(label, delay_ms, action)

    async def cron(self, label: str, expression: str, action: Action) -> str:
        """Fire `action` on a repeating cron schedule.

        Returns:
            The timer id; use it with cancel().

        Raises:
            InvalidSchedule: If `expression` is not a valid cron expression.
        """
        entry = TimerEntry(id=str(uuid4()), label=label, action=action, cron=expression)

        async def fire(job_id: str, data: dict[str, Any]) -> None:
            await self._fire(entry.id, action, recurring=True)

        self._scheduler.add_cron(entry.job_name, expression, fire)
        with self._lock:
            self._entries[entry.id] = entry
        logger.info(
            "timer_scheduled",
            extra={"timer.id": entry.id, "timer.label": label, "timer.cron": expression},
        )
        return entry.id

    async def cancel(self, timer_id: str) -> None:
        """Cancel a timer. Past fires are not rolled back.

        Raises:
            TimerNotFound: If the id is unknown to this process.
        """
        with self._lock:
            entry = self._entries.get(timer_id)
        if entry is None:
            raise TimerNotFound(timer_id)

        await self._scheduler.remove_named(entry.job_name)
        with self._lock:
            self._entries[timer_id] = replace(
                self._entries[timer_id], status=TimerStatus.CANCELLED
            )
        logger.info("timer_cancelled", extra={"timer.id": timer_id})

    def get(self, timer_id: str) -> TimerEntry:
        with self._lock:
            entry = self._entries.get(timer_id)
        if entry is None:
            raise TimerNotFound(timer_id)
        return entry

    def list(self) -> list[TimerEntry]:
        """All timers created by this process, whatever their status."""
        with self._lock:
            return list(self._entries.values())
