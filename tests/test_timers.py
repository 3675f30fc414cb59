"""Tests for the timer service."""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from pydantic import ValidationError

from prism.errors import InvalidSchedule, SchedulerUnavailable, TimerNotFound
from prism.events import EventBus
from prism.notifications import NotificationService, NotifyPayload
from prism.scheduling import Scheduler
from prism.timers import (
    EventAction,
    MessageAction,
    NotifyAction,
    TimerService,
    TimerStatus,
    message_event,
    parse_action,
)


class TestAfter:
    """Tests for relative one-shot timers."""

    async def test_fires_event_once(self, timer: TimerService, events: EventBus, wait_for):
        seen: list[dict] = []
        events.on("reminder", seen.append)

        timer_id = await timer.after(
            "remind", 20, EventAction(event="reminder", payload={"n": 1})
        )
        await wait_for(lambda: len(seen) == 1)
        await asyncio.sleep(0.1)

        assert seen == [{"n": 1}]
        assert timer.get(timer_id).status == TimerStatus.FIRED

    async def test_new_entry_is_pending(self, timer: TimerService):
        timer_id = await timer.after("later", 60_000, EventAction(event="x"))

        entry = timer.get(timer_id)
        assert entry.status == TimerStatus.PENDING
        assert entry.label == "later"
        assert entry.fire_at is not None
        assert entry.cron is None

    async def test_message_action_uses_namespaced_topic(
        self, timer: TimerService, events: EventBus, wait_for
    ):
        seen: list[str] = []
        plain: list[str] = []
        events.on(message_event("ops"), seen.append)
        events.on("ops", plain.append)

        await timer.after("msg", 0, MessageAction(channel="ops", payload="hello"))
        await wait_for(lambda: seen == ["hello"])

        assert plain == []

    async def test_notify_action_with_zero_delay(
        self, timer: TimerService, notify: NotificationService, wait_for
    ):
        """Test a notify timer with no delay persists exactly one notification."""
        action = NotifyAction(
            payload=NotifyPayload(user_id="u1", title="Hi", body="There")
        )
        timer_id = await timer.after("ping", 0, action)

        await wait_for(lambda: timer.get(timer_id).status == TimerStatus.FIRED)
        await asyncio.sleep(0.05)

        page = await notify.list_for_user("u1")
        assert page.total == 1
        assert page.items[0].title == "Hi"

    async def test_degraded_scheduler(
        self, degraded_scheduler: Scheduler, events: EventBus, notify: NotificationService
    ):
        service = TimerService(degraded_scheduler, events, notify)

        with pytest.raises(SchedulerUnavailable):
            await service.after("x", 1000, EventAction(event="x"))

        assert service.list() == []


class TestAt:
    """Tests for absolute one-shot timers."""

    async def test_past_target_rejected(self, timer: TimerService):
        with pytest.raises(InvalidSchedule):
            await timer.at(
                "late", datetime.now(UTC) - timedelta(minutes=1), EventAction(event="x")
            )

        assert timer.list() == []

    async def test_future_target(self, timer: TimerService, events: EventBus, wait_for):
        seen: list[object] = []
        events.on("due", seen.append)

        await timer.at(
            "soon", datetime.now(UTC) + timedelta(milliseconds=50), EventAction(event="due")
        )

        await wait_for(lambda: len(seen) == 1)

    async def test_naive_target_is_utc(self, timer: TimerService):
        target = datetime.now(UTC).replace(tzinfo=None) + timedelta(hours=1)

        timer_id = await timer.at("naive", target, EventAction(event="x"))

        assert timer.get(timer_id).fire_at.tzinfo is not None


class TestCancel:
    """Tests for cancelling timers."""

    async def test_cancel_before_fire(self, timer: TimerService, events: EventBus):
        """Test a timer cancelled before its delay never dispatches."""
        seen: list[object] = []
        events.on("x", seen.append)

        timer_id = await timer.after("x", 200, EventAction(event="x"))
        await timer.cancel(timer_id)
        await asyncio.sleep(0.4)

        assert seen == []
        assert timer.get(timer_id).status == TimerStatus.CANCELLED

    async def test_cancel_removes_scheduler_job(
        self, timer: TimerService, scheduler: Scheduler
    ):
        timer_id = await timer.after("x", 60_000, EventAction(event="x"))
        assert len(scheduler.list()) == 1

        await timer.cancel(timer_id)

        assert scheduler.list() == []

    async def test_cancel_after_fire(self, timer: TimerService, wait_for):
        timer_id = await timer.after("x", 0, EventAction(event="x"))
        await wait_for(lambda: timer.get(timer_id).status == TimerStatus.FIRED)

        await timer.cancel(timer_id)

        assert timer.get(timer_id).status == TimerStatus.CANCELLED

    async def test_cancel_unknown(self, timer: TimerService):
        with pytest.raises(TimerNotFound):
            await timer.cancel("nope")

    async def test_get_unknown(self, timer: TimerService):
        with pytest.raises(TimerNotFound):
            timer.get("nope")


class TestCron:
    """Tests for recurring timers."""

    async def test_returns_to_pending_after_fire(
        self, timer: TimerService, scheduler: Scheduler, events: EventBus
    ):
        seen: list[object] = []
        events.on("tick", seen.append)

        timer_id = await timer.cron("daily", "0 8 * * *", EventAction(event="tick"))
        await scheduler.settle()
        job = await scheduler._queue.get(scheduler.list()[0].id)
        await scheduler._run_job(job)

        assert seen == [None]
        entry = timer.get(timer_id)
        assert entry.status == TimerStatus.PENDING
        assert entry.to_dict()["fire_at"] == "cron:0 8 * * *"

    async def test_invalid_cron(self, timer: TimerService):
        with pytest.raises(InvalidSchedule):
            await timer.cron("bad", "every day", EventAction(event="x"))

        assert timer.list() == []

    async def test_cancel_stops_future_runs(
        self, timer: TimerService, scheduler: Scheduler, events: EventBus
    ):
        seen: list[object] = []
        events.on("tick", seen.append)
        timer_id = await timer.cron("daily", "0 8 * * *", EventAction(event="tick"))
        await scheduler.settle()
        job = await scheduler._queue.get(scheduler.list()[0].id)

        await timer.cancel(timer_id)
        await scheduler._run_job(job)

        assert seen == []
        assert timer.get(timer_id).status == TimerStatus.CANCELLED

    async def test_cancel_before_registration_lands(
        self, timer: TimerService, scheduler: Scheduler
    ):
        """Test cancelling straight after cron() leaves no job on the broker."""
        timer_id = await timer.cron("daily", "* * * * *", EventAction(event="tick"))

        await timer.cancel(timer_id)
        await scheduler.settle()

        assert timer.get(timer_id).status == TimerStatus.CANCELLED
        assert scheduler.list() == []
        assert await scheduler._queue.get("1") is None

    async def test_degraded_scheduler(
        self,
        degraded_scheduler: Scheduler,
        events: EventBus,
        notify: NotificationService,
        caplog,
    ):
        """Test a cron timer without a broker is kept pending and logged."""
        service = TimerService(degraded_scheduler, events, notify)

        timer_id = await service.cron("daily", "0 8 * * *", EventAction(event="tick"))

        assert service.get(timer_id).status == TimerStatus.PENDING
        assert degraded_scheduler.list() == []
        assert any(r.getMessage() == "scheduler_cron_skipped" for r in caplog.records)


class TestFailure:
    """Tests for dispatch failures."""

    async def test_failed_dispatch_marks_entry(
        self, timer: TimerService, notify: NotificationService, wait_for, caplog
    ):
        """Test a dispatch error marks the timer failed and is logged once."""
        await notify._db.disconnect()
        action = NotifyAction(payload=NotifyPayload(user_id="u1", title="t", body="b"))

        timer_id = await timer.after("broken", 0, action)

        await wait_for(lambda: timer.get(timer_id).status == TimerStatus.FAILED)
        await wait_for(
            lambda: any(r.getMessage() == "scheduler_job_failed" for r in caplog.records)
        )


class TestScenario:
    """End-to-end timer and event bus interaction."""

    async def test_once_listener_and_timer(
        self, timer: TimerService, events: EventBus, wait_for
    ):
        received: list[dict] = []
        events.once("reminder", received.append)

        await timer.after("r1", 10, EventAction(event="reminder", payload={"n": 1}))
        await timer.after("r2", 60, EventAction(event="reminder", payload={"n": 2}))

        entries = timer.list()
        await wait_for(
            lambda: all(timer.get(e.id).status == TimerStatus.FIRED for e in entries)
        )

        assert received == [{"n": 1}]
        assert events.listener_count("reminder") == 0


class TestActions:
    """Tests for action parsing."""

    def test_parse_notify(self):
        action = parse_action(
            {"type": "notify", "payload": {"user_id": "u1", "title": "t", "body": "b"}}
        )
        assert isinstance(action, NotifyAction)
        assert action.payload.channel is None

    def test_parse_message(self):
        action = parse_action({"type": "message", "channel": "ops", "payload": [1]})
        assert isinstance(action, MessageAction)

    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationError):
            parse_action({"type": "teleport"})
