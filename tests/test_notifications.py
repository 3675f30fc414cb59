"""Tests for notification delivery."""

import asyncio
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta

import pytest
from pydantic import ValidationError
from sqlalchemy.exc import OperationalError

from prism.db import Database
from prism.errors import (
    DeliveryBestEffort,
    JobNotFound,
    NotificationNotFound,
    PersistenceFailure,
    SchedulerUnavailable,
)
from prism.notifications import (
    IMMEDIATE,
    NotificationService,
    NotifyPayload,
    SessionHub,
)
from prism.scheduling import Scheduler


class BrokenDatabase:
    """Database stand-in whose writes always fail."""

    is_connected = True

    @asynccontextmanager
    async def session(self):
        raise OperationalError("INSERT", {}, Exception("disk I/O error"))
        yield


class FailingSink:
    async def push(self, user_id: str, event: str, payload: dict) -> None:
        raise DeliveryBestEffort("socket closed")


def _payload(**overrides) -> NotifyPayload:
    data = {"user_id": "u1", "title": "Hello", "body": "World"}
    data.update(overrides)
    return NotifyPayload(**data)


class TestSend:
    """Tests for immediate delivery."""

    async def test_persists_unread(self, notify: NotificationService):
        notification = await notify.send(_payload(meta={"k": "v"}))

        assert notification.id
        assert notification.read is False
        assert notification.channel == "default"
        assert notification.meta == {"k": "v"}

        page = await notify.list_for_user("u1")
        assert [n.id for n in page.items] == [notification.id]

    async def test_accepts_dict_payload(self, notify: NotificationService):
        notification = await notify.send(
            {"user_id": "u2", "title": "t", "body": "b"}
        )
        assert notification.user_id == "u2"

    async def test_configured_default_channel(
        self, database: Database, scheduler: Scheduler
    ):
        """Test payload objects without a channel use the configured default."""
        service = NotificationService(database, scheduler, default_channel="email")
        delivered: list[NotifyPayload] = []

        async def email(payload: NotifyPayload) -> None:
            delivered.append(payload)

        service.register_channel("email", email)

        built = await service.send(_payload())
        explicit = await service.send(_payload(channel="sms"))

        assert built.channel == "email"
        assert explicit.channel == "sms"
        assert [p.channel for p in delivered] == ["email"]

    async def test_rejects_empty_user(self, notify: NotificationService):
        with pytest.raises(ValidationError):
            await notify.send({"user_id": "", "title": "t", "body": "b"})

    async def test_pushes_to_realtime_sessions(
        self, notify: NotificationService, realtime: SessionHub
    ):
        session = realtime.connect("u1")

        notification = await notify.send(_payload())

        message = session.queue.get_nowait()
        assert message.event == "notification"
        assert message.payload["id"] == notification.id
        assert message.payload["title"] == "Hello"

    async def test_runs_channel_handler(self, notify: NotificationService):
        delivered: list[NotifyPayload] = []

        async def email(payload: NotifyPayload) -> None:
            delivered.append(payload)

        notify.register_channel("email", email)
        await notify.send(_payload(channel="email"))
        await notify.send(_payload(channel="sms"))

        assert [p.channel for p in delivered] == ["email"]

    async def test_last_channel_registration_wins(self, notify: NotificationService):
        calls: list[str] = []

        async def first(payload: NotifyPayload) -> None:
            calls.append("first")

        async def second(payload: NotifyPayload) -> None:
            calls.append("second")

        notify.register_channel("email", first)
        notify.register_channel("email", second)
        await notify.send(_payload(channel="email"))

        assert calls == ["second"]

    async def test_channel_failure_not_raised(
        self, notify: NotificationService, caplog
    ):
        async def broken(payload: NotifyPayload) -> None:
            raise RuntimeError("smtp down")

        notify.register_channel("email", broken)

        notification = await notify.send(_payload(channel="email"))

        assert notification.id
        assert any(
            r.getMessage() == "notification_channel_failed" for r in caplog.records
        )

    async def test_realtime_failure_not_raised(
        self, database: Database, scheduler: Scheduler, caplog
    ):
        service = NotificationService(database, scheduler)
        service.attach_realtime(FailingSink())

        notification = await service.send(_payload())

        assert notification.id
        assert any(r.getMessage() == "notification_push_failed" for r in caplog.records)

    async def test_persistence_failure_raised(self, scheduler: Scheduler):
        """Test a store error surfaces and skips the side channels."""
        realtime = SessionHub()
        session = realtime.connect("u1")
        delivered: list[NotifyPayload] = []

        async def email(payload: NotifyPayload) -> None:
            delivered.append(payload)

        service = NotificationService(BrokenDatabase(), scheduler)
        service.attach_realtime(realtime)
        service.register_channel("email", email)

        with pytest.raises(PersistenceFailure):
            await service.send(_payload(channel="email"))

        assert session.queue.empty()
        assert delivered == []

    async def test_disconnected_database(
        self, notify: NotificationService, database: Database
    ):
        await database.disconnect()
        with pytest.raises(PersistenceFailure):
            await notify.send(_payload())


class TestSchedule:
    """Tests for deferred delivery."""

    async def test_past_time_sends_immediately(self, notify: NotificationService):
        result = await notify.schedule(_payload(), datetime.now(UTC) - timedelta(seconds=1))

        assert result == IMMEDIATE
        page = await notify.list_for_user("u1")
        assert page.total == 1

    async def test_future_time_returns_job(
        self, notify: NotificationService, scheduler: Scheduler, wait_for
    ):
        job_id = await notify.schedule(
            _payload(), datetime.now(UTC) + timedelta(milliseconds=50)
        )

        assert job_id != IMMEDIATE
        assert scheduler.get(job_id) is not None
        await wait_for(lambda: scheduler.get(job_id) is None)

        page = await notify.list_for_user("u1")
        assert page.total == 1

    async def test_cancel_prevents_delivery(self, notify: NotificationService):
        job_id = await notify.schedule(
            _payload(), datetime.now(UTC) + timedelta(milliseconds=200)
        )

        await notify.cancel(job_id)
        await asyncio.sleep(0.4)

        page = await notify.list_for_user("u1")
        assert page.total == 0

    async def test_cancel_unknown_job(self, notify: NotificationService):
        with pytest.raises(JobNotFound):
            await notify.cancel("12345")

    async def test_cancel_keeps_persisted_rows(self, notify: NotificationService):
        await notify.send(_payload())
        job_id = await notify.schedule(_payload(), datetime.now(UTC) + timedelta(hours=1))

        await notify.cancel(job_id)

        page = await notify.list_for_user("u1")
        assert page.total == 1

    async def test_degraded_scheduler(
        self, database: Database, degraded_scheduler: Scheduler
    ):
        service = NotificationService(database, degraded_scheduler)

        with pytest.raises(SchedulerUnavailable):
            await service.schedule(_payload(), datetime.now(UTC) + timedelta(hours=1))
        with pytest.raises(SchedulerUnavailable):
            await service.cancel("1")

        # Immediate delivery still works without a broker
        assert await service.schedule(_payload(), datetime.now(UTC)) == IMMEDIATE


class TestHistory:
    """Tests for listing and read-marking."""

    async def test_pagination(self, notify: NotificationService):
        for i in range(5):
            await notify.send(_payload(title=f"n{i}"))
        await notify.send(_payload(user_id="someone-else"))

        first = await notify.list_for_user("u1", page=1, limit=2)
        last = await notify.list_for_user("u1", page=3, limit=2)

        assert first.total == 5
        assert first.pages == 3
        assert len(first.items) == 2
        assert len(last.items) == 1
        assert first.to_dict()["pagination"] == {
            "page": 1,
            "limit": 2,
            "total": 5,
            "pages": 3,
        }

    async def test_limits_are_clamped(self, notify: NotificationService):
        page = await notify.list_for_user("u1", page=0, limit=1000)

        assert page.page == 1
        assert page.limit == 100

    async def test_mark_read(self, notify: NotificationService):
        notification = await notify.send(_payload())

        updated = await notify.mark_read(notification.id)

        assert updated.read is True
        page = await notify.list_for_user("u1")
        assert page.items[0].read is True

    async def test_mark_read_unknown(self, notify: NotificationService):
        with pytest.raises(NotificationNotFound):
            await notify.mark_read("missing")
