"""Notification delivery service.

The single place where a notification becomes durable and visible to a
user. `send` has three effects, in order:

1. Persist the notification row. Failure raises PersistenceFailure.
2. Push it to the user's realtime sessions. Best effort, logged on failure.
3. Run the handler registered for the notification's channel, if any.
   Logged on failure, never retried.
"""

import logging
import threading
import time
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError

from prism.db import notifications as store
from prism.db.models import Notification
from prism.errors import (
    JobNotFound,
    NotificationNotFound,
    PersistenceFailure,
    SchedulerUnavailable,
)
from prism.notifications.types import (
    DEFAULT_CHANNEL,
    IMMEDIATE,
    ChannelHandler,
    NotificationPage,
    NotifyPayload,
    RealtimeSink,
)

if TYPE_CHECKING:
    from prism.db import Database
    from prism.scheduling import Scheduler

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


class NotificationService:
    """Persists notifications, pushes them live, and dispatches to channels."""

    def __init__(
        self,
        database: "Database",
        scheduler: "Scheduler",
        *,
        default_channel: str = DEFAULT_CHANNEL,
    ):
        self._db = database
        self._scheduler = scheduler
        self._default_channel = default_channel
        self._channels: dict[str, ChannelHandler] = {}
        self._lock = threading.Lock()
        self._realtime: RealtimeSink | None = None

    def attach_realtime(self, sink: RealtimeSink) -> None:
        """Attach the realtime transport. Until then pushes are skipped."""
        self._realtime = sink

    def register_channel(self, name: str, handler: ChannelHandler) -> None:
        """Register a custom delivery channel. The last registration wins.

        Example:
            async def email(payload: NotifyPayload) -> None: ...

            notify.register_channel("email", email)
        """
        with self._lock:
            replaced = name in self._channels
            self._channels[name] = handler
        logger.debug(
            "notification_channel_registered",
            extra={"notification.channel": name, "replaced": replaced},
        )

    def _coerce(self, payload: NotifyPayload | dict[str, Any]) -> NotifyPayload:
        if not isinstance(payload, NotifyPayload):
            payload = NotifyPayload.model_validate(payload)
        if payload.channel is None:
            payload = payload.model_copy(update={"channel": self._default_channel})
        return payload

    async def send(self, payload: NotifyPayload | dict[str, Any]) -> Notification:
        """Deliver a notification immediately.

        Returns:
            The persisted notification row.

        Raises:
            PersistenceFailure: If the notification could not be stored.
        """
        payload = self._coerce(payload)
        if not self._db.is_connected:
            raise PersistenceFailure("Could not persist notification: database not connected")

        try:
            async with self._db.session() as session:
                notification = await store.create_notification(
                    session,
                    user_id=payload.user_id,
                    title=payload.title,
                    body=payload.body,
                    channel=payload.channel,
                    meta=payload.meta,
                )
        except (SQLAlchemyError, OSError) as e:
            logger.error(
                "notification_persist_failed",
                extra={"user.id": payload.user_id, "error.message": str(e)},
            )
            raise PersistenceFailure(
                f"Could not persist notification for {payload.user_id!r}: {e}"
            ) from e

        await self._push_realtime(payload, notification)
        await self._run_channel(payload)

        logger.info(
            "notification_sent",
            extra={
                "notification.id": notification.id,
                "notification.channel": payload.channel,
                "user.id": payload.user_id,
            },
        )
        return notification

    async def _push_realtime(
        self, payload: NotifyPayload, notification: Notification
    ) -> None:
        sink = self._realtime
        if sink is None:
            return
        try:
            await sink.push(
                payload.user_id,
                "notification",
                {
                    "id": notification.id,
                    "title": payload.title,
                    "body": payload.body,
                    "channel": payload.channel,
                    "meta": payload.meta,
                },
            )
        except Exception as e:
            logger.warning(
                "notification_push_failed",
                extra={"user.id": payload.user_id, "error.message": str(e)},
            )

    async def _run_channel(self, payload: NotifyPayload) -> None:
        with self._lock:
            handler = self._channels.get(payload.channel)
        if handler is None:
            return
        try:
            await handler(payload)
        except Exception as e:
            logger.warning(
                "notification_channel_failed",
                extra={
                    "notification.channel": payload.channel,
                    "user.id": payload.user_id,
                    "error.message": str(e),
                },
                exc_info=True,
            )

    async def schedule(
        self, payload: NotifyPayload | dict[str, Any], at: datetime
    ) -> str:
        """Deliver a notification at `at`.

        Returns:
            A job id usable with cancel(), or IMMEDIATE if `at` was not in the
            future and the notification was sent inline.

        Raises:
            SchedulerUnavailable: If a delayed send is needed and the broker
                is down.
        """
        payload = self._coerce(payload)
        if at.tzinfo is None:
            at = at.replace(tzinfo=UTC)
        delay_ms = int((at - datetime.now(UTC)).total_seconds() * 1000)
        if delay_ms <= 0:
            await self.send(payload)
            return IMMEDIATE

        async def deliver(job_id: str, data: dict[str, Any]) -> None:
            await self.send(payload)

        job_id = await self._scheduler.add_delayed(
            f"notify:{payload.user_id}:{time.time_ns()}", delay_ms, deliver
        )
        logger.info(
            "notification_scheduled",
            extra={"job.id": job_id, "user.id": payload.user_id, "delay_ms": delay_ms},
        )
        return job_id

    async def cancel(self, job_id: str) -> None:
        """Cancel a scheduled notification. Already persisted rows are kept.

        Unlike Scheduler.remove, which is a silent no-op without a broker,
        this raises: the caller asked for a specific pending delivery to be
        stopped and must learn that nothing was cancelled.

        Raises:
            SchedulerUnavailable: If the broker is down.
            JobNotFound: If the job is unknown or has already run.
        """
        if not self._scheduler.ready:
            raise SchedulerUnavailable()
        if not await self._scheduler.remove(job_id):
            raise JobNotFound(job_id)
        logger.info("notification_cancelled", extra={"job.id": job_id})

    async def list_for_user(
        self, user_id: str, page: int = 1, limit: int = 20
    ) -> NotificationPage:
        """Paginated notification history for a user, newest first."""
        page = max(1, page)
        limit = min(MAX_PAGE_SIZE, max(1, limit))
        async with self._db.session() as session:
            items = await store.list_notifications(
                session, user_id, offset=(page - 1) * limit, limit=limit
            )
            total = await store.count_notifications(session, user_id)
        return NotificationPage(items=items, page=page, limit=limit, total=total)

    async def mark_read(self, notification_id: str) -> Notification:
        """Mark a notification as read.

        Raises:
            NotificationNotFound: If no such notification exists.
        """
        async with self._db.session() as session:
            notification = await store.mark_read(session, notification_id)
        if notification is None:
            raise NotificationNotFound(notification_id)
        return notification
