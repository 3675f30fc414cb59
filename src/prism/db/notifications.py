"""Notification storage operations."""

from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from prism.db.models import Notification


async def create_notification(
    session: AsyncSession,
    *,
    user_id: str,
    title: str,
    body: str,
    channel: str,
    meta: dict[str, Any] | None = None,
) -> Notification:
    """Insert an unread notification row and flush it."""
    notification = Notification(
        user_id=user_id,
        title=title,
        body=body,
        channel=channel,
        meta=dict(meta or {}),
        read=False,
    )
    session.add(notification)
    await session.flush()
    return notification


async def list_notifications(
    session: AsyncSession,
    user_id: str,
    *,
    offset: int = 0,
    limit: int = 20,
) -> list[Notification]:
    """List a user's notifications, newest first."""
    result = await session.execute(
        select(Notification)
        .where(Notification.user_id == user_id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .offset(offset)
        .limit(limit)
    )
    return list(result.scalars().all())


async def count_notifications(session: AsyncSession, user_id: str) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(Notification)
        .where(Notification.user_id == user_id)
    )
    return int(result.scalar_one())


async def get_notification(
    session: AsyncSession, notification_id: str
) -> Notification | None:
    return await session.get(Notification, notification_id)


async def mark_read(
    session: AsyncSession, notification_id: str
) -> Notification | None:
    """Flag a notification as read.

    Returns:
        The updated row, or None if it does not exist.
    """
    notification = await get_notification(session, notification_id)
    if notification is None:
        return None
    notification.read = True
    await session.flush()
    return notification
