"""Per-user timezone lookups."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from prism.db.models import UserProfile


async def get_user_timezone(session: AsyncSession, user_id: str) -> str | None:
    """Return the user's IANA timezone, or None if unknown."""
    return await session.scalar(
        select(UserProfile.timezone).where(UserProfile.user_id == user_id)
    )


async def set_user_timezone(
    session: AsyncSession,
    user_id: str,
    timezone: str,
    display_name: str | None = None,
) -> UserProfile:
    """Upsert the profile row for `user_id` with a new timezone.

    A given `display_name` replaces the stored one; None leaves it alone.
    """
    profile = await session.get(UserProfile, user_id) or UserProfile(user_id=user_id)
    profile.timezone = timezone
    if display_name is not None:
        profile.display_name = display_name
    session.add(profile)
    await session.flush()
    return profile
