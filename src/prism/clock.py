"""Clock and timezone service."""

import logging
import re
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from prism.db.user_profiles import get_user_timezone
from prism.errors import InvalidDateTime

if TYPE_CHECKING:
    from prism.db import Database

logger = logging.getLogger(__name__)

_WINDOW_RE = re.compile(r"^(\d+)(s|m|h|d)$")
_WINDOW_UNITS = {"s": "seconds", "m": "minutes", "h": "hours", "d": "days"}


class TimeService:
    """Absolute-time helpers plus per-user timezone lookup."""

    def __init__(self, database: "Database"):
        self._db = database

    def now(self) -> datetime:
        """Current time, timezone-aware UTC."""
        return datetime.now(UTC)

    def parse(self, raw: str) -> datetime:
        """Parse an ISO 8601 string. Naive values are taken as UTC.

        Raises:
            InvalidDateTime: If `raw` is not ISO 8601.
        """
        try:
            dt = datetime.fromisoformat(raw.strip())
        except (AttributeError, ValueError) as e:
            raise InvalidDateTime(f"Cannot parse datetime: {raw!r}") from e
        if dt.tzinfo is None:
            return dt.replace(tzinfo=UTC)
        return dt.astimezone(UTC)

    def format(self, dt: datetime, fmt: str) -> str:
        """Format with a strftime pattern, e.g. "%Y-%m-%d %H:%M"."""
        return dt.strftime(fmt)

    async def to_user_tz(self, dt: datetime, user_id: str) -> datetime:
        """Convert `dt` into the user's profile timezone (UTC if unknown)."""
        async with self._db.session() as session:
            tz_name = await get_user_timezone(session, user_id)

        tz_name = tz_name or "UTC"
        try:
            tz = ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(
                "invalid_timezone",
                extra={"user.id": user_id, "schedule.timezone": tz_name},
            )
            tz = ZoneInfo("UTC")
        return dt.astimezone(tz)

    def diff(self, a: datetime, b: datetime) -> timedelta:
        """a - b"""
        return a - b

    def is_within(self, dt: datetime, window: str) -> bool:
        """True if `dt` is within `window` ("30s", "15m", "1h", "2d") of now.

        Raises:
            InvalidDateTime: If `window` is malformed.
        """
        match = _WINDOW_RE.match(window)
        if not match:
            raise InvalidDateTime(
                f'Invalid window format: "{window}". Expected e.g. "15m", "1h".'
            )
        span = timedelta(**{_WINDOW_UNITS[match.group(2)]: int(match.group(1))})
        return abs(self.now() - dt) <= span
