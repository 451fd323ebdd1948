"""Time helpers shared by the services.

Every service takes an optional ``now`` so that expiry can be evaluated at
an arbitrary instant; these helpers resolve it and translate between UTC
instants and the club's calendar.
"""

from datetime import UTC, date, datetime, time
from zoneinfo import ZoneInfo

from clubhouse.core.config import settings

CLUB_TZ = ZoneInfo(settings.club_timezone)


def utcnow() -> datetime:
    return datetime.now(UTC)


def resolve_now(now: datetime | None) -> datetime:
    return ensure_utc(now) if now is not None else utcnow()


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive values (SQLite hands timestamps back without tzinfo)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def club_today(now: datetime | None = None) -> date:
    """The calendar date at the club for the given instant."""
    return resolve_now(now).astimezone(CLUB_TZ).date()


def club_day_start(day: date) -> datetime:
    """Midnight at the club on ``day``, as a UTC instant."""
    return datetime.combine(day, time.min, tzinfo=CLUB_TZ).astimezone(UTC)
