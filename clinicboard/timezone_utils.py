"""
Timezone utilities for Clinic Board.

All event instants are timezone-aware. Whole-day values and the daily
fetch window are resolved against the calendar's configured zone.
"""

from datetime import datetime, date, time
from typing import Optional
import pytz


DEFAULT_TIMEZONE = "America/Bogota"


def get_timezone(name: Optional[str], fallback: str = DEFAULT_TIMEZONE):
    """
    Get a pytz timezone by name.

    Args:
        name: IANA zone name, may be empty.
        fallback: Zone used when name is empty.

    Raises:
        pytz.UnknownTimeZoneError: If the zone name is not known.
    """
    return pytz.timezone(name or fallback)


def local_midnight(day: date, tz) -> datetime:
    """Return the aware instant of local midnight on `day` in `tz`."""
    # localize() picks the right UTC offset for the day, unlike replace(tzinfo=...)
    return tz.localize(datetime.combine(day, time.min))


def day_bounds(day: date, tz) -> tuple[datetime, datetime]:
    """
    Get the fetch window for a local calendar day.

    Returns:
        (day 00:00:00, day 23:59:59) as aware datetimes in `tz`.
    """
    start = local_midnight(day, tz)
    end = tz.localize(datetime.combine(day, time(23, 59, 59)))
    return start, end


def ensure_aware(dt: datetime, tz=pytz.UTC) -> datetime:
    """Attach `tz` to a naive datetime; aware datetimes are returned as-is."""
    if dt.tzinfo is None:
        return tz.localize(dt)
    return dt


def today_in(tz, now: Optional[datetime] = None) -> date:
    """Get the current local date in `tz`."""
    if now is None:
        now = datetime.now(pytz.UTC)
    return ensure_aware(now).astimezone(tz).date()


def utc_now() -> datetime:
    """Default clock for the live classifier."""
    return datetime.now(pytz.UTC)

