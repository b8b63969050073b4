"""
Live classifier.

Partitions the aggregated events into "current" and "upcoming" per
calendar for a given instant. Pure and cheap: it only re-partitions the
already aggregated collection, so it can run on every clock tick.
"""

from datetime import datetime
from typing import Iterable, Optional

from .models import CalendarEvent, CalendarSchedule
from .timezone_utils import ensure_aware


def is_current(event: CalendarEvent, now: datetime) -> bool:
    # Inclusive at both ends: an event ending exactly now is still current
    return event.start <= now <= event.end


def is_upcoming(event: CalendarEvent, now: datetime) -> bool:
    return event.start > now


def classify(
    events: Iterable[CalendarEvent],
    now: datetime,
    calendar_ids: Optional[Iterable[str]] = None,
) -> dict[str, CalendarSchedule]:
    """
    Classify events relative to `now`.

    Args:
        events: Aggregated events
        now: Current instant (naive values are read as UTC)
        calendar_ids: Calendars that get an entry even without events

    Returns:
        Mapping of calendar id to CalendarSchedule. Finished events are
        left out. Upcoming events are ordered by start; events with the
        same start keep their aggregated order.
    """
    now = ensure_aware(now)

    current: dict[str, list[CalendarEvent]] = {}
    upcoming: dict[str, list[CalendarEvent]] = {}
    for calendar_id in calendar_ids or ():
        current.setdefault(calendar_id, [])
        upcoming.setdefault(calendar_id, [])

    for event in events:
        current.setdefault(event.calendar_id, [])
        upcoming.setdefault(event.calendar_id, [])
        if is_current(event, now):
            current[event.calendar_id].append(event)
        elif is_upcoming(event, now):
            upcoming[event.calendar_id].append(event)

    return {
        calendar_id: CalendarSchedule(
            current=tuple(current[calendar_id]),
            # sorted() is stable, so equal starts keep aggregated order
            upcoming=tuple(sorted(upcoming[calendar_id], key=lambda e: e.start)),
        )
        for calendar_id in current
    }
