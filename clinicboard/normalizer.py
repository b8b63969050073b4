"""
Event normalizer.

Turns one RawEvent plus its owning CalendarConfig into exactly one
CalendarEvent. This is the only place where whole-day dates become
instants and where calendar identity is copied onto events.
"""

from datetime import datetime
from typing import Optional
import logging

from .errors import NormalizationError
from .models import AllDay, CalendarConfig, CalendarEvent, RawEvent, RawTime, Timed
from .timezone_utils import ensure_aware, get_timezone, local_midnight


logger = logging.getLogger(__name__)

UNTITLED = "Untitled"


def resolve_time(value: Optional[RawTime], tz) -> datetime:
    """
    Resolve a provider time to an absolute instant.

    Timestamps are kept as-is (floating ones are read in `tz`); whole-day
    dates become local midnight in `tz`.
    """
    if isinstance(value, Timed):
        return ensure_aware(value.instant, tz)
    if isinstance(value, AllDay):
        return local_midnight(value.day, tz)
    raise NormalizationError("missing time value")


def normalize_event(raw: RawEvent, config: CalendarConfig, untitled: str = UNTITLED) -> CalendarEvent:
    """
    Normalize one raw event for `config`.

    Args:
        raw: Event as returned by the source adapter
        config: Calendar the event was fetched for
        untitled: Placeholder for events without a title

    Returns:
        The canonical CalendarEvent.

    Raises:
        NormalizationError: If start or end is missing.
    """
    if raw.start is None:
        raise NormalizationError(f"event {raw.id!r} has no start")
    if raw.end is None:
        raise NormalizationError(f"event {raw.id!r} has no end")

    tz = get_timezone(config.timezone)
    start = resolve_time(raw.start, tz)
    end = resolve_time(raw.end, tz)

    if start > end:
        # Provider data error: pass it through unchanged
        logger.warning(
            "Calendar %s: event %r ends before it starts (%s > %s)",
            config.id, raw.id, start.isoformat(), end.isoformat(),
        )

    return CalendarEvent(
        id=raw.id,
        calendar_id=config.id,
        calendar_label=config.label,
        calendar_type=config.type,
        title=raw.title or untitled,
        start=start,
        end=end,
        all_day=isinstance(raw.start, AllDay),
        location=raw.location,
        description=raw.description,
    )


def normalize_events(
    raw_events: list[RawEvent],
    config: CalendarConfig,
    untitled: str = UNTITLED,
) -> tuple[list[CalendarEvent], int]:
    """
    Normalize a calendar's raw events, keeping provider order.

    Returns:
        (events, number of dropped events)
    """
    events = []
    dropped = 0
    for raw in raw_events:
        try:
            events.append(normalize_event(raw, config, untitled))
        except NormalizationError as e:
            dropped += 1
            logger.warning("Calendar %s: dropping event: %s", config.id, e)
    return events, dropped
