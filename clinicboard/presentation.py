"""
Display-side helpers shared by the board views and the CLI.

The core always produces full event data; hiding titles for calendars
with showDetails switched off happens here.
"""

from dataclasses import dataclass
from typing import Iterable, Optional

from .config import LabelsConfig
from .models import CalendarConfig, CalendarEvent, CalendarType
from .timezone_utils import get_timezone


@dataclass(frozen=True)
class DisplayEvent:
    """What a board tile shows for one event."""
    title: str
    time_range: str
    location: str = ""
    description: str = ""
    redacted: bool = False


def ordered_calendars(configs: Iterable[CalendarConfig]) -> list[CalendarConfig]:
    """Active calendars by sort order; ties keep store order."""
    return sorted((c for c in configs if c.active), key=lambda c: c.sort_order)


def filter_calendars(
    configs: Iterable[CalendarConfig],
    cal_type: Optional[str] = None,
    search: str = "",
) -> list[CalendarConfig]:
    """Filter by calendar type (None or "all" keeps every type) and label text."""
    needle = search.strip().casefold()
    return [
        c for c in configs
        if (cal_type in (None, "all") or c.type == cal_type)
        and needle in c.label.casefold()
    ]


def type_label(cal_type: str, labels: LabelsConfig) -> str:
    """Sub-label shown under a calendar's name."""
    if cal_type == CalendarType.PROFESSIONAL.value:
        return labels.type_professional
    if cal_type == CalendarType.GENERAL.value:
        return labels.type_general
    return labels.type_resource


def format_time_range(event: CalendarEvent, timezone: str, labels: LabelsConfig) -> str:
    """Local HH:MM - HH:MM, or the all-day label."""
    if event.all_day:
        return labels.all_day
    tz = get_timezone(timezone)
    start = event.start.astimezone(tz)
    end = event.end.astimezone(tz)
    return f"{start:%H:%M} - {end:%H:%M}"


def display_event(event: CalendarEvent, config: CalendarConfig, labels: LabelsConfig) -> DisplayEvent:
    """Build the tile text for an event, redacting it when showDetails is off."""
    time_range = format_time_range(event, config.timezone, labels)
    if not config.show_details:
        return DisplayEvent(title=labels.busy, time_range=time_range, redacted=True)
    return DisplayEvent(
        title=event.title,
        time_range=time_range,
        location=event.location or "",
        description=event.description or "",
    )
