"""
Data model for Clinic Board.

CalendarConfig describes one configured calendar (room, professional,
equipment). RawEvent is what a source adapter hands over, with its start
and end still in the provider's tagged form. CalendarEvent is the
canonical, fully resolved event the rest of the application sees.
"""

from dataclasses import dataclass, field
from datetime import datetime, date
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional, Union


class CalendarType(str, Enum):
    """Closed set of calendar categories."""
    RESOURCE = "resource"
    PROFESSIONAL = "professional"
    GENERAL = "general"


def _frozen_mapping(data: Optional[Mapping]) -> Mapping:
    return MappingProxyType(dict(data or {}))


@dataclass(frozen=True)
class CalendarConfig:
    """
    One configured calendar.

    The core only ever reads these; edits happen in the configuration store.
    """
    id: str
    label: str
    type: str = CalendarType.RESOURCE.value
    provider_calendar_id: str = ""
    timezone: str = ""
    active: bool = True
    show_details: bool = True
    sort_order: int = 0
    provider: str = "google"  # "google" (HTTP JSON service) or "ics"
    subtype: str = ""  # finer-grained category, display only

    @property
    def effective_provider_id(self) -> str:
        """Provider identifier, falling back to the internal id."""
        return self.provider_calendar_id or self.id


# ==================== Raw provider times ====================

@dataclass(frozen=True)
class AllDay:
    """Whole-day provider value (a bare date)."""
    day: date


@dataclass(frozen=True)
class Timed:
    """Timestamped provider value."""
    instant: datetime


RawTime = Union[AllDay, Timed]


@dataclass(frozen=True)
class RawEvent:
    """
    One provider event as fetched, before normalization.

    start/end are None when the provider sent neither a timestamp nor a date.
    """
    id: str
    start: Optional[RawTime]
    end: Optional[RawTime]
    title: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None


# ==================== Canonical events ====================

@dataclass(frozen=True)
class CalendarEvent:
    """
    Canonical event, denormalized with its owning calendar's identity.

    Identity across calendars is (calendar_id, id).
    """
    id: str
    calendar_id: str
    calendar_label: str
    calendar_type: str
    title: str
    start: datetime
    end: datetime
    all_day: bool = False
    location: Optional[str] = None
    description: Optional[str] = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.calendar_id, self.id)

    def to_dict(self) -> dict:
        """Serialize for JSON output (CLI, insight endpoint)."""
        return {
            'id': self.id,
            'calendarId': self.calendar_id,
            'calendarLabel': self.calendar_label,
            'calendarType': self.calendar_type,
            'title': self.title,
            'start': self.start.isoformat(),
            'end': self.end.isoformat(),
            'allDay': self.all_day,
            'location': self.location,
            'description': self.description,
        }


# ==================== Aggregation results ====================

@dataclass(frozen=True)
class FetchOutcome:
    """Result of fetching and normalizing one calendar."""
    calendar_id: str
    events: tuple[CalendarEvent, ...] = ()
    error: Optional[str] = None
    dropped: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class AggregationResult:
    """
    Flat event collection for one cycle plus per-calendar annotations.

    errors maps calendar id -> failure reason; dropped maps calendar id ->
    number of events discarded by the normalizer.
    """
    events: tuple[CalendarEvent, ...] = ()
    errors: Mapping[str, str] = field(default_factory=dict)
    dropped: Mapping[str, int] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, 'events', tuple(self.events))
        object.__setattr__(self, 'errors', _frozen_mapping(self.errors))
        object.__setattr__(self, 'dropped', _frozen_mapping(self.dropped))

    def __eq__(self, other):
        if not isinstance(other, AggregationResult):
            return NotImplemented
        return (
            self.events == other.events
            and dict(self.errors) == dict(other.errors)
            and dict(self.dropped) == dict(other.dropped)
        )

    def events_for(self, calendar_id: str) -> list[CalendarEvent]:
        return [e for e in self.events if e.calendar_id == calendar_id]


@dataclass(frozen=True)
class BoardSnapshot:
    """Immutable board state published to the views."""
    sequence: int
    date: date
    calendars: tuple[CalendarConfig, ...]
    result: AggregationResult
    fetched_at: datetime

    @property
    def events(self) -> tuple[CalendarEvent, ...]:
        return self.result.events

    @property
    def errors(self) -> Mapping[str, str]:
        return self.result.errors

    @property
    def dropped(self) -> Mapping[str, int]:
        return self.result.dropped

    def calendar(self, calendar_id: str) -> Optional[CalendarConfig]:
        for config in self.calendars:
            if config.id == calendar_id:
                return config
        return None


@dataclass(frozen=True)
class BoardStatus:
    """
    Connectivity indicator for the views.

    connection is "ok" or "error" and reflects the most recent cycle;
    stale is True while older data is being shown after a failure.
    """
    connection: str = "ok"
    stale: bool = False
    message: str = ""
    last_success: Optional[datetime] = None
    sequence: int = 0

    @property
    def ok(self) -> bool:
        return self.connection == "ok"


@dataclass(frozen=True)
class CalendarSchedule:
    """Classification of one calendar's events at a given instant."""
    current: tuple[CalendarEvent, ...] = ()
    upcoming: tuple[CalendarEvent, ...] = ()
