"""
Calendar source adapters.

Each adapter fetches one calendar's events for one day and converts the
provider payload into RawEvent objects. Date-only vs. timestamped values
are kept apart as AllDay/Timed here; the normalizer resolves them.
"""

from abc import ABC, abstractmethod
from collections import Counter
from datetime import datetime, date, timedelta, timezone
from typing import Any, Optional
import logging

import requests
from icalendar import Calendar as ICalCalendar
from recurring_ical_events import of as recurring_events_of

from .errors import FetchError
from .models import AllDay, CalendarConfig, RawEvent, RawTime, Timed
from .timezone_utils import ensure_aware, get_timezone, local_midnight


logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class EventSource(ABC):
    """Fetches raw events for one calendar."""

    @abstractmethod
    def fetch_events(
        self,
        calendar: CalendarConfig,
        day: date,
        time_min: datetime,
        time_max: datetime,
    ) -> list[RawEvent]:
        """
        Fetch the provider-ordered events of `calendar` within the window.

        Raises:
            FetchError: On network errors, non-2xx responses or malformed payloads.
        """


# ==================== Google-shaped JSON service ====================

def parse_provider_time(value: Any) -> Optional[RawTime]:
    """
    Parse a provider start/end object.

    {"dateTime": "..."} wins over {"date": "YYYY-MM-DD"}; anything else
    (including unparsable strings) yields None.
    """
    if not isinstance(value, dict):
        return None

    date_time = value.get('dateTime')
    if date_time:
        try:
            return Timed(datetime.fromisoformat(str(date_time).replace('Z', '+00:00')))
        except ValueError:
            logger.debug("Unparsable dateTime %r", date_time)

    day = value.get('date')
    if day:
        try:
            return AllDay(date.fromisoformat(str(day)))
        except ValueError:
            logger.debug("Unparsable date %r", day)

    return None


def parse_provider_item(item: Any) -> RawEvent:
    """Convert one Google Calendar event item into a RawEvent."""
    if not isinstance(item, dict):
        return RawEvent(id='', start=None, end=None)
    return RawEvent(
        id=str(item.get('id', '')),
        start=parse_provider_time(item.get('start')),
        end=parse_provider_time(item.get('end')),
        title=item.get('summary'),
        location=item.get('location'),
        description=item.get('description'),
    )


class HttpEventSource(EventSource):
    """
    Events served as JSON by the dashboard's calendar endpoint.

    The endpoint proxies the calendar provider and returns its event items
    ordered by start time.
    """

    def __init__(
        self,
        base_url: str,
        events_path: str = "/api/calendar",
        timeout: int = 15,
        user_agent: str = "Clinic-Board/1.0",
        session: Optional[requests.Session] = None,
    ):
        self.url = base_url.rstrip('/') + events_path
        self.timeout = timeout
        self.user_agent = user_agent
        self._session = session or requests.Session()

    def fetch_events(self, calendar, day, time_min, time_max) -> list[RawEvent]:
        params = {
            'calendarId': calendar.effective_provider_id,
            'date': day.isoformat(),
            'timeZone': calendar.timezone,
            'timeMin': time_min.isoformat(),
            'timeMax': time_max.isoformat(),
        }
        try:
            response = self._session.get(
                self.url,
                params=params,
                timeout=self.timeout,
                headers={'User-Agent': self.user_agent, 'Accept': 'application/json'},
            )
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as e:
            raise FetchError(f"Network error: {e}") from e
        except ValueError as e:
            raise FetchError(f"Malformed response: {e}") from e

        if isinstance(payload, dict) and isinstance(payload.get('items'), list):
            payload = payload['items']
        if not isinstance(payload, list):
            raise FetchError(f"Malformed response: expected a list, got {type(payload).__name__}")

        return [parse_provider_item(item) for item in payload]


# ==================== ICS feeds ====================

def _ical_time(component, name: str) -> Optional[RawTime]:
    prop = component.get(name)
    if prop is None:
        return None
    value = prop.dt
    if isinstance(value, datetime):
        return Timed(value)
    if isinstance(value, date):
        return AllDay(value)
    return None


def _ical_end(component, start: Optional[RawTime]) -> Optional[RawTime]:
    end = _ical_time(component, 'DTEND')
    if end is not None or start is None:
        return end

    duration = component.get('DURATION')
    if isinstance(start, AllDay):
        days = duration.dt.days if duration is not None else 1
        return AllDay(start.day + timedelta(days=max(days, 1)))
    if duration is not None:
        return Timed(start.instant + duration.dt)
    # RFC 5545: a timed event without DTEND or DURATION ends when it starts
    return start


class IcsEventSource(EventSource):
    """Read-only ICS feed; providerCalendarId holds the feed URL."""

    def __init__(self, timeout: int = 30, user_agent: str = "Clinic-Board/1.0"):
        self.timeout = timeout
        self.user_agent = user_agent

    def fetch_events(self, calendar, day, time_min, time_max) -> list[RawEvent]:
        url = calendar.effective_provider_id
        try:
            response = requests.get(
                url,
                timeout=self.timeout,
                headers={'User-Agent': self.user_agent, 'Accept': 'text/calendar'},
            )
            response.raise_for_status()
            # Ensure proper UTF-8 decoding
            response.encoding = 'utf-8'
            vcal = ICalCalendar.from_ical(response.text)
            components = list(recurring_events_of(vcal).between(time_min, time_max))
        except requests.RequestException as e:
            raise FetchError(f"Network error: {e}") from e
        except ValueError as e:
            raise FetchError(f"Malformed calendar feed: {e}") from e

        tz = get_timezone(calendar.timezone)
        components.sort(key=lambda c: _sort_key(_ical_time(c, 'DTSTART'), tz))
        uid_counts = Counter(str(c.get('UID', '')) for c in components)

        events = []
        for component in components:
            uid = str(component.get('UID', ''))
            start = _ical_time(component, 'DTSTART')
            if uid_counts[uid] > 1 and start is not None:
                # Recurring instances share a UID
                event_id = f"{uid}@{_time_key(start)}"
            else:
                event_id = uid
            summary = component.get('SUMMARY')
            location = component.get('LOCATION')
            description = component.get('DESCRIPTION')
            events.append(RawEvent(
                id=event_id,
                start=start,
                end=_ical_end(component, start),
                title=str(summary) if summary else None,
                location=str(location) if location else None,
                description=str(description) if description else None,
            ))
        return events


def _time_key(value: RawTime) -> str:
    if isinstance(value, AllDay):
        return value.day.isoformat()
    return value.instant.isoformat()


def _sort_key(value: Optional[RawTime], tz) -> tuple[bool, datetime]:
    """Order feed components by start like the JSON service does; undated ones last."""
    if value is None:
        return (True, _EPOCH)
    if isinstance(value, AllDay):
        return (False, local_midnight(value.day, tz))
    return (False, ensure_aware(value.instant, tz))


def create_event_sources(config) -> dict[str, EventSource]:
    """Build the adapter registry keyed by CalendarConfig.provider."""
    return {
        'google': HttpEventSource(
            config.provider.base_url,
            config.provider.events_path,
            config.provider.timeout,
            config.provider.user_agent,
        ),
        'ics': IcsEventSource(config.provider.timeout, config.provider.user_agent),
    }
