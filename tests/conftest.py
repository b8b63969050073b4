"""
Shared fixtures for the Clinic Board test suite.
"""

import threading
import time
from datetime import date, datetime

import pytest
import pytz
from PySide6.QtCore import QCoreApplication

from clinicboard.models import AllDay, CalendarConfig, CalendarEvent, RawEvent, Timed
from clinicboard.sources import EventSource


BOGOTA = pytz.timezone("America/Bogota")
DAY = date(2024, 3, 11)


def at(hour: int, minute: int = 0, second: int = 0, microsecond: int = 0) -> datetime:
    """Aware instant on DAY in Bogota."""
    return BOGOTA.localize(datetime(2024, 3, 11, hour, minute, second, microsecond))


def timed_raw(event_id: str, start: datetime, end: datetime, title: str = None) -> RawEvent:
    return RawEvent(id=event_id, start=Timed(start), end=Timed(end), title=title)


def all_day_raw(event_id: str, day: date, end_day: date, title: str = None) -> RawEvent:
    return RawEvent(id=event_id, start=AllDay(day), end=AllDay(end_day), title=title)


def make_event(
    event_id: str,
    calendar_id: str,
    start: datetime,
    end: datetime,
    title: str = "Appointment",
    all_day: bool = False,
) -> CalendarEvent:
    return CalendarEvent(
        id=event_id,
        calendar_id=calendar_id,
        calendar_label=calendar_id.upper(),
        calendar_type="resource",
        title=title,
        start=start,
        end=end,
        all_day=all_day,
    )


class FakeSource(EventSource):
    """
    In-memory event source.

    `events` maps calendar id -> list of RawEvent, or an exception to raise.
    """

    def __init__(self, events=None):
        self.events = dict(events or {})
        self.calls = []

    def fetch_events(self, calendar, day, time_min, time_max):
        self.calls.append((calendar.id, day, time_min, time_max))
        result = self.events.get(calendar.id, [])
        if isinstance(result, Exception):
            raise result
        return list(result)


class GatedSource(FakeSource):
    """
    FakeSource whose fetches for `slow_day` block until `release` is set.

    `blocked` counts fetches currently held at the gate.
    """

    def __init__(self, slow_day, events=None):
        super().__init__(events)
        self.slow_day = slow_day
        self.release = threading.Event()
        self.blocked = 0
        self._lock = threading.Lock()

    def fetch_events(self, calendar, day, time_min, time_max):
        if day == self.slow_day:
            with self._lock:
                self.blocked += 1
            try:
                self.release.wait(10)
            finally:
                with self._lock:
                    self.blocked -= 1
        return super().fetch_events(calendar, day, time_min, time_max)


@pytest.fixture(scope="session")
def qapp():
    """Qt core application for timer and signal tests."""
    app = QCoreApplication.instance()
    if app is None:
        app = QCoreApplication([])
    return app


@pytest.fixture
def wait_until(qapp):
    """Process Qt events until `condition()` holds or the timeout expires."""
    def _wait(condition, timeout: float = 2.0) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            qapp.processEvents()
            if condition():
                return True
            time.sleep(0.01)
        qapp.processEvents()
        return condition()
    return _wait


@pytest.fixture
def calendars():
    """Two active rooms and one inactive room, in store order."""
    return [
        CalendarConfig(id="r1", label="Room 1", timezone="America/Bogota", sort_order=1),
        CalendarConfig(id="r2", label="Room 2", timezone="America/Bogota", sort_order=2, active=False),
        CalendarConfig(id="p1", label="Dr. Ruiz", type="professional",
                       timezone="America/Bogota", sort_order=3),
    ]


@pytest.fixture
def fake_source():
    return FakeSource()
