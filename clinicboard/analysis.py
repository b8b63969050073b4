"""
Schedule conflict analysis.

find_conflicts() is a local, deterministic check for double-booked
rooms and for the same person booked in two places at once.
InsightClient asks the dashboard's AI endpoint for a short written
summary of the day.
"""

from dataclasses import dataclass
from datetime import date
from itertools import combinations
from typing import Iterable
import logging

import requests

from .errors import AnalysisError
from .models import CalendarEvent


logger = logging.getLogger(__name__)

DOUBLE_BOOKING = "double_booking"
PERSON_CONFLICT = "person_conflict"

# Phrases the insight endpoint uses when the day is clean
NO_CONFLICT_MARKERS = ("sin conflictos", "no conflicts")


@dataclass(frozen=True)
class Conflict:
    """Two events that should not overlap but do."""
    kind: str
    first: CalendarEvent
    second: CalendarEvent

    def describe(self) -> str:
        if self.kind == DOUBLE_BOOKING:
            return (
                f"{self.first.calendar_label}: '{self.first.title}' overlaps "
                f"'{self.second.title}'"
            )
        return (
            f"'{self.first.title}' is booked in {self.first.calendar_label} "
            f"and {self.second.calendar_label} at the same time"
        )


@dataclass(frozen=True)
class Insight:
    text: str
    has_conflicts: bool


def overlaps(a: CalendarEvent, b: CalendarEvent) -> bool:
    """Strict interval overlap; back-to-back events do not overlap."""
    return a.start < b.end and b.start < a.end


def _person_key(event: CalendarEvent) -> str:
    return " ".join(event.title.casefold().split())


def find_conflicts(events: Iterable[CalendarEvent], untitled: str = "Untitled") -> list[Conflict]:
    """
    Find double bookings and person conflicts among the day's events.

    All-day events are ignored; they mark availability, not appointments.
    Events titled with the untitled placeholder never form person conflicts.

    Returns:
        Conflicts ordered by the earlier event's start.
    """
    timed = sorted(
        (e for e in events if not e.all_day and e.start <= e.end),
        key=lambda e: e.start,
    )

    conflicts = []
    for first, second in combinations(timed, 2):
        if not overlaps(first, second):
            continue
        if first.calendar_id == second.calendar_id:
            conflicts.append(Conflict(DOUBLE_BOOKING, first, second))
        elif _person_key(first) == _person_key(second) and first.title != untitled:
            conflicts.append(Conflict(PERSON_CONFLICT, first, second))

    conflicts.sort(key=lambda c: (c.first.start, c.second.start))
    return conflicts


class InsightClient:
    """Client for the AI schedule analysis endpoint."""

    def __init__(self, url: str, timeout: int = 30):
        self.url = url
        self.timeout = timeout

    def analyze(self, events: Iterable[CalendarEvent], day: date) -> Insight:
        """
        Request an insight for the day's schedule.

        Raises:
            AnalysisError: On network errors, non-2xx responses or malformed replies.
        """
        payload = {
            'events': [e.to_dict() for e in events],
            'date': day.isoformat(),
        }
        try:
            response = requests.post(self.url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            raise AnalysisError(f"Analysis endpoint error: {e}") from e
        except ValueError as e:
            raise AnalysisError(f"Analysis endpoint returned invalid JSON: {e}") from e

        if not isinstance(data, dict) or 'insight' not in data:
            raise AnalysisError(f"Unexpected analysis reply: {data!r}")

        text = str(data['insight']).strip()
        has_conflicts = data.get('hasConflicts')
        if has_conflicts is None:
            lowered = text.lower()
            has_conflicts = not any(marker in lowered for marker in NO_CONFLICT_MARKERS)
        logger.debug("Insight for %s: %s", day.isoformat(), text)
        return Insight(text=text, has_conflicts=bool(has_conflicts))
