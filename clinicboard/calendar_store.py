"""
Calendar configuration store.

The admin panel writes the calendar list; the board reads it once per
aggregation cycle. Two backends are provided: a JSON file (watched for
changes) and an HTTP config endpoint.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable, Optional
import contextlib
import json
import logging
import os
import tempfile

import requests

from .errors import StoreError
from .models import CalendarConfig, CalendarType
from .timezone_utils import DEFAULT_TIMEZONE


logger = logging.getLogger(__name__)

_KNOWN_TYPES = {t.value for t in CalendarType}


DEFAULT_CALENDARS = [
    {'id': 'consultorio', 'label': 'Consultorio', 'type': 'resource',
     'timezone': DEFAULT_TIMEZONE, 'active': True, 'showDetails': True,
     'sort': 1, 'googleCalendarId': 'primary'},
    {'id': 'procedimientos', 'label': 'Sala de Procedimientos', 'type': 'resource',
     'timezone': DEFAULT_TIMEZONE, 'active': True, 'showDetails': True,
     'sort': 2, 'googleCalendarId': 'primary'},
    {'id': 'hiperbarica', 'label': 'Cámara Hiperbárica', 'type': 'resource',
     'timezone': DEFAULT_TIMEZONE, 'active': True, 'showDetails': True,
     'sort': 3, 'googleCalendarId': 'primary'},
    {'id': 'postoperatorio', 'label': 'Postoperatorio', 'type': 'resource',
     'timezone': DEFAULT_TIMEZONE, 'active': True, 'showDetails': True,
     'sort': 4, 'googleCalendarId': 'primary'},
]


# ==================== Record conversion ====================

def _parse_bool(record: dict, key: str, calendar_id, default: bool = True) -> bool:
    """Read a boolean flag; accepts JSON booleans and "true"/"false" strings."""
    value = record.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ('true', 'false'):
        return value.strip().lower() == 'true'
    raise StoreError(f"Calendar {calendar_id}: invalid {key} value {value!r}")


def parse_calendar_record(record: dict, default_timezone: str = DEFAULT_TIMEZONE) -> CalendarConfig:
    """
    Convert one stored calendar record into a CalendarConfig.

    Types outside the closed set are kept as a subtype of "general".

    Raises:
        StoreError: If the record is not an object, has no id or carries
            an unreadable sort or boolean flag.
    """
    if not isinstance(record, dict):
        raise StoreError(f"Calendar record must be an object, got {type(record).__name__}")
    calendar_id = record.get('id')
    if not calendar_id:
        raise StoreError(f"Calendar record without id: {record!r}")

    cal_type = record.get('type') or CalendarType.RESOURCE.value
    subtype = record.get('subtype', '')
    if cal_type not in _KNOWN_TYPES:
        subtype = subtype or cal_type
        cal_type = CalendarType.GENERAL.value

    try:
        sort_order = int(record.get('sort', 0))
    except (TypeError, ValueError):
        raise StoreError(f"Calendar {calendar_id}: invalid sort value {record.get('sort')!r}")

    return CalendarConfig(
        id=str(calendar_id),
        label=record.get('label') or str(calendar_id),
        type=cal_type,
        provider_calendar_id=record.get('googleCalendarId') or '',
        timezone=record.get('timezone') or default_timezone,
        active=_parse_bool(record, 'active', calendar_id),
        show_details=_parse_bool(record, 'showDetails', calendar_id),
        sort_order=sort_order,
        provider=record.get('provider') or 'google',
        subtype=subtype,
    )


def calendar_to_record(config: CalendarConfig) -> dict:
    """Convert a CalendarConfig back to the stored record shape."""
    record = {
        'id': config.id,
        'label': config.label,
        'type': config.type,
        'timezone': config.timezone,
        'active': config.active,
        'showDetails': config.show_details,
        'sort': config.sort_order,
        'googleCalendarId': config.provider_calendar_id,
    }
    if config.provider != 'google':
        record['provider'] = config.provider
    if config.subtype:
        record['subtype'] = config.subtype
    return record


def parse_calendar_list(data, default_timezone: str = DEFAULT_TIMEZONE) -> list[CalendarConfig]:
    """Parse a stored calendar list, keeping stored order."""
    if not isinstance(data, list):
        raise StoreError(f"Calendar list must be an array, got {type(data).__name__}")
    configs = [parse_calendar_record(r, default_timezone) for r in data]
    seen = set()
    for config in configs:
        if config.id in seen:
            raise StoreError(f"Duplicate calendar id: {config.id}")
        seen.add(config.id)
    return configs


# ==================== Backends ====================

class CalendarStore(ABC):
    """Read/write access to the configured calendar list."""

    @abstractmethod
    def load_calendars(self) -> list[CalendarConfig]:
        """Return the current calendar list. Raises StoreError on failure."""

    @abstractmethod
    def save_calendars(self, calendars: Iterable[CalendarConfig]) -> None:
        """Replace the calendar list. Raises StoreError on failure."""

    def watch_path(self) -> Optional[Path]:
        """File to watch for change notifications, if any."""
        return None


class JsonCalendarStore(CalendarStore):
    """Calendar list kept in a local JSON file."""

    def __init__(self, path: Path, default_timezone: str = DEFAULT_TIMEZONE):
        self.path = Path(path)
        self.default_timezone = default_timezone

    def load_calendars(self) -> list[CalendarConfig]:
        if not self.path.exists():
            logger.info("No calendar list at %s, seeding defaults", self.path)
            defaults = parse_calendar_list(DEFAULT_CALENDARS, self.default_timezone)
            self.save_calendars(defaults)
            return defaults

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StoreError(f"Cannot read calendar list {self.path}: {e}") from e

        return parse_calendar_list(data, self.default_timezone)

    def save_calendars(self, calendars: Iterable[CalendarConfig]) -> None:
        records = [calendar_to_record(c) for c in calendars]
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            # Write to a temp file first so readers never see a partial list
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix='.calendars-', suffix='.json'
            )
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    json.dump(records, f, ensure_ascii=False, indent=2)
                os.replace(tmp_name, self.path)
            except BaseException:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            raise StoreError(f"Cannot write calendar list {self.path}: {e}") from e

    def watch_path(self) -> Optional[Path]:
        return self.path


class HttpCalendarStore(CalendarStore):
    """Calendar list served by the dashboard's config endpoint."""

    def __init__(self, url: str, timeout: int = 15, default_timezone: str = DEFAULT_TIMEZONE):
        self.url = url
        self.timeout = timeout
        self.default_timezone = default_timezone

    def load_calendars(self) -> list[CalendarConfig]:
        try:
            response = requests.get(self.url, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            raise StoreError(f"Config endpoint error: {e}") from e
        except ValueError as e:
            raise StoreError(f"Config endpoint returned invalid JSON: {e}") from e

        if data is None:
            # Nothing stored yet
            data = DEFAULT_CALENDARS
        return parse_calendar_list(data, self.default_timezone)

    def save_calendars(self, calendars: Iterable[CalendarConfig]) -> None:
        payload = {'type': 'calendars', 'data': [calendar_to_record(c) for c in calendars]}
        try:
            response = requests.post(self.url, json=payload, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise StoreError(f"Config endpoint error: {e}") from e


def create_calendar_store(config) -> CalendarStore:
    """Pick the store backend configured in [Store]."""
    if config.store.url:
        return HttpCalendarStore(config.store.url, config.store.timeout, config.timezone)
    return JsonCalendarStore(config.store.calendars_file, config.timezone)
