"""
Configuration parser for Clinic Board.

Handles TOML file parsing into dataclass sections. The calendar list
itself is not part of this file; it lives in the calendar store.
"""

import tomllib
import os
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional

import pytz

from .timezone_utils import DEFAULT_TIMEZONE, get_timezone


@dataclass
class ProviderConfig:
    """Configuration for the calendar events service."""
    base_url: str = "http://localhost:3000"
    events_path: str = "/api/calendar"
    timeout: int = 15  # seconds
    user_agent: str = "Clinic-Board/1.0"


@dataclass
class StoreConfig:
    """Where the calendar list is read from."""
    calendars_file: Optional[Path] = None
    url: str = ""  # HTTP config endpoint; takes precedence over calendars_file
    timeout: int = 15


@dataclass
class AnalysisConfig:
    """Configuration for the AI insight endpoint."""
    url: str = ""  # empty disables remote analysis
    timeout: int = 30


@dataclass
class LayoutConfig:
    """Configuration for the TV board fonts and mode."""
    interface_font: str = "Sans"
    interface_font_size: int = 14
    clock_font_size: int = 48
    kiosk: bool = True  # fullscreen


@dataclass
class LabelsConfig:
    """Configuration for display labels."""
    window_title: str = "Clinic Board"
    untitled: str = "Untitled"
    busy: str = "Busy"
    no_events: str = "No events"
    current_header: str = "Now"
    upcoming_header: str = "Upcoming"
    connection_ok: str = "Online"
    connection_error: str = "Connection error"
    stale_suffix: str = "(showing last data)"
    calendar_error: str = "Unavailable"
    all_day: str = "All day"
    type_resource: str = "Consulting room"
    type_professional: str = "Specialist"
    type_general: str = "Equipment"


@dataclass
class Config:
    """Main configuration container for Clinic Board."""

    timezone: str = DEFAULT_TIMEZONE
    refresh_interval: int = 60  # Aggregation refresh in seconds (0 to disable)
    clock_interval: int = 1  # Classification re-evaluation in seconds
    max_workers: int = 6  # Concurrent calendar fetches per cycle
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    layout: LayoutConfig = field(default_factory=LayoutConfig)
    labels: LabelsConfig = field(default_factory=LabelsConfig)

    def __post_init__(self):
        if self.store.calendars_file is None:
            self.store.calendars_file = self.get_default_calendars_path()

    @classmethod
    def get_config_dir(cls) -> Path:
        xdg_config = os.environ.get('XDG_CONFIG_HOME', os.path.expanduser('~/.config'))
        return Path(xdg_config) / 'clinic-board'

    @classmethod
    def get_default_config_path(cls) -> Path:
        """Get the default configuration file path."""
        return cls.get_config_dir() / 'clinic-board.toml'

    @classmethod
    def get_default_calendars_path(cls) -> Path:
        """Get the default calendar list path."""
        return cls.get_config_dir() / 'calendars.json'

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> 'Config':
        """Load configuration from TOML file."""
        if config_path is None:
            config_path = cls.get_default_config_path()

        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, 'rb') as f:
            data = tomllib.load(f)

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict) -> 'Config':
        """
        Build a Config from parsed TOML data.

        Raises:
            ValueError: If [General] timezone is not a known tz database name.
        """
        general = data.get('General', {})
        timezone = general.get('timezone', DEFAULT_TIMEZONE)
        try:
            get_timezone(timezone)
        except pytz.UnknownTimeZoneError:
            raise ValueError(f"Unknown timezone in [General]: {timezone}")

        provider_data = data.get('Provider', {})
        provider = ProviderConfig(
            base_url=provider_data.get('base_url', ProviderConfig.base_url).rstrip('/'),
            events_path=provider_data.get('events_path', ProviderConfig.events_path),
            timeout=provider_data.get('timeout', ProviderConfig.timeout),
            user_agent=provider_data.get('user_agent', ProviderConfig.user_agent),
        )

        store_data = data.get('Store', {})
        calendars_file = store_data.get('calendars_file')
        store = StoreConfig(
            calendars_file=Path(os.path.expanduser(calendars_file)) if calendars_file else None,
            url=store_data.get('url', StoreConfig.url),
            timeout=store_data.get('timeout', StoreConfig.timeout),
        )

        analysis_data = data.get('Analysis', {})
        analysis = AnalysisConfig(
            url=analysis_data.get('url', AnalysisConfig.url),
            timeout=analysis_data.get('timeout', AnalysisConfig.timeout),
        )

        layout_data = data.get('Layout', {})
        layout = LayoutConfig(
            interface_font=layout_data.get('interface_font', LayoutConfig.interface_font),
            interface_font_size=layout_data.get('interface_font_size', LayoutConfig.interface_font_size),
            clock_font_size=layout_data.get('clock_font_size', LayoutConfig.clock_font_size),
            kiosk=layout_data.get('kiosk', LayoutConfig.kiosk),
        )

        # Unknown keys are ignored; every label has a default
        labels_data = data.get('Labels', {})
        labels = LabelsConfig(**{
            name: labels_data[name]
            for name in LabelsConfig.__dataclass_fields__
            if name in labels_data
        })

        return cls(
            timezone=timezone,
            refresh_interval=general.get('refresh_interval', 60),
            clock_interval=general.get('clock_interval', 1),
            max_workers=general.get('max_workers', 6),
            provider=provider,
            store=store,
            analysis=analysis,
            layout=layout,
            labels=labels,
        )
