#!/usr/bin/env python3
"""
Clinic Board - a live TV board for clinic calendars.

This is the main entry point for the application.
"""

import sys
import argparse
import logging
from datetime import date
from pathlib import Path

from clinicboard.aggregator import BoardAggregator
from clinicboard.analysis import InsightClient, find_conflicts
from clinicboard.calendar_store import create_calendar_store
from clinicboard.classifier import classify
from clinicboard.config import Config
from clinicboard.errors import AnalysisError, BoardError
from clinicboard.presentation import display_event, ordered_calendars, type_label
from clinicboard.sources import create_event_sources
from clinicboard.timezone_utils import get_timezone, today_in, utc_now


logger = logging.getLogger("clinic_board")

EXAMPLE_CONFIG = """
[General]
timezone = "America/Bogota"
refresh_interval = 60

[Provider]
base_url = "http://localhost:3000"
events_path = "/api/calendar"

[Store]
calendars_file = "~/.config/clinic-board/calendars.json"

[Layout]
kiosk = true
"""


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Clinic Board - live board of what is happening now in each clinic calendar"
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        help="Path to configuration file (default: auto-detect)"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug output"
    )
    parser.add_argument(
        "--date",
        type=date.fromisoformat,
        help="Board date as YYYY-MM-DD (default: follow today)"
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Aggregate once, print the board and exit"
    )
    parser.add_argument(
        "--analyze",
        action="store_true",
        help="With --once, also report schedule conflicts"
    )
    parser.add_argument(
        "--windowed",
        action="store_true",
        help="Do not start in fullscreen"
    )
    return parser.parse_args(argv)


def setup_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="[%(asctime)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


def build_aggregator(config: Config) -> BoardAggregator:
    return BoardAggregator(
        create_event_sources(config),
        max_workers=config.max_workers,
        untitled=config.labels.untitled,
    )


def run_once(config: Config, day: date = None, analyze: bool = False) -> int:
    """
    Run one aggregation cycle without a GUI and print the board.

    Returns:
        Process exit code.
    """
    tz = get_timezone(config.timezone)
    now = utc_now()
    day = day or today_in(tz, now)
    labels = config.labels

    store = create_calendar_store(config)
    aggregator = build_aggregator(config)
    try:
        configs = store.load_calendars()
        result = aggregator.aggregate(configs, day)
    except BoardError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    calendars = ordered_calendars(configs)
    classification = classify(result.events, now, [c.id for c in calendars])

    print(f"Board for {day.isoformat()} ({config.timezone})")
    for calendar in calendars:
        print()
        print(f"{calendar.label} [{type_label(calendar.type, labels)}]")
        if calendar.id in result.errors:
            print(f"  {labels.calendar_error}: {result.errors[calendar.id]}")
            continue
        schedule = classification[calendar.id]
        for header, events in (
            (labels.current_header, schedule.current),
            (labels.upcoming_header, schedule.upcoming),
        ):
            print(f"  {header}:")
            if not events:
                print(f"    {labels.no_events}")
            for event in events:
                shown = display_event(event, calendar, labels)
                print(f"    {shown.time_range}  {shown.title}")
        if result.dropped.get(calendar.id):
            print(f"  ({result.dropped[calendar.id]} malformed event(s) skipped)")

    if analyze:
        print()
        conflicts = find_conflicts(result.events, labels.untitled)
        if not conflicts:
            print("No conflicts found.")
        for conflict in conflicts:
            print(f"Conflict: {conflict.describe()}")

        if config.analysis.url:
            client = InsightClient(config.analysis.url, config.analysis.timeout)
            try:
                insight = client.analyze(result.events, day)
            except AnalysisError as e:
                print(f"Analysis failed: {e}", file=sys.stderr)
            else:
                print(f"Insight: {insight.text}")

    return 0


def run_board(config: Config, day: date = None, windowed: bool = False) -> int:
    """Start the TV board window and run the Qt event loop."""
    from PySide6.QtWidgets import QApplication
    from PySide6.QtCore import Qt

    from clinicboard.gui import BoardWindow
    from clinicboard.scheduler import BoardState, RefreshScheduler

    # Enable high DPI scaling
    QApplication.setHighDpiScaleFactorRoundingPolicy(
        Qt.HighDpiScaleFactorRoundingPolicy.PassThrough
    )

    app = QApplication(sys.argv)
    app.setApplicationName("Clinic Board")
    app.setApplicationVersion("0.1")
    app.setStyle("Fusion")

    aggregator = build_aggregator(config)
    scheduler = RefreshScheduler(
        config, create_calendar_store(config), aggregator, state=BoardState()
    )
    if day is not None:
        scheduler.set_date(day)

    window = BoardWindow(config, scheduler)
    if config.layout.kiosk and not windowed:
        window.showFullScreen()
    else:
        window.show()

    scheduler.start()
    try:
        return app.exec()
    finally:
        scheduler.stop()


def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)
    setup_logging(args.debug)

    # Load configuration
    try:
        config = Config.load(args.config)
    except FileNotFoundError as e:
        print(f"Error: {e}")
        print("\nPlease create a configuration file at:")
        print(f"  - {Config.get_default_config_path()}")
        print("\nExample configuration:")
        print(EXAMPLE_CONFIG)
        sys.exit(1)
    except Exception as e:
        print(f"Error loading configuration: {e}")
        sys.exit(1)

    logger.debug("Loaded configuration from: %s", args.config or Config.get_default_config_path())
    logger.debug("  Timezone: %s, refresh every %ds", config.timezone, config.refresh_interval)

    if args.once:
        sys.exit(run_once(config, args.date, args.analyze))
    sys.exit(run_board(config, args.date, args.windowed))


if __name__ == "__main__":
    main()
