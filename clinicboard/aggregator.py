"""
Board aggregator.

Fetches every active calendar's events for one day concurrently,
normalizes them and flattens them into one AggregationResult. A failing
calendar contributes no events and an error entry; it never aborts the
other fetches.
"""

from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from datetime import date
from typing import Callable, Iterable, Mapping, Optional
import logging

from .errors import AggregationError, BoardError, CycleSuperseded
from .models import AggregationResult, CalendarConfig, FetchOutcome
from .normalizer import UNTITLED, normalize_events
from .sources import EventSource
from .timezone_utils import day_bounds, get_timezone


logger = logging.getLogger(__name__)

# Seconds between superseded checks while fetches are in flight
CANCEL_POLL = 0.1


class BoardAggregator:
    """
    Fan-out/fan-in aggregation over the configured event sources.

    Every aggregate() call fans out on its own thread pool, so a slow
    earlier call never holds up a later one. No state is kept between
    calls, so aggregating the same inputs twice gives equal results.
    """

    def __init__(
        self,
        sources: Mapping[str, EventSource],
        max_workers: int = 6,
        untitled: str = UNTITLED,
    ):
        """
        Args:
            sources: Adapters keyed by CalendarConfig.provider
            max_workers: Maximum number of concurrent fetches per call
            untitled: Placeholder title for events without one
        """
        self._sources = dict(sources)
        self._untitled = untitled
        self.max_workers = max(max_workers, 1)

    def aggregate(
        self,
        configs: Iterable[CalendarConfig],
        day: date,
        is_cancelled: Optional[Callable[[], bool]] = None,
    ) -> AggregationResult:
        """
        Aggregate all active calendars for `day`.

        Args:
            configs: Configured calendars, in store order
            day: Local calendar day to fetch
            is_cancelled: Polled while fetches are in flight; once it returns
                True the call stops waiting and queued fetches are dropped

        Returns:
            AggregationResult with events flattened in calendar order and
            provider order within each calendar.

        Raises:
            AggregationError: If there is at least one active calendar and
                every fetch failed.
            CycleSuperseded: If is_cancelled() returned True.
        """
        active = [c for c in configs if c.active]
        if not active:
            return AggregationResult()

        executor = ThreadPoolExecutor(
            max_workers=min(len(active), self.max_workers), thread_name_prefix="fetch"
        )
        try:
            futures = [
                executor.submit(self._fetch_calendar, config, day)
                for config in active
            ]
            pending = set(futures)
            while pending:
                if is_cancelled is not None and is_cancelled():
                    raise CycleSuperseded(f"Aggregation for {day.isoformat()} abandoned")
                _, pending = wait(pending, timeout=CANCEL_POLL, return_when=FIRST_COMPLETED)
        finally:
            # In-flight fetches finish in the background; queued ones are dropped
            executor.shutdown(wait=False, cancel_futures=True)

        # _fetch_calendar never raises
        outcomes = [f.result() for f in futures]

        events = []
        errors = {}
        dropped = {}
        for outcome in outcomes:
            events.extend(outcome.events)
            if outcome.error is not None:
                errors[outcome.calendar_id] = outcome.error
            if outcome.dropped:
                dropped[outcome.calendar_id] = outcome.dropped

        if len(errors) == len(active):
            raise AggregationError(
                "All calendars failed: "
                + "; ".join(f"{cid}: {reason}" for cid, reason in errors.items())
            )

        logger.debug(
            "Aggregated %d events from %d calendars (%d failed) for %s",
            len(events), len(active), len(errors), day.isoformat(),
        )
        return AggregationResult(events=tuple(events), errors=errors, dropped=dropped)

    def _fetch_calendar(self, config: CalendarConfig, day: date) -> FetchOutcome:
        """Fetch and normalize one calendar, converting failures into an outcome."""
        try:
            source = self._sources.get(config.provider)
            if source is None:
                raise BoardError(f"Unknown provider: {config.provider}")

            tz = get_timezone(config.timezone)
            time_min, time_max = day_bounds(day, tz)
            raw_events = source.fetch_events(config, day, time_min, time_max)
            events, dropped = normalize_events(raw_events, config, self._untitled)
            return FetchOutcome(config.id, tuple(events), dropped=dropped)
        except Exception as e:
            logger.warning("Calendar %s: fetch failed: %s", config.id, e)
            return FetchOutcome(config.id, error=f"{type(e).__name__}: {e}")
