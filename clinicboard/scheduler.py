"""
Refresh scheduler.

Decides when the board is re-aggregated (interval timer, configuration
change notifications, date changes) and re-classifies the current board
on a faster clock. Cycles run on a NetworkWorker and are never
serialized: every trigger starts a new numbered cycle, and a result that
arrives after a newer cycle has started is discarded.
"""

from datetime import date, datetime
from types import MappingProxyType
from typing import Callable, Mapping, Optional
import logging

from PySide6.QtCore import QObject, QTimer, Signal, QFileSystemWatcher

from .aggregator import BoardAggregator
from .calendar_store import CalendarStore
from .classifier import classify
from .config import Config
from .models import BoardSnapshot, BoardStatus, CalendarSchedule
from .network_worker import NetworkWorker
from .timezone_utils import get_timezone, today_in, utc_now


logger = logging.getLogger(__name__)

CYCLE_PREFIX = "cycle:"


class BoardState:
    """
    Single-writer owner of the published board snapshot and status.

    Snapshots are replaced whole, so readers never see a mix of cycles.
    """

    def __init__(self):
        self._latest_started = 0
        self._snapshot: Optional[BoardSnapshot] = None
        self._status = BoardStatus()

    @property
    def snapshot(self) -> Optional[BoardSnapshot]:
        return self._snapshot

    @property
    def status(self) -> BoardStatus:
        return self._status

    @property
    def latest_sequence(self) -> int:
        return self._latest_started

    def begin_cycle(self) -> int:
        """Start a new cycle and return its sequence number."""
        self._latest_started += 1
        return self._latest_started

    def is_superseded(self, sequence: int) -> bool:
        return sequence < self._latest_started

    def complete(self, snapshot: BoardSnapshot) -> bool:
        """
        Publish a finished cycle's snapshot.

        Returns:
            False if a newer cycle has started since; the snapshot is dropped.
        """
        if self.is_superseded(snapshot.sequence):
            logger.debug(
                "Discarding cycle %d (latest started: %d)",
                snapshot.sequence, self._latest_started,
            )
            return False

        failed = len(snapshot.errors)
        message = f"{failed} calendar(s) unavailable" if failed else ""
        self._snapshot = snapshot
        self._status = BoardStatus(
            connection="ok",
            stale=False,
            message=message,
            last_success=snapshot.fetched_at,
            sequence=snapshot.sequence,
        )
        return True

    def fail(self, sequence: int, reason: str) -> bool:
        """
        Record a failed cycle. The last good snapshot stays published.

        Returns:
            False if the failure belongs to a superseded cycle.
        """
        if self.is_superseded(sequence):
            logger.debug("Ignoring failure of superseded cycle %d", sequence)
            return False

        self._status = BoardStatus(
            connection="error",
            stale=self._snapshot is not None,
            message=reason,
            last_success=self._status.last_success,
            sequence=sequence,
        )
        return True


class RefreshScheduler(QObject):
    """
    Drives aggregation cycles and live classification for the board views.

    Views connect to the signals and only ever receive immutable values.
    """

    # Args: (snapshot: BoardSnapshot)
    board_changed = Signal(object)
    # Args: (status: BoardStatus)
    status_changed = Signal(object)
    # Args: (classification: Mapping[str, CalendarSchedule])
    classification_changed = Signal(object)

    def __init__(
        self,
        config: Config,
        store: CalendarStore,
        aggregator: BoardAggregator,
        worker: Optional[NetworkWorker] = None,
        clock: Optional[Callable[[], datetime]] = None,
        state: Optional[BoardState] = None,
        parent=None,
    ):
        super().__init__(parent)
        self.config = config
        self._store = store
        self._aggregator = aggregator
        self._clock = clock or utc_now
        self._tz = get_timezone(config.timezone)

        self._state = state if state is not None else BoardState()
        self._classification: Mapping[str, CalendarSchedule] = MappingProxyType({})

        # None follows today and rolls over at local midnight
        self._selected_date: Optional[date] = None
        self._last_today = today_in(self._tz, self._clock())

        self._owns_worker = worker is None
        self._worker = worker if worker is not None else NetworkWorker(parent=self)
        self._worker.operation_finished.connect(self._on_cycle_finished)
        self._worker.operation_error.connect(self._on_cycle_error)

        # Periodic re-aggregation
        self._refresh_timer = QTimer(self)
        self._refresh_timer.timeout.connect(self._on_refresh_timer)

        # Clock for classification
        self._clock_timer = QTimer(self)
        self._clock_timer.timeout.connect(self.tick)

        # Single-entry trigger: requests within one event loop pass become one cycle
        self._trigger_timer = QTimer(self)
        self._trigger_timer.setSingleShot(True)
        self._trigger_timer.setInterval(0)
        self._trigger_timer.timeout.connect(self._on_trigger)
        self._pending_reasons: list[str] = []

        self._watcher: Optional[QFileSystemWatcher] = None

    # ==================== Public state ====================

    @property
    def snapshot(self) -> Optional[BoardSnapshot]:
        return self._state.snapshot

    @property
    def status(self) -> BoardStatus:
        return self._state.status

    @property
    def classification(self) -> Mapping[str, CalendarSchedule]:
        return self._classification

    @property
    def current_date(self) -> date:
        if self._selected_date is not None:
            return self._selected_date
        return today_in(self._tz, self._clock())

    # ==================== Lifecycle ====================

    def start(self) -> None:
        """Start timers, watch the calendar store and trigger the first cycle."""
        self._watch_store()

        if self.config.refresh_interval > 0:
            self._refresh_timer.start(self.config.refresh_interval * 1000)
            logger.debug("Auto-refresh enabled every %d seconds", self.config.refresh_interval)
        self._clock_timer.start(max(self.config.clock_interval, 1) * 1000)

        self.request_refresh("startup")

    def stop(self) -> None:
        """Stop timers; in-flight cycles are abandoned."""
        self._refresh_timer.stop()
        self._clock_timer.stop()
        self._trigger_timer.stop()
        if self._owns_worker:
            self._worker.shutdown(wait=False)

    # ==================== Triggers ====================

    def set_date(self, day: Optional[date]) -> None:
        """Select the board date; None follows today."""
        self._selected_date = day
        self.request_refresh("date change")

    def notify_configuration_changed(self) -> None:
        """Calendar list changed. Duplicate notifications are harmless."""
        self.request_refresh("configuration change")

    def request_refresh(self, reason: str = "manual") -> None:
        """Queue a refresh; triggers arriving together start a single cycle."""
        self._pending_reasons.append(reason)
        if not self._trigger_timer.isActive():
            self._trigger_timer.start()

    def refresh_now(self, reason: str = "manual") -> int:
        """
        Start an aggregation cycle immediately.

        Returns:
            The cycle's sequence number.
        """
        sequence = self._state.begin_cycle()
        day = self.current_date
        logger.debug("Starting cycle %d for %s (%s)", sequence, day.isoformat(), reason)
        self._cancel_queued_cycles()
        self._worker.submit(f"{CYCLE_PREFIX}{sequence}", self._run_cycle, sequence, day)
        return sequence

    def _cancel_queued_cycles(self) -> None:
        # Older cycles still waiting for a worker thread are never started
        for operation_id in self._worker.pending_ids():
            if operation_id.startswith(CYCLE_PREFIX) and self._worker.cancel(operation_id):
                logger.debug("Cancelled queued %s", operation_id)

    def _on_trigger(self) -> None:
        reasons = ", ".join(dict.fromkeys(self._pending_reasons))
        self._pending_reasons.clear()
        self.refresh_now(reasons)

    def _on_refresh_timer(self) -> None:
        self.request_refresh("interval")

    # ==================== Cycle execution ====================

    def _run_cycle(self, sequence: int, day: date) -> BoardSnapshot:
        """Background worker for one cycle. Must not touch Qt objects."""
        configs = self._store.load_calendars()
        result = self._aggregator.aggregate(
            configs, day, is_cancelled=lambda: self._state.is_superseded(sequence)
        )
        return BoardSnapshot(
            sequence=sequence,
            date=day,
            calendars=tuple(c for c in configs if c.active),
            result=result,
            fetched_at=self._clock(),
        )

    def _on_cycle_finished(self, operation_id: str, result: object) -> None:
        if not operation_id.startswith(CYCLE_PREFIX):
            return
        if not self._state.complete(result):
            return

        logger.debug("Cycle %d published: %d events", result.sequence, len(result.events))
        self.board_changed.emit(result)
        self.status_changed.emit(self._state.status)
        self.tick()

    def _on_cycle_error(self, operation_id: str, error: object) -> None:
        if not operation_id.startswith(CYCLE_PREFIX):
            return
        sequence = int(operation_id[len(CYCLE_PREFIX):])
        reason = f"{type(error).__name__}: {error}"
        if not self._state.fail(sequence, reason):
            return

        logger.error("Cycle %d failed: %s", sequence, reason)
        self.status_changed.emit(self._state.status)

    # ==================== Clock ====================

    def tick(self) -> Mapping[str, CalendarSchedule]:
        """Re-classify the published board against the clock."""
        now = self._clock()

        if self._selected_date is None:
            today = today_in(self._tz, now)
            if today != self._last_today:
                self._last_today = today
                self.request_refresh("day rollover")

        snapshot = self._state.snapshot
        if snapshot is None:
            classification = {}
        else:
            classification = classify(
                snapshot.events, now, [c.id for c in snapshot.calendars]
            )
        self._classification = MappingProxyType(classification)
        self.classification_changed.emit(self._classification)
        return self._classification

    # ==================== Change notifications ====================

    def _watch_store(self) -> None:
        path = self._store.watch_path()
        if path is None:
            return

        self._watcher = QFileSystemWatcher(self)
        if path.exists():
            self._watcher.addPath(str(path))
        # Atomic saves replace the file, so watch the directory as well
        if path.parent.exists():
            self._watcher.addPath(str(path.parent))
        self._watcher.fileChanged.connect(self._on_store_file_changed)
        self._watcher.directoryChanged.connect(self._on_store_file_changed)

    def _on_store_file_changed(self, changed: str) -> None:
        path = self._store.watch_path()
        logger.debug("Calendar store changed: %s", changed)
        # Replaced files drop out of the watcher; re-add them
        if path.exists() and str(path) not in self._watcher.files():
            self._watcher.addPath(str(path))
        self.notify_configuration_changed()
