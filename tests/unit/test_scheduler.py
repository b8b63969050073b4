"""
Unit tests for the refresh scheduler and its board state.
"""

import threading
import time
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest
from PySide6.QtCore import QObject, Signal

from clinicboard.aggregator import BoardAggregator
from clinicboard.calendar_store import CalendarStore, JsonCalendarStore
from clinicboard.config import Config
from clinicboard.errors import FetchError, StoreError
from clinicboard.models import AggregationResult, BoardSnapshot, CalendarConfig
from clinicboard.network_worker import NetworkWorker
from clinicboard.scheduler import BoardState, RefreshScheduler

from conftest import DAY, FakeSource, GatedSource, at, timed_raw


def make_snapshot(sequence: int) -> BoardSnapshot:
    return BoardSnapshot(
        sequence=sequence,
        date=DAY,
        calendars=(),
        result=AggregationResult(),
        fetched_at=at(9),
    )


class DeferredWorker(QObject):
    """Worker stand-in that runs submitted operations only when told to."""

    operation_finished = Signal(str, object)
    operation_error = Signal(str, object)

    def __init__(self):
        super().__init__()
        self.submitted = {}

    def submit(self, operation_id, func, *args, **kwargs):
        self.submitted[operation_id] = (func, args, kwargs)

    def run(self, operation_id):
        func, args, kwargs = self.submitted.pop(operation_id)
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            self.operation_error.emit(operation_id, e)
        else:
            self.operation_finished.emit(operation_id, result)

    def pending_ids(self):
        return list(self.submitted)

    def cancel(self, operation_id):
        # Behaves as if every submitted operation were already running
        return False

    def shutdown(self, wait=True):
        pass


class ListStore(CalendarStore):
    def __init__(self, calendars):
        self.calendars = list(calendars)
        self.error = None

    def load_calendars(self):
        if self.error is not None:
            raise self.error
        return list(self.calendars)

    def save_calendars(self, calendars):
        self.calendars = list(calendars)


class Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self):
        return self.now


class TestBoardState:
    """Tests for the cycle/snapshot state machine."""

    def test_sequences_increase(self):
        state = BoardState()
        assert state.begin_cycle() == 1
        assert state.begin_cycle() == 2
        assert state.latest_sequence == 2

    def test_complete_publishes(self):
        state = BoardState()
        seq = state.begin_cycle()

        assert state.complete(make_snapshot(seq))
        assert state.snapshot.sequence == seq
        assert state.status.ok
        assert state.status.last_success == at(9)

    def test_superseded_result_discarded(self):
        state = BoardState()
        first = state.begin_cycle()
        second = state.begin_cycle()

        assert state.complete(make_snapshot(second))
        assert not state.complete(make_snapshot(first))
        assert state.snapshot.sequence == second

    def test_older_cycle_discarded_even_if_first_to_finish(self):
        state = BoardState()
        first = state.begin_cycle()
        state.begin_cycle()

        assert not state.complete(make_snapshot(first))
        assert state.snapshot is None

    def test_failure_keeps_last_snapshot(self):
        state = BoardState()
        state.complete(make_snapshot(state.begin_cycle()))

        assert state.fail(state.begin_cycle(), "StoreError: gone")
        assert state.snapshot.sequence == 1
        assert state.status.connection == "error"
        assert state.status.stale
        assert state.status.last_success == at(9)
        assert "gone" in state.status.message

    def test_failure_without_data_is_not_stale(self):
        state = BoardState()
        state.fail(state.begin_cycle(), "down")
        assert state.status.connection == "error"
        assert not state.status.stale

    def test_superseded_failure_ignored(self):
        state = BoardState()
        first = state.begin_cycle()
        second = state.begin_cycle()
        state.complete(make_snapshot(second))

        assert not state.fail(first, "late failure")
        assert state.status.ok

    def test_partial_errors_reported_in_message(self):
        state = BoardState()
        snapshot = BoardSnapshot(
            sequence=state.begin_cycle(), date=DAY, calendars=(),
            result=AggregationResult(errors={"r1": "down"}), fetched_at=at(9),
        )
        state.complete(snapshot)
        assert state.status.ok
        assert "1 calendar(s) unavailable" in state.status.message


@pytest.fixture
def board(qapp, calendars):
    """Scheduler wired to a fake source, an in-memory store and a deferred worker."""
    source = FakeSource({
        "r1": [timed_raw("a", at(9), at(10)), timed_raw("b", at(10, 30), at(11))],
        "p1": [timed_raw("c", at(14), at(15))],
    })
    store = ListStore(calendars)
    aggregator = BoardAggregator({"google": source})
    worker = DeferredWorker()
    clock = Clock(at(9, 15))
    scheduler = RefreshScheduler(Config(), store, aggregator, worker=worker, clock=clock)

    scheduler.boards = []
    scheduler.statuses = []
    scheduler.board_changed.connect(scheduler.boards.append)
    scheduler.status_changed.connect(scheduler.statuses.append)

    yield scheduler, worker, source, store, clock
    scheduler.stop()


class TestRefreshScheduler:
    """Tests for RefreshScheduler cycles and triggers."""

    def test_cycle_publishes_snapshot(self, board):
        scheduler, worker, _, _, _ = board

        seq = scheduler.refresh_now()
        worker.run(f"cycle:{seq}")

        assert scheduler.snapshot.sequence == seq
        assert scheduler.snapshot.date == DAY
        assert [c.id for c in scheduler.snapshot.calendars] == ["r1", "p1"]
        assert len(scheduler.boards) == 1
        assert scheduler.status.ok

    def test_out_of_order_completion_keeps_newest(self, board):
        scheduler, worker, _, _, _ = board

        first = scheduler.refresh_now()
        second = scheduler.refresh_now()
        worker.run(f"cycle:{second}")
        worker.run(f"cycle:{first}")

        assert scheduler.snapshot.sequence == second
        assert [s.sequence for s in scheduler.boards] == [second]

    def test_published_sequence_never_decreases(self, board):
        scheduler, worker, _, _, _ = board

        sequences = [scheduler.refresh_now() for _ in range(4)]
        for seq in (3, 1, 4, 2):
            worker.run(f"cycle:{sequences[seq - 1]}")

        published = [s.sequence for s in scheduler.boards]
        assert published == sorted(published)
        assert scheduler.snapshot.sequence == 4

    def test_failed_cycle_keeps_stale_data(self, board):
        scheduler, worker, _, store, _ = board
        worker.run(f"cycle:{scheduler.refresh_now()}")

        store.error = StoreError("config unreachable")
        worker.run(f"cycle:{scheduler.refresh_now()}")

        assert scheduler.snapshot.sequence == 1
        assert scheduler.status.connection == "error"
        assert scheduler.status.stale
        assert "config unreachable" in scheduler.status.message
        assert scheduler.statuses[-1] == scheduler.status

    def test_all_calendars_failing_fails_cycle(self, board):
        scheduler, worker, source, _, _ = board
        source.events = {"r1": FetchError("down"), "p1": FetchError("down")}

        worker.run(f"cycle:{scheduler.refresh_now()}")

        assert scheduler.snapshot is None
        assert scheduler.status.connection == "error"
        assert "AggregationError" in scheduler.status.message

    def test_recovery_after_failure(self, board):
        scheduler, worker, _, store, _ = board
        store.error = StoreError("down")
        worker.run(f"cycle:{scheduler.refresh_now()}")

        store.error = None
        worker.run(f"cycle:{scheduler.refresh_now()}")

        assert scheduler.status.ok
        assert not scheduler.status.stale

    def test_cycle_reads_calendars_fresh(self, board, calendars):
        scheduler, worker, source, store, _ = board
        worker.run(f"cycle:{scheduler.refresh_now()}")

        store.calendars = calendars[:1]
        source.calls.clear()
        worker.run(f"cycle:{scheduler.refresh_now()}")

        assert [call[0] for call in source.calls] == ["r1"]
        assert [c.id for c in scheduler.snapshot.calendars] == ["r1"]

    def test_classification_after_publish(self, board):
        scheduler, worker, _, _, _ = board
        worker.run(f"cycle:{scheduler.refresh_now()}")

        classification = scheduler.classification
        assert [e.id for e in classification["r1"].current] == ["a"]
        assert [e.id for e in classification["r1"].upcoming] == ["b"]
        assert [e.id for e in classification["p1"].upcoming] == ["c"]

    def test_tick_reclassifies_without_refetch(self, board):
        scheduler, worker, source, _, clock = board
        worker.run(f"cycle:{scheduler.refresh_now()}")
        calls = len(source.calls)

        clock.now = at(10, 45)
        classification = scheduler.tick()

        assert [e.id for e in classification["r1"].current] == ["b"]
        assert classification["r1"].upcoming == ()
        assert len(source.calls) == calls
        assert worker.submitted == {}

    def test_tick_without_snapshot_is_empty(self, board):
        scheduler, _, _, _, _ = board
        assert dict(scheduler.tick()) == {}

    def test_day_rollover_requests_refresh(self, board):
        scheduler, _, _, _, clock = board
        scheduler.request_refresh = MagicMock()

        clock.now = at(23, 59) + timedelta(minutes=2)
        scheduler.tick()

        scheduler.request_refresh.assert_called_once_with("day rollover")
        assert scheduler.current_date == DAY + timedelta(days=1)

    def test_selected_date_does_not_roll_over(self, board):
        scheduler, worker, _, _, clock = board
        scheduler.set_date(DAY)
        scheduler.request_refresh = MagicMock()

        clock.now = at(23, 59) + timedelta(minutes=2)
        scheduler.tick()

        scheduler.request_refresh.assert_not_called()
        assert scheduler.current_date == DAY

    def test_set_date_fetches_that_day(self, board, wait_until):
        scheduler, worker, source, _, _ = board
        other_day = DAY + timedelta(days=3)

        scheduler.set_date(other_day)
        assert wait_until(lambda: len(worker.submitted) == 1)
        worker.run(next(iter(worker.submitted)))

        assert scheduler.snapshot.date == other_day
        assert all(call[1] == other_day for call in source.calls)

    def test_configuration_changes_coalesce(self, board, wait_until):
        scheduler, worker, _, _, _ = board

        scheduler.notify_configuration_changed()
        scheduler.notify_configuration_changed()
        scheduler.request_refresh("interval")

        assert wait_until(lambda: len(worker.submitted) == 1)
        assert list(worker.submitted) == ["cycle:1"]

    def test_start_triggers_first_cycle(self, board, wait_until):
        scheduler, worker, _, _, _ = board

        scheduler.start()

        assert wait_until(lambda: "cycle:1" in worker.submitted)

    def test_foreign_operations_ignored(self, board):
        scheduler, worker, _, _, _ = board
        worker.operation_finished.emit("insight", object())
        worker.operation_error.emit("insight", RuntimeError("x"))

        assert scheduler.snapshot is None
        assert scheduler.status.ok

    def test_uses_given_board_state(self, qapp, calendars):
        state = BoardState()
        state.begin_cycle()
        worker = DeferredWorker()
        scheduler = RefreshScheduler(
            Config(), ListStore(calendars), BoardAggregator({"google": FakeSource()}),
            worker=worker, clock=Clock(at(9, 15)), state=state,
        )

        seq = scheduler.refresh_now()
        worker.run(f"cycle:{seq}")

        assert seq == 2
        assert state.snapshot is scheduler.snapshot
        assert state.status is scheduler.status


class TestSupersededCycles:
    """A newer cycle must not wait for older, slower ones."""

    def test_date_change_not_delayed_by_slow_cycle(self, qapp, wait_until):
        # More calendars than fetch threads per cycle
        configs = [CalendarConfig(id=f"c{i}", label=f"C{i}") for i in range(7)]
        source = GatedSource(DAY)
        aggregator = BoardAggregator({"google": source}, max_workers=6)
        scheduler = RefreshScheduler(
            Config(), ListStore(configs), aggregator, clock=Clock(at(9, 15)),
        )
        next_day = DAY + timedelta(days=1)
        try:
            scheduler.set_date(DAY)
            assert wait_until(lambda: source.blocked == 6, timeout=5)

            started = time.monotonic()
            scheduler.set_date(next_day)
            assert wait_until(
                lambda: scheduler.snapshot is not None and scheduler.snapshot.date == next_day,
                timeout=1.0,
            )
            elapsed = time.monotonic() - started
        finally:
            source.release.set()
            scheduler.stop()

        assert elapsed < 0.5
        assert scheduler.status.ok
        assert scheduler.snapshot.errors == {}

    def test_queued_older_cycle_is_cancelled(self, qapp, calendars, wait_until):
        worker = NetworkWorker(max_workers=1)
        release = threading.Event()
        source = FakeSource({"r1": [timed_raw("a", at(9), at(10))]})
        scheduler = RefreshScheduler(
            Config(), ListStore(calendars), BoardAggregator({"google": source}),
            worker=worker, clock=Clock(at(9, 15)),
        )
        try:
            # Occupy the only cycle thread
            worker.submit("busy", release.wait, 5)
            first = scheduler.refresh_now()
            assert worker.is_pending(f"cycle:{first}")

            second = scheduler.refresh_now()

            assert not worker.is_pending(f"cycle:{first}")
            assert worker.is_pending(f"cycle:{second}")
            release.set()
            assert wait_until(lambda: scheduler.snapshot is not None)
        finally:
            release.set()
            scheduler.stop()
            worker.shutdown(wait=True)

        assert scheduler.snapshot.sequence == second
        # Only the second cycle fetched
        assert sorted(call[0] for call in source.calls) == ["p1", "r1"]


class TestSchedulerTimers:
    """Interval refresh and calendar store watching, with real Qt timers."""

    def test_interval_starts_new_cycles(self, qapp, calendars, wait_until):
        worker = DeferredWorker()
        scheduler = RefreshScheduler(
            Config(refresh_interval=1), ListStore(calendars),
            BoardAggregator({"google": FakeSource()}), worker=worker, clock=Clock(at(9, 15)),
        )
        try:
            scheduler.start()
            assert wait_until(lambda: "cycle:1" in worker.submitted)
            assert wait_until(lambda: "cycle:2" in worker.submitted, timeout=3.0)
        finally:
            scheduler.stop()

    def test_store_changes_trigger_cycles(self, qapp, calendars, tmp_path, wait_until):
        path = tmp_path / "calendars.json"
        store = JsonCalendarStore(path)
        store.save_calendars(calendars)
        source = FakeSource({"r1": [timed_raw("a", at(9), at(10))]})
        scheduler = RefreshScheduler(
            Config(refresh_interval=0), store, BoardAggregator({"google": source}),
            clock=Clock(at(9, 15)),
        )

        def shown_ids():
            snapshot = scheduler.snapshot
            return [c.id for c in snapshot.calendars] if snapshot is not None else None

        try:
            scheduler.start()
            assert wait_until(lambda: shown_ids() == ["r1", "p1"])

            # Atomic save replaces the watched file
            store.save_calendars(calendars[:1])
            assert wait_until(lambda: shown_ids() == ["r1"], timeout=5.0)
            assert wait_until(lambda: str(path) in scheduler._watcher.files())

            store.save_calendars(calendars[2:])
            assert wait_until(lambda: shown_ids() == ["p1"], timeout=5.0)
            assert str(path) in scheduler._watcher.files()
        finally:
            scheduler.stop()
