"""
Network Worker - runs blocking aggregation cycles in background threads.

Uses ThreadPoolExecutor so the board never blocks on the network.
Results are delivered via Qt signals, which Qt queues onto the thread
that owns the receiver.
"""

from concurrent.futures import ThreadPoolExecutor, Future
from typing import Callable
import logging

from PySide6.QtCore import QObject, Signal


logger = logging.getLogger(__name__)


class NetworkWorker(QObject):
    """
    Runs blocking operations in background threads.

    Owned by whoever creates it (normally the RefreshScheduler) and shut
    down with it; there is no shared global instance.
    """

    # Signal emitted when an operation completes successfully
    # Args: (operation_id: str, result: object)
    operation_finished = Signal(str, object)

    # Signal emitted when an operation fails
    # Args: (operation_id: str, error: object) - the raised exception
    operation_error = Signal(str, object)

    def __init__(self, max_workers: int = 2, parent=None):
        super().__init__(parent)
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="cycle")
        self._pending: dict[str, Future] = {}

    def submit(self, operation_id: str, func: Callable, *args, **kwargs) -> None:
        """
        Submit a blocking operation to run in a background thread.

        Args:
            operation_id: Unique identifier for this operation (for callback matching)
            func: The blocking function to run
            *args, **kwargs: Arguments to pass to func

        The operation_finished or operation_error signal will be emitted when complete.
        """
        future = self._executor.submit(func, *args, **kwargs)
        self._pending[operation_id] = future
        future.add_done_callback(lambda f: self._on_done(operation_id, f))

    def _on_done(self, operation_id: str, future: Future) -> None:
        """Handle completion of a background operation."""
        self._pending.pop(operation_id, None)

        if future.cancelled():
            logger.debug("Operation '%s' cancelled", operation_id)
            return

        error = future.exception()
        if error is None:
            self.operation_finished.emit(operation_id, future.result())
        else:
            logger.debug("Operation '%s' failed: %s: %s", operation_id, type(error).__name__, error)
            self.operation_error.emit(operation_id, error)

    def is_pending(self, operation_id: str) -> bool:
        """Check if an operation is still pending."""
        return operation_id in self._pending

    def pending_count(self) -> int:
        return len(self._pending)

    def pending_ids(self) -> list[str]:
        return list(self._pending)

    def cancel(self, operation_id: str) -> bool:
        """
        Cancel an operation that has not started yet.

        Returns False if it is unknown or already running.
        """
        future = self._pending.get(operation_id)
        if future is None:
            return False
        return future.cancel()

    def shutdown(self, wait: bool = True) -> None:
        """Shutdown the executor, optionally waiting for pending operations."""
        self._executor.shutdown(wait=wait, cancel_futures=not wait)
