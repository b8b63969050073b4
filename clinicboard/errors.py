"""
Exception types raised by the board core.

Only the Scheduler turns these into status values; nothing here ever
reaches the display layer as an exception.
"""


class BoardError(RuntimeError):
    """Base class for board errors."""


class StoreError(BoardError):
    """Calendar configuration could not be read or written."""


class FetchError(BoardError):
    """A single calendar's events could not be fetched."""


class NormalizationError(BoardError):
    """A raw provider event could not be turned into a CalendarEvent."""


class AggregationError(BoardError):
    """Every active calendar failed to fetch in one cycle."""


class AnalysisError(BoardError):
    """The remote insight endpoint failed."""


class CycleSuperseded(BoardError):
    """A newer refresh cycle started; this one stopped waiting for its fetches."""
