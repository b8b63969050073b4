"""
Clinic Board core module

This module provides the board's data pipeline:
- Configuration parsing (config.py)
- Calendar list storage (calendar_store.py)
- Calendar source adapters (sources.py)
- Event normalization (normalizer.py)
- Concurrent aggregation (aggregator.py)
- Live current/upcoming classification (classifier.py)
- Refresh scheduling (scheduler.py)
- Conflict analysis (analysis.py)
"""

from .config import Config
from .models import (
    CalendarConfig, CalendarEvent, CalendarType, AggregationResult,
    BoardSnapshot, BoardStatus, CalendarSchedule,
)
from .errors import (
    BoardError, StoreError, FetchError, NormalizationError,
    AggregationError, AnalysisError,
)
from .normalizer import normalize_event
from .aggregator import BoardAggregator
from .classifier import classify

__all__ = [
    'Config',
    'CalendarConfig',
    'CalendarEvent',
    'CalendarType',
    'AggregationResult',
    'BoardSnapshot',
    'BoardStatus',
    'CalendarSchedule',
    'BoardError',
    'StoreError',
    'FetchError',
    'NormalizationError',
    'AggregationError',
    'AnalysisError',
    'normalize_event',
    'BoardAggregator',
    'classify',
]
