"""carelink_log - Medtronic CareLink CSV export ingestion and glucose trends.

This package turns a CareLink CSV export into a newest-first list of typed
log entries (sensor glucose, boluses with carbs, meter readings) and derives
a sliding-window moving average of sensor glucose for plotting.

Main Components:
    CarelinkParser: Read, parse and classify an export (Stages 1-3)
    TrendProcessor: Moving averages and per-date grouping (Stage 4)

Quick Start:
    >>> from carelink_log import CarelinkParser, TrendProcessor
    >>> 
    >>> # Ingest an export file
    >>> entries, records = CarelinkParser.parse_file("data/carelink_export.csv")
    >>> 
    >>> # Smooth sensor glucose on demand
    >>> averages = TrendProcessor(window_hours=24).compute_moving_averages(entries)
"""

from typing import List

from carelink_log.interface.log_interface import (
    LogEntry,
    LogSource,
    IngestResult,
    MovingAverages,
    DEFAULT_WINDOW_HOURS,
)
from carelink_log.log_parser import CarelinkParser
from carelink_log.trend_processor import TrendProcessor

__version__ = "0.1.0"

__all__ = [
    "CarelinkParser",
    "TrendProcessor",
    "ingest",
    "compute_averages",
    "__version__",
]


def ingest(source: LogSource) -> IngestResult:
    """Ingest a CareLink export; returns (log entries, raw records), both newest-first."""
    return CarelinkParser.ingest(source)


def compute_averages(entries: List[LogEntry], window_hours: float = DEFAULT_WINDOW_HOURS) -> MovingAverages:
    """Moving average of sensor glucose per date on the 15-minute grid."""
    return TrendProcessor(window_hours=window_hours).compute_moving_averages(entries)
