"""Interface package for Carelink log processing.

This package provides base interfaces, value types and utilities for the
ingestion pipeline and the derived series.
"""

from carelink_log.interface.schema import (
    EnumLiteral,
    ColumnSchema,
    LogSchemaDefinition,
)
from carelink_log.interface.log_interface import (
    LogEntryType,
    RawRecord,
    SensorBGEntry,
    BolusEntry,
    MeasuredBGEntry,
    LogEntry,
    MovingAveragePoint,
    LogSource,
    IngestResult,
    MovingAverages,
    LogParser,
    LogProcessor,
    MalformedDataError,
    MalformedLineError,
    UndecodableInputError,
    DEFAULT_WINDOW_HOURS,
    GRID_INTERVAL_MINUTES,
    DEFAULT_CHUNK_SIZE,
    timestamp_sort_key,
    to_pandas,
    to_polars,
)

__all__ = [
    # Schema definitions
    "EnumLiteral",
    "ColumnSchema",
    "LogSchemaDefinition",
    # Value types
    "LogEntryType",
    "RawRecord",
    "SensorBGEntry",
    "BolusEntry",
    "MeasuredBGEntry",
    "LogEntry",
    "MovingAveragePoint",
    "LogSource",
    "IngestResult",
    "MovingAverages",
    # Core interfaces
    "LogParser",
    "LogProcessor",
    # Exceptions
    "MalformedDataError",
    "MalformedLineError",
    "UndecodableInputError",
    # Constants
    "DEFAULT_WINDOW_HOURS",
    "GRID_INTERVAL_MINUTES",
    "DEFAULT_CHUNK_SIZE",
    # Helpers and conversion utilities
    "timestamp_sort_key",
    "to_pandas",
    "to_polars",
]
