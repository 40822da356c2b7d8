"""Abstract Base Class interface for the Carelink log pipeline.

Separated into two concerns:
- LogParser: Export file to typed log entries (Stages 1-3)
- LogProcessor: Derived series over log entries (Stage 4)
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from types import MappingProxyType
from typing import BinaryIO, ClassVar, Dict, Iterable, Iterator, List, Mapping, Optional, TextIO, Tuple, Union
import polars as pl

from carelink_log.interface.schema import EnumLiteral

# Check pandas availability
try:
    import pyarrow as pa
    import pandas as pd
    _PANDAS_AVAILABLE = True
except ImportError:
    _PANDAS_AVAILABLE = False

DEFAULT_WINDOW_HOURS = 24  # moving average window
GRID_INTERVAL_MINUTES = 15  # spacing of moving average grid points (96 per day)
DEFAULT_CHUNK_SIZE = 64 * 1024  # bytes or characters per read from file-like sources


class LogEntryType(EnumLiteral):
    """Kinds of clinical events recognized in an export."""
    SENSOR_BG = "sensor-bg"  # continuous sensor glucose reading
    BOLUS = "bolus"  # insulin dose, optionally with wizard carbs
    MEASURED_BG = "measured-bg"  # fingerstick, remote meter or manual entry


class RawRecord(Mapping[str, str]):
    """One parsed export row: present columns plus the combined timestamp.

    Columns that were empty in the row are not keys. The mapping is read-only.
    ``timestamp`` is None when Date/Time could not be parsed.
    """

    __slots__ = ("_fields", "_timestamp")

    def __init__(self, fields: Mapping[str, str], timestamp: Optional[datetime]) -> None:
        self._fields = MappingProxyType(dict(fields))
        self._timestamp = timestamp

    @property
    def timestamp(self) -> Optional[datetime]:
        return self._timestamp

    def __getitem__(self, key: str) -> str:
        return self._fields[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def __repr__(self) -> str:
        return f"RawRecord(timestamp={self.timestamp!r}, fields={dict(self._fields)!r})"


@dataclass(frozen=True)
class SensorBGEntry:
    """Continuous sensor glucose reading (mg/dL)."""
    timestamp: Optional[datetime]
    bg_value: float
    type: ClassVar[LogEntryType] = LogEntryType.SENSOR_BG


@dataclass(frozen=True)
class BolusEntry:
    """Insulin bolus (U), with carbs (g) from the adjacent wizard row when logged."""
    timestamp: Optional[datetime]
    amount_unit: float
    carb_grams: Optional[float] = None
    type: ClassVar[LogEntryType] = LogEntryType.BOLUS


@dataclass(frozen=True)
class MeasuredBGEntry:
    """Meter glucose reading (mg/dL), sent remotely or entered by hand."""
    timestamp: Optional[datetime]
    bg_value: float
    type: ClassVar[LogEntryType] = LogEntryType.MEASURED_BG


LogEntry = Union[SensorBGEntry, BolusEntry, MeasuredBGEntry]


@dataclass(frozen=True)
class MovingAveragePoint:
    """One sample of the smoothed sensor trend."""
    timestamp: datetime
    value: float


# Anything the line reader accepts: whole payloads, open files, or chunk iterables
LogSource = Union[bytes, str, BinaryIO, TextIO, Iterable[Union[bytes, str]]]

# Simple tuple / mapping return types
IngestResult = Tuple[List[LogEntry], List[RawRecord]]  # (entries, raw records)
MovingAverages = Dict[str, List[MovingAveragePoint]]  # date string -> ascending points


class MalformedDataError(ValueError):
    """Raised when data cannot be parsed or converted properly."""
    pass


class MalformedLineError(MalformedDataError):
    """Raised when a data line has an unclosed quote or junk after a closing quote."""

    def __init__(self, reason: str, line_number: Optional[int] = None) -> None:
        self.reason = reason
        self.line_number = line_number
        if line_number is None:
            super().__init__(reason)
        else:
            super().__init__(f"Line {line_number}: {reason}")


class UndecodableInputError(MalformedDataError):
    """Raised when the byte stream is not valid UTF-8."""
    pass


class LogParser(ABC):
    """Abstract base class for turning a device export into log entries (Stages 1-3).

    This interface handles:
    - Stage 1: Reading the source into text lines (chunked, decoding, BOM removal)
    - Stage 2: Parsing data lines into raw records
    - Stage 3: Classifying sorted raw records into typed log entries

    ingest() chains the stages and is the single entry point for callers.
    """

    # ===== STAGE 1: Read Lines =====

    @classmethod
    @abstractmethod
    def iter_lines(cls, source: LogSource, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[str]:
        """Lazily split a source into newline-delimited text lines.

        Args:
            source: Raw payload, file-like object, or iterable of chunks
            chunk_size: Read size for file-like sources

        Returns:
            Iterator over lines without their trailing newline

        Raises:
            UndecodableInputError: If the byte stream cannot be decoded
        """
        pass

    # ===== STAGE 2: Parse Records =====

    @classmethod
    @abstractmethod
    def parse_record(cls, line: str, line_number: Optional[int] = None) -> Optional[RawRecord]:
        """Parse one line into a raw record.

        Args:
            line: One text line
            line_number: 1-based position in the source, used in error messages

        Returns:
            RawRecord, or None for header and metadata lines

        Raises:
            MalformedLineError: If quoting in the line is broken
        """
        pass

    # ===== STAGE 3: Classify =====

    @classmethod
    @abstractmethod
    def classify_records(cls, records: List[RawRecord]) -> List[LogEntry]:
        """Turn records sorted newest-first into log entries.

        Args:
            records: Raw records sorted by timestamp descending

        Returns:
            Log entries in record order, at most one per record
        """
        pass

    # ===== Orchestration =====

    @classmethod
    @abstractmethod
    def ingest(cls, source: LogSource) -> IngestResult:
        """Run stages 1-3 over a source.

        Returns:
            Tuple of (log entries, raw records sorted newest-first)
        """
        pass

    # ===== Serialization =====

    @staticmethod
    def to_csv_string(dataframe: pl.DataFrame) -> str:
        """Serialize an export DataFrame to CSV string.

        Args:
            dataframe: DataFrame built from entries, records or averages

        Returns:
            CSV string representation
        """
        return dataframe.write_csv(separator=",")


class LogProcessor(ABC):
    """Abstract base class for series derived from log entries (Stage 4).

    Operates only on already classified entries. Derived series are pure
    functions of their input and are recomputed on demand.
    """

    @abstractmethod
    def compute_moving_averages(self, entries: List[LogEntry]) -> MovingAverages:
        """Smooth sensor readings with a sliding time window.

        Args:
            entries: Log entries in any order

        Returns:
            Mapping from date string to ascending moving-average points
        """
        pass

    @abstractmethod
    def group_entries_by_date(self, entries: List[LogEntry]) -> Dict[str, List[LogEntry]]:
        """Bucket entries by local calendar date, keeping their order."""
        pass


def timestamp_sort_key(timestamp: Optional[datetime]) -> Tuple[bool, datetime]:
    """Sort key placing invalid (None) timestamps before every valid one."""
    if timestamp is None:
        return (False, datetime.min)
    return (True, timestamp)

# ============================================================================
# Compatibility Layer: Output Adapters
# ============================================================================

def to_pandas(df: pl.DataFrame) -> "pd.DataFrame":
    """Convert polars DataFrame to pandas.

    Raises:
        ImportError: If pandas and pyarrow are not installed
    """
    if not _PANDAS_AVAILABLE:
        raise ImportError(
            "pandas and pyarrow are required for this function. "
        )
    return df.to_pandas()

def to_polars(df: "pd.DataFrame") -> pl.DataFrame:
    """Convert pandas DataFrame to polars.

    Raises:
        ImportError: If arrow and pandas are not installed
    """
    if not _PANDAS_AVAILABLE:
        raise ImportError(
            "pandas and pyarrow are required for this function. "
        )
    return pl.from_pandas(df)
