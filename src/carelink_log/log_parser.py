"""Parser for CareLink CSV exports working on streamed text data."""

import codecs
import logging
import math
from base64 import b64decode
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Union
import polars as pl

from carelink_log.interface.log_interface import (
    LogParser,
    LogSource,
    LogEntry,
    SensorBGEntry,
    BolusEntry,
    MeasuredBGEntry,
    RawRecord,
    IngestResult,
    MalformedLineError,
    UndecodableInputError,
    DEFAULT_CHUNK_SIZE,
    timestamp_sort_key,
)
from carelink_log.formats.carelink import (
    CarelinkColumn,
    CarelinkBGSource,
    CARELINK_COLUMN_INDEX,
    CARELINK_VALID_LINE_PATTERN,
    CARELINK_TIMESTAMP_FORMATS,
    RAW_RECORD_SCHEMA,
)
from carelink_log.formats.entries import ENTRY_SCHEMA

logger = logging.getLogger(__name__)

# Common encoding artifacts and their fixes
UTF8_BOM = b'\xef\xbb\xbf'
ENCODING_ARTIFACTS = {
    # Double-encoded BOM in quotes: "ïººº¿"
    b'\x22\xc3\xaf\xc2\xbb\xc2\xbf\x22': UTF8_BOM,
    # Triple-encoded BOM (enterprise nightmare)
    b'\x22\xc3\x83\xc2\xaf\xc3\x82\xc2\xbb\xc3\x82\xc2\xbf\x22': UTF8_BOM,
    # Double-encoded BOM without quotes
    b'\xc3\xaf\xc2\xbb\xc2\xbf': UTF8_BOM,
    # Quoted BOM (some systems do this)
    b'\x22\xef\xbb\xbf\x22': UTF8_BOM,
}
# Bytes to collect before looking for an artifact at the head of a stream
ARTIFACT_PROBE_LENGTH = max(len(pattern) for pattern in ENCODING_ARTIFACTS)

MEASURED_BG_SOURCES = frozenset({
    CarelinkBGSource.USER_ACCEPTED_REMOTE_BG.value,
    CarelinkBGSource.ENTERED_IN_BG_ENTRY.value,
})


class CarelinkParser(LogParser):
    """Main parser implementing the LogParser interface.

    This class orchestrates the pipeline from a CareLink export to log entries:
    1. Read lines (chunked reading, decoding, BOM removal)
    2. Parse data lines to raw records (quote-aware tokenizer, positional columns)
    3. Sort records newest-first and classify them into log entries

    All methods are stateless; every ingest() call returns fresh lists.
    """

    # ===== STAGE 1: Read Lines =====

    @classmethod
    def iter_lines(cls, source: LogSource, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[str]:
        """Lazily split a source into newline-delimited text lines.

        A line whose text spans two chunks is buffered until its newline
        arrives. Unterminated trailing text is yielded as the last line.
        A single trailing carriage return is removed from every line.

        Args:
            source: bytes, str, binary/text file-like object, or iterable of chunks
            chunk_size: Read size for file-like sources

        Returns:
            Iterator over lines without their trailing newline

        Raises:
            UndecodableInputError: If the byte stream is not valid UTF-8
            TypeError: If the source type is not supported
        """
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")

        remaining = ""
        line_count = 0
        for text in cls._iter_text_chunks(cls._iter_chunks(source, chunk_size)):
            pieces = (remaining + text).split("\n")
            remaining = pieces.pop()
            for line in pieces:
                line_count += 1
                yield cls._strip_carriage_return(line)

        if remaining:
            line_count += 1
            yield cls._strip_carriage_return(remaining)

        logger.debug("Read %d lines", line_count)

    @staticmethod
    def _strip_carriage_return(line: str) -> str:
        return line[:-1] if line.endswith("\r") else line

    @staticmethod
    def _iter_chunks(source: LogSource, chunk_size: int) -> Iterator[Union[bytes, str]]:
        """Yield raw chunks from any supported source without reading it all up front."""
        if isinstance(source, (bytes, bytearray, memoryview)):
            yield bytes(source)
            return
        if isinstance(source, str):
            yield source
            return

        read = getattr(source, "read", None)
        if callable(read):
            while True:
                chunk = read(chunk_size)
                if not chunk:
                    break
                yield chunk
            return

        try:
            chunks = iter(source)
        except TypeError:
            raise TypeError(f"Unsupported log source type: {type(source).__name__}") from None
        yield from chunks

    @staticmethod
    def _normalize_encoding_artifacts(head: bytes) -> bytes:
        """Replace a corrupted BOM at the very start of the stream with a real one."""
        for corrupted_pattern, proper_bom in ENCODING_ARTIFACTS.items():
            if head.startswith(corrupted_pattern):
                return proper_bom + head[len(corrupted_pattern):]
        return head

    @classmethod
    def _iter_text_chunks(cls, chunks: Iterable[Union[bytes, str]]) -> Iterator[str]:
        """Decode byte chunks incrementally; text chunks pass through.

        Multi-byte characters split between chunks are completed by the
        incremental decoder. The BOM (and its known mangled forms) is dropped.
        """
        decoder = codecs.getincrementaldecoder("utf-8-sig")(errors="strict")
        head = b""
        head_checked = False
        first_text = True

        def decode(data: bytes, final: bool = False) -> str:
            try:
                return decoder.decode(data, final=final)
            except UnicodeDecodeError as e:
                raise UndecodableInputError(f"Input is not valid UTF-8: {e}") from e

        for chunk in chunks:
            if isinstance(chunk, str):
                if first_text and chunk.startswith('\ufeff'):
                    chunk = chunk[1:]
                first_text = False
                if chunk:
                    yield chunk
                continue

            chunk = bytes(chunk)
            if not head_checked:
                head += chunk
                if len(head) < ARTIFACT_PROBE_LENGTH:
                    continue
                chunk = cls._normalize_encoding_artifacts(head)
                head_checked = True

            text = decode(chunk)
            if text:
                first_text = False
                yield text

        tail = decode(cls._normalize_encoding_artifacts(head) if not head_checked else b"", final=True)
        if tail:
            yield tail

    # ===== STAGE 2: Parse Records =====

    @staticmethod
    def tokenize_line(line: str, line_number: Optional[int] = None) -> List[str]:
        """Split a line on commas, honouring double-quoted fields.

        Leading spaces before a field are skipped. A quoted field runs to the
        next double quote (there is no escaped-quote form) and must be followed
        by optional spaces and then a comma or the end of the line. Unquoted
        fields are trimmed.

        Args:
            line: One text line
            line_number: 1-based line position for error messages

        Returns:
            List of field values in order

        Raises:
            MalformedLineError: If a quote is not closed or junk follows a closing quote
        """
        values: List[str] = []
        i = 0
        length = len(line)

        while i < length:
            while i < length and line[i] == ' ':
                i += 1

            if i < length and line[i] == '"':
                closing = line.find('"', i + 1)
                if closing == -1:
                    raise MalformedLineError("Unclosed quote", line_number)
                values.append(line[i + 1:closing])
                i = closing + 1
                while i < length and line[i] == ' ':
                    i += 1
                if i < length and line[i] != ',':
                    raise MalformedLineError(
                        f"Expected comma after quoted field, found {line[i]!r}", line_number
                    )
                i += 1
            else:
                comma = line.find(',', i)
                if comma == -1:
                    values.append(line[i:].strip())
                    break
                values.append(line[i:comma].strip())
                i = comma + 1

        return values

    @staticmethod
    def parse_timestamp(date_value: Optional[str], time_value: Optional[str]) -> Optional[datetime]:
        """Combine the Date and Time columns into a datetime.

        Returns:
            Parsed datetime, or None when either part is missing or no known format matches
        """
        if date_value is None or time_value is None:
            return None

        combined = f"{date_value} {time_value}"
        for fmt in CARELINK_TIMESTAMP_FORMATS:
            try:
                return datetime.strptime(combined, fmt)
            except ValueError:
                continue  # Try next format
        return None

    @classmethod
    def parse_record(cls, line: str, line_number: Optional[int] = None) -> Optional[RawRecord]:
        """Parse one line into a raw record.

        Lines that do not start with the device row index (headers, report
        metadata, blank lines) return None.

        Args:
            line: One text line
            line_number: 1-based line position for error messages

        Returns:
            RawRecord or None

        Raises:
            MalformedLineError: If quoting in the line is broken
        """
        if not CARELINK_VALID_LINE_PATTERN.match(line):
            return None

        values = cls.tokenize_line(line, line_number)

        fields: Dict[str, str] = {}
        for column, position in CARELINK_COLUMN_INDEX.items():
            if position < len(values) and values[position] != "":
                fields[column.value] = values[position]

        timestamp = cls.parse_timestamp(
            fields.get(CarelinkColumn.DATE.value),
            fields.get(CarelinkColumn.TIME.value),
        )
        return RawRecord(fields, timestamp)

    @classmethod
    def parse_records(cls, lines: Iterable[str]) -> List[RawRecord]:
        """Parse every data line of a line sequence, in source order."""
        records: List[RawRecord] = []
        skipped = 0
        for line_number, line in enumerate(lines, start=1):
            record = cls.parse_record(line, line_number)
            if record is None:
                skipped += 1
                continue
            records.append(record)

        logger.debug("Parsed %d records, skipped %d non-data lines", len(records), skipped)
        return records

    @staticmethod
    def sort_records(records: List[RawRecord]) -> List[RawRecord]:
        """Return records newest-first; unparseable timestamps count as earliest.

        The sort is stable, so records sharing a timestamp keep file order.
        """
        return sorted(records, key=lambda record: timestamp_sort_key(record.timestamp), reverse=True)

    # ===== STAGE 3: Classify =====

    @staticmethod
    def _to_float(value: Optional[str]) -> float:
        """Parse a numeric column; missing or non-numeric text becomes NaN."""
        if value is None:
            return math.nan
        try:
            return float(value)
        except ValueError:
            return math.nan

    @classmethod
    def classify_record(cls, records: List[RawRecord], index: int) -> Optional[LogEntry]:
        """Classify the record at ``index`` of a newest-first sequence.

        Rules, first match wins:
        1. Sensor Glucose present -> sensor-bg
        2. Bolus Volume Selected present without Bolus Volume Delivered -> bolus,
           taking carbs from BWZ Carb Input of the record right after it
        3. BG Source is a remote or manual meter entry -> measured-bg

        Args:
            records: Raw records sorted by timestamp descending
            index: Position of the record to classify

        Returns:
            LogEntry, or None when no rule matches
        """
        record = records[index]
        timestamp = record.timestamp

        sensor_glucose = record.get(CarelinkColumn.SENSOR_GLUCOSE.value)
        if sensor_glucose is not None:
            return SensorBGEntry(timestamp=timestamp, bg_value=cls._to_float(sensor_glucose))

        selected = record.get(CarelinkColumn.BOLUS_VOLUME_SELECTED.value)
        if selected is not None and CarelinkColumn.BOLUS_VOLUME_DELIVERED.value not in record:
            carb_grams = None
            if index + 1 < len(records):
                carb_input = records[index + 1].get(CarelinkColumn.BWZ_CARB_INPUT.value)
                if carb_input is not None:
                    carb_grams = cls._to_float(carb_input)
            return BolusEntry(timestamp=timestamp, amount_unit=cls._to_float(selected), carb_grams=carb_grams)

        if record.get(CarelinkColumn.BG_SOURCE.value) in MEASURED_BG_SOURCES:
            return MeasuredBGEntry(
                timestamp=timestamp,
                bg_value=cls._to_float(record.get(CarelinkColumn.BG_READING.value)),
            )

        return None

    @classmethod
    def classify_records(cls, records: List[RawRecord]) -> List[LogEntry]:
        """Turn records sorted newest-first into log entries, preserving order.

        Args:
            records: Raw records sorted by timestamp descending

        Returns:
            Log entries, at most one per record
        """
        entries: List[LogEntry] = []
        for index in range(len(records)):
            entry = cls.classify_record(records, index)
            if entry is not None:
                entries.append(entry)

        logger.debug("Classified %d entries from %d records", len(entries), len(records))
        return entries

    # ===== Orchestration =====

    @classmethod
    def ingest(cls, source: LogSource, chunk_size: int = DEFAULT_CHUNK_SIZE) -> IngestResult:
        """Run the full ingestion pipeline over a source.

        This method chains all stages together:
        1. Read lines
        2. Parse data lines to raw records
        3. Sort records newest-first
        4. Classify records into log entries

        Args:
            source: bytes, str, file-like object, or iterable of chunks
            chunk_size: Read size for file-like sources

        Returns:
            Tuple of (log entries, raw records), both newest-first

        Raises:
            MalformedLineError: If a data line has broken quoting
            UndecodableInputError: If the byte stream cannot be decoded
        """
        records = cls.parse_records(cls.iter_lines(source, chunk_size))

        invalid = sum(1 for record in records if record.timestamp is None)
        if invalid:
            logger.warning("%d records have an unparseable Date/Time and sort as earliest", invalid)

        records = cls.sort_records(records)
        entries = cls.classify_records(records)
        logger.info("Ingested %d records into %d log entries", len(records), len(entries))
        return entries, records

    # ===== Convenience Methods =====

    @classmethod
    def parse_file(cls, file_path: Union[str, Path], chunk_size: int = DEFAULT_CHUNK_SIZE) -> IngestResult:
        """Ingest a CareLink export from a file path.

        The file is read in chunks rather than loaded whole.

        Args:
            file_path: Path to the CSV export
            chunk_size: Bytes per read

        Returns:
            Tuple of (log entries, raw records)

        Raises:
            FileNotFoundError: If file doesn't exist
            MalformedLineError: If a data line has broken quoting
            UndecodableInputError: If the file is not valid UTF-8
        """
        file_path = Path(file_path)
        with open(file_path, 'rb') as f:
            return cls.ingest(f, chunk_size)

    @classmethod
    def parse_from_bytes(cls, raw_data: bytes) -> IngestResult:
        """Ingest raw export bytes."""
        return cls.ingest(raw_data)

    @classmethod
    def parse_from_string(cls, text_data: str) -> IngestResult:
        """Ingest already decoded export text."""
        return cls.ingest(text_data)

    @classmethod
    def parse_base64(cls, base64_data: str) -> IngestResult:
        """Ingest a base64 encoded export.

        Useful for web API endpoints that receive base64 encoded CSV data.

        Args:
            base64_data: Base64 encoded CSV data string

        Returns:
            Tuple of (log entries, raw records)

        Raises:
            ValueError: If base64 decoding fails
            MalformedLineError: If a data line has broken quoting
            UndecodableInputError: If the decoded bytes are not valid UTF-8
        """
        try:
            raw_data = b64decode(base64_data, validate=True)
        except ValueError as e:
            raise ValueError(f"Failed to decode base64 data: {e}") from e

        return cls.parse_from_bytes(raw_data)

    @staticmethod
    def record_dates(records: List[RawRecord]) -> List[str]:
        """Distinct raw Date column values in record order (for day-by-day raw views)."""
        dates: Dict[str, None] = {}
        for record in records:
            date_value = record.get(CarelinkColumn.DATE.value)
            if date_value is not None:
                dates.setdefault(date_value, None)
        return list(dates)

    # ===== Serialization Methods =====

    @staticmethod
    def entries_to_frame(entries: List[LogEntry]) -> pl.DataFrame:
        """Build a DataFrame with one row per log entry, columns per ENTRY_SCHEMA."""
        rows = []
        for entry in entries:
            if isinstance(entry, SensorBGEntry) or isinstance(entry, MeasuredBGEntry):
                rows.append((entry.type.value, entry.timestamp, entry.bg_value, None, None))
            elif isinstance(entry, BolusEntry):
                rows.append((entry.type.value, entry.timestamp, None, entry.amount_unit, entry.carb_grams))
            else:
                raise TypeError(f"Unknown log entry: {entry!r}")
        return ENTRY_SCHEMA.build_frame(rows)

    @staticmethod
    def records_to_frame(records: List[RawRecord]) -> pl.DataFrame:
        """Build a DataFrame with one row per raw record, absent columns as null."""
        columns = RAW_RECORD_SCHEMA.get_column_names()[1:]
        rows = [
            (record.timestamp, *(record.get(column) for column in columns))
            for record in records
        ]
        return RAW_RECORD_SCHEMA.build_frame(rows)

    @staticmethod
    def to_csv_file(dataframe: pl.DataFrame, file_path: Union[str, Path]) -> None:
        """Save an export DataFrame to a CSV file.

        Args:
            dataframe: DataFrame built from entries, records or averages
            file_path: Path where to save the CSV file
        """
        dataframe.write_csv(file_path)
