"""Tests for CarelinkParser: line reading, record parsing, classification and ingestion."""

import base64
import io
import math
from datetime import datetime

import pytest
import polars as pl

from carelink_log import CarelinkParser, ingest
from carelink_log.interface.log_interface import (
    SensorBGEntry,
    BolusEntry,
    MeasuredBGEntry,
    LogEntryType,
    RawRecord,
    MalformedDataError,
    MalformedLineError,
    UndecodableInputError,
    to_pandas,
    to_polars,
)
from carelink_log.formats.carelink import CarelinkColumn, RAW_RECORD_SCHEMA
from carelink_log.formats.entries import ENTRY_SCHEMA


def _lines(source, **kwargs):
    return list(CarelinkParser.iter_lines(source, **kwargs))


class TestLineReader:
    """Stage 1: chunked line reading."""

    def test_line_split_across_chunks(self):
        """A line whose text arrives in two chunks is reassembled."""
        assert _lines(["2024-01-0", "1,08:00:00\nnext"]) == ["2024-01-01,08:00:00", "next"]

    def test_unterminated_last_line_is_kept(self):
        assert _lines("a\nb") == ["a", "b"]

    def test_trailing_newline_adds_no_empty_line(self):
        assert _lines("a\nb\n") == ["a", "b"]

    def test_blank_lines_are_preserved(self):
        assert _lines("a\n\nb\n") == ["a", "", "b"]

    def test_crlf_line_endings(self):
        assert _lines(b"a\r\nb\r\n") == ["a", "b"]

    def test_crlf_split_across_chunks(self):
        assert _lines([b"a\r", b"\nb"]) == ["a", "b"]

    def test_chunk_without_newline_is_buffered(self):
        assert _lines(["ab", "cd", "ef\ngh", "ij"]) == ["abcdef", "ghij"]

    def test_multibyte_character_split_across_chunks(self):
        assert _lines([b"caf\xc3", b"\xa9\nx"]) == ["café", "x"]

    def test_utf8_bom_is_removed(self):
        assert _lines(b"\xef\xbb\xbfhello\nworld") == ["hello", "world"]

    def test_text_bom_is_removed(self):
        assert _lines("\ufeffhello\n") == ["hello"]

    def test_double_encoded_bom_is_removed(self):
        assert _lines(b"\xc3\xaf\xc2\xbb\xc2\xbfhello\n") == ["hello"]

    def test_quoted_bom_is_removed(self):
        assert _lines(b'\x22\xef\xbb\xbf\x22Index,Date\n1.0,2024/01/01\n') == ["Index,Date", "1.0,2024/01/01"]

    def test_invalid_utf8_is_fatal(self):
        with pytest.raises(UndecodableInputError):
            _lines([b"ok\n", b"\xff\xfe bad\n"])

    def test_undecodable_error_is_malformed_data(self):
        assert issubclass(UndecodableInputError, MalformedDataError)

    def test_binary_file_object_small_chunks(self):
        data = "1.0,x\n2.0,ééé\n3.0,z".encode("utf-8")
        assert _lines(io.BytesIO(data), chunk_size=3) == ["1.0,x", "2.0,ééé", "3.0,z"]

    def test_text_file_object(self):
        assert _lines(io.StringIO("a\nb\nc"), chunk_size=2) == ["a", "b", "c"]

    def test_lines_are_produced_lazily(self):
        consumed = []

        def chunks():
            for chunk in ["first\nsec", "ond\n", "third\n"]:
                consumed.append(chunk)
                yield chunk

        lines = CarelinkParser.iter_lines(chunks())
        assert next(lines) == "first"
        assert consumed == ["first\nsec"]
        assert list(lines) == ["second", "third"]

    def test_non_positive_chunk_size(self):
        with pytest.raises(ValueError):
            _lines(io.BytesIO(b"a\n"), chunk_size=0)

    def test_unsupported_source(self):
        with pytest.raises(TypeError):
            _lines(42)


class TestTokenizer:
    """Stage 2: quote-aware field splitting."""

    def test_quoted_field_with_comma(self):
        values = CarelinkParser.tokenize_line('1.0,2024-01-01,08:00:00,"A,B",x')
        assert values == ["1.0", "2024-01-01", "08:00:00", "A,B", "x"]

    def test_spaces_around_fields(self):
        assert CarelinkParser.tokenize_line('1.0, a ,  "b"  , c') == ["1.0", "a", "b", "c"]

    def test_empty_fields(self):
        assert CarelinkParser.tokenize_line("1.0,,x") == ["1.0", "", "x"]

    def test_quoted_last_field(self):
        assert CarelinkParser.tokenize_line('1.0,"last"') == ["1.0", "last"]

    def test_quoted_empty_field(self):
        assert CarelinkParser.tokenize_line('1.0,"",x') == ["1.0", "", "x"]

    def test_unclosed_quote(self):
        with pytest.raises(MalformedLineError, match="Unclosed quote"):
            CarelinkParser.tokenize_line('1.0,"abc')

    def test_junk_after_closing_quote(self):
        with pytest.raises(MalformedLineError, match="Expected comma"):
            CarelinkParser.tokenize_line('1.0,"abc"x,1')

    def test_error_carries_line_number(self):
        with pytest.raises(MalformedLineError) as exc_info:
            CarelinkParser.tokenize_line('1.0,"abc', line_number=7)
        assert exc_info.value.line_number == 7
        assert "Line 7" in str(exc_info.value)

    @pytest.mark.parametrize("line", [
        "1.0,2024-01-01,08:00:00,,,150",
        '1.0, a,b ,,"c",d',
        "12.345,ENTERED_IN_BG_ENTRY,110",
    ])
    def test_rejoined_tokens_parse_the_same(self, line):
        tokens = CarelinkParser.tokenize_line(line)
        assert CarelinkParser.tokenize_line(",".join(tokens)) == tokens


class TestRecordParsing:
    """Stage 2: positional mapping to named columns."""

    def test_sensor_glucose_line(self):
        line = "123.456,2024-01-01,08:00:00" + "," * 31 + ",150"
        record = CarelinkParser.parse_record(line)

        assert record is not None
        assert record[CarelinkColumn.SENSOR_GLUCOSE.value] == "150"
        assert record["Date"] == "2024-01-01"
        assert record["Time"] == "08:00:00"
        assert len(record) == 3
        assert record.timestamp == datetime(2024, 1, 1, 8, 0, 0)

    @pytest.mark.parametrize("line", [
        "Index,Date,Time,New Device Time",
        "-------,Pump,MiniMed 780G",
        "",
        "12,2024/01/01,08:00:00",
        '"1.0",2024/01/01,08:00:00',
    ])
    def test_non_data_lines_are_skipped(self, line):
        assert CarelinkParser.parse_record(line) is None

    def test_empty_values_are_absent(self, line_factory):
        record = CarelinkParser.parse_record(line_factory(DATE="2024/01/01", TIME="08:00:00", BG_SOURCE=""))
        assert CarelinkColumn.BG_SOURCE.value not in record
        assert record.get(CarelinkColumn.BG_SOURCE.value) is None

    def test_index_column_is_not_stored(self, line_factory):
        record = CarelinkParser.parse_record(line_factory(index="77.0", DATE="2024/01/01", TIME="08:00:00"))
        assert "77.0" not in record.values()

    def test_short_line_leaves_missing_columns_absent(self):
        record = CarelinkParser.parse_record("1.0,2024/01/01,08:00:00")
        assert set(record) == {"Date", "Time"}

    def test_quoted_values(self, line_factory):
        record = CarelinkParser.parse_record(
            line_factory(DATE="2024/01/01", TIME="08:00:00", ALERT='"Low, sensor glucose"')
        )
        assert record[CarelinkColumn.ALERT.value] == "Low, sensor glucose"

    def test_last_column(self, line_factory):
        record = CarelinkParser.parse_record(
            line_factory(DATE="2024/01/01", TIME="08:00:00", PRESET_TEMP_BASAL_NAME="Exercise")
        )
        assert record[CarelinkColumn.PRESET_TEMP_BASAL_NAME.value] == "Exercise"

    @pytest.mark.parametrize("date_value,time_value,expected", [
        ("2020/10/05", "23:59:33", datetime(2020, 10, 5, 23, 59, 33)),
        ("2020-10-05", "23:59:33", datetime(2020, 10, 5, 23, 59, 33)),
        ("10/05/2020", "23:59:33", datetime(2020, 10, 5, 23, 59, 33)),
        ("10/05/20", "23:59:33", datetime(2020, 10, 5, 23, 59, 33)),
        ("2020/10/05", "23:59", datetime(2020, 10, 5, 23, 59)),
    ])
    def test_timestamp_formats(self, date_value, time_value, expected):
        assert CarelinkParser.parse_timestamp(date_value, time_value) == expected

    @pytest.mark.parametrize("date_value,time_value", [
        ("not a date", "08:00:00"),
        ("2024/13/45", "08:00:00"),
        ("2024/01/01", None),
        (None, "08:00:00"),
    ])
    def test_invalid_timestamp_is_none(self, date_value, time_value):
        assert CarelinkParser.parse_timestamp(date_value, time_value) is None

    def test_record_is_read_only(self, line_factory):
        record = CarelinkParser.parse_record(line_factory(DATE="2024/01/01", TIME="08:00:00"))
        with pytest.raises(TypeError):
            record["Date"] = "2025/01/01"
        with pytest.raises(AttributeError):
            record.timestamp = None

    def test_sort_newest_first_invalid_last_stable(self):
        newer = RawRecord({"Date": "2024/01/02", "n": "1"}, datetime(2024, 1, 2))
        older = RawRecord({"Date": "2024/01/01"}, datetime(2024, 1, 1))
        tie = RawRecord({"Date": "2024/01/02", "n": "2"}, datetime(2024, 1, 2))
        invalid = RawRecord({"Date": "junk"}, None)

        ordered = CarelinkParser.sort_records([invalid, older, newer, tie])

        assert ordered == [newer, tie, older, invalid]
        assert ordered[0]["n"] == "1"
        assert ordered[1]["n"] == "2"


class TestClassification:
    """Stage 3: mapping records to typed log entries."""

    @staticmethod
    def _records(*lines):
        return [CarelinkParser.parse_record(line) for line in lines]

    def test_sensor_glucose(self, line_factory):
        records = self._records(line_factory(DATE="2024-01-01", TIME="08:00:00", SENSOR_GLUCOSE="150"))
        entries = CarelinkParser.classify_records(records)

        assert entries == [SensorBGEntry(timestamp=datetime(2024, 1, 1, 8), bg_value=150.0)]
        assert entries[0].type == LogEntryType.SENSOR_BG
        assert entries[0].type == "sensor-bg"

    def test_sensor_glucose_wins_over_bolus(self, line_factory):
        records = self._records(line_factory(
            DATE="2024-01-01", TIME="08:00:00", SENSOR_GLUCOSE="150", BOLUS_VOLUME_SELECTED="1.0",
        ))
        entries = CarelinkParser.classify_records(records)
        assert len(entries) == 1
        assert isinstance(entries[0], SensorBGEntry)

    def test_bolus_takes_carbs_from_next_record(self, line_factory):
        records = self._records(
            line_factory(DATE="2024-01-01", TIME="12:00:05", BOLUS_VOLUME_SELECTED="2.5"),
            line_factory(DATE="2024-01-01", TIME="12:00:00", BWZ_CARB_INPUT="40"),
        )
        entries = CarelinkParser.classify_records(records)

        assert entries == [BolusEntry(timestamp=datetime(2024, 1, 1, 12, 0, 5), amount_unit=2.5, carb_grams=40.0)]

    def test_bolus_without_carbs_on_next_record(self, line_factory):
        records = self._records(
            line_factory(DATE="2024-01-01", TIME="12:00:05", BOLUS_VOLUME_SELECTED="2.5"),
            line_factory(DATE="2024-01-01", TIME="12:00:00", BWZ_ESTIMATE="2.5"),
            line_factory(DATE="2024-01-01", TIME="11:59:00", BWZ_CARB_INPUT="40"),
        )
        entries = CarelinkParser.classify_records(records)

        assert entries == [BolusEntry(timestamp=datetime(2024, 1, 1, 12, 0, 5), amount_unit=2.5)]
        assert entries[0].carb_grams is None

    def test_bolus_as_last_record(self, line_factory):
        records = self._records(line_factory(DATE="2024-01-01", TIME="12:00:05", BOLUS_VOLUME_SELECTED="3"))
        assert CarelinkParser.classify_records(records) == [
            BolusEntry(timestamp=datetime(2024, 1, 1, 12, 0, 5), amount_unit=3.0)
        ]

    def test_delivered_bolus_is_not_an_entry(self, line_factory):
        records = self._records(line_factory(
            DATE="2024-01-01", TIME="12:00:05", BOLUS_VOLUME_SELECTED="2.5", BOLUS_VOLUME_DELIVERED="2.5",
        ))
        assert CarelinkParser.classify_records(records) == []

    @pytest.mark.parametrize("source", ["ENTERED_IN_BG_ENTRY", "USER_ACCEPTED_REMOTE_BG"])
    def test_measured_bg(self, line_factory, source):
        records = self._records(line_factory(DATE="2024-01-01", TIME="07:00:00", BG_SOURCE=source, BG_READING="110"))
        assert CarelinkParser.classify_records(records) == [
            MeasuredBGEntry(timestamp=datetime(2024, 1, 1, 7), bg_value=110.0)
        ]

    def test_other_bg_source_is_ignored(self, line_factory):
        records = self._records(line_factory(
            DATE="2024-01-01", TIME="07:00:00", BG_SOURCE="BG_SENT_FOR_CALIB", BG_READING="110",
        ))
        assert CarelinkParser.classify_records(records) == []

    def test_measured_bg_without_reading_is_nan(self, line_factory):
        records = self._records(line_factory(DATE="2024-01-01", TIME="07:00:00", BG_SOURCE="ENTERED_IN_BG_ENTRY"))
        entries = CarelinkParser.classify_records(records)
        assert len(entries) == 1
        assert math.isnan(entries[0].bg_value)

    def test_non_numeric_values_become_nan(self, line_factory):
        records = self._records(
            line_factory(DATE="2024-01-01", TIME="12:00:05", SENSOR_GLUCOSE="abc"),
            line_factory(DATE="2024-01-01", TIME="12:00:04", BOLUS_VOLUME_SELECTED="x"),
            line_factory(DATE="2024-01-01", TIME="12:00:03", BWZ_CARB_INPUT="lots"),
        )
        sensor, bolus = CarelinkParser.classify_records(records)
        assert math.isnan(sensor.bg_value)
        assert math.isnan(bolus.amount_unit)
        assert math.isnan(bolus.carb_grams)

    def test_unmatched_records_yield_nothing(self, line_factory):
        records = self._records(line_factory(DATE="2024-01-01", TIME="06:00:00", ALERT="Low"))
        assert CarelinkParser.classify_records(records) == []

    def test_classify_record_by_index(self, line_factory):
        records = self._records(
            line_factory(DATE="2024-01-01", TIME="12:00:05", BOLUS_VOLUME_SELECTED="2.5"),
            line_factory(DATE="2024-01-01", TIME="12:00:00", BWZ_CARB_INPUT="40"),
        )
        assert CarelinkParser.classify_record(records, 1) is None
        assert CarelinkParser.classify_record(records, 0).carb_grams == 40.0

    def test_entries_are_frozen(self):
        entry = SensorBGEntry(timestamp=datetime(2024, 1, 1), bg_value=100.0)
        with pytest.raises(AttributeError):
            entry.bg_value = 120.0


class TestIngest:
    """Full pipeline: read, parse, sort, classify."""

    def test_sample_export(self, sample_export):
        entries, records = CarelinkParser.ingest(sample_export)

        assert len(records) == 7
        timestamps = [record.timestamp for record in records]
        assert timestamps == sorted(timestamps, reverse=True)

        assert [entry.type.value for entry in entries] == [
            "sensor-bg", "sensor-bg", "bolus", "sensor-bg", "measured-bg",
        ]
        assert entries[0] == SensorBGEntry(timestamp=datetime(2024, 1, 2, 9), bg_value=150.0)
        assert entries[2] == BolusEntry(timestamp=datetime(2024, 1, 1, 12, 0, 5), amount_unit=2.5, carb_grams=40.0)
        assert entries[4] == MeasuredBGEntry(timestamp=datetime(2024, 1, 1, 7, 55), bg_value=110.0)

    def test_quoted_alert_survives(self, sample_export):
        _, records = CarelinkParser.ingest(sample_export)
        alerts = [record[CarelinkColumn.ALERT.value] for record in records if CarelinkColumn.ALERT.value in record]
        assert alerts == ["Low, sensor glucose"]

    def test_same_result_for_every_source_kind(self, sample_export, sample_export_file):
        from_text = CarelinkParser.parse_from_string(sample_export)
        from_bytes = CarelinkParser.parse_from_bytes(sample_export.encode("utf-8"))
        from_file = CarelinkParser.parse_file(sample_export_file, chunk_size=5)
        from_base64 = CarelinkParser.parse_base64(base64.b64encode(sample_export.encode("utf-8")).decode("ascii"))

        for entries, records in (from_bytes, from_file, from_base64):
            assert entries == from_text[0]
            assert [dict(record) for record in records] == [dict(record) for record in from_text[1]]

    def test_package_level_ingest(self, sample_export):
        entries, records = ingest(sample_export)
        assert len(entries) == 5
        assert len(records) == 7

    def test_each_call_returns_fresh_results(self, sample_export):
        first = CarelinkParser.ingest(sample_export)
        second = CarelinkParser.ingest(sample_export)
        assert first[0] == second[0]
        assert first[0] is not second[0]
        assert first[1] is not second[1]

    def test_malformed_line_aborts_ingestion(self, line_factory):
        text = "\n".join([
            "Index,Date,Time",
            line_factory(DATE="2024/01/01", TIME="08:00:00", SENSOR_GLUCOSE="100"),
            '3.0,2024/01/01,"08:05:00',
        ])
        with pytest.raises(MalformedLineError) as exc_info:
            CarelinkParser.ingest(text)
        assert exc_info.value.line_number == 3

    def test_invalid_base64(self):
        with pytest.raises(ValueError, match="base64"):
            CarelinkParser.parse_base64("not base64!!")

    def test_empty_source(self):
        assert CarelinkParser.ingest(b"") == ([], [])

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            CarelinkParser.parse_file(tmp_path / "missing.csv")

    def test_invalid_dates_sort_last(self, line_factory):
        text = "\n".join([
            line_factory(DATE="garbage", TIME="08:00:00", SENSOR_GLUCOSE="90"),
            line_factory(DATE="2024/01/01", TIME="08:00:00", SENSOR_GLUCOSE="100"),
        ])
        entries, records = CarelinkParser.ingest(text)
        assert records[-1].timestamp is None
        assert entries[-1].timestamp is None
        assert entries[0].bg_value == 100.0

    def test_record_dates(self, sample_export):
        _, records = CarelinkParser.ingest(sample_export)
        assert CarelinkParser.record_dates(records) == ["2024/01/02", "2024/01/01"]


class TestFrames:
    """Tabular export of entries and records."""

    def test_entries_to_frame(self, sample_export):
        entries, _ = CarelinkParser.ingest(sample_export)
        df = CarelinkParser.entries_to_frame(entries)

        assert df.columns == ENTRY_SCHEMA.get_column_names()
        assert df.height == 5
        bolus = df.filter(pl.col("type") == "bolus").row(0, named=True)
        assert bolus["amount_unit"] == 2.5
        assert bolus["carb_grams"] == 40.0
        assert bolus["bg_value"] is None

    def test_empty_entries_frame_keeps_schema(self):
        df = CarelinkParser.entries_to_frame([])
        assert df.height == 0
        assert df.schema["timestamp"] == pl.Datetime("us")

    def test_records_to_frame(self, sample_export):
        _, records = CarelinkParser.ingest(sample_export)
        df = CarelinkParser.records_to_frame(records)

        assert df.height == 7
        assert df.columns == RAW_RECORD_SCHEMA.get_column_names()
        assert len(df.columns) == 53
        assert df["Sensor Glucose (mg/dL)"].drop_nulls().to_list() == ["150", "200", "100"]

    def test_csv_roundtrip_through_file(self, sample_export, tmp_path):
        entries, _ = CarelinkParser.ingest(sample_export)
        path = tmp_path / "entries.csv"
        CarelinkParser.to_csv_file(CarelinkParser.entries_to_frame(entries), path)

        text = path.read_text()
        assert text.splitlines()[0] == "type,timestamp,bg_value,amount_unit,carb_grams"
        assert CarelinkParser.to_csv_string(CarelinkParser.entries_to_frame(entries)) == text

    def test_to_pandas(self, sample_export):
        pytest.importorskip("pandas")
        pytest.importorskip("pyarrow")
        entries, _ = CarelinkParser.ingest(sample_export)
        pdf = to_pandas(CarelinkParser.entries_to_frame(entries))
        assert list(pdf.columns) == ENTRY_SCHEMA.get_column_names()
        assert len(pdf) == 5

        df = to_polars(pdf)
        assert df.columns == ENTRY_SCHEMA.get_column_names()
        assert df["type"].to_list()[2] == "bolus"
