"""Shared fixtures: CareLink export lines built from column names."""

from typing import Callable, Dict

import pytest

from carelink_log.formats.carelink import CarelinkColumn, CARELINK_COLUMN_INDEX

LAST_POSITION = max(CARELINK_COLUMN_INDEX.values())


def build_line(index: str = "1.0", **columns: str) -> str:
    """Build one data line; keyword names are CarelinkColumn member names."""
    values = [""] * (LAST_POSITION + 1)
    values[0] = index
    for name, value in columns.items():
        values[CARELINK_COLUMN_INDEX[CarelinkColumn[name]]] = value
    return ",".join(values)


@pytest.fixture
def line_factory() -> Callable[..., str]:
    """Factory for CareLink data lines."""
    return build_line


@pytest.fixture
def sample_export() -> str:
    """Small export: report header, two device sections, mixed event rows out of order."""
    lines = [
        "Last Name,First Name,Patient ID,Start Date,End Date,,,,,",
        "Doe,Jane,,2024/01/01 00:00:00,2024/01/02 23:59:59,,,,,",
        "-------,Pump,MiniMed 780G,Serial Number,NG0000000H,,,,,",
        "Index,Date,Time,New Device Time,BG Source,BG Reading (mg/dL)",
        build_line("10.0", DATE="2024/01/01", TIME="08:00:00", SENSOR_GLUCOSE="100"),
        build_line("11.0", DATE="2024/01/01", TIME="20:00:00", SENSOR_GLUCOSE="200"),
        build_line("12.0", DATE="2024/01/01", TIME="12:00:05", BOLUS_VOLUME_SELECTED="2.5"),
        build_line("13.0", DATE="2024/01/01", TIME="12:00:00", BWZ_CARB_INPUT="40", BWZ_STATUS="Delivered"),
        build_line(
            "14.0", DATE="2024/01/01", TIME="07:55:00",
            BG_SOURCE="ENTERED_IN_BG_ENTRY", BG_READING="110",
        ),
        build_line("15.0", DATE="2024/01/02", TIME="09:00:00", SENSOR_GLUCOSE="150"),
        build_line("16.0", DATE="2024/01/02", TIME="06:00:00", ALERT='"Low, sensor glucose"'),
        "-------,Sensor,Guardian 4,,,,,,,",
        "Index,Date,Time,New Device Time",
    ]
    return "\r\n".join(lines) + "\r\n"


@pytest.fixture
def sample_export_file(tmp_path, sample_export):
    """The sample export written to disk as UTF-8 with BOM."""
    path = tmp_path / "carelink_export.csv"
    path.write_bytes(b"\xef\xbb\xbf" + sample_export.encode("utf-8"))
    return path
