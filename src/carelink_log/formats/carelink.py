"""Medtronic CareLink CSV export layout.

Data rows are positional: column 0 is the device row index (``123.456``),
followed by the 52 named columns below. Report headers, section titles and
the column header row do not start with a row index and are skipped.
"""

import re
from typing import Dict, Tuple
import polars as pl

from carelink_log.interface.schema import EnumLiteral, ColumnSchema, LogSchemaDefinition


class CarelinkColumn(EnumLiteral):
    """Named CareLink columns in export order (positions 1..52)."""
    DATE = "Date"
    TIME = "Time"
    NEW_DEVICE_TIME = "New Device Time"
    BG_SOURCE = "BG Source"
    BG_READING = "BG Reading (mg/dL)"
    LINKED_BG_METER_ID = "Linked BG Meter ID"
    BASAL_RATE = "Basal Rate (U/h)"
    TEMP_BASAL_AMOUNT = "Temp Basal Amount"
    TEMP_BASAL_TYPE = "Temp Basal Type"
    TEMP_BASAL_DURATION = "Temp Basal Duration (h:mm:ss)"
    BOLUS_TYPE = "Bolus Type"
    BOLUS_VOLUME_SELECTED = "Bolus Volume Selected (U)"
    BOLUS_VOLUME_DELIVERED = "Bolus Volume Delivered (U)"
    BOLUS_DURATION = "Bolus Duration (h:mm:ss)"
    PRIME_TYPE = "Prime Type"
    PRIME_VOLUME_DELIVERED = "Prime Volume Delivered (U)"
    ESTIMATED_RESERVOIR_VOLUME = "Estimated Reservoir Volume after Fill (U)"
    ALERT = "Alert"
    USER_CLEARED_ALERTS = "User Cleared Alerts"
    SUSPEND = "Suspend"
    REWIND = "Rewind"
    BWZ_ESTIMATE = "BWZ Estimate (U)"
    BWZ_TARGET_HIGH_BG = "BWZ Target High BG (mg/dL)"
    BWZ_TARGET_LOW_BG = "BWZ Target Low BG (mg/dL)"
    BWZ_CARB_RATIO = "BWZ Carb Ratio (g/U)"
    BWZ_INSULIN_SENSITIVITY = "BWZ Insulin Sensitivity (mg/dL/U)"
    BWZ_CARB_INPUT = "BWZ Carb Input (grams)"
    BWZ_BG_INPUT = "BWZ BG Input (mg/dL)"
    BWZ_CORRECTION_ESTIMATE = "BWZ Correction Estimate (U)"
    BWZ_FOOD_ESTIMATE = "BWZ Food Estimate (U)"
    BWZ_ACTIVE_INSULIN = "BWZ Active Insulin (U)"
    BWZ_STATUS = "BWZ Status"
    SENSOR_CALIBRATION_BG = "Sensor Calibration BG (mg/dL)"
    SENSOR_GLUCOSE = "Sensor Glucose (mg/dL)"
    ISIG_VALUE = "ISIG Value"
    EVENT_MARKER = "Event Marker"
    BOLUS_NUMBER = "Bolus Number"
    BOLUS_CANCELLATION_REASON = "Bolus Cancellation Reason"
    BWZ_UNABSORBED_INSULIN_TOTAL = "BWZ Unabsorbed Insulin Total (U)"
    FINAL_BOLUS_ESTIMATE = "Final Bolus Estimate"
    SCROLL_STEP_SIZE = "Scroll Step Size"
    INSULIN_ACTION_CURVE_TIME = "Insulin Action Curve Time"
    SENSOR_CALIBRATION_REJECTED_REASON = "Sensor Calibration Rejected Reason"
    PRESET_BOLUS = "Preset Bolus"
    BOLUS_SOURCE = "Bolus Source"
    BLE_NETWORK_DEVICE = "BLE Network Device"
    DEVICE_UPDATE_EVENT = "Device Update Event"
    NETWORK_DEVICE_ASSOCIATED_REASON = "Network Device Associated Reason"
    NETWORK_DEVICE_DISASSOCIATED_REASON = "Network Device Disassociated Reason"
    NETWORK_DEVICE_DISCONNECTED_REASON = "Network Device Disconnected Reason"
    SENSOR_EXCEPTION = "Sensor Exception"
    PRESET_TEMP_BASAL_NAME = "Preset Temp Basal Name"


class CarelinkBGSource(EnumLiteral):
    """BG Source values that mark a meter reading worth plotting."""
    USER_ACCEPTED_REMOTE_BG = "USER_ACCEPTED_REMOTE_BG"  # sent from the linked meter
    ENTERED_IN_BG_ENTRY = "ENTERED_IN_BG_ENTRY"  # typed in on the pump


# Position of each named column in a data row (0 is the row index)
CARELINK_COLUMN_INDEX: Dict[CarelinkColumn, int] = {
    column: position for position, column in enumerate(CarelinkColumn, start=1)
}

# Data rows start with the device row index, e.g. "8126.0" or "10.12345"
CARELINK_VALID_LINE_PATTERN = re.compile(r"^\d+\.\d+")

# Accepted layouts of "<Date> <Time>"; exports follow the account locale
CARELINK_TIMESTAMP_FORMATS: Tuple[str, ...] = (
    "%Y/%m/%d %H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%y %H:%M:%S",
    "%Y/%m/%d %H:%M",
    "%Y-%m-%d %H:%M",
    "%m/%d/%Y %H:%M",
    "%m/%d/%y %H:%M",
)

_RAW_RECORD_COLUMNS = [
    ColumnSchema(
        name="timestamp",
        dtype=pl.Datetime("us"),
        description="Combined Date and Time, null when unparseable",
    )
] + [
    ColumnSchema(name=column.value, dtype=pl.Utf8, description=f"CareLink column {position}")
    for column, position in CARELINK_COLUMN_INDEX.items()
]

RAW_RECORD_SCHEMA = LogSchemaDefinition(_RAW_RECORD_COLUMNS)
