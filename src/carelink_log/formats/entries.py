"""Tabular layouts for classified log entries and the moving-average trend."""

import polars as pl

from carelink_log.interface.schema import ColumnSchema, LogSchemaDefinition

ENTRY_SCHEMA = LogSchemaDefinition([
    ColumnSchema(name="type", dtype=pl.Utf8, description="sensor-bg, bolus or measured-bg"),
    ColumnSchema(name="timestamp", dtype=pl.Datetime("us"), description="Event time (local)"),
    ColumnSchema(name="bg_value", dtype=pl.Float64, description="Glucose value", unit="mg/dL"),
    ColumnSchema(name="amount_unit", dtype=pl.Float64, description="Bolus volume selected", unit="U"),
    ColumnSchema(name="carb_grams", dtype=pl.Float64, description="Wizard carb input", unit="g"),
])

MOVING_AVERAGE_SCHEMA = LogSchemaDefinition([
    ColumnSchema(name="date", dtype=pl.Utf8, description="Calendar date owning the grid point"),
    ColumnSchema(name="timestamp", dtype=pl.Datetime("us"), description="Grid point time"),
    ColumnSchema(name="value", dtype=pl.Float64, description="Mean sensor glucose in window", unit="mg/dL"),
])
