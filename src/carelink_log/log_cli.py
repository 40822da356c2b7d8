#!/usr/bin/env python3
"""CareLink Log CLI Tool - Command-line interface for CareLink export inspection.

This tool provides access to the ingestion pipeline and derived series:
- Parsing an export into log entries (with CSV export)
- Per-day summaries of sensor, bolus and meter data
- Moving-average glucose trend
- Raw record view for one day
- Classified entries of one day in time order

Can be used as:
- Installed command: carelink-cli <command>
- Python module: python -m carelink_log.log_cli <command>
- Direct script: python scripts/carelink_cli.py <command>
"""

import logging
from pathlib import Path
from typing import List, Optional, Tuple

import typer
import polars as pl
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from carelink_log.log_parser import CarelinkParser
from carelink_log.trend_processor import TrendProcessor
from carelink_log.interface.log_interface import (
    LogEntry,
    LogEntryType,
    BolusEntry,
    RawRecord,
    IngestResult,
    MalformedDataError,
    DEFAULT_WINDOW_HOURS,
)
from carelink_log.formats.carelink import CarelinkColumn
from carelink_log.formats.supported import ExportTable, SCHEMA_MAP
from carelink_log.dates import format_date, day_of_week, is_weekend

app = typer.Typer(
    name="carelink-cli",
    help="CareLink Log CLI - Parse CareLink exports and inspect glucose trends",
    add_completion=False,
)
console = Console()


@app.callback()
def configure(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
) -> None:
    """Configure logging for all commands."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=console, show_path=False)],
        )


def _ingest(input_file: Path) -> IngestResult:
    """Ingest a file, turning expected failures into a red message and exit code 1."""
    if not input_file.exists():
        console.print(f"[red]Error: File not found: {input_file}[/red]")
        raise typer.Exit(1)

    try:
        with console.status(f"[bold green]Parsing {input_file.name}..."):
            return CarelinkParser.parse_file(input_file)
    except MalformedDataError as e:
        console.print(f"[red]✗ Parse error: {e}[/red]")
        raise typer.Exit(1)


# ===== Parsing Commands =====

@app.command()
def parse(
    input_file: Path = typer.Argument(..., help="CareLink CSV export to parse"),
    output_file: Optional[Path] = typer.Option(None, "--output", "-o", help="Output CSV file (log entries)"),
    raw_output: Optional[Path] = typer.Option(None, "--raw-output", help="Output CSV file (raw records)"),
    show_stats: bool = typer.Option(True, "--stats/--no-stats", help="Show statistics"),
    show_preview: bool = typer.Option(False, "--preview", "-p", help="Show entry preview"),
) -> None:
    """Parse a CareLink export into log entries."""
    entries, records = _ingest(input_file)
    console.print(f"\n[green]✓[/green] Parsed {len(records):,} records into {len(entries):,} log entries")

    entries_df = CarelinkParser.entries_to_frame(entries)

    if show_stats:
        _print_entry_stats(entries_df, records)

    if show_preview:
        console.print("\n[bold]Entry Preview:[/bold]")
        console.print(entries_df.head(10))

    if output_file:
        CarelinkParser.to_csv_file(entries_df, output_file)
        console.print(f"\n[green]✓[/green] Saved entries to: {output_file}")

    if raw_output:
        CarelinkParser.to_csv_file(CarelinkParser.records_to_frame(records), raw_output)
        console.print(f"[green]✓[/green] Saved raw records to: {raw_output}")


@app.command()
def days(
    input_file: Path = typer.Argument(..., help="CareLink CSV export"),
) -> None:
    """Show a per-day summary of sensor glucose, boluses and meter readings."""
    entries, _ = _ingest(input_file)
    entries_df = CarelinkParser.entries_to_frame(entries).filter(pl.col("timestamp").is_not_null())

    if entries_df.height == 0:
        console.print("[yellow]No log entries with a valid timestamp[/yellow]")
        return

    summary = _summarize_days(entries_df)

    table = Table(title=f"Days in {input_file.name}")
    table.add_column("Date", style="cyan")
    table.add_column("Day")
    for name in ("Sensor", "Mean SG", "Min", "Max", "Boluses", "Insulin (U)", "Carbs (g)", "Meter BG"):
        table.add_column(name, justify="right")

    for row in summary.iter_rows(named=True):
        day = day_of_week(row["date"])
        table.add_row(
            row["date"],
            f"[red]{day}[/red]" if is_weekend(row["date"]) else day,
            f"{row['sensor_count']:,}",
            _format_number(row["sensor_mean"]),
            _format_number(row["sensor_min"]),
            _format_number(row["sensor_max"]),
            f"{row['bolus_count']:,}",
            _format_number(row["insulin_total"], 2),
            _format_number(row["carbs_total"]),
            f"{row['measured_count']:,}",
        )

    console.print(table)


@app.command()
def averages(
    input_file: Path = typer.Argument(..., help="CareLink CSV export"),
    window_hours: float = typer.Option(DEFAULT_WINDOW_HOURS, "--window-hours", "-w", help="Averaging window in hours"),
    date: Optional[str] = typer.Option(None, "--date", "-d", help="Only show this date (YYYY-MM-DD)"),
    output_file: Optional[Path] = typer.Option(None, "--output", "-o", help="Output CSV file"),
) -> None:
    """Compute the moving average of sensor glucose on a 15-minute grid."""
    try:
        processor = TrendProcessor(window_hours=window_hours)
    except ValueError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(1)

    entries, _ = _ingest(input_file)

    with console.status("[bold green]Computing moving averages..."):
        moving_averages = processor.compute_moving_averages(entries)

    if not moving_averages:
        console.print("[yellow]No sensor glucose readings found[/yellow]")
        return

    if date is not None:
        if date not in moving_averages:
            console.print(f"[red]✗ No moving-average points for {date}[/red]")
            raise typer.Exit(1)
        moving_averages = {date: moving_averages[date]}

    points = sum(len(day_points) for day_points in moving_averages.values())
    console.print(
        f"\n[green]✓[/green] {points:,} points over {len(moving_averages)} date(s), "
        f"{window_hours:g}h window"
    )

    unit = SCHEMA_MAP[ExportTable.AVERAGES].get_units()["value"]
    for date_key, day_points in moving_averages.items():
        table = Table(title=f"{date_key} ({day_of_week(date_key)})", show_header=True)
        table.add_column("Time", style="cyan")
        table.add_column(f"Average ({unit})", justify="right")
        for point in day_points:
            table.add_row(format_date(point.timestamp, "time"), _format_number(point.value))
        console.print(table)

    if output_file:
        CarelinkParser.to_csv_file(TrendProcessor.averages_to_frame(moving_averages), output_file)
        console.print(f"\n[green]✓[/green] Saved to: {output_file}")


@app.command()
def raw(
    input_file: Path = typer.Argument(..., help="CareLink CSV export"),
    date: Optional[str] = typer.Option(None, "--date", "-d", help="Date as written in the export (default: newest)"),
) -> None:
    """Show every raw record of one day with its non-empty columns."""
    _, records = _ingest(input_file)

    record_dates = CarelinkParser.record_dates(records)
    if not record_dates:
        console.print("[yellow]No data records found[/yellow]")
        return

    selected = date if date is not None else record_dates[0]
    if selected not in record_dates:
        console.print(f"[red]✗ Date not found: {selected}[/red]")
        console.print(f"Available: {', '.join(record_dates)}")
        raise typer.Exit(1)

    day_records = [record for record in records if record.get(CarelinkColumn.DATE.value) == selected]
    console.print(f"\n[bold]{selected}[/bold]: {len(day_records):,} records")
    for record in day_records:
        _print_raw_record(record)


@app.command()
def entries(
    input_file: Path = typer.Argument(..., help="CareLink CSV export"),
    date: Optional[str] = typer.Option(None, "--date", "-d", help="Date as YYYY-MM-DD (default: newest)"),
) -> None:
    """List one day's sensor readings, boluses and meter readings in time order."""
    log_entries, _ = _ingest(input_file)
    by_date = TrendProcessor().group_entries_by_date(log_entries)

    if not by_date:
        console.print("[yellow]No log entries with a valid timestamp[/yellow]")
        return

    # Ingested entries are newest-first, so the first key is the newest date
    selected = date if date is not None else next(iter(by_date))
    if selected not in by_date:
        console.print(f"[red]✗ No log entries for {selected}[/red]")
        console.print(f"Available: {', '.join(sorted(by_date, reverse=True))}")
        raise typer.Exit(1)

    day_entries = by_date[selected]
    table = Table(title=f"{selected} ({day_of_week(selected)}): {len(day_entries):,} entries")
    table.add_column("Time", style="cyan")
    table.add_column("Type")
    table.add_column("BG (mg/dL)", justify="right")
    table.add_column("Insulin (U)", justify="right")
    table.add_column("Carbs (g)", justify="right")

    for entry in reversed(day_entries):
        table.add_row(format_date(entry.timestamp, "time"), entry.type.value, *_entry_values(entry))

    console.print(table)


# ===== Helper Functions =====

def _summarize_days(entries_df: pl.DataFrame) -> pl.DataFrame:
    """Aggregate an entries DataFrame per calendar date (finite values only)."""
    is_sensor = pl.col("type") == LogEntryType.SENSOR_BG.value
    is_bolus = pl.col("type") == LogEntryType.BOLUS.value
    is_measured = pl.col("type") == LogEntryType.MEASURED_BG.value
    sensor_bg = pl.col("bg_value").filter(is_sensor & pl.col("bg_value").is_finite())

    return (
        entries_df
        .with_columns(pl.col("timestamp").dt.strftime("%Y-%m-%d").alias("date"))
        .group_by("date")
        .agg([
            is_sensor.sum().alias("sensor_count"),
            sensor_bg.mean().alias("sensor_mean"),
            sensor_bg.min().alias("sensor_min"),
            sensor_bg.max().alias("sensor_max"),
            is_bolus.sum().alias("bolus_count"),
            pl.col("amount_unit").filter(pl.col("amount_unit").is_finite()).sum().alias("insulin_total"),
            pl.col("carb_grams").filter(pl.col("carb_grams").is_finite()).sum().alias("carbs_total"),
            is_measured.sum().alias("measured_count"),
        ])
        .sort("date")
    )


def _print_entry_stats(entries_df: pl.DataFrame, records: List[RawRecord]) -> None:
    """Print statistics about ingested entries."""
    console.print("\n[bold]Log Entry Statistics:[/bold]")

    table = Table(show_header=False, box=None)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white")

    table.add_row("Raw Records", f"{len(records):,}")
    table.add_row("Log Entries", f"{entries_df.height:,}")

    timestamps = entries_df["timestamp"].drop_nulls()
    if len(timestamps) > 0:
        min_time = timestamps.min()
        max_time = timestamps.max()
        duration_days = (max_time - min_time).total_seconds() / 86400
        table.add_row("Time Range", f"{format_date(min_time, 'datetime')} to {format_date(max_time, 'datetime')}")
        table.add_row("Duration", f"{duration_days:.1f} days")

    invalid_timestamps = sum(1 for record in records if record.timestamp is None)
    if invalid_timestamps > 0:
        table.add_row("Unparseable Timestamps", f"{invalid_timestamps:,}")

    counts = entries_df.group_by("type").agg(pl.len().alias("count")).sort("type")
    for entry_type, count in counts.iter_rows():
        table.add_row(f"  {entry_type}", f"{count:,}")

    sensor_bg = entries_df.filter(pl.col("type") == LogEntryType.SENSOR_BG.value)["bg_value"]
    finite_bg = sensor_bg.filter(sensor_bg.is_finite())
    if len(finite_bg) > 0:
        table.add_row("Sensor Mean ± SD", f"{finite_bg.mean():.1f} ± {finite_bg.std() or 0.0:.1f} mg/dL")
        table.add_row("Sensor Range", f"{finite_bg.min():.1f} - {finite_bg.max():.1f} mg/dL")

    numeric_columns = [
        name for name, dtype in SCHEMA_MAP[ExportTable.ENTRIES].get_polars_schema().items()
        if dtype == pl.Float64
    ]
    non_finite = entries_df.select([
        pl.col(name).is_nan().sum() for name in numeric_columns
    ]).sum_horizontal().item()
    if non_finite > 0:
        table.add_row("Non-numeric Values", f"{non_finite:,}")

    console.print(table)


def _print_raw_record(record: RawRecord) -> None:
    """Print one raw record: its time, then each present column."""
    date_value = record.get(CarelinkColumn.DATE.value, "")
    time_value = record.get(CarelinkColumn.TIME.value, "")
    console.print(f"\n[bold]{date_value} {time_value}[/bold]")
    for column, value in record.items():
        if column in (CarelinkColumn.DATE.value, CarelinkColumn.TIME.value):
            continue
        console.print(f"  [dim bold]{column}[/dim bold]: {value}", highlight=False)


def _entry_values(entry: LogEntry) -> Tuple[str, str, str]:
    """Table cells (BG, insulin, carbs) for one log entry."""
    if isinstance(entry, BolusEntry):
        return "", _format_number(entry.amount_unit, 2), _format_number(entry.carb_grams)
    return _format_number(entry.bg_value), "", ""


def _format_number(value: Optional[float], digits: int = 1) -> str:
    """Format a possibly missing or non-finite number for a table cell."""
    if value is None or value != value:
        return "-"
    return f"{value:.{digits}f}"


# ===== Main Entry Point =====

def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
