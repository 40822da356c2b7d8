#!/usr/bin/env python3
"""Example CLI Usage Script - Demonstrates all carelink-cli commands.

This script shows how to use the carelink-cli tool from Python by calling it as a subprocess.
It's a practical demonstration of the CLI tool's capabilities.

Usage:
    uv run python examples/example_cli_usage.py path/to/carelink_export.csv

    # Or with a different moving-average window
    uv run python examples/example_cli_usage.py path/to/carelink_export.csv --window-hours 6
"""

import subprocess
import sys
from pathlib import Path
from typing import List
import typer
from rich.console import Console
from rich.panel import Panel

app = typer.Typer()
console = Console()


def run_cli_command(args: List[str], description: str = "") -> subprocess.CompletedProcess:
    """Run a carelink-cli command and display results.

    Args:
        args: Command arguments for carelink-cli
        description: Human-readable description of what this command does

    Returns:
        CompletedProcess with stdout/stderr
    """
    if description:
        console.print(f"\n[bold cyan]Example: {description}[/bold cyan]")

    # Run as module
    cmd = [sys.executable, "-m", "carelink_log.log_cli"] + args
    cmd_str = " ".join(args)
    console.print(f"[dim]$ carelink-cli {cmd_str}[/dim]\n")

    result = subprocess.run(cmd, capture_output=True, text=True)

    # Display output
    if result.stdout:
        console.print(result.stdout)

    if result.returncode != 0 and result.stderr:
        console.print(f"[red]{result.stderr}[/red]")

    return result


@app.command()
def main(
    export_file: Path = typer.Argument(..., help="CareLink CSV export to run the examples on"),
    window_hours: float = typer.Option(24, "--window-hours", "-w", help="Moving-average window in hours"),
) -> None:
    """Run through all carelink-cli command examples."""

    console.print(Panel.fit(
        "[bold]CareLink CLI Tool - Usage Examples[/bold]\n\n"
        "This script demonstrates all carelink-cli commands on one export.\n"
        "Commands are executed via subprocess to show real-world usage.",
        border_style="cyan"
    ))

    if not export_file.exists():
        console.print(f"\n[red]Error: Export file not found: {export_file}[/red]")
        raise typer.Exit(1)

    output_dir = export_file.parent / "cli_examples_output"
    output_dir.mkdir(exist_ok=True)
    console.print(f"\n[bold]Using export:[/bold] {export_file.name}")
    console.print(f"[bold]Output directory:[/bold] {output_dir}\n")

    # ===== 1. Parsing =====
    console.print("\n" + "=" * 70)
    console.print("[bold green]1. PARSING COMMANDS[/bold green]")
    console.print("=" * 70)

    entries_file = output_dir / f"entries_{export_file.name}"
    raw_file = output_dir / f"raw_{export_file.name}"
    run_cli_command(
        ["parse", str(export_file), "--output", str(entries_file), "--raw-output", str(raw_file)],
        "Parse export to log entries and raw records with statistics"
    )

    run_cli_command(
        ["parse", str(export_file), "--preview", "--no-stats"],
        "Parse with entry preview (no stats)"
    )

    # ===== 2. Day Summary =====
    console.print("\n" + "=" * 70)
    console.print("[bold green]2. DAY SUMMARY COMMAND[/bold green]")
    console.print("=" * 70)

    run_cli_command(["days", str(export_file)], "Summarize every day in the export")

    # ===== 3. Moving Averages =====
    console.print("\n" + "=" * 70)
    console.print("[bold green]3. MOVING AVERAGE COMMAND[/bold green]")
    console.print("=" * 70)

    averages_file = output_dir / f"averages_{export_file.name}"
    run_cli_command(
        ["averages", str(export_file), "--window-hours", f"{window_hours:g}", "--output", str(averages_file)],
        f"Moving average of sensor glucose with a {window_hours:g}h window"
    )

    # ===== 4. Raw Records =====
    console.print("\n" + "=" * 70)
    console.print("[bold green]4. RAW RECORD COMMAND[/bold green]")
    console.print("=" * 70)

    run_cli_command(["raw", str(export_file)], "Show raw records of the newest day")

    # ===== 5. Entries of One Day =====
    console.print("\n" + "=" * 70)
    console.print("[bold green]5. DAY ENTRIES COMMAND[/bold green]")
    console.print("=" * 70)

    run_cli_command(["entries", str(export_file)], "List the newest day's entries in time order")

    # ===== Summary =====
    console.print("\n" + "=" * 70)
    console.print("[bold green]SUMMARY[/bold green]")
    console.print("=" * 70)

    console.print(f"\nGenerated files:")
    for output_file in sorted(output_dir.glob("*")):
        if output_file.is_file():
            size = output_file.stat().st_size
            console.print(f"  • {output_file.name} ({size:,} bytes)")

    console.print("\n[bold cyan]Command Categories:[/bold cyan]")
    console.print("  1. [bold]parse[/bold] - Log entries and raw records")
    console.print("  2. [bold]days[/bold] - Per-day summary")
    console.print("  3. [bold]averages[/bold] - Moving-average trend")
    console.print("  4. [bold]raw[/bold] - Raw records of one day")
    console.print("  5. [bold]entries[/bold] - Classified entries of one day")

    console.print("\n[bold cyan]For help on any command:[/bold cyan]")
    console.print("  carelink-cli <command> --help")


if __name__ == "__main__":
    app()
