"""Trend Processor Implementation.

Implements the series derived from classified log entries (Stage 4): the
sliding-window moving average of sensor glucose and the per-date grouping
used by day-by-day views.
"""

import logging
import math
from collections import deque
from datetime import date, datetime, time, timedelta
from typing import Deque, Dict, List, Tuple
import polars as pl

from carelink_log.interface.log_interface import (
    LogProcessor,
    LogEntry,
    LogEntryType,
    SensorBGEntry,
    MovingAveragePoint,
    MovingAverages,
    DEFAULT_WINDOW_HOURS,
    GRID_INTERVAL_MINUTES,
)
from carelink_log.formats.entries import MOVING_AVERAGE_SCHEMA
from carelink_log.dates import date_key

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60


class TrendProcessor(LogProcessor):
    """Implementation of LogProcessor over CareLink log entries.

    The moving average is evaluated on a fixed grid (every
    ``grid_interval_minutes`` from midnight) for each date that has sensor
    readings. All grid points of all dates are swept once in ascending order
    while a FIFO window of readings is advanced with two cursors, so window
    maintenance is linear in grid points plus readings.
    """

    def __init__(
        self,
        window_hours: float = DEFAULT_WINDOW_HOURS,
        grid_interval_minutes: int = GRID_INTERVAL_MINUTES,
    ):
        """Initialize the processor.

        Args:
            window_hours: Length of the averaging window (default: 24 hours)
            grid_interval_minutes: Spacing of grid points; must divide a day evenly (default: 15)

        Raises:
            ValueError: If a parameter is out of range
        """
        if not (math.isfinite(window_hours) and window_hours > 0):
            raise ValueError(f"window_hours must be positive and finite, got {window_hours}")
        if grid_interval_minutes <= 0 or MINUTES_PER_DAY % grid_interval_minutes != 0:
            raise ValueError(
                f"grid_interval_minutes must evenly divide a day, got {grid_interval_minutes}"
            )
        try:
            window = timedelta(hours=window_hours)
        except OverflowError:
            raise ValueError(f"window_hours is too large, got {window_hours}") from None

        self.window_hours = window_hours
        self.grid_interval_minutes = grid_interval_minutes
        self.window = window
        self.slots_per_day = MINUTES_PER_DAY // grid_interval_minutes

    def _grid_for_dates(self, dates: List[date]) -> List[Tuple[datetime, str]]:
        """All grid points of the given dates, each tagged with its date key, ascending."""
        step = timedelta(minutes=self.grid_interval_minutes)
        grid: List[Tuple[datetime, str]] = []
        for day in dates:
            midnight = datetime.combine(day, time.min)
            key = date_key(day)
            for slot in range(self.slots_per_day):
                grid.append((midnight + slot * step, key))

        grid.sort(key=lambda point: point[0])
        return grid

    def _window_start(self, grid_time: datetime) -> datetime:
        if grid_time - datetime.min <= self.window:
            return datetime.min
        return grid_time - self.window

    def compute_moving_averages(self, entries: List[LogEntry]) -> MovingAverages:
        """Smooth sensor readings with a sliding time window.

        For each grid point ``t`` the window holds the readings with
        ``t - window <= timestamp <= t``. Grid points with an empty window
        produce no output. The mean is the in-order sum of the window values
        over their count, so a non-finite reading makes it NaN for as long as
        the reading stays in the window.

        Args:
            entries: Log entries in any order; non-sensor entries and entries
                without a timestamp are ignored

        Returns:
            Mapping from 'YYYY-MM-DD' to moving-average points in ascending time.
            Keys appear in ascending date order. Empty when there are no readings.
        """
        readings = sorted(
            (
                entry for entry in entries
                if entry.type == LogEntryType.SENSOR_BG and entry.timestamp is not None
            ),
            key=lambda entry: entry.timestamp,
        )
        if not readings:
            return {}

        dates = sorted({reading.timestamp.date() for reading in readings})
        grid = self._grid_for_dates(dates)

        averages: MovingAverages = {}
        window: Deque[SensorBGEntry] = deque()
        next_reading = 0

        for grid_time, key in grid:
            # Admit readings up to and including the grid point
            while next_reading < len(readings) and readings[next_reading].timestamp <= grid_time:
                window.append(readings[next_reading])
                next_reading += 1

            # Evict readings strictly older than the window start
            window_start = self._window_start(grid_time)
            while window and window[0].timestamp < window_start:
                window.popleft()

            if not window:
                continue

            value = sum(reading.bg_value for reading in window) / len(window)
            averages.setdefault(key, []).append(MovingAveragePoint(timestamp=grid_time, value=value))

        logger.debug(
            "Computed %d moving-average points over %d dates from %d readings (window %sh)",
            sum(len(points) for points in averages.values()),
            len(averages),
            len(readings),
            self.window_hours,
        )
        return averages

    def group_entries_by_date(self, entries: List[LogEntry]) -> Dict[str, List[LogEntry]]:
        """Bucket entries by local calendar date, keeping their order.

        Entries without a timestamp are left out.

        Args:
            entries: Log entries (typically newest-first, as ingested)

        Returns:
            Mapping from 'YYYY-MM-DD' to the entries of that date, keys in
            first-seen order
        """
        grouped: Dict[str, List[LogEntry]] = {}
        skipped = 0
        for entry in entries:
            if entry.timestamp is None:
                skipped += 1
                continue
            grouped.setdefault(date_key(entry.timestamp), []).append(entry)

        if skipped:
            logger.debug("Left out %d entries without a timestamp", skipped)
        return grouped

    @staticmethod
    def averages_to_frame(averages: MovingAverages) -> pl.DataFrame:
        """Flatten a moving-average mapping into a DataFrame (date, timestamp, value)."""
        rows = [
            (key, point.timestamp, point.value)
            for key, points in averages.items()
            for point in points
        ]
        return MOVING_AVERAGE_SCHEMA.build_frame(rows)
