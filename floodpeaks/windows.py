"""
Run modes and the time window each mode processes.

- incremental: from lastProcessedTime (minus a buffer) to now
- backfill year: exactly one calendar year (UTC)
- backfill range: an inclusive range of calendar years (UTC)
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from .models import ConfigurationError

MIN_YEAR = 1900
MAX_YEAR = 3000

# Used when a cache has never been processed
DEFAULT_START = datetime(2000, 1, 1, tzinfo=timezone.utc)


class RunMode(str, Enum):
    INCREMENTAL = "incremental"
    BACKFILL_YEAR = "backfill_year"
    BACKFILL_RANGE = "backfill_range"

    @property
    def is_backfill(self) -> bool:
        return self is not RunMode.INCREMENTAL


@dataclass(frozen=True)
class RunRequest:
    """What the invocation asked for. Years are only used by the backfill modes."""
    mode: RunMode = RunMode.INCREMENTAL
    year_from: Optional[int] = None
    year_to: Optional[int] = None

    @classmethod
    def incremental(cls) -> 'RunRequest':
        return cls(RunMode.INCREMENTAL)

    @classmethod
    def backfill_year(cls, year: int) -> 'RunRequest':
        return cls(RunMode.BACKFILL_YEAR, year, year)

    @classmethod
    def backfill_range(cls, year_from: int, year_to: int) -> 'RunRequest':
        return cls(RunMode.BACKFILL_RANGE, year_from, year_to)


@dataclass(frozen=True)
class TimeWindow:
    start: datetime
    end: datetime
    mode: RunMode

    def contains(self, dt: datetime) -> bool:
        if self.mode.is_backfill:
            return self.start <= dt < self.end
        return self.start <= dt <= self.end


def start_of_year(year: int) -> datetime:
    return datetime(year, 1, 1, tzinfo=timezone.utc)


def _check_year(year, label: str) -> int:
    if isinstance(year, bool) or not isinstance(year, int):
        raise ConfigurationError(f"Invalid {label}: {year!r} (must be a year)")
    if year < MIN_YEAR or year > MAX_YEAR:
        raise ConfigurationError(f"{label} {year} out of bounds ({MIN_YEAR}-{MAX_YEAR})")
    return year


def compute_window(
    request: RunRequest,
    last_processed: Optional[datetime],
    now: Optional[datetime] = None,
    buffer: timedelta = timedelta(hours=12),
) -> TimeWindow:
    """
    Compute the processing window for a run.

    Backfill modes ignore `last_processed` entirely. The incremental mode
    re-examines `buffer` before the last processed time so crests near the
    previous run's boundary are not missed.

    Raises:
        ConfigurationError: invalid years, or an incremental window that ends
            before it starts
    """
    if request.mode is RunMode.BACKFILL_YEAR:
        year = _check_year(request.year_from, 'backfill year')
        return TimeWindow(start_of_year(year), start_of_year(year + 1), request.mode)

    if request.mode is RunMode.BACKFILL_RANGE:
        y1 = _check_year(request.year_from, 'backfill-from year')
        y2 = _check_year(request.year_to, 'backfill-to year')
        lo, hi = min(y1, y2), max(y1, y2)
        return TimeWindow(start_of_year(lo), start_of_year(hi + 1), request.mode)

    if now is None:
        now = datetime.now(timezone.utc)
    last = last_processed or DEFAULT_START
    start = last - buffer
    if start > now:
        raise ConfigurationError(
            f"lastProcessedTime {last.isoformat()} is in the future (now {now.isoformat()})"
        )
    return TimeWindow(start, now, RunMode.INCREMENTAL)
