"""Period calculator — pure functions of (start_time, unit, total, now).

Periods are anchored to the position's start time, not to wall-clock
midnight/hour boundaries: period N ends at ``start + N * unit`` and that
timestamp is the period's key. Period 1 is the first payable period.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

from src.pd_common.datetime_utils import ensure_utc
from src.pd_common.enums import PeriodUnit

_UNIT_DURATIONS: dict[PeriodUnit, timedelta] = {
    PeriodUnit.DAY: timedelta(days=1),
    PeriodUnit.HOUR: timedelta(hours=1),
}


@dataclass(frozen=True)
class PeriodProgress:
    elapsed_periods: int     # capped at the configured total
    total_periods: int
    duration_reached: bool

    @property
    def remaining_periods(self) -> int:
        return self.total_periods - self.elapsed_periods


def unit_duration(unit: PeriodUnit | str) -> timedelta:
    return _UNIT_DURATIONS[PeriodUnit(unit)]


def compute_progress(
    start_time: datetime,
    now: datetime,
    unit: PeriodUnit | str,
    total_periods: int,
) -> PeriodProgress:
    """Whole periods elapsed since *start_time*, capped at *total_periods*.

    Examples (unit=HOUR, total=24):
        now = start + 59m         -> elapsed 0
        now = start + 5h          -> elapsed 5
        now = start + 30h         -> elapsed 24, duration_reached
        now < start               -> elapsed 0
    """
    if total_periods < 1:
        raise ValueError(f"total_periods must be >= 1, got {total_periods}")
    delta = ensure_utc(now) - ensure_utc(start_time)
    raw = max(delta // unit_duration(unit), 0)
    return PeriodProgress(
        elapsed_periods=min(raw, total_periods),
        total_periods=total_periods,
        duration_reached=raw >= total_periods,
    )


def period_key(start_time: datetime, number: int, unit: PeriodUnit | str) -> datetime:
    """Key of period *number* (1-based): ``start_time + number * unit`` in UTC."""
    if number < 1:
        raise ValueError(f"Period numbers start at 1, got {number}")
    return ensure_utc(start_time) + number * unit_duration(unit)


def next_period_due(
    start_time: datetime,
    now: datetime,
    unit: PeriodUnit | str,
    total_periods: int,
) -> datetime | None:
    """When the next period becomes payable, or None once the duration is reached."""
    progress = compute_progress(start_time, now, unit, total_periods)
    if progress.duration_reached:
        return None
    return period_key(start_time, progress.elapsed_periods + 1, unit)
