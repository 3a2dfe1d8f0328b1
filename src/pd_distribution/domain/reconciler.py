"""Reconciler — diff "periods elapsed" against "periods already recorded".

A run never assumes one run == one period: after downtime, or on the first
run after a position opens, every elapsed-but-unrecorded period is returned
so the executor can backfill them in one pass.
"""

from dataclasses import dataclass, field
from datetime import datetime

from src.pd_common.datetime_utils import ensure_utc
from src.pd_distribution.domain.periods import PeriodProgress, compute_progress, period_key
from src.pd_ledger.domain.models import Position


@dataclass(frozen=True)
class PeriodSlot:
    number: int          # 1-based
    key: datetime        # start_time + number * unit


@dataclass(frozen=True)
class ReconciliationPlan:
    progress: PeriodProgress
    missing: list[PeriodSlot] = field(default_factory=list)

    @property
    def is_caught_up(self) -> bool:
        return not self.missing


def missing_periods(
    position: Position,
    paid_keys: set[datetime],
    now: datetime,
) -> ReconciliationPlan:
    """Ordered (ascending) periods in ``1..min(elapsed, total)`` with no record yet."""
    progress = compute_progress(
        position.start_time, now, position.period_unit, position.period_count
    )
    recorded = {ensure_utc(k) for k in paid_keys}
    slots: list[PeriodSlot] = []
    for n in range(1, progress.elapsed_periods + 1):
        key = period_key(position.start_time, n, position.period_unit)
        if key not in recorded:
            slots.append(PeriodSlot(number=n, key=key))
    return ReconciliationPlan(progress=progress, missing=slots)
