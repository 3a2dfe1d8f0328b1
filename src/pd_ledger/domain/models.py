"""Domain models for pd_ledger — pure dataclasses, no SQLAlchemy dependency."""

from dataclasses import dataclass
from datetime import datetime

from src.pd_common.cents import period_profit
from src.pd_common.enums import PeriodUnit, PositionKind


@dataclass
class Position:
    id: str
    user_id: str
    kind: str                    # PositionKind value
    principal: int               # cents
    rate_bps: int                # per-period rate, basis points
    period_count: int            # total configured periods (days or hours)
    start_time: datetime
    status: str                  # PositionStatus value
    accumulated_profit: int = 0  # cents
    paid_periods: int = 0        # distribution records, filled in by scans
    end_time: datetime | None = None
    created_at: datetime | None = None

    @property
    def period_unit(self) -> PeriodUnit:
        return PeriodUnit.DAY if self.kind == PositionKind.INVESTMENT else PeriodUnit.HOUR

    @property
    def profit_per_period(self) -> int:
        return period_profit(self.principal, self.rate_bps)


@dataclass
class DistributionRecord:
    id: int                      # BIGSERIAL
    position_id: str
    user_id: str
    principal: int               # cents, snapshot at payout
    profit_amount: int           # cents
    period_number: int           # N, 1-based
    period_key: datetime         # start_time + N * unit
    created_at: datetime | None = None


@dataclass
class Balance:
    user_id: str
    total_balance: int           # cents
    updated_at: datetime | None = None


@dataclass
class TransactionLogEntry:
    id: int                      # BIGSERIAL
    user_id: str
    kind: str                    # TransactionKind value
    amount: int                  # cents, always positive (engine only credits)
    balance_after: int           # cents, total_balance snapshot after op
    description: str
    reference_id: str | None = None   # position id
    created_at: datetime | None = None
