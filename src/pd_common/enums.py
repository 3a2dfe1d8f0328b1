"""Global enums — must match DB CHECK constraints exactly."""

from enum import Enum


class PositionKind(str, Enum):
    INVESTMENT = "INVESTMENT"   # daily accrual
    LIVE_TRADE = "LIVE_TRADE"   # hourly accrual


class PositionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class PeriodUnit(str, Enum):
    DAY = "DAY"
    HOUR = "HOUR"


class TransactionKind(str, Enum):
    PROFIT = "PROFIT"
    CAPITAL_RETURN = "CAPITAL_RETURN"


class PositionOutcomeStatus(str, Enum):
    """How one position fared inside a distribution run."""
    CAUGHT_UP = "CAUGHT_UP"
    INACTIVE = "INACTIVE"       # left ACTIVE after the scan; remaining periods forfeited
    ERROR = "ERROR"
