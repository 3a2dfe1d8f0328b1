"""Run bookkeeping for the distribution engine — pure dataclasses."""

from dataclasses import dataclass, field
from datetime import datetime

from src.pd_common.cents import cents_to_display
from src.pd_common.enums import PositionKind, PositionOutcomeStatus


@dataclass
class ExecutionResult:
    periods_paid: int = 0
    periods_skipped: int = 0     # recorded by a concurrent run first
    amount_paid: int = 0         # cents
    halted_inactive: bool = False  # position left ACTIVE mid-run


@dataclass
class PositionOutcome:
    position_id: str
    user_id: str
    kind: str
    status: PositionOutcomeStatus = PositionOutcomeStatus.CAUGHT_UP
    execution: ExecutionResult = field(default_factory=ExecutionResult)
    completed: bool = False
    capital_returned: int = 0    # cents
    error: str | None = None

    @property
    def label(self) -> str:
        noun = "Investment" if self.kind == PositionKind.INVESTMENT else "Live trade"
        return f"{noun} {self.position_id} (user {self.user_id})"

    def detail_line(self) -> str:
        ex = self.execution
        parts: list[str] = []
        if ex.periods_paid:
            parts.append(
                f"paid {ex.periods_paid} period(s) totalling {cents_to_display(ex.amount_paid)}"
            )
        if ex.periods_skipped:
            parts.append(f"skipped {ex.periods_skipped} period(s) already paid concurrently")
        if self.completed:
            parts.append(f"completed, returned {cents_to_display(self.capital_returned)} capital")
        if self.status == PositionOutcomeStatus.INACTIVE:
            parts.append("stopped, no longer ACTIVE; remaining periods forfeited")
        if self.status == PositionOutcomeStatus.ERROR:
            parts.append(f"failed: {self.error}")
        if not parts:
            parts.append("already caught up")
        return f"{self.label}: " + "; ".join(parts)


@dataclass
class DistributionSummary:
    active_positions: int
    active_principal: int        # cents
    total_distributed: int       # cents, all time
    distributed_since: int       # cents, since the requested instant
    since: datetime
