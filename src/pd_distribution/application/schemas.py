"""Pydantic schemas and cursor utilities for the distribution API."""

import base64
import json
from datetime import datetime

from pydantic import BaseModel, Field

from src.pd_common.cents import bps_to_display, cents_to_display
from src.pd_common.enums import PositionStatus
from src.pd_distribution.domain.models import DistributionSummary
from src.pd_distribution.domain.periods import compute_progress, next_period_due
from src.pd_ledger.domain.models import DistributionRecord, Position

# ---------------------------------------------------------------------------
# Cursor-based pagination utilities
# ---------------------------------------------------------------------------


def cursor_encode(last_id: int) -> str:
    """Encode a BIGINT primary key into an opaque Base64 cursor string."""
    payload = json.dumps({"id": last_id})
    return base64.b64encode(payload.encode()).decode()


def cursor_decode(cursor: str | None) -> int | None:
    """Decode a cursor string back to the last seen id. Returns None on error."""
    if cursor is None:
        return None
    try:
        payload = json.loads(base64.b64decode(cursor.encode()).decode())
        return int(payload["id"])
    except Exception:
        return None


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class RunRequest(BaseModel):
    caller: str = Field("manual", min_length=1, max_length=64, description="Who triggered the run")


class ForceCompleteRequest(BaseModel):
    caller: str = Field(..., min_length=1, max_length=64)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class RunResponse(BaseModel):
    scanned_count: int
    processed_count: int         # positions fully caught up
    error_count: int
    inactive_count: int          # left ACTIVE after the scan, nothing more paid
    completed_count: int
    periods_paid: int
    periods_skipped: int
    message: str
    details: list[str]
    caller: str
    started_at: str  # ISO8601 string
    finished_at: str


class PositionStatusItem(BaseModel):
    id: str
    user_id: str
    kind: str
    status: str
    principal_cents: int
    principal_display: str
    rate_bps: int
    rate_display: str
    period_count: int
    elapsed_periods: int
    remaining_periods: int
    progress_pct: float
    paid_periods: int
    profit_per_period_cents: int
    accumulated_profit_cents: int
    accumulated_profit_display: str
    projected_total_profit_cents: int
    projected_total_profit_display: str
    start_time: str
    end_time: str | None
    next_profit_due: str | None

    @classmethod
    def from_domain(cls, position: Position, now: datetime) -> "PositionStatusItem":
        # A closed position's progress is frozen at its end time.
        reference = now
        if position.status != PositionStatus.ACTIVE and position.end_time is not None:
            reference = position.end_time
        progress = compute_progress(
            position.start_time, reference, position.period_unit, position.period_count
        )
        profit = position.profit_per_period
        projected = profit * position.period_count
        next_due = None
        if position.status == PositionStatus.ACTIVE:
            next_due = next_period_due(
                position.start_time, now, position.period_unit, position.period_count
            )
        return cls(
            id=position.id,
            user_id=position.user_id,
            kind=position.kind,
            status=position.status,
            principal_cents=position.principal,
            principal_display=cents_to_display(position.principal),
            rate_bps=position.rate_bps,
            rate_display=bps_to_display(position.rate_bps),
            period_count=position.period_count,
            elapsed_periods=progress.elapsed_periods,
            remaining_periods=progress.remaining_periods,
            progress_pct=round(progress.elapsed_periods * 100 / position.period_count, 1),
            paid_periods=position.paid_periods,
            profit_per_period_cents=profit,
            accumulated_profit_cents=position.accumulated_profit,
            accumulated_profit_display=cents_to_display(position.accumulated_profit),
            projected_total_profit_cents=projected,
            projected_total_profit_display=cents_to_display(projected),
            start_time=position.start_time.isoformat(),
            end_time=position.end_time.isoformat() if position.end_time else None,
            next_profit_due=next_due.isoformat() if next_due else None,
        )


class PositionListResponse(BaseModel):
    items: list[PositionStatusItem]
    as_of: str


class RecordItem(BaseModel):
    id: int
    position_id: str
    user_id: str
    period_number: int
    period_key: str
    principal_cents: int
    profit_cents: int
    profit_display: str
    created_at: str  # ISO8601 string

    @classmethod
    def from_domain(cls, record: DistributionRecord) -> "RecordItem":
        return cls(
            id=record.id,
            position_id=record.position_id,
            user_id=record.user_id,
            period_number=record.period_number,
            period_key=record.period_key.isoformat(),
            principal_cents=record.principal,
            profit_cents=record.profit_amount,
            profit_display=cents_to_display(record.profit_amount),
            created_at=record.created_at.isoformat() if record.created_at else "",
        )


class RecordsResponse(BaseModel):
    items: list[RecordItem]
    next_cursor: str | None
    has_more: bool


class SummaryResponse(BaseModel):
    kind: str | None
    active_positions: int
    active_principal_cents: int
    active_principal_display: str
    total_distributed_cents: int
    total_distributed_display: str
    distributed_today_cents: int
    distributed_today_display: str
    since: str

    @classmethod
    def from_domain(cls, summary: DistributionSummary, kind: str | None) -> "SummaryResponse":
        return cls(
            kind=kind,
            active_positions=summary.active_positions,
            active_principal_cents=summary.active_principal,
            active_principal_display=cents_to_display(summary.active_principal),
            total_distributed_cents=summary.total_distributed,
            total_distributed_display=cents_to_display(summary.total_distributed),
            distributed_today_cents=summary.distributed_since,
            distributed_today_display=cents_to_display(summary.distributed_since),
            since=summary.since.isoformat(),
        )


class ForceCompleteResponse(BaseModel):
    position_id: str
    status: str
    principal_returned_cents: int
    principal_returned_display: str
    unpaid_periods: int
    caller: str
    end_time: str
