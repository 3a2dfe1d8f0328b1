"""DistributionRepository — concrete implementation of DistributionRepositoryProtocol.

All balance/position mutations use atomic PostgreSQL UPDATE ... RETURNING.
A result of 0 rows means the target row is missing or, for completion, that
another run already moved the position out of ACTIVE.

Transaction ownership: The CALLER (executor / completion handler) is
responsible for committing via ``pd_common.database.transaction``.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.pd_common.datetime_utils import ensure_utc
from src.pd_common.enums import PositionStatus
from src.pd_common.errors import (
    BalanceNotFoundError,
    DuplicatePeriodError,
    InternalError,
    PositionNotActiveError,
)
from src.pd_distribution.domain.models import DistributionSummary
from src.pd_ledger.domain.models import (
    Balance,
    DistributionRecord,
    Position,
    TransactionLogEntry,
)
from src.pd_ledger.infrastructure.db_models import DistributionRecordORM, PositionORM

DUPLICATE_PERIOD_CONSTRAINT = "uq_distribution_records_position_period"

# ---------------------------------------------------------------------------
# SQL: scanning
# ---------------------------------------------------------------------------

# Paid periods are counted in one grouped pass, never per position.
# elapsed_periods mirrors domain.periods.compute_progress (capped at period_count).
_ELIGIBLE_POSITIONS_SQL = text("""
    WITH paid AS (
        SELECT position_id, COUNT(*) AS paid_periods
        FROM distribution_records
        WHERE position_id IN (SELECT id FROM positions WHERE status = 'ACTIVE')
        GROUP BY position_id
    ),
    progress AS (
        SELECT p.id, p.user_id, p.kind, p.principal, p.rate_bps, p.period_count,
               p.start_time, p.end_time, p.status, p.accumulated_profit, p.created_at,
               COALESCE(paid.paid_periods, 0) AS paid_periods,
               LEAST(
                   GREATEST(
                       FLOOR(
                           EXTRACT(EPOCH FROM (CAST(:now AS TIMESTAMPTZ) - p.start_time))
                           / CASE p.kind WHEN 'INVESTMENT' THEN 86400 ELSE 3600 END
                       ),
                       0
                   ),
                   p.period_count
               ) AS elapsed_periods
        FROM positions p
        LEFT JOIN paid ON paid.position_id = p.id
        WHERE p.status = 'ACTIVE'
    )
    SELECT id, user_id, kind, principal, rate_bps, period_count,
           start_time, end_time, status, accumulated_profit, created_at, paid_periods
    FROM progress
    WHERE elapsed_periods > paid_periods
       OR elapsed_periods >= period_count
    ORDER BY created_at ASC, id ASC
""")

_PAID_PERIOD_KEYS_SQL = text("""
    SELECT period_key
    FROM distribution_records
    WHERE position_id = :position_id
""")

_COUNT_PAID_PERIODS_SQL = text("""
    SELECT COUNT(*) AS paid_periods
    FROM distribution_records
    WHERE position_id = :position_id
""")

_GET_POSITION_SQL = text("""
    SELECT p.id, p.user_id, p.kind, p.principal, p.rate_bps, p.period_count,
           p.start_time, p.end_time, p.status, p.accumulated_profit, p.created_at,
           (SELECT COUNT(*) FROM distribution_records d WHERE d.position_id = p.id)
               AS paid_periods
    FROM positions p
    WHERE p.id = :position_id
""")

# ---------------------------------------------------------------------------
# SQL: per-period and completion mutations
# ---------------------------------------------------------------------------

_INSERT_DISTRIBUTION_SQL = text("""
    INSERT INTO distribution_records
        (position_id, user_id, principal, profit_amount, period_number, period_key)
    VALUES
        (:position_id, :user_id, :principal, :profit_amount, :period_number, :period_key)
    RETURNING id, position_id, user_id, principal, profit_amount,
              period_number, period_key, created_at
""")

_CREDIT_BALANCE_SQL = text("""
    UPDATE balances
    SET total_balance = total_balance + :amount,
        updated_at = NOW()
    WHERE user_id = :user_id
    RETURNING user_id, total_balance, updated_at
""")

_INSERT_TRANSACTION_SQL = text("""
    INSERT INTO transaction_log
        (user_id, kind, amount, balance_after, description, reference_id)
    VALUES
        (:user_id, :kind, :amount, :balance_after, :description, :reference_id)
    RETURNING id, user_id, kind, amount, balance_after, description,
              reference_id, created_at
""")

# Status predicate: a position completed or cancelled after the scan takes no more profit.
_ADD_ACCUMULATED_PROFIT_SQL = text("""
    UPDATE positions
    SET accumulated_profit = accumulated_profit + :amount,
        updated_at = NOW()
    WHERE id = :position_id AND status = 'ACTIVE'
    RETURNING accumulated_profit
""")

# The status predicate is the exactly-once gate for capital return.
_MARK_COMPLETED_SQL = text("""
    UPDATE positions
    SET status = 'COMPLETED',
        end_time = :end_time,
        updated_at = NOW()
    WHERE id = :position_id AND status = 'ACTIVE'
    RETURNING id
""")

# ---------------------------------------------------------------------------
# SQL: read models
# ---------------------------------------------------------------------------

_LIST_POSITIONS_SQL = text("""
    SELECT p.id, p.user_id, p.kind, p.principal, p.rate_bps, p.period_count,
           p.start_time, p.end_time, p.status, p.accumulated_profit, p.created_at,
           COALESCE(paid.paid_periods, 0) AS paid_periods
    FROM positions p
    LEFT JOIN (
        SELECT position_id, COUNT(*) AS paid_periods
        FROM distribution_records
        GROUP BY position_id
    ) paid ON paid.position_id = p.id
    WHERE (CAST(:kind AS VARCHAR) IS NULL OR p.kind = :kind)
      AND (CAST(:status AS VARCHAR) IS NULL OR p.status = :status)
    ORDER BY p.created_at DESC, p.id DESC
""")

_DISTRIBUTED_TOTALS_SQL = text("""
    SELECT
        COALESCE(SUM(d.profit_amount), 0) AS total_distributed,
        COALESCE(SUM(d.profit_amount) FILTER (WHERE d.created_at >= :since), 0)
            AS distributed_since
    FROM distribution_records d
    JOIN positions p ON p.id = d.position_id
    WHERE (CAST(:kind AS VARCHAR) IS NULL OR p.kind = :kind)
""")


def _row_to_position(row: object) -> Position:
    return Position(
        id=str(row.id),  # type: ignore[attr-defined]
        user_id=row.user_id,  # type: ignore[attr-defined]
        kind=row.kind,  # type: ignore[attr-defined]
        principal=row.principal,  # type: ignore[attr-defined]
        rate_bps=row.rate_bps,  # type: ignore[attr-defined]
        period_count=row.period_count,  # type: ignore[attr-defined]
        start_time=ensure_utc(row.start_time),  # type: ignore[attr-defined]
        status=row.status,  # type: ignore[attr-defined]
        accumulated_profit=row.accumulated_profit,  # type: ignore[attr-defined]
        paid_periods=int(row.paid_periods),  # type: ignore[attr-defined]
        end_time=row.end_time,  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
    )


def _row_to_record(row: object) -> DistributionRecord:
    return DistributionRecord(
        id=row.id,  # type: ignore[attr-defined]
        position_id=str(row.position_id),  # type: ignore[attr-defined]
        user_id=row.user_id,  # type: ignore[attr-defined]
        principal=row.principal,  # type: ignore[attr-defined]
        profit_amount=row.profit_amount,  # type: ignore[attr-defined]
        period_number=row.period_number,  # type: ignore[attr-defined]
        period_key=ensure_utc(row.period_key),  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
    )


def _row_to_transaction(row: object) -> TransactionLogEntry:
    return TransactionLogEntry(
        id=row.id,  # type: ignore[attr-defined]
        user_id=row.user_id,  # type: ignore[attr-defined]
        kind=row.kind,  # type: ignore[attr-defined]
        amount=row.amount,  # type: ignore[attr-defined]
        balance_after=row.balance_after,  # type: ignore[attr-defined]
        description=row.description,  # type: ignore[attr-defined]
        reference_id=row.reference_id,  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
    )


def parse_position_id(position_id: str) -> UUID | None:
    """Position ids are UUIDs; anything else cannot exist, so callers report not-found."""
    try:
        return UUID(position_id)
    except (TypeError, ValueError):
        return None


def is_duplicate_period(exc: IntegrityError) -> bool:
    """True when the violated constraint is the (position_id, period_key) unique index."""
    return DUPLICATE_PERIOD_CONSTRAINT in str(exc.orig)


class DistributionRepository:
    """Concrete repository — all operations atomic at the SQL level."""

    async def list_eligible_positions(
        self, db: AsyncSession, now: datetime
    ) -> list[Position]:
        result = await db.execute(_ELIGIBLE_POSITIONS_SQL, {"now": ensure_utc(now)})
        return [_row_to_position(row) for row in result.fetchall()]

    async def list_paid_period_keys(
        self, db: AsyncSession, position_id: str
    ) -> set[datetime]:
        result = await db.execute(_PAID_PERIOD_KEYS_SQL, {"position_id": position_id})
        return {ensure_utc(row.period_key) for row in result.fetchall()}

    async def count_paid_periods(self, db: AsyncSession, position_id: str) -> int:
        result = await db.execute(_COUNT_PAID_PERIODS_SQL, {"position_id": position_id})
        row = result.fetchone()
        return int(row.paid_periods) if row else 0

    async def get_position(self, db: AsyncSession, position_id: str) -> Position | None:
        if parse_position_id(position_id) is None:
            return None
        result = await db.execute(_GET_POSITION_SQL, {"position_id": position_id})
        row = result.fetchone()
        return _row_to_position(row) if row else None

    async def insert_distribution_record(
        self,
        db: AsyncSession,
        position: Position,
        period_number: int,
        period_key: datetime,
        profit_amount: int,
    ) -> DistributionRecord:
        try:
            result = await db.execute(
                _INSERT_DISTRIBUTION_SQL,
                {
                    "position_id": position.id,
                    "user_id": position.user_id,
                    "principal": position.principal,
                    "profit_amount": profit_amount,
                    "period_number": period_number,
                    "period_key": period_key,
                },
            )
        except IntegrityError as exc:
            if is_duplicate_period(exc):
                raise DuplicatePeriodError(position.id, period_key.isoformat()) from exc
            raise
        row = result.fetchone()
        if row is None:
            raise InternalError("Distribution insert returned no rows")
        return _row_to_record(row)

    async def credit_balance(
        self, db: AsyncSession, user_id: str, amount: int
    ) -> Balance:
        result = await db.execute(_CREDIT_BALANCE_SQL, {"user_id": user_id, "amount": amount})
        row = result.fetchone()
        if row is None:
            raise BalanceNotFoundError(user_id)
        return Balance(
            user_id=row.user_id,
            total_balance=row.total_balance,
            updated_at=row.updated_at,
        )

    async def insert_transaction(
        self,
        db: AsyncSession,
        user_id: str,
        kind: str,
        amount: int,
        balance_after: int,
        description: str,
        reference_id: str | None,
    ) -> TransactionLogEntry:
        result = await db.execute(
            _INSERT_TRANSACTION_SQL,
            {
                "user_id": user_id,
                "kind": kind,
                "amount": amount,
                "balance_after": balance_after,
                "description": description,
                "reference_id": reference_id,
            },
        )
        row = result.fetchone()
        if row is None:
            raise InternalError("Transaction log insert returned no rows")
        return _row_to_transaction(row)

    async def add_accumulated_profit(
        self, db: AsyncSession, position_id: str, amount: int
    ) -> int:
        result = await db.execute(
            _ADD_ACCUMULATED_PROFIT_SQL, {"position_id": position_id, "amount": amount}
        )
        row = result.fetchone()
        if row is None:
            raise PositionNotActiveError(position_id)
        return int(row.accumulated_profit)

    async def mark_completed(
        self, db: AsyncSession, position_id: str, end_time: datetime
    ) -> bool:
        result = await db.execute(
            _MARK_COMPLETED_SQL, {"position_id": position_id, "end_time": end_time}
        )
        return result.fetchone() is not None

    async def list_positions(
        self, db: AsyncSession, kind: str | None, status: str | None
    ) -> list[Position]:
        result = await db.execute(_LIST_POSITIONS_SQL, {"kind": kind, "status": status})
        return [_row_to_position(row) for row in result.fetchall()]

    async def list_distribution_records(
        self,
        db: AsyncSession,
        position_id: str,
        cursor_id: int | None,
        limit: int,
    ) -> list[DistributionRecord]:
        pid = parse_position_id(position_id)
        if pid is None:
            return []
        stmt = select(DistributionRecordORM).where(DistributionRecordORM.position_id == pid)
        if cursor_id is not None:
            stmt = stmt.where(DistributionRecordORM.id < cursor_id)
        stmt = stmt.order_by(DistributionRecordORM.id.desc()).limit(limit)
        result = await db.execute(stmt)
        return [_row_to_record(r) for r in result.scalars().all()]

    async def get_summary(
        self, db: AsyncSession, since: datetime, kind: str | None
    ) -> DistributionSummary:
        is_active = PositionORM.status == PositionStatus.ACTIVE.value
        totals_stmt = select(
            func.count().filter(is_active).label("active_positions"),
            func.coalesce(func.sum(PositionORM.principal).filter(is_active), 0).label(
                "active_principal"
            ),
        )
        if kind is not None:
            totals_stmt = totals_stmt.where(PositionORM.kind == kind)
        totals = (await db.execute(totals_stmt)).fetchone()
        distributed = (
            await db.execute(_DISTRIBUTED_TOTALS_SQL, {"kind": kind, "since": since})
        ).fetchone()
        return DistributionSummary(
            active_positions=int(totals.active_positions) if totals else 0,
            active_principal=int(totals.active_principal) if totals else 0,
            total_distributed=int(distributed.total_distributed) if distributed else 0,
            distributed_since=int(distributed.distributed_since) if distributed else 0,
            since=since,
        )

