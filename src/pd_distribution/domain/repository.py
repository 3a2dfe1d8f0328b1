"""Repository Protocol — dependency inversion for testability.

Unit tests inject an in-memory fake that conforms to this Protocol.
Infrastructure layer provides the real implementation.

Mutating methods never commit: the caller wraps them in
``pd_common.database.transaction`` so one accrual period (or one completion)
is exactly one atomic unit.
"""

from datetime import datetime
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.pd_distribution.domain.models import DistributionSummary
from src.pd_ledger.domain.models import (
    Balance,
    DistributionRecord,
    Position,
    TransactionLogEntry,
)


class DistributionRepositoryProtocol(Protocol):
    # --- scanning / reconciling (read) ---

    async def list_eligible_positions(
        self, db: AsyncSession, now: datetime
    ) -> list[Position]: ...

    async def list_paid_period_keys(
        self, db: AsyncSession, position_id: str
    ) -> set[datetime]: ...

    async def count_paid_periods(self, db: AsyncSession, position_id: str) -> int: ...

    async def get_position(self, db: AsyncSession, position_id: str) -> Position | None: ...

    # --- per-period / completion mutations ---

    async def insert_distribution_record(
        self,
        db: AsyncSession,
        position: Position,
        period_number: int,
        period_key: datetime,
        profit_amount: int,
    ) -> DistributionRecord: ...

    async def credit_balance(
        self, db: AsyncSession, user_id: str, amount: int
    ) -> Balance: ...

    async def insert_transaction(
        self,
        db: AsyncSession,
        user_id: str,
        kind: str,
        amount: int,
        balance_after: int,
        description: str,
        reference_id: str | None,
    ) -> TransactionLogEntry: ...

    async def add_accumulated_profit(
        self, db: AsyncSession, position_id: str, amount: int
    ) -> int:
        """Raises PositionNotActiveError when the position is no longer ACTIVE."""
        ...

    async def mark_completed(
        self, db: AsyncSession, position_id: str, end_time: datetime
    ) -> bool: ...

    # --- read models ---

    async def list_positions(
        self, db: AsyncSession, kind: str | None, status: str | None
    ) -> list[Position]: ...

    async def list_distribution_records(
        self,
        db: AsyncSession,
        position_id: str,
        cursor_id: int | None,
        limit: int,
    ) -> list[DistributionRecord]: ...

    async def get_summary(
        self, db: AsyncSession, since: datetime, kind: str | None
    ) -> DistributionSummary: ...
