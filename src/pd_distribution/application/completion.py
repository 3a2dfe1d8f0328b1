"""Completion handler — ACTIVE -> COMPLETED plus exactly one capital return.

The conditional status update (``WHERE status = 'ACTIVE'``) is the gate: when
two runs race to complete the same position, only the one whose UPDATE
returns a row credits the principal and writes the CAPITAL_RETURN entry.
"""

import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from src.pd_common.database import transaction
from src.pd_common.enums import PositionKind, PositionStatus, TransactionKind
from src.pd_distribution.domain.periods import compute_progress
from src.pd_distribution.domain.repository import DistributionRepositoryProtocol
from src.pd_ledger.domain.models import Position

logger = logging.getLogger(__name__)


def capital_return_description(position: Position, manual: bool = False) -> str:
    noun = "Investment" if position.kind == PositionKind.INVESTMENT else "Live trade"
    how = "manually completed" if manual else "completed"
    return f"{noun} #{position.id} {how} - principal returned"


class CompletionHandler:
    def __init__(self, repo: DistributionRepositoryProtocol) -> None:
        self._repo = repo

    async def complete_if_due(
        self, db: AsyncSession, position: Position, now: datetime
    ) -> int | None:
        """Complete *position* when its duration is reached and every period is paid.

        Returns the principal returned (cents), or None when nothing happened:
        duration not reached, a concurrent run still owns unpaid periods, or
        another run completed the position first.
        """
        if position.status != PositionStatus.ACTIVE:
            return None
        progress = compute_progress(
            position.start_time, now, position.period_unit, position.period_count
        )
        if not progress.duration_reached:
            return None

        async with transaction(db):
            paid = await self._repo.count_paid_periods(db, position.id)
            if paid < position.period_count:
                logger.info(
                    "Position %s reached its duration with %d/%d periods paid; "
                    "completion deferred to a later run",
                    position.id,
                    paid,
                    position.period_count,
                )
                return None
            returned = await self._return_capital(
                db, position, now, capital_return_description(position)
            )
        return position.principal if returned else None

    async def force_complete(
        self, db: AsyncSession, position: Position, now: datetime, caller: str
    ) -> bool:
        """Operator path: complete immediately, unpaid periods are forfeited."""
        async with transaction(db):
            returned = await self._return_capital(
                db, position, now, capital_return_description(position, manual=True)
            )
        if returned:
            logger.info(
                "Position %s force-completed by %s; %d cents principal returned",
                position.id,
                caller,
                position.principal,
            )
        return returned

    async def _return_capital(
        self, db: AsyncSession, position: Position, end_time: datetime, description: str
    ) -> bool:
        if not await self._repo.mark_completed(db, position.id, end_time):
            logger.debug("Position %s already left ACTIVE; no capital return", position.id)
            return False
        balance = await self._repo.credit_balance(db, position.user_id, position.principal)
        await self._repo.insert_transaction(
            db,
            user_id=position.user_id,
            kind=TransactionKind.CAPITAL_RETURN.value,
            amount=position.principal,
            balance_after=balance.total_balance,
            description=description,
            reference_id=position.id,
        )
        return True
