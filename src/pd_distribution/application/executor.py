"""Distribution executor — pays a position's missing periods, one transaction each.

Per period, inside one ``transaction(db)``:
  1. insert the distribution record (unique on position_id + period_key)
  2. credit the user's balance by principal * rate
  3. append a PROFIT transaction-log entry
  4. bump the position's accumulated profit

The record insert runs first so a concurrent duplicate is detected before any
balance row is touched. A duplicate rolls back only that period and the loop
moves on; periods committed earlier in the loop stay committed.

Step 4 only matches an ACTIVE row. A position completed or cancelled after
the scan rolls back the period in flight and ends the loop: its remaining
periods are forfeited.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from src.pd_common.database import transaction
from src.pd_common.enums import PositionKind, TransactionKind
from src.pd_common.cents import validate_principal, validate_rate_bps
from src.pd_common.errors import DuplicatePeriodError, PositionNotActiveError
from src.pd_distribution.domain.models import ExecutionResult
from src.pd_distribution.domain.reconciler import PeriodSlot
from src.pd_distribution.domain.repository import DistributionRepositoryProtocol
from src.pd_ledger.domain.models import Position

logger = logging.getLogger(__name__)


def profit_description(position: Position, slot: PeriodSlot) -> str:
    if position.kind == PositionKind.INVESTMENT:
        label = f"Daily profit from investment #{position.id}"
    else:
        label = f"Hourly profit from live trade #{position.id}"
    return f"{label} (period {slot.number}/{position.period_count})"


class DistributionExecutor:
    def __init__(self, repo: DistributionRepositoryProtocol) -> None:
        self._repo = repo

    async def execute(
        self,
        db: AsyncSession,
        position: Position,
        slots: list[PeriodSlot],
        result: ExecutionResult | None = None,
    ) -> ExecutionResult:
        """Pay *slots* in ascending order. *result* is updated as each period commits,
        so a caller still sees partial progress if a later period raises."""
        validate_principal(position.principal)
        validate_rate_bps(position.rate_bps)
        result = result if result is not None else ExecutionResult()
        # Snapshot once: a period's payout never depends on later edits to the row.
        profit = position.profit_per_period

        for slot in sorted(slots, key=lambda s: s.number):
            try:
                async with transaction(db):
                    await self._repo.insert_distribution_record(
                        db, position, slot.number, slot.key, profit
                    )
                    balance = await self._repo.credit_balance(db, position.user_id, profit)
                    await self._repo.insert_transaction(
                        db,
                        user_id=position.user_id,
                        kind=TransactionKind.PROFIT.value,
                        amount=profit,
                        balance_after=balance.total_balance,
                        description=profit_description(position, slot),
                        reference_id=position.id,
                    )
                    await self._repo.add_accumulated_profit(db, position.id, profit)
            except DuplicatePeriodError:
                logger.debug(
                    "Period %d of position %s already paid by a concurrent run",
                    slot.number,
                    position.id,
                )
                result.periods_skipped += 1
                continue
            except PositionNotActiveError:
                logger.info(
                    "Position %s left ACTIVE during the run; stopped before period %d",
                    position.id,
                    slot.number,
                )
                result.halted_inactive = True
                break

            result.periods_paid += 1
            result.amount_paid += profit

        return result
