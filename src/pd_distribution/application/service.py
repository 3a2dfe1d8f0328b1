"""DistributionRunService — the run orchestrator.

Scanning -> (Reconciling -> Executing -> Completing?)* -> Done

A scan failure is fatal (DistributionScanError, nothing mutated). Anything
raised while handling one position is logged, recorded in that position's
detail line and counted; the remaining positions are still processed. There
is no retry loop: the next run picks up whatever is still missing.

Positions run sequentially on the caller's session by default. With
``max_concurrency > 1`` each position gets its own session from
``session_factory`` and at most that many positions are in flight at once;
a single position's periods are always paid in order by one task.
"""

import asyncio
import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.settings import settings
from src.pd_common.cents import cents_to_display
from src.pd_common.database import async_session_factory, transaction
from src.pd_common.datetime_utils import ensure_utc, utc_now
from src.pd_common.enums import PositionOutcomeStatus, PositionStatus
from src.pd_common.errors import (
    DistributionScanError,
    PositionNotActiveError,
    PositionNotFoundError,
)
from src.pd_distribution.application.completion import CompletionHandler
from src.pd_distribution.application.executor import DistributionExecutor
from src.pd_distribution.application.schemas import ForceCompleteResponse, RunResponse
from src.pd_distribution.domain.models import PositionOutcome
from src.pd_distribution.domain.reconciler import missing_periods
from src.pd_distribution.domain.repository import DistributionRepositoryProtocol
from src.pd_distribution.infrastructure.persistence import DistributionRepository
from src.pd_ledger.domain.models import Position

logger = logging.getLogger(__name__)


def build_run_message(outcomes: list[PositionOutcome]) -> str:
    if not outcomes:
        return "No eligible positions found"
    processed = sum(1 for o in outcomes if o.status == PositionOutcomeStatus.CAUGHT_UP)
    errors = sum(1 for o in outcomes if o.status == PositionOutcomeStatus.ERROR)
    completed = sum(1 for o in outcomes if o.completed)
    paid = sum(o.execution.amount_paid for o in outcomes)
    return (
        f"Processed {processed} of {len(outcomes)} position(s): "
        f"{cents_to_display(paid)} distributed, {completed} completed, {errors} failed"
    )


class DistributionRunService:
    def __init__(
        self,
        repo: DistributionRepositoryProtocol | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        max_concurrency: int | None = None,
    ) -> None:
        self._repo: DistributionRepositoryProtocol = repo or DistributionRepository()
        self._executor = DistributionExecutor(self._repo)
        self._completion = CompletionHandler(self._repo)
        self._session_factory = session_factory or async_session_factory
        self._max_concurrency = max(
            max_concurrency if max_concurrency is not None
            else settings.DISTRIBUTION_MAX_CONCURRENCY,
            1,
        )

    async def run(
        self, db: AsyncSession, caller: str, now: datetime | None = None
    ) -> RunResponse:
        started_at = utc_now()
        now = ensure_utc(now) if now is not None else started_at
        logger.info("Distribution run started (caller=%s, now=%s)", caller, now.isoformat())

        try:
            async with transaction(db):
                positions = await self._repo.list_eligible_positions(db, now)
        except Exception as exc:
            logger.exception("Eligibility scan failed (caller=%s)", caller)
            raise DistributionScanError(str(exc) or type(exc).__name__) from exc

        if self._max_concurrency == 1:
            outcomes = [await self._process_position(db, p, now) for p in positions]
        else:
            outcomes = await self._process_concurrently(positions, now)

        response = RunResponse(
            scanned_count=len(positions),
            processed_count=sum(
                1 for o in outcomes if o.status == PositionOutcomeStatus.CAUGHT_UP
            ),
            error_count=sum(1 for o in outcomes if o.status == PositionOutcomeStatus.ERROR),
            inactive_count=sum(
                1 for o in outcomes if o.status == PositionOutcomeStatus.INACTIVE
            ),
            completed_count=sum(1 for o in outcomes if o.completed),
            periods_paid=sum(o.execution.periods_paid for o in outcomes),
            periods_skipped=sum(o.execution.periods_skipped for o in outcomes),
            message=build_run_message(outcomes),
            details=[o.detail_line() for o in outcomes],
            caller=caller,
            started_at=started_at.isoformat(),
            finished_at=utc_now().isoformat(),
        )
        logger.info(
            "Distribution run finished (caller=%s): scanned=%d processed=%d "
            "errors=%d inactive=%d completed=%d periods_paid=%d periods_skipped=%d",
            caller,
            response.scanned_count,
            response.processed_count,
            response.error_count,
            response.inactive_count,
            response.completed_count,
            response.periods_paid,
            response.periods_skipped,
        )
        return response

    async def _process_concurrently(
        self, positions: list[Position], now: datetime
    ) -> list[PositionOutcome]:
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _one(position: Position) -> PositionOutcome:
            async with semaphore:
                async with self._session_factory() as session:
                    return await self._process_position(session, position, now)

        # gather keeps results in scan order
        return list(await asyncio.gather(*(_one(p) for p in positions)))

    async def _process_position(
        self, db: AsyncSession, position: Position, now: datetime
    ) -> PositionOutcome:
        outcome = PositionOutcome(
            position_id=position.id, user_id=position.user_id, kind=position.kind
        )
        try:
            async with transaction(db):
                paid_keys = await self._repo.list_paid_period_keys(db, position.id)
            plan = missing_periods(position, paid_keys, now)
            if not plan.is_caught_up:
                await self._executor.execute(db, position, plan.missing, outcome.execution)
            if outcome.execution.halted_inactive:
                outcome.status = PositionOutcomeStatus.INACTIVE
            elif plan.progress.duration_reached:
                returned = await self._completion.complete_if_due(db, position, now)
                if returned is not None:
                    outcome.completed = True
                    outcome.capital_returned = returned
        except Exception as exc:
            logger.exception("Distribution failed for position %s", position.id)
            outcome.status = PositionOutcomeStatus.ERROR
            outcome.error = str(exc) or type(exc).__name__
        return outcome

    async def force_complete(
        self, db: AsyncSession, position_id: str, caller: str
    ) -> ForceCompleteResponse:
        position = await self._repo.get_position(db, position_id)
        if position is None:
            raise PositionNotFoundError(position_id)
        if position.status != PositionStatus.ACTIVE:
            raise PositionNotActiveError(position_id, position.status)

        end_time = utc_now()
        if not await self._completion.force_complete(db, position, end_time, caller):
            # a run completed it between the read and the status update
            raise PositionNotActiveError(position_id, PositionStatus.COMPLETED.value)

        return ForceCompleteResponse(
            position_id=position.id,
            status=PositionStatus.COMPLETED.value,
            principal_returned_cents=position.principal,
            principal_returned_display=cents_to_display(position.principal),
            unpaid_periods=max(position.period_count - position.paid_periods, 0),
            caller=caller,
            end_time=end_time.isoformat(),
        )
