"""DistributionQueryService — read-only views over positions and payouts.

Nothing here mutates the ledger; queries run without an explicit transaction.
"""

from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from src.pd_common.datetime_utils import ensure_utc, start_of_utc_day, utc_now
from src.pd_common.errors import PositionNotFoundError
from src.pd_distribution.application.schemas import (
    PositionListResponse,
    PositionStatusItem,
    RecordItem,
    RecordsResponse,
    SummaryResponse,
    cursor_decode,
    cursor_encode,
)
from src.pd_distribution.domain.repository import DistributionRepositoryProtocol
from src.pd_distribution.infrastructure.persistence import DistributionRepository


class DistributionQueryService:
    def __init__(self, repo: DistributionRepositoryProtocol | None = None) -> None:
        self._repo: DistributionRepositoryProtocol = repo or DistributionRepository()

    async def list_position_statuses(
        self,
        db: AsyncSession,
        kind: str | None = None,
        status: str | None = None,
        now: datetime | None = None,
    ) -> PositionListResponse:
        now = ensure_utc(now) if now is not None else utc_now()
        positions = await self._repo.list_positions(db, kind, status)
        return PositionListResponse(
            items=[PositionStatusItem.from_domain(p, now) for p in positions],
            as_of=now.isoformat(),
        )

    async def list_records(
        self,
        db: AsyncSession,
        position_id: str,
        cursor: str | None,
        limit: int,
    ) -> RecordsResponse:
        if await self._repo.get_position(db, position_id) is None:
            raise PositionNotFoundError(position_id)
        cursor_id = cursor_decode(cursor)
        # Fetch limit+1 to detect has_more without a COUNT(*) query
        records = await self._repo.list_distribution_records(
            db, position_id, cursor_id, limit + 1
        )
        has_more = len(records) > limit
        page = records[:limit]
        next_cursor = cursor_encode(page[-1].id) if has_more and page else None
        return RecordsResponse(
            items=[RecordItem.from_domain(r) for r in page],
            next_cursor=next_cursor,
            has_more=has_more,
        )

    async def get_summary(
        self, db: AsyncSession, kind: str | None = None, now: datetime | None = None
    ) -> SummaryResponse:
        since = start_of_utc_day(now if now is not None else utc_now())
        summary = await self._repo.get_summary(db, since, kind)
        return SummaryResponse.from_domain(summary, kind)
