"""pd_distribution REST API — run trigger, manual completion and read models.

Mutating endpoints require the X-Trigger-Key header; reads are open to the
internal network the service is deployed on.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.pd_common.database import get_db_session
from src.pd_common.enums import PositionKind, PositionStatus
from src.pd_common.response import ApiResponse, success_response
from src.pd_distribution.application.read_service import DistributionQueryService
from src.pd_distribution.application.schemas import ForceCompleteRequest, RunRequest
from src.pd_distribution.application.service import DistributionRunService
from src.pd_gateway.auth.dependencies import require_trigger_key

router = APIRouter(prefix="/distribution", tags=["distribution"])

_service = DistributionRunService()
_query_service = DistributionQueryService()


def _with_request_id(resp: ApiResponse, request: Request) -> ApiResponse:
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp


@router.post("/runs", dependencies=[Depends(require_trigger_key)])
async def trigger_run(
    body: RunRequest,
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _service.run(db, body.caller)
    return _with_request_id(success_response(data.model_dump()), request)


@router.post("/positions/{position_id}/complete", dependencies=[Depends(require_trigger_key)])
async def force_complete(
    position_id: str,
    body: ForceCompleteRequest,
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _service.force_complete(db, position_id, body.caller)
    return _with_request_id(success_response(data.model_dump()), request)


@router.get("/positions")
async def list_positions(
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
    kind: PositionKind | None = Query(None, description="INVESTMENT or LIVE_TRADE"),
    status: PositionStatus | None = Query(None, description="ACTIVE, COMPLETED or CANCELLED"),
) -> ApiResponse:
    data = await _query_service.list_position_statuses(
        db,
        kind.value if kind else None,
        status.value if status else None,
    )
    return _with_request_id(success_response(data.model_dump()), request)


@router.get("/positions/{position_id}/records")
async def list_records(
    position_id: str,
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
    cursor: str | None = Query(None, description="Pagination cursor (opaque Base64)"),
    limit: int = Query(20, ge=1, le=100, description="Items per page"),
) -> ApiResponse:
    data = await _query_service.list_records(db, position_id, cursor, limit)
    return _with_request_id(success_response(data.model_dump()), request)


@router.get("/summary")
async def get_summary(
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
    kind: PositionKind | None = Query(None, description="INVESTMENT or LIVE_TRADE"),
) -> ApiResponse:
    data = await _query_service.get_summary(db, kind.value if kind else None)
    return _with_request_id(success_response(data.model_dump()), request)
