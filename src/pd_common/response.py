"""Unified API response wrapper.

All API endpoints return this format:
{
    "code": 0,           // 0=success, non-0=AppError code
    "message": "success",
    "data": { ... },     // null on error
    "timestamp": "...",
    "request_id": "..."
}
"""

import uuid
from typing import Any

from pydantic import BaseModel, Field

from src.pd_common.datetime_utils import utc_now


class ApiResponse(BaseModel):
    code: int = 0
    message: str = "success"
    data: Any = None
    timestamp: str = Field(default_factory=lambda: utc_now().isoformat())
    request_id: str = Field(default_factory=lambda: f"req_{uuid.uuid4().hex[:12]}")


def success_response(data: Any = None, request_id: str | None = None) -> ApiResponse:
    resp = ApiResponse(code=0, message="success", data=data)
    if request_id:
        resp.request_id = request_id
    return resp


def error_response(code: int, message: str, request_id: str | None = None) -> ApiResponse:
    resp = ApiResponse(code=code, message=message, data=None)
    if request_id:
        resp.request_id = request_id
    return resp
