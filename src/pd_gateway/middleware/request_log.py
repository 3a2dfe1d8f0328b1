"""Request logging for the distribution API.

Every request gets a ``req_`` id on ``request.state`` (echoed back in the
``X-Request-ID`` header) so handlers can put it in ApiResponse.

Operator actions (POST under /api/v1/distribution: runs and manual
completion) log whether a trigger key was presented, so a 401 burst from a
misconfigured cron is visible without turning on debug logging. Failed
requests log at WARNING (4xx) or ERROR (5xx). Health checks from the load
balancer log at DEBUG only.

Log format:
    INFO [POST] /api/v1/distribution/runs -> 200 (412ms) req_a1b2c3d4e5f6 trigger_key=yes
"""

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from src.pd_gateway.auth.dependencies import TRIGGER_KEY_HEADER

logger = logging.getLogger("pd.request")

OPERATOR_PREFIX = "/api/v1/distribution"
HEALTH_PATH = "/health"


def is_operator_action(request: Request) -> bool:
    return request.method == "POST" and request.url.path.startswith(OPERATOR_PREFIX)


def log_level_for(path: str, status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    if path == HEALTH_PATH:
        return logging.DEBUG
    return logging.INFO


class RequestLogMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request.state.request_id = f"req_{uuid.uuid4().hex[:12]}"

        start = time.perf_counter()
        response: Response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = request.state.request_id

        suffix = ""
        if is_operator_action(request):
            presented = TRIGGER_KEY_HEADER in request.headers
            suffix = f" trigger_key={'yes' if presented else 'no'}"

        logger.log(
            log_level_for(request.url.path, response.status_code),
            "[%s] %s -> %d (%.0fms) %s%s",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
            request.state.request_id,
            suffix,
        )
        return response
