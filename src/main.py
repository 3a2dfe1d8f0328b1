"""FastAPI application entry point.

Run with: uvicorn src.main:app --reload --port 8000
"""

# ruff: noqa: E402  -- uvloop.install() must run before other imports

import uvloop

uvloop.install()

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from config.settings import settings
from src.pd_common.database import engine
from src.pd_common.errors import AppError
from src.pd_common.logging_config import configure_logging
from src.pd_common.response import error_response
from src.pd_distribution.api.router import router as distribution_router
from src.pd_gateway.middleware.request_log import RequestLogMiddleware
from src.pd_scheduler.scheduler import shutdown_scheduler, start_scheduler


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup: logging, verify DB connection, start scheduler. Shutdown: dispose."""
    # Startup
    configure_logging()
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    if settings.SCHEDULER_ENABLED:
        start_scheduler()
    yield
    # Shutdown
    shutdown_scheduler()
    await engine.dispose()


app = FastAPI(
    title=settings.APP_NAME,
    version="0.1.0",
    lifespan=lifespan,
)


app.add_middleware(RequestLogMiddleware)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    resp = error_response(exc.code, exc.message, getattr(request.state, "request_id", None))
    return JSONResponse(
        status_code=exc.http_status,
        content=resp.model_dump(),
    )


app.include_router(distribution_router, prefix="/api/v1")


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok", "version": "0.1.0"}
