"""Shared test fixtures."""

import os

# Settings are read at import time; these must be in place before src.main loads.
os.environ.setdefault("TRIGGER_SECRET", "test-trigger-secret")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from src.main import app  # noqa: E402


@pytest.fixture
async def client() -> AsyncClient:
    """Async HTTP client for testing FastAPI endpoints."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
