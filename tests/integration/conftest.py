"""Integration-test fixtures (live PostgreSQL).

Pre-condition: an empty database migrated with
    alembic -x db_url=$PD_INTEGRATION_DATABASE_URL upgrade head

Skipped entirely unless PD_INTEGRATION_DATABASE_URL is set. Each test gets its
own engine so the asyncpg pool never outlives the test's event loop.
"""

import os
import uuid

import pytest
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

INTEGRATION_URL = os.environ.get("PD_INTEGRATION_DATABASE_URL")


@pytest.fixture
async def session_factory():
    engine = create_async_engine(INTEGRATION_URL)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def user_id() -> str:
    return f"it_{uuid.uuid4().hex[:10]}"


@pytest.fixture
def seed(session_factory):
    """Insert a balance row and a position; returns the new position id."""

    async def _seed(
        user_id: str,
        start_time,
        kind: str = "INVESTMENT",
        principal: int = 100_000,
        rate_bps: int = 150,
        period_count: int = 30,
        balance: int = 0,
    ) -> str:
        async with session_factory() as session:
            await session.execute(
                text(
                    "INSERT INTO balances (user_id, total_balance) VALUES (:u, :b) "
                    "ON CONFLICT (user_id) DO NOTHING"
                ),
                {"u": user_id, "b": balance},
            )
            row = (
                await session.execute(
                    text("""
                        INSERT INTO positions
                            (user_id, kind, principal, rate_bps, period_count, start_time)
                        VALUES (:u, :kind, :principal, :rate_bps, :period_count, :start_time)
                        RETURNING id
                    """),
                    {
                        "u": user_id,
                        "kind": kind,
                        "principal": principal,
                        "rate_bps": rate_bps,
                        "period_count": period_count,
                        "start_time": start_time,
                    },
                )
            ).fetchone()
            await session.commit()
            return str(row.id)

    return _seed
