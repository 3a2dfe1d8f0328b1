"""Unit tests for CompletionHandler — status-gated capital return."""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from src.pd_common.enums import PositionStatus, TransactionKind
from src.pd_distribution.application.completion import CompletionHandler

CAPITAL_RETURN = TransactionKind.CAPITAL_RETURN.value


class TestCompleteIfDue:
    async def test_completes_fully_paid_position(self, ledger, repo, db, start) -> None:
        ledger.add_position(period_count=3, balance=4_500)
        ledger.seed_paid("pos-1", range(1, 4))
        now = start + timedelta(days=3)

        returned = await CompletionHandler(repo).complete_if_due(
            db, ledger.snapshot("pos-1"), now
        )

        assert returned == 100_000
        assert ledger.positions["pos-1"].status == PositionStatus.COMPLETED
        assert ledger.positions["pos-1"].end_time == now
        assert ledger.balances["user-1"] == 104_500
        [entry] = ledger.transactions_of(CAPITAL_RETURN)
        assert entry.amount == 100_000
        assert entry.balance_after == 104_500
        assert entry.description == "Investment #pos-1 completed - principal returned"

    async def test_not_due_before_duration(self, ledger, repo, db, start) -> None:
        ledger.add_position(period_count=3)
        ledger.seed_paid("pos-1", range(1, 3))

        returned = await CompletionHandler(repo).complete_if_due(
            db, ledger.snapshot("pos-1"), start + timedelta(days=2, hours=23)
        )

        assert returned is None
        assert ledger.positions["pos-1"].status == PositionStatus.ACTIVE
        assert db.commits == 0

    async def test_deferred_while_periods_unpaid(self, ledger, repo, db, start) -> None:
        ledger.add_position(period_count=3)
        ledger.seed_paid("pos-1", range(1, 3))

        returned = await CompletionHandler(repo).complete_if_due(
            db, ledger.snapshot("pos-1"), start + timedelta(days=5)
        )

        assert returned is None
        assert ledger.positions["pos-1"].status == PositionStatus.ACTIVE
        assert ledger.transactions == []

    async def test_already_completed_is_noop(self, ledger, repo, db, start) -> None:
        ledger.add_position(period_count=1, status=PositionStatus.COMPLETED.value)
        ledger.seed_paid("pos-1", [1])

        returned = await CompletionHandler(repo).complete_if_due(
            db, ledger.snapshot("pos-1"), start + timedelta(days=2)
        )

        assert returned is None
        assert ledger.transactions == []

    async def test_lost_race_returns_nothing(self, ledger, repo, db, start) -> None:
        ledger.add_position(period_count=1)
        ledger.seed_paid("pos-1", [1])
        stale = ledger.snapshot("pos-1")
        ledger.positions["pos-1"].status = PositionStatus.COMPLETED.value

        returned = await CompletionHandler(repo).complete_if_due(
            db, stale, start + timedelta(days=1)
        )

        assert returned is None
        assert ledger.balances["user-1"] == 0

    async def test_concurrent_completion_returns_capital_once(
        self, ledger, repo, session_factory, start
    ) -> None:
        ledger.add_position(period_count=2)
        ledger.seed_paid("pos-1", [1, 2])
        handler = CompletionHandler(repo)
        now = start + timedelta(days=2)

        results = await asyncio.gather(
            *(
                handler.complete_if_due(session_factory(), ledger.snapshot("pos-1"), now)
                for _ in range(3)
            )
        )

        assert sorted(r is not None for r in results) == [False, False, True]
        assert len(ledger.transactions_of(CAPITAL_RETURN)) == 1
        assert ledger.balances["user-1"] == 100_000

    async def test_credit_failure_rolls_back_status(self, ledger, repo, db, start) -> None:
        ledger.add_position(period_count=1)
        ledger.seed_paid("pos-1", [1])
        ledger.failing_users.add("user-1")

        with pytest.raises(IntegrityError):
            await CompletionHandler(repo).complete_if_due(
                db, ledger.snapshot("pos-1"), start + timedelta(days=1)
            )

        assert ledger.positions["pos-1"].status == PositionStatus.ACTIVE
        assert ledger.positions["pos-1"].end_time is None


class TestForceComplete:
    async def test_returns_capital_with_unpaid_periods(self, ledger, repo, db, start) -> None:
        ledger.add_position(period_count=30)
        ledger.seed_paid("pos-1", range(1, 4))

        returned = await CompletionHandler(repo).force_complete(
            db, ledger.snapshot("pos-1"), start + timedelta(days=3), caller="ops"
        )

        assert returned is True
        [entry] = ledger.transactions_of(TransactionKind.CAPITAL_RETURN.value)
        assert "manually completed" in entry.description
        assert len(ledger.records_for("pos-1")) == 3
