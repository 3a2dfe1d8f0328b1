"""In-memory ledger used by the engine-level tests.

``InMemoryLedger`` holds the shared state (positions, records, balances,
transaction log); ``InMemoryDistributionRepository`` implements
DistributionRepositoryProtocol over it. Writes apply immediately and register
an undo step on the ``FakeSession`` that issued them, so a rollback restores
the ledger exactly like a database transaction would. The
(position_id, period_key) claim set plays the unique index.

Every repository call yields to the event loop once so concurrent runs
interleave the way overlapping database sessions do.
"""

import asyncio
import itertools
from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from src.pd_common.enums import PositionKind, PositionStatus
from src.pd_common.errors import (
    BalanceNotFoundError,
    DuplicatePeriodError,
    PositionNotActiveError,
)
from src.pd_distribution.domain.models import DistributionSummary
from src.pd_distribution.domain.periods import compute_progress, period_key
from src.pd_ledger.domain.models import (
    Balance,
    DistributionRecord,
    Position,
    TransactionLogEntry,
)

START = datetime(2026, 1, 1, 0, 0, tzinfo=UTC)


class FakeSession:
    def __init__(self) -> None:
        self._undo: list[Callable[[], None]] = []
        self.commits = 0
        self.rollbacks = 0

    def on_rollback(self, undo: Callable[[], None]) -> None:
        self._undo.append(undo)

    async def commit(self) -> None:
        self._undo.clear()
        self.commits += 1

    async def rollback(self) -> None:
        while self._undo:
            self._undo.pop()()
        self.rollbacks += 1

    async def __aenter__(self) -> "FakeSession":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        while self._undo:
            self._undo.pop()()


class InMemoryLedger:
    def __init__(self) -> None:
        self.positions: dict[str, Position] = {}
        self.records: list[DistributionRecord] = []
        self.claimed: set[tuple[str, datetime]] = set()
        self.balances: dict[str, int] = {}
        self.transactions: list[TransactionLogEntry] = []
        self.failing_users: set[str] = set()
        self.scan_error: Exception | None = None
        self._ids = itertools.count(1)
        self._created = itertools.count(0)

    def add_position(
        self,
        position_id: str = "pos-1",
        user_id: str = "user-1",
        kind: str = PositionKind.INVESTMENT.value,
        principal: int = 100_000,
        rate_bps: int = 150,
        period_count: int = 30,
        start_time: datetime = START,
        status: str = PositionStatus.ACTIVE.value,
        balance: int = 0,
    ) -> Position:
        position = Position(
            id=position_id,
            user_id=user_id,
            kind=kind,
            principal=principal,
            rate_bps=rate_bps,
            period_count=period_count,
            start_time=start_time,
            status=status,
            created_at=START + timedelta(seconds=next(self._created)),
        )
        self.positions[position_id] = position
        self.balances.setdefault(user_id, balance)
        return position

    def seed_paid(self, position_id: str, numbers: Iterable[int]) -> None:
        """Record the given periods as paid without moving any money."""
        position = self.positions[position_id]
        for n in numbers:
            key = period_key(position.start_time, n, position.period_unit)
            self.claimed.add((position_id, key))
            self.records.append(
                DistributionRecord(
                    id=next(self._ids),
                    position_id=position_id,
                    user_id=position.user_id,
                    principal=position.principal,
                    profit_amount=position.profit_per_period,
                    period_number=n,
                    period_key=key,
                    created_at=key,
                )
            )

    def records_for(self, position_id: str) -> list[DistributionRecord]:
        return [r for r in self.records if r.position_id == position_id]

    def transactions_of(self, kind: str) -> list[TransactionLogEntry]:
        return [t for t in self.transactions if t.kind == kind]

    def snapshot(self, position_id: str) -> Position:
        position = self.positions[position_id]
        return replace(position, paid_periods=len(self.records_for(position_id)))


class InMemoryDistributionRepository:
    def __init__(self, ledger: InMemoryLedger) -> None:
        self.ledger = ledger

    async def list_eligible_positions(self, db: FakeSession, now: datetime) -> list[Position]:
        await asyncio.sleep(0)
        if self.ledger.scan_error is not None:
            raise self.ledger.scan_error
        eligible = []
        for position in sorted(self.ledger.positions.values(), key=lambda p: p.created_at):
            if position.status != PositionStatus.ACTIVE:
                continue
            progress = compute_progress(
                position.start_time, now, position.period_unit, position.period_count
            )
            paid = len(self.ledger.records_for(position.id))
            if progress.elapsed_periods > paid or progress.duration_reached:
                eligible.append(self.ledger.snapshot(position.id))
        return eligible

    async def list_paid_period_keys(self, db: FakeSession, position_id: str) -> set[datetime]:
        await asyncio.sleep(0)
        return {r.period_key for r in self.ledger.records_for(position_id)}

    async def count_paid_periods(self, db: FakeSession, position_id: str) -> int:
        await asyncio.sleep(0)
        return len(self.ledger.records_for(position_id))

    async def get_position(self, db: FakeSession, position_id: str) -> Position | None:
        await asyncio.sleep(0)
        if position_id not in self.ledger.positions:
            return None
        return self.ledger.snapshot(position_id)

    async def insert_distribution_record(
        self,
        db: FakeSession,
        position: Position,
        period_number: int,
        period_key: datetime,
        profit_amount: int,
    ) -> DistributionRecord:
        await asyncio.sleep(0)
        claim = (position.id, period_key)
        if claim in self.ledger.claimed:
            raise DuplicatePeriodError(position.id, period_key.isoformat())
        record = DistributionRecord(
            id=next(self.ledger._ids),
            position_id=position.id,
            user_id=position.user_id,
            principal=position.principal,
            profit_amount=profit_amount,
            period_number=period_number,
            period_key=period_key,
            created_at=period_key,
        )
        self.ledger.claimed.add(claim)
        self.ledger.records.append(record)

        def undo() -> None:
            self.ledger.claimed.discard(claim)
            self.ledger.records.remove(record)

        db.on_rollback(undo)
        return record

    async def credit_balance(self, db: FakeSession, user_id: str, amount: int) -> Balance:
        await asyncio.sleep(0)
        if user_id in self.ledger.failing_users:
            raise IntegrityError(
                "UPDATE balances SET total_balance = ...", {}, Exception("balance row locked")
            )
        if user_id not in self.ledger.balances:
            raise BalanceNotFoundError(user_id)
        self.ledger.balances[user_id] += amount

        def undo() -> None:
            self.ledger.balances[user_id] -= amount

        db.on_rollback(undo)
        return Balance(user_id=user_id, total_balance=self.ledger.balances[user_id])

    async def insert_transaction(
        self,
        db: FakeSession,
        user_id: str,
        kind: str,
        amount: int,
        balance_after: int,
        description: str,
        reference_id: str | None,
    ) -> TransactionLogEntry:
        await asyncio.sleep(0)
        entry = TransactionLogEntry(
            id=next(self.ledger._ids),
            user_id=user_id,
            kind=kind,
            amount=amount,
            balance_after=balance_after,
            description=description,
            reference_id=reference_id,
        )
        self.ledger.transactions.append(entry)
        db.on_rollback(lambda: self.ledger.transactions.remove(entry))
        return entry

    async def add_accumulated_profit(
        self, db: FakeSession, position_id: str, amount: int
    ) -> int:
        await asyncio.sleep(0)
        position = self.ledger.positions[position_id]
        if position.status != PositionStatus.ACTIVE:
            raise PositionNotActiveError(position_id)
        position.accumulated_profit += amount

        def undo() -> None:
            position.accumulated_profit -= amount

        db.on_rollback(undo)
        return position.accumulated_profit

    async def mark_completed(
        self, db: FakeSession, position_id: str, end_time: datetime
    ) -> bool:
        await asyncio.sleep(0)
        position = self.ledger.positions[position_id]
        if position.status != PositionStatus.ACTIVE:
            return False
        position.status = PositionStatus.COMPLETED.value
        position.end_time = end_time

        def undo() -> None:
            position.status = PositionStatus.ACTIVE.value
            position.end_time = None

        db.on_rollback(undo)
        return True

    async def list_positions(
        self, db: FakeSession, kind: str | None, status: str | None
    ) -> list[Position]:
        positions = [
            self.ledger.snapshot(p.id)
            for p in self.ledger.positions.values()
            if (kind is None or p.kind == kind) and (status is None or p.status == status)
        ]
        return sorted(positions, key=lambda p: p.created_at, reverse=True)

    async def list_distribution_records(
        self,
        db: FakeSession,
        position_id: str,
        cursor_id: int | None,
        limit: int,
    ) -> list[DistributionRecord]:
        records = sorted(self.ledger.records_for(position_id), key=lambda r: r.id, reverse=True)
        if cursor_id is not None:
            records = [r for r in records if r.id < cursor_id]
        return records[:limit]

    async def get_summary(
        self, db: FakeSession, since: datetime, kind: str | None
    ) -> DistributionSummary:
        active = [
            p for p in self.ledger.positions.values()
            if p.status == PositionStatus.ACTIVE and (kind is None or p.kind == kind)
        ]
        records = [
            r for r in self.ledger.records
            if kind is None or self.ledger.positions[r.position_id].kind == kind
        ]
        return DistributionSummary(
            active_positions=len(active),
            active_principal=sum(p.principal for p in active),
            total_distributed=sum(r.profit_amount for r in records),
            distributed_since=sum(r.profit_amount for r in records if r.created_at >= since),
            since=since,
        )


@pytest.fixture
def ledger() -> InMemoryLedger:
    return InMemoryLedger()


@pytest.fixture
def repo(ledger: InMemoryLedger) -> InMemoryDistributionRepository:
    return InMemoryDistributionRepository(ledger)


@pytest.fixture
def db() -> FakeSession:
    return FakeSession()


@pytest.fixture
def start() -> datetime:
    """Opening time shared by positions created through ``ledger.add_position``."""
    return START


@pytest.fixture
def session_factory() -> Callable[[], FakeSession]:
    return FakeSession
