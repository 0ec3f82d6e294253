"""Tests for holding persistence rules."""

from __future__ import annotations

import asyncio
from datetime import date

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from tradebook.models.holding import Holding, HoldingStatus
from tradebook.services.holding_store import HoldingStore
from tradebook.services.position_reconciler import PositionReconciler

from conftest import add_all, buy, closed_holding, open_holding


async def open_count(session_factory, client_name: str, symbol: str) -> int:
    async with session_factory() as session:
        stmt = select(func.count(Holding.id)).where(
            Holding.client_name == client_name,
            Holding.symbol == symbol,
            Holding.status == HoldingStatus.HOLDING,
        )
        return (await session.execute(stmt)).scalar()


async def test_second_open_holding_for_pair_is_rejected(session_factory):
    await add_all(session_factory, open_holding("Alice"))

    with pytest.raises(IntegrityError):
        await add_all(session_factory, open_holding("Alice"))

    assert await open_count(session_factory, "Alice", "XYZ") == 1


async def test_closed_holdings_do_not_block_a_new_open_one(session_factory):
    await add_all(
        session_factory,
        closed_holding("Alice", "10"),
        closed_holding("Alice", "-5"),
        open_holding("Alice"),
        open_holding("Bob"),
    )

    assert await open_count(session_factory, "Alice", "XYZ") == 1


class LockstepHoldingStore(HoldingStore):
    """Holds every lookup until both batches have looked, so both see no holding."""

    def __init__(self, session, arrivals: list, both_looked: asyncio.Event) -> None:
        super().__init__(session)
        self.arrivals = arrivals
        self.both_looked = both_looked

    async def find_open_holding(self, client_name, symbol):
        holding = await super().find_open_holding(client_name, symbol)
        self.arrivals.append(client_name)
        if len(self.arrivals) == 2:
            self.both_looked.set()
        await asyncio.wait_for(self.both_looked.wait(), timeout=5)
        return holding


async def test_interleaved_batches_open_one_holding(session_factory):
    arrivals: list = []
    both_looked = asyncio.Event()

    async def run_batch(price: str) -> None:
        async with session_factory() as session, session.begin():
            store = LockstepHoldingStore(session, arrivals, both_looked)
            await PositionReconciler(store).reconcile([buy(date(2024, 1, 1), 10, price)])

    outcomes = await asyncio.gather(run_batch("10.00"), run_batch("11.00"), return_exceptions=True)

    failures = [o for o in outcomes if isinstance(o, BaseException)]
    assert len(failures) == 1
    assert isinstance(failures[0], SQLAlchemyError)
    assert await open_count(session_factory, "Alice", "XYZ") == 1
