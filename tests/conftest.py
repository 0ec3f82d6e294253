from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import tradebook.models  # noqa: F401
from tradebook.core.database import Base
from tradebook.core.metrics import metrics
from tradebook.models.holding import Holding, HoldingStatus
from tradebook.models.trade import TradeType
from tradebook.services.ranking_service import RankingService
from tradebook.services.recompute_scheduler import RecomputeScheduler
from tradebook.services.result_cache import ResultCache
from tradebook.services.trade_csv import TradeRow
from tradebook.services.trade_ingest_service import TradeIngestService


def make_trade(
    day: date,
    trade_type: str,
    quantity: int,
    price: str,
    client_name: str = "Alice",
    symbol: str = "XYZ",
    security_name: str = "XYZ Corp",
) -> TradeRow:
    return TradeRow(
        date=day,
        symbol=symbol,
        security_name=security_name,
        client_name=client_name,
        trade_type=trade_type,
        quantity=quantity,
        price=Decimal(price),
    )


def buy(day: date, quantity: int, price: str, **kwargs) -> TradeRow:
    return make_trade(day, TradeType.BUY, quantity, price, **kwargs)


def sell(day: date, quantity: int, price: str, **kwargs) -> TradeRow:
    return make_trade(day, TradeType.SELL, quantity, price, **kwargs)


def closed_holding(
    client_name: str,
    gain: str,
    symbol: str = "XYZ",
    security_name: str = "XYZ Corp",
    duration: int = 10,
) -> Holding:
    return Holding(
        client_name=client_name,
        symbol=symbol,
        security_name=security_name,
        initial_buy_date=date(2024, 1, 1),
        quantity=10,
        average_buy_price=Decimal("100"),
        latest_price=Decimal("100") * (1 + Decimal(gain) / 100),
        status=HoldingStatus.CLOSED,
        is_long_term=duration > 3,
        gain_loss_percentage=Decimal(gain),
        holding_duration=duration,
        closed_date=date(2024, 2, 1),
        closed_price=Decimal("100") * (1 + Decimal(gain) / 100),
    )


def open_holding(client_name: str, symbol: str = "XYZ", security_name: str = "XYZ Corp") -> Holding:
    return Holding(
        client_name=client_name,
        symbol=symbol,
        security_name=security_name,
        initial_buy_date=date(2024, 3, 1),
        quantity=10,
        average_buy_price=Decimal("50"),
        latest_price=Decimal("50"),
        status=HoldingStatus.HOLDING,
        is_long_term=False,
        gain_loss_percentage=Decimal("0"),
        holding_duration=0,
    )


class FakeHoldingStore:
    """In-memory holding store for reconciler tests."""

    def __init__(self) -> None:
        self.holdings: list[Holding] = []
        self.mutations = 0

    async def find_open_holding(self, client_name: str, symbol: str) -> Optional[Holding]:
        for holding in self.holdings:
            if (
                holding.client_name == client_name
                and holding.symbol == symbol
                and holding.status == HoldingStatus.HOLDING
            ):
                return holding
        return None

    async def add_holding(self, holding: Holding) -> Holding:
        self.holdings.append(holding)
        self.mutations += 1
        return holding

    async def save_holding(self, holding: Holding) -> Holding:
        self.mutations += 1
        return holding

    async def close_holding(self, holding, closed_date, closed_price, gain_loss_percentage, holding_duration):
        holding.status = HoldingStatus.CLOSED
        holding.closed_date = closed_date
        holding.closed_price = closed_price
        holding.latest_price = closed_price
        holding.gain_loss_percentage = gain_loss_percentage
        holding.holding_duration = holding_duration
        self.mutations += 1
        return holding

    def open_holdings(self) -> list[Holding]:
        return [h for h in self.holdings if h.status == HoldingStatus.HOLDING]


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def _clear_metrics():
    yield
    metrics.clear_buffer()


@pytest.fixture
def store() -> FakeHoldingStore:
    return FakeHoldingStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'tradebook.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def ranking(session_factory, clock):
    service = RankingService(
        cache=ResultCache(ttl_seconds=3600, clock=clock),
        scheduler=RecomputeScheduler(),
        session_factory=session_factory,
    )
    yield service
    await service.scheduler.drain()


@pytest.fixture
def ingest(ranking, session_factory) -> TradeIngestService:
    return TradeIngestService(ranking=ranking, session_factory=session_factory)


async def add_all(session_factory, *objects) -> None:
    async with session_factory() as session:
        async with session.begin():
            session.add_all(objects)
