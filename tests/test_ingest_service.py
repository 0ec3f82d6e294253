"""Tests for batch ingestion: dedup, persistence, rollback and invalidation."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from tradebook.core.errors import TradeValidationError, TransactionFailure
from tradebook.core.metrics import metrics
from tradebook.models.holding import Holding, HoldingStatus
from tradebook.models.trade import Trade
from tradebook.services.holding_store import HoldingStore
from tradebook.services.result_cache import TOP_INVESTORS, symbol_key
from tradebook.services.trade_ingest_service import TradeIngestService

from conftest import buy, sell


async def count(session_factory, model) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count(model.id)))).scalar()


async def holdings(session_factory) -> list[Holding]:
    async with session_factory() as session:
        result = await session.execute(select(Holding).order_by(Holding.id))
        return list(result.scalars().all())


async def test_round_trip_batch_closes_holding(ingest, session_factory):
    result = await ingest.ingest([
        buy(date(2024, 1, 1), 100, "10.00"),
        sell(date(2024, 1, 5), 100, "12.00"),
    ])

    assert result.records_imported == 2
    assert result.holdings_changed is True
    [holding] = await holdings(session_factory)
    assert holding.status == HoldingStatus.CLOSED
    assert holding.gain_loss_percentage == Decimal("20.00")
    assert holding.holding_duration == 4
    assert holding.is_long_term is True


async def test_duplicates_against_ledger_are_skipped(ingest, session_factory):
    trade = buy(date(2024, 1, 1), 100, "10.00")
    await ingest.ingest([trade])

    result = await ingest.ingest([trade, buy(date(2024, 1, 2), 50, "20.00")])

    assert result.records_imported == 1
    assert result.duplicates_skipped == 1
    assert result.to_dict()["duplicate_records"][0]["reason"] == "Duplicate entry found"
    assert await count(session_factory, Trade) == 2
    [holding] = await holdings(session_factory)
    assert holding.quantity == 150


async def test_duplicates_within_batch_are_skipped(ingest, session_factory):
    trade = buy(date(2024, 1, 1), 100, "10.00")

    result = await ingest.ingest([trade, trade])

    assert result.records_imported == 1
    assert result.duplicates_skipped == 1
    [holding] = await holdings(session_factory)
    assert holding.quantity == 100


async def test_invalid_rows_are_reported(ingest):
    error = TradeValidationError("Unparseable date: 'x'", row_number=3, raw={"date": "x"})

    result = await ingest.ingest([buy(date(2024, 1, 1), 1, "1.00")], [error])

    payload = result.to_dict()
    assert payload["invalid_rows"] == 1
    assert payload["invalid_records"] == [
        {"row": 3, "reason": "Unparseable date: 'x'", "data": {"date": "x"}}
    ]


async def test_store_failure_rolls_back_everything(ingest, session_factory, monkeypatch):
    async def fail(self, holding):
        raise OperationalError("INSERT INTO holdings", {}, Exception("disk full"))

    monkeypatch.setattr(HoldingStore, "add_holding", fail)

    with pytest.raises(TransactionFailure) as excinfo:
        await ingest.ingest([buy(date(2024, 1, 1), 100, "10.00")])

    assert "disk full" in excinfo.value.details
    assert await count(session_factory, Trade) == 0
    assert await count(session_factory, Holding) == 0


async def test_rollback_leaves_cache_untouched(ingest, ranking, monkeypatch):
    ranking.cache.store(symbol_key("XYZ"), ["cached"])

    async def fail(self, holding):
        raise OperationalError("INSERT INTO holdings", {}, Exception("disk full"))

    monkeypatch.setattr(HoldingStore, "add_holding", fail)

    with pytest.raises(TransactionFailure):
        await ingest.ingest([buy(date(2024, 1, 1), 100, "10.00")])

    assert ranking.cache.get(symbol_key("XYZ")) == ["cached"]


async def test_committed_batch_invalidates_affected_caches(ingest, ranking):
    ranking.cache.store(symbol_key("XYZ"), ["xyz"])
    ranking.cache.store(symbol_key("XYZ Corp"), ["xyz corp"])
    ranking.cache.store(symbol_key("ABC"), ["abc"])
    ranking.cache.store(TOP_INVESTORS, ["top"])

    await ingest.ingest([buy(date(2024, 1, 1), 100, "10.00")])

    assert ranking.cache.get(symbol_key("XYZ")) is None
    assert ranking.cache.get(symbol_key("XYZ Corp")) is None
    assert ranking.cache.get(symbol_key("ABC")) == ["abc"]
    assert ranking.cache.get(TOP_INVESTORS) == ["top"]


async def test_long_term_close_refreshes_leaderboard(ingest, ranking):
    ranking.cache.store(TOP_INVESTORS, ["stale"])

    await ingest.ingest([
        buy(date(2024, 1, 1), 100, "10.00"),
        sell(date(2024, 1, 10), 100, "12.00"),
    ])
    await ranking.scheduler.drain()

    # One profitable close is below the leaderboard minimum
    assert ranking.cache.get(TOP_INVESTORS) == []


async def test_ingest_emits_metrics(ingest):
    trade = buy(date(2024, 1, 1), 100, "10.00")

    await ingest.ingest([trade, trade])

    [event] = metrics.get_recent(category="ingest", event_type="batch")
    assert event.value == 1
    assert event.metadata["duplicates"] == 1


class RefusingSession:
    async def __aenter__(self):
        raise ConnectionRefusedError(111, "Connection refused")

    async def __aexit__(self, *exc):
        return False


async def test_unreachable_database_surfaces_as_transaction_failure(ranking):
    service = TradeIngestService(ranking=ranking, session_factory=RefusingSession)

    with pytest.raises(TransactionFailure) as excinfo:
        await service.ingest([buy(date(2024, 1, 1), 100, "10.00")])

    assert isinstance(excinfo.value.cause, ConnectionRefusedError)
    assert "Connection refused" in excinfo.value.details
