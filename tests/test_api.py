"""HTTP tests for the stocks, investors and admin routers."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import NullPool

import tradebook.api.main as main_module
from tradebook.core.database import Base, get_db
from tradebook.services.ranking_service import RankingService, get_ranking_service
from tradebook.services.recompute_scheduler import RecomputeScheduler
from tradebook.services.result_cache import ResultCache
from tradebook.services.trade_ingest_service import TradeIngestService, get_ingest_service

from conftest import closed_holding, open_holding


CSV = (
    "Date,Symbol,Security Name,Client Name,Buy/Sell,Quantity,Trade Price,Remarks\n"
    "2024-01-01,NABIL,Nabil Bank,Alice,BUY,100,10.00,\n"
    "2024-01-05,NABIL,Nabil Bank,Alice,SELL,100,12.00,\n"
    "2024-01-02,ABC,ABC Ltd,Bob,BUY,10,5.00,\n"
    "bad-date,ABC,ABC Ltd,Bob,BUY,10,5.00,\n"
)


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "api.db"
    sync_engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(sync_engine)
    sync_engine.dispose()
    return path


@pytest.fixture
def seed(db_path):
    def add(*objects):
        engine = create_engine(f"sqlite:///{db_path}")
        with Session(engine) as session:
            session.add_all(objects)
            session.commit()
        engine.dispose()
    return add


@pytest.fixture
def client(db_path, monkeypatch):
    # The app runs on its own event loop, so connections must not be pooled
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    ranking = RankingService(
        cache=ResultCache(ttl_seconds=3600),
        scheduler=RecomputeScheduler(),
        session_factory=factory,
    )
    ingest = TradeIngestService(ranking=ranking, session_factory=factory)

    async def override_get_db():
        async with factory() as session:
            yield session

    app = main_module.app
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_ranking_service] = lambda: ranking
    app.dependency_overrides[get_ingest_service] = lambda: ingest
    monkeypatch.setattr(main_module, "ranking_service", ranking)

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def upload(client, content: str = CSV, filename: str = "trades.csv", content_type: str = "text/csv"):
    return client.post(
        "/api/v1/stocks/upload",
        files={"file": (filename, content.encode("utf-8"), content_type)},
    )


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_upload_imports_and_reports(client):
    response = upload(client)

    assert response.status_code == 200
    body = response.json()
    assert body["records_imported"] == 3
    assert body["invalid_rows"] == 1
    assert body["invalid_records"][0]["row"] == 5
    assert body["holdings_changed"] is True


def test_reupload_reports_duplicates(client):
    upload(client)

    body = upload(client).json()

    assert body["records_imported"] == 0
    assert body["duplicates_skipped"] == 3
    assert {d["reason"] for d in body["duplicate_records"]} == {"Duplicate entry found"}


def test_upload_rejects_non_csv(client):
    response = upload(client, filename="trades.txt", content_type="text/plain")

    assert response.status_code == 400


def test_upload_rejects_empty_file(client):
    response = upload(client, content="")

    assert response.status_code == 400


def test_upload_rejects_missing_columns(client):
    response = upload(client, content="Date,Symbol\n2024-01-01,ABC\n")

    assert response.status_code == 400
    assert "missing required columns" in response.json()["detail"]["details"]


def test_trade_listing_filters_and_paginates(client):
    upload(client)

    response = client.get("/api/v1/stocks", params={"client_name": "ali", "limit": 1, "sort_order": "ASC"})

    body = response.json()
    assert body["total_items"] == 2
    assert body["total_pages"] == 2
    assert body["has_next_page"] is True
    assert body["data"][0]["date"] == "2024-01-01"
    assert body["applied_filters"] == {"client_name": "ali"}


def test_trade_listing_unknown_sort_falls_back_to_date(client):
    upload(client)

    body = client.get("/api/v1/stocks", params={"sort_by": "price; DROP TABLE"}).json()

    assert body["sort_by"] == "date"
    assert body["data"][0]["date"] == "2024-01-05"


def test_filter_options(client):
    upload(client)

    body = client.get("/api/v1/stocks/filters").json()

    assert body["unique_client_names"] == ["Alice", "Bob"]
    assert {"symbol": "NABIL", "security": "Nabil Bank"} in body["stock_name"]


def test_top_investors(client, seed):
    seed(*[closed_holding("Alice", gain, symbol=f"S{i}") for i, gain in enumerate(["10", "20", "30"])])

    response = client.get("/api/v1/investors/top")

    assert response.status_code == 200
    [alice] = response.json()["data"]
    assert alice["client_name"] == "Alice"
    assert alice["profitable_trades"] == 3


def test_top_investors_served_from_cache_until_forced(client, seed):
    assert client.get("/api/v1/investors/top").json()["data"] == []
    seed(*[closed_holding("Alice", "10", symbol=f"S{i}") for i in range(3)])

    assert client.get("/api/v1/investors/top").json()["data"] == []
    assert len(client.get("/api/v1/investors/top", params={"force_refresh": True}).json()["data"]) == 1


def test_investors_by_stock_requires_name(client):
    assert client.get("/api/v1/investors").status_code == 400


def test_investors_by_stock(client, seed):
    seed(open_holding("Bob", symbol="ABC", security_name="ABC Ltd"), closed_holding("Bob", "12"))

    response = client.get("/api/v1/investors", params={"stock-name": "abc ltd"})

    [bob] = response.json()["data"]
    assert bob["client_name"] == "Bob"
    assert bob["profitable_trades"] == 1


def test_client_holdings_with_metrics(client, seed):
    seed(
        closed_holding("Carol", "10", symbol="A"),
        closed_holding("Carol", "-5", symbol="B"),
        open_holding("Carol", symbol="C"),
    )

    body = client.get("/api/v1/investors/Carol").json()
    closed = client.get("/api/v1/investors/Carol", params={"holding": "closed"}).json()

    assert body["count"] == 3
    assert body["data"][0]["symbol"] == "C"
    assert body["investor_metrics"]["profitable_trades"] == 1
    assert body["investor_metrics"]["loss_trades"] == 2
    assert float(body["investor_metrics"]["avg_profit_loss_ratio"]) == pytest.approx(1.67)
    assert closed["count"] == 2


def test_client_holdings_rejects_unknown_filter(client):
    assert client.get("/api/v1/investors/Carol", params={"holding": "some"}).status_code == 422


def test_admin_cache_invalidation(client):
    assert client.post("/api/v1/admin/cache/invalidate", params={"symbol": "ABC"}).json() == {"invalidated": "ABC"}
    assert client.post("/api/v1/admin/cache/invalidate").json() == {"invalidated": "all"}


def test_admin_metrics(client):
    upload(client)

    events = client.get("/api/v1/admin/metrics", params={"category": "ingest"}).json()
    summary = client.get("/api/v1/admin/metrics/summary").json()

    assert events[-1]["event_type"] == "batch"
    assert summary["ingest"]["batch"] == 1
