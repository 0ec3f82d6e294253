"""
Investor rankings.

Read-side aggregations over closed holdings, served through a ResultCache:
- top investors by count of profitable closed holdings
- track records of the investors currently holding a given stock
"""
import logging
from dataclasses import dataclass, asdict
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from tradebook.core.config import settings
from tradebook.core.database import AsyncSessionLocal
from tradebook.core.errors import AggregationUnavailable
from tradebook.core.metrics import metrics
from tradebook.services.holding_store import HoldingStore
from tradebook.services.position_reconciler import PERCENT_QUANT, ReconcileResult
from tradebook.services.recompute_scheduler import RecomputeScheduler
from tradebook.services.result_cache import ResultCache, TOP_INVESTORS, symbol_key

logger = logging.getLogger(__name__)

TOP_INVESTORS_JOB = "top-investors"


@dataclass(frozen=True)
class InvestorRanking:
    client_name: str
    profitable_trades: int
    average_gain_percentage: Decimal
    highest_gain_percentage: Decimal

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _percent(value: Any) -> Decimal:
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(PERCENT_QUANT, rounding=ROUND_HALF_UP)


def _to_ranking(row: Any) -> InvestorRanking:
    return InvestorRanking(
        client_name=row["client_name"],
        profitable_trades=int(row["profitable_trades"] or 0),
        average_gain_percentage=_percent(row["average_gain_percentage"]),
        highest_gain_percentage=_percent(row["highest_gain_percentage"]),
    )


class RankingService:
    def __init__(
        self,
        cache: ResultCache,
        scheduler: RecomputeScheduler,
        session_factory: Callable[[], Any] = AsyncSessionLocal,
        limit: Optional[int] = None,
        min_profitable: Optional[int] = None,
    ) -> None:
        self.cache = cache
        self.scheduler = scheduler
        self.session_factory = session_factory
        self.limit = settings.TOP_INVESTORS_LIMIT if limit is None else limit
        self.min_profitable = (
            settings.TOP_INVESTORS_MIN_PROFITABLE if min_profitable is None else min_profitable
        )

    async def get_top_investors(self, force_refresh: bool = False) -> list[InvestorRanking]:
        if not force_refresh:
            cached = self.cache.get(TOP_INVESTORS)
            if cached is not None:
                logger.debug("Returning cached top investors")
                metrics.cache_event("hit", TOP_INVESTORS_JOB)
                return cached
        metrics.cache_event("miss", TOP_INVESTORS_JOB)
        return await self.refresh_top_investors()

    async def refresh_top_investors(self) -> list[InvestorRanking]:
        version = self.cache.version(TOP_INVESTORS)
        logger.info("Calculating top investors...")
        rows = await self._query(
            lambda store: store.query_closed_profitable(self.min_profitable, self.limit)
        )
        investors = [_to_ranking(row) for row in rows]
        if self.cache.store(TOP_INVESTORS, investors, version):
            logger.info("Top investors cache updated (%d investors)", len(investors))
        return investors

    async def get_investors_by_stock(self, stock_name: str) -> list[InvestorRanking]:
        if not stock_name or not stock_name.strip():
            raise ValueError("stock_name is required")

        key = symbol_key(stock_name)
        cached = self.cache.get(key)
        if cached is not None:
            metrics.cache_event("hit", key[1])
            return cached

        metrics.cache_event("miss", key[1])
        version = self.cache.version(key)
        rows = await self._query(lambda store: store.query_investors_holding(stock_name))
        investors = [_to_ranking(row) for row in rows]
        self.cache.store(key, investors, version)
        return investors

    def invalidate_cache(self, symbol: Optional[str] = None) -> None:
        """Drop one stock's entry, or every entry when no symbol is given."""
        if symbol:
            self.cache.invalidate(symbol_key(symbol))
            logger.info("Investor cache invalidated for %s", symbol)
        else:
            self.cache.invalidate_all()
            logger.info("All ranking caches invalidated")

    def on_holdings_changed(self, result: ReconcileResult) -> None:
        """
        Invalidate after a committed reconciliation.

        Touched stocks lose their per-stock entries. If any long-term holding
        changed, the leaderboard is dropped and recomputed in the background.
        """
        for stock_name in result.touched_symbols:
            self.cache.invalidate(symbol_key(stock_name))

        if result.long_term_changed:
            self.cache.invalidate(TOP_INVESTORS)
            self.scheduler.submit(TOP_INVESTORS_JOB, self.refresh_top_investors)

    async def _query(self, fn: Callable[[HoldingStore], Awaitable[list]]) -> list:
        try:
            async with self.session_factory() as session:
                return await fn(HoldingStore(session))
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Ranking query failed: {e}")
            raise AggregationUnavailable("Ranking data is temporarily unavailable", e) from e


ranking_service = RankingService(
    cache=ResultCache(ttl_seconds=settings.RANKING_CACHE_TTL_SECONDS),
    scheduler=RecomputeScheduler(),
)


def get_ranking_service() -> RankingService:
    return ranking_service
