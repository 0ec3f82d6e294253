"""
Admin API Router.

Provides endpoints for cache control, the holdings backfill and recent
metrics.
"""

from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from tradebook.core.errors import TransactionFailure
from tradebook.core.metrics import metrics
from tradebook.services.holding_backfill import backfill_holdings
from tradebook.services.ranking_service import RankingService, get_ranking_service

router = APIRouter()


# ---------- Pydantic Schemas ----------

class CacheInvalidation(BaseModel):
    invalidated: str


class MetricEventSchema(BaseModel):
    timestamp: str
    category: str
    event_type: str
    symbol: Optional[str]
    value: float
    metadata: Dict[str, Any]


# ---------- Endpoints ----------

@router.post("/cache/invalidate", response_model=CacheInvalidation)
async def invalidate_cache(
    symbol: Optional[str] = None,
    ranking: RankingService = Depends(get_ranking_service),
):
    """Drop one stock's cached investors, or every ranking cache entry."""
    ranking.invalidate_cache(symbol)
    return CacheInvalidation(invalidated=symbol or "all")


@router.post("/holdings/backfill")
async def run_backfill(ranking: RankingService = Depends(get_ranking_service)) -> Dict[str, Any]:
    """
    Rebuild holdings from the full trade history.

    Runs once per database; later calls report status "exists".
    """
    try:
        return await backfill_holdings(ranking=ranking)
    except TransactionFailure as e:
        raise HTTPException(
            status_code=500,
            detail={"error": "Holdings backfill failed", "details": e.details},
        )


@router.get("/metrics", response_model=List[MetricEventSchema])
async def recent_metrics(category: Optional[str] = None, limit: int = 100):
    """Recent metric events from the in-memory buffer."""
    return [
        MetricEventSchema(**event.to_dict())
        for event in metrics.get_recent(category=category, limit=limit)
    ]


@router.get("/metrics/summary")
async def metrics_summary(category: Optional[str] = None) -> Dict[str, Dict[str, int]]:
    """Event counts by category and type."""
    return metrics.get_summary(category=category)
