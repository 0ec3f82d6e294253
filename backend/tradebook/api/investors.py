"""
Investors API Router.

Leaderboards and per-client holding history.
"""
from datetime import date
from typing import Literal, Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from pydantic import BaseModel
from decimal import Decimal, ROUND_HALF_UP

from tradebook.core.database import get_db
from tradebook.core.errors import AggregationUnavailable
from tradebook.models.holding import HoldingStatus
from tradebook.services.holding_store import HoldingStore
from tradebook.services.ranking_service import RankingService, get_ranking_service

router = APIRouter()

# ---------- Pydantic Schemas ----------

class InvestorRankingSchema(BaseModel):
    client_name: str
    profitable_trades: int
    average_gain_percentage: Decimal
    highest_gain_percentage: Decimal

    class Config:
        from_attributes = True


class InvestorList(BaseModel):
    message: str
    data: list[InvestorRankingSchema]


class HoldingSchema(BaseModel):
    id: int
    client_name: str
    symbol: str
    security_name: str
    initial_buy_date: date
    quantity: int
    average_buy_price: Decimal
    latest_price: Decimal
    status: str
    is_long_term: bool
    gain_loss_percentage: Decimal
    holding_duration: int
    closed_date: Optional[date]
    closed_price: Optional[Decimal]

    class Config:
        from_attributes = True


class InvestorMetrics(BaseModel):
    total_trades: int
    profitable_trades: int
    loss_trades: int
    avg_profit_loss_ratio: Decimal


class InvestorHoldings(BaseModel):
    success: bool
    count: int
    investor_metrics: InvestorMetrics
    data: list[HoldingSchema]


HOLDING_FILTERS = {
    "all": None,
    "open": HoldingStatus.HOLDING,
    "closed": HoldingStatus.CLOSED,
}


# ---------- Endpoints ----------

@router.get("", response_model=InvestorList)
async def get_investors_by_stock(
    stock_name: Optional[str] = Query(default=None, alias="stock-name"),
    ranking: RankingService = Depends(get_ranking_service),
):
    """Investors currently holding a stock, with their closed-trade record."""
    if not stock_name or not stock_name.strip():
        raise HTTPException(status_code=400, detail="Missing required query parameter: stock-name")
    try:
        investors = await ranking.get_investors_by_stock(stock_name)
    except AggregationUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    return InvestorList(
        message="Investors retrieved successfully",
        data=[InvestorRankingSchema.model_validate(i) for i in investors],
    )


@router.get("/top", response_model=InvestorList)
async def get_top_investors(
    force_refresh: bool = False,
    ranking: RankingService = Depends(get_ranking_service),
):
    """Top investors ranked by number of profitable closed holdings."""
    try:
        investors = await ranking.get_top_investors(force_refresh=force_refresh)
    except AggregationUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    return InvestorList(
        message="Top investors retrieved successfully",
        data=[InvestorRankingSchema.model_validate(i) for i in investors],
    )


@router.get("/{client_name}", response_model=InvestorHoldings)
async def get_investor_holdings(
    client_name: str,
    holding: Literal["all", "open", "closed"] = "all",
    db: AsyncSession = Depends(get_db),
):
    """A client's holdings, newest first, with win/loss metrics."""
    holdings = await HoldingStore(db).list_client_holdings(client_name, HOLDING_FILTERS[holding])

    total = len(holdings)
    profitable = sum(1 for h in holdings if h.gain_loss_percentage > 0)
    average = Decimal("0")
    if total:
        average = sum((Decimal(h.gain_loss_percentage) for h in holdings), Decimal("0")) / total

    return InvestorHoldings(
        success=True,
        count=total,
        investor_metrics=InvestorMetrics(
            total_trades=total,
            profitable_trades=profitable,
            loss_trades=total - profitable,
            avg_profit_loss_ratio=average.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP),
        ),
        data=[HoldingSchema.model_validate(h) for h in holdings],
    )
