"""
Stocks (trade ledger) API Router.
"""
import logging
from datetime import date
from typing import Any, Optional
from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession
from pydantic import BaseModel
from decimal import Decimal

from tradebook.core.config import settings
from tradebook.core.database import get_db
from tradebook.core.errors import TransactionFailure
from tradebook.services.trade_csv import parse_trade_csv
from tradebook.services.trade_ingest_service import TradeIngestService, get_ingest_service
from tradebook.services.trade_store import TradeStore, validate_sort_field

logger = logging.getLogger(__name__)

router = APIRouter()

# ---------- Pydantic Schemas ----------

class TradeSchema(BaseModel):
    id: int
    date: date
    symbol: str
    security_name: str
    client_name: str
    trade_type: str
    quantity: int
    price: Decimal
    remarks: Optional[str]

    class Config:
        from_attributes = True


class TradePage(BaseModel):
    current_page: int
    total_pages: int
    total_items: int
    items_per_page: int
    data: list[TradeSchema]
    has_next_page: bool
    has_previous_page: bool
    sort_by: str
    sort_order: str
    applied_filters: dict[str, Any]


class UploadResponse(BaseModel):
    message: str
    records_imported: int
    duplicates_skipped: int
    invalid_rows: int
    holdings_changed: bool
    duplicate_records: list[dict[str, Any]]
    invalid_records: list[dict[str, Any]]


class SecurityOption(BaseModel):
    symbol: str
    security: str


class FilterOptions(BaseModel):
    stock_name: list[SecurityOption]
    unique_client_names: list[str]


# ---------- Endpoints ----------

@router.post("/upload", response_model=UploadResponse)
async def upload_trades(
    file: UploadFile = File(...),
    ingest: TradeIngestService = Depends(get_ingest_service),
):
    """Import a broker trade CSV and reconcile holdings."""
    filename = (file.filename or "").lower()
    if file.content_type != "text/csv" and not filename.endswith(".csv"):
        raise HTTPException(status_code=400, detail="Only CSV files are allowed")

    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="No file uploaded")
    if len(content) > settings.UPLOAD_MAX_BYTES:
        raise HTTPException(status_code=413, detail="File exceeds upload size limit")

    try:
        parsed = parse_trade_csv(content)
    except ValueError as e:
        logger.warning(f"Rejected upload {file.filename}: {e}")
        raise HTTPException(
            status_code=400,
            detail={"error": "Error processing CSV file", "details": str(e)},
        )

    try:
        result = await ingest.ingest(parsed.rows, parsed.invalid)
    except TransactionFailure as e:
        raise HTTPException(
            status_code=500,
            detail={"error": "Error processing CSV file", "details": e.details},
        )

    return UploadResponse(message="CSV file successfully processed", **result.to_dict())


@router.get("", response_model=TradePage)
async def get_trades(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=500),
    sort_by: Optional[str] = None,
    sort_order: Optional[str] = None,
    symbol: Optional[str] = None,
    client_name: Optional[str] = None,
    trade_type: Optional[str] = None,
    trade_date: Optional[date] = Query(default=None, alias="date"),
    security_name: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
):
    """List trades with filters, sorting and pagination."""
    sort_field = validate_sort_field(sort_by)
    order = "ASC" if (sort_order or "").upper() == "ASC" else "DESC"
    filters = {
        "symbol": symbol,
        "client_name": client_name,
        "trade_type": trade_type,
        "date": trade_date,
        "security_name": security_name,
    }

    total, trades = await TradeStore(db).query(
        filters, page=page, limit=limit, sort_by=sort_field, sort_order=order
    )
    total_pages = -(-total // limit)

    return TradePage(
        current_page=page,
        total_pages=total_pages,
        total_items=total,
        items_per_page=limit,
        data=[TradeSchema.model_validate(t) for t in trades],
        has_next_page=page < total_pages,
        has_previous_page=page > 1,
        sort_by=sort_field,
        sort_order=order,
        applied_filters={k: v for k, v in filters.items() if v is not None},
    )


@router.get("/filters", response_model=FilterOptions)
async def get_filters(db: AsyncSession = Depends(get_db)):
    """Distinct securities and client names for filter dropdowns."""
    store = TradeStore(db)
    securities = await store.distinct_securities()
    clients = await store.distinct_clients()
    return FilterOptions(
        stock_name=[SecurityOption(symbol=s, security=n) for s, n in securities],
        unique_client_names=clients,
    )
