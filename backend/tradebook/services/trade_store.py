"""
Trade ledger access.

Append-only store of raw broker trades with duplicate detection and the
filtered, paginated reads used by the listing API.
"""
import logging
from datetime import date
from typing import Any, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tradebook.models.trade import Trade

logger = logging.getLogger(__name__)


SORTABLE_FIELDS = {
    "date": Trade.date,
    "symbol": Trade.symbol,
    "security_name": Trade.security_name,
    "client_name": Trade.client_name,
    "trade_type": Trade.trade_type,
    "quantity": Trade.quantity,
    "price": Trade.price,
}

# Case-insensitive partial match
TEXT_FILTERS = {
    "symbol": Trade.symbol,
    "client_name": Trade.client_name,
    "trade_type": Trade.trade_type,
    "security_name": Trade.security_name,
}


def validate_sort_field(field: Optional[str]) -> str:
    return field if field in SORTABLE_FIELDS else "date"


class TradeStore:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def exists(self, identity: tuple) -> bool:
        """True if a trade with this (date, symbol, client, type, qty, price) is stored."""
        trade_date, symbol, client_name, trade_type, quantity, price = identity
        stmt = select(Trade.id).where(
            Trade.date == trade_date,
            Trade.symbol == symbol,
            Trade.client_name == client_name,
            Trade.trade_type == trade_type,
            Trade.quantity == quantity,
            Trade.price == price,
        ).limit(1)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def insert_batch(self, trades: Sequence[Trade]) -> int:
        if not trades:
            return 0
        self.session.add_all(trades)
        await self.session.flush()
        return len(trades)

    async def all_in_order(self) -> list[Trade]:
        """Full history in replay order."""
        result = await self.session.execute(
            select(Trade).order_by(Trade.date, Trade.id)
        )
        return list(result.scalars().all())

    async def query(
        self,
        filters: dict[str, Any],
        page: int = 1,
        limit: int = 20,
        sort_by: str = "date",
        sort_order: str = "DESC",
    ) -> tuple[int, list[Trade]]:
        """Filtered page of trades plus the total match count."""
        conditions = []
        for key, value in filters.items():
            if value in (None, ""):
                continue
            if key == "date":
                if isinstance(value, date):
                    conditions.append(Trade.date == value)
            elif key in TEXT_FILTERS:
                conditions.append(
                    func.lower(TEXT_FILTERS[key]).like(f"%{str(value).lower()}%")
                )

        count_stmt = select(func.count(Trade.id)).where(*conditions)
        total = (await self.session.execute(count_stmt)).scalar() or 0

        column = SORTABLE_FIELDS[validate_sort_field(sort_by)]
        ordering = column.asc() if sort_order == "ASC" else column.desc()
        stmt = (
            select(Trade)
            .where(*conditions)
            .order_by(ordering, Trade.id)
            .limit(limit)
            .offset((page - 1) * limit)
        )
        result = await self.session.execute(stmt)
        return total, list(result.scalars().all())

    async def distinct_securities(self) -> list[tuple[str, str]]:
        stmt = (
            select(Trade.symbol, Trade.security_name)
            .group_by(Trade.symbol, Trade.security_name)
            .order_by(Trade.symbol)
        )
        result = await self.session.execute(stmt)
        return [(row.symbol, row.security_name) for row in result]

    async def distinct_clients(self) -> list[str]:
        stmt = select(Trade.client_name).distinct().order_by(Trade.client_name)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
