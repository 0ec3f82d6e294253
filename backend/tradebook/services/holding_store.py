"""
Holding store access.

Open-position lookups (row-locked), holding mutations, and the read-side
aggregations that feed investor rankings.
"""
import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.engine import RowMapping
from sqlalchemy.ext.asyncio import AsyncSession

from tradebook.models.holding import Holding, HoldingStatus

logger = logging.getLogger(__name__)


class HoldingStore:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def find_open_holding(self, client_name: str, symbol: str) -> Optional[Holding]:
        """
        The single HOLDING row for (client, symbol), locked for update.

        The lock serializes merge/close for the pair across concurrent batches
        until the surrounding transaction ends. When no row exists yet there is
        nothing to lock; the partial unique index uq_holdings_open then rejects
        the second concurrent insert with IntegrityError.
        """
        stmt = (
            select(Holding)
            .where(
                Holding.client_name == client_name,
                Holding.symbol == symbol,
                Holding.status == HoldingStatus.HOLDING,
            )
            .order_by(Holding.id)
            .limit(1)
            .with_for_update()
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def add_holding(self, holding: Holding) -> Holding:
        self.session.add(holding)
        await self.session.flush()
        return holding

    async def save_holding(self, holding: Holding) -> Holding:
        self.session.add(holding)
        await self.session.flush()
        return holding

    async def close_holding(
        self,
        holding: Holding,
        closed_date: date,
        closed_price: Decimal,
        gain_loss_percentage: Decimal,
        holding_duration: int,
    ) -> Holding:
        if holding.status == HoldingStatus.CLOSED:
            raise ValueError(f"Holding {holding.id} is already closed")
        holding.status = HoldingStatus.CLOSED
        holding.closed_date = closed_date
        holding.closed_price = closed_price
        holding.latest_price = closed_price
        holding.gain_loss_percentage = gain_loss_percentage
        holding.holding_duration = holding_duration
        return await self.save_holding(holding)

    async def list_client_holdings(
        self, client_name: str, status: Optional[str] = None
    ) -> list[Holding]:
        stmt = select(Holding).where(Holding.client_name == client_name)
        if status:
            stmt = stmt.where(Holding.status == status)
        stmt = stmt.order_by(Holding.initial_buy_date.desc(), Holding.id.desc())
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def query_closed_profitable(
        self, min_profitable: int, limit: int
    ) -> list[RowMapping]:
        """
        Per-client aggregates over CLOSED holdings with a positive gain.

        Ties on the profitable count are broken by client name ascending.
        """
        profitable_trades = func.count(Holding.id).label("profitable_trades")
        stmt = (
            select(
                Holding.client_name,
                profitable_trades,
                func.avg(Holding.gain_loss_percentage).label("average_gain_percentage"),
                func.max(Holding.gain_loss_percentage).label("highest_gain_percentage"),
            )
            .where(
                Holding.status == HoldingStatus.CLOSED,
                Holding.gain_loss_percentage > 0,
            )
            .group_by(Holding.client_name)
            .having(func.count(Holding.id) >= min_profitable)
            .order_by(profitable_trades.desc(), Holding.client_name.asc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.mappings().all())

    async def query_investors_holding(self, stock_name: str) -> list[RowMapping]:
        """
        Track record of every client currently holding a stock.

        The stock is matched case-insensitively on symbol or security name.
        Gain figures cover all of the client's closed holdings.
        """
        needle = stock_name.strip().lower()
        is_closed = Holding.status == HoldingStatus.CLOSED
        holds_stock = and_(
            Holding.status == HoldingStatus.HOLDING,
            or_(
                func.lower(Holding.symbol) == needle,
                func.lower(Holding.security_name) == needle,
            ),
        )

        profitable_trades = func.count(
            case((and_(is_closed, Holding.gain_loss_percentage > 0), Holding.id))
        ).label("profitable_trades")
        average_gain = func.coalesce(
            func.avg(case((is_closed, Holding.gain_loss_percentage))), 0
        ).label("average_gain_percentage")
        highest_gain = func.coalesce(
            func.max(case((is_closed, Holding.gain_loss_percentage))), 0
        ).label("highest_gain_percentage")
        current_positions = func.sum(case((holds_stock, 1), else_=0))

        stmt = (
            select(Holding.client_name, profitable_trades, average_gain, highest_gain)
            .group_by(Holding.client_name)
            .having(current_positions > 0)
            .order_by(profitable_trades.desc(), Holding.client_name.asc())
        )
        result = await self.session.execute(stmt)
        return list(result.mappings().all())
