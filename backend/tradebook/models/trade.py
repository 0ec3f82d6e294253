from sqlalchemy import Column, String, Date, Integer, Numeric, Index, UniqueConstraint
from tradebook.core.database import Base
from tradebook.models.base import IdMixin, TimestampMixin


class TradeType:
    BUY = "BUY"
    SELL = "SELL"

    ALL = (BUY, SELL)


class Trade(Base, IdMixin, TimestampMixin):
    """
    Raw broker trade rows. Append-only; never updated or deleted.
    """
    __tablename__ = "trades"
    __table_args__ = (
        UniqueConstraint(
            "date", "symbol", "client_name", "trade_type", "quantity", "price",
            name="uq_trades_identity",
        ),
        Index("ix_trades_client_symbol", "client_name", "symbol"),
    )

    date = Column(Date, nullable=False, index=True)
    symbol = Column(String(50), nullable=False)
    security_name = Column(String(255), nullable=False)
    client_name = Column(String(255), nullable=False)
    trade_type = Column(String(4), nullable=False)  # CHECK (BUY, SELL)
    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    remarks = Column(String(255), nullable=True)

    @property
    def identity(self) -> tuple:
        return (self.date, self.symbol, self.client_name, self.trade_type, self.quantity, self.price)

    def __repr__(self) -> str:
        return (
            f"<Trade(date={self.date}, client={self.client_name}, symbol={self.symbol}, "
            f"{self.trade_type} {self.quantity}@{self.price})>"
        )
