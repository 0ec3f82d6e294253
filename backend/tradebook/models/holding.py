from sqlalchemy import Column, String, Date, Integer, Numeric, Boolean, Index, text
from tradebook.core.database import Base
from tradebook.models.base import IdMixin, TimestampMixin


class HoldingStatus:
    HOLDING = "HOLDING"
    CLOSED = "CLOSED"


class Holding(Base, IdMixin, TimestampMixin):
    """
    One continuous ownership position of a symbol by a client.

    At most one HOLDING row exists per (client_name, symbol). CLOSED rows are
    terminal; a buy after a close starts a new row.
    """
    __tablename__ = "holdings"
    __table_args__ = (
        Index(
            "uq_holdings_open", "client_name", "symbol",
            unique=True,
            postgresql_where=text("status = 'HOLDING'"),
            sqlite_where=text("status = 'HOLDING'"),
        ),
        Index("ix_holdings_client_symbol_status", "client_name", "symbol", "status"),
        Index("ix_holdings_status_gain_loss", "status", "gain_loss_percentage"),
    )

    client_name = Column(String(255), nullable=False, index=True)
    symbol = Column(String(50), nullable=False)
    security_name = Column(String(255), nullable=False)
    initial_buy_date = Column(Date, nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    average_buy_price = Column(Numeric(18, 6), nullable=False)
    latest_price = Column(Numeric(12, 2), nullable=False)
    status = Column(String(10), nullable=False, default=HoldingStatus.HOLDING, index=True)
    is_long_term = Column(Boolean, nullable=False, default=False)
    gain_loss_percentage = Column(Numeric(10, 2), nullable=False, default=0)
    holding_duration = Column(Integer, nullable=False, default=0)  # days
    closed_date = Column(Date, nullable=True)
    closed_price = Column(Numeric(12, 2), nullable=True)

    @property
    def is_open(self) -> bool:
        return self.status == HoldingStatus.HOLDING

    def __repr__(self) -> str:
        return (
            f"<Holding(client={self.client_name}, symbol={self.symbol}, qty={self.quantity}, "
            f"avg={self.average_buy_price}, status={self.status})>"
        )
