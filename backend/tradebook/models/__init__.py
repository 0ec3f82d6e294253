# Base
from tradebook.models.base import TimestampMixin, IdMixin

# Ledger
from tradebook.models.trade import Trade, TradeType

# Holdings
from tradebook.models.holding import Holding, HoldingStatus
from tradebook.models.initialization_status import InitializationStatus

__all__ = [
    "TimestampMixin",
    "IdMixin",
    "Trade",
    "TradeType",
    "Holding",
    "HoldingStatus",
    "InitializationStatus",
]
