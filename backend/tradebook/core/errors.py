"""
Error taxonomy for trade ingestion and holding reconciliation.

Row-level errors (validation, duplicates) are collected and reported to the
caller; they never abort a batch. TransactionFailure aborts the whole batch.
"""

from typing import Any, Optional


class TradebookError(Exception):
    """Base class for all tradebook errors."""


class TradeValidationError(TradebookError):
    """A trade row could not be parsed or is missing required fields."""

    def __init__(self, reason: str, row_number: Optional[int] = None, raw: Optional[dict] = None):
        super().__init__(reason)
        self.reason = reason
        self.row_number = row_number
        self.raw = raw or {}

    def to_dict(self) -> dict[str, Any]:
        return {"row": self.row_number, "reason": self.reason, "data": self.raw}


class DuplicateTradeError(TradebookError):
    """A trade with the same identity tuple is already stored."""

    def __init__(self, trade: Any, reason: str = "Duplicate entry found"):
        super().__init__(reason)
        self.trade = trade
        self.reason = reason

    def to_dict(self) -> dict[str, Any]:
        record = self.trade.to_dict() if hasattr(self.trade, "to_dict") else dict(self.trade)
        record["reason"] = self.reason
        return record


class ConsistencyError(TradebookError):
    """
    Ledger data disagrees with tracked holdings.

    Raised internally as a data-quality signal only; the reconciler records it
    and carries on.
    """

    def __init__(self, message: str, client_name: str, symbol: str):
        super().__init__(message)
        self.client_name = client_name
        self.symbol = symbol


class TransactionFailure(TradebookError):
    """A store-level failure rolled back the whole batch."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause

    @property
    def details(self) -> str:
        return str(self.cause) if self.cause is not None else str(self)


class AggregationUnavailable(TradebookError):
    """A ranking query failed; callers may retry."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause
