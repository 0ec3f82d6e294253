"""
Broker trade CSV parsing.

Broker exports vary in header wording ("Client Name" vs "CLIENT NAME",
"Quantity Traded", "Buy/Sell", ...), so columns are matched by
case-insensitive substring. Rows that cannot be turned into a trade are
returned as TradeValidationError records instead of raising.
"""
import io
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

import pandas as pd

from tradebook.core.errors import TradeValidationError
from tradebook.models.trade import Trade, TradeType

logger = logging.getLogger(__name__)

# (header substring, field)
HEADER_MAP = (
    ("date", "date"),
    ("symbol", "symbol"),
    ("security name", "security_name"),
    ("client name", "client_name"),
    ("buy", "trade_type"),
    ("quantity", "quantity"),
    ("trade price", "price"),
    ("remarks", "remarks"),
)

REQUIRED_FIELDS = ("date", "symbol", "security_name", "client_name", "trade_type", "quantity", "price")

DATE_FORMATS = ("%Y-%m-%d", "%d-%b-%Y", "%d-%b-%y", "%d/%m/%Y", "%d-%m-%Y", "%Y/%m/%d")

TRADE_TYPE_ALIASES = {
    "BUY": TradeType.BUY,
    "B": TradeType.BUY,
    "SELL": TradeType.SELL,
    "S": TradeType.SELL,
}


@dataclass(frozen=True)
class TradeRow:
    """A validated trade, not yet persisted."""
    date: date
    symbol: str
    security_name: str
    client_name: str
    trade_type: str
    quantity: int
    price: Decimal
    remarks: Optional[str] = None

    @property
    def identity(self) -> tuple:
        return (self.date, self.symbol, self.client_name, self.trade_type, self.quantity, self.price)

    def to_model(self) -> Trade:
        return Trade(
            date=self.date,
            symbol=self.symbol,
            security_name=self.security_name,
            client_name=self.client_name,
            trade_type=self.trade_type,
            quantity=self.quantity,
            price=self.price,
            remarks=self.remarks,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "symbol": self.symbol,
            "security_name": self.security_name,
            "client_name": self.client_name,
            "trade_type": self.trade_type,
            "quantity": self.quantity,
            "price": str(self.price),
            "remarks": self.remarks,
        }


@dataclass
class ParsedUpload:
    rows: list[TradeRow] = field(default_factory=list)
    invalid: list[TradeValidationError] = field(default_factory=list)
    skipped_empty: int = 0


def map_headers(columns: list[str]) -> dict[str, str]:
    """Map raw header names to field names; first matching column wins."""
    mapping: dict[str, str] = {}
    for needle, field_name in HEADER_MAP:
        for column in columns:
            if column not in mapping and needle in column.lower():
                mapping[column] = field_name
                break
    return mapping


def parse_trade_date(value: str) -> Optional[date]:
    value = value.strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    return None


def parse_quantity(value: str) -> int:
    try:
        quantity = Decimal(value.replace(",", "").strip())
    except InvalidOperation:
        raise TradeValidationError(f"Quantity is not numeric: {value!r}")
    if not quantity.is_finite() or quantity != quantity.to_integral_value() or quantity <= 0:
        raise TradeValidationError(f"Quantity must be a positive whole number: {value!r}")
    return int(quantity)


def parse_price(value: str) -> Decimal:
    try:
        price = Decimal(value.replace(",", "").strip())
    except InvalidOperation:
        raise TradeValidationError(f"Trade price is not numeric: {value!r}")
    if not price.is_finite() or price <= 0:
        raise TradeValidationError(f"Trade price must be positive: {value!r}")
    return price.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _clean(value: Any) -> str:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return ""
    return str(value).strip()


def parse_trade_record(record: dict[str, Any], row_number: Optional[int] = None) -> Optional[TradeRow]:
    """
    Validate one mapped CSV record.

    Returns None for an entirely empty row; raises TradeValidationError for
    anything else that is not a usable trade.
    """
    values = {name: _clean(record.get(name)) for name in REQUIRED_FIELDS + ("remarks",)}
    if not any(values.values()):
        return None

    try:
        missing = [name for name in REQUIRED_FIELDS if not values[name]]
        if missing:
            raise TradeValidationError(f"Missing required fields: {', '.join(missing)}")

        trade_date = parse_trade_date(values["date"])
        if trade_date is None:
            raise TradeValidationError(f"Unparseable date: {values['date']!r}")

        trade_type = TRADE_TYPE_ALIASES.get(values["trade_type"].upper())
        if trade_type is None:
            raise TradeValidationError(f"Unknown trade type: {values['trade_type']!r}")

        return TradeRow(
            date=trade_date,
            symbol=values["symbol"],
            security_name=values["security_name"],
            client_name=values["client_name"],
            trade_type=trade_type,
            quantity=parse_quantity(values["quantity"]),
            price=parse_price(values["price"]),
            remarks=values["remarks"] or None,
        )
    except TradeValidationError as e:
        e.row_number = row_number
        e.raw = values
        raise


def parse_trade_csv(content: bytes) -> ParsedUpload:
    """
    Parse an uploaded CSV into validated rows.

    Raises ValueError (pandas parser errors included) when the file itself is
    unreadable.
    """
    df = pd.read_csv(
        io.BytesIO(content),
        dtype=str,
        keep_default_na=False,
        skipinitialspace=True,
        encoding="utf-8-sig",
    )
    df.columns = [str(column).strip().replace("\n", "").replace("\r", "") for column in df.columns]
    mapping = map_headers(list(df.columns))
    absent = [name for name in REQUIRED_FIELDS if name not in mapping.values()]
    if absent:
        raise ValueError(f"CSV is missing required columns: {', '.join(absent)}")
    df = df.rename(columns=mapping)

    parsed = ParsedUpload()
    # Header is line 1
    for row_number, record in enumerate(df.to_dict(orient="records"), start=2):
        try:
            row = parse_trade_record(record, row_number)
        except TradeValidationError as e:
            logger.info("Skipping row %d: %s", row_number, e.reason)
            parsed.invalid.append(e)
            continue
        if row is None:
            parsed.skipped_empty += 1
            continue
        parsed.rows.append(row)

    logger.info(
        "Parsed %d trade rows (%d invalid, %d empty)",
        len(parsed.rows), len(parsed.invalid), parsed.skipped_empty,
    )
    return parsed
