"""
Position reconciliation.

Folds a batch of trades into the holdings ledger by replaying them day by
day in chronological order:

- Same-day buy and sell of one symbol by one client is a short-term trade
  and is left out of holding accounting entirely.
- Buys extend the open holding with a quantity-weighted average cost, or
  open a new holding.
- Sells reduce the open holding; selling the whole remaining quantity (or
  more) closes it. Sells with no open holding are recorded as data-quality
  warnings and otherwise ignored.
- Trades dated before an open holding began are applied with a zero-day
  duration and recorded as data-quality warnings.

The reconciler never commits. Callers run it inside one transaction so a
failure leaves the store untouched.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable, Optional, Protocol

from tradebook.core.config import settings
from tradebook.core.errors import ConsistencyError
from tradebook.core.metrics import metrics
from tradebook.models.holding import Holding, HoldingStatus
from tradebook.models.trade import TradeType

logger = logging.getLogger(__name__)

AVERAGE_PRICE_QUANT = Decimal("0.000001")
PRICE_QUANT = Decimal("0.01")
PERCENT_QUANT = Decimal("0.01")


class HoldingStoreProtocol(Protocol):
    async def find_open_holding(self, client_name: str, symbol: str) -> Optional[Holding]: ...
    async def add_holding(self, holding: Holding) -> Holding: ...
    async def save_holding(self, holding: Holding) -> Holding: ...
    async def close_holding(
        self,
        holding: Holding,
        closed_date: date,
        closed_price: Decimal,
        gain_loss_percentage: Decimal,
        holding_duration: int,
    ) -> Holding: ...


@dataclass
class DayAggregate:
    """One side (buys or sells) of a client's activity in a symbol on one day."""
    quantity: int
    average_price: Decimal
    security_name: str


def _as_decimal(value: Any) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def aggregate_trades(trades: list[Any]) -> DayAggregate:
    """Total quantity and quantity-weighted average price."""
    quantity = sum(int(t.quantity) for t in trades)
    notional = sum((int(t.quantity) * _as_decimal(t.price) for t in trades), Decimal("0"))
    return DayAggregate(
        quantity=quantity,
        average_price=notional / quantity,
        security_name=trades[-1].security_name,
    )


def gain_loss_percentage(price: Decimal, cost_basis: Decimal) -> Decimal:
    cost_basis = _as_decimal(cost_basis)
    if cost_basis == 0:
        return Decimal("0.00")
    change = (_as_decimal(price) - cost_basis) / cost_basis * 100
    return change.quantize(PERCENT_QUANT, rounding=ROUND_HALF_UP)


def merged_average_price(
    old_quantity: int, old_average: Decimal, added_quantity: int, added_average: Decimal
) -> Decimal:
    new_quantity = old_quantity + added_quantity
    blended = (old_quantity * _as_decimal(old_average) + added_quantity * added_average) / new_quantity
    return blended.quantize(AVERAGE_PRICE_QUANT, rounding=ROUND_HALF_UP)


@dataclass
class ReconcileResult:
    created: int = 0
    extended: int = 0
    reduced: int = 0
    closed: int = 0
    netted: int = 0
    orphan_sells: int = 0
    backdated: int = 0
    long_term_changed: bool = False
    touched_symbols: set[str] = field(default_factory=set)
    consistency_warnings: list[ConsistencyError] = field(default_factory=list)

    @property
    def holdings_changed(self) -> bool:
        return (self.created + self.extended + self.reduced + self.closed) > 0

    def record(self, holding: Holding) -> None:
        self.touched_symbols.add(holding.symbol)
        self.touched_symbols.add(holding.security_name)
        if holding.is_long_term:
            self.long_term_changed = True

    def summary(self) -> dict[str, Any]:
        return {
            "holdings_created": self.created,
            "holdings_extended": self.extended,
            "holdings_reduced": self.reduced,
            "holdings_closed": self.closed,
            "same_day_netted": self.netted,
            "orphan_sells": self.orphan_sells,
            "backdated_trades": self.backdated,
            "holdings_changed": self.holdings_changed,
        }


class PositionReconciler:
    def __init__(
        self,
        store: HoldingStoreProtocol,
        long_term_threshold_days: Optional[int] = None,
        same_day_netting: Optional[bool] = None,
    ) -> None:
        self.store = store
        self.long_term_threshold_days = (
            settings.LONG_TERM_THRESHOLD_DAYS
            if long_term_threshold_days is None else long_term_threshold_days
        )
        self.same_day_netting = (
            settings.SAME_DAY_NETTING_ENABLED
            if same_day_netting is None else same_day_netting
        )

    async def reconcile(self, trades: Iterable[Any]) -> ReconcileResult:
        """Apply an unordered batch of trades to the holding store."""
        by_day: dict[date, dict[tuple[str, str], list[Any]]] = defaultdict(lambda: defaultdict(list))
        for trade in trades:
            by_day[trade.date][(trade.client_name, trade.symbol)].append(trade)

        result = ReconcileResult()
        for day in sorted(by_day):
            positions = by_day[day]
            for client_name, symbol in sorted(positions):
                await self._apply_day(day, client_name, symbol, positions[(client_name, symbol)], result)

        logger.info(
            "Reconciled %d trading day(s): %s",
            len(by_day), result.summary(),
        )
        return result

    async def _apply_day(
        self, day: date, client_name: str, symbol: str, trades: list[Any], result: ReconcileResult
    ) -> None:
        buys = [t for t in trades if t.trade_type == TradeType.BUY]
        sells = [t for t in trades if t.trade_type == TradeType.SELL]

        if buys and sells and self.same_day_netting:
            result.netted += 1
            metrics.holding_event("same_day_netted", client_name, symbol, 0, date=day)
            return

        if buys:
            await self._apply_buys(day, client_name, symbol, aggregate_trades(buys), result)
        if sells:
            await self._apply_sells(day, client_name, symbol, aggregate_trades(sells), result)

    def _check_backdated(self, holding: Holding, day: date, result: ReconcileResult) -> None:
        """Trades dated before the holding opened are applied as if on its first day."""
        if day >= holding.initial_buy_date:
            return
        warning = ConsistencyError(
            f"Trade on {day} predates open holding of {holding.symbol} for "
            f"{holding.client_name} started {holding.initial_buy_date}",
            client_name=holding.client_name,
            symbol=holding.symbol,
        )
        logger.warning("Backdated trade: %s", warning)
        result.consistency_warnings.append(warning)
        result.backdated += 1

    def _refresh_duration(self, holding: Holding, day: date) -> int:
        duration = max((day - holding.initial_buy_date).days, 0)
        holding.holding_duration = duration
        holding.is_long_term = duration > self.long_term_threshold_days
        return duration

    async def _apply_buys(
        self, day: date, client_name: str, symbol: str, buys: DayAggregate, result: ReconcileResult
    ) -> None:
        holding = await self.store.find_open_holding(client_name, symbol)

        if holding is None:
            holding = Holding(
                client_name=client_name,
                symbol=symbol,
                security_name=buys.security_name,
                initial_buy_date=day,
                quantity=buys.quantity,
                average_buy_price=buys.average_price.quantize(AVERAGE_PRICE_QUANT, rounding=ROUND_HALF_UP),
                latest_price=buys.average_price.quantize(PRICE_QUANT, rounding=ROUND_HALF_UP),
                status=HoldingStatus.HOLDING,
                gain_loss_percentage=Decimal("0.00"),
            )
            self._refresh_duration(holding, day)
            await self.store.add_holding(holding)
            result.created += 1
            metrics.holding_event("created", client_name, symbol, holding.quantity,
                                  price=holding.average_buy_price)
        else:
            self._check_backdated(holding, day, result)
            holding.average_buy_price = merged_average_price(
                holding.quantity, holding.average_buy_price, buys.quantity, buys.average_price
            )
            holding.quantity = holding.quantity + buys.quantity
            holding.latest_price = buys.average_price.quantize(PRICE_QUANT, rounding=ROUND_HALF_UP)
            holding.gain_loss_percentage = gain_loss_percentage(
                holding.latest_price, holding.average_buy_price
            )
            self._refresh_duration(holding, day)
            await self.store.save_holding(holding)
            result.extended += 1
            metrics.holding_event("extended", client_name, symbol, holding.quantity,
                                  average_buy_price=holding.average_buy_price)

        result.record(holding)

    async def _apply_sells(
        self, day: date, client_name: str, symbol: str, sells: DayAggregate, result: ReconcileResult
    ) -> None:
        holding = await self.store.find_open_holding(client_name, symbol)

        if holding is None:
            warning = ConsistencyError(
                f"Sell of {sells.quantity} {symbol} on {day} has no open holding for {client_name}",
                client_name=client_name,
                symbol=symbol,
            )
            logger.warning("Ignoring sell: %s", warning)
            result.consistency_warnings.append(warning)
            result.orphan_sells += 1
            metrics.holding_event("orphan_sell", client_name, symbol, sells.quantity, date=day)
            return

        self._check_backdated(holding, day, result)
        sell_price = sells.average_price.quantize(PRICE_QUANT, rounding=ROUND_HALF_UP)
        gain = gain_loss_percentage(sell_price, holding.average_buy_price)

        if sells.quantity >= holding.quantity:
            if sells.quantity > holding.quantity:
                logger.info(
                    "Sell of %d %s by %s exceeds tracked quantity %d; closing holding",
                    sells.quantity, symbol, client_name, holding.quantity,
                )
            duration = self._refresh_duration(holding, day)
            await self.store.close_holding(
                holding,
                closed_date=day,
                closed_price=sell_price,
                gain_loss_percentage=gain,
                holding_duration=duration,
            )
            result.closed += 1
            metrics.holding_event("closed", client_name, symbol, sells.quantity,
                                  gain_loss_percentage=gain, duration=duration)
        else:
            holding.quantity = holding.quantity - sells.quantity
            holding.latest_price = sell_price
            holding.gain_loss_percentage = gain
            self._refresh_duration(holding, day)
            await self.store.save_holding(holding)
            result.reduced += 1
            metrics.holding_event("reduced", client_name, symbol, holding.quantity,
                                  gain_loss_percentage=gain)

        result.record(holding)
