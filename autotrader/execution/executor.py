from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from autotrader.core.errors import ExternalUnavailable, OrderValidationError, TraderError
from autotrader.core.trading_config import TradingConfig
from autotrader.exchange.ports import BrokerPort, NotificationPort
from autotrader.execution.scheduler import OrderScheduler
from autotrader.execution.trailing_stop import TrailingStopEngine
from autotrader.persistence.audit import Audit
from autotrader.persistence.json_store import Clock, to_iso, utc_now
from autotrader.persistence.trade_log import TradeLog
from autotrader.runner.models import Position, TradeRecord

log = logging.getLogger("autotrader.execution")

BUYING_POWER_BUFFER = 10.0
MIN_POSITION_BUDGET = 100.0
MIN_SHARES_ABOVE_PRICE = 50.0  # one share of anything pricier is too small a position


# =========================
# Sizing
# =========================
@dataclass
class SizeResult:
    qty: int
    budget: float
    reason: str
    details: Dict[str, Any] = field(default_factory=dict)


def size_from_budget(
    *,
    price: float,
    equity: float,
    buying_power: float,
    max_position_percent: float,
    fallback_budget: float,
) -> SizeResult:
    """
    budget = min(equity * pct, buying_power - 10), at least $100
    qty    = floor(budget / price), trimmed to what buying power covers
    """
    details = {
        "price": price,
        "equity": equity,
        "buying_power": buying_power,
        "max_position_percent": max_position_percent,
    }

    if buying_power < price:
        return SizeResult(
            0,
            0.0,
            f"Insufficient buying power (${buying_power:.2f} available, need ${price:.2f} minimum)",
            details,
        )

    budget = float(fallback_budget)
    if equity > 0 and max_position_percent:
        budget = min(equity * max_position_percent, buying_power - BUYING_POWER_BUFFER)
        budget = max(budget, MIN_POSITION_BUDGET)
    details["budget"] = budget

    qty = int(math.floor(budget / price))
    if qty < 1:
        return SizeResult(
            0, budget, f"Position size too small (budget ${budget:.2f}, price ${price:.2f})", details
        )

    cost = qty * price
    if cost > buying_power - BUYING_POWER_BUFFER:
        qty = int(math.floor((buying_power - BUYING_POWER_BUFFER) / price))
        if qty < 1:
            return SizeResult(
                0,
                budget,
                f"Insufficient buying power (${buying_power:.2f} available, order would cost ${cost:.2f})",
                details,
            )

    if qty < 2 and price > MIN_SHARES_ABOVE_PRICE:
        return SizeResult(
            0,
            budget,
            f"Position too small: only {qty} share of ${price:.2f} stock (need 2+ shares or cheaper entry)",
            details,
        )

    details["qty"] = qty
    return SizeResult(qty, budget, "ok", details)


def validate_order(price: Any, qty: Any) -> int:
    """Returns the integer quantity. Raises OrderValidationError."""
    try:
        p = float(price)
    except (TypeError, ValueError):
        raise OrderValidationError(f"Invalid price: {price}")
    if math.isnan(p) or p <= 0:
        raise OrderValidationError(f"Invalid price: {price}")

    try:
        q = float(qty)
    except (TypeError, ValueError):
        raise OrderValidationError(f"Invalid quantity: {qty}")
    if math.isnan(q) or q != int(q) or int(q) < 1:
        raise OrderValidationError(f"Invalid quantity: {qty}")
    return int(q)


# =========================
# Execution Result
# =========================
@dataclass
class ExecResult:
    success: bool
    symbol: str
    side: str
    reason: str
    trade: Optional[TradeRecord] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "symbol": self.symbol,
            "side": self.side,
            "reason": self.reason,
            "trade": self.trade.to_dict() if self.trade else None,
            "details": dict(self.details),
        }


# =========================
# Executor
# =========================
class OrderExecutor:
    """
    Single-attempt market orders through the broker port.
    After a fill: trade log, daily counters, notification, trailing stop.
    """

    def __init__(
        self,
        broker: BrokerPort,
        *,
        trade_log: TradeLog,
        scheduler: OrderScheduler,
        stops: TrailingStopEngine,
        get_config: Callable[[], TradingConfig],
        notifier: Optional[NotificationPort] = None,
        audit: Optional[Audit] = None,
        clock: Clock = utc_now,
    ):
        self.broker = broker
        self.trade_log = trade_log
        self.scheduler = scheduler
        self.stops = stops
        self.get_config = get_config
        self.notifier = notifier
        self.audit = audit
        self.clock = clock

    def _audit(self, event_type: str, symbol: str, action: str, details: dict) -> None:
        if self.audit is not None:
            self.audit.event(event_type=event_type, symbol=symbol, action=action, details=details)

    def _fail(self, symbol: str, side: str, reason: str, **details) -> ExecResult:
        log.info("%s %s rejected: %s", side.upper(), symbol, reason)
        self._audit("ORDER_REJECTED", symbol, side.upper(), {"reason": reason, **details})
        return ExecResult(False, symbol, side, reason, details=details)

    def _after_fill(self, trade: TradeRecord) -> None:
        self.trade_log.append(trade)
        is_day_trade = self.scheduler.record_trade(trade.symbol, trade.side)
        cfg = self.get_config()
        if cfg.notify_on_trade and self.notifier is not None:
            sent = self.notifier.notify_trade(trade)
            if not sent.get("sent"):
                log.warning("trade notification not sent for %s: %s", trade.symbol, sent.get("error"))
        self._audit(
            "TRADE",
            trade.symbol,
            trade.side.upper(),
            {**trade.to_dict(), "day_trade": is_day_trade},
        )

    # ---------------- BUY ----------------
    def buy(self, symbol: str, price: float, reason: str) -> ExecResult:
        sym = symbol.upper()
        try:
            validate_order(price, 1)
        except OrderValidationError as e:
            return self._fail(sym, "buy", str(e))
        price = float(price)

        allowed = self.scheduler.can_trade(sym, "buy")
        if not allowed.allowed:
            return self._fail(sym, "buy", allowed.reason)

        cfg = self.get_config()
        try:
            account = self.broker.get_account()
        except ExternalUnavailable as e:
            return self._fail(sym, "buy", f"Failed to check buying power: {e}")

        size = size_from_budget(
            price=price,
            equity=account.equity,
            buying_power=account.buying_power,
            max_position_percent=cfg.max_position_percent,
            fallback_budget=cfg.max_position_size,
        )
        if size.qty < 1:
            return self._fail(sym, "buy", size.reason, **size.details)

        try:
            qty = validate_order(price, size.qty)
            ack = self.broker.submit_market_order(sym, qty, "buy", ref_price=price)
        except TraderError as e:
            return self._fail(sym, "buy", f"{type(e).__name__}: {e}")

        trade = TradeRecord(
            id=ack.order_id,
            symbol=sym,
            side="buy",
            quantity=qty,
            price=price,
            reason=reason,
            status=ack.status,
            timestamp=to_iso(self.clock()),
            mode=cfg.mode,
        )
        self._after_fill(trade)

        try:
            self.stops.update(
                Position(symbol=sym, qty=qty, avg_entry_price=price, current_price=price, unrealized_plpc=0.0)
            )
        except (OSError, ValueError) as e:
            log.warning("failed to apply trailing stop for %s: %s", sym, e)

        log.info("BUY %s x%d @ %.2f (%s)", sym, qty, price, reason)
        return ExecResult(True, sym, "buy", reason, trade, size.details)

    # ---------------- SELL ----------------
    def sell(
        self,
        symbol: str,
        price: float,
        qty: Any,
        reason: str,
        *,
        cost_basis: Optional[float] = None,
    ) -> ExecResult:
        sym = symbol.upper()
        try:
            quantity = validate_order(price, qty)
        except OrderValidationError as e:
            return self._fail(sym, "sell", str(e))
        price = float(price)

        allowed = self.scheduler.can_trade(sym, "sell")
        if not allowed.allowed:
            return self._fail(sym, "sell", allowed.reason)

        try:
            ack = self.broker.submit_market_order(sym, quantity, "sell", ref_price=price)
        except TraderError as e:
            return self._fail(sym, "sell", f"{type(e).__name__}: {e}")

        buy_price = cost_basis
        if not buy_price:
            last = self.trade_log.last_buy(sym)
            buy_price = last.price if last and last.price > 0 else None

        cfg = self.get_config()
        trade = TradeRecord(
            id=ack.order_id,
            symbol=sym,
            side="sell",
            quantity=quantity,
            price=price,
            reason=reason,
            status=ack.status,
            timestamp=to_iso(self.clock()),
            mode=cfg.mode,
            buy_price=buy_price,
            pnl=round((price - buy_price) * quantity, 2) if buy_price else None,
            is_loss=(price < buy_price) if buy_price else False,
        )
        self._after_fill(trade)
        self.stops.remove(sym)

        log.info("SELL %s x%d @ %.2f (%s)", sym, quantity, price, reason)
        return ExecResult(True, sym, "sell", reason, trade)
