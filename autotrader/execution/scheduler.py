# autotrader/execution/scheduler.py
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

from autotrader.core.errors import TraderError
from autotrader.core.trading_config import TradingConfig
from autotrader.ops.market_hours import MarketHours
from autotrader.persistence.json_store import Clock, parse_ts, utc_now
from autotrader.persistence.state_store import StateStore
from autotrader.risk.daily import DailyCounters
from autotrader.risk.gate import RiskGate
from autotrader.runner.models import PendingBuy

log = logging.getLogger("autotrader.execution.scheduler")


@dataclass
class ScheduleDecision:
    allowed: bool
    reason: str = "ok"


@dataclass
class QueueResult:
    queued: bool
    reason: str
    execute_after: Optional[datetime] = None
    blocked: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "queued": self.queued,
            "reason": self.reason,
            "execute_after": self.execute_after.isoformat() if self.execute_after else None,
            "blocked": self.blocked,
        }


@dataclass
class PendingOutcome:
    symbol: str
    executed: bool
    reason: str
    result: Any = None

    def to_dict(self) -> Dict[str, Any]:
        res = self.result.to_dict() if hasattr(self.result, "to_dict") else self.result
        return {"symbol": self.symbol, "executed": self.executed, "reason": self.reason, "result": res}


class OrderScheduler:
    """
    Trade permission checks plus the delayed-buy queue.

    The buy delay is data: each PendingBuy carries `execute_after`, and
    `process_pending_buys` is called once per cycle to release matured entries.
    """

    def __init__(
        self,
        *,
        get_config: Callable[[], TradingConfig],
        store: StateStore,
        market_hours: MarketHours,
        clock: Clock = utc_now,
        defensive_symbols: Iterable[str] = (),
        buy_delay_seconds: int = 300,
        max_drawdown_percent: float = 3.0,
        gate=None,
    ):
        self.get_config = get_config
        self.store = store
        self.market_hours = market_hours
        self.clock = clock
        self.defensive_symbols = {s.upper() for s in defensive_symbols}
        self.buy_delay = timedelta(seconds=int(buy_delay_seconds))
        self.gate = gate
        self._lock = threading.Lock()

        self._daily = store.load_daily(self._today())
        self.pending: List[PendingBuy] = store.load_pending()
        self.risk = RiskGate(get_daily_state=lambda: self.daily, max_drawdown_percent=max_drawdown_percent)

    # ---------- daily counters ----------
    def _today(self):
        return self.market_hours.local_date(self.clock())

    @property
    def daily(self) -> DailyCounters:
        if self._daily.reset_if_new_day(self._today()):
            log.info("daily counters reset for %s", self._daily.day)
            self.store.save_daily(self._daily)
        return self._daily

    def save_daily(self) -> None:
        self.store.save_daily(self._daily)

    def record_trade(self, symbol: str, side: str) -> bool:
        """Count a trade against today's limits. Returns True for a same-day round trip."""
        cfg = self.get_config()
        daily = self.daily
        is_day_trade = daily.record_trade(symbol, side, self.clock())
        daily.prune_day_trades(cfg.day_trade_window)
        self.store.save_daily(daily)
        return is_day_trade

    # ---------- permissions ----------
    def is_defensive(self, symbol: str) -> bool:
        return symbol.upper() in self.defensive_symbols

    def early_buy_block(self, now: Optional[datetime] = None) -> Optional[str]:
        """Reason while the session is younger than `min_minutes_before_buy`."""
        now = now or self.clock()
        if not self.market_hours.status(now).open:
            return None
        since = self.market_hours.minutes_since_open(now)
        if since < self.get_config().min_minutes_before_buy:
            return f"Too early to buy — {since}m since open"
        return None

    def can_trade(self, symbol: str, side: str = "buy") -> ScheduleDecision:
        cfg = self.get_config()
        sym = symbol.upper()
        side = side.lower()
        now = self.clock()

        if not cfg.enabled:
            return ScheduleDecision(False, "Auto-trading not enabled")

        status = self.market_hours.status(now)
        if not status.open:
            return ScheduleDecision(False, f"Market closed: {status.reason}")

        if side == "buy":
            early = self.early_buy_block(now)
            if early:
                return ScheduleDecision(False, early)

        daily = self.daily
        if daily.trade_count >= cfg.max_daily_trades:
            return ScheduleDecision(False, "Daily trade limit reached")

        last = parse_ts(daily.last_trade_at.get(sym))
        if last is not None and cfg.cooldown_minutes > 0:
            if now - last < timedelta(minutes=cfg.cooldown_minutes):
                return ScheduleDecision(False, f"Cooldown active for {sym}")

        if sym in cfg.blacklist:
            return ScheduleDecision(False, f"{sym} is blacklisted")

        if cfg.watchlist and sym not in cfg.watchlist:
            return ScheduleDecision(False, f"{sym} not in watchlist")

        sides_today = daily.traded_today.get(sym, [])
        opposite = "sell" if side == "buy" else "buy"
        if opposite in sides_today:
            used = daily.day_trades_in_window(cfg.day_trade_window)
            if used >= cfg.max_day_trades:
                return ScheduleDecision(
                    False,
                    f"Day trade limit: {used} in last {cfg.day_trade_window} business days"
                    f" (max {cfg.max_day_trades})",
                )

        if side == "buy" and cfg.only_one_trade_per_ticker_per_day and sides_today:
            return ScheduleDecision(False, f"Already traded {sym} today")

        return ScheduleDecision(True)

    # ---------- queue ----------
    def request_buy(
        self, symbol: str, price: float, reason: str, market_positive: bool
    ) -> QueueResult:
        sym = symbol.upper()
        defensive = self.is_defensive(sym)

        if not market_positive and not defensive:
            return QueueResult(
                False,
                f"Market is negative - only defensive positions allowed. {sym} is not a defensive ETF.",
                blocked=True,
            )

        risk = self.risk.can_open(is_defensive=defensive)
        if not risk.allowed:
            return QueueResult(False, risk.reason, blocked=True)

        now = self.clock()
        with self._lock:
            if any(p.symbol == sym for p in self.pending):
                return QueueResult(False, "Already in queue")
            p = PendingBuy(
                symbol=sym,
                price=float(price),
                reason=reason,
                market_positive=bool(market_positive),
                queued_at=now,
                execute_after=now + self.buy_delay,
            )
            self.pending.append(p)
            self.store.save_pending(self.pending)

        log.info("queued BUY %s @ %.2f until %s", sym, price, p.execute_after.isoformat())
        return QueueResult(True, f"BUY {sym} queued until {p.execute_after.isoformat()}", p.execute_after)

    def process_pending_buys(self, execute: Callable[[PendingBuy], Any]) -> List[PendingOutcome]:
        """
        Release matured entries. Each is re-validated against the current market direction;
        non-defensive entries are cancelled when the market turned. `execute` returns an
        object with `success` and `reason`.
        """
        now = self.clock()
        with self._lock:
            ready = [p for p in self.pending if now >= p.execute_after]
            if not ready:
                return []
            self.pending = [p for p in self.pending if now < p.execute_after]
            self.store.save_pending(self.pending)

        out: List[PendingOutcome] = []
        for p in ready:
            positive = p.market_positive
            if self.gate is not None:
                positive = self.gate.benchmark_direction_now(fallback=p.market_positive)

            if not positive and not self.is_defensive(p.symbol):
                log.info("cancelling queued BUY %s: market turned negative", p.symbol)
                out.append(PendingOutcome(p.symbol, False, "Market turned negative"))
                continue

            try:
                res = execute(p)
            except TraderError as e:
                log.warning("queued BUY %s failed: %s", p.symbol, e)
                out.append(PendingOutcome(p.symbol, False, f"{type(e).__name__}: {e}"))
                continue
            ok = bool(getattr(res, "success", False))
            out.append(PendingOutcome(p.symbol, ok, getattr(res, "reason", ""), res))
        return out

    def pending_buys(self) -> List[Dict[str, Any]]:
        now = self.clock()
        out = []
        for p in self.pending:
            d = p.to_dict()
            d["remaining_seconds"] = max(0, round((p.execute_after - now).total_seconds()))
            out.append(d)
        return out

    def is_queued(self, symbol: str) -> bool:
        sym = symbol.upper()
        return any(p.symbol == sym for p in self.pending)

    def cancel_pending_buy(self, symbol: str) -> bool:
        sym = symbol.upper()
        with self._lock:
            before = len(self.pending)
            self.pending = [p for p in self.pending if p.symbol != sym]
            if len(self.pending) == before:
                return False
            self.store.save_pending(self.pending)
        return True
