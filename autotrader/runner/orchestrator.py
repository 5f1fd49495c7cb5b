# autotrader/runner/orchestrator.py
from __future__ import annotations

import logging
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from autotrader.core.config import Settings, settings as default_settings
from autotrader.core.errors import TraderError
from autotrader.core.trading_config import TradingConfig, TradingConfigStore
from autotrader.exchange.ports import BrokerPort, MarketDataPort, NotificationPort
from autotrader.execution.executor import ExecResult, OrderExecutor
from autotrader.execution.scheduler import OrderScheduler
from autotrader.execution.trailing_stop import TrailingStopEngine
from autotrader.ops.context import clear_cycle_id, set_actor, set_cycle_id
from autotrader.ops.market_hours import MarketHours
from autotrader.persistence.audit import Audit
from autotrader.persistence.json_store import Clock, utc_now
from autotrader.persistence.state_store import StateStore
from autotrader.persistence.trade_log import TradeLog
from autotrader.policy.signals import SignalEvaluator
from autotrader.risk.anti_churn import AntiChurnGuard
from autotrader.risk.market_gate import GateDecision, MarketDirectionGate
from autotrader.runner.models import PendingBuy, Position, Ticker, TradeRecord
from autotrader.strategy.momentum import MomentumTracker
from autotrader.strategy.scorer import TickerScorer, rank_tickers

log = logging.getLogger("autotrader.runner")

TOP_N_BUYS = 3
TOP_SUMMARY = 5
MOMENTUM_LABELS = {"drift": "momentum drift", "score": "score drop", "stagnant": "stagnant position"}


@dataclass
class CycleResult:
    monitored: bool = False
    market_open: bool = False
    market_positive: Optional[bool] = None
    market_direction: Optional[Dict[str, Any]] = None
    effective_buy_threshold: Optional[float] = None
    buy_signals: List[Dict[str, Any]] = field(default_factory=list)
    sell_signals: List[Dict[str, Any]] = field(default_factory=list)
    executed: List[TradeRecord] = field(default_factory=list)
    skipped: List[Dict[str, str]] = field(default_factory=list)
    protected: List[Dict[str, Any]] = field(default_factory=list)
    queued: List[Dict[str, Any]] = field(default_factory=list)
    pending_processed: List[Dict[str, Any]] = field(default_factory=list)
    reasoning: List[str] = field(default_factory=list)
    cycle_id: Optional[str] = None
    cycle_skipped: bool = False
    reason: str = ""

    def sells(self) -> int:
        return sum(1 for t in self.executed if t.side == "sell")

    def buys(self) -> int:
        return sum(1 for t in self.executed if t.side == "buy")

    def sold(self, symbol: str) -> bool:
        return any(t.side == "sell" and t.symbol == symbol for t in self.executed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "monitored": self.monitored,
            "market_open": self.market_open,
            "market_positive": self.market_positive,
            "market_direction": self.market_direction,
            "effective_buy_threshold": self.effective_buy_threshold,
            "buy_signals": self.buy_signals,
            "sell_signals": self.sell_signals,
            "executed": [t.to_dict() for t in self.executed],
            "skipped": self.skipped,
            "protected": self.protected,
            "queued": self.queued,
            "pending_processed": self.pending_processed,
            "reasoning": self.reasoning,
            "cycle_id": self.cycle_id,
            "cycle_skipped": self.cycle_skipped,
            "reason": self.reason,
        }


def _as_tickers(rows: Iterable[Union[Ticker, Dict[str, Any]]]) -> List[Ticker]:
    out = []
    for r in rows or []:
        t = r if isinstance(r, Ticker) else Ticker.from_dict(r)
        if t.symbol:
            out.append(t)
    return out


def _as_positions(rows: Iterable[Union[Position, Dict[str, Any]]]) -> List[Position]:
    out = []
    for r in rows or []:
        p = r if isinstance(r, Position) else Position.from_dict(r)
        if p.symbol:
            out.append(p)
    return out


class TradingOrchestrator:
    """
    One decision cycle over scored tickers and open positions.

    All mutable engine state lives on this instance and every mutation
    (cycle, manual trade, config update) runs under one lock.
    """

    def __init__(
        self,
        *,
        broker: BrokerPort,
        market_data: MarketDataPort,
        notifier: Optional[NotificationPort] = None,
        app_settings: Optional[Settings] = None,
        audit: Optional[Audit] = None,
        clock: Clock = utc_now,
        market_hours: Optional[MarketHours] = None,
    ):
        s = app_settings or default_settings
        self.settings = s
        self.clock = clock
        self.broker = broker
        self.notifier = notifier
        self._lock = threading.Lock()

        self.market_hours = market_hours or MarketHours(s.MARKET_TIMEZONE)
        self.audit = audit or Audit(s.AUDIT_JSONL_PATH)
        self.config_store = TradingConfigStore(s.DATA_DIR)
        self.trade_log = TradeLog(s.DATA_DIR, s.TRADE_LOG_MAX_RECORDS)
        self.store = StateStore(s.DATA_DIR)

        self.scorer = TickerScorer(clock, s.MARKET_TIMEZONE)
        self.momentum = MomentumTracker(s.DATA_DIR, clock, s.MARKET_TIMEZONE)
        self.anti_churn = AntiChurnGuard(
            self.trade_log,
            clock,
            min_hold_days=s.MIN_HOLD_DAYS,
            max_rotations_per_week=s.MAX_ROTATIONS_PER_WEEK,
            wash_sale_days=s.WASH_SALE_DAYS,
            repeat_loser_window_days=s.REPEAT_LOSER_WINDOW_DAYS,
            repeat_loser_threshold=s.REPEAT_LOSER_THRESHOLD,
            repeat_loser_block_days=s.REPEAT_LOSER_BLOCK_DAYS,
        )
        self.signals = SignalEvaluator(self.get_config, self.anti_churn)
        self.gate = MarketDirectionGate(
            market_data,
            self.market_hours,
            self.get_config,
            clock,
            symbol=s.BENCHMARK_SYMBOL,
            cache_ttl_seconds=s.BENCHMARK_CACHE_TTL_SECONDS,
        )
        self.scheduler = OrderScheduler(
            get_config=self.get_config,
            store=self.store,
            market_hours=self.market_hours,
            clock=clock,
            defensive_symbols=s.DEFENSIVE_SYMBOLS,
            buy_delay_seconds=s.BUY_DELAY_SECONDS,
            max_drawdown_percent=s.MAX_DAILY_DRAWDOWN_PERCENT,
            gate=self.gate,
        )
        self.stops = TrailingStopEngine(
            self.store,
            clock,
            self.market_hours,
            alert_threshold_percent=self.get_config().alert_threshold_percent,
        )
        self.executor = OrderExecutor(
            broker,
            trade_log=self.trade_log,
            scheduler=self.scheduler,
            stops=self.stops,
            get_config=self.get_config,
            notifier=notifier,
            audit=self.audit,
            clock=clock,
        )
        self.last_cycle: Optional[CycleResult] = None

    def get_config(self) -> TradingConfig:
        return self.config_store.get()

    @contextmanager
    def cycle_guard(self, blocking: bool = False):
        """Prevent overlapping cycles / admin mutations. Yields whether the lock was taken."""
        acquired = self._lock.acquire(blocking=blocking)
        try:
            yield acquired
        finally:
            if acquired:
                self._lock.release()

    def _signal(self, cfg: TradingConfig, action: str, symbol: str, detail: str) -> None:
        if not cfg.notify_on_signal or self.notifier is None:
            return
        sent = self.notifier.notify_signal(action, symbol, detail)
        if not sent.get("sent"):
            log.warning("signal notification not sent for %s: %s", symbol, sent.get("error"))

    def _error(self, result: CycleResult, step: str, e: Exception, symbol: Optional[str] = None) -> None:
        log.exception("cycle step %s failed: %s", step, e)
        self.audit.event(
            event_type="ERROR",
            symbol=symbol,
            action=step.upper(),
            details={"error": f"{type(e).__name__}: {e}"},
        )
        result.reasoning.append(f"ERROR in {step}: {type(e).__name__}: {e}")

    # =========================
    # Cycle
    # =========================
    def run_cycle(
        self,
        tickers: Sequence[Union[Ticker, Dict[str, Any]]],
        positions: Optional[Sequence[Union[Position, Dict[str, Any]]]] = None,
    ) -> CycleResult:
        with self.cycle_guard() as acquired:
            if not acquired:
                self.audit.event(
                    event_type="CYCLE_SKIPPED",
                    action="CYCLE_ALREADY_RUNNING",
                    details={"note": "Previous cycle still running"},
                )
                return CycleResult(cycle_skipped=True, reason="cycle_already_running")

            cycle_id = str(uuid.uuid4())
            set_cycle_id(cycle_id)
            set_actor("engine")
            try:
                result = self._run_cycle(_as_tickers(tickers), positions, cycle_id)
                self.last_cycle = result
                return result
            finally:
                clear_cycle_id()

    def _run_cycle(
        self,
        tickers: List[Ticker],
        positions_in: Optional[Sequence[Union[Position, Dict[str, Any]]]],
        cycle_id: str,
    ) -> CycleResult:
        cfg = self.get_config()
        now = self.clock()
        result = CycleResult(cycle_id=cycle_id)

        # 1) enabled + market open
        if not cfg.enabled:
            result.reason = "Auto-trading disabled"
            result.reasoning.append("Auto-trading disabled")
            return result

        market = self.market_hours.status(now)
        if not market.open:
            result.reason = market.reason
            result.reasoning.append(f"Market closed: {market.reason}")
            return result

        result.monitored = True
        result.market_open = True
        self.audit.event(
            event_type="CYCLE_START",
            cycle_id=cycle_id,
            details={"tickers": len(tickers), "mode": cfg.mode, "gate_mode": cfg.market_gate_mode},
        )

        by_symbol = {t.symbol: t for t in tickers}
        mark_all = getattr(self.broker, "mark_all", None)
        if callable(mark_all):
            # paper broker: price positions at this cycle's quotes
            mark_all({t.symbol: t.price for t in tickers if t.price})

        # 2) daily reset + drawdown breaker
        try:
            account = self.broker.get_account()
            risk = self.scheduler.risk.refresh(account.equity)
            self.scheduler.save_daily()
            if risk.breaker:
                result.reasoning.append(f"CIRCUIT BREAKER: {risk.reason}")
        except TraderError as e:
            self._error(result, "drawdown_check", e)

        if positions_in is None:
            try:
                positions = self.broker.get_positions()
            except TraderError as e:
                self._error(result, "get_positions", e)
                result.reasoning.append("RESULT: No trades — positions unavailable")
                return result
        else:
            positions = _as_positions(positions_in)

        # 3) matured pending buys
        for outcome in self.scheduler.process_pending_buys(
            lambda p: self._execute_pending(p, by_symbol)
        ):
            result.pending_processed.append(outcome.to_dict())
            res = outcome.result
            if outcome.executed and isinstance(res, ExecResult) and res.trade:
                result.executed.append(res.trade)
                result.reasoning.append(f"EXECUTED QUEUED BUY {outcome.symbol}: {res.reason}")
            else:
                result.skipped.append({"symbol": outcome.symbol, "reason": outcome.reason})
                result.reasoning.append(f"CANCELLED QUEUED BUY {outcome.symbol}: {outcome.reason}")

        # 4) market direction
        bench = self.gate.symbol
        bench_ticker = by_symbol.get(bench)
        bench_change = (bench_ticker.change_percent if bench_ticker else None) or 0.0
        decision = self.gate.check(bench_change)
        market_positive = decision.allow
        threshold = self.signals.buy_threshold(market_positive)
        result.market_positive = market_positive
        result.market_direction = decision.to_dict()
        result.effective_buy_threshold = threshold
        self.audit.event(event_type="MARKET_GATE", symbol=bench, action=decision.method, details=decision.to_dict())

        # 5) score + rank
        ranked = rank_tickers(tickers, self.scorer)
        scored = {t.symbol: s for t, s in ranked}
        held = [p.symbol for p in positions]
        candidates = [t.symbol for t, s in ranked if s >= threshold]
        if cfg.only_top3:
            candidates = candidates[:TOP_N_BUYS]

        self._direction_lines(result, decision, bench_change, threshold)
        result.reasoning.append(
            f"Positions: {len(positions)}/{cfg.max_total_positions} ({', '.join(held) or 'none'})"
        )
        top = ", ".join(
            f"{t.symbol} {s:.1f}{' (held)' if t.symbol in held else ''}" for t, s in ranked[:TOP_SUMMARY]
        )
        result.reasoning.append(f"Top scores: {top or 'none'}")
        if candidates:
            result.reasoning.append(f"Buy candidates (score >= {threshold}): {', '.join(candidates)}")
        else:
            result.reasoning.append(f"No tickers above buy threshold {threshold} — no buys possible")

        pos_by_symbol = {p.symbol: p for p in positions}

        # 6) momentum drift / stagnation
        try:
            self._momentum_sells(result, cfg, held, scored, by_symbol, pos_by_symbol)
        except Exception as e:
            # never kill the cycle for one step
            self._error(result, "momentum_sells", e)

        # 7) trailing stop triggers, then standard sells
        try:
            self._stop_sells(result, positions)
        except Exception as e:
            self._error(result, "trailing_stop_sells", e)

        for p in positions:
            if result.sold(p.symbol):
                continue
            t = by_symbol.get(p.symbol)
            if t is None or p.symbol not in scored:
                continue
            try:
                self._evaluate_sell(result, cfg, t, scored[p.symbol], p)
            except Exception as e:
                self._error(result, "evaluate_sell", e, p.symbol)

        # 8) rotation + buys
        rotation = self.anti_churn.check_rotation_frequency()
        if not rotation.allowed:
            result.reasoning.append(f"ROTATION LIMIT: {rotation.reason}")

        if decision.allow and rotation.allowed:
            self._buys(result, cfg, ranked, candidates, threshold, market_positive, positions)
        else:
            if not decision.allow:
                result.reasoning.append(f"{bench} BLOCK: {decision.reason} — all buys skipped")
            if not rotation.allowed:
                result.reasoning.append(f"ROTATION BLOCK: {rotation.reason} — all buys skipped")
            if candidates:
                result.reasoning.append(f"Blocked candidates: {', '.join(candidates)}")

        # 9) trailing stop refresh for positions still held
        try:
            still_held = [p for p in positions if not result.sold(p.symbol)]
            self.stops.update_all(still_held)
        except Exception as e:
            self._error(result, "trailing_stop_refresh", e)

        # 10) momentum snapshot
        try:
            self.momentum.record_snapshot(tickers)
        except OSError as e:
            self._error(result, "momentum_snapshot", e)

        # 11) result line
        self._result_line(result)
        self.audit.event(
            event_type="CYCLE_END",
            cycle_id=cycle_id,
            details={
                "executed": [f"{t.side.upper()} {t.symbol}" for t in result.executed],
                "queued": [q["symbol"] for q in result.queued],
                "skipped": len(result.skipped),
                "market_positive": market_positive,
            },
        )
        return result

    # ---------- cycle steps ----------
    def _direction_lines(
        self, result: CycleResult, d: GateDecision, change: float, threshold: float
    ) -> None:
        bench = self.gate.symbol
        if d.timeframe_summary:
            result.reasoning.append(f"{bench} {change:+.2f}% daily | Intraday: {d.timeframe_summary}")
            verdict = "ALLOW" if d.allow else "BLOCK"
            result.reasoning.append(
                f"{bench} direction: {d.reason} → {verdict} buys (threshold = {threshold})"
            )
        else:
            word = "positive" if d.allow else "negative"
            result.reasoning.append(f"{bench} {word} ({change:+.2f}%) → buy threshold = {threshold}")

    def _execute_pending(self, p: PendingBuy, by_symbol: Dict[str, Ticker]) -> ExecResult:
        t = by_symbol.get(p.symbol)
        price = t.price if t is not None and t.price else p.price
        return self.executor.buy(p.symbol, price, p.reason)

    def _sell(
        self,
        result: CycleResult,
        p: Position,
        price: Optional[float],
        reason: str,
        label: str,
    ) -> bool:
        res = self.executor.sell(p.symbol, price or p.current_price, p.qty, reason)
        if res.success and res.trade:
            result.executed.append(res.trade)
            result.reasoning.append(f"EXECUTED SELL {p.symbol}: {label}")
            return True
        result.skipped.append({"symbol": p.symbol, "reason": res.reason})
        result.reasoning.append(f"FAILED SELL {p.symbol}: {res.reason}")
        return False

    def _momentum_sells(
        self,
        result: CycleResult,
        cfg: TradingConfig,
        held: List[str],
        scored: Dict[str, float],
        by_symbol: Dict[str, Ticker],
        pos_by_symbol: Dict[str, Position],
    ) -> None:
        sells = []
        if cfg.momentum_drift_sells:
            sells += self.momentum.drift_sells(
                held,
                scored,
                by_symbol,
                threshold=cfg.drift_threshold,
                score_cutoff=cfg.drift_sell_score_cutoff,
                sell_threshold=cfg.sell_threshold,
            )
        if cfg.stagnation_sells:
            already = {s.symbol for s in sells}
            sells += [
                s
                for s in self.momentum.stagnation_sells(
                    held, scored, by_symbol, score_cutoff=cfg.stagnation_score_cutoff
                )
                if s.symbol not in already
            ]

        for s in sells:
            if result.sold(s.symbol):
                continue
            p = pos_by_symbol.get(s.symbol)
            if p is None:
                continue
            label = MOMENTUM_LABELS.get(s.kind, s.kind)
            hold = self.anti_churn.check_hold_period(s.symbol)
            if not hold.can_sell:
                result.reasoning.append(f"HOLD {s.symbol}: {label} detected BUT {hold.reason}")
                continue
            result.sell_signals.append(
                {"action": s.kind.upper(), "symbol": s.symbol, "score": s.score, "signals": [s.reason]}
            )
            self._signal(cfg, s.kind.upper(), s.symbol, s.reason)
            t = by_symbol.get(s.symbol)
            self._sell(result, p, t.price if t else None, f"MOMENTUM: {s.reason}", f"{label} — {s.reason}")

    def _stop_sells(self, result: CycleResult, positions: List[Position]) -> None:
        for trig in self.stops.check_stop_triggers(positions):
            if result.sold(trig.symbol):
                continue
            p = next(x for x in positions if x.symbol == trig.symbol)
            hold = self.anti_churn.check_hold_period(trig.symbol, is_trailing_stop=True)
            result.sell_signals.append(
                {"action": "TRAILING_STOP", "symbol": trig.symbol, "signals": [trig.reason, hold.reason]}
            )
            self._sell(result, p, trig.current_price, f"TRAILING STOP: {trig.reason}", trig.reason)

    def _evaluate_sell(
        self, result: CycleResult, cfg: TradingConfig, t: Ticker, score: float, p: Position
    ) -> None:
        ev = self.signals.evaluate_sell(t, score, p)
        if ev.should_sell:
            hold = self.anti_churn.check_hold_period(t.symbol, is_extreme_sell=ev.is_extreme)
            if not hold.can_sell:
                result.reasoning.append(f"HOLD {t.symbol}: sell signal (score {score:.1f}) BUT {hold.reason}")
                return
            result.sell_signals.append(
                {"action": ev.action.value, "symbol": t.symbol, "score": score, "signals": ev.signals}
            )
            prefix = ("EXTREME: " if ev.is_extreme else "") + ("TECH OVERRIDE: " if ev.is_technical_override else "")
            text = ", ".join(ev.signals)
            self._signal(cfg, ev.action.value, t.symbol, text)
            self._sell(result, p, t.price, f"{prefix}{text}", text)
        elif ev.is_protected:
            result.protected.append({"symbol": p.symbol, "pl_percent": ev.pl_percent, "score": score})
            result.reasoning.append(
                f"HOLD {p.symbol}: protected position ({ev.pl_percent:+.1f}%), score {score:.1f}"
            )
        else:
            result.reasoning.append(
                f"HOLD {p.symbol}: score {score:.1f} > sell threshold {cfg.sell_threshold}"
                f" (P/L {ev.pl_percent:+.1f}%)"
            )

    def _buys(
        self,
        result: CycleResult,
        cfg: TradingConfig,
        ranked,
        candidates: List[str],
        threshold: float,
        market_positive: bool,
        positions: List[Position],
    ) -> None:
        held = {p.symbol for p in positions} | {t.symbol for t in result.executed if t.side == "buy"}
        for t, score in ranked:
            if t.symbol in cfg.blacklist:
                if score >= threshold:
                    result.reasoning.append(f"SKIP {t.symbol}: blacklisted (score {score:.1f})")
                continue
            if cfg.watchlist and t.symbol not in cfg.watchlist:
                continue
            if t.symbol in held:
                continue
            if t.symbol not in candidates:
                if score >= threshold:
                    result.reasoning.append(
                        f"SKIP BUY {t.symbol}: score {score:.1f} qualifies but not in top {TOP_N_BUYS}"
                    )
                continue

            ev = self.signals.evaluate_buy(t, score, market_positive, positions)
            if not ev.should_buy:
                result.reasoning.append(f"NO BUY {t.symbol}: {', '.join(ev.signals)}")
                continue
            result.buy_signals.append(
                {"action": ev.action.value, "symbol": t.symbol, "score": score, "signals": ev.signals}
            )

            count = len(positions) - result.sells() + result.buys() + len(result.queued)
            if count >= cfg.max_total_positions:
                reason = f"Position limit reached ({count}/{cfg.max_total_positions})"
                result.skipped.append({"symbol": t.symbol, "reason": reason})
                result.reasoning.append(
                    f"SKIP BUY {t.symbol}: position limit {count}/{cfg.max_total_positions} (score {score:.1f})"
                )
                continue

            if not t.price:
                result.skipped.append({"symbol": t.symbol, "reason": "No price"})
                result.reasoning.append(f"SKIP BUY {t.symbol}: no price")
                continue

            allowed = self.scheduler.can_trade(t.symbol, "buy")
            if not allowed.allowed:
                result.skipped.append({"symbol": t.symbol, "reason": allowed.reason})
                result.reasoning.append(f"SKIP BUY {t.symbol}: {allowed.reason}")
                continue

            rank = candidates.index(t.symbol) + 1
            reason = f"{'EXTREME: ' if ev.is_extreme else ''}Top {rank}: {', '.join(ev.signals)}"
            q = self.scheduler.request_buy(t.symbol, t.price, reason, market_positive)
            if q.queued:
                result.queued.append({"symbol": t.symbol, "score": score, **q.to_dict()})
                result.reasoning.append(f"QUEUED BUY {t.symbol}: {q.reason}")
                self.audit.event(event_type="BUY_QUEUED", symbol=t.symbol, action="QUEUE", details=q.to_dict())
                self._signal(cfg, ev.action.value, t.symbol, q.reason)
            else:
                result.skipped.append({"symbol": t.symbol, "reason": q.reason})
                word = "BLOCKED" if q.blocked else "SKIP"
                result.reasoning.append(f"{word} BUY {t.symbol}: {q.reason}")

    def _result_line(self, result: CycleResult) -> None:
        if result.executed:
            trades = ", ".join(f"{t.side.upper()} {t.symbol}" for t in result.executed)
            result.reasoning.append(f"RESULT: Executed {len(result.executed)} trade(s) — {trades}")
        elif result.queued:
            names = ", ".join(q["symbol"] for q in result.queued)
            result.reasoning.append(f"RESULT: No trades — {len(result.queued)} buy(s) queued: {names}")
        elif result.buy_signals or result.sell_signals:
            result.reasoning.append(
                "RESULT: No trades — signals detected but execution blocked (hold period, limits, or order failed)"
            )
        else:
            result.reasoning.append("RESULT: No trades — no signals met buy/sell thresholds")

    # =========================
    # Admin surface
    # =========================
    def status(self) -> Dict[str, Any]:
        now = self.clock()
        cfg = self.get_config()
        daily = self.scheduler.daily
        rotation = self.anti_churn.check_rotation_frequency()
        return {
            "enabled": cfg.enabled,
            "mode": cfg.mode,
            "execution_mode": self.settings.EXECUTION_MODE,
            "market": self.market_hours.status(now).to_dict(),
            "next_evaluation": self.next_evaluation(),
            "config": cfg.model_dump(),
            "daily": daily.to_dict(),
            "day_trades_in_window": daily.day_trades_in_window(cfg.day_trade_window),
            "rotation": {"allowed": rotation.allowed, "rotations": rotation.rotations, "reason": rotation.reason},
            "pending_buys": self.scheduler.pending_buys(),
            "trailing_stops": {s: st.to_dict() for s, st in self.stops.all().items()},
            "recent_trades": [t.to_dict() for t in self.trade_log.recent(10)],
            "last_cycle": self.last_cycle.to_dict() if self.last_cycle else None,
        }

    def set_enabled(self, flag: bool) -> TradingConfig:
        return self.update_config(enabled=bool(flag))

    def update_config(self, **fields: Any) -> TradingConfig:
        """Raises ValueError (pydantic ValidationError) and leaves the stored config untouched."""
        with self.cycle_guard(blocking=True):
            set_actor("manual")
            try:
                cfg = self.config_store.update(**fields)
            finally:
                set_actor("engine")
            self.stops.alert_threshold_percent = cfg.alert_threshold_percent
            self.audit.event(event_type="CONFIG_UPDATED", action="UPDATE", details={"fields": sorted(fields)})
            log.info("trading config updated: %s", ", ".join(sorted(fields)))
            return cfg

    def manual_buy(
        self, symbol: str, price: float, reason: str = "Manual buy", skip_delay: bool = False
    ) -> Dict[str, Any]:
        sym = symbol.upper()
        with self.cycle_guard(blocking=True):
            set_actor("manual")
            try:
                for check in (self.anti_churn.check_wash_sale, self.anti_churn.check_repeat_loser):
                    res = check(sym)
                    if not res.allowed:
                        return {"success": False, "blocked": True, "error": res.reason}

                early = self.scheduler.early_buy_block()
                if early:
                    return {"success": False, "blocked": True, "error": early}

                daily_change = self.gate.daily_change_from_bars()
                positive = self.gate.check(daily_change).allow

                if skip_delay:
                    if not positive and not self.scheduler.is_defensive(sym):
                        return {
                            "success": False,
                            "blocked": True,
                            "error": f"Market is negative - only defensive positions allowed. {sym} is not a defensive ETF.",
                        }
                    risk = self.scheduler.risk.can_open(self.scheduler.is_defensive(sym))
                    if not risk.allowed:
                        return {"success": False, "blocked": True, "error": risk.reason}
                    r = self.executor.buy(sym, price, reason)
                    return {"success": r.success, "queued": False, **r.to_dict()}

                q = self.scheduler.request_buy(sym, price, reason, positive)
                return {"success": q.queued, **q.to_dict()}
            finally:
                set_actor("engine")

    def manual_sell(
        self, symbol: str, price: float, qty: Any, reason: str = "Manual sell"
    ) -> Dict[str, Any]:
        with self.cycle_guard(blocking=True):
            set_actor("manual")
            try:
                r = self.executor.sell(symbol, price, qty, reason)
                return r.to_dict()
            finally:
                set_actor("engine")

    def pending_buys(self) -> List[Dict[str, Any]]:
        return self.scheduler.pending_buys()

    def cancel_pending_buy(self, symbol: str) -> bool:
        with self.cycle_guard(blocking=True):
            ok = self.scheduler.cancel_pending_buy(symbol)
            if ok:
                self.audit.event(event_type="BUY_CANCELLED", symbol=symbol.upper(), action="CANCEL")
            return ok

    def apply_trailing_stops(self) -> Dict[str, Any]:
        with self.cycle_guard(blocking=True):
            positions = self.broker.get_positions()
            if not positions:
                return {"summary": {}, "results": [], "message": "No positions"}
            return self.stops.update_all(positions)

    def next_evaluation(self) -> Dict[str, Any]:
        every = max(1, int(self.settings.RUN_INTERVAL_SECONDS) // 60)
        return self.market_hours.next_evaluation(self.clock(), every_minutes=every)
