# autotrader/execution/trailing_stop.py
from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from autotrader.ops.market_hours import MarketHours
from autotrader.persistence.json_store import Clock, to_iso, utc_now
from autotrader.persistence.state_store import StateStore
from autotrader.runner.models import Position, TrailingStop

log = logging.getLogger("autotrader.execution.stops")


def calculate_stop_loss_percent(gain_percent: float) -> float:
    """
    Half the gain, discretised to 2% steps, at least 1% for any winner.
      5 -> 2, 8 -> 4, 3 -> 1, <= 0 -> 0
    """
    if gain_percent is None or math.isnan(gain_percent) or gain_percent <= 0:
        return 0.0
    return float(max(1, math.floor((gain_percent / 2) / 2) * 2))


def calculate_stop_price(
    entry_price: float, gain_percent: float, stop_loss_percent: float
) -> Optional[float]:
    """Price that locks in (gain - stop_loss) percent over entry. None when there is nothing to lock."""
    if stop_loss_percent <= 0 or entry_price <= 0:
        return None
    return entry_price * (1 + (gain_percent - stop_loss_percent) / 100.0)


@dataclass
class StopUpdate:
    symbol: str
    action: str  # created | raised | kept | none
    stop: Optional[TrailingStop] = None
    gain_percent: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "action": self.action,
            "gain_percent": round(self.gain_percent, 2),
            "stop": self.stop.to_dict() if self.stop else None,
        }


@dataclass
class StopTrigger:
    symbol: str
    current_price: float
    stop_price: float
    protected_gain_percent: float
    qty: float

    @property
    def reason(self) -> str:
        return (
            f"Trailing stop hit: ${self.current_price:.2f} <= ${self.stop_price:.2f}"
            f" (locks +{self.protected_gain_percent:.1f}%)"
        )


class TrailingStopEngine:
    """
    Ratcheting per-position stop levels.
    The stored stop for a symbol only ever moves up; it is replaced by a strictly higher one or kept.
    """

    def __init__(
        self,
        store: StateStore,
        clock: Clock = utc_now,
        market_hours: Optional[MarketHours] = None,
        alert_threshold_percent: float = 2.0,
    ):
        self.store = store
        self.clock = clock
        self.market_hours = market_hours or MarketHours()
        self.alert_threshold_percent = float(alert_threshold_percent)
        self._lock = threading.Lock()
        self.stops: Dict[str, TrailingStop] = store.load_stops()

    def get(self, symbol: str) -> Optional[TrailingStop]:
        return self.stops.get(symbol.upper())

    def all(self) -> Dict[str, TrailingStop]:
        return dict(self.stops)

    def should_update_now(self, now: Optional[datetime] = None) -> bool:
        """Top of each hour while the market is open."""
        now = now or self.clock()
        if not self.market_hours.is_open(now):
            return False
        return self.market_hours.local(now).minute < 5

    # ---------- updates ----------
    def update(self, position: Position) -> StopUpdate:
        sym = position.symbol.upper()
        entry = position.avg_entry_price
        price = position.current_price
        if not entry or entry <= 0 or not price or price <= 0:
            return StopUpdate(sym, "none")

        gain = (price - entry) / entry * 100.0
        sl = calculate_stop_loss_percent(gain)
        new_price = calculate_stop_price(entry, gain, sl)

        with self._lock:
            existing = self.stops.get(sym)
            if new_price is None:
                return StopUpdate(sym, "kept" if existing else "none", existing, gain)

            if existing is not None and new_price <= existing.stop_price:
                return StopUpdate(sym, "kept", existing, gain)

            stop = TrailingStop(
                symbol=sym,
                entry_price=entry,
                stop_price=round(new_price, 4),
                stop_loss_percent=sl,
                protected_gain_percent=round(gain - sl, 4),
                high_water_price=max(price, existing.high_water_price if existing else price),
                updated_at=to_iso(self.clock()),
            )
            self.stops[sym] = stop
            self.store.save_stops(self.stops)

        action = "raised" if existing is not None else "created"
        log.info("stop %s %s -> %.2f (gain %.2f%%, trail %g%%)", action, sym, stop.stop_price, gain, sl)
        return StopUpdate(sym, action, stop, gain)

    def update_all(self, positions: Iterable[Position]) -> Dict[str, Any]:
        counts = {"created": 0, "raised": 0, "kept": 0, "none": 0, "errors": 0}
        results: List[Dict[str, Any]] = []
        for p in positions:
            try:
                u = self.update(p)
            except (OSError, ValueError, TypeError) as e:
                counts["errors"] += 1
                log.warning("stop update failed for %s: %s", p.symbol, e)
                results.append({"symbol": p.symbol, "action": "error", "error": str(e)})
                continue
            counts[u.action] += 1
            results.append(u.to_dict())
        return {"summary": counts, "results": results, "timestamp": to_iso(self.clock())}

    def remove(self, symbol: str) -> bool:
        sym = symbol.upper()
        with self._lock:
            if sym not in self.stops:
                return False
            del self.stops[sym]
            self.store.save_stops(self.stops)
        return True

    # ---------- checks ----------
    def check_stop_triggers(self, positions: Iterable[Position]) -> List[StopTrigger]:
        out: List[StopTrigger] = []
        for p in positions:
            stop = self.stops.get(p.symbol.upper())
            if stop is None or not p.current_price:
                continue
            if p.current_price <= stop.stop_price:
                out.append(
                    StopTrigger(
                        symbol=stop.symbol,
                        current_price=p.current_price,
                        stop_price=stop.stop_price,
                        protected_gain_percent=stop.protected_gain_percent,
                        qty=p.qty,
                    )
                )
        return out

    def status(self, positions: Iterable[Position]) -> List[Dict[str, Any]]:
        out: List[Dict[str, Any]] = []
        for p in positions:
            stop = self.stops.get(p.symbol.upper())
            gain = p.unrealized_pl_percent
            distance = None
            if stop is not None and p.current_price:
                distance = (p.current_price - stop.stop_price) / p.current_price * 100.0

            if stop is not None and p.current_price and p.current_price <= stop.stop_price:
                label = "STOP_TRIGGERED"
            elif distance is not None and distance <= self.alert_threshold_percent:
                label = "APPROACHING_STOP"
            elif stop is not None:
                label = "GAINS_LOCKED"
            elif gain > 0:
                label = "PROFITABLE"
            else:
                label = "UNDERWATER"

            out.append(
                {
                    "symbol": p.symbol,
                    "status": label,
                    "gain_percent": round(gain, 2),
                    "current_price": p.current_price,
                    "stop_price": stop.stop_price if stop else None,
                    "distance_percent": round(distance, 2) if distance is not None else None,
                    "protected_gain_percent": stop.protected_gain_percent if stop else None,
                }
            )
        return out
