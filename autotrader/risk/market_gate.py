# autotrader/risk/market_gate.py
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from autotrader.core.errors import ExternalUnavailable
from autotrader.core.trading_config import TradingConfig
from autotrader.exchange.ports import Bar, MarketDataPort
from autotrader.ops.market_hours import MarketHours
from autotrader.persistence.json_store import Clock, utc_now

log = logging.getLogger("autotrader.risk.market_gate")

# (name, minutes back, weight). Shorter windows weigh more.
TIMEFRAMES: Tuple[Tuple[str, int, int], ...] = (
    ("5m", 5, 6),
    ("10m", 10, 5),
    ("15m", 15, 4),
    ("30m", 30, 3),
    ("1h", 60, 2),
    ("4h", 240, 1),
)

MIN_BARS = 5
TOO_EARLY_MINUTES = 5
ROLLOVER_MIN_BARS = 10
ROLLOVER_DROP_PERCENT = -0.15
RECOVERY_RANGE_POSITION = 0.35
CONSISTENT_WAVG = 0.05
CONSISTENT_SHARE = 0.6
FLAT_WAVG = -0.05


@dataclass
class GateDecision:
    allow: bool
    reason: str
    method: str
    daily_change: float
    weighted_avg: Optional[float] = None
    range_position: Optional[float] = None
    is_recovering: bool = False
    timeframes: Dict[str, float] = field(default_factory=dict)
    timeframe_summary: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allow": self.allow,
            "reason": self.reason,
            "method": self.method,
            "daily_change": self.daily_change,
            "weighted_avg": self.weighted_avg,
            "range_position": self.range_position,
            "is_recovering": self.is_recovering,
            "timeframes": dict(self.timeframes),
            "timeframe_summary": self.timeframe_summary,
        }


def _pct(now: float, past: float) -> float:
    return (now - past) / past * 100.0 if past else 0.0


class MarketDirectionGate:
    """
    Decides whether new buys are allowed given the benchmark's direction.
    Green day -> allow. Red day -> look at intraday timeframes for a recovery.
    Data problems fail open.
    """

    def __init__(
        self,
        market_data: MarketDataPort,
        market_hours: MarketHours,
        get_config: Callable[[], TradingConfig],
        clock: Clock = utc_now,
        symbol: str = "SPY",
        cache_ttl_seconds: int = 120,
    ):
        self.market_data = market_data
        self.market_hours = market_hours
        self.get_config = get_config
        self.clock = clock
        self.symbol = symbol.upper()
        self.cache_ttl_seconds = int(cache_ttl_seconds)
        self._cache: Optional[Tuple[datetime, List[Bar]]] = None

    # ---------- data ----------
    def bars(self) -> List[Bar]:
        """1-minute intraday bars, cached. Raises ExternalUnavailable."""
        now = self.clock()
        if self._cache is not None:
            at, bars = self._cache
            if (now - at).total_seconds() < self.cache_ttl_seconds:
                return bars
        bars = self.market_data.get_bars(self.symbol, interval="1m", range_="1d")
        self._cache = (now, bars)
        return bars

    def invalidate(self) -> None:
        self._cache = None

    def _bars_or_none(self) -> Optional[List[Bar]]:
        try:
            return self.bars()
        except ExternalUnavailable as e:
            log.warning("benchmark bars unavailable for %s: %s", self.symbol, e)
            return None

    # ---------- decision ----------
    def check(self, daily_change_percent: Optional[float]) -> GateDecision:
        daily = daily_change_percent or 0.0
        if math.isnan(daily):
            daily = 0.0
        cfg = self.get_config()

        if daily >= 0:
            if cfg.green_rollover_check:
                blocked = self._rollover(daily)
                if blocked is not None:
                    return blocked
            return GateDecision(True, f"{self.symbol} {daily:+.2f}% (green)", "daily_green", daily)

        bars = self._bars_or_none()
        if not bars or len(bars) < MIN_BARS:
            return GateDecision(
                True,
                f"{self.symbol} {daily:+.2f}% but no intraday data - allowing",
                "no_data",
                daily,
            )

        since_open = self.market_hours.minutes_since_open(self.clock())
        if since_open < TOO_EARLY_MINUTES:
            return GateDecision(
                True,
                f"{self.symbol} {daily:+.2f}% - too early to judge ({since_open}m since open)",
                "too_early",
                daily,
            )

        current = bars[-1].c
        tfs: Dict[str, float] = {}
        weighted = 0.0
        total_w = 0
        for name, minutes, weight in TIMEFRAMES:
            if since_open < minutes:
                continue
            ago = min(minutes, len(bars) - 1)
            change = _pct(current, bars[len(bars) - 1 - ago].c)
            tfs[name] = round(change, 3)
            weighted += change * weight
            total_w += weight
        wavg = weighted / total_w if total_w else 0.0

        day_high = max(b.h for b in bars)
        day_low = min(b.l for b in bars)
        rng = day_high - day_low
        range_pos = (current - day_low) / rng if rng > 0 else 0.5
        change_5m = tfs.get("5m", 0.0)
        recovering = range_pos > RECOVERY_RANGE_POSITION and change_5m > 0

        positive = sum(1 for v in tfs.values() if v > 0)
        summary = ", ".join(f"{k}:{v:+.2f}%" for k, v in tfs.items())
        stats = f"wAvg:{wavg:+.3f}%, range:{range_pos * 100:.0f}%, {positive}/{len(tfs)} TFs up"

        if cfg.market_gate_mode == "loose":
            if wavg >= FLAT_WAVG:
                allow, method = True, "intraday_flat"
            elif recovering:
                allow, method = True, "recovering"
            else:
                allow, method = False, "blocked"
        else:
            consistent = (
                wavg > CONSISTENT_WAVG
                and positive >= math.ceil(len(tfs) * CONSISTENT_SHARE)
                and change_5m > 0
            )
            if consistent:
                allow, method = True, "consistent_recovery"
            elif recovering and wavg > 0:
                allow, method = True, "recovering"
            else:
                allow, method = False, "blocked"

        if allow:
            reason = f"{self.symbol} {daily:+.2f}% daily - ALLOWING ({method}: {stats})"
        else:
            reason = f"{self.symbol} {daily:+.2f}% daily - BLOCKED: recovery not convincing ({stats})"

        return GateDecision(
            allow=allow,
            reason=reason,
            method=method,
            daily_change=daily,
            weighted_avg=round(wavg, 4),
            range_position=round(range_pos, 3),
            is_recovering=recovering,
            timeframes=tfs,
            timeframe_summary=summary,
        )

    def _rollover(self, daily: float) -> Optional[GateDecision]:
        bars = self._bars_or_none()
        if not bars or len(bars) <= ROLLOVER_MIN_BARS:
            return None
        current = bars[-1].c
        c5 = _pct(current, bars[max(0, len(bars) - 6)].c)
        c10 = _pct(current, bars[max(0, len(bars) - 11)].c)
        if c5 < ROLLOVER_DROP_PERCENT and c10 < ROLLOVER_DROP_PERCENT:
            return GateDecision(
                False,
                f"{self.symbol} {daily:+.2f}% daily but ROLLING OVER (5m:{c5:.2f}%, 10m:{c10:.2f}%)",
                "green_rollover_block",
                daily,
                timeframes={"5m": round(c5, 3), "10m": round(c10, 3)},
            )
        return None

    # ---------- re-validation ----------
    def daily_change_from_bars(self) -> Optional[float]:
        bars = self._bars_or_none()
        if not bars or len(bars) < 2:
            return None
        return _pct(bars[-1].c, bars[0].c)

    def benchmark_direction_now(self, fallback: bool) -> bool:
        """
        Re-check direction right before a queued buy executes.
        Uses the intraday change (last close vs first bar) through `check`;
        returns `fallback` when bars are unavailable.
        """
        daily = self.daily_change_from_bars()
        if daily is None:
            return fallback
        return self.check(daily).allow
