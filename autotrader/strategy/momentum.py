from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo

from autotrader.persistence.json_store import Clock, JsonFile, parse_ts, to_iso, utc_now
from autotrader.runner.models import Ticker

log = logging.getLogger("autotrader.strategy.momentum")

MOMENTUM_FILENAME = "momentum-history.json"
MAX_SNAPSHOTS = 48
MAX_DAILY_CHANGES = 30

STAGNANT_MOVE_PERCENT = 0.25
STAGNANT_RANGE_PERCENT = 0.25
STAGNANT_FALLBACK_PERCENT = 0.1


@dataclass
class DriftResult:
    symbol: str
    current_change: float
    changes: Dict[str, Optional[float]]
    avg_change: float
    threshold: float
    has_drift: bool
    data_points: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "current_change": self.current_change,
            "changes": dict(self.changes),
            "avg_change": self.avg_change,
            "threshold": self.threshold,
            "has_drift": self.has_drift,
            "data_points": self.data_points,
        }


@dataclass
class MomentumSell:
    symbol: str
    reason: str
    score: float
    avg_change: float
    kind: str  # "drift" | "score" | "stagnant"


@dataclass
class _History:
    snapshots: List[Dict[str, Any]] = field(default_factory=list)
    daily_changes: List[Dict[str, Any]] = field(default_factory=list)


class MomentumTracker:
    """
    Intraday snapshot history per symbol (last 48) plus one closing change per day (last 30).
    Drift is the mean of today, yesterday, 4h and 1h changes and a 30m proxy.
    """

    def __init__(
        self,
        data_dir: str | Path,
        clock: Clock = utc_now,
        market_tz: str = "America/New_York",
    ):
        self.file = JsonFile(Path(data_dir) / MOMENTUM_FILENAME)
        self.clock = clock
        self.tz = ZoneInfo(market_tz)
        self.history: Dict[str, _History] = self._load()

    def _load(self) -> Dict[str, _History]:
        raw = self.file.load(default={})
        if not isinstance(raw, dict):
            return {}
        out: Dict[str, _History] = {}
        for sym, h in raw.items():
            if not isinstance(h, dict):
                continue
            out[str(sym).upper()] = _History(
                snapshots=[s for s in (h.get("snapshots") or []) if isinstance(s, dict)],
                daily_changes=[d for d in (h.get("daily_changes") or []) if isinstance(d, dict)],
            )
        return out

    def _save(self) -> None:
        self.file.write(
            {
                sym: {"snapshots": h.snapshots, "daily_changes": h.daily_changes}
                for sym, h in self.history.items()
            }
        )

    # ---------- recording ----------
    def record_snapshot(self, tickers: Iterable[Ticker]) -> int:
        """Append a snapshot per ticker. Between 16:00 and 17:00 exchange time also records the day's change."""
        now = self.clock()
        local = now.astimezone(self.tz)
        closing_hour = local.hour == 16
        today = local.date().isoformat()

        n = 0
        for t in tickers:
            if not t.symbol or not t.price:
                continue
            h = self.history.setdefault(t.symbol, _History())
            change = t.change_percent or 0.0
            h.snapshots.append(
                {"timestamp": to_iso(now), "hour": local.hour, "price": t.price, "change_percent": change}
            )
            h.snapshots = h.snapshots[-MAX_SNAPSHOTS:]

            if closing_hour and not any(d.get("date") == today for d in h.daily_changes):
                h.daily_changes.append({"date": today, "close_price": t.price, "change_percent": change})
                h.daily_changes = h.daily_changes[-MAX_DAILY_CHANGES:]
            n += 1

        if n:
            self._save()
        return n

    # ---------- analysis ----------
    def _snapshot_at_or_before(self, h: _History, cutoff: datetime) -> Optional[Dict[str, Any]]:
        found = None
        for s in h.snapshots:
            at = parse_ts(s.get("timestamp"))
            if at is not None and at <= cutoff and s.get("price"):
                found = s
        return found

    def drift(self, ticker: Ticker, threshold: float = -0.75) -> DriftResult:
        now = self.clock()
        current = ticker.change_percent or 0.0
        changes: Dict[str, Optional[float]] = {
            "current": current,
            "yesterday": None,
            "hour4": None,
            "hour1": None,
            "min30": current,  # 30m proxy
        }

        h = self.history.get(ticker.symbol)
        if h:
            if len(h.daily_changes) >= 2:
                changes["yesterday"] = float(h.daily_changes[-2].get("change_percent") or 0.0)
            if ticker.price:
                for key, hours in (("hour4", 4), ("hour1", 1)):
                    snap = self._snapshot_at_or_before(h, now - timedelta(hours=hours))
                    if snap:
                        base = float(snap["price"])
                        changes[key] = (ticker.price - base) / base * 100.0

        available = [c for c in changes.values() if c is not None]
        avg = sum(available) / len(available) if available else current
        return DriftResult(
            symbol=ticker.symbol,
            current_change=current,
            changes=changes,
            avg_change=round(avg, 2),
            threshold=threshold,
            has_drift=avg < threshold,
            data_points=len(available),
        )

    def is_stagnant(self, ticker: Ticker) -> bool:
        """Flat today and the last hour of snapshots spans < 0.25%."""
        move = abs(ticker.change_percent or 0.0)
        if move >= STAGNANT_MOVE_PERCENT:
            return False

        h = self.history.get(ticker.symbol)
        if h and len(h.snapshots) >= 2:
            cutoff = self.clock() - timedelta(hours=1)
            prices = [
                float(s["price"])
                for s in h.snapshots
                if s.get("price") and (parse_ts(s.get("timestamp")) or cutoff) >= cutoff
            ]
            if len(prices) >= 2:
                lo, hi = min(prices), max(prices)
                return (hi - lo) / lo * 100.0 < STAGNANT_RANGE_PERCENT

        return move < STAGNANT_FALLBACK_PERCENT

    def drift_sells(
        self,
        held: Iterable[str],
        scored: Dict[str, float],
        tickers: Dict[str, Ticker],
        *,
        threshold: float = -0.75,
        score_cutoff: float = 6.5,
        sell_threshold: float = 4.0,
    ) -> List[MomentumSell]:
        out: List[MomentumSell] = []
        for sym in held:
            t = tickers.get(sym)
            if t is None or sym not in scored:
                continue
            score = scored[sym]
            d = self.drift(t, threshold)
            if d.has_drift and score < score_cutoff:
                reason = f"Momentum drift: avg {d.avg_change}% < {threshold}%"
                out.append(MomentumSell(sym, reason, score, d.avg_change, "drift"))
            elif score <= sell_threshold:
                out.append(MomentumSell(sym, f"Score dropped to {score:.2f}", score, d.avg_change, "score"))
        return out

    def stagnation_sells(
        self,
        held: Iterable[str],
        scored: Dict[str, float],
        tickers: Dict[str, Ticker],
        *,
        score_cutoff: float = 6.0,
    ) -> List[MomentumSell]:
        out: List[MomentumSell] = []
        for sym in held:
            t = tickers.get(sym)
            if t is None or sym not in scored:
                continue
            score = scored[sym]
            if score < score_cutoff and self.is_stagnant(t):
                reason = f"Stagnant: {t.change_percent or 0.0:+.2f}% today, score {score:.2f} < {score_cutoff}"
                out.append(MomentumSell(sym, reason, score, t.change_percent or 0.0, "stagnant"))
        return out
