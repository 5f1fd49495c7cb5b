from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from autotrader.persistence.json_store import to_iso


def business_days_back(today: date, n: int) -> date:
    """The date `n` business days before `today` (weekends skipped)."""
    d = today
    left = max(0, int(n))
    while left > 0:
        d -= timedelta(days=1)
        if d.weekday() < 5:
            left -= 1
    return d


@dataclass
class DailyCounters:
    day: date
    trade_count: int = 0
    # symbol -> ISO timestamp of last trade (cooldowns span midnight)
    last_trade_at: Dict[str, str] = field(default_factory=dict)
    # symbol -> sides traded today
    traded_today: Dict[str, List[str]] = field(default_factory=dict)
    # ISO dates of same-day round trips (rolling window)
    day_trades: List[str] = field(default_factory=list)
    # drawdown breaker
    start_equity: Optional[float] = None
    breaker: bool = False

    def reset_if_new_day(self, today: date) -> bool:
        if today == self.day:
            return False
        self.day = today
        self.trade_count = 0
        self.traded_today = {}
        self.start_equity = None
        self.breaker = False
        return True

    def record_trade(self, symbol: str, side: str, at: datetime) -> bool:
        """Returns True when this trade completes a same-day round trip."""
        sym = symbol.upper()
        side = side.lower()
        self.trade_count += 1
        self.last_trade_at[sym] = to_iso(at)

        sides = self.traded_today.setdefault(sym, [])
        opposite = "sell" if side == "buy" else "buy"
        is_day_trade = opposite in sides
        if is_day_trade:
            self.day_trades.append(self.day.isoformat())
        sides.append(side)
        return is_day_trade

    def day_trades_in_window(self, window_days: int) -> int:
        start = business_days_back(self.day, max(0, window_days - 1))
        n = 0
        for d in self.day_trades:
            try:
                if date.fromisoformat(d) >= start:
                    n += 1
            except ValueError:
                continue
        return n

    def prune_day_trades(self, window_days: int) -> None:
        start = business_days_back(self.day, max(0, window_days - 1)).isoformat()
        self.day_trades = [d for d in self.day_trades if d >= start]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "day": self.day.isoformat(),
            "trade_count": self.trade_count,
            "last_trade_at": dict(self.last_trade_at),
            "traded_today": {k: list(v) for k, v in self.traded_today.items()},
            "day_trades": list(self.day_trades),
            "start_equity": self.start_equity,
            "breaker": self.breaker,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any], today: date) -> "DailyCounters":
        try:
            day = date.fromisoformat(str(raw.get("day")))
        except ValueError:
            day = today
        start_equity = raw.get("start_equity")
        st = cls(
            day=day,
            trade_count=int(raw.get("trade_count") or 0),
            last_trade_at={
                str(k).upper(): str(v)
                for k, v in (raw.get("last_trade_at") or {}).items()
            },
            traded_today={
                str(k).upper(): [str(s) for s in (v or [])]
                for k, v in (raw.get("traded_today") or {}).items()
            },
            day_trades=[str(d) for d in (raw.get("day_trades") or [])],
            start_equity=float(start_equity) if start_equity is not None else None,
            breaker=bool(raw.get("breaker", False)),
        )
        st.reset_if_new_day(today)
        return st
