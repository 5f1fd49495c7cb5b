from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo


@dataclass
class MarketStatus:
    open: bool
    reason: str
    minutes_since_open: int
    minutes_until_close: int
    next_open: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "open": self.open,
            "reason": self.reason,
            "minutes_since_open": self.minutes_since_open,
            "minutes_until_close": self.minutes_until_close,
            "next_open": self.next_open.isoformat() if self.next_open else None,
        }


class MarketHours:
    """
    Regular session 9:30-16:00 exchange time, Monday-Friday.
    Exchange holidays are not modelled.
    """

    def __init__(
        self,
        tz: str = "America/New_York",
        open_at: time = time(9, 30),
        close_at: time = time(16, 0),
        pre_market_at: time = time(5, 30),
    ):
        self.tz = ZoneInfo(tz)
        self.open_at = open_at
        self.close_at = close_at
        self.pre_market_at = pre_market_at

    def local(self, now: datetime) -> datetime:
        return now.astimezone(self.tz)

    def local_date(self, now: datetime) -> date:
        return self.local(now).date()

    @staticmethod
    def _minutes(t: time) -> int:
        return t.hour * 60 + t.minute

    def _now_minutes(self, now: datetime) -> int:
        loc = self.local(now)
        return loc.hour * 60 + loc.minute

    def minutes_since_open(self, now: datetime) -> int:
        return self._now_minutes(now) - self._minutes(self.open_at)

    def is_weekend(self, now: datetime) -> bool:
        return self.local(now).weekday() >= 5

    def status(self, now: datetime) -> MarketStatus:
        cur = self._now_minutes(now)
        open_m = self._minutes(self.open_at)
        close_m = self._minutes(self.close_at)
        since_open = cur - open_m

        if self.is_weekend(now):
            return MarketStatus(
                False, "Weekend - market closed", since_open, 0, self.next_open(now)
            )

        if cur < open_m:
            h, m = divmod(open_m - cur, 60)
            return MarketStatus(
                False, f"Pre-market - opens in {h}h {m}m", since_open, 0, self.next_open(now)
            )

        if cur >= close_m:
            return MarketStatus(
                False, "After hours - market closed", since_open, 0, self.next_open(now)
            )

        h, m = divmod(close_m - cur, 60)
        return MarketStatus(
            True, f"Market open - closes in {h}h {m}m", since_open, close_m - cur
        )

    def is_open(self, now: datetime) -> bool:
        return self.status(now).open

    def is_pre_market(self, now: datetime) -> bool:
        if self.is_weekend(now):
            return False
        cur = self._now_minutes(now)
        return self._minutes(self.pre_market_at) <= cur < self._minutes(self.close_at)

    def next_open(self, now: datetime) -> datetime:
        loc = self.local(now)
        d = loc.date()
        if loc.weekday() < 5 and self._now_minutes(now) < self._minutes(self.open_at):
            return datetime.combine(d, self.open_at, tzinfo=self.tz)
        d += timedelta(days=1)
        while d.weekday() >= 5:
            d += timedelta(days=1)
        return datetime.combine(d, self.open_at, tzinfo=self.tz)

    def next_evaluation(self, now: datetime, every_minutes: int = 10) -> Dict[str, Any]:
        """Next evaluation slot: the next `every_minutes` mark while open, else next open."""
        st = self.status(now)
        if not st.open:
            nxt = self.next_open(now)
            return {
                "next_eval": nxt.isoformat(),
                "minutes_until": None,
                "reason": st.reason,
                "market_open": False,
            }

        cur = self._now_minutes(now)
        step = max(1, int(every_minutes))
        next_m = -(-(cur + 1) // step) * step
        if next_m >= self._minutes(self.close_at):
            nxt = self.next_open(self.local(now).replace(hour=23, minute=59))
            return {
                "next_eval": nxt.isoformat(),
                "minutes_until": None,
                "reason": "Market closing soon",
                "market_open": False,
            }

        loc = self.local(now)
        h, m = divmod(next_m, 60)
        slot = loc.replace(hour=h, minute=m, second=0, microsecond=0)
        return {
            "next_eval": slot.isoformat(),
            "minutes_until": next_m - cur,
            "reason": f"Next evaluation in {next_m - cur} minutes",
            "market_open": True,
        }
