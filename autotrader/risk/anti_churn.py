# autotrader/risk/anti_churn.py
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from autotrader.persistence.json_store import Clock, utc_now
from autotrader.persistence.trade_log import TradeLog
from autotrader.runner.models import TradeRecord

DAY_SECONDS = 86400.0


@dataclass
class HoldCheck:
    can_sell: bool
    reason: str
    hold_seconds: float = 0.0
    hold_days: float = 0.0
    remaining_hours: float = 0.0


@dataclass
class RotationCheck:
    allowed: bool
    rotations: int
    reason: str = ""


@dataclass
class ChurnCheck:
    allowed: bool
    reason: str
    days_until_clear: Optional[int] = None


class AntiChurnGuard:
    """
    Trade-log based churn limits:
      - minimum hold before a normal sell
      - max sells per trailing 7 days (blocks buys only)
      - wash-sale and repeat-loser rebuy blocks
    """

    def __init__(
        self,
        trade_log: TradeLog,
        clock: Clock = utc_now,
        *,
        min_hold_days: float = 3.0,
        max_rotations_per_week: int = 4,
        wash_sale_days: int = 30,
        repeat_loser_window_days: int = 60,
        repeat_loser_threshold: int = 2,
        repeat_loser_block_days: int = 90,
    ):
        self.trade_log = trade_log
        self.clock = clock
        self.min_hold_days = float(min_hold_days)
        self.max_rotations_per_week = int(max_rotations_per_week)
        self.wash_sale_days = int(wash_sale_days)
        self.repeat_loser_window_days = int(repeat_loser_window_days)
        self.repeat_loser_threshold = int(repeat_loser_threshold)
        self.repeat_loser_block_days = int(repeat_loser_block_days)

    # ---------- hold period ----------
    def check_hold_period(
        self, symbol: str, is_extreme_sell: bool = False, is_trailing_stop: bool = False
    ) -> HoldCheck:
        if is_extreme_sell:
            return HoldCheck(True, "Extreme sell override")
        if is_trailing_stop:
            return HoldCheck(True, "Trailing stop override")

        buy = self.trade_log.last_buy(symbol)
        bought_at = buy.at if buy else None
        if bought_at is None:
            # position may predate the log
            return HoldCheck(True, "No buy record found")

        held = (self.clock() - bought_at).total_seconds()
        days = held / DAY_SECONDS
        min_seconds = self.min_hold_days * DAY_SECONDS
        if held < min_seconds:
            remaining = (min_seconds - held) / 3600.0
            return HoldCheck(
                False,
                f"Hold period: {days:.1f} days (min {self.min_hold_days:.1f}). {remaining:.1f}h remaining",
                held,
                days,
                remaining,
            )
        return HoldCheck(True, f"Held {days:.1f} days (>= {self.min_hold_days:.1f})", held, days)

    # ---------- rotation ----------
    def check_rotation_frequency(self) -> RotationCheck:
        sells = self.trade_log.sells_since(self.clock() - timedelta(days=7))
        n = len(sells)
        if n >= self.max_rotations_per_week:
            return RotationCheck(
                False,
                n,
                f"Rotation limit: {n} sells in last 7 days (max {self.max_rotations_per_week}). Slow down.",
            )
        return RotationCheck(True, n)

    # ---------- rebuy blocks ----------
    def _buy_price_for(self, sell: TradeRecord) -> Optional[float]:
        if sell.buy_price and sell.buy_price > 0:
            return sell.buy_price
        at = sell.at
        if at is None:
            return None
        buy = self.trade_log.last_buy(sell.symbol, before=at)
        return buy.price if buy and buy.price > 0 else None

    def _days_until(self, since: datetime, days: int, now: datetime) -> int:
        return math.ceil((since + timedelta(days=days) - now).total_seconds() / DAY_SECONDS)

    def check_wash_sale(self, symbol: str) -> ChurnCheck:
        sym = symbol.upper()
        now = self.clock()
        sells = self.trade_log.sells_since(now - timedelta(days=self.wash_sale_days), sym)
        if not sells:
            return ChurnCheck(True, "No recent sells")

        for sell in sells:
            buy_price = self._buy_price_for(sell)
            if buy_price is None or sell.price >= buy_price:
                continue
            loss = (buy_price - sell.price) * (sell.quantity or 1)
            loss_pct = (sell.price - buy_price) / buy_price * 100
            sold_at = sell.at or now
            ago = (now - sold_at).total_seconds() / DAY_SECONDS
            clear = self._days_until(sold_at, self.wash_sale_days, now)
            return ChurnCheck(
                False,
                f"WASH SALE BLOCK: {sym} sold at loss ({loss_pct:.1f}%, -${loss:.2f}) {ago:.0f} days ago."
                f" Cannot rebuy for {clear} more days.",
                clear,
            )
        return ChurnCheck(True, "Recent sells were not at a loss")

    def check_repeat_loser(self, symbol: str) -> ChurnCheck:
        sym = symbol.upper()
        now = self.clock()
        sells = self.trade_log.sells_since(now - timedelta(days=self.repeat_loser_window_days), sym)
        sells.sort(key=lambda t: t.at or now, reverse=True)

        losses = 0
        last_loss_at: Optional[datetime] = None
        for sell in sells:
            buy_price = self._buy_price_for(sell)
            if buy_price is None:
                continue
            if sell.price < buy_price:
                losses += 1
                if last_loss_at is None:
                    last_loss_at = sell.at
            else:
                # a win breaks the streak
                break

        if losses >= self.repeat_loser_threshold and last_loss_at is not None:
            clear = self._days_until(last_loss_at, self.repeat_loser_block_days, now)
            if clear > 0:
                return ChurnCheck(
                    False,
                    f"REPEAT LOSER: {sym} has {losses} consecutive losses in the last"
                    f" {self.repeat_loser_window_days} days. Blocked for {clear} more days.",
                    clear,
                )
        return ChurnCheck(True, f"{losses} consecutive losses")
