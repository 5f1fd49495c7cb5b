# autotrader/policy/signals.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence

from autotrader.core.trading_config import TradingConfig
from autotrader.runner.models import Position, Ticker


class Action(str, Enum):
    HOLD = "HOLD"
    BUY = "BUY"
    EXTREME_BUY = "EXTREME_BUY"
    SELL = "SELL"
    EXTREME_SELL = "EXTREME_SELL"


HIGH_VOLUME_STATUSES = ("high", "above_avg")


@dataclass
class BuyEvaluation:
    action: Action
    symbol: str
    score: float
    price: Optional[float]
    threshold: float
    is_extreme: bool
    signals: List[str] = field(default_factory=list)

    @property
    def should_buy(self) -> bool:
        return self.action in (Action.BUY, Action.EXTREME_BUY)


@dataclass
class SellEvaluation:
    action: Action
    symbol: str
    score: float
    price: Optional[float]
    pl_percent: float
    is_protected: bool
    is_good_momentum: bool
    is_extreme: bool
    is_technical_override: bool
    signals: List[str] = field(default_factory=list)

    @property
    def should_sell(self) -> bool:
        return self.action in (Action.SELL, Action.EXTREME_SELL)


class SignalEvaluator:
    """
    Score + context -> BUY/SELL/HOLD.
    Pure decision logic: reads config through `get_config` and optional churn checks,
    never touches the broker.
    """

    def __init__(self, get_config: Callable[[], TradingConfig], anti_churn=None):
        self.get_config = get_config
        self.anti_churn = anti_churn

    def buy_threshold(self, market_positive: bool) -> float:
        cfg = self.get_config()
        return cfg.buy_threshold_market_positive if market_positive else cfg.buy_threshold

    def evaluate_buy(
        self,
        ticker: Ticker,
        score: float,
        market_positive: bool,
        positions: Sequence[Position] = (),
    ) -> BuyEvaluation:
        cfg = self.get_config()
        signals: List[str] = []
        threshold = self.buy_threshold(market_positive)
        should_buy = True
        is_extreme = False

        if score >= cfg.extreme_buy_threshold:
            signals.append(f"EXTREME BUY: Score {score:.2f} >= {cfg.extreme_buy_threshold}")
            is_extreme = True
        elif score >= threshold:
            direction = "positive" if market_positive else "negative"
            signals.append(f"Score {score:.2f} >= {threshold} (SPY {direction})")
        else:
            should_buy = False
            signals.append(f"Score {score:.2f} < {threshold}")

        if cfg.protect_momentum and positions:
            protected = [
                p for p in positions if p.unrealized_pl_percent >= cfg.protected_position_percent
            ]
            if protected:
                should_buy = False
                listed = ", ".join(f"{p.symbol} (+{p.unrealized_pl_percent:.1f}%)" for p in protected)
                signals.append(f"Momentum protection: {listed}")

        if self.anti_churn is not None:
            for check in (self.anti_churn.check_wash_sale, self.anti_churn.check_repeat_loser):
                res = check(ticker.symbol)
                if not res.allowed:
                    should_buy = False
                    is_extreme = False
                    signals.append(res.reason)

        trend = (ticker.macd_trend or "").lower() or None
        if trend == "bearish" and not is_extreme:
            should_buy = False
            signals.append("MACD bearish - not buying against momentum")

        if cfg.require_bullish_macd:
            if trend == "bullish":
                signals.append("MACD bullish")
            else:
                should_buy = False
                signals.append(f"MACD not bullish ({trend or 'unknown'})")

        if cfg.require_high_volume:
            if ticker.volume_status in HIGH_VOLUME_STATUSES:
                signals.append(f"Volume {ticker.volume_status}")
            else:
                should_buy = False
                signals.append(f"Volume not high ({ticker.volume_status or 'unknown'})")

        if should_buy:
            action = Action.EXTREME_BUY if is_extreme else Action.BUY
        else:
            action = Action.HOLD

        return BuyEvaluation(
            action=action,
            symbol=ticker.symbol,
            score=score,
            price=ticker.price,
            threshold=threshold,
            is_extreme=is_extreme,
            signals=signals,
        )

    def evaluate_sell(
        self,
        ticker: Ticker,
        score: float,
        position: Optional[Position] = None,
    ) -> SellEvaluation:
        cfg = self.get_config()
        signals: List[str] = []
        pl = position.unrealized_pl_percent if position is not None else 0.0
        is_protected = pl >= cfg.protected_position_percent
        is_good = pl >= cfg.good_momentum_percent

        should_sell = True
        is_extreme = False
        is_override = False

        if score <= cfg.extreme_sell_threshold:
            signals.append(f"EXTREME SELL: Score {score:.2f} <= {cfg.extreme_sell_threshold}")
            is_extreme = True
        elif score <= cfg.technical_override_threshold and is_protected:
            signals.append(
                f"TECHNICAL OVERRIDE: Score {score:.2f} <= {cfg.technical_override_threshold}"
                f" (position +{pl:.1f}%)"
            )
            is_override = True
        elif score <= cfg.sell_threshold:
            signals.append(f"Score {score:.2f} <= {cfg.sell_threshold}")
            if is_protected and cfg.protect_momentum:
                should_sell = False
                signals.append(f"Protected position (+{pl:.1f}%) - momentum protection active")
        else:
            should_sell = False
            signals.append(f"Score {score:.2f} > {cfg.sell_threshold}")

        if cfg.require_bearish_macd and not is_extreme and not is_override:
            trend = (ticker.macd_trend or "").lower() or None
            if trend == "bearish":
                signals.append("MACD bearish")
            else:
                should_sell = False
                signals.append(f"MACD not bearish ({trend or 'unknown'})")

        if position is not None:
            signals.append(f"Position: {pl:+.2f}%")
            if is_good:
                signals.append(f"Good momentum (+{cfg.good_momentum_percent:g}%+)")
            if is_protected:
                signals.append(f"Protected (+{cfg.protected_position_percent:g}%+)")

        if should_sell:
            action = Action.EXTREME_SELL if is_extreme else Action.SELL
        else:
            action = Action.HOLD

        return SellEvaluation(
            action=action,
            symbol=ticker.symbol,
            score=score,
            price=ticker.price,
            pl_percent=pl,
            is_protected=is_protected,
            is_good_momentum=is_good,
            is_extreme=is_extreme,
            is_technical_override=is_override,
            signals=signals,
        )
