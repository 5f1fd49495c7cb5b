# autotrader/strategy/scorer.py
from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo

from autotrader.persistence.json_store import Clock, parse_ts, utc_now
from autotrader.runner.models import Ticker
from autotrader.strategy.macd import (
    calculate_macd_score,
    clamp,
    crossover_score,
    effective_macd_score,
    histogram_trend_score,
)

log = logging.getLogger("autotrader.strategy")

DEFAULT_TECHNICAL = 6.0
DEFAULT_PREDICTION = 5.0  # neutral on the 0-10 scale
DEFAULT_SIGMA = 1.0

MACD_CAP = 2.5
DECLINE_THRESHOLD = -0.05


# =========================
# Component functions
# =========================
def psychological_adjustment(change_percent: float) -> float:
    """
    Momentum reversal zones at 15% and 25%.
    Gains reduce the score up to 15%, then partially give it back, then reduce again past 25%.
    Losses mirror that.
    """
    a = abs(change_percent)
    sign = -1.0 if change_percent > 0 else 1.0

    if a <= 15:
        return sign * (a / 2) * 0.5
    if a <= 25:
        return sign * (3.75 - ((a - 15) / 2) * 0.5)
    return sign * (3.75 - 2.5 + ((a - 25) / 2) * 0.5)


def movement_penalty(change_percent: float) -> float:
    a = abs(change_percent)
    if a < 12:
        return 0.0
    excess = a - 12
    if change_percent < 0:
        return -1.0 - excess / 10
    return -0.5 - excess / 20


def earnings_score(
    earnings_date: Any,
    now: datetime,
    tz: ZoneInfo = ZoneInfo("America/New_York"),
) -> float:
    """((30 - d) / 30)^2 within 30 days, fading negative for 3 days after the report."""
    when = parse_ts(earnings_date)
    if when is None:
        return 0.0

    days = (when - now).total_seconds() / 86400.0
    if now.astimezone(tz).hour < 16:
        days -= 0.5

    if days < 0:
        ago = abs(days)
        if ago <= 3:
            return -(((30 - ago) / 30) ** 2) * (1 - ago / 3)
        return 0.0

    if days > 30:
        return 0.0
    return clamp(((30 - days) / 30) ** 2, 0.0, 1.0)


def price_position_score(
    price: Optional[float], lo: Optional[float], hi: Optional[float]
) -> float:
    """+1.5 near the 60-day low, -1.5 near the high, linear in between."""
    if price is None or lo is None or hi is None:
        return 0.0
    rng = hi - lo
    if rng == 0:
        return 0.0
    pos = (price - lo) / rng
    if pos <= 0.1:
        return 1.5
    if pos >= 0.9:
        return -1.5
    return (1.0 - ((pos - 0.1) / 0.8) * 2.0) * 1.5


def volume_score(sigma: float, intraday_mult: float = 0.0, recent_change: float = 0.0) -> float:
    enhanced = sigma * (1 + intraday_mult)
    v = 2.5 * ((enhanced - 1) / 10) - 1
    # heavy volume on a decline counts against
    v = -abs(v) if recent_change < DECLINE_THRESHOLD else abs(v)
    return clamp(v, -1.5, 1.5)


def technical_component(t: Ticker) -> float:
    if t.technical_score:  # 0 means "not computed"
        return t.technical_score
    if t.rsi is not None:
        return (100 - abs(50 - t.rsi)) / 10
    return DEFAULT_TECHNICAL


def macd_adjustment(t: Ticker) -> Tuple[float, str]:
    """Returns (adjustment, source) where source names the input path that was used."""
    if t.macd_weighted_score is not None:
        adj, src = t.macd_weighted_score * 2.5, "weighted"
    elif t.improved_macd_score is not None:
        adj, src = t.improved_macd_score * 2.5, "improved"
    elif len(t.macd_histogram) >= 6:
        # gaps are dropped; too few real values scores neutral
        hist = [h for h in t.macd_histogram if h is not None]
        x = hist[-6] if len(hist) >= 6 else None
        y = hist[-1] if len(hist) >= 2 else None
        raw = calculate_macd_score(x, y)
        adj, src = _range_scaled(raw, t), "histogram"
    elif t.macd is not None and t.macd_5d_ago is not None:
        raw = histogram_trend_score(t.macd, t.macd_5d_ago)
        adj, src = _range_scaled(raw, t), "trend"
    elif t.effective_macd_score is not None:
        adj, src = clamp(t.effective_macd_score, -1.0, 1.0), "effective"
    else:
        adj, src = 0.0, "none"

    cross = crossover_score(t.macd_line, t.macd_signal, t.macd_line_min_60d, t.macd_line_max_60d)
    if cross is not None:
        adj, src = cross, "crossover"

    return clamp(adj, -MACD_CAP, MACD_CAP), src


def _range_scaled(raw: float, t: Ticker) -> float:
    e30 = effective_macd_score(raw, t.macd_line, t.macd_line_min_30d, t.macd_line_max_30d)
    e120 = effective_macd_score(raw, t.macd_line, t.macd_line_min_120d, t.macd_line_max_120d)
    return (e30 + e120) / 2


# =========================
# Scorer
# =========================
@dataclass
class ScoreBreakdown:
    symbol: str
    technical: float
    prediction: float
    psychological: float
    directional_bonus: float
    positive_bonus: float
    time_decay_penalty: float
    days_old: float
    macd_adjustment: float
    macd_source: str
    volume_score: float
    price_position: float
    earnings: float
    movement_penalty: float
    effective_score: float
    formula: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class TickerScorer:
    """
    Effective score in [0, 10]:
      (technical + prediction)/2 + psychological + directional + positive - decay
      + macd + volume + price_position*1.25 + earnings*2.0 + movement_penalty
    Missing inputs contribute neutral components; scoring never raises on incomplete data.
    """

    def __init__(self, clock: Clock = utc_now, market_tz: str = "America/New_York"):
        self.clock = clock
        self.tz = ZoneInfo(market_tz)

    def _days_old(self, t: Ticker, now: datetime) -> float:
        if t.prediction_age_days is not None:
            return max(0.0, min(7.0, t.prediction_age_days))
        when = parse_ts(t.prediction_date)
        if when is None:
            return 0.0
        return float(max(0, min(7, math.floor((now - when).total_seconds() / 86400.0))))

    def score(self, t: Ticker) -> ScoreBreakdown:
        t = t.sanitized()
        now = self.clock()
        change = t.change_percent or 0.0

        technical = technical_component(t)
        prediction = t.prediction_score if t.prediction_score is not None else DEFAULT_PREDICTION
        psych = psychological_adjustment(change)
        directional = clamp((t.avg_directional or 0.0) * 0.2, -1.0, 1.0)
        positive = clamp((t.avg_positive or 0.0) * 0.2, -1.0, 1.0)
        days_old = self._days_old(t, now)
        decay = days_old * 0.6
        macd_adj, macd_src = macd_adjustment(t)

        sigma = t.sigma_score if t.sigma_score is not None else DEFAULT_SIGMA
        recent = t.recent_price_change_30m if t.recent_price_change_30m is not None else change
        vol = volume_score(sigma, t.intraday_volume_multiplier or 0.0, recent)

        pos = price_position_score(t.price, t.price_min_60d, t.price_max_60d)
        earn = earnings_score(t.earnings_date, now, self.tz)
        move = movement_penalty(change)

        total = (
            (technical + prediction) / 2
            + psych
            + directional
            + positive
            - decay
            + macd_adj
            + vol
            + pos * 1.25
            + earn * 2.0
            + move
        )
        if not math.isfinite(total):
            total = DEFAULT_PREDICTION
        eff = clamp(total, 0.0, 10.0)

        formula = (
            f"({technical:.1f} + {prediction:.1f}) / 2 + {psych:.2f} + {directional:.2f}"
            f" + {positive:.2f} - {decay:.1f} + {macd_adj:.2f} + {vol:.2f}"
            f" + ({pos:.2f} x 1.25) + ({earn:.4f} x 2.0) + {move:.2f} = {eff:.2f}"
        )

        return ScoreBreakdown(
            symbol=t.symbol,
            technical=technical,
            prediction=prediction,
            psychological=psych,
            directional_bonus=directional,
            positive_bonus=positive,
            time_decay_penalty=decay,
            days_old=days_old,
            macd_adjustment=macd_adj,
            macd_source=macd_src,
            volume_score=vol,
            price_position=pos,
            earnings=earn,
            movement_penalty=move,
            effective_score=eff,
            formula=formula,
        )

    def effective_score(self, t: Ticker) -> float:
        """Precomputed `score` wins when present, otherwise the full breakdown."""
        if t.score is not None and math.isfinite(t.score):
            return clamp(t.score, 0.0, 10.0)
        return self.score(t).effective_score


def rank_tickers(tickers: Iterable[Ticker], scorer: TickerScorer) -> List[Tuple[Ticker, float]]:
    """Highest score first. Tickers that fail to score are dropped and logged."""
    out: List[Tuple[Ticker, float]] = []
    for t in tickers:
        if not t.symbol:
            continue
        try:
            out.append((t, scorer.effective_score(t)))
        except (TypeError, ValueError, ArithmeticError) as e:
            log.warning("score failed for %s: %s", t.symbol, e)
    out.sort(key=lambda pair: pair[1], reverse=True)
    return out
