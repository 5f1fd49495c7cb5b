from __future__ import annotations

import math
from typing import List, Optional, Sequence, Tuple

EPS = 1e-9


def clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


def _sign(x: float) -> float:
    if x > 0:
        return 1.0
    if x < 0:
        return -1.0
    return 0.0


def calculate_macd_score(x: Optional[float], y: Optional[float]) -> float:
    """
    Histogram change score. x = value 5 bars ago, y = latest value.
    Strongest near zero, fades to 0 as |y| grows. Result in [-1, 1].
    """
    if x is None or y is None or math.isnan(x) or math.isnan(y):
        return 0.0
    t = abs(y)
    g = max(0.0, -5.0 * t * t - 2.5 * t + 1.0)
    s = _sign(y - x) * g
    if x == y:
        s = 0.0
    return clamp(s, -1.0, 1.0)


def effective_macd_score(
    raw: float,
    line: Optional[float],
    lo: Optional[float],
    hi: Optional[float],
) -> float:
    """Scale by position in range: 1.5 at the midpoint, 1.0 at either edge."""
    if line is None or lo is None or hi is None:
        return raw
    rng = hi - lo
    if rng == 0:
        return raw
    mid = (hi + lo) / 2.0
    return raw * (1.5 - abs(line - mid) / rng)


def histogram_trend_score(macd_now: float, macd_5d_ago: float) -> float:
    """Fallback when only two MACD readings exist. Result in [-1, 1]."""
    peak = max(abs(macd_now), abs(macd_5d_ago))
    if peak == 0:
        return 0.0
    if macd_now >= 0 and macd_5d_ago >= 0:
        out = -math.cos(-(macd_now / peak))
    elif macd_now <= 0 and macd_5d_ago <= 0:
        out = math.cos(-(macd_now / -peak))
    else:
        out = clamp((macd_now - macd_5d_ago) / peak, -1.0, 1.0) * 0.5
    return clamp(out, -1.0, 1.0)


def crossover_score(
    line: Optional[float],
    signal: Optional[float],
    lo_60d: Optional[float],
    hi_60d: Optional[float],
) -> Optional[float]:
    """
    After a crossover below zero the score ramps toward +1 as the line nears 0;
    above zero it ramps toward -1. None when no crossover state applies.
    """
    if line is None or signal is None or lo_60d is None or hi_60d is None:
        return None
    if line < 0 and signal < 0 and line > signal:
        denom = abs(lo_60d)
        if denom > 0:
            return clamp(1.0 - abs(line) / denom, 0.0, 1.0)
    elif line > 0 and signal > 0 and line < signal:
        denom = abs(hi_60d)
        if denom > 0:
            return -clamp(1.0 - abs(line) / denom, 0.0, 1.0)
    return None


def macd_slope_and_direction(hist6: Sequence[Optional[float]]) -> dict:
    """
    Linear regression over 6 histogram values ordered [day5 .. day0].
    Positive slope means rising histogram. Needs >= 3 non-null points.
    """
    bad = {"slope": 0.0, "direction": "neutral", "magnitude": 0.0, "is_valid": False}
    if not hist6 or len(hist6) != 6:
        return bad

    pts: List[Tuple[float, float]] = [
        (5 - i, float(v)) for i, v in enumerate(hist6) if v is not None
    ]
    if len(pts) < 3:
        return bad

    n = len(pts)
    x_mean = sum(p[0] for p in pts) / n
    y_mean = sum(p[1] for p in pts) / n
    num = sum((x - x_mean) * (y - y_mean) for x, y in pts)
    den = sum((x - x_mean) ** 2 for x, _ in pts)
    if den == 0:
        return bad

    slope = -(num / den)
    direction = "neutral"
    if abs(slope) > 0.01:
        direction = "positive" if slope > 0 else "negative"
    return {"slope": slope, "direction": direction, "magnitude": abs(slope), "is_valid": True}


def _window_score(hist: Sequence[float], macd: Sequence[float]) -> float:
    if len(hist) < 2 or len(macd) < 2:
        return 0.0

    slopes = [hist[i] - hist[i - 1] for i in range(1, len(hist))]
    avg_slope = sum(slopes) / len(slopes)
    h_min, h_max = min(hist), max(hist)
    rng = h_max - h_min
    norm = avg_slope / rng if rng > EPS else avg_slope

    prev, curr = hist[-2], hist[-1]

    if prev < 0 <= curr:
        base = 1.0
    elif prev > 0 >= curr:
        base = -1.0
    elif curr > 0:
        if norm < 0:
            peak = max(h_max, curr)
            base = -clamp((peak - curr) / (peak + EPS), 0.0, 1.0)
        else:
            away = clamp(curr / (h_max + EPS), 0.0, 1.0)
            base = 0.2 * math.tanh(5 * norm) * (0.3 + 0.7 * away)
    elif curr < 0:
        if norm > 0:
            valley = min(h_min, curr)
            base = clamp((curr - valley) / (0 - valley + EPS), 0.0, 1.0)
        else:
            away = clamp(abs(curr) / (abs(h_min) + EPS), 0.0, 1.0)
            base = -0.2 * math.tanh(5 * abs(norm)) * (0.3 + 0.7 * away)
    else:
        base = 0.3 * math.tanh(8 * norm)

    base = clamp(base + 0.15 * math.tanh(6 * norm), -1.0, 1.0)

    # damp bullish reads near the top of the MACD range, bearish near the bottom
    m_min, m_max = min(macd), max(macd)
    pct = (macd[-1] - m_min) / ((m_max - m_min) or 1)
    alpha, gamma = 0.30, 1.20
    if base >= 0:
        weight = 1 - alpha * (max(0.0, pct) ** gamma)
    else:
        weight = 1 - alpha * (max(0.0, 1 - pct) ** gamma)
    return clamp(base * weight, -1.0, 1.0)


def compute_final_macd_score(macd_series: Sequence[float], hist_series: Sequence) -> float:
    """
    Composite direction score in [-1, 1] from 15/5/2-bar windows weighted 2/22, 5/22, 15/22.
    `hist_series` may be plain values or {"date", "value"} dicts (sorted by date).
    Needs >= 30 MACD values and >= 15 histogram values, else 0.
    """
    values = list(hist_series)
    if values and isinstance(values[0], dict):
        values = [h["value"] for h in sorted(values, key=lambda h: h["date"])]

    if len(macd_series) < 30 or len(values) < 15:
        return 0.0

    s15 = _window_score(values[-15:], macd_series[-30:])
    s5 = _window_score(values[-5:], macd_series[-15:])
    s2 = _window_score(values[-2:], macd_series[-5:])
    final = (2 / 22) * s15 + (5 / 22) * s5 + (15 / 22) * s2
    return clamp(round(final, 3), -1.0, 1.0)


def multi_timeframe_macd_score(
    weekly: Optional[float],
    daily: Optional[float],
    four_hour: Optional[float],
) -> dict:
    """Weighted 0.25/0.50/0.25 over whichever timeframes are present, plus an agreement score."""
    parts = [(s, w) for s, w in ((weekly, 0.25), (daily, 0.50), (four_hour, 0.25)) if s is not None]
    total_w = sum(w for _, w in parts)
    weighted = sum(s * w for s, w in parts) / total_w if total_w > 0 else 0.0

    alignment = 0.0
    if len(parts) >= 2:
        vals = [s for s, _ in parts]
        mean = sum(vals) / len(vals)
        std = math.sqrt(sum((v - mean) ** 2 for v in vals) / len(vals))
        alignment = max(0.0, 1 - std / 2)
    elif len(parts) == 1:
        alignment = 1.0

    return {"weighted_score": weighted, "alignment_score": alignment}
