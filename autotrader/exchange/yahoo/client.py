from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import requests

from autotrader.core.errors import ExternalUnavailable
from autotrader.exchange.ports import Bar

log = logging.getLogger("autotrader.exchange.yahoo")


def chart_bars(payload: Dict[str, Any]) -> List[Bar]:
    """
    v8 chart format:
    chart.result[0].timestamp[] + indicators.quote[0].{open,high,low,close,volume}[]
    Rows without a close are skipped; missing high/low fall back to close.
    """
    try:
        result = (payload.get("chart") or {}).get("result") or []
        if not result:
            return []
        res = result[0]
        timestamps = res.get("timestamp") or []
        quote = ((res.get("indicators") or {}).get("quote") or [{}])[0]
    except (AttributeError, IndexError, TypeError):
        return []

    closes = quote.get("close") or []
    opens = quote.get("open") or []
    highs = quote.get("high") or []
    lows = quote.get("low") or []
    vols = quote.get("volume") or []

    def _at(arr: list, i: int) -> Optional[float]:
        return arr[i] if i < len(arr) else None

    bars: List[Bar] = []
    for i, ts in enumerate(timestamps):
        c = _at(closes, i)
        if c is None:
            continue
        c = float(c)
        bars.append(
            Bar(
                t=int(ts),
                o=float(_at(opens, i) or c),
                h=float(_at(highs, i) or c),
                l=float(_at(lows, i) or c),
                c=c,
                v=float(_at(vols, i) or 0.0),
            )
        )
    return bars


class YahooChartClient:
    """Public chart endpoint. Used for benchmark intraday bars (read-only, no auth)."""

    def __init__(self, base_url: str, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update({"User-Agent": "Mozilla/5.0"})

    def _public_get(self, path: str, params: dict | None = None) -> dict:
        try:
            r = self.session.get(
                f"{self.base_url}{path}", params=params or {}, timeout=self.timeout
            )
        except (requests.Timeout, requests.ConnectionError) as e:
            raise ExternalUnavailable(f"chart request failed: {e}") from e

        if r.status_code == 404:
            # unknown symbol -> no data
            return {}
        if r.status_code >= 400:
            raise ExternalUnavailable(f"chart HTTP {r.status_code}: {r.text[:200]}")
        try:
            return r.json()
        except ValueError as e:
            raise ExternalUnavailable(f"chart returned non-JSON body: {e}") from e

    def get_bars(self, symbol: str, interval: str = "1m", range_: str = "1d") -> List[Bar]:
        data = self._public_get(
            f"/v8/finance/chart/{symbol.upper()}",
            {"interval": interval, "range": range_},
        )
        bars = chart_bars(data)
        log.debug("chart %s %s/%s -> %d bars", symbol, interval, range_, len(bars))
        return bars
