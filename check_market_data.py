from dotenv import load_dotenv

load_dotenv()

import os

from autotrader.core.errors import ExternalUnavailable
from autotrader.exchange.yahoo.client import YahooChartClient

base = os.getenv("CHART_BASE_URL", "https://query1.finance.yahoo.com").strip().rstrip("/")
symbol = os.getenv("BENCHMARK_SYMBOL", "SPY").strip().upper()
timeout = float(os.getenv("HTTP_TIMEOUT_SECONDS", "10").strip())

client = YahooChartClient(base, timeout=timeout)

try:
    bars = client.get_bars(symbol, interval="1m", range_="1d")
except ExternalUnavailable as e:
    raise SystemExit(f"Chart endpoint unavailable: {e}")

print(symbol, "bars:", len(bars))
if bars:
    first, last = bars[0], bars[-1]
    change = (last.c - first.c) / first.c * 100.0 if first.c else 0.0
    print(f"first close {first.c:.2f}  last close {last.c:.2f}  change {change:+.2f}%")
