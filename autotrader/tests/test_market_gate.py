from datetime import datetime, timezone

import pytest

from autotrader.core.errors import ExternalUnavailable
from autotrader.core.trading_config import TradingConfig
from autotrader.exchange.ports import Bar
from autotrader.ops.market_hours import MarketHours
from autotrader.risk.market_gate import MarketDirectionGate


class _FakeMarketData:
    def __init__(self, closes=(), fail=False):
        self.closes = list(closes)
        self.fail = fail
        self.calls = 0

    def get_bars(self, symbol, interval="1m", range_="1d"):
        self.calls += 1
        if self.fail:
            raise ExternalUnavailable("chart request failed: timeout")
        return [Bar(t=1_760_000_000 + i * 60, o=c, h=c, l=c, c=c) for i, c in enumerate(self.closes)]


def _gate(clock, data, **cfg):
    config = TradingConfig(**cfg)
    return MarketDirectionGate(data, MarketHours(), lambda: config, clock, symbol="SPY")


def test_green_day_allows_without_fetching_bars(clock):
    data = _FakeMarketData()
    d = _gate(clock, data).check(1.0)
    assert d.allow is True
    assert d.method == "daily_green"
    assert data.calls == 0


def test_red_day_without_bars_fails_open(clock):
    d = _gate(clock, _FakeMarketData()).check(-1.0)
    assert d.allow is True
    assert d.method == "no_data"

    d = _gate(clock, _FakeMarketData(fail=True)).check(-1.0)
    assert d.allow is True
    assert d.method == "no_data"


def test_red_day_with_falling_intraday_blocks(clock):
    # 30 minutes of steady decline
    closes = [100.0 - 0.05 * i for i in range(31)]
    d = _gate(clock, _FakeMarketData(closes)).check(-2.0)
    assert d.allow is False
    assert d.method == "blocked"
    assert d.weighted_avg < 0
    assert set(d.timeframes) == {"5m", "10m", "15m", "30m"}
    assert "BLOCKED: recovery not convincing" in d.reason


def test_red_day_with_consistent_recovery_allows(clock):
    closes = [100.0 + 0.05 * i for i in range(31)]
    d = _gate(clock, _FakeMarketData(closes)).check(-1.5)
    assert d.allow is True
    assert d.method == "consistent_recovery"
    assert d.range_position == 1.0
    assert d.is_recovering is True
    assert d.timeframe_summary.startswith("5m:+")


def _tape(**at):
    # 31 one-minute closes around 100, keyed by bar index
    closes = [100.0] * 31
    for i, c in at.items():
        closes[int(i[1:])] = c
    return closes


def test_red_day_recovering_allows_with_few_timeframes_up(clock):
    # 5m and 30m up, 10m and 15m down: too mixed to be consistent
    closes = _tape(b0=99.5, b15=100.5, b20=100.5, b25=99.0)
    d = _gate(clock, _FakeMarketData(closes)).check(-1.2)
    assert d.allow is True
    assert d.method == "recovering"
    assert d.is_recovering is True
    assert d.weighted_avg > 0.05
    assert d.range_position == pytest.approx(0.667)
    assert "2/4 TFs up" in d.reason


def test_red_day_recovering_blocks_when_weighted_average_negative(clock):
    closes = _tape(b0=101.0, b1=98.0, b15=101.0, b20=101.0, b25=99.9)
    d = _gate(clock, _FakeMarketData(closes)).check(-1.2)
    assert d.is_recovering is True
    assert d.weighted_avg < 0
    assert d.allow is False
    assert d.method == "blocked"


def test_too_early_after_open(clock):
    clock.now = datetime(2026, 10, 14, 13, 33, tzinfo=timezone.utc)  # 9:33 New York
    closes = [100.0 - 0.05 * i for i in range(10)]
    d = _gate(clock, _FakeMarketData(closes)).check(-1.0)
    assert d.allow is True
    assert d.method == "too_early"


def test_loose_mode_allows_flat_tape_that_strict_blocks(clock):
    closes = [100.0 - 0.001 * i for i in range(31)]
    strict = _gate(clock, _FakeMarketData(closes)).check(-0.8)
    loose = _gate(clock, _FakeMarketData(closes), market_gate_mode="loose").check(-0.8)
    assert strict.allow is False
    assert loose.allow is True
    assert loose.method == "intraday_flat"


def test_green_rollover_blocks_when_enabled(clock):
    closes = [100.0] * 20 + [100.0 - 0.1 * i for i in range(1, 12)]
    off = _gate(clock, _FakeMarketData(closes)).check(0.5)
    on = _gate(clock, _FakeMarketData(closes), green_rollover_check=True).check(0.5)
    assert off.allow is True
    assert on.allow is False
    assert on.method == "green_rollover_block"
    assert "ROLLING OVER" in on.reason


def test_bars_cached_for_ttl(clock):
    data = _FakeMarketData([100.0] * 10)
    gate = _gate(clock, data)
    gate.bars()
    gate.bars()
    assert data.calls == 1

    clock.advance(seconds=121)
    gate.bars()
    assert data.calls == 2

    gate.invalidate()
    gate.bars()
    assert data.calls == 3


def test_bars_failure_propagates_from_bars():
    data = _FakeMarketData(fail=True)
    gate = MarketDirectionGate(data, MarketHours(), TradingConfig, symbol="SPY")
    with pytest.raises(ExternalUnavailable):
        gate.bars()


def test_direction_now_uses_fallback_without_bars(clock):
    gate = _gate(clock, _FakeMarketData(fail=True))
    assert gate.benchmark_direction_now(fallback=True) is True
    assert gate.benchmark_direction_now(fallback=False) is False


def test_direction_now_rechecks_from_intraday_change(clock):
    falling = [100.0 - 0.05 * i for i in range(31)]
    assert _gate(clock, _FakeMarketData(falling)).benchmark_direction_now(fallback=True) is False

    rising = [100.0 + 0.05 * i for i in range(31)]
    assert _gate(clock, _FakeMarketData(rising)).benchmark_direction_now(fallback=False) is True
