from datetime import datetime, timezone
from types import SimpleNamespace

from autotrader.core.errors import OrderValidationError
from autotrader.core.trading_config import TradingConfig
from autotrader.execution.scheduler import OrderScheduler
from autotrader.ops.market_hours import MarketHours
from autotrader.persistence.state_store import StateStore


class _FakeGate:
    def __init__(self, positive):
        self.positive = positive

    def benchmark_direction_now(self, fallback):
        return self.positive


class _Config:
    def __init__(self, **fields):
        self.cfg = TradingConfig(**fields)

    def __call__(self):
        return self.cfg


def _scheduler(tmp_path, clock, config=None, gate=None):
    return OrderScheduler(
        get_config=config or _Config(),
        store=StateStore(tmp_path),
        market_hours=MarketHours(),
        clock=clock,
        defensive_symbols=["SQQQ", "SH"],
        buy_delay_seconds=300,
        max_drawdown_percent=3.0,
        gate=gate,
    )


def _ok(p):
    return SimpleNamespace(success=True, reason=f"bought {p.symbol}")


def test_can_trade_requires_enabled_and_open_market(tmp_path, clock):
    assert _scheduler(tmp_path, clock, _Config(enabled=False)).can_trade("AAA").reason == "Auto-trading not enabled"

    clock.now = datetime(2026, 10, 17, 15, 0, tzinfo=timezone.utc)  # Saturday
    out = _scheduler(tmp_path, clock).can_trade("AAA")
    assert out.allowed is False
    assert out.reason.startswith("Market closed")


def test_buys_wait_for_the_first_half_hour(tmp_path, clock):
    clock.now = datetime(2026, 10, 14, 13, 45, tzinfo=timezone.utc)  # 9:45 New York
    s = _scheduler(tmp_path, clock)
    out = s.can_trade("AAA", "buy")
    assert out.allowed is False
    assert out.reason == "Too early to buy — 15m since open"
    assert s.can_trade("AAA", "sell").allowed is True
    assert _scheduler(tmp_path, clock, _Config(min_minutes_before_buy=10)).can_trade("AAA").allowed is True

    clock.advance(minutes=15)
    assert s.can_trade("AAA", "buy").allowed is True


def test_daily_trade_limit(tmp_path, clock):
    s = _scheduler(tmp_path, clock, _Config(max_daily_trades=2))
    s.record_trade("A", "buy")
    s.record_trade("B", "buy")
    assert s.can_trade("C").reason == "Daily trade limit reached"


def test_cooldown_per_symbol(tmp_path, clock):
    s = _scheduler(tmp_path, clock)
    s.record_trade("AAA", "sell")
    assert s.can_trade("AAA", "sell").reason == "Cooldown active for AAA"
    assert s.can_trade("BBB", "sell").allowed is True

    clock.advance(minutes=31)
    assert s.can_trade("AAA", "sell").allowed is True


def test_blacklist_and_watchlist(tmp_path, clock):
    s = _scheduler(tmp_path, clock, _Config(blacklist="bad", watchlist=["AAA", "BAD"]))
    assert s.can_trade("BAD").reason == "BAD is blacklisted"
    assert s.can_trade("ZZZ").reason == "ZZZ not in watchlist"
    assert s.can_trade("aaa").allowed is True


def test_one_buy_per_ticker_per_day(tmp_path, clock):
    s = _scheduler(tmp_path, clock)
    s.record_trade("AAA", "buy")
    clock.advance(minutes=31)
    assert s.can_trade("AAA", "buy").reason == "Already traded AAA today"
    # selling what was bought today is still allowed inside the day-trade budget
    assert s.can_trade("AAA", "sell").allowed is True


def test_day_trade_limit(tmp_path, clock):
    s = _scheduler(tmp_path, clock, _Config(max_day_trades=1, only_one_trade_per_ticker_per_day=False, cooldown_minutes=0))
    s.record_trade("AAA", "buy")
    assert s.record_trade("AAA", "sell") is True
    s.record_trade("BBB", "buy")
    out = s.can_trade("BBB", "sell")
    assert out.allowed is False
    assert out.reason.startswith("Day trade limit: 1 in last 5 business days")


def test_daily_counters_reset_on_new_exchange_day(tmp_path, clock):
    s = _scheduler(tmp_path, clock)
    s.record_trade("AAA", "buy")
    assert s.daily.trade_count == 1
    clock.advance(days=1)
    assert s.daily.trade_count == 0
    assert s.daily.traded_today == {}
    # cooldown timestamps survive the reset
    assert "AAA" in s.daily.last_trade_at


def test_negative_market_only_queues_defensive(tmp_path, clock):
    s = _scheduler(tmp_path, clock)
    blocked = s.request_buy("AAA", 10.0, "Top 1", market_positive=False)
    assert blocked.queued is False
    assert blocked.blocked is True
    assert "not a defensive ETF" in blocked.reason

    ok = s.request_buy("SQQQ", 10.0, "Top 1", market_positive=False)
    assert ok.queued is True
    assert (ok.execute_after - clock()).total_seconds() == 300


def test_one_pending_entry_per_symbol(tmp_path, clock):
    s = _scheduler(tmp_path, clock)
    assert s.request_buy("AAA", 10.0, "Top 1", True).queued is True
    again = s.request_buy("aaa", 11.0, "Top 1", True)
    assert again.queued is False
    assert again.reason == "Already in queue"
    assert len(s.pending_buys()) == 1


def test_pending_buys_survive_restart(tmp_path, clock):
    _scheduler(tmp_path, clock).request_buy("AAA", 10.0, "Top 1", True)
    again = _scheduler(tmp_path, clock)
    assert again.is_queued("AAA")
    assert again.pending_buys()[0]["remaining_seconds"] == 300


def test_pending_buy_waits_for_delay(tmp_path, clock):
    s = _scheduler(tmp_path, clock)
    s.request_buy("AAA", 10.0, "Top 1", True)
    clock.advance(seconds=299)
    assert s.process_pending_buys(_ok) == []

    clock.advance(seconds=1)
    out = s.process_pending_buys(_ok)
    assert [(o.symbol, o.executed) for o in out] == [("AAA", True)]
    assert s.pending_buys() == []


def test_market_flip_cancels_non_defensive_only(tmp_path, clock):
    s = _scheduler(tmp_path, clock, gate=_FakeGate(positive=False))
    s.request_buy("AAA", 10.0, "Top 1", True)
    s.request_buy("SQQQ", 10.0, "Top 2", True)
    clock.advance(seconds=301)

    out = {o.symbol: o for o in s.process_pending_buys(_ok)}
    assert out["AAA"].executed is False
    assert out["AAA"].reason == "Market turned negative"
    assert out["SQQQ"].executed is True
    assert s.pending_buys() == []


def test_execution_error_is_reported_not_raised(tmp_path, clock):
    s = _scheduler(tmp_path, clock)
    s.request_buy("AAA", 10.0, "Top 1", True)
    clock.advance(seconds=301)

    def _boom(p):
        raise OrderValidationError("Invalid price: 0")

    out = s.process_pending_buys(_boom)
    assert out[0].executed is False
    assert out[0].reason == "OrderValidationError: Invalid price: 0"


def test_cancel_pending_buy(tmp_path, clock):
    s = _scheduler(tmp_path, clock)
    s.request_buy("AAA", 10.0, "Top 1", True)
    assert s.cancel_pending_buy("aaa") is True
    assert s.cancel_pending_buy("AAA") is False
    assert _scheduler(tmp_path, clock).pending_buys() == []


def test_drawdown_breaker_blocks_non_defensive_buys(tmp_path, clock):
    s = _scheduler(tmp_path, clock)
    s.risk.refresh(100_000.0)
    decision = s.risk.refresh(96_500.0)
    assert decision.breaker is True

    blocked = s.request_buy("AAA", 10.0, "Top 1", True)
    assert blocked.blocked is True
    assert blocked.reason.startswith("Daily drawdown circuit breaker active")
    assert s.request_buy("SH", 10.0, "Top 1", True).queued is True
