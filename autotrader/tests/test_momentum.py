from datetime import datetime, timezone

import pytest

from autotrader.runner.models import Ticker
from autotrader.strategy.momentum import MAX_SNAPSHOTS, MomentumTracker


def _t(price, change=0.0, symbol="AAA"):
    return Ticker(symbol=symbol, price=price, change_percent=change)


def test_snapshots_bounded_and_persisted(tmp_path, clock):
    tracker = MomentumTracker(tmp_path, clock)
    for i in range(MAX_SNAPSHOTS + 2):
        tracker.record_snapshot([_t(100.0 + i)])
        clock.advance(minutes=10)
    assert len(tracker.history["AAA"].snapshots) == MAX_SNAPSHOTS

    again = MomentumTracker(tmp_path, clock)
    assert len(again.history["AAA"].snapshots) == MAX_SNAPSHOTS
    assert again.history["AAA"].snapshots[-1]["price"] == 100.0 + MAX_SNAPSHOTS + 1


def test_tickers_without_price_are_not_recorded(tmp_path, clock):
    tracker = MomentumTracker(tmp_path, clock)
    assert tracker.record_snapshot([Ticker(symbol="AAA")]) == 0
    assert tracker.history == {}


def test_daily_change_recorded_once_after_close(tmp_path, clock):
    clock.now = datetime(2026, 10, 14, 20, 30, tzinfo=timezone.utc)  # 16:30 New York
    tracker = MomentumTracker(tmp_path, clock)
    tracker.record_snapshot([_t(100.0, change=1.2)])
    clock.advance(minutes=10)
    tracker.record_snapshot([_t(100.5, change=1.7)])
    assert tracker.history["AAA"].daily_changes == [
        {"date": "2026-10-14", "close_price": 100.0, "change_percent": 1.2}
    ]


def test_drift_averages_available_windows(tmp_path, clock):
    tracker = MomentumTracker(tmp_path, clock)
    tracker.record_snapshot([_t(100.0)])
    clock.advance(hours=3)
    tracker.record_snapshot([_t(99.0)])
    clock.advance(hours=1)

    d = tracker.drift(_t(96.0, change=-2.0))
    assert d.changes["hour4"] == pytest.approx(-4.0)
    assert d.changes["hour1"] == pytest.approx(-3.0303, abs=1e-3)
    assert d.changes["yesterday"] is None
    assert d.data_points == 4
    assert d.avg_change == pytest.approx(-2.76)
    assert d.has_drift is True


def test_drift_without_history_uses_today(tmp_path, clock):
    d = MomentumTracker(tmp_path, clock).drift(_t(50.0, change=-0.5))
    assert d.avg_change == -0.5
    assert d.has_drift is False


def test_drift_and_score_sells(tmp_path, clock):
    tracker = MomentumTracker(tmp_path, clock)
    tracker.record_snapshot([_t(100.0)])
    clock.advance(hours=4)

    tickers = {"AAA": _t(96.0, change=-2.0), "BBB": _t(20.0, change=1.0, symbol="BBB"), "CCC": _t(5.0, change=-2.0, symbol="CCC")}
    scored = {"AAA": 6.0, "BBB": 3.0, "CCC": 7.0}
    sells = tracker.drift_sells(["AAA", "BBB", "CCC"], scored, tickers, threshold=-0.75, sell_threshold=4.5)

    kinds = {s.symbol: s.kind for s in sells}
    assert kinds == {"AAA": "drift", "BBB": "score"}
    reasons = {s.symbol: s.reason for s in sells}
    assert reasons["AAA"].startswith("Momentum drift: avg ")
    assert reasons["BBB"] == "Score dropped to 3.00"


def test_stagnation(tmp_path, clock):
    tracker = MomentumTracker(tmp_path, clock)
    tracker.record_snapshot([_t(100.0)])
    clock.advance(minutes=30)
    tracker.record_snapshot([_t(100.1)])

    assert tracker.is_stagnant(_t(100.1, change=0.1)) is True
    assert tracker.is_stagnant(_t(100.1, change=1.0)) is False
    # no history: falls back to today's move
    assert tracker.is_stagnant(_t(5.0, change=0.05, symbol="NEW")) is True

    tickers = {"AAA": _t(100.1, change=0.1)}
    assert [s.kind for s in tracker.stagnation_sells(["AAA"], {"AAA": 5.0}, tickers)] == ["stagnant"]
    assert tracker.stagnation_sells(["AAA"], {"AAA": 6.5}, tickers) == []
