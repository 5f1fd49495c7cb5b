from datetime import datetime, timezone

import pytest

from autotrader.execution.trailing_stop import (
    TrailingStopEngine,
    calculate_stop_loss_percent,
    calculate_stop_price,
)
from autotrader.ops.market_hours import MarketHours
from autotrader.persistence.state_store import StateStore
from autotrader.runner.models import Position


def _pos(price, entry=100.0, symbol="AAA"):
    return Position(symbol=symbol, qty=10, avg_entry_price=entry, current_price=price)


def _engine(tmp_path, clock):
    return TrailingStopEngine(StateStore(tmp_path), clock, MarketHours())


@pytest.mark.parametrize(
    "gain,expected",
    [(5.0, 2.0), (8.0, 4.0), (3.0, 1.0), (0.0, 0.0), (-4.0, 0.0), (0.5, 1.0), (20.0, 10.0)],
)
def test_stop_loss_percent_steps(gain, expected):
    assert calculate_stop_loss_percent(gain) == expected


def test_stop_price_locks_gain_minus_trail():
    assert calculate_stop_price(100.0, 10.0, 4.0) == pytest.approx(106.0)
    assert calculate_stop_price(100.0, 0.0, 0.0) is None


def test_stop_never_moves_down(tmp_path, clock):
    engine = _engine(tmp_path, clock)
    seen = []
    for price in (110.0, 120.0, 105.0, 130.0, 100.0, 90.0, 125.0):
        engine.update(_pos(price))
        stop = engine.get("AAA")
        seen.append(stop.stop_price if stop else 0.0)
    assert seen == sorted(seen)
    assert seen[:4] == [pytest.approx(106.0), pytest.approx(110.0), pytest.approx(110.0), pytest.approx(116.0)]


def test_update_actions(tmp_path, clock):
    engine = _engine(tmp_path, clock)
    assert engine.update(_pos(99.0)).action == "none"
    assert engine.update(_pos(110.0)).action == "created"
    assert engine.update(_pos(108.0)).action == "kept"
    assert engine.update(_pos(120.0)).action == "raised"
    assert engine.update(_pos(0.0)).action == "none"


def test_stops_persist_across_restart(tmp_path, clock):
    _engine(tmp_path, clock).update(_pos(120.0))
    again = _engine(tmp_path, clock)
    assert again.get("aaa").stop_price == pytest.approx(110.0)
    assert again.get("AAA").protected_gain_percent == pytest.approx(10.0)


def test_trigger_when_price_falls_to_stop(tmp_path, clock):
    engine = _engine(tmp_path, clock)
    engine.update(_pos(120.0))
    assert engine.check_stop_triggers([_pos(111.0)]) == []

    hits = engine.check_stop_triggers([_pos(109.5)])
    assert len(hits) == 1
    assert hits[0].symbol == "AAA"
    assert hits[0].reason == "Trailing stop hit: $109.50 <= $110.00 (locks +10.0%)"


def test_remove(tmp_path, clock):
    engine = _engine(tmp_path, clock)
    engine.update(_pos(120.0))
    assert engine.remove("AAA") is True
    assert engine.remove("AAA") is False
    assert _engine(tmp_path, clock).get("AAA") is None


def test_update_all_summary(tmp_path, clock):
    engine = _engine(tmp_path, clock)
    out = engine.update_all([_pos(110.0, symbol="A"), _pos(95.0, symbol="B")])
    assert out["summary"]["created"] == 1
    assert out["summary"]["none"] == 1
    assert out["summary"]["errors"] == 0
    assert [r["symbol"] for r in out["results"]] == ["A", "B"]


def test_should_update_only_top_of_hour_while_open(tmp_path, clock):
    engine = _engine(tmp_path, clock)
    assert engine.should_update_now(datetime(2026, 10, 14, 14, 2, tzinfo=timezone.utc)) is True
    assert engine.should_update_now(datetime(2026, 10, 14, 14, 30, tzinfo=timezone.utc)) is False
    # Saturday
    assert engine.should_update_now(datetime(2026, 10, 17, 14, 2, tzinfo=timezone.utc)) is False


def test_status_labels(tmp_path, clock):
    engine = _engine(tmp_path, clock)
    engine.update(_pos(120.0, symbol="LOCK"))
    engine.update(_pos(120.0, symbol="NEAR"))
    engine.update(_pos(120.0, symbol="HIT"))
    rows = engine.status(
        [
            _pos(120.0, symbol="LOCK"),
            _pos(111.0, symbol="NEAR"),
            _pos(109.0, symbol="HIT"),
            _pos(103.0, symbol="UP"),
            _pos(97.0, symbol="DOWN"),
        ]
    )
    labels = {r["symbol"]: r["status"] for r in rows}
    assert labels == {
        "LOCK": "GAINS_LOCKED",
        "NEAR": "APPROACHING_STOP",
        "HIT": "STOP_TRIGGERED",
        "UP": "PROFITABLE",
        "DOWN": "UNDERWATER",
    }
