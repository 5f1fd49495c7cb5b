from autotrader.core.trading_config import TradingConfig
from autotrader.policy.signals import Action, SignalEvaluator
from autotrader.risk.anti_churn import ChurnCheck
from autotrader.runner.models import Position, Ticker


class _FakeChurn:
    def __init__(self, wash_ok=True, loser_ok=True):
        self.wash_ok = wash_ok
        self.loser_ok = loser_ok

    def check_wash_sale(self, symbol):
        if self.wash_ok:
            return ChurnCheck(True, "No recent sells")
        return ChurnCheck(False, f"WASH SALE BLOCK: {symbol} sold at loss", 12)

    def check_repeat_loser(self, symbol):
        if self.loser_ok:
            return ChurnCheck(True, "0 consecutive losses")
        return ChurnCheck(False, f"REPEAT LOSER: {symbol}", 40)


def _evaluator(anti_churn=None, **cfg):
    config = TradingConfig(**cfg)
    return SignalEvaluator(lambda: config, anti_churn)


def _pos(symbol="HELD", entry=100.0, price=100.0):
    return Position(symbol=symbol, qty=10, avg_entry_price=entry, current_price=price, unrealized_plpc=(price - entry) / entry)


def test_buy_threshold_follows_market_direction():
    ev = _evaluator()
    assert ev.buy_threshold(True) == 7.1
    assert ev.buy_threshold(False) == 8.0

    t = Ticker(symbol="AAA", price=10.0)
    assert ev.evaluate_buy(t, 7.5, market_positive=True).action == Action.BUY
    out = ev.evaluate_buy(t, 7.5, market_positive=False)
    assert out.action == Action.HOLD
    assert out.signals == ["Score 7.50 < 8.0"]


def test_buy_signal_text_names_market_direction():
    out = _evaluator().evaluate_buy(Ticker(symbol="AAA"), 7.5, market_positive=True)
    assert out.signals[0] == "Score 7.50 >= 7.1 (SPY positive)"
    assert out.should_buy


def test_extreme_buy():
    out = _evaluator().evaluate_buy(Ticker(symbol="AAA"), 9.2, market_positive=False)
    assert out.action == Action.EXTREME_BUY
    assert out.is_extreme


def test_bearish_macd_blocks_unless_extreme():
    bearish = Ticker(symbol="AAA", macd_trend="bearish")
    ev = _evaluator()
    out = ev.evaluate_buy(bearish, 8.5, market_positive=True)
    assert out.action == Action.HOLD
    assert "MACD bearish - not buying against momentum" in out.signals

    assert ev.evaluate_buy(bearish, 9.5, market_positive=True).action == Action.EXTREME_BUY


def test_protected_position_blocks_new_buys():
    out = _evaluator().evaluate_buy(
        Ticker(symbol="AAA"), 8.5, market_positive=True, positions=[_pos(price=110.0)]
    )
    assert out.action == Action.HOLD
    assert any(s.startswith("Momentum protection: HELD (+10.0%)") for s in out.signals)


def test_churn_blocks_override_extreme():
    out = _evaluator(_FakeChurn(wash_ok=False)).evaluate_buy(Ticker(symbol="AAA"), 9.5, market_positive=True)
    assert out.action == Action.HOLD
    assert out.is_extreme is False
    assert any("WASH SALE BLOCK" in s for s in out.signals)

    out = _evaluator(_FakeChurn(loser_ok=False)).evaluate_buy(Ticker(symbol="AAA"), 8.0, market_positive=True)
    assert any("REPEAT LOSER" in s for s in out.signals)


def test_optional_confirmations():
    ev = _evaluator(require_bullish_macd=True, require_high_volume=True)
    plain = ev.evaluate_buy(Ticker(symbol="AAA"), 8.5, market_positive=True)
    assert plain.action == Action.HOLD
    assert "MACD not bullish (unknown)" in plain.signals
    assert "Volume not high (unknown)" in plain.signals

    confirmed = ev.evaluate_buy(
        Ticker(symbol="AAA", macd_trend="bullish", volume_status="high"), 8.5, market_positive=True
    )
    assert confirmed.action == Action.BUY


def test_extreme_sell():
    out = _evaluator().evaluate_sell(Ticker(symbol="AAA"), 1.0, _pos("AAA"))
    assert out.action == Action.EXTREME_SELL
    assert out.should_sell


def test_technical_override_sells_protected_position():
    out = _evaluator().evaluate_sell(Ticker(symbol="AAA"), 2.5, _pos("AAA", price=112.0))
    assert out.action == Action.SELL
    assert out.is_technical_override
    assert out.signals[0].startswith("TECHNICAL OVERRIDE: Score 2.50 <= 2.7")


def test_protected_position_held_on_normal_sell_signal():
    out = _evaluator().evaluate_sell(Ticker(symbol="AAA"), 4.0, _pos("AAA", price=109.0))
    assert out.action == Action.HOLD
    assert out.is_protected
    assert "Protected position (+9.0%) - momentum protection active" in out.signals


def test_normal_sell_and_hold():
    ev = _evaluator()
    assert ev.evaluate_sell(Ticker(symbol="AAA"), 4.0, _pos("AAA", price=95.0)).action == Action.SELL
    held = ev.evaluate_sell(Ticker(symbol="AAA"), 6.0, _pos("AAA", price=95.0))
    assert held.action == Action.HOLD
    assert held.signals[0] == "Score 6.00 > 4.5"
    assert "Position: -5.00%" in held.signals


def test_require_bearish_macd_on_normal_sell():
    ev = _evaluator(require_bearish_macd=True)
    assert ev.evaluate_sell(Ticker(symbol="AAA"), 4.0, _pos("AAA")).action == Action.HOLD
    assert ev.evaluate_sell(Ticker(symbol="AAA", macd_trend="bearish"), 4.0, _pos("AAA")).action == Action.SELL
    # extreme ignores confirmation
    assert ev.evaluate_sell(Ticker(symbol="AAA"), 1.0, _pos("AAA")).action == Action.EXTREME_SELL
