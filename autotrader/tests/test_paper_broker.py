import pytest

from autotrader.core.errors import OrderValidationError
from autotrader.exchange.notify import LogNotifier, WebhookNotifier, trade_message
from autotrader.exchange.paper import PaperBroker
from autotrader.exchange.yahoo.client import chart_bars
from autotrader.runner.models import TradeRecord


def _trade():
    return TradeRecord(
        symbol="AAA", side="buy", quantity=5, price=12.5, reason="Top 1", status="filled",
        timestamp="2026-10-14T14:00:00+00:00", mode="paper",
    )


def test_buy_then_mark_then_sell():
    b = PaperBroker(starting_cash=1000.0)
    ack = b.submit_market_order("aaa", 10, "buy", ref_price=50.0)
    assert ack.status == "filled"
    assert b.get_account().buying_power == 500.0

    b.mark_all({"AAA": 55.0, "ZZZ": 1.0})
    pos = b.get_positions()[0]
    assert pos.current_price == 55.0
    assert pos.unrealized_pl_percent == pytest.approx(10.0)
    assert b.get_account().equity == pytest.approx(1050.0)

    b.submit_market_order("AAA", 10, "sell", ref_price=55.0)
    assert b.get_positions() == []
    assert b.get_account().cash == pytest.approx(1050.0)


def test_averaging_into_a_position():
    b = PaperBroker(starting_cash=1000.0)
    b.submit_market_order("AAA", 2, "buy", ref_price=10.0)
    b.submit_market_order("AAA", 2, "buy", ref_price=20.0)
    assert b.get_positions()[0].avg_entry_price == pytest.approx(15.0)


@pytest.mark.parametrize(
    "symbol,qty,side,price",
    [("AAA", 0, "buy", 10.0), ("AAA", 1.5, "buy", 10.0), ("AAA", 1, "hold", 10.0), ("AAA", 1, "buy", None), ("AAA", 200, "buy", 10.0)],
)
def test_rejected_orders(symbol, qty, side, price):
    with pytest.raises(OrderValidationError):
        PaperBroker(starting_cash=1000.0).submit_market_order(symbol, qty, side, ref_price=price)


def test_cannot_oversell():
    b = PaperBroker(starting_cash=1000.0)
    b.submit_market_order("AAA", 1, "buy", ref_price=10.0)
    with pytest.raises(OrderValidationError):
        b.submit_market_order("AAA", 2, "sell", ref_price=10.0)


def test_paper_account_persists(tmp_path):
    PaperBroker(starting_cash=1000.0, data_dir=tmp_path).submit_market_order("AAA", 3, "buy", ref_price=10.0)
    again = PaperBroker(starting_cash=1000.0, data_dir=tmp_path)
    assert again.cash == pytest.approx(970.0)
    assert again.get_positions()[0].qty == 3


def test_chart_payload_parsing():
    payload = {
        "chart": {
            "result": [
                {
                    "timestamp": [1, 2, 3],
                    "indicators": {"quote": [{"open": [1.0, None, 3.0], "high": [1.5, 2.5, None], "low": [0.5, 1.5, 2.5], "close": [1.2, None, 3.1], "volume": [10, 20, None]}]},
                }
            ]
        }
    }
    bars = chart_bars(payload)
    assert [b.c for b in bars] == [1.2, 3.1]
    assert bars[1].h == 3.1
    assert bars[1].v == 0.0
    assert chart_bars({}) == []
    assert chart_bars({"chart": {"result": None}}) == []


# =========================
# Notifications
# =========================
class _Resp:
    def __init__(self, status_code, text=""):
        self.status_code = status_code
        self.text = text


def test_trade_message():
    assert trade_message(_trade()) == "BUY AAA x5 @ $12.50 [paper] Top 1"


def test_log_notifier_always_sends():
    assert LogNotifier().notify_trade(_trade())["sent"] is True


def test_webhook_not_configured():
    out = WebhookNotifier("").notify_trade(_trade())
    assert out == {"sent": False, "channel": "webhook", "error": "not_configured"}


def test_webhook_posts_payload(monkeypatch):
    seen = {}

    def _post(url, json=None, timeout=None):
        seen.update(url=url, json=json, timeout=timeout)
        return _Resp(200)

    monkeypatch.setattr("autotrader.exchange.notify.requests.post", _post)
    out = WebhookNotifier("https://hooks.example.test/x", timeout=3).notify_trade(_trade())
    assert out["sent"] is True
    assert seen["json"]["text"].startswith("BUY AAA")
    assert seen["json"]["trade"]["symbol"] == "AAA"
    assert seen["timeout"] == 3


def test_webhook_failures_never_raise(monkeypatch):
    monkeypatch.setattr("autotrader.exchange.notify.requests.post", lambda *a, **k: _Resp(500, "nope"))
    assert WebhookNotifier("https://hooks.example.test/x").notify_trade(_trade())["error"] == "HTTP 500"

    def _boom(*a, **k):
        raise ConnectionError("down")

    monkeypatch.setattr("autotrader.exchange.notify.requests.post", _boom)
    out = WebhookNotifier("https://hooks.example.test/x").notify_trade(_trade())
    assert out == {"sent": False, "channel": "webhook", "error": "ConnectionError"}


def test_webhook_signal_payload(monkeypatch):
    seen = {}

    def _post(url, json=None, timeout=None):
        seen.update(json=json)
        return _Resp(204)

    monkeypatch.setattr("autotrader.exchange.notify.requests.post", _post)
    out = WebhookNotifier("https://hooks.example.test/x").notify_signal("SELL", "AAA", "Score 3.00 <= 4.5")
    assert out["sent"] is True
    assert seen["json"]["text"] == "SIGNAL SELL AAA: Score 3.00 <= 4.5"
    assert seen["json"]["signal"] == {"action": "SELL", "symbol": "AAA"}
