"""Trade and signal notifications. Never log webhook URLs."""

from __future__ import annotations

import logging
from typing import Any, Dict

import requests

from autotrader.runner.models import TradeRecord

logger = logging.getLogger("autotrader.exchange.notify")


def trade_message(trade: TradeRecord) -> str:
    return (
        f"{trade.side.upper()} {trade.symbol} x{trade.quantity:g} @ ${trade.price:.2f}"
        f" [{trade.mode}] {trade.reason}"
    )


def signal_message(action: str, symbol: str, detail: str) -> str:
    return f"SIGNAL {action.upper()} {symbol}: {detail}"


class LogNotifier:
    def notify_trade(self, trade: TradeRecord) -> Dict[str, Any]:
        logger.info("trade: %s", trade_message(trade))
        return {"sent": True, "channel": "log"}

    def notify_signal(self, action: str, symbol: str, detail: str) -> Dict[str, Any]:
        logger.info("signal: %s", signal_message(action, symbol, detail))
        return {"sent": True, "channel": "log"}


class WebhookNotifier:
    """POST {"text": ..., ...} to a webhook. Returns sent=False on any failure."""

    def __init__(self, url: str, timeout: float = 10.0):
        self.url = url
        self.timeout = timeout

    def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self.url:
            logger.debug("Webhook not configured, skipping message")
            return {"sent": False, "channel": "webhook", "error": "not_configured"}
        try:
            r = requests.post(self.url, json=payload, timeout=self.timeout)
            if r.status_code >= 300:
                logger.warning("Webhook send failed: %s %s", r.status_code, r.text[:200])
                return {"sent": False, "channel": "webhook", "error": f"HTTP {r.status_code}"}
            return {"sent": True, "channel": "webhook"}
        except Exception as e:
            logger.exception("Webhook error: %s", e)
            return {"sent": False, "channel": "webhook", "error": type(e).__name__}

    def notify_trade(self, trade: TradeRecord) -> Dict[str, Any]:
        return self._post({"text": trade_message(trade), "trade": trade.to_dict()})

    def notify_signal(self, action: str, symbol: str, detail: str) -> Dict[str, Any]:
        return self._post(
            {"text": signal_message(action, symbol, detail), "signal": {"action": action, "symbol": symbol}}
        )
