from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

from autotrader.runner.models import Position, TradeRecord


@dataclass(frozen=True)
class Bar:
    t: int  # epoch seconds
    o: float
    h: float
    l: float  # noqa: E741
    c: float
    v: float = 0.0


@dataclass(frozen=True)
class Account:
    equity: float
    buying_power: float
    cash: float = 0.0


@dataclass(frozen=True)
class OrderAck:
    order_id: str
    status: str


class MarketDataPort(Protocol):
    """
    Errors (transport down, auth) raise ExternalUnavailable.
    "No data" is an empty list, never an exception.
    """

    def get_bars(self, symbol: str, interval: str = "1m", range_: str = "1d") -> List[Bar]: ...


class BrokerPort(Protocol):
    def get_positions(self) -> List[Position]: ...

    def get_account(self) -> Account: ...

    def submit_market_order(
        self, symbol: str, qty: int, side: str, ref_price: Optional[float] = None
    ) -> OrderAck: ...


class NotificationPort(Protocol):
    """Best effort. Must never raise back into the engine."""

    def notify_trade(self, trade: TradeRecord) -> Dict[str, Any]: ...

    def notify_signal(self, action: str, symbol: str, detail: str) -> Dict[str, Any]: ...
