from __future__ import annotations

import logging
import threading
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from autotrader.core.errors import OrderValidationError
from autotrader.exchange.ports import Account, OrderAck
from autotrader.persistence.json_store import JsonFile
from autotrader.runner.models import Position

log = logging.getLogger("autotrader.exchange.paper")

PAPER_FILENAME = "paper-account.json"


class PaperBroker:
    """
    Simulated account for EXECUTION_MODE=paper.
    Market orders fill immediately at the reference price (last mark if none given).
    """

    def __init__(
        self,
        starting_cash: float = 100_000.0,
        data_dir: Optional[str | Path] = None,
    ):
        self._lock = threading.Lock()
        self.file = JsonFile(Path(data_dir) / PAPER_FILENAME) if data_dir else None
        self.cash = float(starting_cash)
        # symbol -> {"qty": float, "avg_entry_price": float, "last_price": float}
        self.positions: Dict[str, Dict[str, float]] = {}
        self.orders: List[Dict[str, Any]] = []
        self._restore()

    # ---------- persistence ----------
    def _restore(self) -> None:
        if not self.file:
            return
        raw = self.file.load(default=None)
        if not isinstance(raw, dict):
            return
        self.cash = float(raw.get("cash", self.cash))
        self.positions = {
            str(k).upper(): {
                "qty": float(v.get("qty", 0.0)),
                "avg_entry_price": float(v.get("avg_entry_price", 0.0)),
                "last_price": float(v.get("last_price", v.get("avg_entry_price", 0.0))),
            }
            for k, v in (raw.get("positions") or {}).items()
            if isinstance(v, dict)
        }

    def _save(self) -> None:
        if self.file:
            self.file.write({"cash": self.cash, "positions": self.positions})

    # ---------- marks ----------
    def mark(self, symbol: str, price: Optional[float]) -> None:
        sym = symbol.upper()
        if price and price > 0 and sym in self.positions:
            self.positions[sym]["last_price"] = float(price)

    def mark_all(self, prices: Dict[str, float]) -> None:
        with self._lock:
            for sym, px in prices.items():
                self.mark(sym, px)

    # ---------- BrokerPort ----------
    def get_positions(self) -> List[Position]:
        out: List[Position] = []
        for sym, p in sorted(self.positions.items()):
            entry = p["avg_entry_price"]
            last = p["last_price"] or entry
            plpc = (last - entry) / entry if entry > 0 else 0.0
            out.append(
                Position(
                    symbol=sym,
                    qty=p["qty"],
                    avg_entry_price=entry,
                    current_price=last,
                    unrealized_plpc=plpc,
                )
            )
        return out

    def get_account(self) -> Account:
        market_value = sum(p["qty"] * (p["last_price"] or p["avg_entry_price"]) for p in self.positions.values())
        return Account(equity=self.cash + market_value, buying_power=self.cash, cash=self.cash)

    def submit_market_order(
        self, symbol: str, qty: int, side: str, ref_price: Optional[float] = None
    ) -> OrderAck:
        sym = symbol.upper()
        side = side.lower()
        if side not in ("buy", "sell"):
            raise OrderValidationError(f"Invalid side: {side}")
        if not isinstance(qty, int) or qty < 1:
            raise OrderValidationError(f"Invalid quantity: {qty}")

        with self._lock:
            held = self.positions.get(sym)
            price = ref_price or (held["last_price"] if held else None)
            if not price or price <= 0:
                raise OrderValidationError(f"No reference price for {sym}")

            if side == "buy":
                cost = qty * price
                if cost > self.cash + 1e-9:
                    raise OrderValidationError(
                        f"Insufficient buying power (${self.cash:.2f} available, need ${cost:.2f})"
                    )
                self.cash -= cost
                if held:
                    new_qty = held["qty"] + qty
                    held["avg_entry_price"] = (held["avg_entry_price"] * held["qty"] + cost) / new_qty
                    held["qty"] = new_qty
                    held["last_price"] = price
                else:
                    self.positions[sym] = {
                        "qty": float(qty),
                        "avg_entry_price": float(price),
                        "last_price": float(price),
                    }
            else:
                if not held or held["qty"] < qty:
                    have = held["qty"] if held else 0
                    raise OrderValidationError(f"Cannot sell {qty} {sym}: holding {have}")
                self.cash += qty * price
                held["qty"] -= qty
                held["last_price"] = price
                if held["qty"] <= 1e-9:
                    del self.positions[sym]

            order_id = str(uuid.uuid4())
            self.orders.append(
                {"id": order_id, "symbol": sym, "qty": qty, "side": side, "price": price, "status": "filled"}
            )
            self._save()

        log.info("paper %s %s x%d @ %.2f", side.upper(), sym, qty, price)
        return OrderAck(order_id=order_id, status="filled")
