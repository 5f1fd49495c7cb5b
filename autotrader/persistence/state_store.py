# autotrader/persistence/state_store.py

from __future__ import annotations

import logging
from datetime import date
from pathlib import Path
from typing import Dict, List

from autotrader.persistence.json_store import JsonFile
from autotrader.risk.daily import DailyCounters
from autotrader.runner.models import PendingBuy, TrailingStop

log = logging.getLogger("autotrader.persistence")

STOPS_FILENAME = "trailing-stops.json"
PENDING_FILENAME = "pending-buys.json"
DAILY_FILENAME = "daily-state.json"


class StateStore:
    """Engine-owned state, one JSON file per concern. The engine is the sole writer."""

    def __init__(self, data_dir: str | Path):
        self.data_dir = Path(data_dir)
        self.stops_file = JsonFile(self.data_dir / STOPS_FILENAME)
        self.pending_file = JsonFile(self.data_dir / PENDING_FILENAME)
        self.daily_file = JsonFile(self.data_dir / DAILY_FILENAME)

    # ---------- DAILY ----------
    def load_daily(self, today: date) -> DailyCounters:
        raw = self.daily_file.load(default=None)
        if not isinstance(raw, dict):
            return DailyCounters(day=today)
        return DailyCounters.from_dict(raw, today)

    def save_daily(self, daily: DailyCounters) -> None:
        self.daily_file.write(daily.to_dict())

    # ---------- TRAILING STOPS ----------
    def load_stops(self) -> Dict[str, TrailingStop]:
        raw = self.stops_file.load(default={})
        if not isinstance(raw, dict):
            log.warning("%s is not an object, starting empty", self.stops_file.path)
            return {}

        out: Dict[str, TrailingStop] = {}
        for sym, row in raw.items():
            if not isinstance(row, dict):
                continue
            stop = TrailingStop.from_dict({"symbol": sym, **row})
            if stop is not None:
                out[stop.symbol] = stop
        return out

    def save_stops(self, stops: Dict[str, TrailingStop]) -> None:
        self.stops_file.write({sym: s.to_dict() for sym, s in sorted(stops.items())})

    # ---------- PENDING BUYS ----------
    def load_pending(self) -> List[PendingBuy]:
        raw = self.pending_file.load(default=[])
        if not isinstance(raw, list):
            return []

        out: List[PendingBuy] = []
        seen = set()
        for row in raw:
            if not isinstance(row, dict):
                continue
            p = PendingBuy.from_dict(row)
            # at most one per symbol
            if p is None or p.symbol in seen:
                continue
            seen.add(p.symbol)
            out.append(p)
        return out

    def save_pending(self, pending: List[PendingBuy]) -> None:
        self.pending_file.write([p.to_dict() for p in pending])
