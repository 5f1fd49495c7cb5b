# autotrader/persistence/trade_log.py
from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from autotrader.persistence.json_store import JsonFile
from autotrader.runner.models import TradeRecord

log = logging.getLogger("autotrader.persistence")

TRADES_FILENAME = "trades-log.json"


class TradeLog:
    """
    Append-only trade history (trades-log.json).
    Source for "last buy of symbol" and "sells in the trailing window".
    """

    def __init__(self, data_dir: str | Path, max_records: int = 0):
        self.file = JsonFile(Path(data_dir) / TRADES_FILENAME)
        self.max_records = int(max_records or 0)
        self._records: List[TradeRecord] = self._load()

    def _load(self) -> List[TradeRecord]:
        raw = self.file.load(default=[])
        if not isinstance(raw, list):
            log.warning("%s is not an array, starting empty", self.file.path)
            return []
        out: List[TradeRecord] = []
        for row in raw:
            if isinstance(row, dict) and row.get("symbol") and row.get("side"):
                out.append(TradeRecord.from_dict(row))
        return out

    def append(self, trade: TradeRecord) -> None:
        self._records.append(trade)
        if self.max_records and len(self._records) > self.max_records:
            # bounded tail
            self._records = self._records[-self.max_records :]
        self.file.write([t.to_dict() for t in self._records])

    def all(self) -> List[TradeRecord]:
        return list(self._records)

    def recent(self, n: int = 10) -> List[TradeRecord]:
        return self._records[-n:] if n > 0 else []

    def last_buy(
        self, symbol: str, before: Optional[datetime] = None
    ) -> Optional[TradeRecord]:
        sym = symbol.upper()
        for t in reversed(self._records):
            if t.symbol != sym or t.side != "buy":
                continue
            if before is not None:
                at = t.at
                if at is None or at >= before:
                    continue
            return t
        return None

    def sells_since(
        self, since: datetime, symbol: Optional[str] = None
    ) -> List[TradeRecord]:
        sym = symbol.upper() if symbol else None
        out: List[TradeRecord] = []
        for t in self._records:
            if t.side != "sell":
                continue
            if sym and t.symbol != sym:
                continue
            at = t.at
            if at is not None and at > since:
                out.append(t)
        return out

    def __len__(self) -> int:
        return len(self._records)
