# autotrader/persistence/audit.py
from __future__ import annotations

import json
import logging
from collections import deque
from pathlib import Path
from typing import Any, Dict, List, Optional

from autotrader.ops.context import get_actor, get_cycle_id
from autotrader.persistence.json_store import utc_now_iso

log = logging.getLogger("autotrader.audit")


class Audit:
    """
    Decision trail. Every block, rejection and execution is written here
    as one JSON line; /trading/audit/tail reads it back.
    """

    def __init__(self, jsonl_path: str = "logs/trading_audit.jsonl"):
        self.jsonl_path = Path(jsonl_path)

        # ensure logs folder + file exist
        try:
            self.jsonl_path.parent.mkdir(parents=True, exist_ok=True)
            self.jsonl_path.touch(exist_ok=True)
        except OSError as e:
            # never crash the engine due to audit file issues
            log.warning("audit file not writable: %s", e)

    def event(
        self,
        event_type: str,
        cycle_id: Optional[str] = None,
        symbol: Optional[str] = None,
        action: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        obj = {
            "timestamp_utc": utc_now_iso(),
            "event_type": event_type,
            "cycle_id": cycle_id or get_cycle_id(),
            "actor": get_actor(),
            "symbol": symbol,
            "action": action,
            "details": details or {},
        }
        log.debug("audit %s %s %s", event_type, symbol or "-", action or "-")
        self._write_jsonl(obj)

    def tail(self, n: int = 50) -> List[Dict[str, Any]]:
        if n <= 0 or not self.jsonl_path.exists():
            return []
        out: List[Dict[str, Any]] = []
        with self.jsonl_path.open("r", encoding="utf-8") as f:
            for line in deque(f, maxlen=n):
                line = line.strip()
                if not line:
                    continue
                try:
                    out.append(json.loads(line))
                except ValueError:
                    continue
        return out

    def _write_jsonl(self, obj: Dict[str, Any]) -> None:
        try:
            self.jsonl_path.parent.mkdir(parents=True, exist_ok=True)
            with self.jsonl_path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(obj, ensure_ascii=False, default=str) + "\n")
        except OSError as e:
            # never crash trading loop because audit file write failed
            log.warning("audit write failed: %s", e)
