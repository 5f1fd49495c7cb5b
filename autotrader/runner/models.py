# autotrader/runner/models.py
from __future__ import annotations

import math
import uuid
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from typing import Any, Dict, List, Optional

from autotrader.persistence.json_store import parse_ts, to_iso


def _f(v: Any, default: Optional[float] = None) -> Optional[float]:
    """Loose float coercion for boundary data (None/NaN/garbage -> default)."""
    if v is None or v == "":
        return default
    try:
        x = float(v)
    except (TypeError, ValueError):
        return default
    if math.isnan(x) or math.isinf(x):
        return default
    return x


def _ts(v: Any) -> str:
    """Legacy files carry epoch-ms timestamps; normalise to ISO."""
    if isinstance(v, (int, float)):
        dt = parse_ts(v)
        return to_iso(dt) if dt else ""
    return str(v or "")


def _known(cls, raw: Dict[str, Any]) -> Dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in raw.items() if k in names}


@dataclass(frozen=True)
class Ticker:
    """Per-cycle snapshot of one symbol. Everything except `symbol` is optional."""

    symbol: str
    price: Optional[float] = None
    change_percent: Optional[float] = None
    score: Optional[float] = None  # precomputed effective score

    # technical / prediction
    rsi: Optional[float] = None
    technical_score: Optional[float] = None
    prediction_score: Optional[float] = None
    prediction_age_days: Optional[float] = None
    prediction_date: Optional[str] = None
    avg_directional: Optional[float] = None
    avg_positive: Optional[float] = None

    # volume
    sigma_score: Optional[float] = None
    intraday_volume_multiplier: Optional[float] = None
    recent_price_change_30m: Optional[float] = None
    volume_status: Optional[str] = None

    # MACD
    macd_weighted_score: Optional[float] = None
    improved_macd_score: Optional[float] = None
    macd_histogram: List[Optional[float]] = field(default_factory=list)
    macd: Optional[float] = None
    macd_5d_ago: Optional[float] = None
    macd_line: Optional[float] = None
    macd_signal: Optional[float] = None
    macd_line_min_30d: Optional[float] = None
    macd_line_max_30d: Optional[float] = None
    macd_line_min_60d: Optional[float] = None
    macd_line_max_60d: Optional[float] = None
    macd_line_min_120d: Optional[float] = None
    macd_line_max_120d: Optional[float] = None
    effective_macd_score: Optional[float] = None
    macd_trend: Optional[str] = None  # "bullish" | "bearish" | None

    # 60-day price range
    price_min_60d: Optional[float] = None
    price_max_60d: Optional[float] = None

    earnings_date: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Ticker":
        data = _known(cls, raw)
        data["symbol"] = str(raw.get("symbol") or "").strip().upper()
        for f in fields(cls):
            if f.name in ("symbol", "macd_histogram", "prediction_date",
                          "earnings_date", "macd_trend", "volume_status"):
                continue
            if f.name in data:
                data[f.name] = _f(data[f.name])
        hist = raw.get("macd_histogram") or []
        data["macd_histogram"] = [_f(h) for h in hist]
        return cls(**data)

    def sanitized(self) -> "Ticker":
        """Copy with NaN/inf and non-numeric inputs turned into missing values."""
        return Ticker.from_dict(asdict(self))


@dataclass(frozen=True)
class Position:
    symbol: str
    qty: float
    avg_entry_price: float
    current_price: float
    unrealized_plpc: Optional[float] = None  # fraction: 0.08 == +8%

    @property
    def unrealized_pl_percent(self) -> float:
        if self.unrealized_plpc is not None:
            v = _f(self.unrealized_plpc, 0.0) * 100.0
            return v
        if self.avg_entry_price and self.avg_entry_price > 0 and self.current_price:
            return (self.current_price - self.avg_entry_price) / self.avg_entry_price * 100.0
        return 0.0

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Position":
        return cls(
            symbol=str(raw.get("symbol") or "").strip().upper(),
            qty=_f(raw.get("qty", raw.get("quantity")), 0.0),
            avg_entry_price=_f(raw.get("avg_entry_price"), 0.0),
            current_price=_f(raw.get("current_price"), 0.0),
            unrealized_plpc=_f(raw.get("unrealized_plpc")),
        )


@dataclass(frozen=True)
class TradeRecord:
    """Append-only trade log entry. Never mutated after write."""

    symbol: str
    side: str  # "buy" | "sell"
    quantity: float
    price: float
    reason: str
    status: str
    timestamp: str
    mode: str  # "paper" | "live"
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    buy_price: Optional[float] = None
    pnl: Optional[float] = None
    is_loss: Optional[bool] = None

    @property
    def at(self) -> Optional[datetime]:
        return parse_ts(self.timestamp)

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        return {k: v for k, v in out.items() if v is not None}

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "TradeRecord":
        return cls(
            id=str(raw.get("id") or uuid.uuid4()),
            symbol=str(raw.get("symbol") or "").upper(),
            side=str(raw.get("side") or "").lower(),
            quantity=_f(raw.get("quantity"), 0.0),
            price=_f(raw.get("price"), 0.0),
            reason=str(raw.get("reason") or ""),
            status=str(raw.get("status") or ""),
            timestamp=_ts(raw.get("timestamp")),
            mode=str(raw.get("mode") or "paper"),
            buy_price=_f(raw.get("buy_price", raw.get("buyPrice"))),
            pnl=_f(raw.get("pnl")),
            is_loss=raw.get("is_loss", raw.get("isLoss")),
        )


@dataclass(frozen=True)
class PendingBuy:
    symbol: str
    price: float
    reason: str
    market_positive: bool
    queued_at: datetime
    execute_after: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "price": self.price,
            "reason": self.reason,
            "market_positive": self.market_positive,
            "queued_at": to_iso(self.queued_at),
            "execute_after": to_iso(self.execute_after),
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> Optional["PendingBuy"]:
        queued_at = parse_ts(raw.get("queued_at"))
        execute_after = parse_ts(raw.get("execute_after"))
        symbol = str(raw.get("symbol") or "").upper()
        if not symbol or queued_at is None or execute_after is None:
            return None
        return cls(
            symbol=symbol,
            price=_f(raw.get("price"), 0.0),
            reason=str(raw.get("reason") or ""),
            market_positive=bool(raw.get("market_positive", False)),
            queued_at=queued_at,
            execute_after=execute_after,
        )


@dataclass
class TrailingStop:
    symbol: str
    entry_price: float
    stop_price: float
    stop_loss_percent: float
    protected_gain_percent: float
    high_water_price: float
    updated_at: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> Optional["TrailingStop"]:
        symbol = str(raw.get("symbol") or "").upper()
        stop_price = _f(raw.get("stop_price"))
        if not symbol or stop_price is None:
            return None
        entry = _f(raw.get("entry_price"), 0.0)
        return cls(
            symbol=symbol,
            entry_price=entry,
            stop_price=stop_price,
            stop_loss_percent=_f(raw.get("stop_loss_percent"), 0.0),
            protected_gain_percent=_f(raw.get("protected_gain_percent"), 0.0),
            high_water_price=_f(raw.get("high_water_price"), entry),
            updated_at=str(raw.get("updated_at") or ""),
        )
