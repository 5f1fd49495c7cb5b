# autotrader/core/trading_config.py
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from autotrader.core.config import _parse_list
from autotrader.core.errors import ConfigError
from autotrader.persistence.json_store import JsonFile

log = logging.getLogger("autotrader.config")

CONFIG_FILENAME = "trading-config.json"


class TradingConfig(BaseModel):
    """Engine-owned trading rules. Persisted to trading-config.json on every change."""

    model_config = ConfigDict(extra="ignore", validate_assignment=True)

    enabled: bool = True
    mode: str = "paper"  # paper/live

    # --- Thresholds ---
    buy_threshold: float = 8.0  # market negative
    buy_threshold_market_positive: float = 7.1
    sell_threshold: float = 4.5
    extreme_buy_threshold: float = 9.0
    extreme_sell_threshold: float = 1.5
    technical_override_threshold: float = 2.7

    # --- Momentum ---
    good_momentum_percent: float = 5.0
    protected_position_percent: float = 8.0
    protect_momentum: bool = True

    # --- Optional confirmations ---
    require_bullish_macd: bool = False
    require_bearish_macd: bool = False
    require_high_volume: bool = False

    # --- Sizing / limits ---
    max_position_size: float = 1000.0
    max_position_percent: float = 0.30
    max_total_positions: int = 3
    max_daily_trades: int = 10
    max_day_trades: int = 3
    day_trade_window: int = 5  # business days
    cooldown_minutes: int = 30
    min_minutes_before_buy: int = 30  # after the open

    # --- Notifications ---
    notify_on_trade: bool = True
    notify_on_signal: bool = False

    # --- Universe ---
    watchlist: List[str] = Field(default_factory=list)
    blacklist: List[str] = Field(default_factory=list)

    # --- Feature toggles ---
    only_top3: bool = True
    only_one_trade_per_ticker_per_day: bool = True
    market_gate_mode: str = "strict"  # strict/loose
    green_rollover_check: bool = False
    momentum_drift_sells: bool = True
    stagnation_sells: bool = True
    drift_threshold: float = -0.75
    drift_sell_score_cutoff: float = 6.5
    stagnation_score_cutoff: float = 6.0
    alert_threshold_percent: float = 2.0

    @field_validator("watchlist", "blacklist", mode="before")
    @classmethod
    def parse_symbols(cls, v: Any) -> List[str]:
        return _parse_list(v)

    @field_validator("mode", "market_gate_mode", mode="before")
    @classmethod
    def lower(cls, v: Any) -> str:
        return str(v or "").strip().lower()

    @model_validator(mode="after")
    def check_thresholds(self) -> "TradingConfig":
        errors: List[str] = []

        if self.mode not in {"paper", "live"}:
            errors.append("mode must be 'paper' or 'live'")
        if self.market_gate_mode not in {"strict", "loose"}:
            errors.append("market_gate_mode must be 'strict' or 'loose'")

        if not (
            self.extreme_sell_threshold
            <= self.technical_override_threshold
            <= self.sell_threshold
        ):
            errors.append(
                "thresholds must satisfy extreme_sell <= technical_override <= sell"
            )
        lowest_buy = min(self.buy_threshold, self.buy_threshold_market_positive)
        highest_buy = max(self.buy_threshold, self.buy_threshold_market_positive)
        if self.sell_threshold >= lowest_buy:
            errors.append("sell_threshold must be below both buy thresholds")
        if highest_buy > self.extreme_buy_threshold:
            errors.append("buy thresholds must not exceed extreme_buy_threshold")

        if self.max_total_positions < 0 or self.max_daily_trades < 0:
            errors.append("position/trade limits must be >= 0")
        if self.cooldown_minutes < 0:
            errors.append("cooldown_minutes must be >= 0")
        if self.min_minutes_before_buy < 0:
            errors.append("min_minutes_before_buy must be >= 0")
        if not 0 < self.max_position_percent <= 1:
            errors.append("max_position_percent must be in (0, 1]")

        if errors:
            raise ValueError("; ".join(errors))
        return self


class TradingConfigStore:
    """
    Loaded once per process, mutated only through update(), saved on every change.
    A corrupt file never stops the engine: defaults are used instead.
    """

    def __init__(self, data_dir: str | Path):
        self.file = JsonFile(Path(data_dir) / CONFIG_FILENAME)
        self.config = self._load()

    def _load(self) -> TradingConfig:
        try:
            raw = self.file.read()
        except ConfigError as e:
            log.warning("trading config unreadable, using defaults: %s", e)
            return TradingConfig()

        if raw is None:
            return TradingConfig()
        if not isinstance(raw, dict):
            log.warning("trading config is not an object, using defaults")
            return TradingConfig()

        try:
            # saved fields over defaults
            return TradingConfig(**raw)
        except ValueError as e:
            log.warning("trading config invalid, using defaults: %s", e)
            return TradingConfig()

    def get(self) -> TradingConfig:
        return self.config

    def update(self, **changes: Any) -> TradingConfig:
        """Validate the merged config first; the stored one is untouched on error."""
        merged: Dict[str, Any] = self.config.model_dump()
        merged.update(changes)
        new_cfg = TradingConfig(**merged)
        self.config = new_cfg
        self.save()
        return new_cfg

    def save(self) -> None:
        self.file.write(self.config.model_dump())
