# autotrader/core/config.py
from __future__ import annotations

import json
import logging
from typing import Any, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

log = logging.getLogger("autotrader.config")

# Inverse / volatility instruments that may still be bought on a red tape.
DEFAULT_DEFENSIVE_SYMBOLS = [
    "SH",
    "SDS",
    "SPXU",
    "SQQQ",
    "PSQ",
    "QID",
    "DOG",
    "DXD",
    "SDOW",
    "RWM",
    "TWM",
    "SRTY",
    "VIXY",
    "UVXY",
    "VXX",
    "TZA",
    "FAZ",
    "SOXS",
    "LABD",
    "EDZ",
]


def _parse_list(v: Any) -> List[str]:
    """
    Accepts:
      - list: ["SH","SQQQ"]
      - csv:  "SH,SQQQ"
      - json: '["SH","SQQQ"]'
    Returns uppercase, trimmed symbols.
    """
    if v is None:
        return []
    if isinstance(v, (list, tuple, set)):
        return [str(x).strip().upper() for x in v if str(x).strip()]
    s = str(v).strip()
    if not s:
        return []
    if s.startswith("["):
        try:
            arr = json.loads(s)
            return [str(x).strip().upper() for x in arr if str(x).strip()]
        except ValueError:
            # fall back to csv parse
            pass
    return [p.strip().upper() for p in s.split(",") if p.strip()]


class Settings(BaseSettings):
    """Process-level configuration loaded from .env / environment variables."""

    # enable_decoding=False keeps pydantic-settings from json-decoding List fields.
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        enable_decoding=False,
    )

    # --- Execution ---
    EXECUTION_MODE: str = "paper"  # paper/live
    RUN_INTERVAL_SECONDS: int = 600

    # --- Storage ---
    DATA_DIR: str = "data"
    AUDIT_JSONL_PATH: str = "logs/trading_audit.jsonl"
    TRADE_LOG_MAX_RECORDS: int = 0  # 0 keeps full history

    # --- Logging ---
    LOG_LEVEL: str = "INFO"

    # --- Market data ---
    BENCHMARK_SYMBOL: str = "SPY"
    MARKET_TIMEZONE: str = "America/New_York"
    CHART_BASE_URL: str = "https://query1.finance.yahoo.com"
    HTTP_TIMEOUT_SECONDS: float = 10.0
    BENCHMARK_CACHE_TTL_SECONDS: int = 120

    # --- Scheduling ---
    BUY_DELAY_SECONDS: int = 300
    DEFENSIVE_SYMBOLS: List[str] = Field(
        default_factory=lambda: list(DEFAULT_DEFENSIVE_SYMBOLS)
    )

    # --- Anti-churn ---
    MIN_HOLD_DAYS: float = 3.0
    MAX_ROTATIONS_PER_WEEK: int = 4
    WASH_SALE_DAYS: int = 30
    REPEAT_LOSER_WINDOW_DAYS: int = 60
    REPEAT_LOSER_THRESHOLD: int = 2
    REPEAT_LOSER_BLOCK_DAYS: int = 90

    # --- Risk ---
    MAX_DAILY_DRAWDOWN_PERCENT: float = 3.0

    # --- Notifications ---
    NOTIFY_WEBHOOK_URL: str = ""

    @field_validator("DEFENSIVE_SYMBOLS", mode="before")
    @classmethod
    def parse_defensive_symbols(cls, v: Any) -> List[str]:
        return _parse_list(v)

    def model_post_init(self, __context: Any) -> None:
        self.EXECUTION_MODE = (self.EXECUTION_MODE or "paper").lower().strip()
        self.BENCHMARK_SYMBOL = (self.BENCHMARK_SYMBOL or "SPY").upper().strip()
        self.LOG_LEVEL = (self.LOG_LEVEL or "INFO").upper().strip()
        self.CHART_BASE_URL = self.CHART_BASE_URL.rstrip("/")

    def validate_runtime(self) -> List[str]:
        """
        Fail-fast validation. Returns warnings (non-fatal).
        Raises ValueError for fatal misconfiguration.
        """
        errors: List[str] = []
        warnings: List[str] = []

        if self.EXECUTION_MODE not in {"paper", "live"}:
            errors.append("EXECUTION_MODE must be 'paper' or 'live'.")

        if self.LOG_LEVEL not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            errors.append(f"LOG_LEVEL '{self.LOG_LEVEL}' is not a logging level.")

        if self.BUY_DELAY_SECONDS < 0:
            errors.append("BUY_DELAY_SECONDS must be >= 0.")
        elif self.BUY_DELAY_SECONDS == 0:
            warnings.append(
                "BUY_DELAY_SECONDS is 0. Buys will execute on the next cycle without a confirmation delay."
            )

        if self.BENCHMARK_CACHE_TTL_SECONDS < 0:
            errors.append("BENCHMARK_CACHE_TTL_SECONDS must be >= 0.")

        # Anti-churn sanity
        if self.MIN_HOLD_DAYS < 0:
            errors.append("MIN_HOLD_DAYS must be >= 0.")
        if self.MAX_ROTATIONS_PER_WEEK < 1:
            errors.append("MAX_ROTATIONS_PER_WEEK must be >= 1.")
        if self.REPEAT_LOSER_THRESHOLD < 1:
            errors.append("REPEAT_LOSER_THRESHOLD must be >= 1.")

        # Risk sanity
        if self.MAX_DAILY_DRAWDOWN_PERCENT <= 0:
            errors.append("MAX_DAILY_DRAWDOWN_PERCENT must be > 0.")

        if not self.DEFENSIVE_SYMBOLS:
            warnings.append(
                "DEFENSIVE_SYMBOLS is empty. No buys will be possible while the market gate blocks."
            )

        if self.TRADE_LOG_MAX_RECORDS and self.TRADE_LOG_MAX_RECORDS < 100:
            warnings.append(
                "TRADE_LOG_MAX_RECORDS is below 100. Hold-period and wash-sale checks may lose history."
            )

        # Safety warning for real money
        if self.EXECUTION_MODE == "live":
            warnings.append(
                "EXECUTION_MODE=live will submit REAL orders through the configured order port."
            )

        if errors:
            msg = "Config validation failed:\n" + "\n".join([f"- {e}" for e in errors])
            raise ValueError(msg)

        return warnings


# Pydantic v2 + postponed annotations safety
Settings.model_rebuild()
settings = Settings()
