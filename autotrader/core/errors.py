# autotrader/core/errors.py
from __future__ import annotations


class TraderError(Exception):
    pass


class ExternalUnavailable(TraderError):
    """Market data or broker could not be reached (distinct from "no data")."""


class OrderValidationError(TraderError):
    """Order rejected before submission (bad price, bad quantity)."""


class ConfigError(TraderError):
    """Persisted config/state could not be read."""
