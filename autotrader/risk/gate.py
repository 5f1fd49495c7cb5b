from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass
class RiskDecision:
    allowed: bool
    reason: str
    breaker: bool
    start_equity: Optional[float]
    drawdown_percent: float
    max_drawdown_percent: float


class RiskGate:
    """
    Daily drawdown circuit breaker.

    - New non-defensive buys must pass this gate.
    - Sells are never blocked here.
    """

    def __init__(self, *, get_daily_state, max_drawdown_percent: float):
        # get_daily_state returns object with: start_equity, breaker
        self.get_daily_state = get_daily_state
        self.max_drawdown_percent = float(max_drawdown_percent)
        self._last_drawdown = 0.0

    def refresh(self, equity: float) -> RiskDecision:
        """Record start-of-day equity or trip the breaker against it."""
        daily = self.get_daily_state()
        equity = float(equity or 0.0)

        if daily.start_equity is None or daily.start_equity <= 0:
            if equity > 0:
                daily.start_equity = equity
            self._last_drawdown = 0.0
        elif not daily.breaker:
            dd = (daily.start_equity - equity) / daily.start_equity * 100.0
            self._last_drawdown = dd
            if dd >= self.max_drawdown_percent:
                daily.breaker = True

        return self.can_open()

    def can_open(self, is_defensive: bool = False) -> RiskDecision:
        daily = self.get_daily_state()
        breaker = bool(getattr(daily, "breaker", False))
        start = getattr(daily, "start_equity", None)

        if breaker and not is_defensive:
            return RiskDecision(
                allowed=False,
                reason=(
                    f"Daily drawdown circuit breaker active (-{self.max_drawdown_percent}%+ today). "
                    "No new buys except defensive instruments."
                ),
                breaker=True,
                start_equity=start,
                drawdown_percent=self._last_drawdown,
                max_drawdown_percent=self.max_drawdown_percent,
            )

        return RiskDecision(
            allowed=True,
            reason="ok",
            breaker=breaker,
            start_equity=start,
            drawdown_percent=self._last_drawdown,
            max_drawdown_percent=self.max_drawdown_percent,
        )
