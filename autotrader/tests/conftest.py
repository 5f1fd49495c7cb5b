from datetime import datetime, timedelta, timezone

import pytest

# Wednesday 2026-10-14, 10:00 New York (30 minutes after the open)
MARKET_OPEN_UTC = datetime(2026, 10, 14, 14, 0, tzinfo=timezone.utc)


class _VirtualClock:
    def __init__(self, now: datetime = MARKET_OPEN_UTC):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


@pytest.fixture(autouse=True)
def _test_env(monkeypatch, tmp_path):
    """
    Ensure tests never touch real state or a real webhook.
    """
    monkeypatch.setenv("EXECUTION_MODE", "paper")
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("AUDIT_JSONL_PATH", str(tmp_path / "logs" / "audit.jsonl"))
    monkeypatch.setenv("NOTIFY_WEBHOOK_URL", "")
    monkeypatch.setenv("BUY_DELAY_SECONDS", "300")
    monkeypatch.setenv("LOG_LEVEL", "INFO")


@pytest.fixture
def clock():
    return _VirtualClock()
