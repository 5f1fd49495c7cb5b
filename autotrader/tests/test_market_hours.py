from datetime import date, datetime, timezone

from autotrader.ops.market_hours import MarketHours


def _utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def test_open_during_session():
    st = MarketHours().status(_utc(2026, 10, 14, 14, 0))
    assert st.open is True
    assert st.minutes_since_open == 30
    assert st.reason == "Market open - closes in 6h 0m"


def test_closed_states():
    hours = MarketHours()
    assert hours.status(_utc(2026, 10, 17, 15, 0)).reason == "Weekend - market closed"
    assert hours.status(_utc(2026, 10, 14, 13, 0)).reason == "Pre-market - opens in 0h 30m"
    assert hours.status(_utc(2026, 10, 14, 20, 0)).reason == "After hours - market closed"
    assert hours.is_open(_utc(2026, 10, 14, 19, 59)) is True


def test_winter_offset_follows_exchange_timezone():
    # 14:00 UTC in January is 9:00 New York
    assert MarketHours().is_open(_utc(2026, 1, 14, 14, 0)) is False
    assert MarketHours().is_open(_utc(2026, 1, 14, 14, 30)) is True


def test_pre_market_window():
    hours = MarketHours()
    assert hours.is_pre_market(_utc(2026, 10, 14, 9, 30)) is True
    assert hours.is_pre_market(_utc(2026, 10, 14, 9, 0)) is False
    assert hours.is_pre_market(_utc(2026, 10, 17, 12, 0)) is False


def test_local_date_not_utc_date():
    # 02:00 UTC Thursday is still Wednesday evening in New York
    assert MarketHours().local_date(_utc(2026, 10, 15, 2, 0)) == date(2026, 10, 14)


def test_next_open_skips_weekend():
    nxt = MarketHours().next_open(_utc(2026, 10, 16, 21, 0))  # Friday after close
    assert (nxt.year, nxt.month, nxt.day, nxt.hour, nxt.minute) == (2026, 10, 19, 9, 30)


def test_next_evaluation_slots():
    hours = MarketHours()
    out = hours.next_evaluation(_utc(2026, 10, 14, 14, 3), every_minutes=10)
    assert out["market_open"] is True
    assert out["minutes_until"] == 7
    assert out["next_eval"].startswith("2026-10-14T10:10:00")

    closed = hours.next_evaluation(_utc(2026, 10, 17, 15, 0), every_minutes=10)
    assert closed["market_open"] is False
    assert closed["next_eval"].startswith("2026-10-19T09:30:00")

    late = hours.next_evaluation(_utc(2026, 10, 14, 19, 55), every_minutes=10)
    assert late["reason"] == "Market closing soon"
    assert late["next_eval"].startswith("2026-10-15T09:30:00")
