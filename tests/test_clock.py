from __future__ import annotations

from datetime import datetime, timezone

from tradedesk.clock import futures_market_status, to_iso_utc


def _utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def test_weekday_session_is_open() -> None:
    # Wednesday 10:00 New York (EST)
    assert futures_market_status(_utc(2024, 3, 6, 15, 0)) == "OPEN"


def test_daily_maintenance_break_is_closed() -> None:
    # Wednesday 17:30 New York
    assert futures_market_status(_utc(2024, 3, 6, 22, 30)) == "CLOSED"
    # Wednesday 18:00 New York reopens
    assert futures_market_status(_utc(2024, 3, 6, 23, 0)) == "OPEN"


def test_weekend_is_closed_until_sunday_evening() -> None:
    # Friday 17:00 New York
    assert futures_market_status(_utc(2024, 3, 8, 22, 0)) == "CLOSED"
    # Saturday noon
    assert futures_market_status(_utc(2024, 3, 9, 17, 0)) == "CLOSED"
    # Sunday 17:59 New York (EDT from March 10)
    assert futures_market_status(_utc(2024, 3, 10, 21, 59)) == "CLOSED"
    # Sunday 18:00 New York
    assert futures_market_status(_utc(2024, 3, 10, 22, 0)) == "OPEN"


def test_to_iso_utc() -> None:
    assert to_iso_utc(_utc(2024, 3, 1, 14, 0)) == "2024-03-01T14:00:00Z"
    assert to_iso_utc(datetime(2024, 3, 1, 14, 0)) == "2024-03-01T14:00:00Z"
