from __future__ import annotations

from datetime import datetime, timezone

from tradedesk.data.candles import (
    Candle,
    build_candle,
    candles_from_rows,
    last_bar_time_ms,
    sanitize_candles,
)


def test_build_candle_drops_all_zero_bar() -> None:
    assert build_candle(time=1_700_000_000, open=0, high=0, low=0, close=0, volume=5) is None


def test_build_candle_drops_missing_open() -> None:
    assert build_candle(time=1_700_000_000, open=None, high=1, low=1, close=1) is None
    assert build_candle(time=1_700_000_000, open=float("nan"), high=1, low=1, close=1) is None


def test_build_candle_accepts_iso_and_numeric_strings() -> None:
    from_iso = build_candle(time="2024-03-01T14:30:00Z", open="1", high="2", low="0.5", close="1.5")
    from_str = build_candle(time="1709303400", open=1, high=2, low=0.5, close=1.5, volume=None)
    assert from_iso is not None and from_str is not None
    assert from_iso.time == 1709303400
    assert from_iso == from_str
    assert from_str.volume == 0.0


def test_sanitize_candles_sorts_and_last_duplicate_wins() -> None:
    rows = [
        Candle(time=300, open=3, high=3, low=3, close=3),
        Candle(time=100, open=1, high=1, low=1, close=1),
        Candle(time=200, open=2, high=2, low=2, close=2),
        Candle(time=100, open=9, high=9, low=9, close=9),
    ]
    out = sanitize_candles(rows)
    assert [c.time for c in out] == [100, 200, 300]
    assert out[0].open == 9.0


def test_candles_from_rows_skips_bad_rows() -> None:
    rows = [
        {"time": 60, "open": 10, "high": 11, "low": 9, "close": 10.5, "volume": 3},
        {"time": 120, "open": 0, "high": 0, "low": 0, "close": 0},
        {"time": 180, "high": 11, "low": 9, "close": 10},
        "garbage",
        {"time": 240, "open": 10.5, "high": 12, "low": 10, "close": 11},
    ]
    out = candles_from_rows(rows)  # type: ignore[arg-type]
    assert [c.time for c in out] == [60, 240]
    assert all(b.time > a.time for a, b in zip(out, out[1:]))


def test_last_bar_time_ms() -> None:
    assert last_bar_time_ms([]) is None
    candles = [Candle(time=60, open=1, high=1, low=1, close=1), Candle(time=120, open=1, high=1, low=1, close=1)]
    assert last_bar_time_ms(candles) == 120_000


def test_candle_timestamp_is_utc() -> None:
    candle = Candle(time=1709303400, open=1, high=1, low=1, close=1)
    assert candle.timestamp == datetime(2024, 3, 1, 14, 30, tzinfo=timezone.utc)
