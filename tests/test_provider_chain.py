from __future__ import annotations

from datetime import datetime, timezone

from tradedesk.data.candles import Candle
from tradedesk.data.errors import FeedTimeoutError, FeedUnavailableError
from tradedesk.data.provider_chain import DataSource, ProviderChain

SINCE = datetime(2024, 3, 1, 14, 0, tzinfo=timezone.utc)


def _bars(*times: int) -> list[Candle]:
    return [Candle(time=t, open=100.0, high=101.0, low=99.0, close=100.5, volume=1.0) for t in times]


class _FakeFeed:
    def __init__(self, name: str, result: list[Candle] | None = None, exc: Exception | None = None):
        self.name = name
        self.result = result or []
        self.exc = exc
        self.calls = 0

    def fetch(self, symbol: str, interval: str, since: datetime) -> list[Candle]:
        self.calls += 1
        if self.exc is not None:
            raise self.exc
        return list(self.result)


def test_broker_success_has_no_fallback() -> None:
    broker = _FakeFeed("BROKER", _bars(60, 120))
    yahoo = _FakeFeed("YAHOO", _bars(60))
    chain = ProviderChain([(DataSource.YAHOO, yahoo), (DataSource.BROKER, broker)])

    result = chain.fetch("MNQ", "1m", SINCE)
    assert result.source_used is DataSource.BROKER
    assert result.fallback_from is None
    assert result.last_bar_time_ms == 120_000
    assert yahoo.calls == 0


def test_falls_through_to_tradingview() -> None:
    broker = _FakeFeed("BROKER", exc=FeedTimeoutError("slow"))
    tv = _FakeFeed("TRADINGVIEW", _bars(60))
    chain = ProviderChain([(DataSource.BROKER, broker), (DataSource.TRADINGVIEW, tv)])

    result = chain.fetch("MNQ", "1m", SINCE)
    assert result.source_used is DataSource.TRADINGVIEW
    assert result.fallback_from is DataSource.BROKER


def test_unconfigured_sources_are_not_reported_as_fallback() -> None:
    yahoo = _FakeFeed("YAHOO", _bars(60))
    result = ProviderChain([(DataSource.YAHOO, yahoo)]).fetch("MNQ", "1m", SINCE)
    assert result.source_used is DataSource.YAHOO
    assert result.fallback_from is None


def test_first_failed_source_wins_when_two_fail() -> None:
    broker = _FakeFeed("BROKER", exc=FeedUnavailableError("503"))
    tv = _FakeFeed("TRADINGVIEW", [])
    yahoo = _FakeFeed("YAHOO", _bars(60, 120))
    chain = ProviderChain(
        [(DataSource.BROKER, broker), (DataSource.TRADINGVIEW, tv), (DataSource.YAHOO, yahoo)]
    )
    result = chain.fetch("MNQ", "1m", SINCE)
    assert result.source_used is DataSource.YAHOO
    assert result.fallback_from is DataSource.BROKER
    assert (broker.calls, tv.calls, yahoo.calls) == (1, 1, 1)


def test_second_feed_of_same_source_is_not_a_fallback() -> None:
    rest = _FakeFeed("BROKER", exc=RuntimeError("crashed"))
    stream = _FakeFeed("TASTYTRADE", _bars(60))
    chain = ProviderChain([(DataSource.BROKER, rest), (DataSource.BROKER, stream)])

    result = chain.fetch("MNQ", "1m", SINCE)
    assert result.source_used is DataSource.BROKER
    assert result.fallback_from is None
    assert [item.name for item in chain.feeds] == ["BROKER", "TASTYTRADE"]


def test_total_failure_returns_empty_yahoo_result() -> None:
    broker = _FakeFeed("BROKER", exc=FeedUnavailableError("down"))
    yahoo = _FakeFeed("YAHOO", exc=ValueError("bad frame"))
    result = ProviderChain([(DataSource.BROKER, broker), (DataSource.YAHOO, yahoo)]).fetch("MNQ", "1m", SINCE)
    assert result.candles == []
    assert result.source_used is DataSource.YAHOO
    assert result.last_bar_time_ms is None
    assert result.fallback_from is DataSource.BROKER


def test_total_failure_with_only_yahoo_omits_fallback() -> None:
    yahoo = _FakeFeed("YAHOO", [])
    result = ProviderChain([(DataSource.YAHOO, yahoo)]).fetch("MNQ", "1m", SINCE)
    assert result.candles == []
    assert result.fallback_from is None
    assert "fallbackFrom" not in result.to_dict()


def test_result_candles_are_sanitized() -> None:
    unsorted = [
        Candle(time=120, open=1, high=1, low=1, close=1),
        Candle(time=60, open=1, high=1, low=1, close=1),
        Candle(time=120, open=2, high=2, low=2, close=2),
    ]
    result = ProviderChain([(DataSource.YAHOO, _FakeFeed("YAHOO", unsorted))]).fetch("MNQ", "1m", SINCE)
    assert [c.time for c in result.candles] == [60, 120]
    assert result.candles[-1].open == 2.0
    assert result.last_bar_time_ms == 120_000
