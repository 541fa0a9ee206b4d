from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from tradedesk.config import StreamFeedConfig
from tradedesk.data.errors import FeedAuthError, FeedPayloadError, FeedUnavailableError
from tradedesk.data.tastytrade_client import QuoteToken, TastytradeCandleFeed, TastytradeClient

NOW = datetime(2024, 3, 1, 15, 0, tzinfo=timezone.utc)


class _FakeResponse:
    def __init__(self, status_code: int, payload: Any = None):
        self.status_code = status_code
        self._payload = payload

    def json(self) -> Any:
        if self._payload is None:
            raise ValueError("empty body")
        return self._payload


class _FakeSession:
    def __init__(self) -> None:
        self.headers: dict[str, str] = {}
        self.posts: list[dict[str, Any]] = []
        self.gets: list[dict[str, Any]] = []
        self.session_response = _FakeResponse(201, {"data": {"session-token": "sess-1"}})
        self.quote_responses: list[_FakeResponse] = []

    def post(self, url: str, **kwargs: Any) -> _FakeResponse:
        self.posts.append({"url": url, **kwargs})
        return self.session_response

    def get(self, url: str, **kwargs: Any) -> _FakeResponse:
        self.gets.append({"url": url, **kwargs})
        if self.quote_responses:
            return self.quote_responses.pop(0)
        return _FakeResponse(200, {"data": {"token": "dx-1", "dxlink-url": "wss://dx.example/realtime"}})


class _Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _client(session: _FakeSession, clock: _Clock | None = None) -> TastytradeClient:
    return TastytradeClient(
        base_url="https://api.example/",
        username="trader",
        password="secret",
        session=session,  # type: ignore[arg-type]
        clock=clock or _Clock(NOW),
    )


def test_session_token_is_cached_until_ttl() -> None:
    session = _FakeSession()
    clock = _Clock(NOW)
    client = _client(session, clock)

    assert client.session_token() == "sess-1"
    clock.now = NOW + timedelta(hours=23)
    assert client.session_token() == "sess-1"
    assert len(session.posts) == 1
    assert session.posts[0]["url"] == "https://api.example/sessions"
    assert session.posts[0]["json"] == {"login": "trader", "password": "secret"}

    clock.now = NOW + timedelta(hours=23, minutes=31)
    client.session_token()
    assert len(session.posts) == 2


def test_quote_token_uses_session_header() -> None:
    session = _FakeSession()
    quote = _client(session).quote_token()
    assert quote == QuoteToken(token="dx-1", dxlink_url="wss://dx.example/realtime")
    assert session.gets[0]["url"] == "https://api.example/api-quote-tokens"
    assert session.gets[0]["headers"] == {"Authorization": "Session sess-1"}


def test_quote_token_rejection_drops_cached_session() -> None:
    session = _FakeSession()
    session.quote_responses = [_FakeResponse(401, {"error": "expired"})]
    client = _client(session)
    with pytest.raises(FeedAuthError):
        client.quote_token()
    client.quote_token()
    assert len(session.posts) == 2


def test_session_failures_map_to_feed_errors() -> None:
    session = _FakeSession()
    session.session_response = _FakeResponse(401, {"error": "invalid credentials"})
    with pytest.raises(FeedAuthError):
        _client(session).session_token()

    session.session_response = _FakeResponse(500, {})
    with pytest.raises(FeedUnavailableError):
        _client(session).session_token()

    session.session_response = _FakeResponse(201, {"data": {}})
    with pytest.raises(FeedPayloadError):
        _client(session).session_token()


def test_quote_token_missing_url_is_payload_error() -> None:
    session = _FakeSession()
    session.quote_responses = [_FakeResponse(200, {"data": {"token": "dx-1"}})]
    with pytest.raises(FeedPayloadError):
        _client(session).quote_token()


class _FakeClient:
    def quote_token(self) -> QuoteToken:
        return QuoteToken(token="dx-1", dxlink_url="wss://dx.example/realtime")


def test_candle_feed_streams_configured_root(monkeypatch) -> None:
    captured: dict[str, Any] = {}

    def fake_stream(**kwargs: Any) -> list[Any]:
        captured.update(kwargs)
        return []

    import tradedesk.data.tastytrade_client as module

    monkeypatch.setattr(module, "stream_candles", fake_stream)
    config = StreamFeedConfig(username="u", password="p", symbol_root="mnq")
    feed = TastytradeCandleFeed(config, client=_FakeClient())  # type: ignore[arg-type]
    since = datetime(2024, 3, 1, 14, 0, tzinfo=timezone.utc)

    with pytest.raises(FeedUnavailableError):
        feed.fetch("MNQ", "5m", since)
    assert captured["url"] == "wss://dx.example/realtime"
    assert captured["token"] == "dx-1"
    assert captured["symbol"] == "/MNQ{=5m}"
    assert captured["from_time_ms"] == int(since.timestamp() * 1000)
    assert captured["timeout_seconds"] == 9.0
    assert captured["target_bars"] == 820


def test_normalize_rows() -> None:
    rows = [
        ["/MNQ{=1m}", 1_709_301_660_000, 0, 1, 10, 11, 9, 10.5, 2],
        ["/MNQ{=1m}", 1_709_301_600_000, 0, 1, 10, 11, 9, 10.2, 1],
        ["/MNQ{=1m}", 1_709_301_720_000, 0, 1, 0, 0, 0, 0, 0],
        "noise",
    ]
    out = TastytradeCandleFeed.normalize(rows)
    assert [c.time for c in out] == [1_709_301_600, 1_709_301_660]
