from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable

import requests

from tradedesk.clock import utc_now
from tradedesk.config import StreamFeedConfig
from tradedesk.data.candles import Candle, sanitize_candles
from tradedesk.data.dxlink import dx_candle_symbol, row_to_candle, stream_candles
from tradedesk.data.errors import FeedAuthError, FeedPayloadError, FeedUnavailableError

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class SessionToken:
    token: str
    expires_at: datetime


@dataclass(slots=True)
class QuoteToken:
    token: str
    dxlink_url: str


class TastytradeClient:
    """
    Tastytrade REST session handling for the DXLink candle stream.

    Auth flow:
    - POST /sessions with login/password from configuration.
    - GET /api-quote-tokens with the session token -> DXLink token + wss URL.

    The session token lives only in this object's memory.
    """

    def __init__(
        self,
        *,
        base_url: str,
        username: str,
        password: str,
        auth_timeout_seconds: float = 8.0,
        quote_token_timeout_seconds: float = 5.0,
        session_ttl_hours: float = 23.5,
        session: requests.Session | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.base_url = base_url.strip().rstrip("/")
        self._username = username
        self._password = password
        self.auth_timeout_seconds = auth_timeout_seconds
        self.quote_token_timeout_seconds = quote_token_timeout_seconds
        self.session_ttl = timedelta(hours=session_ttl_hours)
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Accept": "application/json",
                "Content-Type": "application/json",
            }
        )
        self._clock = clock
        self._cached: SessionToken | None = None
        self._session_lock = threading.Lock()

    @staticmethod
    def _json_data(response: requests.Response, endpoint: str) -> dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as exc:
            raise FeedPayloadError(f"Tastytrade {endpoint} returned non-JSON body") from exc
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            raise FeedPayloadError(f"Tastytrade {endpoint} response has no data object")
        return data

    def invalidate_session(self) -> None:
        with self._session_lock:
            self._cached = None

    def session_token(self) -> str:
        with self._session_lock:
            now = self._clock()
            if self._cached is not None and now < self._cached.expires_at:
                return self._cached.token
            try:
                response = self.session.post(
                    f"{self.base_url}/sessions",
                    json={"login": self._username, "password": self._password},
                    timeout=self.auth_timeout_seconds,
                )
            except requests.RequestException as exc:
                raise FeedUnavailableError(f"Tastytrade session network error: {type(exc).__name__}") from exc
            if response.status_code in (401, 403):
                raise FeedAuthError(f"Tastytrade session auth failed: HTTP {response.status_code}")
            if response.status_code >= 400:
                raise FeedUnavailableError(f"Tastytrade session failed: HTTP {response.status_code}")
            token = self._json_data(response, "/sessions").get("session-token")
            if not token:
                raise FeedPayloadError("Tastytrade session token missing in response")
            self._cached = SessionToken(token=str(token), expires_at=now + self.session_ttl)
            LOGGER.info("Tastytrade session created, cached until %s", self._cached.expires_at.isoformat())
            return self._cached.token

    def quote_token(self) -> QuoteToken:
        session_token = self.session_token()
        try:
            response = self.session.get(
                f"{self.base_url}/api-quote-tokens",
                headers={"Authorization": f"Session {session_token}"},
                timeout=self.quote_token_timeout_seconds,
            )
        except requests.RequestException as exc:
            raise FeedUnavailableError(f"Tastytrade quote token network error: {type(exc).__name__}") from exc
        if response.status_code in (401, 403):
            self.invalidate_session()
            raise FeedAuthError(f"Tastytrade quote token rejected: HTTP {response.status_code}")
        if response.status_code >= 400:
            raise FeedUnavailableError(f"Tastytrade quote token failed: HTTP {response.status_code}")
        data = self._json_data(response, "/api-quote-tokens")
        token = data.get("token")
        dxlink_url = data.get("dxlink-url")
        if not token or not dxlink_url:
            raise FeedPayloadError("Tastytrade quote token or dxlink-url missing")
        return QuoteToken(token=str(token), dxlink_url=str(dxlink_url))


class TastytradeCandleFeed:
    """Realtime candle feed: REST session, then one DXLink stream per fetch."""

    name = "TASTYTRADE"

    def __init__(
        self,
        config: StreamFeedConfig,
        *,
        client: TastytradeClient | None = None,
        connect: Callable[..., Any] | None = None,
    ):
        self.config = config
        self.client = client or TastytradeClient(
            base_url=config.base_url,
            username=config.username,
            password=config.password,
            auth_timeout_seconds=config.auth_timeout_seconds,
            quote_token_timeout_seconds=config.quote_token_timeout_seconds,
            session_ttl_hours=config.session_ttl_hours,
        )
        self._connect = connect

    @staticmethod
    def normalize(rows: Any) -> list[Candle]:
        if not isinstance(rows, list):
            return []
        decoded = [row_to_candle(row) for row in rows if isinstance(row, list)]
        return sanitize_candles(candle for candle in decoded if candle is not None)

    def fetch(self, symbol: str, interval: str, since: datetime) -> list[Candle]:
        # the stream always serves the configured contract root, not the caller's symbol
        quote = self.client.quote_token()
        dx_symbol = dx_candle_symbol(self.config.symbol_root, interval)
        candles = stream_candles(
            url=quote.dxlink_url,
            token=quote.token,
            symbol=dx_symbol,
            from_time_ms=int(since.timestamp() * 1000),
            timeout_seconds=self.config.timeout_seconds,
            target_bars=self.config.target_bars,
            min_bars=self.config.min_bars,
            connect=self._connect,
        )
        if not candles:
            raise FeedUnavailableError(f"DXLink returned no candles for {dx_symbol}")
        LOGGER.debug("TASTYTRADE delivered %d candles for %s (requested %s)", len(candles), dx_symbol, symbol)
        return candles
