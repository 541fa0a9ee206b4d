from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

import requests

from tradedesk.clock import to_iso_utc
from tradedesk.data.candles import Candle, candles_from_rows
from tradedesk.data.errors import FeedPayloadError, FeedTimeoutError, FeedUnavailableError

LOGGER = logging.getLogger(__name__)


class RestCandleFeed:
    """
    Candle feed for REST endpoints that already speak the canonical shape.

    Request: GET {url}?symbol=&interval=&from=<ISO8601> with bearer auth.
    Expected response: JSON array of {time, open, high, low, close, volume}.
    """

    def __init__(
        self,
        *,
        name: str,
        url: str,
        api_key: str = "",
        timeout_seconds: float = 5.0,
        session: requests.Session | None = None,
    ):
        self.name = name
        self.url = url.strip()
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    @staticmethod
    def normalize(payload: Any) -> list[Candle]:
        if not isinstance(payload, list):
            return []
        return candles_from_rows(payload)

    def fetch(self, symbol: str, interval: str, since: datetime) -> list[Candle]:
        params = {"symbol": symbol, "interval": interval, "from": to_iso_utc(since)}
        try:
            response = self.session.get(
                self.url,
                params=params,
                headers=self._headers(),
                timeout=self.timeout_seconds,
            )
        except requests.Timeout as exc:
            raise FeedTimeoutError(f"{self.name} timed out after {self.timeout_seconds}s") from exc
        except requests.RequestException as exc:
            raise FeedUnavailableError(f"{self.name} network error: {type(exc).__name__}") from exc

        if response.status_code >= 400:
            raise FeedUnavailableError(f"{self.name} HTTP {response.status_code}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise FeedPayloadError(f"{self.name} returned non-JSON body") from exc
        if not isinstance(payload, list):
            raise FeedPayloadError(f"{self.name} returned {type(payload).__name__}, expected list")

        candles = self.normalize(payload)
        if not candles:
            raise FeedUnavailableError(f"{self.name} returned no usable candles")
        LOGGER.debug("%s delivered %d candles for %s %s", self.name, len(candles), symbol, interval)
        return candles
