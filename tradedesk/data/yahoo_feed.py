from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable

import pandas as pd
import yfinance as yf

from tradedesk.data.candles import Candle, build_candle, sanitize_candles
from tradedesk.data.errors import FeedPayloadError, FeedUnavailableError

LOGGER = logging.getLogger(__name__)

_FUTURES_ROOTS = {"MNQ", "NQ", "ES", "MES", "RTY", "YM"}
_INTERVAL_TO_YAHOO = {
    "1m": "1m",
    "5m": "5m",
    "15m": "15m",
    "60m": "60m",
    "1h": "60m",
    "4h": "60m",
    "1d": "1d",
}


def yahoo_symbol(symbol: str) -> str:
    normalized = symbol.strip().upper()
    if normalized in _FUTURES_ROOTS:
        return f"{normalized}=F"
    return normalized


def yahoo_interval(interval: str) -> str:
    key = interval.strip().lower()
    if key not in _INTERVAL_TO_YAHOO:
        raise ValueError(f"Unsupported interval {interval}")
    return _INTERVAL_TO_YAHOO[key]


class YahooCandleFeed:
    """Terminal fallback source. Always configured, never authenticated."""

    name = "YAHOO"

    def __init__(
        self,
        *,
        timeout_seconds: float = 8.0,
        ticker_factory: Callable[[str], Any] | None = None,
    ):
        self.timeout_seconds = timeout_seconds
        self._ticker_factory = ticker_factory or yf.Ticker

    @staticmethod
    def normalize(frame: pd.DataFrame | None) -> list[Candle]:
        if frame is None or frame.empty:
            return []
        if isinstance(frame.columns, pd.MultiIndex):
            frame = frame.copy()
            frame.columns = frame.columns.get_level_values(0)
        if "Open" not in frame.columns:
            return []
        complete = frame.dropna(subset=["Open"])
        output: list[Candle] = []
        for ts, row in complete.iterrows():
            stamp = pd.Timestamp(ts)
            if stamp.tzinfo is None:
                stamp = stamp.tz_localize("UTC")
            candle = build_candle(
                time=int(stamp.timestamp()),
                open=row.get("Open"),
                high=row.get("High"),
                low=row.get("Low"),
                close=row.get("Close"),
                volume=row.get("Volume"),
            )
            if candle is not None:
                output.append(candle)
        return sanitize_candles(output)

    def fetch(self, symbol: str, interval: str, since: datetime) -> list[Candle]:
        ticker_symbol = yahoo_symbol(symbol)
        try:
            ticker = self._ticker_factory(ticker_symbol)
            frame = ticker.history(
                start=since,
                interval=yahoo_interval(interval),
                timeout=self.timeout_seconds,
            )
        except ValueError as exc:
            raise FeedPayloadError(f"YAHOO rejected request for {ticker_symbol}: {exc}") from exc
        except Exception as exc:  # noqa: BLE001
            raise FeedUnavailableError(f"YAHOO error for {ticker_symbol}: {type(exc).__name__}") from exc

        if not isinstance(frame, pd.DataFrame):
            raise FeedPayloadError(f"YAHOO returned {type(frame).__name__} for {ticker_symbol}")
        candles = self.normalize(frame)
        if not candles:
            raise FeedUnavailableError(f"YAHOO returned no usable candles for {ticker_symbol}")
        LOGGER.debug("YAHOO delivered %d candles for %s %s", len(candles), ticker_symbol, interval)
        return candles
