from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Protocol

from tradedesk.data.candles import Candle, last_bar_time_ms, sanitize_candles
from tradedesk.data.errors import FeedError

LOGGER = logging.getLogger(__name__)


class DataSource(str, Enum):
    BROKER = "BROKER"
    TRADINGVIEW = "TRADINGVIEW"
    YAHOO = "YAHOO"


SOURCE_PRIORITY: tuple[DataSource, ...] = (DataSource.BROKER, DataSource.TRADINGVIEW, DataSource.YAHOO)


class CandleFeed(Protocol):
    def fetch(self, symbol: str, interval: str, since: datetime) -> list[Candle]:
        ...


@dataclass(slots=True)
class FeedResult:
    candles: list[Candle]
    source_used: DataSource
    last_bar_time_ms: int | None
    fallback_from: DataSource | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "candles": [candle.to_dict() for candle in self.candles],
            "sourceUsed": self.source_used.value,
            "lastBarTimeMs": self.last_bar_time_ms,
        }
        if self.fallback_from is not None:
            payload["fallbackFrom"] = self.fallback_from.value
        return payload


@dataclass(slots=True)
class RegisteredFeed:
    source: DataSource
    feed: CandleFeed
    name: str = ""


def _feed_name(feed: CandleFeed, source: DataSource) -> str:
    return str(getattr(feed, "name", "") or source.value)


class ProviderChain:
    """
    Ordered candle acquisition: BROKER > TRADINGVIEW > YAHOO.

    Only configured feeds are registered. Several feeds may share one source;
    they keep their registration order inside that source. ``fetch`` never
    raises: every failure falls through to the next feed.
    """

    def __init__(self, feeds: Iterable[tuple[DataSource, CandleFeed]]):
        registered = [
            RegisteredFeed(source=DataSource(source), feed=feed, name=_feed_name(feed, DataSource(source)))
            for source, feed in feeds
        ]
        self._feeds = sorted(registered, key=lambda item: SOURCE_PRIORITY.index(item.source))

    @property
    def feeds(self) -> list[RegisteredFeed]:
        return list(self._feeds)

    def _attempt(self, entry: RegisteredFeed, symbol: str, interval: str, since: datetime) -> list[Candle]:
        started = time.monotonic()
        try:
            candles = sanitize_candles(entry.feed.fetch(symbol, interval, since))
        except FeedError as exc:
            LOGGER.warning(
                "Feed failed source=%s feed=%s symbol=%s interval=%s elapsed=%.2fs reason=%s",
                entry.source.value,
                entry.name,
                symbol,
                interval,
                time.monotonic() - started,
                exc,
            )
            return []
        except Exception:  # noqa: BLE001
            LOGGER.warning(
                "Feed crashed source=%s feed=%s symbol=%s interval=%s",
                entry.source.value,
                entry.name,
                symbol,
                interval,
                exc_info=True,
            )
            return []
        if not candles:
            LOGGER.warning("Feed returned no candles source=%s feed=%s", entry.source.value, entry.name)
        return candles

    def fetch(self, symbol: str, interval: str, since: datetime) -> FeedResult:
        failed: list[DataSource] = []
        for entry in self._feeds:
            candles = self._attempt(entry, symbol, interval, since)
            if not candles:
                failed.append(entry.source)
                continue
            fallback_from = next((source for source in failed if source is not entry.source), None)
            if fallback_from is not None:
                LOGGER.info(
                    "Served %s %s from %s after %s failed",
                    symbol,
                    interval,
                    entry.source.value,
                    fallback_from.value,
                )
            return FeedResult(
                candles=candles,
                source_used=entry.source,
                last_bar_time_ms=last_bar_time_ms(candles),
                fallback_from=fallback_from,
            )

        fallback_from = next((source for source in failed if source is not DataSource.YAHOO), None)
        LOGGER.error(
            "All candle sources failed for %s %s (attempted=%s)",
            symbol,
            interval,
            ",".join(source.value for source in failed) or "-",
        )
        return FeedResult(
            candles=[],
            source_used=DataSource.YAHOO,
            last_bar_time_ms=None,
            fallback_from=fallback_from,
        )
