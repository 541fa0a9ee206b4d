from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Mapping

from dotenv import load_dotenv

from tradedesk.clock import futures_market_status, utc_now
from tradedesk.config import AppConfig, apply_env_overrides, load_config
from tradedesk.data.provider_chain import CandleFeed, DataSource, FeedResult, ProviderChain
from tradedesk.data.reliability import ReliabilityResult, apply_reliability
from tradedesk.data.rest_feed import RestCandleFeed
from tradedesk.data.tastytrade_client import TastytradeCandleFeed
from tradedesk.data.yahoo_feed import YahooCandleFeed
from tradedesk.storage.kv import KeyValueStore, SqliteKeyValueStore
from tradedesk.trade.lifecycle import TradeLifecycle

LOGGER = logging.getLogger(__name__)


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def build_provider_chain(config: AppConfig) -> ProviderChain:
    feeds_cfg = config.feeds
    feeds: list[tuple[DataSource, CandleFeed]] = []
    if feeds_cfg.broker is not None:
        feeds.append(
            (
                DataSource.BROKER,
                RestCandleFeed(
                    name="BROKER",
                    url=feeds_cfg.broker.url,
                    api_key=feeds_cfg.broker.api_key,
                    timeout_seconds=feeds_cfg.broker.timeout_seconds,
                ),
            )
        )
    if feeds_cfg.realtime is not None:
        feeds.append((DataSource.BROKER, TastytradeCandleFeed(feeds_cfg.realtime)))
    if feeds_cfg.tradingview is not None:
        feeds.append(
            (
                DataSource.TRADINGVIEW,
                RestCandleFeed(
                    name="TRADINGVIEW",
                    url=feeds_cfg.tradingview.url,
                    api_key=feeds_cfg.tradingview.api_key,
                    timeout_seconds=feeds_cfg.tradingview.timeout_seconds,
                ),
            )
        )
    feeds.append((DataSource.YAHOO, YahooCandleFeed(timeout_seconds=feeds_cfg.yahoo.timeout_seconds)))
    chain = ProviderChain(feeds)
    LOGGER.info(
        "Candle feeds: %s",
        " > ".join(f"{item.source.value}:{item.name}" for item in chain.feeds),
    )
    return chain


def build_trade_lifecycle(config: AppConfig, store: KeyValueStore | None = None) -> TradeLifecycle:
    kv = store if store is not None else SqliteKeyValueStore.open(config.storage.db_path)
    lifecycle = TradeLifecycle(
        kv,
        config.trade,
        guidance_config=config.guidance,
        saved_trades_key=config.storage.saved_trades_key,
        active_trade_key=config.storage.active_trade_key,
    )
    lifecycle.load()
    return lifecycle


@dataclass(slots=True)
class Runtime:
    config: AppConfig
    chain: ProviderChain
    lifecycle: TradeLifecycle

    def fetch_candles(self, symbol: str, interval: str, since: datetime) -> FeedResult:
        return self.chain.fetch(symbol, interval, since)

    def score(self, result: FeedResult, raw_score: float, now: datetime | None = None) -> ReliabilityResult:
        current = now or utc_now()
        return apply_reliability(
            raw_score=raw_score,
            last_bar_time_ms=result.last_bar_time_ms,
            source=result.source_used,
            market_status=futures_market_status(current, self.config.timezone),
            now_ms=int(current.timestamp() * 1000),
            config=self.config.reliability,
        )


def resolve_config(config_path: str | Path | None, env: Mapping[str, str]) -> AppConfig:
    raw_path = config_path or (env.get("TRADEDESK_CONFIG") or "").strip()
    if not raw_path:
        return AppConfig()
    return load_config(raw_path)


def bootstrap(
    config_path: str | Path | None = None,
    *,
    env: Mapping[str, str] | None = None,
    store: KeyValueStore | None = None,
) -> Runtime:
    if env is None:
        load_dotenv()
        env = os.environ
    setup_logging(env.get("LOG_LEVEL", "INFO"))
    config = apply_env_overrides(resolve_config(config_path, env), env)
    return Runtime(
        config=config,
        chain=build_provider_chain(config),
        lifecycle=build_trade_lifecycle(config, store),
    )
