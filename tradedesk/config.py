from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, Field, model_validator

CONTRACT_TYPES = ("MNQ", "NQ")


class RestFeedConfig(BaseModel):
    url: str
    api_key: str = ""
    timeout_seconds: float = 5.0

    @model_validator(mode="after")
    def validate_values(self) -> "RestFeedConfig":
        self.url = self.url.strip()
        if not self.url:
            raise ValueError("url must not be empty")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        return self


class StreamFeedConfig(BaseModel):
    username: str
    password: str
    base_url: str = "https://api.tastytrade.com"
    symbol_root: str = "MNQ"
    auth_timeout_seconds: float = 8.0
    quote_token_timeout_seconds: float = 5.0
    timeout_seconds: float = 9.0
    target_bars: int = 820
    min_bars: int = 10
    session_ttl_hours: float = 23.5

    @model_validator(mode="after")
    def validate_values(self) -> "StreamFeedConfig":
        self.base_url = self.base_url.strip().rstrip("/")
        self.symbol_root = self.symbol_root.strip().lstrip("/").upper() or "MNQ"
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if self.target_bars <= 0:
            raise ValueError("target_bars must be > 0")
        if self.min_bars < 0:
            raise ValueError("min_bars must be >= 0")
        if self.min_bars >= self.target_bars:
            raise ValueError("min_bars must be < target_bars")
        if not (0 < self.session_ttl_hours <= 24):
            raise ValueError("session_ttl_hours must be in (0, 24]")
        return self


class YahooFeedConfig(BaseModel):
    timeout_seconds: float = 8.0


class FeedsConfig(BaseModel):
    broker: RestFeedConfig | None = None
    tradingview: RestFeedConfig | None = None
    realtime: StreamFeedConfig | None = None
    yahoo: YahooFeedConfig = Field(default_factory=YahooFeedConfig)


class ReliabilityConfig(BaseModel):
    caps: dict[str, float] = Field(
        default_factory=lambda: {"BROKER": 100.0, "TRADINGVIEW": 85.0, "YAHOO": 74.0}
    )
    delay_thresholds_ms: dict[str, int] = Field(
        default_factory=lambda: {"BROKER": 60_000, "TRADINGVIEW": 600_000, "YAHOO": 900_000}
    )

    @model_validator(mode="after")
    def normalize(self) -> "ReliabilityConfig":
        self.caps = {str(k).strip().upper(): float(v) for k, v in self.caps.items()}
        self.delay_thresholds_ms = {
            str(k).strip().upper(): int(v) for k, v in self.delay_thresholds_ms.items()
        }
        for source in ("BROKER", "TRADINGVIEW", "YAHOO"):
            if source not in self.caps:
                raise ValueError(f"reliability.caps is missing {source}")
            if source not in self.delay_thresholds_ms:
                raise ValueError(f"reliability.delay_thresholds_ms is missing {source}")
        for source, cap in self.caps.items():
            if not (0 <= cap <= 100):
                raise ValueError(f"reliability.caps[{source}] must be in [0,100]")
        return self


class TradeConfig(BaseModel):
    default_max_risk: float = 500.0
    default_contract_type: str = "MNQ"
    confirm_delay_seconds: float = 2.0
    point_values: dict[str, float] = Field(default_factory=lambda: {"MNQ": 2.0, "NQ": 20.0})

    @model_validator(mode="after")
    def validate_values(self) -> "TradeConfig":
        self.default_contract_type = self.default_contract_type.strip().upper()
        if self.default_contract_type not in CONTRACT_TYPES:
            raise ValueError("default_contract_type must be MNQ or NQ")
        if self.default_max_risk <= 0:
            raise ValueError("default_max_risk must be > 0")
        if self.confirm_delay_seconds < 0:
            raise ValueError("confirm_delay_seconds must be >= 0")
        self.point_values = {str(k).strip().upper(): float(v) for k, v in self.point_values.items()}
        for contract in CONTRACT_TYPES:
            if self.point_values.get(contract, 0.0) <= 0:
                raise ValueError(f"point_values[{contract}] must be > 0")
        return self


class GuidanceConfig(BaseModel):
    drawdown_caution_pct: float = 70.0
    bias_flip_margin: float = 10.0

    @model_validator(mode="after")
    def validate_values(self) -> "GuidanceConfig":
        if not (0 < self.drawdown_caution_pct <= 100):
            raise ValueError("drawdown_caution_pct must be in (0,100]")
        if self.bias_flip_margin < 0:
            raise ValueError("bias_flip_margin must be >= 0")
        return self


class StorageConfig(BaseModel):
    db_path: str = "tradedesk_state.db"
    saved_trades_key: str = "vwap_saved_trades"
    active_trade_key: str = "vwap_active_trade"


class AppConfig(BaseModel):
    timezone: str = "America/New_York"
    feeds: FeedsConfig = Field(default_factory=FeedsConfig)
    reliability: ReliabilityConfig = Field(default_factory=ReliabilityConfig)
    trade: TradeConfig = Field(default_factory=TradeConfig)
    guidance: GuidanceConfig = Field(default_factory=GuidanceConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)


def load_config(path: str | Path) -> AppConfig:
    config_path = Path(path)
    with config_path.open("r", encoding="utf-8") as file:
        raw: dict[str, Any] = yaml.safe_load(file) or {}
    return AppConfig.model_validate(raw)


def _env(env: Mapping[str, str], name: str) -> str | None:
    value = (env.get(name) or "").strip()
    return value or None


def _rest_feed_from_env(
    env: Mapping[str, str],
    *,
    url_var: str,
    key_var: str,
    current: RestFeedConfig | None,
) -> RestFeedConfig | None:
    url = _env(env, url_var)
    if not url:
        return current
    timeout = current.timeout_seconds if current is not None else RestFeedConfig.model_fields["timeout_seconds"].default
    return RestFeedConfig(url=url, api_key=_env(env, key_var) or "", timeout_seconds=timeout)


def apply_env_overrides(config: AppConfig, env: Mapping[str, str] | None = None) -> AppConfig:
    """Fill the optional provider sections from process configuration.

    A provider whose URL (or username/password pair) is absent stays as
    configured in YAML, which by default means not configured at all.
    """
    source = os.environ if env is None else env
    updated = config.model_copy(deep=True)
    feeds = updated.feeds
    feeds.broker = _rest_feed_from_env(
        source, url_var="BROKER_DATA_URL", key_var="BROKER_API_KEY", current=feeds.broker
    )
    feeds.tradingview = _rest_feed_from_env(
        source, url_var="TRADINGVIEW_DATA_URL", key_var="TRADINGVIEW_API_KEY", current=feeds.tradingview
    )

    username = _env(source, "TASTYTRADE_USERNAME")
    password = _env(source, "TASTYTRADE_PASSWORD")
    if username and password:
        base = feeds.realtime.model_dump() if feeds.realtime is not None else {}
        base.update({"username": username, "password": password})
        base_url = _env(source, "TASTYTRADE_BASE_URL")
        if base_url:
            base["base_url"] = base_url
        feeds.realtime = StreamFeedConfig.model_validate(base)

    db_path = _env(source, "TRADEDESK_DB_PATH")
    if db_path:
        updated.storage.db_path = db_path
    return updated
