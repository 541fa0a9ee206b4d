from __future__ import annotations

import pytest
from pydantic import ValidationError

from tradedesk.config import AppConfig, apply_env_overrides, load_config


def test_defaults_leave_optional_feeds_unconfigured() -> None:
    config = AppConfig()
    assert config.feeds.broker is None
    assert config.feeds.tradingview is None
    assert config.feeds.realtime is None
    assert config.feeds.yahoo.timeout_seconds == 8.0
    assert config.trade.default_max_risk == 500.0
    assert config.reliability.caps == {"BROKER": 100.0, "TRADINGVIEW": 85.0, "YAHOO": 74.0}


def test_load_config_from_yaml(tmp_path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(
        "\n".join(
            [
                "feeds:",
                "  tradingview:",
                "    url: ' https://tv.example/candles '",
                "    timeout_seconds: 4",
                "trade:",
                "  default_contract_type: nq",
                "  confirm_delay_seconds: 1.5",
                "reliability:",
                "  caps: {broker: 100, tradingview: 80, yahoo: 70}",
            ]
        ),
        encoding="utf-8",
    )
    config = load_config(path)
    assert config.feeds.tradingview is not None
    assert config.feeds.tradingview.url == "https://tv.example/candles"
    assert config.trade.default_contract_type == "NQ"
    assert config.reliability.caps["TRADINGVIEW"] == 80.0


def test_invalid_values_raise_validation_error(tmp_path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("trade:\n  default_contract_type: ES\n", encoding="utf-8")
    with pytest.raises(ValidationError):
        load_config(path)


def test_env_overrides_register_configured_providers() -> None:
    env = {
        "BROKER_DATA_URL": "https://broker.example/candles",
        "BROKER_API_KEY": "bk",
        "TASTYTRADE_USERNAME": "trader",
        "TASTYTRADE_PASSWORD": "secret",
        "TRADEDESK_DB_PATH": "/tmp/desk.db",
    }
    base = AppConfig()
    config = apply_env_overrides(base, env)
    assert config.feeds.broker is not None
    assert config.feeds.broker.api_key == "bk"
    assert config.feeds.tradingview is None
    assert config.feeds.realtime is not None
    assert config.feeds.realtime.base_url == "https://api.tastytrade.com"
    assert config.storage.db_path == "/tmp/desk.db"
    assert base.feeds.broker is None


def test_tastytrade_needs_both_credentials() -> None:
    config = apply_env_overrides(AppConfig(), {"TASTYTRADE_USERNAME": "trader", "TASTYTRADE_PASSWORD": " "})
    assert config.feeds.realtime is None
