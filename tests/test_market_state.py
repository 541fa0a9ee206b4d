from __future__ import annotations

from tradedesk.trade.market_state import (
    MacdValue,
    MfiValue,
    VwapBands,
    classify_market_state,
)

BANDS = VwapBands(upper=110.0, basis=100.0, lower=90.0)


def test_unknown_when_indicator_missing() -> None:
    state = classify_market_state(105.0, 100.0, None, MacdValue(1.0, 0.5), MfiValue.from_value(50))
    assert state.state == "UNKNOWN"
    assert state.flags.price_above_vwap is True
    assert state.flags.macd_bullish is True


def test_overbought_beats_trend() -> None:
    state = classify_market_state(111.0, 100.0, BANDS, MacdValue(1.0, 0.5), MfiValue.from_value(85))
    assert state.state == "OVERBOUGHT"
    assert state.flags.outside_vwap_upper is True
    assert state.flags.mfi_overbought is True


def test_oversold() -> None:
    state = classify_market_state(89.0, 100.0, BANDS, MacdValue(-1.0, 0.0), MfiValue.from_value(15))
    assert state.state == "OVERSOLD"


def test_trend_up_needs_one_sd_above_basis() -> None:
    riding = classify_market_state(106.0, 100.0, BANDS, MacdValue(1.0, 0.5), MfiValue.from_value(60))
    assert riding.state == "TREND_UP"
    hugging = classify_market_state(104.0, 100.0, BANDS, MacdValue(1.0, 0.5), MfiValue.from_value(60))
    assert hugging.state == "RANGE"


def test_trend_down() -> None:
    state = classify_market_state(94.0, 100.0, BANDS, MacdValue(-1.0, -0.5), MfiValue.from_value(40))
    assert state.state == "TREND_DOWN"
    assert state.flags.macd_bearish is True
