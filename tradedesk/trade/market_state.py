from __future__ import annotations

from dataclasses import dataclass, field

STATE_OVERBOUGHT = "OVERBOUGHT"
STATE_OVERSOLD = "OVERSOLD"
STATE_TREND_UP = "TREND_UP"
STATE_TREND_DOWN = "TREND_DOWN"
STATE_RANGE = "RANGE"
STATE_UNKNOWN = "UNKNOWN"


@dataclass(frozen=True, slots=True)
class VwapBands:
    upper: float
    basis: float
    lower: float

    @property
    def width(self) -> float:
        return self.upper - self.lower


@dataclass(frozen=True, slots=True)
class MacdValue:
    macd: float
    signal: float


@dataclass(frozen=True, slots=True)
class MfiValue:
    value: float
    overbought: bool = False
    oversold: bool = False

    @classmethod
    def from_value(cls, value: float, *, upper: float = 80.0, lower: float = 20.0) -> "MfiValue":
        return cls(value=value, overbought=value > upper, oversold=value < lower)


@dataclass(frozen=True, slots=True)
class TechnicalFlags:
    price_above_vwap: bool = False
    price_below_vwap: bool = False
    outside_vwap_upper: bool = False
    outside_vwap_lower: bool = False
    macd_bullish: bool = False
    macd_bearish: bool = False
    mfi_overbought: bool = False
    mfi_oversold: bool = False


@dataclass(frozen=True, slots=True)
class TechnicalState:
    state: str = STATE_UNKNOWN
    flags: TechnicalFlags = field(default_factory=TechnicalFlags)


def classify_market_state(
    price: float,
    vwap: float,
    bands: VwapBands | None,
    macd: MacdValue | None,
    mfi: MfiValue | None,
) -> TechnicalState:
    """
    Order of checks:
    1) OVERBOUGHT: above upper band with MFI overbought; OVERSOLD mirrors it.
    2) TREND_UP: above VWAP, MACD bullish and beyond basis + 1 SD; TREND_DOWN mirrors it.
    3) RANGE otherwise. UNKNOWN when any indicator is missing.
    """
    flags = TechnicalFlags(
        price_above_vwap=price > vwap,
        price_below_vwap=price < vwap,
        outside_vwap_upper=bands is not None and price > bands.upper,
        outside_vwap_lower=bands is not None and price < bands.lower,
        macd_bullish=macd is not None and macd.macd > macd.signal,
        macd_bearish=macd is not None and macd.macd < macd.signal,
        mfi_overbought=mfi is not None and mfi.overbought,
        mfi_oversold=mfi is not None and mfi.oversold,
    )
    if bands is None or macd is None or mfi is None:
        return TechnicalState(state=STATE_UNKNOWN, flags=flags)

    # band width spans upper-to-lower, i.e. 4 SD
    one_sd = bands.width / 4
    state = STATE_RANGE
    if flags.outside_vwap_upper and flags.mfi_overbought:
        state = STATE_OVERBOUGHT
    elif flags.outside_vwap_lower and flags.mfi_oversold:
        state = STATE_OVERSOLD
    elif flags.price_above_vwap and flags.macd_bullish:
        if price > bands.basis + one_sd:
            state = STATE_TREND_UP
    elif flags.price_below_vwap and flags.macd_bearish:
        if price < bands.basis - one_sd:
            state = STATE_TREND_DOWN
    return TechnicalState(state=state, flags=flags)
