from __future__ import annotations

from dataclasses import dataclass

from tradedesk.config import GuidanceConfig
from tradedesk.trade.market_state import (
    STATE_OVERBOUGHT,
    STATE_OVERSOLD,
    STATE_TREND_DOWN,
    STATE_TREND_UP,
    TechnicalState,
)
from tradedesk.trade.models import ActiveTrade, GuidanceStatus

ACTIONS: dict[GuidanceStatus, str] = {
    GuidanceStatus.EXIT: "CLOSE TRADE",
    GuidanceStatus.CAUTION: "TIGHTEN STOPS",
    GuidanceStatus.HOLD: "HOLD",
}

WAITING_FOR_PRICE = "Waiting for price data..."
HOLD_EVIDENCE = ("Structure intact", "No invalidation triggers")


@dataclass(frozen=True, slots=True)
class MarketContext:
    price: float | None
    trend_regime: str | None = None
    bias_score: float | None = None
    technical: TechnicalState | None = None


@dataclass(frozen=True, slots=True)
class GuidanceResult:
    status: GuidanceStatus
    evidence: tuple[str, ...]

    @property
    def action(self) -> str:
        return guidance_action(self.status)


def guidance_action(status: GuidanceStatus) -> str:
    return ACTIONS[GuidanceStatus(status)]


def _drawdown_pct(trade: ActiveTrade, price: float) -> float | None:
    total = abs(trade.entry_price - trade.stop_loss_price)
    if total <= 0:
        return None
    consumed = trade.entry_price - price if trade.is_long else price - trade.entry_price
    if consumed <= 0:
        return None
    return consumed * 100 / total


def _technical_evidence(is_long: bool, technical: TechnicalState) -> list[str]:
    flags = technical.flags
    out: list[str] = []
    if is_long:
        if technical.state == STATE_TREND_DOWN:
            out.append("Market State flipped to TREND_DOWN")
        if technical.state == STATE_OVERBOUGHT:
            out.append("Market State is OVERBOUGHT (Consider partials)")
        if flags.macd_bearish:
            out.append("MACD flipped Bearish")
        if flags.outside_vwap_upper and flags.mfi_overbought:
            out.append("Price Outside Upper VWAP + MFI Overbought")
    else:
        if technical.state == STATE_TREND_UP:
            out.append("Market State flipped to TREND_UP")
        if technical.state == STATE_OVERSOLD:
            out.append("Market State is OVERSOLD (Consider partials)")
        if flags.macd_bullish:
            out.append("MACD flipped Bullish")
        if flags.outside_vwap_lower and flags.mfi_oversold:
            out.append("Price Outside Lower VWAP + MFI Oversold")
    return out


def evaluate_guidance(
    trade: ActiveTrade,
    context: MarketContext,
    config: GuidanceConfig | None = None,
) -> GuidanceResult:
    """
    Re-evaluate an open position against the latest market read.

    Hard exits (stop breach, strong opposite trend) win over everything.
    Caution reasons accumulate; with none the structure is considered intact.
    """
    cfg = config or GuidanceConfig()
    price = context.price
    if not price:
        return GuidanceResult(GuidanceStatus.HOLD, (WAITING_FOR_PRICE,))

    is_long = trade.is_long
    stop = trade.stop_loss_price
    if (is_long and price <= stop) or (not is_long and price >= stop):
        return GuidanceResult(
            GuidanceStatus.EXIT,
            ("Stop Loss level breached", "Hard invalidation of trade structure"),
        )

    regime = (context.trend_regime or "").upper()
    opposite = "BEARISH" if is_long else "BULLISH"
    if "STRONG" in regime and opposite in regime:
        return GuidanceResult(
            GuidanceStatus.EXIT,
            (f"Trend Engine confirmed STRONG {opposite} Flip", "Momentum fully invalidated"),
        )

    evidence: list[str] = []
    drawdown = _drawdown_pct(trade, price)
    if drawdown is not None and drawdown >= cfg.drawdown_caution_pct:
        evidence.append(f"Drawdown critical: {drawdown:.0f}% of max risk consumed")

    if regime in ("CHOPPY", "NEUTRAL"):
        evidence.append("Market Regime classified as CHOPPY/NEUTRAL")

    bias = context.bias_score
    if bias is not None:
        margin = cfg.bias_flip_margin
        if is_long and bias < -margin:
            evidence.append(f"Composite Bias Score turned NEGATIVE (-{margin:g}+)")
        if not is_long and bias > margin:
            evidence.append(f"Composite Bias Score turned POSITIVE (+{margin:g}+)")

    if context.technical is not None:
        evidence.extend(_technical_evidence(is_long, context.technical))

    if evidence:
        return GuidanceResult(GuidanceStatus.CAUTION, tuple(evidence))
    return GuidanceResult(GuidanceStatus.HOLD, HOLD_EVIDENCE)
