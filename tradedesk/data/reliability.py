from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from tradedesk.clock import now_ms as _now_ms
from tradedesk.config import ReliabilityConfig
from tradedesk.data.provider_chain import DataSource

MARKET_OPEN = "OPEN"
MARKET_CLOSED = "CLOSED"

STATUS_OK = "OK"
STATUS_DELAYED = "DELAYED"
STATUS_CLOSED = "CLOSED"


@dataclass(frozen=True, slots=True)
class ReliabilityResult:
    final_score: float
    data_status: str
    cap_applied: bool
    data_age_ms: int | None
    cap_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "finalScore": self.final_score,
            "dataStatus": self.data_status,
            "capApplied": self.cap_applied,
            "dataAgeMs": self.data_age_ms,
        }
        if self.cap_reason is not None:
            payload["capReason"] = self.cap_reason
        return payload


def _fmt_pct(value: float) -> str:
    return f"{value:g}"


def format_age_ms(age_ms: int | None) -> str:
    if age_ms is None or age_ms < 0:
        return "-"
    total_seconds = int(age_ms // 1000)
    if total_seconds < 60:
        return f"{total_seconds}s"
    minutes, seconds = divmod(total_seconds, 60)
    return f"{minutes}m {seconds}s"


def cap_reason(
    source: DataSource,
    *,
    raw_score: float,
    cap: float,
    cap_applied: bool,
    data_status: str,
    data_age_ms: int | None,
) -> str | None:
    if cap_applied:
        return f"{source.value} cap {_fmt_pct(cap)}% (raw {_fmt_pct(raw_score)}%)"
    if data_status == STATUS_DELAYED:
        if data_age_ms is None:
            return f"{source.value} has no bars"
        return f"{source.value} delayed {int(round(data_age_ms / 60_000))}m"
    return None


def apply_reliability(
    *,
    raw_score: float,
    last_bar_time_ms: int | None,
    source: DataSource | str,
    market_status: str,
    now_ms: int | None = None,
    config: ReliabilityConfig | None = None,
) -> ReliabilityResult:
    """
    Separate signal strength from feed trust.

    - Age is measured from the last bar's time, not from the request.
    - Score is capped per source; status reflects staleness only.
    - A closed market passes the raw score through untouched.
    """
    cfg = config or ReliabilityConfig()
    src = DataSource(source)
    now = _now_ms() if now_ms is None else int(now_ms)
    data_age_ms = None if last_bar_time_ms is None else now - int(last_bar_time_ms)

    if str(market_status).upper() == MARKET_CLOSED:
        return ReliabilityResult(
            final_score=raw_score,
            data_status=STATUS_CLOSED,
            cap_applied=False,
            data_age_ms=data_age_ms,
        )

    threshold = cfg.delay_thresholds_ms[src.value]
    delayed = data_age_ms is None or data_age_ms > threshold
    data_status = STATUS_DELAYED if delayed else STATUS_OK

    cap = cfg.caps[src.value]
    final_score = min(raw_score, cap)
    cap_applied = final_score != raw_score
    return ReliabilityResult(
        final_score=final_score,
        data_status=data_status,
        cap_applied=cap_applied,
        data_age_ms=data_age_ms,
        cap_reason=cap_reason(
            src,
            raw_score=raw_score,
            cap=cap,
            cap_applied=cap_applied,
            data_status=data_status,
            data_age_ms=data_age_ms,
        ),
    )
