from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping


@dataclass(frozen=True, slots=True)
class Candle:
    time: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    @property
    def timestamp(self) -> datetime:
        return datetime.fromtimestamp(self.time, tz=timezone.utc)

    @property
    def time_ms(self) -> int:
        return self.time * 1000

    def to_dict(self) -> dict[str, float | int]:
        return {
            "time": self.time,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
        }


def parse_timestamp(value: str) -> datetime:
    normalized = value.replace(" ", "T")
    if normalized.endswith("Z"):
        normalized = normalized[:-1] + "+00:00"
    dt = datetime.fromisoformat(normalized)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _as_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(parsed) or math.isinf(parsed):
        return None
    return parsed


def _as_unix_seconds(value: Any) -> int | None:
    if isinstance(value, datetime):
        dt = value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)
        return int(dt.timestamp())
    if isinstance(value, str):
        numeric = _as_float(value)
        if numeric is not None:
            return int(numeric) if numeric > 0 else None
        try:
            return int(parse_timestamp(value).timestamp())
        except ValueError:
            return None
    numeric = _as_float(value)
    if numeric is None or numeric <= 0:
        return None
    return int(numeric)


def build_candle(
    *,
    time: Any,
    open: Any,
    high: Any,
    low: Any,
    close: Any,
    volume: Any = None,
) -> Candle | None:
    ts = _as_unix_seconds(time)
    o = _as_float(open)
    h = _as_float(high)
    lo = _as_float(low)
    c = _as_float(close)
    if ts is None or o is None or h is None or lo is None or c is None:
        return None
    if o == 0 and h == 0 and lo == 0 and c == 0:
        return None
    return Candle(time=ts, open=o, high=h, low=lo, close=c, volume=_as_float(volume) or 0.0)


def sanitize_candles(candles: Iterable[Candle]) -> list[Candle]:
    """Rebuild every candle field by field, sort ascending and drop duplicate times.

    When two bars share a timestamp the one received last wins.
    """
    by_time: dict[int, Candle] = {}
    for item in candles:
        by_time[int(item.time)] = Candle(
            time=int(item.time),
            open=float(item.open),
            high=float(item.high),
            low=float(item.low),
            close=float(item.close),
            volume=float(item.volume),
        )
    return [by_time[key] for key in sorted(by_time)]


def candles_from_rows(rows: Iterable[Mapping[str, Any]]) -> list[Candle]:
    output: list[Candle] = []
    for item in rows:
        if not isinstance(item, Mapping):
            continue
        candle = build_candle(
            time=item.get("time"),
            open=item.get("open"),
            high=item.get("high"),
            low=item.get("low"),
            close=item.get("close"),
            volume=item.get("volume"),
        )
        if candle is not None:
            output.append(candle)
    return sanitize_candles(output)


def last_bar_time_ms(candles: list[Candle]) -> int | None:
    if not candles:
        return None
    return candles[-1].time_ms
