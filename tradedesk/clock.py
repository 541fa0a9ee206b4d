from __future__ import annotations

from datetime import datetime, time, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

FUTURES_TIMEZONE = "America/New_York"
_SESSION_BREAK_START = time(17, 0)
_SESSION_BREAK_END = time(18, 0)


def _get_zone(timezone_name: str) -> ZoneInfo:
    try:
        return ZoneInfo(timezone_name)
    except ZoneInfoNotFoundError as exc:
        raise RuntimeError(
            f"Timezone '{timezone_name}' is not available. "
            "Install tzdata in your environment: pip install tzdata"
        ) from exc


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def now_ms() -> int:
    return int(utc_now().timestamp() * 1000)


def to_timezone(dt: datetime, timezone_name: str) -> datetime:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(_get_zone(timezone_name))


def to_iso_utc(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def futures_market_status(now: datetime | None = None, timezone_name: str = FUTURES_TIMEZONE) -> str:
    """Return ``"OPEN"`` or ``"CLOSED"`` for the CME equity-index session.

    Globex trades Sunday 18:00 through Friday 17:00 New York time, with a
    one hour maintenance break every day at 17:00.
    """
    local_dt = to_timezone(now or utc_now(), timezone_name)
    weekday = local_dt.weekday()
    clock = local_dt.time()
    if weekday == 5:
        return "CLOSED"
    if weekday == 6:
        return "OPEN" if clock >= _SESSION_BREAK_END else "CLOSED"
    if weekday == 4 and clock >= _SESSION_BREAK_START:
        return "CLOSED"
    if _SESSION_BREAK_START <= clock < _SESSION_BREAK_END:
        return "CLOSED"
    return "OPEN"
