from __future__ import annotations

import json
import logging
import time
from enum import Enum
from typing import Any, Callable

import websocket  # websocket-client

from tradedesk.data.candles import Candle, build_candle, sanitize_candles
from tradedesk.data.errors import (
    FeedAuthError,
    FeedProtocolError,
    FeedTimeoutError,
    FeedUnavailableError,
)

LOGGER = logging.getLogger(__name__)

CONTROL_CHANNEL = 0
FEED_CHANNEL = 1

# COMPACT row layout, same order as CANDLE_FIELDS
CANDLE_FIELDS = ("eventSymbol", "time", "sequence", "count", "open", "high", "low", "close", "volume")
F_TIME, F_OPEN, F_HIGH, F_LOW, F_CLOSE, F_VOLUME = 1, 4, 5, 6, 7, 8

_PERIODS = {
    "1m": "1m",
    "5m": "5m",
    "15m": "15m",
    "60m": "1h",
    "1h": "1h",
    "4h": "4h",
    "1d": "1d",
}


class DxLinkState(str, Enum):
    CONNECTING = "CONNECTING"
    AUTHORIZING = "AUTHORIZING"
    CHANNEL_OPENING = "CHANNEL_OPENING"
    SUBSCRIBED = "SUBSCRIBED"
    DONE = "DONE"


def dx_period(interval: str) -> str:
    return _PERIODS.get(interval.strip().lower(), "1m")


def dx_candle_symbol(root: str, interval: str) -> str:
    return f"/{root.strip().lstrip('/').upper()}{{={dx_period(interval)}}}"


def row_to_candle(row: list[Any]) -> Candle | None:
    if len(row) <= F_VOLUME:
        return None
    try:
        time_ms = float(row[F_TIME])
    except (TypeError, ValueError):
        return None
    if not time_ms:
        return None
    return build_candle(
        time=int(time_ms // 1000),
        open=row[F_OPEN],
        high=row[F_HIGH],
        low=row[F_LOW],
        close=row[F_CLOSE],
        volume=row[F_VOLUME],
    )


class DxLinkSession:
    """Frame-driven DXLink handshake and candle collection.

    ``handle`` consumes one decoded frame and returns the frames to send back.
    Any error frame, rejected authorization or frame that does not belong to
    the current state raises and ends the session.
    """

    def __init__(self, *, symbol: str, from_time_ms: int, token: str, target_bars: int = 820):
        self.symbol = symbol
        self.from_time_ms = int(from_time_ms)
        self.token = token
        self.target_bars = target_bars
        self.state = DxLinkState.CONNECTING
        self._bars: dict[int, Candle] = {}
        self._initial_unauthorized_seen = False

    @property
    def collected(self) -> int:
        return len(self._bars)

    def candles(self) -> list[Candle]:
        return sanitize_candles(self._bars.values())

    def opening_frames(self) -> list[dict[str, Any]]:
        return [
            {
                "type": "SETUP",
                "channel": CONTROL_CHANNEL,
                "version": "0.1",
                "minVersion": "0.1",
                "keepaliveTimeout": 60,
                "acceptKeepaliveTimeout": 60,
            }
        ]

    def _auth_frame(self) -> dict[str, Any]:
        return {"type": "AUTH", "channel": CONTROL_CHANNEL, "token": self.token}

    def _subscription_frames(self) -> list[dict[str, Any]]:
        return [
            {
                "type": "FEED_SETUP",
                "channel": FEED_CHANNEL,
                "acceptAggregationPeriod": 10,
                "acceptDataFormat": "COMPACT",
                "acceptEventFields": {"Candle": list(CANDLE_FIELDS)},
            },
            {
                "type": "FEED_SUBSCRIPTION",
                "channel": FEED_CHANNEL,
                "add": [{"type": "Candle", "symbol": self.symbol, "fromTime": self.from_time_ms}],
            },
        ]

    def _unexpected(self, frame_type: str) -> FeedProtocolError:
        return FeedProtocolError(f"Unexpected DXLink frame {frame_type} in state {self.state.value}")

    def handle(self, frame: dict[str, Any]) -> list[dict[str, Any]]:
        frame_type = str(frame.get("type", ""))
        if self.state is DxLinkState.DONE:
            return []
        if frame_type == "KEEPALIVE":
            return [{"type": "KEEPALIVE", "channel": CONTROL_CHANNEL}]
        if frame_type == "ERROR":
            self.state = DxLinkState.DONE
            raise FeedProtocolError(f"DXLink error: {frame.get('error')} {frame.get('message')}")

        if self.state is DxLinkState.CONNECTING:
            if frame_type != "SETUP":
                raise self._unexpected(frame_type)
            self.state = DxLinkState.AUTHORIZING
            return [self._auth_frame()]

        if self.state is DxLinkState.AUTHORIZING:
            if frame_type != "AUTH_STATE":
                raise self._unexpected(frame_type)
            auth_state = str(frame.get("state", ""))
            if auth_state == "AUTHORIZED":
                self.state = DxLinkState.CHANNEL_OPENING
                return [
                    {
                        "type": "CHANNEL_REQUEST",
                        "channel": FEED_CHANNEL,
                        "service": "FEED",
                        "parameters": {"contract": "AUTO"},
                    }
                ]
            # the server announces UNAUTHORIZED once before it has seen our AUTH
            if auth_state == "UNAUTHORIZED" and not self._initial_unauthorized_seen:
                self._initial_unauthorized_seen = True
                return []
            self.state = DxLinkState.DONE
            raise FeedAuthError(f"DXLink auth rejected: {auth_state or 'unknown'}")

        if self.state is DxLinkState.CHANNEL_OPENING:
            if frame_type != "CHANNEL_OPENED" or frame.get("channel") != FEED_CHANNEL:
                raise self._unexpected(frame_type)
            self.state = DxLinkState.SUBSCRIBED
            return self._subscription_frames()

        # SUBSCRIBED
        if frame_type == "FEED_CONFIG":
            return []
        if frame_type != "FEED_DATA" or frame.get("channel") != FEED_CHANNEL:
            raise self._unexpected(frame_type)
        data = frame.get("data")
        if not isinstance(data, list):
            return []
        for row in data:
            if not isinstance(row, list):
                continue
            candle = row_to_candle(row)
            if candle is not None:
                self._bars[candle.time] = candle
        if len(self._bars) >= self.target_bars:
            self.state = DxLinkState.DONE
        return []


def _decode(raw: Any) -> dict[str, Any] | None:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError):
        return None
    return payload if isinstance(payload, dict) else None


def stream_candles(
    *,
    url: str,
    token: str,
    symbol: str,
    from_time_ms: int,
    timeout_seconds: float = 9.0,
    target_bars: int = 820,
    min_bars: int = 10,
    connect: Callable[..., Any] | None = None,
    monotonic: Callable[[], float] = time.monotonic,
) -> list[Candle]:
    """Collect candles over one DXLink connection.

    Finishes once ``target_bars`` are collected. When the deadline passes or
    the peer hangs up first, what was collected is returned only if it holds
    more than ``min_bars`` bars. The socket is always closed before returning.
    """
    session = DxLinkSession(symbol=symbol, from_time_ms=from_time_ms, token=token, target_bars=target_bars)
    opener = connect or websocket.create_connection
    deadline = monotonic() + timeout_seconds
    try:
        ws = opener(url, timeout=timeout_seconds)
    except (websocket.WebSocketException, OSError) as exc:
        raise FeedUnavailableError(f"DXLink connect failed: {type(exc).__name__}") from exc

    try:
        for frame in session.opening_frames():
            ws.send(json.dumps(frame))
        while session.state is not DxLinkState.DONE:
            remaining = deadline - monotonic()
            if remaining <= 0:
                break
            ws.settimeout(remaining)
            try:
                raw = ws.recv()
            except websocket.WebSocketTimeoutException:
                break
            except websocket.WebSocketConnectionClosedException:
                LOGGER.info("DXLink closed by peer after %d candles", session.collected)
                break
            frame = _decode(raw)
            if frame is None:
                continue
            for reply in session.handle(frame):
                ws.send(json.dumps(reply))
    except (websocket.WebSocketException, OSError) as exc:
        raise FeedUnavailableError(f"DXLink transport error: {type(exc).__name__}") from exc
    finally:
        try:
            ws.close()
        except (websocket.WebSocketException, OSError):
            LOGGER.debug("DXLink close raised", exc_info=True)

    if session.state is DxLinkState.DONE:
        return session.candles()
    if session.collected > min_bars:
        LOGGER.warning("DXLink deadline reached, returning %d candles", session.collected)
        return session.candles()
    raise FeedTimeoutError(f"DXLink delivered {session.collected} candles before deadline")
