from __future__ import annotations


class FeedError(RuntimeError):
    """Candle source could not deliver usable data."""


class FeedUnavailableError(FeedError):
    """Source answered but had nothing usable (HTTP error, empty result)."""


class FeedPayloadError(FeedError):
    """Source answered with a payload that cannot be decoded."""


class FeedAuthError(FeedError):
    """Session or streaming authorization was rejected."""


class FeedTimeoutError(FeedError):
    """Source did not deliver enough data before its deadline."""


class FeedProtocolError(FeedError):
    """Streaming peer sent an error frame or broke the handshake order."""
