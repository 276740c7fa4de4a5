"""Контракт стрім-ендпоінта (клієнт ↔ server-mode SSE relay).

Дріт:
- запит: `POST {streamType, payload}`;
- відповідь: `text/event-stream`, фрейми `data: <JSON>\\n\\n`;
- перший фрейм — handshake `{event: "connected", subscriptionId}`.
"""

from __future__ import annotations

from typing import Any, Literal, TypedDict

StreamType = Literal[
    "fast-trade",
    "pulse-v2",
    "token-details",
    "market-details",
    "ohlcv",
    "position",
]

STREAM_TYPES: frozenset[str] = frozenset(
    {
        "fast-trade",
        "pulse-v2",
        "token-details",
        "market-details",
        "ohlcv",
        "position",
    }
)

SSE_DATA_PREFIX = "data: "
SSE_FRAME_DELIMITER = "\n\n"
SSE_HANDSHAKE_EVENT = "connected"

SSE_RESPONSE_HEADERS: dict[str, str] = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class StreamRequest(TypedDict):
    streamType: StreamType
    payload: dict[str, Any]


class StreamHandshake(TypedDict):
    event: str
    subscriptionId: str | None


def is_handshake(message: Any) -> bool:
    """True, якщо повідомлення — службовий handshake, а не дані."""

    return isinstance(message, dict) and message.get("event") == SSE_HANDSHAKE_EVENT


def encode_sse_frame(data_json: str) -> bytes:
    """Кодує один SSE-фрейм із вже серіалізованим JSON."""

    return f"{SSE_DATA_PREFIX}{data_json}{SSE_FRAME_DELIMITER}".encode()


__all__ = [
    "StreamType",
    "STREAM_TYPES",
    "SSE_DATA_PREFIX",
    "SSE_FRAME_DELIMITER",
    "SSE_HANDSHAKE_EVENT",
    "SSE_RESPONSE_HEADERS",
    "StreamRequest",
    "StreamHandshake",
    "is_handshake",
    "encode_sse_frame",
]
