"""Єдиний інтерфейс стрім-транспорту для datafeed.

Дві реалізації з однаковим контрактом:
- ``SseStreamTransport`` — chunked HTTP + розбір SSE-фреймів (server mode);
- ``DirectSocketTransport`` — прямий persistent WS-клієнт (client mode).

Гарантії для обох:
- ``unsubscribe()`` ідемпотентний, безпечний після завершення стріму;
- після повернення з ``unsubscribe()`` жодного виклику ``on_data``.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from typing import Any, Protocol

from core.contracts.stream import StreamType

OnData = Callable[[Any], None]


class SseState(str, Enum):
    """Стан SSE-хендла. ERRORED — термінальний, ретраїв тут немає."""

    CONNECTING = "connecting"
    STREAMING = "streaming"
    CLOSED = "closed"
    ABORTED = "aborted"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        return self in (SseState.CLOSED, SseState.ABORTED, SseState.ERRORED)


class StreamHandle(Protocol):
    def unsubscribe(self) -> None: ...

    @property
    def closed(self) -> bool: ...


class StreamTransport(Protocol):
    def subscribe(
        self, stream_type: StreamType, payload: dict[str, Any], on_data: OnData
    ) -> StreamHandle:
        """Відкриває підписку; помилка старту може бути піднята одразу."""
        ...

    async def aclose(self) -> None:
        """Звільняє ресурси транспорту (сесії/з'єднання)."""
        ...


class StreamingClient(Protocol):
    """Persistent duplex-клієнт upstream (WS SDK)."""

    def subscribe(
        self, stream_type: StreamType, payload: dict[str, Any], callback: OnData
    ) -> str: ...

    def unsubscribe(self, stream_type: StreamType, subscription_id: str) -> None: ...


__all__ = [
    "OnData",
    "SseState",
    "StreamHandle",
    "StreamTransport",
    "StreamingClient",
]
