"""Client mode: транспорт поверх persistent duplex-клієнта (WS SDK).

Шлях: ``streaming/socket_transport.py``
"""

from __future__ import annotations

import logging
from typing import Any

from core.contracts.stream import StreamType
from streaming.transport import OnData, StreamingClient

logger = logging.getLogger("chart_streaming.socket")


class SocketSubscription:
    """Хендл підписки прямого клієнта з guard-ом на пізні повідомлення."""

    def __init__(
        self, client: StreamingClient, stream_type: StreamType, on_data: OnData
    ) -> None:
        self._client = client
        self.stream_type = stream_type
        self._on_data = on_data
        self._closed = False
        self.subscription_id: str | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    def _deliver(self, message: Any) -> None:
        # Клієнт може встигнути віддати повідомлення вже після unsubscribe.
        if self._closed:
            return
        try:
            self._on_data(message)
        except Exception:
            logger.exception("[Socket] on_data callback failed (%s)", self.subscription_id)

    def unsubscribe(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self.subscription_id is None:
            return
        try:
            self._client.unsubscribe(self.stream_type, self.subscription_id)
        except Exception as exc:
            logger.warning(
                "[Socket] Unsubscribe %s failed: %s", self.subscription_id, exc
            )


class DirectSocketTransport:
    """StreamTransport, що делегує підписки одному спільному клієнту."""

    def __init__(self, client: StreamingClient) -> None:
        self._client = client
        self._handles: list[SocketSubscription] = []

    @property
    def client(self) -> StreamingClient:
        return self._client

    def subscribe(
        self, stream_type: StreamType, payload: dict[str, Any], on_data: OnData
    ) -> SocketSubscription:
        handle = SocketSubscription(self._client, stream_type, on_data)
        handle.subscription_id = self._client.subscribe(
            stream_type, payload, handle._deliver
        )
        self._handles = [h for h in self._handles if not h.closed]
        self._handles.append(handle)
        logger.debug(
            "[Socket] Subscribe %s type=%s", handle.subscription_id, stream_type
        )
        return handle

    async def aclose(self) -> None:
        for handle in self._handles:
            handle.unsubscribe()
        self._handles.clear()
        aclose = getattr(self._client, "aclose", None)
        if aclose is not None:
            await aclose()


__all__ = ["DirectSocketTransport", "SocketSubscription"]
