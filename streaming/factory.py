"""Вибір стрім-транспорту за `stream_mode` з налаштувань."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import aiohttp

from streaming.socket_transport import DirectSocketTransport
from streaming.sse_transport import SseStreamTransport
from streaming.transport import StreamingClient, StreamTransport
from streaming.ws_client import WsStreamingClient

if TYPE_CHECKING:
    from app.settings import Settings

logger = logging.getLogger("chart_streaming")


def build_stream_transport(
    settings: Settings,
    *,
    session: aiohttp.ClientSession | None = None,
    client: StreamingClient | None = None,
) -> StreamTransport:
    """server → SSE через власний ендпоінт; client → прямий WS до upstream.

    У client mode без переданого `client` потрібен `api_key`.
    """

    mode = settings.stream_mode
    if mode == "server":
        logger.info("[Stream] server mode → %s", settings.stream_endpoint_url)
        return SseStreamTransport(settings.stream_endpoint_url, session=session)

    if mode == "client":
        if client is None:
            if not settings.api_key:
                raise ValueError("client stream mode потребує api_key")
            client = WsStreamingClient(
                settings.ws_url, settings.api_key, ws_url_map=settings.ws_url_map
            )
        logger.info("[Stream] client mode (direct socket)")
        return DirectSocketTransport(client)

    raise ValueError(f"Невідомий stream_mode: {mode!r}")


__all__ = ["build_stream_transport"]
