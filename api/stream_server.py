"""HTTP-ендпоінти server mode: SSE relay upstream-стрімів + server config.

Шлях: ``api/stream_server.py``

Маршрути:
    • ``POST /api/stream`` — `{streamType, payload}` → `text/event-stream`;
      перший фрейм `{event: "connected", subscriptionId}`, далі по одному
      `data: <json>` на кожне upstream-повідомлення;
    • ``GET /api/server-config`` — `{restUrl, hasApiKey}` (без самого ключа).

Ключ API лишається на сервері: кожен стрім відкриває власний upstream-клієнт
і звільняє підписку, щойно клієнт відключився.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from aiohttp import web
from prometheus_client import Counter, Gauge

from app.settings import Settings
from config.config import (
    SERVER_CONFIG_API_PATH,
    STREAM_API_PATH,
    STREAM_DISCONNECT_POLL_S,
    STREAM_RELAY_QUEUE_MAXSIZE,
)
from core.contracts.stream import (
    SSE_HANDSHAKE_EVENT,
    SSE_RESPONSE_HEADERS,
    STREAM_TYPES,
    encode_sse_frame,
)
from core.serialization import json_dumps, json_loads
from streaming.transport import StreamingClient
from streaming.ws_client import WsStreamingClient

logger = logging.getLogger("chart_stream_api")

STREAM_API_REQUESTS_TOTAL = Counter(
    "chart_feed_stream_api_requests_total",
    "Запити до /api/stream за HTTP-статусом",
    labelnames=("status",),
)
STREAM_API_ACTIVE_CONNECTIONS = Gauge(
    "chart_feed_stream_api_active_connections",
    "Кількість відкритих SSE-з'єднань relay",
)
STREAM_API_MESSAGES_TOTAL = Counter(
    "chart_feed_stream_api_messages_total",
    "Кількість переданих клієнтам SSE-фреймів",
    labelnames=("stream_type",),
)
STREAM_API_DROPPED_TOTAL = Counter(
    "chart_feed_stream_api_dropped_total",
    "Повідомлення, відкинуті через переповнену чергу relay",
    labelnames=("stream_type",),
)

ClientFactory = Callable[[Settings], StreamingClient]

SETTINGS_KEY = web.AppKey("chart_feed_settings", Settings)
CLIENT_FACTORY_KEY = web.AppKey("chart_feed_client_factory", object)
POLL_INTERVAL_KEY = web.AppKey("chart_feed_disconnect_poll_s", float)
QUEUE_MAXSIZE_KEY = web.AppKey("chart_feed_relay_queue_maxsize", int)


def default_client_factory(settings: Settings) -> StreamingClient:
    return WsStreamingClient(
        settings.ws_url,
        settings.api_key or "",
        ws_url_map=settings.ws_url_map,
    )


def _json_error(status: int, message: str) -> web.Response:
    STREAM_API_REQUESTS_TOTAL.labels(status=str(status)).inc()
    return web.json_response({"error": message}, status=status, dumps=json_dumps)


def _client_gone(request: web.Request) -> bool:
    transport = request.transport
    return transport is None or transport.is_closing()


async def _release_client(
    client: StreamingClient, stream_type: str, subscription_id: str | None
) -> None:
    if subscription_id is not None:
        try:
            client.unsubscribe(stream_type, subscription_id)  # type: ignore[arg-type]
        except Exception:
            logger.exception("[Stream API] Upstream unsubscribe failed")
    aclose = getattr(client, "aclose", None)
    if aclose is not None:
        await aclose()


async def stream_handler(request: web.Request) -> web.StreamResponse:
    settings = request.app[SETTINGS_KEY]
    if not settings.api_key:
        logger.error("[Stream API] Серверний API-ключ не налаштовано")
        return _json_error(500, "Server API key not configured")

    try:
        body = await request.json(loads=json_loads)
    except ValueError:
        return _json_error(400, "Invalid JSON body")
    if not isinstance(body, dict):
        return _json_error(400, "Missing streamType or payload")

    stream_type = body.get("streamType")
    payload = body.get("payload")
    if not stream_type or payload is None:
        return _json_error(400, "Missing streamType or payload")
    if stream_type not in STREAM_TYPES:
        return _json_error(400, f"Unsupported streamType: {stream_type}")
    if not isinstance(payload, dict):
        return _json_error(400, "payload must be an object")

    factory: ClientFactory = request.app[CLIENT_FACTORY_KEY]  # type: ignore[assignment]
    poll_s = request.app[POLL_INTERVAL_KEY]
    queue_maxsize = request.app[QUEUE_MAXSIZE_KEY]
    client = factory(settings)
    queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=queue_maxsize)
    disconnected = False

    def _on_data(data: Any) -> None:
        if disconnected:
            return
        if queue.full():
            # Повільний читач: витісняємо найстаріше, свіжий тік важливіший.
            queue.get_nowait()
            STREAM_API_DROPPED_TOTAL.labels(stream_type=stream_type).inc()
            logger.warning(
                "[Stream API] Черга relay переповнена (%d), старе повідомлення відкинуто",
                queue_maxsize,
            )
        queue.put_nowait(data)

    subscription_id: str | None = None
    response = web.StreamResponse(status=200, headers=SSE_RESPONSE_HEADERS)
    STREAM_API_REQUESTS_TOTAL.labels(status="200").inc()
    STREAM_API_ACTIVE_CONNECTIONS.inc()
    try:
        subscription_id = client.subscribe(stream_type, payload, _on_data)
        logger.info("[Stream API] +%s (%s)", subscription_id, stream_type)

        await response.prepare(request)
        handshake = {"event": SSE_HANDSHAKE_EVENT, "subscriptionId": subscription_id}
        await response.write(encode_sse_frame(json_dumps(handshake)))

        while True:
            try:
                data = await asyncio.wait_for(queue.get(), timeout=poll_s)
            except asyncio.TimeoutError:
                if _client_gone(request):
                    break
                continue
            try:
                frame = encode_sse_frame(json_dumps(data))
            except (TypeError, ValueError) as exc:
                logger.error("[Stream API] Error encoding message: %s", exc)
                continue
            await response.write(frame)
            STREAM_API_MESSAGES_TOTAL.labels(stream_type=stream_type).inc()
    except ConnectionResetError:
        pass
    finally:
        disconnected = True
        STREAM_API_ACTIVE_CONNECTIONS.dec()
        logger.info("[Stream API] -%s (клієнт відключився)", subscription_id)
        await _release_client(client, stream_type, subscription_id)

    return response


async def server_config_handler(request: web.Request) -> web.Response:
    settings = request.app[SETTINGS_KEY]
    return web.json_response(
        {"restUrl": settings.rest_url, "hasApiKey": settings.has_api_key},
        dumps=json_dumps,
    )


def build_app(
    settings: Settings,
    *,
    client_factory: ClientFactory | None = None,
    disconnect_poll_s: float = STREAM_DISCONNECT_POLL_S,
    queue_maxsize: int = STREAM_RELAY_QUEUE_MAXSIZE,
) -> web.Application:
    """Створює aiohttp Application з relay-ендпоінтами.

    Args:
        settings: налаштування (ключ/URL upstream).
        client_factory: фабрика upstream-клієнта на один стрім (для тестів).
        disconnect_poll_s: період перевірки відключення клієнта.
        queue_maxsize: ліміт буфера на один стрім; при переповненні
            відкидається найстаріше повідомлення.
    """

    if queue_maxsize < 1:
        raise ValueError("queue_maxsize має бути >= 1")
    app = web.Application()
    app[SETTINGS_KEY] = settings
    app[CLIENT_FACTORY_KEY] = client_factory or default_client_factory
    app[POLL_INTERVAL_KEY] = float(disconnect_poll_s)
    app[QUEUE_MAXSIZE_KEY] = int(queue_maxsize)
    app.router.add_post(STREAM_API_PATH, stream_handler)
    app.router.add_get(SERVER_CONFIG_API_PATH, server_config_handler)
    logger.info(
        "[Stream API] App built: has_api_key=%s rest_url=%s",
        settings.has_api_key,
        settings.rest_url,
    )
    return app


__all__ = [
    "build_app",
    "default_client_factory",
    "server_config_handler",
    "stream_handler",
    "SETTINGS_KEY",
]
