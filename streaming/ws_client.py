"""Persistent WS-клієнт upstream (client mode).

Шлях: ``streaming/ws_client.py``

Призначення:
    • одна upstream WS-сесія на підписку; URL обирається за типом стріму
      (``ws_url_map``) з fallback на базовий ``ws_url``;
    • після підключення надсилає ``{"type", "authorization", "payload"}``;
    • JSON-об'єкти з сокета віддає колбеку як є.

Особливості:
    • reconnect із експоненційним backoff (3s → 30s);
    • ``unsubscribe`` скасовує таску підписки, повторний виклик — no-op.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Mapping
from typing import Any

import websockets
from prometheus_client import Counter, Gauge

from config.config import (
    WS_PING_INTERVAL_S,
    WS_RECONNECT_INITIAL_S,
    WS_RECONNECT_MAX_S,
)
from core.contracts.stream import StreamType
from core.serialization import json_dumps, json_loads
from streaming.transport import OnData

logger = logging.getLogger("chart_streaming.ws")

logging.getLogger("websockets").setLevel(logging.WARNING)
logging.getLogger("websockets.client").setLevel(logging.WARNING)

CHART_FEED_WS_SUBSCRIPTIONS = Gauge(
    "chart_feed_ws_subscriptions",
    "Кількість активних upstream WS-підписок",
)
CHART_FEED_WS_RECONNECTS_TOTAL = Counter(
    "chart_feed_ws_reconnects_total",
    "Кількість перепідключень upstream WS",
    labelnames=("stream_type",),
)


class WsStreamingClient:
    """StreamingClient поверх `websockets` з reconnect/backoff."""

    def __init__(
        self,
        ws_url: str,
        api_key: str,
        *,
        ws_url_map: Mapping[str, str] | None = None,
        ping_interval_s: float = WS_PING_INTERVAL_S,
        backoff_initial_s: float = WS_RECONNECT_INITIAL_S,
        backoff_max_s: float = WS_RECONNECT_MAX_S,
    ) -> None:
        self._ws_url = ws_url
        self._api_key = api_key
        self._ws_url_map = dict(ws_url_map or {})
        self._ping_interval_s = ping_interval_s
        self._backoff_initial_s = backoff_initial_s
        self._backoff_max_s = backoff_max_s
        self._ids = itertools.count(1)
        self._tasks: dict[str, asyncio.Task[None]] = {}

    @property
    def active_count(self) -> int:
        return len(self._tasks)

    def url_for(self, stream_type: StreamType) -> str:
        return self._ws_url_map.get(stream_type) or self._ws_url

    def update_ws_url_map(self, ws_url_map: Mapping[str, str]) -> None:
        """Нова мапа діє для наступних (пере)підключень."""
        self._ws_url_map = dict(ws_url_map)

    def subscribe(
        self, stream_type: StreamType, payload: dict[str, Any], callback: OnData
    ) -> str:
        loop = asyncio.get_running_loop()
        subscription_id = f"{stream_type}-{next(self._ids)}"
        self._tasks[subscription_id] = loop.create_task(
            self._run(subscription_id, stream_type, payload, callback),
            name=f"ws:{subscription_id}",
        )
        CHART_FEED_WS_SUBSCRIPTIONS.set(len(self._tasks))
        return subscription_id

    def unsubscribe(self, stream_type: StreamType, subscription_id: str) -> None:
        task = self._tasks.pop(subscription_id, None)
        CHART_FEED_WS_SUBSCRIPTIONS.set(len(self._tasks))
        if task is not None and not task.done():
            task.cancel()
            logger.debug("[WS] Unsubscribe %s (%s)", subscription_id, stream_type)

    async def aclose(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        CHART_FEED_WS_SUBSCRIPTIONS.set(0)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _subscribe_message(
        self, stream_type: StreamType, payload: dict[str, Any]
    ) -> str:
        return json_dumps(
            {"type": stream_type, "authorization": self._api_key, "payload": payload}
        )

    async def _run(
        self,
        subscription_id: str,
        stream_type: StreamType,
        payload: dict[str, Any],
        callback: OnData,
    ) -> None:
        backoff = self._backoff_initial_s
        while True:
            url = self.url_for(stream_type)
            try:
                async with websockets.connect(
                    url, ping_interval=self._ping_interval_s
                ) as ws:
                    logger.debug("[WS] Connected %s → %s", subscription_id, url)
                    backoff = self._backoff_initial_s
                    await ws.send(self._subscribe_message(stream_type, payload))
                    async for raw in ws:
                        self._dispatch(subscription_id, raw, callback)
                logger.info("[WS] %s: сервер закрив з'єднання", subscription_id)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning(
                    "[WS] %s error: %s → reconnect in %.0fs",
                    subscription_id,
                    exc,
                    backoff,
                )
            CHART_FEED_WS_RECONNECTS_TOTAL.labels(stream_type=stream_type).inc()
            await asyncio.sleep(backoff)
            backoff = min(backoff * 2, self._backoff_max_s)

    def _dispatch(self, subscription_id: str, raw: str | bytes, callback: OnData) -> None:
        try:
            message = json_loads(raw)
        except ValueError:
            logger.debug("[WS] Bad message (%s): %s", subscription_id, str(raw)[:200])
            return
        if not isinstance(message, dict):
            return
        try:
            callback(message)
        except Exception:
            logger.exception("[WS] Callback failed (%s)", subscription_id)


__all__ = ["WsStreamingClient"]
