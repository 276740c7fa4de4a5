"""SSE-транспорт (server mode): POST на стрім-ендпоінт і читання chunked body.

Шлях: ``streaming/sse_transport.py``

Життєвий цикл хендла:
    CONNECTING → STREAMING → (CLOSED | ABORTED | ERRORED)

    • CLOSED — сервер штатно завершив відповідь;
    • ABORTED — клієнт викликав ``unsubscribe()`` (read-loop скасовано);
    • ERRORED — не-2xx відповідь або помилка з'єднання. Термінальний стан,
      ретраї — зовнішня політика.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any

import aiohttp
from prometheus_client import Counter, Gauge

from core.contracts.stream import StreamType
from streaming.sse_decoder import SseFrameDecoder
from streaming.transport import OnData, SseState

logger = logging.getLogger("chart_streaming.sse")

CHART_FEED_SSE_ACTIVE_STREAMS = Gauge(
    "chart_feed_sse_active_streams",
    "Кількість відкритих SSE-стрімів",
)
CHART_FEED_SSE_STREAMS_FINISHED_TOTAL = Counter(
    "chart_feed_sse_streams_finished_total",
    "Кількість завершених SSE-стрімів за термінальним станом",
    labelnames=("state",),
)


class SseSubscription:
    """Хендл однієї SSE-підписки."""

    def __init__(self, stream_id: str, stream_type: StreamType, on_data: OnData) -> None:
        self.stream_id = stream_id
        self.stream_type = stream_type
        self.subscription_id: str | None = None
        self._on_data = on_data
        self._state = SseState.CONNECTING
        self._closed = False
        self._task: asyncio.Task[None] | None = None

    @property
    def state(self) -> SseState:
        return self._state

    @property
    def closed(self) -> bool:
        """True після unsubscribe або будь-якого термінального стану стріму."""

        return self._closed or self._state.is_terminal

    @property
    def task(self) -> asyncio.Task[None] | None:
        return self._task

    def unsubscribe(self) -> None:
        """Зупиняє доставку одразу і скасовує read-loop. Ідемпотентний."""

        if self._closed:
            return
        self._closed = True
        self._set_state(SseState.ABORTED)
        task = self._task
        if task is not None and not task.done():
            task.cancel()

    def _set_state(self, state: SseState) -> None:
        if self._state.is_terminal:
            return
        self._state = state
        if state.is_terminal:
            CHART_FEED_SSE_STREAMS_FINISHED_TOTAL.labels(state=state.value).inc()

    def _deliver(self, message: Any) -> None:
        if self._closed:
            return
        try:
            self._on_data(message)
        except Exception:
            # Помилка споживача не має рвати стрім.
            logger.exception("[SSE] on_data callback failed (%s)", self.stream_id)


class SseStreamTransport:
    """StreamTransport поверх chunked HTTP відповіді `text/event-stream`."""

    def __init__(
        self,
        endpoint_url: str,
        *,
        session: aiohttp.ClientSession | None = None,
        connect_timeout_s: float = 10.0,
        headers: dict[str, str] | None = None,
    ) -> None:
        self._endpoint_url = endpoint_url
        self._session = session
        self._owns_session = session is None
        self._connect_timeout_s = connect_timeout_s
        self._headers = {"Accept": "text/event-stream", **(headers or {})}
        self._ids = itertools.count(1)
        self._active: dict[str, SseSubscription] = {}

    @property
    def active_count(self) -> int:
        return len(self._active)

    def subscribe(
        self, stream_type: StreamType, payload: dict[str, Any], on_data: OnData
    ) -> SseSubscription:
        loop = asyncio.get_running_loop()
        handle = SseSubscription(f"stream_{next(self._ids)}", stream_type, on_data)
        handle._task = loop.create_task(
            self._run(handle, payload), name=f"sse:{handle.stream_id}"
        )
        self._active[handle.stream_id] = handle
        CHART_FEED_SSE_ACTIVE_STREAMS.set(len(self._active))
        logger.debug("[SSE] Subscribe %s type=%s", handle.stream_id, stream_type)
        return handle

    async def aclose(self) -> None:
        handles = list(self._active.values())
        for handle in handles:
            handle.unsubscribe()
        tasks = [h.task for h in handles if h.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def _run(self, handle: SseSubscription, payload: dict[str, Any]) -> None:
        decoder = SseFrameDecoder()
        body = {"streamType": handle.stream_type, "payload": payload}
        timeout = aiohttp.ClientTimeout(total=None, sock_connect=self._connect_timeout_s)
        try:
            session = self._get_session()
            async with session.post(
                self._endpoint_url, json=body, headers=self._headers, timeout=timeout
            ) as resp:
                if not 200 <= resp.status < 300:
                    text = await resp.text()
                    logger.error(
                        "[SSE] Failed to connect: HTTP %s %s",
                        resp.status,
                        text[:200],
                    )
                    handle._set_state(SseState.ERRORED)
                    return

                handle._set_state(SseState.STREAMING)
                async for chunk in resp.content.iter_any():
                    for message in decoder.feed(chunk):
                        handle._deliver(message)
                    if decoder.subscription_id is not None:
                        handle.subscription_id = decoder.subscription_id
                    if handle.closed:
                        return
                for message in decoder.flush():
                    handle._deliver(message)
                handle._set_state(SseState.CLOSED)
                logger.debug("[SSE] Stream %s closed by server", handle.stream_id)
        except asyncio.CancelledError:
            handle._set_state(SseState.ABORTED)
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            if handle.closed:
                handle._set_state(SseState.ABORTED)
            else:
                logger.error("[SSE] Connection error (%s): %s", handle.stream_id, exc)
                handle._set_state(SseState.ERRORED)
        finally:
            self._active.pop(handle.stream_id, None)
            CHART_FEED_SSE_ACTIVE_STREAMS.set(len(self._active))


__all__ = ["SseStreamTransport", "SseSubscription"]
