"""Інкрементальний декодер SSE-фреймів для chunked HTTP відповіді.

Шлях: ``streaming/sse_decoder.py``

Формат:
    • фрейми розділені порожнім рядком (``\\n\\n``);
    • корисний фрейм — рядок ``data: <JSON>``;
    • handshake ``{event: "connected", subscriptionId}`` у дані не потрапляє.

Чанки можуть різати і JSON, і UTF-8 послідовність посередині — буфер
тримає хвіст до наступного чанка. Битий фрейм логуються та пропускається,
решта стріму обробляється далі.
"""

from __future__ import annotations

import codecs
import logging
from typing import Any

from prometheus_client import Counter

from core.contracts.stream import (
    SSE_DATA_PREFIX,
    SSE_FRAME_DELIMITER,
    is_handshake,
)
from core.serialization import json_loads

logger = logging.getLogger("chart_streaming.sse")

CHART_FEED_SSE_FRAMES_TOTAL = Counter(
    "chart_feed_sse_frames_total",
    "Кількість SSE-фреймів за результатом розбору",
    labelnames=("outcome",),
)


class SseFrameDecoder:
    """Перетворює послідовність байтових чанків у JSON-повідомлення."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.subscription_id: str | None = None
        self.handshake_received = False

    @property
    def buffered(self) -> str:
        return self._buffer

    def feed(self, chunk: bytes | str) -> list[Any]:
        """Додає чанк і повертає всі повідомлення з завершених фреймів."""

        if isinstance(chunk, (bytes, bytearray)):
            text = self._decoder.decode(bytes(chunk))
        else:
            text = chunk
        if not text:
            return []

        self._buffer = (self._buffer + text).replace("\r\n", "\n")
        frames = self._buffer.split(SSE_FRAME_DELIMITER)
        self._buffer = frames.pop()

        messages: list[Any] = []
        for frame in frames:
            message = self._parse_frame(frame)
            if message is not None:
                messages.append(message)
        return messages

    def flush(self) -> list[Any]:
        """Дочитує хвіст після кінця стріму (фрейм без фінального ``\\n\\n``)."""

        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        if not tail.strip():
            return []
        message = self._parse_frame(tail.strip("\n"))
        return [message] if message is not None else []

    def _parse_frame(self, frame: str) -> Any | None:
        data_lines = [
            line[len(SSE_DATA_PREFIX) :]
            for line in frame.split("\n")
            if line.startswith(SSE_DATA_PREFIX)
        ]
        if not data_lines:
            if frame.strip():
                CHART_FEED_SSE_FRAMES_TOTAL.labels(outcome="ignored").inc()
            return None

        raw = "\n".join(data_lines)
        try:
            message = json_loads(raw)
        except ValueError:
            CHART_FEED_SSE_FRAMES_TOTAL.labels(outcome="malformed").inc()
            logger.error("[SSE] Parse error, фрейм пропущено: %s", raw[:200])
            return None

        if is_handshake(message):
            self.handshake_received = True
            sub_id = message.get("subscriptionId")
            self.subscription_id = str(sub_id) if sub_id is not None else None
            CHART_FEED_SSE_FRAMES_TOTAL.labels(outcome="handshake").inc()
            return None

        CHART_FEED_SSE_FRAMES_TOTAL.labels(outcome="data").inc()
        return message


__all__ = ["SseFrameDecoder"]
