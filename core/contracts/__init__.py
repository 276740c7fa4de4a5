"""Контракти (schemas) між модулями chart-feed.

Тут зберігаються TypedDict-описання payload між шарами
(datafeed ↔ віджет, streaming ↔ стрім-ендпоінт).

Принцип: contract-first — спочатку описуємо payload, потім імплементуємо.
"""

from __future__ import annotations

from .chart_feed import (  # noqa: F401
    CURRENCY_QUOTE,
    CURRENCY_USD,
    METRIC_MARKETCAP,
    METRIC_PRICE,
    ChartMark,
    ChartMarkColor,
    ChartMetricMode,
    DatafeedConfiguration,
    HistoryMeta,
    OhlcvBar,
    PeriodParams,
    RawOhlcvBar,
    StreamMessage,
    SymbolInfo,
    TradeRecord,
)
from .stream import (  # noqa: F401
    SSE_DATA_PREFIX,
    SSE_FRAME_DELIMITER,
    SSE_HANDSHAKE_EVENT,
    SSE_RESPONSE_HEADERS,
    STREAM_TYPES,
    StreamHandshake,
    StreamRequest,
    StreamType,
    encode_sse_frame,
    is_handshake,
)

__all__ = [
    # chart feed
    "ChartMetricMode",
    "METRIC_PRICE",
    "METRIC_MARKETCAP",
    "CURRENCY_USD",
    "CURRENCY_QUOTE",
    "OhlcvBar",
    "RawOhlcvBar",
    "PeriodParams",
    "HistoryMeta",
    "ChartMarkColor",
    "ChartMark",
    "TradeRecord",
    "DatafeedConfiguration",
    "SymbolInfo",
    "StreamMessage",
    # stream wire
    "StreamType",
    "STREAM_TYPES",
    "SSE_DATA_PREFIX",
    "SSE_FRAME_DELIMITER",
    "SSE_HANDSHAKE_EVENT",
    "SSE_RESPONSE_HEADERS",
    "StreamRequest",
    "StreamHandshake",
    "encode_sse_frame",
    "is_handshake",
]
