"""Центральне джерело констант chart-feed.

У модулі зібрані дефолти datafeed/streaming/api. Значення, які
перевизначаються через ENV, читаються у `app/settings.py`; тут лише
SSOT-дефолти та невеликі ENV-хелпери.
"""

from __future__ import annotations

import os
from typing import Final

__all__ = [
    "CHART_FEED_MODE",
    "DEFAULT_REST_URL",
    "DEFAULT_WS_URL",
    "DEFAULT_STREAM_ENDPOINT_URL",
    "DEFAULT_STREAM_MODE",
    "STREAM_MODES",
    "DEFAULT_HTTP_HOST",
    "DEFAULT_HTTP_PORT",
    "DEFAULT_REQUEST_TIMEOUT_S",
    "PENDING_REQUEST_GRACE_S",
    "MARKS_TRADES_LIMIT",
    "MARK_MIN_SIZE",
    "MARK_COLOR_BUY",
    "MARK_COLOR_SELL",
    "MARK_LABEL_FONT_COLOR",
    "PRICE_SCALE_MIN",
    "PRICE_SCALE_MAX",
    "PRICE_SCALE_MARKETCAP",
    "PRICE_SCALE_EPSILON",
    "WS_RECONNECT_INITIAL_S",
    "WS_RECONNECT_MAX_S",
    "WS_PING_INTERVAL_S",
    "MARKET_OHLCV_HISTORY_PATH",
    "TOKEN_OHLCV_HISTORY_PATH",
    "TOKEN_TRADES_PATH",
    "STREAM_API_PATH",
    "SERVER_CONFIG_API_PATH",
    "PROM_HTTP_PORT",
    "STREAM_DISCONNECT_POLL_S",
    "STREAM_RELAY_QUEUE_MAXSIZE",
    "_FALSE_ENV_VALUES",
]

_FALSE_ENV_VALUES = {"0", "false", "no", "off"}


def _env_run_mode(default: str = "prod") -> str:
    """Повертає режим запуску: `prod` або `local`.

    Пріоритети:
    - якщо `CHART_FEED_MODE` задано → беремо його;
    - інакше → `default`.
    """

    raw = os.getenv("CHART_FEED_MODE")
    if raw is None:
        return default
    value = str(raw).strip().lower()
    if value in {"local", "dev"}:
        return "local"
    if value in {"prod", "production"}:
        return "prod"
    return default


CHART_FEED_MODE: str = _env_run_mode("local")  # За замовчуванням локальний режим

# ──────────────────────────────────────────────────────────────────────────────
# UPSTREAM (REST / WSS)
# ──────────────────────────────────────────────────────────────────────────────

DEFAULT_REST_URL: Final[str] = "https://api.mobula.io"
DEFAULT_WS_URL: Final[str] = "wss://api.mobula.io"

MARKET_OHLCV_HISTORY_PATH: Final[str] = "/api/2/market/ohlcv-history"
TOKEN_OHLCV_HISTORY_PATH: Final[str] = "/api/2/token/ohlcv-history"
TOKEN_TRADES_PATH: Final[str] = "/api/2/token/trades"

# Таймаут REST-запиту (історія барів/угоди). Після таймауту pending-запис
# прибирається, наступний виклик іде заново.
DEFAULT_REQUEST_TIMEOUT_S: Final[float] = 20.0

# ──────────────────────────────────────────────────────────────────────────────
# STREAMING
# ──────────────────────────────────────────────────────────────────────────────

# server: SSE через власний /api/stream (ключ лишається на сервері);
# client: прямий WS до upstream.
STREAM_MODES: Final[frozenset[str]] = frozenset({"server", "client"})
DEFAULT_STREAM_MODE: Final[str] = "server"

STREAM_API_PATH: Final[str] = "/api/stream"
SERVER_CONFIG_API_PATH: Final[str] = "/api/server-config"

DEFAULT_HTTP_HOST: Final[str] = "127.0.0.1" if CHART_FEED_MODE == "local" else "0.0.0.0"
DEFAULT_HTTP_PORT: Final[int] = 8090
DEFAULT_STREAM_ENDPOINT_URL: Final[str] = (
    f"http://127.0.0.1:{DEFAULT_HTTP_PORT}{STREAM_API_PATH}"
)

WS_RECONNECT_INITIAL_S: Final[float] = 3.0
WS_RECONNECT_MAX_S: Final[float] = 30.0
WS_PING_INTERVAL_S: Final[float] = 20.0

# ──────────────────────────────────────────────────────────────────────────────
# DATAFEED
# ──────────────────────────────────────────────────────────────────────────────

# Вікно, протягом якого завершений price-запит ще віддається дублікатам.
PENDING_REQUEST_GRACE_S: Final[float] = 0.2

PRICE_SCALE_MIN: Final[int] = 100
PRICE_SCALE_MAX: Final[int] = 10**16
PRICE_SCALE_MARKETCAP: Final[int] = 100
PRICE_SCALE_EPSILON: Final[float] = 0.0001

# ──────────────────────────────────────────────────────────────────────────────
# MARKS
# ──────────────────────────────────────────────────────────────────────────────

MARKS_TRADES_LIMIT: Final[int] = 100
MARK_MIN_SIZE: Final[int] = 20
MARK_COLOR_BUY: Final[str] = "#18C722"
MARK_COLOR_SELL: Final[str] = "#f51818"
MARK_LABEL_FONT_COLOR: Final[str] = "#ffffff"

# ──────────────────────────────────────────────────────────────────────────────
# PROMETHEUS
# ──────────────────────────────────────────────────────────────────────────────

PROM_HTTP_PORT: Final[int] = 9108

# ──────────────────────────────────────────────────────────────────────────────
# STREAM API (SSE relay)
# ──────────────────────────────────────────────────────────────────────────────

# Як часто relay перевіряє, чи клієнт ще на зв'язку, коли upstream мовчить.
STREAM_DISCONNECT_POLL_S: Final[float] = 1.0

# Ліміт черги relay на один SSE-стрім (повільний читач → drop-oldest).
STREAM_RELAY_QUEUE_MAXSIZE: Final[int] = 1000
