"""Доступ до історії OHLCV та угод upstream REST API.

Шлях: ``datafeed/history_api.py``

Ендпоінти:
    • market OHLCV history — для пулів (pair mode, за адресою пулу);
    • token OHLCV history — для активів (за адресою токена);
    • token trades — угоди для маркерів графіка.

Усі методи повертають масив ``data`` з відповіді (або порожній список).
Мережеві та HTTP-помилки загортаються у ``MarketDataError``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import aiohttp
from prometheus_client import Counter, Histogram

from config.config import (
    DEFAULT_REQUEST_TIMEOUT_S,
    DEFAULT_REST_URL,
    MARKET_OHLCV_HISTORY_PATH,
    TOKEN_OHLCV_HISTORY_PATH,
    TOKEN_TRADES_PATH,
)
from core.serialization import json_loads

logger = logging.getLogger("chart_datafeed.history_api")

CHART_FEED_REST_REQUESTS_TOTAL = Counter(
    "chart_feed_rest_requests_total",
    "Кількість REST-запитів до upstream за ендпоінтом і результатом",
    labelnames=("endpoint", "outcome"),
)
CHART_FEED_REST_LATENCY_SECONDS = Histogram(
    "chart_feed_rest_latency_seconds",
    "Латентність REST-запитів до upstream",
    labelnames=("endpoint",),
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0),
)


class MarketDataError(Exception):
    """Піднімається, коли upstream REST не віддав валідну відповідь."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class MarketDataApi(Protocol):
    async def fetch_market_ohlcv_history(
        self, params: Mapping[str, Any]
    ) -> list[dict[str, Any]]:
        """Історія барів пулу (pair mode)."""
        raise NotImplementedError

    async def fetch_token_ohlcv_history(
        self, params: Mapping[str, Any]
    ) -> list[dict[str, Any]]:
        """Історія барів активу (asset mode)."""
        raise NotImplementedError

    async def fetch_token_trades(
        self, params: Mapping[str, Any]
    ) -> list[dict[str, Any]]:
        """Угоди активу/пулу з фільтром за відправниками."""
        raise NotImplementedError


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def build_query(params: Mapping[str, Any]) -> dict[str, str]:
    """Прибирає None і приводить значення до рядків query string."""

    return {key: _query_value(value) for key, value in params.items() if value is not None}


def extract_data(payload: Any) -> list[dict[str, Any]]:
    """Дістає ``data`` з відповіді; нестандартна форма → порожній список."""

    data = payload.get("data") if isinstance(payload, Mapping) else None
    if not isinstance(data, list):
        return []
    return [item for item in data if isinstance(item, dict)]


class RestMarketDataClient:
    """MarketDataApi на aiohttp з API-ключем у заголовку ``Authorization``."""

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_REST_URL,
        api_key: str | None = None,
        session: aiohttp.ClientSession | None = None,
        timeout_s: float = DEFAULT_REQUEST_TIMEOUT_S,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout_s)

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def timeout_s(self) -> float | None:
        return self._timeout.total

    async def fetch_market_ohlcv_history(
        self, params: Mapping[str, Any]
    ) -> list[dict[str, Any]]:
        return await self._get("market_ohlcv", MARKET_OHLCV_HISTORY_PATH, params)

    async def fetch_token_ohlcv_history(
        self, params: Mapping[str, Any]
    ) -> list[dict[str, Any]]:
        return await self._get("token_ohlcv", TOKEN_OHLCV_HISTORY_PATH, params)

    async def fetch_token_trades(
        self, params: Mapping[str, Any]
    ) -> list[dict[str, Any]]:
        return await self._get("token_trades", TOKEN_TRADES_PATH, params)

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def _get(
        self, endpoint: str, path: str, params: Mapping[str, Any]
    ) -> list[dict[str, Any]]:
        url = f"{self._base_url}{path}"
        headers = {"Authorization": self._api_key} if self._api_key else {}
        logger.debug("[REST] GET %s params=%s", url, dict(params))
        try:
            with CHART_FEED_REST_LATENCY_SECONDS.labels(endpoint=endpoint).time():
                async with self._get_session().get(
                    url,
                    params=build_query(params),
                    headers=headers,
                    timeout=self._timeout,
                ) as resp:
                    text = await resp.text()
                    if resp.status != 200:
                        raise MarketDataError(
                            f"HTTP {resp.status} для {path}: {text[:200]}",
                            status=resp.status,
                        )
        except MarketDataError:
            CHART_FEED_REST_REQUESTS_TOTAL.labels(endpoint=endpoint, outcome="http_error").inc()
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            CHART_FEED_REST_REQUESTS_TOTAL.labels(endpoint=endpoint, outcome="network_error").inc()
            raise MarketDataError(f"Запит {path} не вдався: {exc}") from exc

        try:
            payload = json_loads(text)
        except ValueError as exc:
            CHART_FEED_REST_REQUESTS_TOTAL.labels(endpoint=endpoint, outcome="bad_json").inc()
            raise MarketDataError(f"Некоректний JSON від {path}") from exc

        CHART_FEED_REST_REQUESTS_TOTAL.labels(endpoint=endpoint, outcome="ok").inc()
        return extract_data(payload)


__all__ = [
    "MarketDataApi",
    "MarketDataError",
    "RestMarketDataClient",
    "build_query",
    "extract_data",
]
