"""Кеш останніх барів + дедуплікація історичних запитів.

Шлях: ``datafeed/bar_cache.py``

Призначення:
    • тримає останній відомий (канонічний, price-space) бар на CacheKey —
      з нього SubscriptionManager будує gap-bridge;
    • склеює конкурентні price-запити з однаковим (CacheKey, from, to) в один
      мережевий виклик;
    • marketcap-запити ніколи не склеює: їхній результат залежить від supply,
      який міг щойно змінитись.

Модель конкурентності: один event loop, без потоків. Перевірка і запис у
таблицю pending відбуваються без `await` між ними, тому локи не потрібні.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from prometheus_client import Counter, Gauge

from config.config import PENDING_REQUEST_GRACE_S
from core.contracts.chart_feed import (
    CURRENCY_QUOTE,
    CURRENCY_USD,
    METRIC_PRICE,
    OhlcvBar,
    PeriodParams,
)
from datafeed.metric_transform import (
    ChartSettings,
    apply_metric_to_bars,
    normalize_bar,
    normalize_time_ms,
)

logger = logging.getLogger("chart_datafeed.bar_cache")

CHART_FEED_BAR_REQUESTS_TOTAL = Counter(
    "chart_feed_bar_requests_total",
    "Кількість історичних запитів барів за результатом",
    labelnames=("metric", "outcome"),
)
CHART_FEED_PENDING_REQUESTS = Gauge(
    "chart_feed_pending_requests",
    "Кількість price-запитів у таблиці pending",
)

BarsLoader = Callable[[], Awaitable[Sequence[Mapping[str, Any]]]]


@dataclass(frozen=True, slots=True)
class CacheKey:
    """Ідентичність кешованих даних: актив + резолюція + валюта + метрика."""

    asset_id: str
    resolution: str
    currency: str
    metric: str

    def __str__(self) -> str:
        return f"{self.asset_id}-{self.resolution}-{self.currency}-{self.metric}"


@dataclass(frozen=True, slots=True)
class RequestKey:
    """CacheKey + діапазон часу конкретного історичного запиту."""

    cache_key: CacheKey
    range_from: int
    range_to: int

    def __str__(self) -> str:
        return f"{self.cache_key}-{self.range_from}-{self.range_to}"


def build_cache_key(
    asset_id: str | None, resolution: str, settings: ChartSettings
) -> CacheKey:
    currency = CURRENCY_USD if settings.is_usd else CURRENCY_QUOTE
    return CacheKey(
        asset_id=asset_id or "unknown",
        resolution=resolution,
        currency=currency,
        metric=settings.metric,
    )


def build_request_key(
    asset_id: str | None,
    resolution: str,
    period_params: PeriodParams,
    settings: ChartSettings,
) -> RequestKey:
    return RequestKey(
        cache_key=build_cache_key(asset_id, resolution, settings),
        range_from=int(period_params.get("from", 0)),
        range_to=int(period_params.get("to", 0)),
    )


class BarCache:
    """Last-bar пам'ять та таблиця in-flight запитів одного Datafeed.

    Не глобальний singleton: кожен екземпляр Datafeed володіє своїм кешем.
    """

    def __init__(self, *, grace_s: float = PENDING_REQUEST_GRACE_S) -> None:
        self._grace_s = max(0.0, float(grace_s))
        self._last_bars: dict[CacheKey, OhlcvBar] = {}
        self._pending: dict[RequestKey, asyncio.Task[list[OhlcvBar]]] = {}
        self._cleanup_handles: dict[RequestKey, asyncio.TimerHandle] = {}
        # Зростає на кожну інвалідацію; запит, що стартував до неї,
        # не пише свій last bar у кеш.
        self._generation = 0

    # ── Last bar ──────────────────────────────────────────────────────────

    def get_last_bar(self, key: CacheKey) -> OhlcvBar | None:
        return self._last_bars.get(key)

    def set_last_bar(self, key: CacheKey, bar: OhlcvBar) -> bool:
        """Записує бар, якщо він не старший за кешований (monotonic).

        Повертає True, якщо кеш оновлено.
        """

        cached = self._last_bars.get(key)
        if cached is not None and normalize_time_ms(bar["time"]) < normalize_time_ms(
            cached["time"]
        ):
            return False
        self._last_bars[key] = bar
        return True

    # ── Pending ───────────────────────────────────────────────────────────

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def has_pending(self, request_key: RequestKey) -> bool:
        return request_key in self._pending

    async def fetch(
        self,
        request_key: RequestKey,
        settings: ChartSettings,
        loader: BarsLoader,
    ) -> list[OhlcvBar]:
        """Повертає трансформовані бари для запиту, склеюючи price-дублікати.

        Помилка loader-а доходить до всіх, хто чекає той самий запит;
        pending-запис при цьому прибирається одразу.
        """

        metric = settings.metric
        if metric == METRIC_PRICE:
            pending = self._pending.get(request_key)
            if pending is not None:
                CHART_FEED_BAR_REQUESTS_TOTAL.labels(
                    metric=metric, outcome="dedup_hit"
                ).inc()
                logger.debug("[BarCache] Dedup hit %s", request_key)
                return await asyncio.shield(pending)
        else:
            self._purge_cache_key(request_key.cache_key)

        task = asyncio.ensure_future(
            self._load(request_key.cache_key, settings, loader, self._generation)
        )
        if metric == METRIC_PRICE:
            self._pending[request_key] = task
            CHART_FEED_PENDING_REQUESTS.set(len(self._pending))
            task.add_done_callback(
                lambda done, key=request_key: self._on_request_done(key, done)
            )
            return await asyncio.shield(task)
        return await task

    async def _load(
        self,
        cache_key: CacheKey,
        settings: ChartSettings,
        loader: BarsLoader,
        generation: int,
    ) -> list[OhlcvBar]:
        try:
            raw_bars = await loader()
        except Exception:
            CHART_FEED_BAR_REQUESTS_TOTAL.labels(
                metric=settings.metric, outcome="error"
            ).inc()
            raise

        canonical = sorted(
            (normalize_bar(raw) for raw in raw_bars or []),
            key=lambda bar: normalize_time_ms(bar["time"]),
        )
        if canonical and generation == self._generation:
            self.set_last_bar(cache_key, canonical[-1])

        CHART_FEED_BAR_REQUESTS_TOTAL.labels(
            metric=settings.metric, outcome="fetched"
        ).inc()
        return apply_metric_to_bars(canonical, settings)

    def _on_request_done(
        self, request_key: RequestKey, task: asyncio.Task[list[OhlcvBar]]
    ) -> None:
        if self._pending.get(request_key) is not task:
            return
        if task.cancelled() or task.exception() is not None:
            self._drop_pending(request_key, task)
            return
        # Тримаємо запис ще трохи: дублікати, що прийшли майже одночасно,
        # отримають уже готовий результат.
        loop = asyncio.get_running_loop()
        self._cleanup_handles[request_key] = loop.call_later(
            self._grace_s, self._drop_pending, request_key, task
        )

    def _drop_pending(
        self, request_key: RequestKey, task: asyncio.Task[list[OhlcvBar]]
    ) -> None:
        if self._pending.get(request_key) is task:
            del self._pending[request_key]
            CHART_FEED_PENDING_REQUESTS.set(len(self._pending))
        handle = self._cleanup_handles.pop(request_key, None)
        if handle is not None:
            handle.cancel()

    def _forget_request(self, request_key: RequestKey) -> None:
        self._pending.pop(request_key, None)
        handle = self._cleanup_handles.pop(request_key, None)
        if handle is not None:
            handle.cancel()

    def _purge_cache_key(self, cache_key: CacheKey) -> None:
        for request_key in [k for k in self._pending if k.cache_key == cache_key]:
            self._forget_request(request_key)
        self._last_bars.pop(cache_key, None)
        CHART_FEED_PENDING_REQUESTS.set(len(self._pending))

    # ── Invalidation ──────────────────────────────────────────────────────

    def invalidate(self, predicate: Callable[[CacheKey], bool]) -> int:
        """Видаляє last bars і pending-записи, чий CacheKey підходить.

        Повертає кількість видалених записів.
        """

        self._generation += 1
        stale_bars = [key for key in self._last_bars if predicate(key)]
        for key in stale_bars:
            del self._last_bars[key]

        stale_requests = [key for key in self._pending if predicate(key.cache_key)]
        for request_key in stale_requests:
            self._forget_request(request_key)
        CHART_FEED_PENDING_REQUESTS.set(len(self._pending))

        removed = len(stale_bars) + len(stale_requests)
        if removed:
            logger.debug(
                "[BarCache] Інвалідовано bars=%d requests=%d",
                len(stale_bars),
                len(stale_requests),
            )
        return removed

    def invalidate_asset(self, asset_id: str | None) -> int:
        target = asset_id or "unknown"
        return self.invalidate(lambda key: key.asset_id == target)

    def clear(self) -> None:
        self._generation += 1
        self._last_bars.clear()
        for handle in self._cleanup_handles.values():
            handle.cancel()
        self._cleanup_handles.clear()
        self._pending.clear()
        CHART_FEED_PENDING_REQUESTS.set(0)


__all__ = [
    "BarsLoader",
    "CacheKey",
    "RequestKey",
    "BarCache",
    "build_cache_key",
    "build_request_key",
]
