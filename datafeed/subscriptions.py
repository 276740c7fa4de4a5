"""Менеджер live-підписок віджета + gap-bridge між історією та стрімом.

Шлях: ``datafeed/subscriptions.py``

Правила:
    • одна підписка на listener id; той самий asset key — no-op, доки стрім живий;
    • заміна asset key спершу закриває старий хендл, потім відкриває новий;
    • кожна підписка має generation; тік доставляється лише якщо generation
      досі актуальний (фільтр "запізнілих" тіків після unsubscribe);
    • на першому тіку після (пере)підписки, якщо є кешований last bar і тік
      новіший, спершу емітиться синтетичний bridge-бар.

Кожен бар (bridge чи реальний) перед `on_tick` проходить через metric
transform з *поточними* налаштуваннями, а канонічна форма записується як
last bar під поточний CacheKey.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from prometheus_client import Counter, Gauge

from core.contracts.chart_feed import OhlcvBar
from datafeed.bar_cache import BarCache, CacheKey, build_cache_key
from datafeed.metric_transform import (
    ChartSettings,
    apply_metric,
    normalize_bar,
    normalize_time_ms,
)
from streaming.transport import StreamHandle, StreamTransport

logger = logging.getLogger("chart_datafeed.subscriptions")

CHART_FEED_ACTIVE_SUBSCRIPTIONS = Gauge(
    "chart_feed_active_subscriptions",
    "Кількість активних live-підписок віджета",
)
CHART_FEED_TICKS_TOTAL = Counter(
    "chart_feed_ticks_total",
    "Кількість live-тіків за результатом обробки",
    labelnames=("outcome",),
)

TickCallback = Callable[[OhlcvBar], None]
SettingsProvider = Callable[[], ChartSettings]


@dataclass(slots=True)
class Subscription:
    listener_id: str
    asset_key: str
    cache_key: CacheKey
    generation: int
    handle: StreamHandle | None = None
    first_tick_received: bool = field(default=False)


def build_gap_bridge(
    last_bar: Mapping[str, Any] | None, tick: OhlcvBar
) -> OhlcvBar | None:
    """Синтетичний бар між кешованим last bar і першим live-тіком.

    Час — середина проміжку в одиницях часу тіку. Якщо між барами немає
    жодного цілого моменту (або тік не новіший), bridge не потрібен.
    """

    if not last_bar:
        return None
    last_time = last_bar.get("time")
    last_close = last_bar.get("close")
    if not last_time or last_close is None:
        return None

    last_ms = normalize_time_ms(last_time)
    tick_time = int(tick["time"])
    tick_ms = normalize_time_ms(tick_time)
    if tick_ms <= last_ms:
        return None

    unit_ms = 1 if tick_ms == tick_time else 1000
    last_in_unit = last_ms / unit_ms
    bridge_time = math.floor((last_in_unit + tick_time) / 2)
    if not last_in_unit < bridge_time < tick_time:
        return None

    start = float(last_close)
    end = tick["open"] or tick["close"] or start
    return {
        "time": bridge_time,
        "open": start,
        "high": max(start, end),
        "low": min(start, end),
        "close": end,
        "volume": 0.0,
    }


class SubscriptionManager:
    """Таблиця підписок одного Datafeed поверх StreamTransport.

    Не знає, який транспорт активний (SSE чи direct socket).
    """

    def __init__(
        self,
        transport: StreamTransport,
        bar_cache: BarCache,
        settings_provider: SettingsProvider,
    ) -> None:
        self._transport = transport
        self._bar_cache = bar_cache
        self._settings_provider = settings_provider
        self._subscriptions: dict[str, Subscription] = {}
        self._generation = 0

    @property
    def transport(self) -> StreamTransport:
        return self._transport

    @property
    def active_count(self) -> int:
        return len(self._subscriptions)

    def asset_key_for(self, listener_id: str) -> str | None:
        sub = self._subscriptions.get(listener_id)
        return sub.asset_key if sub is not None else None

    def subscribe(
        self,
        listener_id: str,
        asset_key: str,
        stream_payload: dict[str, Any],
        cache_key: CacheKey,
        on_tick: TickCallback,
    ) -> bool:
        """Відкриває (або замінює) підписку listener-а.

        Повертає True, якщо після виклику підписка з цим asset key активна.
        Помилка транспорту логуються і не виходить назовні.
        """

        existing = self._subscriptions.get(listener_id)
        if existing is not None and existing.asset_key == asset_key:
            if existing.handle is None or not existing.handle.closed:
                return True
            # Стрім уже завершився (сервер закрив/помилка): відкриваємо заново.
            logger.info(
                "[Subscriptions] Перепідписка %s: попередній стрім закрито", listener_id
            )
        if existing is not None:
            self.unsubscribe(listener_id)

        self._generation += 1
        sub = Subscription(
            listener_id=listener_id,
            asset_key=asset_key,
            cache_key=cache_key,
            generation=self._generation,
        )
        # Реєструємо до старту транспорту: тік може прийти синхронно.
        self._subscriptions[listener_id] = sub

        def _on_data(message: Any) -> None:
            self._handle_message(sub, message, on_tick)

        try:
            sub.handle = self._transport.subscribe("ohlcv", stream_payload, _on_data)
        except Exception:
            logger.exception(
                "[Subscriptions] Не вдалося підписатись listener=%s key=%s",
                listener_id,
                asset_key,
            )
            if self._subscriptions.get(listener_id) is sub:
                del self._subscriptions[listener_id]
            CHART_FEED_ACTIVE_SUBSCRIPTIONS.set(len(self._subscriptions))
            return False

        # on_tick всередині subscribe міг уже відписати listener-а.
        if self._subscriptions.get(listener_id) is not sub:
            sub.handle.unsubscribe()
            return False

        CHART_FEED_ACTIVE_SUBSCRIPTIONS.set(len(self._subscriptions))
        logger.debug(
            "[Subscriptions] +%s key=%s gen=%d", listener_id, asset_key, sub.generation
        )
        return True

    def unsubscribe(self, listener_id: str) -> bool:
        """Ідемпотентний: відсутня підписка — просто False."""

        sub = self._subscriptions.pop(listener_id, None)
        CHART_FEED_ACTIVE_SUBSCRIPTIONS.set(len(self._subscriptions))
        if sub is None:
            return False
        if sub.handle is not None:
            try:
                sub.handle.unsubscribe()
            except Exception:
                logger.exception("[Subscriptions] Помилка unsubscribe %s", listener_id)
        logger.debug("[Subscriptions] -%s gen=%d", listener_id, sub.generation)
        return True

    def unsubscribe_all(self) -> int:
        listener_ids = list(self._subscriptions)
        for listener_id in listener_ids:
            self.unsubscribe(listener_id)
        return len(listener_ids)

    # ── Доставка тіків ────────────────────────────────────────────────────

    def _is_current(self, sub: Subscription) -> bool:
        current = self._subscriptions.get(sub.listener_id)
        return current is sub and current.generation == sub.generation

    def _handle_message(
        self, sub: Subscription, message: Any, on_tick: TickCallback
    ) -> None:
        if not self._is_current(sub):
            CHART_FEED_TICKS_TOTAL.labels(outcome="stale").inc()
            return

        candle = normalize_bar(message)
        if not candle["time"]:
            CHART_FEED_TICKS_TOTAL.labels(outcome="no_time").inc()
            return

        if not sub.first_tick_received:
            sub.first_tick_received = True
            bridge = build_gap_bridge(self._bar_cache.get_last_bar(sub.cache_key), candle)
            if bridge is not None:
                self._emit(sub, bridge, on_tick, outcome="bridge")
                if not self._is_current(sub):
                    return

        self._emit(sub, candle, on_tick, outcome="delivered")

    def _emit(
        self,
        sub: Subscription,
        canonical: OhlcvBar,
        on_tick: TickCallback,
        *,
        outcome: str,
    ) -> None:
        settings = self._settings_provider()
        processed = apply_metric(canonical, settings)
        try:
            on_tick(processed)
        except Exception:
            logger.exception("[Subscriptions] on_tick failed (%s)", sub.listener_id)
        current_key = build_cache_key(
            sub.cache_key.asset_id, sub.cache_key.resolution, settings
        )
        self._bar_cache.set_last_bar(current_key, canonical)
        CHART_FEED_TICKS_TOTAL.labels(outcome=outcome).inc()


__all__ = [
    "Subscription",
    "SubscriptionManager",
    "TickCallback",
    "build_gap_bridge",
]
