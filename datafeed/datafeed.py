"""Datafeed-фасад для charting-віджета (pull історії + push live-барів + маркери).

Шлях: ``datafeed/datafeed.py``

Склад:
    • BarCache — last bar + дедуплікація price-запитів;
    • SubscriptionManager — live-підписки з gap-bridge;
    • MarksCache — маркери угод deployer/user;
    • MarketDataApi — REST-історія та угоди;
    • StreamTransport — SSE або direct socket (обирається ззовні).

Стан належить екземпляру: один Datafeed на один графік/актив.

Контракт віджета callback-based: `on_ready`/`resolve_symbol` відкладаються
через `loop.call_soon` (асинхронно, але в порядку викликів); помилки
`get_bars` ідуть лише в `on_error`, `get_marks` при помилці віддає `[]`.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from config.config import MARKS_TRADES_LIMIT, PENDING_REQUEST_GRACE_S
from core.contracts.chart_feed import (
    METRIC_MARKETCAP,
    METRIC_PRICE,
    ChartMark,
    ChartMetricMode,
    DatafeedConfiguration,
    HistoryMeta,
    OhlcvBar,
    PeriodParams,
    SymbolInfo,
)
from core.serialization import safe_float
from datafeed.bar_cache import BarCache, build_cache_key, build_request_key
from datafeed.history_api import MarketDataApi
from datafeed.marks_cache import MarksCache, build_trade_marks, scope_key
from datafeed.metric_transform import ChartSettings, effective_value, select_price_scale
from datafeed.resolution import (
    DAILY_MULTIPLIERS,
    INTRADAY_MULTIPLIERS,
    SECONDS_MULTIPLIERS,
    SUPPORTED_RESOLUTIONS,
    normalize_resolution,
)
from datafeed.subscriptions import SubscriptionManager, TickCallback
from streaming.transport import StreamTransport

logger = logging.getLogger("chart_datafeed")

HistoryCallback = Callable[[list[OhlcvBar], HistoryMeta], None]
ErrorCallback = Callable[[str], None]
MarksCallback = Callable[[list[ChartMark]], None]

_METRIC_MODES: frozenset[str] = frozenset({METRIC_PRICE, METRIC_MARKETCAP})
_SUFFIX_WITH_INDEX_RE = re.compile(r"_(MCAP|PRICE)_\d+$")
_SUFFIX_RE = re.compile(r"_(MCAP|PRICE)$")


@dataclass(slots=True)
class BaseAsset:
    """Актив на графіку: токен (asset mode) або пул (pair mode)."""

    chain_id: str
    asset: str | None = None
    address: str | None = None
    symbol: str | None = None
    price_usd: float | None = None
    is_pair: bool = False
    circulating_supply: float | None = None

    @property
    def asset_id(self) -> str | None:
        return self.address if self.is_pair else self.asset

    @property
    def mode(self) -> str:
        return "pair" if self.is_pair else "asset"


@dataclass(slots=True)
class MarksOptions:
    deployer: str | None = None
    user_address: str | None = None


def clean_symbol_name(symbol_name: str) -> str:
    """Прибирає query-частину та службові суфікси `_MCAP`/`_PRICE[_n]`."""

    name = str(symbol_name).split("?", 1)[0]
    name = _SUFFIX_WITH_INDEX_RE.sub("", name)
    return _SUFFIX_RE.sub("", name)


def build_history_params(
    asset: BaseAsset,
    period: str,
    period_params: PeriodParams,
    settings: ChartSettings,
) -> dict[str, Any]:
    """Query для OHLCV-history: `from/to` у мс, `amount` = countBack."""

    return {
        "address": asset.asset_id,
        "chainId": asset.chain_id,
        "from": int(period_params.get("from", 0)) * 1000,
        "to": int(period_params.get("to", 0)) * 1000,
        "amount": period_params.get("countBack"),
        "usd": settings.is_usd,
        "period": period,
    }


def build_stream_payload(
    asset: BaseAsset, period: str, settings: ChartSettings
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "period": period,
        "chainId": asset.chain_id,
        "usd": "true" if settings.is_usd else "false",
        "mode": asset.mode,
    }
    if asset.is_pair:
        payload["address"] = asset.address
    else:
        payload["asset"] = asset.asset
    return payload


class Datafeed:
    def __init__(
        self,
        base_asset: BaseAsset,
        *,
        api: MarketDataApi,
        transport: StreamTransport,
        is_usd: bool = False,
        metric_mode: ChartMetricMode = METRIC_PRICE,
        deployer: str | None = None,
        user_address: str | None = None,
        marks_cache_max_per_scope: int | None = None,
        pending_grace_s: float = PENDING_REQUEST_GRACE_S,
    ) -> None:
        if metric_mode not in _METRIC_MODES:
            raise ValueError(f"Невідомий metric mode: {metric_mode!r}")
        self._base_asset = base_asset
        self._api = api
        self._settings = ChartSettings(
            is_usd=is_usd,
            metric=metric_mode,
            circulating_supply=_supply(base_asset.circulating_supply),
            scale_divisor=1.0,
        )
        self._marks_options = MarksOptions(deployer=deployer, user_address=user_address)
        self._bar_cache = BarCache(grace_s=pending_grace_s)
        self._marks_cache = MarksCache(max_marks_per_scope=marks_cache_max_per_scope)
        self._subscriptions = SubscriptionManager(
            transport, self._bar_cache, lambda: self._settings
        )

    # ── Стан ──────────────────────────────────────────────────────────────

    @property
    def api(self) -> MarketDataApi:
        return self._api

    @property
    def settings(self) -> ChartSettings:
        return self._settings

    @property
    def base_asset(self) -> BaseAsset:
        return self._base_asset

    @property
    def marks_options(self) -> MarksOptions:
        return self._marks_options

    @property
    def bar_cache(self) -> BarCache:
        return self._bar_cache

    @property
    def marks_cache(self) -> MarksCache:
        return self._marks_cache

    @property
    def subscriptions(self) -> SubscriptionManager:
        return self._subscriptions

    # ── Керування ─────────────────────────────────────────────────────────

    def update_base_asset(self, new_asset: BaseAsset) -> None:
        """Змінює актив; при зміні ідентичності кеш старого активу скидається."""

        previous = self._base_asset
        self._base_asset = new_asset
        self._settings = dataclasses.replace(
            self._settings, circulating_supply=_supply(new_asset.circulating_supply)
        )
        if (previous.asset_id, previous.chain_id) != (new_asset.asset_id, new_asset.chain_id):
            dropped = self._bar_cache.invalidate_asset(previous.asset_id)
            closed = self._subscriptions.unsubscribe_all()
            logger.info(
                "[Datafeed] Актив %s → %s: скинуто %d записів кешу, %d підписок",
                previous.asset_id,
                new_asset.asset_id,
                dropped,
                closed,
            )

    def set_currency_mode(self, is_usd: bool) -> None:
        self._settings = dataclasses.replace(self._settings, is_usd=bool(is_usd))

    def set_metric_mode(self, mode: ChartMetricMode) -> None:
        """Перемикає price/marketcap: кеш активу скидається, підписки закриваються."""

        if mode not in _METRIC_MODES:
            raise ValueError(f"Невідомий metric mode: {mode!r}")
        self._settings = dataclasses.replace(self._settings, metric=mode)
        dropped = self._bar_cache.invalidate_asset(self._base_asset.asset_id)
        closed = self._subscriptions.unsubscribe_all()
        logger.info(
            "[Datafeed] Metric → %s: скинуто %d записів кешу, %d підписок",
            mode,
            dropped,
            closed,
        )

    def set_circulating_supply(self, supply: float | None) -> None:
        self._settings = dataclasses.replace(
            self._settings, circulating_supply=_supply(supply)
        )

    def update_marks_options(
        self, deployer: str | None = None, user_address: str | None = None
    ) -> None:
        """Новий фільтр атрибуції: маркери поточного скоупу перечитаються."""

        asset = self._base_asset
        self._marks_cache.invalidate_scope(scope_key(asset.asset_id, asset.chain_id))
        self._marks_options = MarksOptions(deployer=deployer, user_address=user_address)

    def close(self) -> None:
        closed = self._subscriptions.unsubscribe_all()
        self._bar_cache.clear()
        self._marks_cache.clear()
        logger.debug("[Datafeed] Закрито (%d підписок)", closed)

    # ── Контракт віджета ──────────────────────────────────────────────────

    def on_ready(
        self, callback: Callable[[DatafeedConfiguration], None]
    ) -> asyncio.Handle:
        config: DatafeedConfiguration = {
            "supported_resolutions": list(SUPPORTED_RESOLUTIONS),
            "supports_search": False,
            "supports_group_request": False,
            "supports_marks": True,
            "supports_timescale_marks": False,
            "supports_time": True,
        }
        return asyncio.get_running_loop().call_soon(callback, config)

    def search_symbols(
        self,
        user_input: str,
        exchange: str,
        symbol_type: str,
        on_result: Callable[[list[Any]], None],
    ) -> None:
        on_result([])

    def resolve_symbol(
        self, symbol_name: str, on_resolve: Callable[[SymbolInfo], None]
    ) -> asyncio.Handle:
        # Метадані рахуються в момент виконання: актуальні supply/metric.
        def _resolve() -> None:
            on_resolve(self.build_symbol_info(symbol_name))

        return asyncio.get_running_loop().call_soon(_resolve)

    def build_symbol_info(self, symbol_name: str) -> SymbolInfo:
        settings = dataclasses.replace(self._settings, scale_divisor=1.0)
        self._settings = settings
        is_mcap = settings.metric == METRIC_MARKETCAP

        price = self._base_asset.price_usd
        price = 1.0 if price is None else price
        pricescale = select_price_scale(
            effective_value(price, settings), settings.metric, settings.has_supply
        )
        clean_name = clean_symbol_name(symbol_name)

        return {
            "name": f"{clean_name} MC" if is_mcap else clean_name,
            "description": "MarketCap" if is_mcap else "Price in USD",
            "type": "crypto",
            "session": "24x7",
            "timezone": "Etc/UTC",
            "ticker": symbol_name,
            "minmov": 1,
            "pricescale": pricescale,
            "format": "volume" if is_mcap else "price",
            "has_intraday": True,
            "has_seconds": True,
            "has_daily": True,
            "has_weekly_and_monthly": True,
            "intraday_multipliers": list(INTRADAY_MULTIPLIERS),
            "seconds_multipliers": list(SECONDS_MULTIPLIERS),
            "daily_multipliers": list(DAILY_MULTIPLIERS),
            "supported_resolution": list(SUPPORTED_RESOLUTIONS),
            "volume_precision": 2,
            "data_status": "streaming",
        }

    async def get_bars(
        self,
        symbol_info: SymbolInfo | None,
        resolution: str,
        period_params: PeriodParams,
        on_result: HistoryCallback,
        on_error: ErrorCallback,
    ) -> list[OhlcvBar] | None:
        """Історичні бари за зростанням часу → `on_result(bars, {"noData"})`.

        Знімок налаштувань і активу фіксується на старті запиту.
        """

        asset = dataclasses.replace(self._base_asset)
        settings = self._settings
        period = normalize_resolution(resolution)
        request_key = build_request_key(asset.asset_id, period, period_params, settings)
        params = build_history_params(asset, period, period_params, settings)

        async def _loader() -> list[dict[str, Any]]:
            if asset.is_pair:
                return await self._api.fetch_market_ohlcv_history(params)
            return await self._api.fetch_token_ohlcv_history(params)

        try:
            bars = await self._bar_cache.fetch(request_key, settings, _loader)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("[Datafeed] getBars %s не вдався: %s", request_key, exc)
            on_error(str(exc) or "Failed to fetch bars")
            return None

        logger.debug("[Datafeed] getBars %s → %d барів", request_key, len(bars))
        on_result(bars, {"noData": not bars})
        return bars

    def subscribe_bars(
        self,
        symbol_info: SymbolInfo | None,
        resolution: str,
        on_tick: TickCallback,
        listener_guid: str,
        on_reset_cache_needed: Callable[[], None] | None = None,
    ) -> bool:
        asset = self._base_asset
        settings = self._settings
        period = normalize_resolution(resolution)
        cache_key = build_cache_key(asset.asset_id, period, settings)
        return self._subscriptions.subscribe(
            listener_guid,
            f"{cache_key}-{asset.mode}",
            build_stream_payload(asset, period, settings),
            cache_key,
            on_tick,
        )

    def unsubscribe_bars(self, listener_guid: str) -> None:
        self._subscriptions.unsubscribe(listener_guid)

    async def get_marks(
        self,
        symbol_info: SymbolInfo | None,
        from_: int,
        to: int,
        on_data: MarksCallback,
        resolution: str | None = None,
    ) -> list[ChartMark]:
        """Маркери угод deployer/user для поточного скоупу (з дедуплікацією)."""

        deployer = self._marks_options.deployer
        user_address = self._marks_options.user_address
        if not deployer and not user_address:
            on_data([])
            return []

        asset = self._base_asset
        senders: list[str] = []
        if deployer:
            senders.append(deployer)
        if user_address and user_address.lower() != (deployer or "").lower():
            senders.append(user_address)

        params = {
            "address": asset.asset_id or "",
            "blockchain": asset.chain_id,
            "transactionSenderAddresses": ",".join(senders),
            "limit": MARKS_TRADES_LIMIT,
            "mode": asset.mode,
            "formatted": True,
        }
        try:
            trades = await self._api.fetch_token_trades(params)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("[Datafeed] getMarks не вдався: %s", exc)
            on_data([])
            return []

        marks = self._marks_cache.merge(
            scope_key(asset.asset_id, asset.chain_id),
            build_trade_marks(trades, deployer=deployer),
        )
        on_data(marks)
        return marks


def _supply(value: Any) -> float:
    supply = safe_float(value, finite=True)
    return supply if supply is not None and supply > 0 else 0.0


__all__ = [
    "BaseAsset",
    "MarksOptions",
    "Datafeed",
    "clean_symbol_name",
    "build_history_params",
    "build_stream_payload",
]
