"""Збирання Datafeed з `Settings`: REST-клієнт + стрім-транспорт + ліміти.

Шлях: ``datafeed/factory.py``
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import aiohttp

from datafeed.datafeed import BaseAsset, Datafeed
from datafeed.history_api import RestMarketDataClient
from streaming.factory import build_stream_transport
from streaming.transport import StreamTransport

if TYPE_CHECKING:
    from app.settings import Settings

logger = logging.getLogger("chart_datafeed.factory")


def build_market_data_client(
    settings: Settings, *, session: aiohttp.ClientSession | None = None
) -> RestMarketDataClient:
    return RestMarketDataClient(
        base_url=settings.rest_url,
        api_key=settings.api_key,
        session=session,
        timeout_s=settings.request_timeout_s,
    )


def build_datafeed(
    settings: Settings,
    base_asset: BaseAsset,
    *,
    session: aiohttp.ClientSession | None = None,
    transport: StreamTransport | None = None,
    **options: Any,
) -> Datafeed:
    """Datafeed для одного активу з ENV-налаштувань.

    `transport` за замовчуванням обирається за `stream_mode`
    (див. `build_stream_transport`). `options` — решта аргументів
    `Datafeed` (is_usd, metric_mode, deployer, user_address, ...).
    """

    api = build_market_data_client(settings, session=session)
    if transport is None:
        transport = build_stream_transport(settings, session=session)
    logger.info(
        "[Datafeed] build %s mode=%s stream=%s",
        base_asset.symbol,
        base_asset.mode,
        settings.stream_mode,
    )
    return Datafeed(
        base_asset,
        api=api,
        transport=transport,
        marks_cache_max_per_scope=settings.marks_cache_max_per_scope,
        **options,
    )


__all__ = ["build_datafeed", "build_market_data_client"]
