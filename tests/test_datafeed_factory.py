"""Тести збирання Datafeed з Settings."""

from __future__ import annotations

from typing import Any

import pytest

from app.settings import Settings
from datafeed.datafeed import BaseAsset
from datafeed.factory import build_datafeed, build_market_data_client
from datafeed.history_api import RestMarketDataClient
from streaming.sse_transport import SseStreamTransport


class _FakeTransport:
    def subscribe(self, stream_type: str, payload: dict[str, Any], on_data: Any) -> Any:
        raise AssertionError("not expected")

    async def aclose(self) -> None:
        return None


ASSET = BaseAsset(chain_id="evm:1", asset="0xabc", symbol="PEPE", price_usd=0.01)


def test_market_data_client_uses_rest_settings() -> None:
    cfg = Settings(rest_url="https://rest.example/", api_key="secret", request_timeout_s=3.5)
    client = build_market_data_client(cfg)
    assert isinstance(client, RestMarketDataClient)
    assert client.base_url == "https://rest.example"
    assert client.timeout_s == 3.5


def test_datafeed_receives_marks_limit_and_given_transport() -> None:
    cfg = Settings(api_key="secret", marks_cache_max_per_scope=50)
    transport = _FakeTransport()
    feed = build_datafeed(cfg, ASSET, transport=transport, is_usd=True)

    assert feed.marks_cache.max_marks_per_scope == 50
    assert feed.settings.is_usd is True
    assert isinstance(feed.api, RestMarketDataClient)
    assert feed.base_asset is ASSET


def test_env_values_reach_the_datafeed(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("REQUEST_TIMEOUT_S", "7")
    monkeypatch.setenv("MARKS_CACHE_MAX_PER_SCOPE", "25")
    feed = build_datafeed(Settings(), ASSET, transport=_FakeTransport())

    assert feed.marks_cache.max_marks_per_scope == 25
    assert isinstance(feed.api, RestMarketDataClient)
    assert feed.api.timeout_s == 7.0


def test_default_transport_follows_stream_mode() -> None:
    cfg = Settings(
        stream_mode="server",
        stream_endpoint_url="http://relay:8090/api/stream",
        marks_cache_max_per_scope=None,
    )
    feed = build_datafeed(cfg, ASSET)
    assert feed.marks_cache.max_marks_per_scope is None
    assert isinstance(feed.subscriptions.transport, SseStreamTransport)
