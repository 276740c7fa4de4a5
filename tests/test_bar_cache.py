"""Тести BarCache: дедуплікація price-запитів, marketcap без reuse, last bar."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from datafeed.bar_cache import BarCache, build_cache_key, build_request_key
from datafeed.metric_transform import ChartSettings

PRICE = ChartSettings()
MCAP = ChartSettings(metric="marketcap", circulating_supply=10.0)
PERIOD = {"from": 1_000, "to": 2_000, "countBack": 300}


class _FakeLoader:
    def __init__(
        self,
        bars: list[dict[str, Any]] | None = None,
        *,
        delay: float = 0.01,
        error: Exception | None = None,
    ) -> None:
        self.bars = bars or []
        self.delay = delay
        self.error = error
        self.calls = 0

    async def __call__(self) -> list[dict[str, Any]]:
        self.calls += 1
        await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.bars)


def _bars() -> list[dict[str, Any]]:
    # Навмисно не відсортовано.
    return [
        {"t": 1_200, "o": 2, "h": 2, "l": 2, "c": 2.5, "v": 1},
        {"t": 1_100, "o": 1, "h": 1, "l": 1, "c": 1.5, "v": 1},
    ]


def test_cache_key_string_form() -> None:
    key = build_cache_key("0xabc", "1m", ChartSettings(is_usd=True))
    assert str(key) == "0xabc-1m-usd-price"
    rk = build_request_key(None, "1h", PERIOD, MCAP)
    assert str(rk) == "unknown-1h-quote-marketcap-1000-2000"


@pytest.mark.asyncio
async def test_concurrent_price_requests_are_deduplicated() -> None:
    cache = BarCache(grace_s=0.05)
    loader = _FakeLoader(_bars())
    rk = build_request_key("0xabc", "1m", PERIOD, PRICE)

    first, second = await asyncio.gather(
        cache.fetch(rk, PRICE, loader),
        cache.fetch(rk, PRICE, loader),
    )

    assert loader.calls == 1
    assert first == second
    assert [b["time"] for b in first] == [1_100, 1_200]


@pytest.mark.asyncio
async def test_pending_entry_lives_for_grace_window_then_disappears() -> None:
    cache = BarCache(grace_s=0.05)
    loader = _FakeLoader(_bars(), delay=0.0)
    rk = build_request_key("0xabc", "1m", PERIOD, PRICE)

    await cache.fetch(rk, PRICE, loader)
    assert cache.has_pending(rk)

    # Дублікат у межах вікна отримує готовий результат без нового запиту.
    await cache.fetch(rk, PRICE, loader)
    assert loader.calls == 1

    await asyncio.sleep(0.1)
    assert cache.pending_count == 0
    await cache.fetch(rk, PRICE, loader)
    assert loader.calls == 2


@pytest.mark.asyncio
async def test_marketcap_requests_are_never_reused() -> None:
    cache = BarCache()
    loader = _FakeLoader(_bars())
    rk = build_request_key("0xabc", "1m", PERIOD, MCAP)

    first, second = await asyncio.gather(
        cache.fetch(rk, MCAP, loader),
        cache.fetch(rk, MCAP, loader),
    )

    assert loader.calls == 2
    assert cache.pending_count == 0
    assert first[-1]["close"] == pytest.approx(25.0)
    assert second[-1]["close"] == pytest.approx(25.0)


@pytest.mark.asyncio
async def test_loader_error_reaches_every_awaiter_and_clears_pending() -> None:
    cache = BarCache()
    loader = _FakeLoader(error=RuntimeError("boom"))
    rk = build_request_key("0xabc", "1m", PERIOD, PRICE)

    results = await asyncio.gather(
        cache.fetch(rk, PRICE, loader),
        cache.fetch(rk, PRICE, loader),
        return_exceptions=True,
    )

    assert loader.calls == 1
    assert all(isinstance(r, RuntimeError) for r in results)
    assert cache.pending_count == 0

    # Наступний виклик іде заново, а не повторює стару помилку.
    loader.error = None
    loader.bars = _bars()
    bars = await cache.fetch(rk, PRICE, loader)
    assert loader.calls == 2
    assert len(bars) == 2


@pytest.mark.asyncio
async def test_fetch_stores_last_canonical_bar() -> None:
    cache = BarCache()
    rk = build_request_key("0xabc", "1m", PERIOD, MCAP)

    await cache.fetch(rk, MCAP, _FakeLoader(_bars()))

    last = cache.get_last_bar(rk.cache_key)
    assert last is not None
    assert last["time"] == 1_200
    # У кеші: price-space, не помножений на supply.
    assert last["close"] == pytest.approx(2.5)


def test_last_bar_is_monotonic() -> None:
    cache = BarCache()
    key = build_cache_key("0xabc", "1m", PRICE)
    t1, t2, t3 = 1_700_000_000, 1_700_000_060, 1_700_000_120

    assert cache.set_last_bar(key, {"time": t1, "open": 1, "high": 1, "low": 1, "close": 1, "volume": 0})
    assert cache.set_last_bar(key, {"time": t3, "open": 3, "high": 3, "low": 3, "close": 3, "volume": 0})
    assert not cache.set_last_bar(key, {"time": t2, "open": 2, "high": 2, "low": 2, "close": 2, "volume": 0})

    last = cache.get_last_bar(key)
    assert last is not None and last["time"] == t3


def test_last_bar_compares_mixed_time_units() -> None:
    cache = BarCache()
    key = build_cache_key("0xabc", "1m", PRICE)
    cache.set_last_bar(key, {"time": 1_700_000_120, "open": 1, "high": 1, "low": 1, "close": 1, "volume": 0})

    # 1_700_000_060_000 мс: раніше за 1_700_000_120 с.
    older_ms = {"time": 1_700_000_060_000, "open": 2, "high": 2, "low": 2, "close": 2, "volume": 0}
    assert not cache.set_last_bar(key, older_ms)


@pytest.mark.asyncio
async def test_invalidate_drops_entries_and_blocks_stale_last_bar_write() -> None:
    cache = BarCache()
    loader = _FakeLoader(_bars(), delay=0.05)
    rk = build_request_key("0xabc", "1m", PERIOD, PRICE)
    other = build_cache_key("0xdef", "1m", PRICE)
    cache.set_last_bar(other, {"time": 1, "open": 1, "high": 1, "low": 1, "close": 1, "volume": 0})

    task = asyncio.create_task(cache.fetch(rk, PRICE, loader))
    await asyncio.sleep(0.01)
    assert cache.has_pending(rk)

    removed = cache.invalidate_asset("0xabc")
    assert removed == 1
    assert not cache.has_pending(rk)

    await task
    # Запит стартував до інвалідації: його last bar не потрапляє в кеш.
    assert cache.get_last_bar(rk.cache_key) is None
    assert cache.get_last_bar(other) is not None


def test_clear_resets_everything() -> None:
    cache = BarCache()
    key = build_cache_key("0xabc", "1m", PRICE)
    cache.set_last_bar(key, {"time": 1, "open": 1, "high": 1, "low": 1, "close": 1, "volume": 0})
    cache.clear()
    assert cache.get_last_bar(key) is None
    assert cache.pending_count == 0
