"""Тести SubscriptionManager: gap-bridge, generation guard, заміна підписки."""

from __future__ import annotations

from typing import Any

import pytest

from datafeed.bar_cache import BarCache, build_cache_key
from datafeed.metric_transform import ChartSettings
from datafeed.subscriptions import SubscriptionManager, build_gap_bridge


class _FakeHandle:
    def __init__(self, on_data: Any) -> None:
        self.on_data = on_data
        self.closed = False
        self.unsubscribe_calls = 0

    def unsubscribe(self) -> None:
        self.unsubscribe_calls += 1
        self.closed = True


class _FakeTransport:
    """Транспорт, що вміє "доставити" тік навіть після unsubscribe
    (імітує вже буферизовані повідомлення)."""

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.handles: list[_FakeHandle] = []
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def subscribe(self, stream_type: str, payload: dict[str, Any], on_data: Any) -> _FakeHandle:
        if self.fail:
            raise ConnectionError("upstream down")
        self.calls.append((stream_type, payload))
        handle = _FakeHandle(on_data)
        self.handles.append(handle)
        return handle

    def push(self, message: Any, index: int = -1) -> None:
        self.handles[index].on_data(message)

    async def aclose(self) -> None:
        return None


class _SettingsBox:
    def __init__(self, settings: ChartSettings) -> None:
        self.settings = settings

    def __call__(self) -> ChartSettings:
        return self.settings


def _make(settings: ChartSettings | None = None, *, fail: bool = False):
    transport = _FakeTransport(fail=fail)
    cache = BarCache()
    box = _SettingsBox(settings or ChartSettings())
    manager = SubscriptionManager(transport, cache, box)
    return manager, transport, cache, box


KEY = build_cache_key("0xabc", "1m", ChartSettings())


def test_gap_bridge_emitted_once_before_first_tick() -> None:
    manager, transport, cache, _ = _make()
    cache.set_last_bar(KEY, {"time": 100, "open": 5.0, "high": 5.0, "low": 5.0, "close": 5.0, "volume": 1.0})
    ticks: list[dict[str, Any]] = []

    assert manager.subscribe("L1", "k1", {"asset": "0xabc"}, KEY, ticks.append)
    transport.push({"t": 160, "o": 5.4, "h": 5.6, "l": 5.3, "c": 5.5, "v": 3})

    assert len(ticks) == 2
    bridge, real = ticks
    assert 100 < bridge["time"] < 160
    assert bridge["open"] == 5.0
    assert bridge["close"] == pytest.approx(5.4)
    assert bridge["high"] == pytest.approx(5.4)
    assert bridge["low"] == 5.0
    assert bridge["volume"] == 0.0
    assert real["time"] == 160

    transport.push({"t": 220, "o": 5.5, "h": 5.5, "l": 5.5, "c": 5.5, "v": 1})
    assert len(ticks) == 3
    assert ticks[-1]["time"] == 220


def test_no_bridge_without_cached_bar_or_for_older_tick() -> None:
    manager, transport, cache, _ = _make()
    ticks: list[dict[str, Any]] = []
    manager.subscribe("L1", "k1", {}, KEY, ticks.append)
    transport.push({"t": 160, "o": 1, "c": 1})
    assert [t["time"] for t in ticks] == [160]

    manager2, transport2, cache2, _ = _make()
    cache2.set_last_bar(KEY, {"time": 200, "open": 1, "high": 1, "low": 1, "close": 1, "volume": 0})
    ticks2: list[dict[str, Any]] = []
    manager2.subscribe("L1", "k1", {}, KEY, ticks2.append)
    transport2.push({"t": 200, "o": 1, "c": 1})
    assert [t["time"] for t in ticks2] == [200]


def test_bridge_time_uses_tick_unit() -> None:
    last = {"time": 1_700_000_000, "close": 1.0}
    tick = {"time": 1_700_000_060_000, "open": 2.0, "high": 2.0, "low": 2.0, "close": 2.0, "volume": 1.0}
    bridge = build_gap_bridge(last, tick)
    assert bridge is not None
    assert bridge["time"] == 1_700_000_030_000


def test_no_bridge_when_bars_are_adjacent() -> None:
    last = {"time": 100, "close": 1.0}
    tick = {"time": 101, "open": 2.0, "high": 2.0, "low": 2.0, "close": 2.0, "volume": 1.0}
    assert build_gap_bridge(last, tick) is None


def test_ticks_without_time_are_dropped() -> None:
    manager, transport, _, _ = _make()
    ticks: list[dict[str, Any]] = []
    manager.subscribe("L1", "k1", {}, KEY, ticks.append)
    transport.push({"o": 1, "c": 2})
    transport.push("garbage")
    assert ticks == []


def test_unsubscribe_silences_buffered_ticks() -> None:
    manager, transport, _, _ = _make()
    ticks: list[dict[str, Any]] = []
    manager.subscribe("L1", "k1", {}, KEY, ticks.append)
    transport.push({"t": 100, "c": 1})

    assert manager.unsubscribe("L1")
    assert transport.handles[0].closed

    transport.push({"t": 160, "c": 2})
    assert [t["time"] for t in ticks] == [100]

    # Повторний виклик безпечний.
    assert not manager.unsubscribe("L1")
    assert not manager.unsubscribe("never-subscribed")
    assert transport.handles[0].unsubscribe_calls == 1


def test_same_asset_key_is_noop_and_new_key_replaces_handle() -> None:
    manager, transport, _, _ = _make()
    ticks: list[dict[str, Any]] = []

    manager.subscribe("L1", "k1", {}, KEY, ticks.append)
    manager.subscribe("L1", "k1", {}, KEY, ticks.append)
    assert len(transport.handles) == 1

    manager.subscribe("L1", "k2", {}, KEY, ticks.append)
    assert len(transport.handles) == 2
    assert transport.handles[0].closed
    assert manager.asset_key_for("L1") == "k2"
    assert manager.active_count == 1

    transport.push({"t": 100, "c": 1}, index=0)
    assert ticks == []
    transport.push({"t": 100, "c": 1}, index=1)
    assert len(ticks) == 1


def test_same_asset_key_reopens_stream_that_already_ended() -> None:
    manager, transport, _, _ = _make()
    ticks: list[dict[str, Any]] = []

    assert manager.subscribe("L1", "k1", {"asset": "0xabc"}, KEY, ticks.append)
    # Сервер закрив стрім: хендл термінальний, але підписка ще в таблиці.
    transport.handles[0].closed = True

    assert manager.subscribe("L1", "k1", {"asset": "0xabc"}, KEY, ticks.append)
    assert len(transport.handles) == 2
    assert transport.handles[0].unsubscribe_calls == 1
    assert manager.active_count == 1

    transport.push({"t": 100, "c": 1}, index=0)
    assert ticks == []
    transport.push({"t": 100, "c": 1}, index=1)
    assert len(ticks) == 1


def test_subscribe_failure_is_contained() -> None:
    manager, _, _, _ = _make(fail=True)
    assert manager.subscribe("L1", "k1", {}, KEY, lambda bar: None) is False
    assert manager.active_count == 0
    assert manager.asset_key_for("L1") is None


def test_ticks_use_current_settings_and_store_canonical_last_bar() -> None:
    manager, transport, cache, box = _make()
    ticks: list[dict[str, Any]] = []
    manager.subscribe("L1", "k1", {}, KEY, ticks.append)

    box.settings = ChartSettings(metric="marketcap", circulating_supply=2.0)
    transport.push({"t": 100, "o": 1, "h": 1, "l": 1, "c": 3, "v": 5})

    assert ticks[0]["close"] == pytest.approx(6.0)
    assert ticks[0]["volume"] == pytest.approx(5.0)
    mcap_key = build_cache_key("0xabc", "1m", box.settings)
    last = cache.get_last_bar(mcap_key)
    assert last is not None and last["close"] == pytest.approx(3.0)


def test_on_tick_unsubscribing_itself_stops_delivery_after_bridge() -> None:
    manager, transport, cache, _ = _make()
    cache.set_last_bar(KEY, {"time": 100, "open": 5, "high": 5, "low": 5, "close": 5.0, "volume": 0})
    ticks: list[dict[str, Any]] = []

    def _on_tick(bar: dict[str, Any]) -> None:
        ticks.append(bar)
        manager.unsubscribe("L1")

    manager.subscribe("L1", "k1", {}, KEY, _on_tick)
    transport.push({"t": 160, "o": 5.4, "c": 5.4})
    assert len(ticks) == 1


def test_unsubscribe_all() -> None:
    manager, transport, _, _ = _make()
    manager.subscribe("L1", "k1", {}, KEY, lambda bar: None)
    manager.subscribe("L2", "k2", {}, KEY, lambda bar: None)
    assert manager.unsubscribe_all() == 2
    assert manager.active_count == 0
    assert all(h.closed for h in transport.handles)
