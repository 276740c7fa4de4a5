"""Тести трансформації барів price ↔ marketcap та вибору pricescale."""

from __future__ import annotations

import pytest

from datafeed.metric_transform import (
    ChartSettings,
    apply_metric,
    apply_metric_to_bars,
    effective_value,
    normalize_bar,
    normalize_time_ms,
    select_price_scale,
)
from datafeed.resolution import normalize_resolution

MCAP = ChartSettings(metric="marketcap", circulating_supply=1_000.0)


def test_normalize_bar_short_form() -> None:
    bar = normalize_bar({"t": 1_700_000_000, "o": 1, "h": 2, "l": 0.5, "c": 1.5, "v": 10})
    assert bar == {
        "time": 1_700_000_000,
        "open": 1.0,
        "high": 2.0,
        "low": 0.5,
        "close": 1.5,
        "volume": 10.0,
    }


def test_normalize_bar_canonical_form_kept() -> None:
    raw = {"time": 100, "open": 1, "high": 1, "low": 1, "close": 1, "volume": 3}
    assert normalize_bar(raw)["volume"] == 3.0


def test_normalize_bar_time_with_short_volume_prefers_short_fields() -> None:
    # `time` є, але `volume` відсутній, а `v` присутній → коротка форма.
    bar = normalize_bar({"time": 100, "t": 200, "o": 2, "c": 3, "v": 7})
    assert bar["time"] == 200
    assert bar["open"] == 2.0
    assert bar["volume"] == 7.0


def test_normalize_bar_degrades_garbage_to_zero() -> None:
    bar = normalize_bar({"t": "abc", "o": None, "c": float("nan")})
    assert bar["time"] == 0
    assert bar["open"] == 0.0
    assert bar["close"] == 0.0
    assert normalize_bar("not a bar")["time"] == 0


def test_price_metric_returns_bar_unchanged() -> None:
    raw = {"t": 1, "o": 1, "h": 2, "l": 0.5, "c": 1.5, "v": 10}
    assert apply_metric(raw, ChartSettings()) == normalize_bar(raw)


def test_marketcap_multiplies_ohlc_but_not_volume() -> None:
    bar = apply_metric({"t": 1, "o": 1, "h": 2, "l": 0.5, "c": 1.5, "v": 10}, MCAP)
    assert bar["open"] == pytest.approx(1_000.0)
    assert bar["high"] == pytest.approx(2_000.0)
    assert bar["low"] == pytest.approx(500.0)
    assert bar["close"] == pytest.approx(1_500.0)
    assert bar["volume"] == pytest.approx(10.0)


@pytest.mark.parametrize("supply", [0.0, -5.0])
def test_marketcap_without_supply_falls_back_to_price(supply: float) -> None:
    settings = ChartSettings(metric="marketcap", circulating_supply=supply)
    raw = {"t": 1, "o": 1, "h": 2, "l": 0.5, "c": 1.5, "v": 10}
    assert apply_metric(raw, settings) == normalize_bar(raw)


def test_apply_metric_to_bars_keeps_order() -> None:
    bars = apply_metric_to_bars([{"t": 2, "c": 1}, {"t": 1, "c": 2}], MCAP)
    assert [b["time"] for b in bars] == [2, 1]
    assert [b["close"] for b in bars] == [1_000.0, 2_000.0]


def test_effective_value() -> None:
    assert effective_value(2.0, MCAP) == 2_000.0
    assert effective_value(2.0, ChartSettings()) == 2.0
    assert effective_value(2.0, ChartSettings(metric="marketcap")) == 2.0


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (1.0, 100),
        (65_000.0, 100),
        (0.5, 100_000),
        (0.05, 1_000_000),
        (0.00001234, 1_000_000_000),
        (0.0, 100_000_000),
        (-3.0, 100_000_000),
        (1e-20, 100_000_000),
    ],
)
def test_select_price_scale_for_price(value: float, expected: int) -> None:
    assert select_price_scale(value, "price", False) == expected


def test_select_price_scale_marketcap_with_supply_is_coarse() -> None:
    assert select_price_scale(0.00001, "marketcap", True) == 100
    # Без supply: звичайна евристика.
    assert select_price_scale(0.00001, "marketcap", False) == 1_000_000_000


def test_normalize_time_ms_handles_both_units() -> None:
    assert normalize_time_ms(1_700_000_000) == 1_700_000_000_000
    assert normalize_time_ms(1_700_000_000_000) == 1_700_000_000_000


@pytest.mark.parametrize(
    ("resolution", "period"),
    [
        ("1S", "1s"),
        ("1", "1m"),
        ("60", "1h"),
        ("240", "4h"),
        ("1D", "1d"),
        ("1W", "1w"),
        ("1M", "1M"),
        ("1m", "1m"),
        ("3h", "3h"),
    ],
)
def test_normalize_resolution(resolution: str, period: str) -> None:
    assert normalize_resolution(resolution) == period
