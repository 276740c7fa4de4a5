"""Трансформація барів між "price" та "marketcap" і вибір pricescale.

Шлях: ``datafeed/metric_transform.py``

Призначення:
    • нормалізує бар із короткої форми API (`t,o,h,l,c,v`) у канонічну;
    • перераховує OHLC у капіталізацію (× circulating supply);
    • підбирає pricescale для віджета, щоб і дуже дешеві, і дорогі токени
      лишались читабельними.

Усі функції чисті: без I/O, без винятків назовні. Якщо supply невідомий,
бар повертається без трансформації.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from config.config import (
    PRICE_SCALE_EPSILON,
    PRICE_SCALE_MARKETCAP,
    PRICE_SCALE_MAX,
    PRICE_SCALE_MIN,
)
from core.contracts.chart_feed import (
    METRIC_MARKETCAP,
    METRIC_PRICE,
    ChartMetricMode,
    OhlcvBar,
)
from core.serialization import epoch_to_ms, safe_float


@dataclass(frozen=True, slots=True)
class ChartSettings:
    """Знімок налаштувань графіка на момент запиту.

    Frozen: запит, що вже летить, не бачить пізніших змін (supply/metric).
    """

    is_usd: bool = False
    metric: ChartMetricMode = METRIC_PRICE
    circulating_supply: float = 0.0
    scale_divisor: float = 1.0

    @property
    def has_supply(self) -> bool:
        return self.circulating_supply > 0


def normalize_time_ms(value: float | int) -> int:
    """Час бару у мс незалежно від того, чи продюсер віддав s чи ms."""

    return epoch_to_ms(value)


def _num(value: Any) -> float:
    result = safe_float(value, finite=True)
    return result if result is not None else 0.0


def _time(value: Any) -> int:
    result = safe_float(value, finite=True)
    return int(result) if result is not None else 0


def _first_present(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None:
            return value
    return None


def normalize_bar(raw: Mapping[str, Any] | Any) -> OhlcvBar:
    """Приводить сирий бар до канонічного OhlcvBar.

    Правило вибору форми:
    - є `time` і (є `volume` або немає `v`) → бар уже канонічний;
    - інакше беремо короткі поля з відкатом на канонічні.
    Відсутні числа стають 0.0.
    """

    if not isinstance(raw, Mapping):
        raw = {}

    if raw.get("time") is not None and (
        raw.get("volume") is not None or raw.get("v") is None
    ):
        return {
            "time": _time(raw.get("time")),
            "open": _num(raw.get("open")),
            "high": _num(raw.get("high")),
            "low": _num(raw.get("low")),
            "close": _num(raw.get("close")),
            "volume": _num(_first_present(raw, "volume", "v")),
        }

    return {
        "time": _time(_first_present(raw, "t", "time")),
        "open": _num(_first_present(raw, "o", "open")),
        "high": _num(_first_present(raw, "h", "high")),
        "low": _num(_first_present(raw, "l", "low")),
        "close": _num(_first_present(raw, "c", "close")),
        "volume": _num(_first_present(raw, "v", "volume")),
    }


def apply_metric(raw: Mapping[str, Any] | Any, settings: ChartSettings) -> OhlcvBar:
    """Нормалізує бар і, для marketcap, множить OHLC на supply.

    Volume не чіпаємо: це обсяг у валюті торгів, не в капіталізації.
    """

    bar = normalize_bar(raw)
    if settings.metric != METRIC_MARKETCAP:
        return bar

    supply = settings.circulating_supply
    if not supply or supply <= 0:
        return bar

    return {
        "time": bar["time"],
        "open": bar["open"] * supply,
        "high": bar["high"] * supply,
        "low": bar["low"] * supply,
        "close": bar["close"] * supply,
        "volume": bar["volume"],
    }


def apply_metric_to_bars(
    bars: Iterable[Mapping[str, Any]], settings: ChartSettings
) -> list[OhlcvBar]:
    return [apply_metric(bar, settings) for bar in bars]


def effective_value(price: float, settings: ChartSettings) -> float:
    """Значення, яке реально побачить віджет: ціна або ціна × supply."""

    if settings.metric == METRIC_MARKETCAP and settings.has_supply:
        return price * settings.circulating_supply
    return price


def select_price_scale(
    value: float, metric: ChartMetricMode, has_supply: bool
) -> int:
    """Підбирає pricescale (10^N) для віджета.

    - marketcap з відомим supply → фіксований грубий масштаб;
    - price → за порядком величини: ≥1 → 100, інакше 10^(|m|+4),
      з обмеженням у [PRICE_SCALE_MIN, PRICE_SCALE_MAX].
    """

    if metric == METRIC_MARKETCAP and has_supply:
        return PRICE_SCALE_MARKETCAP

    safe_value = _num(value)
    magnitude = math.floor(math.log10(max(safe_value, PRICE_SCALE_EPSILON)))
    if magnitude >= 0:
        scale = PRICE_SCALE_MIN
    else:
        scale = 10 ** (abs(magnitude) + 4)
    return min(max(scale, PRICE_SCALE_MIN), PRICE_SCALE_MAX)


__all__ = [
    "ChartSettings",
    "normalize_time_ms",
    "normalize_bar",
    "apply_metric",
    "apply_metric_to_bars",
    "effective_value",
    "select_price_scale",
]
