"""Канонічні контракти chart datafeed (бари, маркери, метадані символу).

Призначення:
- SSOT для TypedDict, які віддаються charting-віджету через Datafeed;
- datafeed/streaming/api імпортують ці типи звідси.

Важливо:
- назви полів SymbolInfo/DatafeedConfiguration повторюють контракт віджета
  (snake_case як у TradingView datafeed-api), їх не перейменовуємо.
"""

from __future__ import annotations

from typing import Any, Literal, TypedDict

# ── Режими ─────────────────────────────────────────────────────────────────

ChartMetricMode = Literal["price", "marketcap"]
METRIC_PRICE: ChartMetricMode = "price"
METRIC_MARKETCAP: ChartMetricMode = "marketcap"

CURRENCY_USD = "usd"
CURRENCY_QUOTE = "quote"


# ── Бари ───────────────────────────────────────────────────────────────────


class OhlcvBar(TypedDict):
    """Один OHLCV-бар у форматі віджета.

    `time` у тих одиницях, які повернув продюсер (s або ms); порівняння
    виконуються лише після нормалізації.
    """

    time: int
    open: float
    high: float
    low: float
    close: float
    volume: float


class RawOhlcvBar(TypedDict, total=False):
    """Бар "як прийшов": коротка форма API або вже канонічна."""

    t: int
    o: float
    h: float
    l: float  # noqa: E741
    c: float
    v: float
    time: int
    open: float
    high: float
    low: float
    close: float
    volume: float


# Параметри історичного запиту від віджета (секунди). `from`: ключове слово,
# тому функціональна форма TypedDict.
PeriodParams = TypedDict(
    "PeriodParams",
    {"from": int, "to": int, "countBack": int, "firstDataRequest": bool},
    total=False,
)


class HistoryMeta(TypedDict):
    noData: bool


# ── Маркери ────────────────────────────────────────────────────────────────


class ChartMarkColor(TypedDict):
    color: str
    background: str


class ChartMark(TypedDict):
    """Маркер угоди на графіку; `id` — хеш транзакції."""

    id: str
    time: int
    color: ChartMarkColor
    text: str
    label: str
    labelFontColor: str
    minSize: int


class TradeRecord(TypedDict, total=False):
    """Угода з trades-ендпоінта (лише поля, які потрібні маркерам)."""

    hash: str
    date: int | str
    type: str
    tokenAmount: float
    tokenAmountUsd: float
    tokenPrice: float
    sender: str


# ── Метадані для віджета ───────────────────────────────────────────────────


class DatafeedConfiguration(TypedDict):
    supported_resolutions: list[str]
    supports_search: bool
    supports_group_request: bool
    supports_marks: bool
    supports_timescale_marks: bool
    supports_time: bool


class SymbolInfo(TypedDict, total=False):
    name: str
    description: str
    type: str
    session: str
    timezone: str
    ticker: str
    minmov: int
    pricescale: int
    format: str
    has_intraday: bool
    has_seconds: bool
    has_daily: bool
    has_weekly_and_monthly: bool
    intraday_multipliers: list[str]
    seconds_multipliers: list[str]
    daily_multipliers: list[str]
    supported_resolution: list[str]
    volume_precision: int
    data_status: str


# Довільний payload стріму (ohlcv-свічка, трейд тощо).
StreamMessage = dict[str, Any]


__all__ = [
    "ChartMetricMode",
    "METRIC_PRICE",
    "METRIC_MARKETCAP",
    "CURRENCY_USD",
    "CURRENCY_QUOTE",
    "OhlcvBar",
    "RawOhlcvBar",
    "PeriodParams",
    "HistoryMeta",
    "ChartMarkColor",
    "ChartMark",
    "TradeRecord",
    "DatafeedConfiguration",
    "SymbolInfo",
    "StreamMessage",
]
