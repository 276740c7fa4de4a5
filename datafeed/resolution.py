"""Мапінг резолюцій віджета → period для OHLCV API."""

from __future__ import annotations

SUPPORTED_RESOLUTIONS: list[str] = [
    "1s",
    "5s",
    "15s",
    "30s",
    "1",
    "5",
    "15",
    "30",
    "60",
    "240",
    "1D",
    "1W",
    "1M",
]

INTRADAY_MULTIPLIERS: list[str] = ["1", "5", "15", "30", "60", "240"]
SECONDS_MULTIPLIERS: list[str] = ["1", "5", "15", "30"]
DAILY_MULTIPLIERS: list[str] = ["1"]

_RESOLUTION_TO_PERIOD: dict[str, str] = {
    "1S": "1s",
    "1s": "1s",
    "5S": "5s",
    "5s": "5s",
    "15S": "15s",
    "15s": "15s",
    "30S": "30s",
    "30s": "30s",
    "1": "1m",
    "1m": "1m",
    "5": "5m",
    "5m": "5m",
    "15": "15m",
    "15m": "15m",
    "30": "30m",
    "30m": "30m",
    "60": "1h",
    "1h": "1h",
    "240": "4h",
    "4h": "4h",
    "1D": "1d",
    "1d": "1d",
    "1W": "1w",
    "1w": "1w",
    "1M": "1M",
    "1month": "1M",
}


def normalize_resolution(resolution: str) -> str:
    """Повертає API-period для резолюції віджета; невідоме — без змін.

    `1M` (місяць) і `1m` (хвилина) розрізняються регістром, тому lower()
    тут не застосовуємо.
    """

    return _RESOLUTION_TO_PERIOD.get(str(resolution), str(resolution))


__all__ = [
    "SUPPORTED_RESOLUTIONS",
    "INTRADAY_MULTIPLIERS",
    "SECONDS_MULTIPLIERS",
    "DAILY_MULTIPLIERS",
    "normalize_resolution",
]
