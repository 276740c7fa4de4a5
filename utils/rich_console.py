"""Спільний Rich Console та налаштування логування chart-feed.

Усі RichHandler-и пишуть в один Console (stderr), інакше рядки логів з
різних модулів перемішуються.
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

_RICH_CONSOLE: Console | None = None

# Логери пакетів, які налаштовуються разом.
CHART_FEED_LOGGERS: tuple[str, ...] = (
    "chart_datafeed",
    "chart_streaming",
    "chart_stream_api",
    "app",
)


def get_rich_console() -> Console:
    """Повертає singleton Console(stderr=True)."""

    global _RICH_CONSOLE
    if _RICH_CONSOLE is not None:
        return _RICH_CONSOLE

    _RICH_CONSOLE = Console(stderr=True, color_system="standard")
    return _RICH_CONSOLE


def configure_logging(level: str | int = "INFO", *, show_path: bool = False) -> None:
    """Вішає один RichHandler на кореневі логери chart-feed. Повторний виклик
    лише оновлює рівень."""

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    for name in CHART_FEED_LOGGERS:
        logger = logging.getLogger(name)
        logger.setLevel(level)
        if not any(isinstance(h, RichHandler) for h in logger.handlers):
            logger.addHandler(
                RichHandler(console=get_rich_console(), show_path=show_path)
            )
        logger.propagate = False

    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
    logging.getLogger("websockets").setLevel(logging.WARNING)


__all__ = ("get_rich_console", "configure_logging", "CHART_FEED_LOGGERS")
