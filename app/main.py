"""Точка входу chart-feed: SSE relay (server mode) на aiohttp.

Запуск: ``python -m app.main --port 8090``
"""

from __future__ import annotations

import argparse
import asyncio
import errno
import logging
import sys

from aiohttp import web
from prometheus_client import start_http_server

from api.stream_server import build_app
from app.settings import Settings, settings
from config.config import SERVER_CONFIG_API_PATH, STREAM_API_PATH
from utils.rich_console import configure_logging

logger = logging.getLogger("app.main")


def _is_address_in_use_error(exc: BaseException) -> bool:
    """Повертає True, якщо виняток означає "порт зайнятий"."""

    err = getattr(exc, "errno", None)
    if err in {errno.EADDRINUSE, 10048}:
        return True
    text = str(exc).lower()
    return (
        "address already in use" in text
        or "only one usage of each socket address" in text
    )


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="chart-feed SSE stream server")
    parser.add_argument("--host", type=str, default=None)
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument("--log-level", type=str, default=None)
    parser.add_argument(
        "--no-metrics",
        action="store_true",
        help="не запускати Prometheus exporter",
    )
    return parser.parse_args(argv)


async def serve(cfg: Settings, host: str, port: int) -> None:
    """Тримає relay-сервер до скасування таски."""

    app = build_app(cfg)
    runner = web.AppRunner(app)
    await runner.setup()
    try:
        site = web.TCPSite(runner, host, port, reuse_address=True)
        await site.start()
        logger.info(
            "[Stream API] Слухаю http://%s:%d (%s, %s)",
            host,
            port,
            STREAM_API_PATH,
            SERVER_CONFIG_API_PATH,
        )
        await asyncio.Event().wait()
    finally:
        await runner.cleanup()


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    configure_logging(args.log_level or settings.log_level)

    host = args.host or settings.host
    port = args.port or settings.port

    if not settings.has_api_key:
        logger.warning(
            "[Stream API] API_KEY не задано: /api/stream відповідатиме 500"
        )

    if settings.prom_http_port and not args.no_metrics:
        try:
            start_http_server(settings.prom_http_port)
            logger.info(
                "Prometheus-метрики доступні на порту %s.", settings.prom_http_port
            )
        except OSError as exc:
            logger.warning("Prometheus exporter не стартував: %s", exc)

    try:
        asyncio.run(serve(settings, host, port))
    except KeyboardInterrupt:
        logger.info("chart-feed зупинено користувачем")
        return 0
    except OSError as exc:
        if _is_address_in_use_error(exc):
            logger.error("Порт %s:%d зайнятий (змініть PORT або --port)", host, port)
            return 1
        raise
    return 0


if __name__ == "__main__":
    sys.exit(main())
