"""Налаштування chart-feed (pydantic-settings + env-файл).

Шлях: ``app/settings.py``

Дефолти беремо з `config.config` як єдиного джерела правди; тут лише
ENV-перевизначення та їх нормалізація.
"""

from __future__ import annotations

import logging
from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.env import select_env_file
from config.config import (
    DEFAULT_HTTP_HOST,
    DEFAULT_HTTP_PORT,
    DEFAULT_REQUEST_TIMEOUT_S,
    DEFAULT_REST_URL,
    DEFAULT_STREAM_ENDPOINT_URL,
    DEFAULT_STREAM_MODE,
    DEFAULT_WS_URL,
    PROM_HTTP_PORT,
    STREAM_MODES,
    _FALSE_ENV_VALUES,
)

_PROJECT_ROOT = Path(__file__).resolve().parent.parent
logger = logging.getLogger("app.settings")
if not logger.handlers:
    logger.addHandler(logging.NullHandler())

_ENV_FILE = select_env_file(_PROJECT_ROOT)
load_dotenv(_ENV_FILE)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Ключ upstream API. Лише на сервері: у server mode клієнт його не бачить.
    api_key: str | None = None
    rest_url: str = DEFAULT_REST_URL
    ws_url: str = DEFAULT_WS_URL
    # JSON-мапа stream type → WS URL (напр. {"ohlcv": "wss://..."}).
    ws_url_map: dict[str, str] = Field(default_factory=dict)

    stream_mode: str = DEFAULT_STREAM_MODE
    stream_endpoint_url: str = DEFAULT_STREAM_ENDPOINT_URL
    request_timeout_s: float = DEFAULT_REQUEST_TIMEOUT_S

    host: str = DEFAULT_HTTP_HOST
    port: int = DEFAULT_HTTP_PORT
    log_level: str = "INFO"
    # 0 або порожнє значення вимикає exporter.
    prom_http_port: int | None = PROM_HTTP_PORT
    marks_cache_max_per_scope: int | None = None

    @field_validator("api_key", mode="before")
    @classmethod
    def _strip_api_key(cls, v):  # type: ignore[no-untyped-def]
        if v is None:
            return None
        value = str(v).strip()
        return value or None

    @field_validator("rest_url", "ws_url", "stream_endpoint_url", mode="before")
    @classmethod
    def _normalize_url(cls, v):  # type: ignore[no-untyped-def]
        if v is None:
            return v
        return str(v).strip().rstrip("/")

    @field_validator("stream_mode", mode="before")
    @classmethod
    def _normalize_stream_mode(cls, v):  # type: ignore[no-untyped-def]
        if v is None:
            return DEFAULT_STREAM_MODE
        value = str(v).strip().lower() or DEFAULT_STREAM_MODE
        if value not in STREAM_MODES:
            raise ValueError(
                f"stream_mode має бути одним із {sorted(STREAM_MODES)}, отримано {v!r}"
            )
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, v):  # type: ignore[no-untyped-def]
        value = str(v or "").strip().upper()
        return value or "INFO"

    @field_validator("prom_http_port", "marks_cache_max_per_scope", mode="before")
    @classmethod
    def _optional_positive_int(cls, v):  # type: ignore[no-untyped-def]
        if v is None:
            return None
        if isinstance(v, str):
            text = v.strip().lower()
            if not text or text in _FALSE_ENV_VALUES:
                return None
            v = text
        value = int(v)
        return value if value > 0 else None

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key)


settings = Settings()  # буде валідовано під час імпорту


__all__ = ["Settings", "settings"]
