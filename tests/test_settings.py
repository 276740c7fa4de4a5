"""Тести нормалізації Settings (ENV → pydantic-settings)."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from app.settings import Settings


def test_env_values_are_normalized(monkeypatch) -> None:
    monkeypatch.setenv("API_KEY", "  secret  ")
    monkeypatch.setenv("REST_URL", "https://rest.example/ ")
    monkeypatch.setenv("STREAM_MODE", "CLIENT")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("WS_URL_MAP", '{"ohlcv": "wss://ohlcv.example"}')

    cfg = Settings()

    assert cfg.api_key == "secret"
    assert cfg.has_api_key
    assert cfg.rest_url == "https://rest.example"
    assert cfg.stream_mode == "client"
    assert cfg.log_level == "DEBUG"
    assert cfg.ws_url_map == {"ohlcv": "wss://ohlcv.example"}


def test_blank_api_key_means_missing() -> None:
    cfg = Settings(api_key="   ")
    assert cfg.api_key is None
    assert not cfg.has_api_key


def test_unknown_stream_mode_is_rejected() -> None:
    with pytest.raises(ValidationError):
        Settings(stream_mode="carrier-pigeon")


@pytest.mark.parametrize("raw", ["0", "off", "false", "", "-1"])
def test_prom_port_can_be_disabled(monkeypatch, raw: str) -> None:
    monkeypatch.setenv("PROM_HTTP_PORT", raw)
    assert Settings().prom_http_port is None


def test_optional_ints_parse_positive_values(monkeypatch) -> None:
    monkeypatch.setenv("PROM_HTTP_PORT", "9200")
    monkeypatch.setenv("MARKS_CACHE_MAX_PER_SCOPE", "500")
    cfg = Settings()
    assert cfg.prom_http_port == 9200
    assert cfg.marks_cache_max_per_scope == 500
