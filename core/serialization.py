"""SSOT для серіалізації (JSON) та часу у chart-feed.

Мета: один набір функцій замість розкиданих `json.dumps/json.loads` та
ручних приведень типів у datafeed/streaming/api.

Принципи:
- без "магії" та прихованих перетворень;
- сумісно зі stdlib `json` (allow_nan=True);
- fallback у `str(obj)` тільки коли інакше не можна.
"""

from __future__ import annotations

# ── Imports ───────────────────────────────────────────────────────────────
import json
import math
from dataclasses import asdict, is_dataclass
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

# ── Time ──────────────────────────────────────────────────────────────────

# Межа, після якої epoch-значення вважаємо мілісекундами (≈ 2286 рік у секундах).
EPOCH_MS_THRESHOLD = 10_000_000_000


def dt_to_iso_z(dt: datetime) -> str:
    """Конвертує datetime у RFC3339 рядок із суфіксом `Z` (UTC).

    Naive datetime трактуємо як UTC.
    """

    if dt.tzinfo is None:
        dt_utc = dt.replace(tzinfo=UTC)
    else:
        dt_utc = dt.astimezone(UTC)
    return dt_utc.isoformat().replace("+00:00", "Z")


def iso_z_to_dt(value: str) -> datetime:
    """Парсить RFC3339 рядок у datetime (UTC).

    Приймає як суфікс `Z`, так і `+00:00`. Без tzinfo → UTC.
    """

    normalized = value.strip()
    if normalized.endswith("Z"):
        normalized = normalized[:-1] + "+00:00"

    dt = datetime.fromisoformat(normalized)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def epoch_to_ms(value: float | int) -> int:
    """Приводить epoch у секундах або мілісекундах до мілісекунд."""

    if value > EPOCH_MS_THRESHOLD:
        return int(value)
    return int(value * 1000)


def epoch_to_seconds(value: Any) -> int | None:
    """Приводить epoch (s/ms) або ISO-рядок до цілих секунд.

    Повертає None, якщо значення не розпізнано.
    """

    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if value > EPOCH_MS_THRESHOLD:
            return int(value // 1000)
        return int(value)
    if isinstance(value, str) and value.strip():
        numeric = safe_float(value, finite=True)
        if numeric is not None:
            return epoch_to_seconds(numeric)
        try:
            return int(iso_z_to_dt(value).timestamp())
        except ValueError:
            return None
    return None


# ── Coercion ──────────────────────────────────────────────────────────────


def safe_float(value: Any, *, finite: bool = False) -> float | None:
    """Безпечно приводить значення до float.

    Якщо `finite=True`, відкидає NaN/inf.
    """

    if value is None:
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if finite and not math.isfinite(result):
        return None
    return result


# ── JSON-friendly conversion ──────────────────────────────────────────────


def to_jsonable(obj: Any) -> Any:
    """Конвертує об'єкт у JSON-friendly значення (консервативно).

    - datetime -> RFC3339 з `Z` (UTC)
    - date -> ISO YYYY-MM-DD
    - Decimal -> str
    - Enum -> value
    - dataclass -> dict (через asdict) + рекурсія
    - колекції обробляються рекурсивно; крайній fallback: `str(obj)`.
    """

    if obj is None or isinstance(obj, (str, int, float, bool)):
        return obj

    if isinstance(obj, datetime):
        return dt_to_iso_z(obj)

    if isinstance(obj, date):
        return obj.isoformat()

    if isinstance(obj, Decimal):
        return str(obj)

    if isinstance(obj, Enum):
        return obj.value

    if is_dataclass(obj) and not isinstance(obj, type):
        return to_jsonable(asdict(obj))

    if isinstance(obj, dict):
        return {str(k): to_jsonable(v) for k, v in obj.items()}

    if isinstance(obj, (list, tuple, set)):
        return [to_jsonable(v) for v in obj]

    return str(obj)


# ── JSON I/O ──────────────────────────────────────────────────────────────


def json_dumps(obj: Any, *, pretty: bool = False) -> str:
    """Серіалізує об'єкт у компактний JSON-рядок.

    - ensure_ascii=False: строки без escape;
    - allow_nan=True: сумісно зі stdlib json;
    - default=to_jsonable: мінімальні перетворення для складних типів.

    Порядок ключів не сортуємо: SSE-фрейми мають відтворювати upstream як є.
    """

    if pretty:
        return json.dumps(
            obj,
            ensure_ascii=False,
            indent=2,
            allow_nan=True,
            default=to_jsonable,
        )

    return json.dumps(
        obj,
        ensure_ascii=False,
        allow_nan=True,
        separators=(",", ":"),
        default=to_jsonable,
    )


def json_loads(data: str | bytes | bytearray) -> Any:
    """Десеріалізує JSON у Python-об'єкт.

    Для bytes використовуємо UTF-8 з ``errors='replace'``.
    """

    if isinstance(data, (bytes, bytearray)):
        text = data.decode("utf-8", errors="replace")
    else:
        text = data
    return json.loads(text)
