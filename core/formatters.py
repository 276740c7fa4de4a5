"""SSOT для форматування чисел у текстах маркерів та логах.

Цей модуль НЕ містить бізнес-логіки (supply, метрики, кольори маркерів).
Лише універсальні форматтери для читабельних рядків.

Принципи:
- без наукової нотації;
- контрольоване округлення (явні `min_digits`/`max_digits`);
- групування тисяч комою.
"""

from __future__ import annotations

# ── Imports ───────────────────────────────────────────────────────────────
import math
from decimal import ROUND_HALF_UP, Decimal
from typing import Final

# ── Helpers ───────────────────────────────────────────────────────────────

_DEFAULT_MAX_DIGITS: Final[int] = 4
# Скільки значущих цифр показуємо для цін < 1 (0.00001234 → 0.00001234).
_SMALL_VALUE_SIGNIFICANT: Final[int] = 4


def _to_decimal(value: float | Decimal) -> Decimal:
    # Використовуємо Decimal для стабільнішого форматування без scientific.
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _strip_trailing_zeros(text: str, *, keep: int = 0) -> str:
    if "." not in text:
        return text
    whole, frac = text.split(".", 1)
    frac = frac.rstrip("0")
    if len(frac) < keep:
        frac = frac.ljust(keep, "0")
    return f"{whole}.{frac}" if frac else whole


# ── Numbers ───────────────────────────────────────────────────────────────


def fmt_pure_number(
    value: float | Decimal,
    *,
    min_digits: int = 0,
    max_digits: int | None = None,
) -> str:
    """Форматує число для людського тексту (`1,234.5`, `0.00001234`).

    Якщо `max_digits` не задано:
    - для |value| >= 1 беремо до 4 знаків після коми;
    - для |value| < 1 зберігаємо 4 значущі цифри після лідируючих нулів.
    """

    try:
        as_float = float(value)
    except (TypeError, ValueError):
        return "-"
    if not math.isfinite(as_float):
        return "-"

    dec = _to_decimal(value)
    digits = max_digits
    if digits is None:
        abs_v = abs(as_float)
        if abs_v == 0 or abs_v >= 1:
            digits = _DEFAULT_MAX_DIGITS
        else:
            leading_zeros = -math.floor(math.log10(abs_v)) - 1
            digits = leading_zeros + _SMALL_VALUE_SIGNIFICANT
    digits = max(digits, min_digits)

    quant = Decimal(1).scaleb(-digits)
    rounded = dec.quantize(quant, rounding=ROUND_HALF_UP)
    text = f"{rounded:,.{digits}f}"
    return _strip_trailing_zeros(text, keep=min_digits)

