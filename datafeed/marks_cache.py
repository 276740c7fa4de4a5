"""Кеш маркерів угод (append-only) на скоуп (адреса активу, ланцюг).

Шлях: ``datafeed/marks_cache.py``

Правила:
    • маркер ідентифікується `id` (хеш транзакції) у межах скоупу;
    • вставлений маркер не перезаписується, дублікати `id` — no-op;
    • скоуп повністю скидається, коли змінюється фільтр атрибуції
      (deployer/user address) — наступний getMarks перечитає угоди.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from config.config import (
    MARK_COLOR_BUY,
    MARK_COLOR_SELL,
    MARK_LABEL_FONT_COLOR,
    MARK_MIN_SIZE,
)
from core.contracts.chart_feed import ChartMark
from core.formatters import fmt_pure_number
from core.serialization import epoch_to_seconds, safe_float

logger = logging.getLogger("chart_datafeed.marks")


def scope_key(address: str | None, chain_id: str) -> str:
    return f"{address}-{chain_id}"


class MarksCache:
    """Append-only мапа scope → {mark_id → ChartMark}.

    `max_marks_per_scope=None` — без обмеження (історична поведінка).
    Якщо ліміт задано, нові маркери понад нього відкидаються: старі
    ніколи не витісняються, щоб не порушувати незмінність вставлених.
    """

    def __init__(self, *, max_marks_per_scope: int | None = None) -> None:
        self._scopes: dict[str, dict[str, ChartMark]] = {}
        self._max_per_scope = max_marks_per_scope

    @property
    def max_marks_per_scope(self) -> int | None:
        return self._max_per_scope

    def merge(self, scope: str, marks: Iterable[ChartMark]) -> list[ChartMark]:
        """Додає лише нові `id`; повертає поточний повний набір скоупу."""

        bucket = self._scopes.setdefault(scope, {})
        dropped = 0
        for mark in marks:
            mark_id = str(mark["id"])
            if mark_id in bucket:
                continue
            if self._max_per_scope is not None and len(bucket) >= self._max_per_scope:
                dropped += 1
                continue
            bucket[mark_id] = mark
        if dropped:
            logger.warning(
                "[Marks] Скоуп %s досяг ліміту %d — відкинуто %d маркерів",
                scope,
                self._max_per_scope,
                dropped,
            )
        return list(bucket.values())

    def get(self, scope: str) -> list[ChartMark]:
        return list(self._scopes.get(scope, {}).values())

    def contains(self, scope: str, mark_id: str) -> bool:
        return mark_id in self._scopes.get(scope, {})

    def invalidate_scope(self, scope: str) -> bool:
        return self._scopes.pop(scope, None) is not None

    def clear(self) -> None:
        self._scopes.clear()

    def __len__(self) -> int:
        return sum(len(bucket) for bucket in self._scopes.values())


def build_trade_mark(
    trade: Mapping[str, Any], *, deployer: str | None = None
) -> ChartMark | None:
    """Будує маркер із запису угоди або None, якщо немає хешу чи часу.

    Лейбли: `DB/DS` — покупка/продаж деплоєра, `UB/US` — користувача.
    """

    mark_id = trade.get("hash")
    trade_time = epoch_to_seconds(trade.get("date"))
    if not mark_id or trade_time is None:
        return None

    sender = str(trade.get("sender") or "").lower()
    is_deployer = bool(deployer) and sender == str(deployer).lower()
    is_buy = str(trade.get("type") or "").lower() == "buy"

    if is_deployer:
        label = "DB" if is_buy else "DS"
    else:
        label = "UB" if is_buy else "US"

    amount_usd = safe_float(trade.get("tokenAmountUsd"), finite=True)
    token_amount = safe_float(trade.get("tokenAmount"), finite=True)
    price = safe_float(trade.get("tokenPrice"), finite=True)
    if price is None:
        price = amount_usd / token_amount if amount_usd and token_amount else 0.0

    amount_text = (
        fmt_pure_number(amount_usd, min_digits=2, max_digits=2) if amount_usd else "?"
    )
    price_text = fmt_pure_number(price) if price else "?"
    who = "Dev" if is_deployer else "User"
    action = "bought" if is_buy else "sold"

    return {
        "id": str(mark_id),
        "time": trade_time,
        "color": {
            "color": MARK_LABEL_FONT_COLOR,
            "background": MARK_COLOR_BUY if is_buy else MARK_COLOR_SELL,
        },
        "text": f"{who} {action} ${amount_text} at ${price_text} USD",
        "label": label,
        "labelFontColor": MARK_LABEL_FONT_COLOR,
        "minSize": MARK_MIN_SIZE,
    }


def build_trade_marks(
    trades: Iterable[Mapping[str, Any]], *, deployer: str | None = None
) -> list[ChartMark]:
    marks: list[ChartMark] = []
    for trade in trades:
        if not isinstance(trade, Mapping):
            continue
        mark = build_trade_mark(trade, deployer=deployer)
        if mark is not None:
            marks.append(mark)
    return marks


__all__ = [
    "MarksCache",
    "scope_key",
    "build_trade_mark",
    "build_trade_marks",
]
