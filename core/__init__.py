"""Ядро спільних (SSOT) утиліт chart-feed.

Цей пакет містить лише загальні, доменно-нейтральні будівельні блоки:
- серіалізацію/десеріалізацію та приведення часу;
- форматтери для текстів маркерів/логів;
- контракти (схеми payload) між шарами.

Логіка кешу, метрик і стрімів живе у `datafeed/` та `streaming/`.
"""

from __future__ import annotations

from . import formatters as formatters
from . import serialization as serialization

__all__ = [
    "formatters",
    "serialization",
]
