"""Перевірки форматування чисел для текстів маркерів."""

from decimal import Decimal

from core.formatters import fmt_pure_number


def test_large_numbers_grouped_with_comma() -> None:
    assert fmt_pure_number(1234567.891) == "1,234,567.891"
    assert fmt_pure_number(1500) == "1,500"


def test_small_numbers_keep_significant_digits_without_exponent() -> None:
    assert fmt_pure_number(0.00001234) == "0.00001234"
    assert fmt_pure_number(0.5) == "0.5"


def test_explicit_digits() -> None:
    assert fmt_pure_number(10, min_digits=2, max_digits=2) == "10.00"
    assert fmt_pure_number(Decimal("2.345"), max_digits=2) == "2.35"


def test_non_numbers_render_as_dash() -> None:
    assert fmt_pure_number(float("nan")) == "-"
    assert fmt_pure_number("abc") == "-"  # type: ignore[arg-type]
