from datetime import date
from decimal import Decimal

import pytest

from money import cents_to_amount, cents_to_decimal, to_cents
from periods import DateRange, resolve_range, trailing_year


def test_resolve_range_accepts_dates_and_timestamps() -> None:
    assert resolve_range("2025-01-01", "2025-01-31T23:59:59.000Z") == DateRange(
        date(2025, 1, 1), date(2025, 1, 31)
    )
    assert resolve_range(None, "") == DateRange()


def test_resolve_range_rejects_bad_input() -> None:
    with pytest.raises(ValueError):
        resolve_range("2025-02-01", "2025-01-01")
    with pytest.raises(ValueError):
        resolve_range("yesterday", None)


def test_trailing_year_handles_leap_day() -> None:
    assert trailing_year(date(2024, 2, 29)) == DateRange(
        date(2023, 2, 28), date(2024, 2, 29)
    )
    assert trailing_year(date(2025, 6, 15)).start == date(2024, 6, 15)


def test_money_conversions_round_half_up() -> None:
    assert to_cents("12.345") == 1235
    assert to_cents(7) == 700
    assert cents_to_decimal(1999) == Decimal("19.99")
    assert str(cents_to_decimal(5)) == "0.05"
    assert cents_to_amount(1050) == 10.5
    with pytest.raises(ValueError):
        to_cents("ten")
