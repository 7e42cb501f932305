from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union


def to_cents(value: Union[Decimal, int, float, str]) -> int:
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def cents_to_decimal(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(Decimal("0.01"))


def cents_to_amount(cents: int) -> float:
    return cents / 100
