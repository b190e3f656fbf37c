from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from django.db import models

MONEY_QUANT = Decimal("0.01")
QUANTITY_QUANT = Decimal("0.001")
ZERO = Decimal("0")


def to_money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def to_quantity(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(QUANTITY_QUANT, rounding=ROUND_HALF_UP)


class DiscountType(models.TextChoices):
    PERCENT = "percent", "Percent"
    AMOUNT = "amount", "Amount"


@dataclass(frozen=True)
class DiscountSpec:
    type: str = DiscountType.AMOUNT
    value: Decimal = ZERO

    def __post_init__(self):
        if self.type not in DiscountType.values:
            raise ValueError(f"Unknown discount type '{self.type}'.")


def compute_discount(base, spec: DiscountSpec | None) -> Decimal:
    """Return the discount amount for ``base``.

    Percent discounts are taken from ``base``; amount discounts are used as-is.
    The result is always within ``[0, base]`` and rounded half-up to cents.
    """
    base = to_money(base)
    if spec is None or base <= 0:
        return ZERO.quantize(MONEY_QUANT)

    value = Decimal(str(spec.value or 0))
    if value <= 0:
        return ZERO.quantize(MONEY_QUANT)

    if spec.type == DiscountType.PERCENT:
        amount = base * value / Decimal("100")
    else:
        amount = value

    return to_money(min(max(amount, ZERO), base))
