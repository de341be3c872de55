from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable

from salonpos.domain.errors import InvalidPricingInput

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


@dataclass(frozen=True)
class LineAmounts:
    subtotal: Decimal
    vat_amount: Decimal
    total: Decimal


def to_decimal(value: object) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise InvalidPricingInput(f"Not a monetary value: {value!r}")
    try:
        # str() first so binary floats like 0.1 keep their printed value
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidPricingInput(f"Not a monetary value: {value!r}") from exc


def round2(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def compute_line(unit_price: object, quantity: int, vat_percentage: object) -> LineAmounts:
    """Price one line.

    VAT is rounded once, on the line, half-up to the cent; the total is the
    exact sum of the rounded subtotal and VAT.
    """
    price = to_decimal(unit_price)
    vat = to_decimal(vat_percentage)
    if not price.is_finite() or price < 0:
        raise InvalidPricingInput("Unit price must be >= 0.")
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidPricingInput("Quantity must be a whole number >= 1.")
    if not vat.is_finite() or vat < 0 or vat > 100:
        raise InvalidPricingInput("VAT percentage must be between 0 and 100.")

    subtotal = round2(price * quantity)
    vat_amount = round2(subtotal * vat / 100)
    return LineAmounts(subtotal=subtotal, vat_amount=vat_amount, total=subtotal + vat_amount)


def compute_order_totals(lines: Iterable) -> LineAmounts:
    """Sum each component across lines, never re-deriving VAT on the aggregate."""
    subtotal = ZERO
    vat_amount = ZERO
    total = ZERO
    for line in lines:
        subtotal += line.subtotal
        vat_amount += line.vat_amount
        total += line.total
    return LineAmounts(subtotal=subtotal, vat_amount=vat_amount, total=total)
