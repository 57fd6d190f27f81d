# Overview: Pure pricing arithmetic for sale line items.

"""
Pricing Calculator

All money is integer cents; discount percentages are Decimal. Nothing here
touches the database, so the same functions price a cart preview and the
committed sale.

Rounding: the discounted unit price (unit - unit * pct / 100) is rounded
half-up to the cent; the per-unit discount is whatever remains of the list
price. Line and sale totals are exact sums of rounded unit prices, so
total == subtotal - total_discount holds exactly.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from ..errors import InvariantViolation, ValidationError

HUNDRED = Decimal("100")
ONE_CENT = Decimal("1")


def parse_discount_percent(value) -> Decimal:
    """Normalize a discount percentage to Decimal in [0, 100]."""
    if value is None or value == "":
        return Decimal("0")
    if isinstance(value, bool):
        raise ValidationError("discount_percent must be a number")
    try:
        pct = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError("discount_percent must be a number")
    if not pct.is_finite():
        raise ValidationError("discount_percent must be a number")
    if pct < 0 or pct > HUNDRED:
        raise ValidationError("discount_percent must be between 0 and 100")
    return pct


def effective_price_cents(unit_price_cents: int, discount_percent=0) -> int:
    """unit - unit * pct / 100, rounded half-up to the cent."""
    if unit_price_cents < 0:
        raise ValidationError("price must be >= 0")
    pct = parse_discount_percent(discount_percent)
    unit = Decimal(unit_price_cents)
    effective = (unit - unit * pct / HUNDRED).quantize(ONE_CENT, rounding=ROUND_HALF_UP)
    return int(effective)


@dataclass(frozen=True)
class PricingLine:
    unit_price_cents: int
    cost_price_cents: int
    quantity: int
    discount_percent: Decimal = Decimal("0")


@dataclass(frozen=True)
class PricedLine:
    line: PricingLine
    effective_price_cents: int
    subtotal_cents: int
    discount_cents: int
    line_total_cents: int
    profit_cents: int


@dataclass(frozen=True)
class PricingSummary:
    lines: tuple[PricedLine, ...]
    subtotal_cents: int
    total_discount_cents: int
    total_cents: int
    profit_cents: int


def price_line(line: PricingLine) -> PricedLine:
    if line.quantity < 0:
        raise ValidationError("quantity must be >= 0")
    if line.cost_price_cents < 0:
        raise ValidationError("cost price must be >= 0")

    effective = effective_price_cents(line.unit_price_cents, line.discount_percent)
    subtotal = line.unit_price_cents * line.quantity
    total = effective * line.quantity
    return PricedLine(
        line=line,
        effective_price_cents=effective,
        subtotal_cents=subtotal,
        discount_cents=(line.unit_price_cents - effective) * line.quantity,
        line_total_cents=total,
        profit_cents=(effective - line.cost_price_cents) * line.quantity,
    )


def price_lines(lines) -> PricingSummary:
    """Price every line and aggregate subtotal, discount, total and profit."""
    priced = tuple(price_line(line) for line in lines)

    subtotal = sum(p.subtotal_cents for p in priced)
    total_discount = sum(p.discount_cents for p in priced)
    total = sum(p.line_total_cents for p in priced)
    profit = sum(p.profit_cents for p in priced)

    if total != subtotal - total_discount:
        raise InvariantViolation(
            "Pricing identity violated: total != subtotal - discount",
            details={"subtotal_cents": subtotal, "total_discount_cents": total_discount, "total_cents": total},
        )

    return PricingSummary(
        lines=priced,
        subtotal_cents=subtotal,
        total_discount_cents=total_discount,
        total_cents=total,
        profit_cents=profit,
    )
