# Overview: Service-layer operations for loyalty; encapsulates business logic and database work.

"""
Loyalty Accrual

Points are earned from sale profit: floor(profit * rate), with profit in
currency units and rate configured by LOYALTY_POINTS_RATE (0.05 means one
point per 20.00 of profit). Fractions are always floored, never rounded.

Mirrors the stock ledger: every balance change writes one append-only
LoyaltyTransaction whose balance is the customer's total after applying it,
inside the caller's transaction.
"""

from __future__ import annotations

import logging
from decimal import Decimal, ROUND_FLOOR

from flask import current_app

from ..errors import ValidationError
from ..extensions import db
from ..models import Customer, LoyaltyTransaction, LoyaltyTransactionType
from .identifier_service import LOYALTY_PREFIX, add_with_fresh_identifier

logger = logging.getLogger(__name__)

CENTS_PER_UNIT = Decimal("100")


def loyalty_rate() -> Decimal:
    return Decimal(str(current_app.config["LOYALTY_POINTS_RATE"]))


def points_for_profit(profit_cents: int, rate: Decimal | None = None) -> int:
    """floor(profit * rate); zero for zero or negative profit."""
    if profit_cents <= 0:
        return 0
    if rate is None:
        rate = loyalty_rate()
    points = (Decimal(profit_cents) / CENTS_PER_UNIT * rate).to_integral_value(rounding=ROUND_FLOOR)
    return int(points)


def accrue(customer: Customer, points: int, reference: str | None = None) -> LoyaltyTransaction:
    """
    Add earned points to a customer and append the EARNED ledger row.

    customer should have been loaded in the current transaction; its
    version_id guards against a concurrent balance update.
    """
    if points <= 0:
        raise ValidationError("points must be > 0")

    new_balance = customer.loyalty_points + points
    customer.loyalty_points = new_balance

    txn = add_with_fresh_identifier(
        lambda identifier: LoyaltyTransaction(
            id=identifier,
            customer_id=customer.id,
            points=points,
            type=LoyaltyTransactionType.EARNED,
            reference=reference,
            balance=new_balance,
        ),
        LOYALTY_PREFIX,
    )

    logger.info("Loyalty +%s customer=%s balance=%s (ref=%s)", points, customer.id, new_balance, reference)
    return txn


def list_loyalty_transactions(customer_id: int, limit: int | None = None) -> list[LoyaltyTransaction]:
    q = db.session.query(LoyaltyTransaction).filter_by(customer_id=customer_id).order_by(
        LoyaltyTransaction.created_at.desc(),
        LoyaltyTransaction.id.desc(),
    )
    if limit is not None:
        q = q.limit(limit)
    return q.all()
