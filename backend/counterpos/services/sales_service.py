"""
Sales Service - atomic checkout

One call to create_sale() is one unit of work: the sale, its items, the
stock decrements and their ledger rows, the payment and any loyalty accrual
commit together or not at all.

LOCKING: every product referenced by the sale is locked up front in
ascending id order (SQLite: BEGIN IMMEDIATE), so two checkouts touching
overlapping products always acquire them in the same order and cannot
deadlock. Lines are still priced, decremented and recorded in the order the
client submitted them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Customer, LoyaltyTransaction, Payment, PaymentMethod, Product, Sale, SaleItem, StockChangeType, User
from .concurrency import lock_for_update, with_transaction
from .identifier_service import PAYMENT_PREFIX, add_with_fresh_identifier
from .loyalty_service import accrue, points_for_profit
from .pricing import PricingLine, PricingSummary, parse_discount_percent, price_lines
from .stock_service import apply_stock_change, get_product_for_update

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LineItemRequest:
    product_id: int
    quantity: int
    discount_percent: Decimal = Decimal("0")
    # Unit price after discount as shown to the customer; checked, never trusted
    price_cents: int | None = None


@dataclass(frozen=True)
class SaleRequest:
    items: tuple[LineItemRequest, ...]
    payment_method: PaymentMethod
    customer_id: int | None = None
    payment_amount_cents: int | None = None
    payment_received_cents: int | None = None
    payment_change_cents: int | None = None
    payment_reference: str | None = None


@dataclass
class SaleResult:
    sale: Sale
    loyalty_transaction: LoyaltyTransaction | None = None
    loyalty_points_earned: int = 0

    def to_dict(self) -> dict:
        data = self.sale.to_dict()
        data["loyalty_points_earned"] = self.loyalty_points_earned
        data["loyalty_transaction"] = (
            self.loyalty_transaction.to_dict() if self.loyalty_transaction is not None else None
        )
        return data


def coerce_payment_method(value) -> PaymentMethod:
    if isinstance(value, PaymentMethod):
        return value
    try:
        return PaymentMethod(str(value).strip().upper())
    except ValueError:
        allowed = ", ".join(m.value for m in PaymentMethod)
        raise ValidationError(f"payment_method must be one of {allowed}")


def _require_non_negative_int(name: str, value) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer")
    if value < 0:
        raise ValidationError(f"{name} must be >= 0")


def validate_sale_request(request: SaleRequest) -> None:
    """Preconditions checked before any transaction opens."""
    if not request.items:
        raise ValidationError("At least one line item is required")

    for line_number, item in enumerate(request.items, start=1):
        if isinstance(item.product_id, bool) or not isinstance(item.product_id, int):
            raise ValidationError(f"Line {line_number}: product_id must be an integer")
        if isinstance(item.quantity, bool) or not isinstance(item.quantity, int) or item.quantity <= 0:
            raise ValidationError(
                f"Line {line_number}: quantity must be a positive integer",
                details={"line_number": line_number, "product_id": item.product_id},
            )
        parse_discount_percent(item.discount_percent)
        _require_non_negative_int(f"Line {line_number}: price_cents", item.price_cents)

    coerce_payment_method(request.payment_method)
    _require_non_negative_int("payment_amount_cents", request.payment_amount_cents)
    _require_non_negative_int("payment_received_cents", request.payment_received_cents)
    _require_non_negative_int("payment_change_cents", request.payment_change_cents)


def _lock_products(items) -> dict[int, Product]:
    """Lock each distinct product once, in ascending id order."""
    return {
        product_id: get_product_for_update(product_id, require_active=True)
        for product_id in sorted({item.product_id for item in items})
    }


def _check_client_amounts(request: SaleRequest, pricing: PricingSummary) -> None:
    for line_number, (item, priced) in enumerate(zip(request.items, pricing.lines), start=1):
        if item.price_cents is not None and item.price_cents != priced.effective_price_cents:
            raise ValidationError(
                f"Line {line_number}: price does not match current product price",
                details={
                    "line_number": line_number,
                    "product_id": item.product_id,
                    "submitted_price_cents": item.price_cents,
                    "expected_price_cents": priced.effective_price_cents,
                },
            )

    if request.payment_amount_cents is not None and request.payment_amount_cents != pricing.total_cents:
        raise ValidationError(
            "Payment amount does not match sale total",
            details={
                "submitted_amount_cents": request.payment_amount_cents,
                "expected_amount_cents": pricing.total_cents,
            },
        )


def settle_payment(method: PaymentMethod, total_cents: int, request: SaleRequest) -> tuple[int, int]:
    """Return (received_amount_cents, change_amount_cents) for the payment row."""
    if method is PaymentMethod.CASH:
        received = request.payment_received_cents
        if received is None:
            raise ValidationError("payment_received_cents is required for CASH payments")
        if received < total_cents:
            raise ValidationError(
                "Received amount is less than the sale total",
                details={"received_cents": received, "total_cents": total_cents},
            )
        change = received - total_cents
    else:
        received = request.payment_received_cents
        if received is None:
            received = total_cents
        if received != total_cents:
            raise ValidationError(
                f"{method.value} payments must equal the sale total",
                details={"received_cents": received, "total_cents": total_cents},
            )
        change = 0

    if request.payment_change_cents is not None and request.payment_change_cents != change:
        raise ValidationError(
            "Change amount does not match received amount minus total",
            details={"submitted_change_cents": request.payment_change_cents, "expected_change_cents": change},
        )
    return received, change


def create_sale(actor_id: int, request: SaleRequest) -> SaleResult:
    """
    Record a checkout atomically.

    Raises ValidationError, ProductNotFound, InsufficientStock,
    InvariantViolation, ConcurrencyConflict or PersistenceError. After any
    of them no sale, stock, payment or loyalty change exists.
    """
    validate_sale_request(request)
    method = coerce_payment_method(request.payment_method)

    def _op() -> SaleResult:
        actor = db.session.get(User, actor_id)
        if actor is None or not actor.is_active:
            raise ValidationError(f"User {actor_id} is not an active user", details={"actor_id": actor_id})

        products = _lock_products(request.items)

        customer = None
        if request.customer_id is not None:
            customer = lock_for_update(db.session.query(Customer).filter_by(id=request.customer_id)).first()
            if customer is None:
                raise ValidationError(
                    f"Customer {request.customer_id} not found",
                    details={"customer_id": request.customer_id},
                )

        pricing = price_lines(
            PricingLine(
                unit_price_cents=products[item.product_id].sale_price_cents,
                cost_price_cents=products[item.product_id].cost_price_cents,
                quantity=item.quantity,
                discount_percent=parse_discount_percent(item.discount_percent),
            )
            for item in request.items
        )
        _check_client_amounts(request, pricing)
        received, change = settle_payment(method, pricing.total_cents, request)

        sale = Sale(
            created_by=actor_id,
            customer_id=customer.id if customer is not None else None,
            subtotal_cents=pricing.subtotal_cents,
            discount_cents=pricing.total_discount_cents,
            total_cents=pricing.total_cents,
            profit_cents=pricing.profit_cents,
        )
        db.session.add(sale)
        db.session.flush()

        for line_number, (item, priced) in enumerate(zip(request.items, pricing.lines), start=1):
            product = products[item.product_id]
            _, stock_log = apply_stock_change(
                product,
                StockChangeType.SALE,
                item.quantity,
                reason="Sale",
                reference=sale.reference,
                actor_id=actor_id,
            )
            db.session.add(SaleItem(
                sale_id=sale.id,
                line_number=line_number,
                product_id=product.id,
                quantity=item.quantity,
                unit_price_cents=priced.line.unit_price_cents,
                price_cents=priced.effective_price_cents,
                discount_percent=priced.line.discount_percent,
                discount_cents=priced.discount_cents,
                cost_price_cents=priced.line.cost_price_cents,
                line_total_cents=priced.line_total_cents,
                stock_log_id=stock_log.id,
            ))

        add_with_fresh_identifier(
            lambda identifier: Payment(
                id=identifier,
                sale_id=sale.id,
                amount_cents=pricing.total_cents,
                payment_method=method,
                received_amount_cents=received,
                change_amount_cents=change,
                reference=request.payment_reference,
            ),
            PAYMENT_PREFIX,
        )

        result = SaleResult(sale=sale)
        if customer is not None and pricing.profit_cents > 0:
            points = points_for_profit(pricing.profit_cents)
            if points > 0:
                result.loyalty_transaction = accrue(customer, points, reference=sale.reference)
                result.loyalty_points_earned = points

        return result

    result = with_transaction(_op)
    logger.info(
        "Sale %s committed: %s line(s), total=%s cents, actor=%s",
        result.sale.id, len(request.items), result.sale.total_cents, actor_id,
    )
    return result


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise NotFoundError(f"Sale {sale_id} not found", details={"sale_id": sale_id})
    return sale


def list_sales(limit: int = 50, offset: int = 0) -> list[Sale]:
    """Most recent first."""
    return (
        db.session.query(Sale)
        .order_by(Sale.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
