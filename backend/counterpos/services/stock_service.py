# Overview: Stock guard and append-only stock ledger; encapsulates business logic and database work.

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..errors import InsufficientStock, InvariantViolation, ProductNotFound, ValidationError
from ..extensions import db
from ..models import Product, StockLog, StockChangeType
from ..models.inventory import DECREASING_TYPES, INCREASING_TYPES, MANUAL_STOCK_TYPES
from .concurrency import lock_for_update, with_transaction
"""
Stock Ledger Invariants (authoritative)

- Product.stock_quantity >= 0 after every committed operation.
- Every change to stock_quantity writes exactly one StockLog row in the
  same DB transaction; stock is never written anywhere else.
- StockLog rows are append-only (no updates/deletes).
- previous_stock is the value read under the write lock; new_stock is the
  value written back.
- Folding a product's StockLog rows in id order from 0 reproduces
  stock_quantity exactly. ADJUSTMENT entries set the balance to their
  new_stock and record |target - current| as quantity; all other types
  apply their signed quantity.
- Every StockLog quantity is > 0; a no-op ADJUSTMENT is rejected.
"""

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StockChange:
    type: StockChangeType
    quantity: int
    previous_stock: int
    new_stock: int

    @property
    def delta(self) -> int:
        return self.new_stock - self.previous_stock


def coerce_stock_type(value) -> StockChangeType:
    if isinstance(value, StockChangeType):
        return value
    try:
        return StockChangeType(str(value).strip().upper())
    except ValueError:
        allowed = ", ".join(t.value for t in StockChangeType)
        raise ValidationError(f"type must be one of {allowed}")


def compute_stock_change(
    current: int,
    change_type,
    quantity: int,
    *,
    product_id: int | None = None,
    product_name: str | None = None,
) -> StockChange:
    """
    Pure stock guard: resulting balance for one change, or an error.

    Raises InsufficientStock if a subtracting change would go negative.
    For ADJUSTMENT, quantity is the target level and the returned change
    carries |target - current| as its quantity.
    """
    change_type = coerce_stock_type(change_type)

    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError("quantity must be an integer")
    if current < 0:
        raise InvariantViolation(
            "Current stock is negative",
            details={"product_id": product_id, "stock_quantity": current},
        )

    if change_type is StockChangeType.ADJUSTMENT:
        if quantity < 0:
            raise ValidationError("adjustment target must be >= 0")
        if quantity == current:
            raise ValidationError(
                f"adjustment target {quantity} equals current stock",
                details={"product_id": product_id, "stock_quantity": current},
            )
        new_stock = quantity
        quantity = abs(new_stock - current)
    elif quantity <= 0:
        raise ValidationError("quantity must be > 0")
    elif change_type in INCREASING_TYPES:
        new_stock = current + quantity
    elif change_type in DECREASING_TYPES:
        new_stock = current - quantity
        if new_stock < 0:
            raise InsufficientStock(product_id, requested=quantity, available=current, product_name=product_name)
    else:
        raise InvariantViolation(f"Unhandled stock change type {change_type.value}")

    return StockChange(type=change_type, quantity=quantity, previous_stock=current, new_stock=new_stock)


def get_product_for_update(product_id: int, *, require_active: bool = False) -> Product:
    product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
    if product is None:
        raise ProductNotFound(product_id)
    if require_active and not product.is_active:
        raise ProductNotFound(product_id, f"Product {product_id} is inactive")
    return product


def apply_stock_change(
    product: Product,
    change_type,
    quantity: int,
    *,
    reason: str | None = None,
    reference: str | None = None,
    actor_id: int | None = None,
) -> tuple[int, StockLog]:
    """
    Apply one guarded stock change to a locked product.

    Writes the product's new stock_quantity and its StockLog row in the
    caller's transaction (flush only, no commit).
    """
    change = compute_stock_change(
        product.stock_quantity,
        change_type,
        quantity,
        product_id=product.id,
        product_name=product.name,
    )
    if change.new_stock < 0:
        raise InvariantViolation(
            "Stock guard produced a negative balance",
            details={"product_id": product.id, "new_stock": change.new_stock},
        )

    product.stock_quantity = change.new_stock
    log = StockLog(
        product_id=product.id,
        type=change.type,
        quantity=change.quantity,
        previous_stock=change.previous_stock,
        new_stock=change.new_stock,
        reason=reason,
        reference=reference,
        created_by=actor_id,
    )
    db.session.add(log)
    db.session.flush()

    logger.info(
        "Stock %s product=%s %s -> %s (ref=%s)",
        change.type.value, product.id, change.previous_stock, change.new_stock, reference,
    )
    return change.new_stock, log


def adjust_product_stock(
    product_id: int,
    change_type,
    quantity: int,
    reason: str,
    actor_id: int | None = None,
) -> tuple[Product, StockLog]:
    """
    Manual stock change (STOCK_IN, STOCK_OUT or ADJUSTMENT) as its own
    atomic unit of work, sharing the guard used by sales.
    """
    change_type = coerce_stock_type(change_type)
    if change_type not in MANUAL_STOCK_TYPES:
        allowed = ", ".join(t.value for t in MANUAL_STOCK_TYPES)
        raise ValidationError(f"type must be one of {allowed}")
    if not reason or not str(reason).strip():
        raise ValidationError("reason is required")

    def _op():
        product = get_product_for_update(product_id)
        _, log = apply_stock_change(
            product,
            change_type,
            quantity,
            reason=str(reason).strip(),
            actor_id=actor_id,
        )
        return product, log

    return with_transaction(_op)


def list_stock_logs(product_id: int, limit: int | None = None) -> list[StockLog]:
    """Most recent first."""
    if db.session.get(Product, product_id) is None:
        raise ProductNotFound(product_id)

    q = db.session.query(StockLog).filter_by(product_id=product_id).order_by(StockLog.id.desc())
    if limit is not None:
        q = q.limit(limit)
    return q.all()


def replay_stock_ledger(logs, initial: int = 0) -> int:
    """
    Fold StockLog entries (in creation order) into a balance.

    Raises InvariantViolation when an entry does not chain onto the
    running balance or its recorded new_stock disagrees with the fold.
    """
    balance = initial
    for log in logs:
        if log.previous_stock != balance:
            raise InvariantViolation(
                f"Stock ledger broken at entry {log.id}: previous_stock {log.previous_stock} != running balance {balance}",
                details={"stock_log_id": log.id, "previous_stock": log.previous_stock, "balance": balance},
            )
        log_type = coerce_stock_type(log.type)
        if log_type is StockChangeType.ADJUSTMENT:
            if log.quantity != abs(log.new_stock - balance):
                raise InvariantViolation(
                    f"Stock ledger broken at entry {log.id}: adjustment quantity {log.quantity} != |{log.new_stock} - {balance}|",
                    details={"stock_log_id": log.id, "quantity": log.quantity, "new_stock": log.new_stock, "balance": balance},
                )
            balance = log.new_stock
        elif log_type in INCREASING_TYPES:
            balance += log.quantity
        else:
            balance -= log.quantity

        if balance != log.new_stock or balance < 0:
            raise InvariantViolation(
                f"Stock ledger broken at entry {log.id}: new_stock {log.new_stock} != folded balance {balance}",
                details={"stock_log_id": log.id, "new_stock": log.new_stock, "balance": balance},
            )
    return balance


def verify_stock_ledger(product_id: int) -> dict:
    """Replay a product's ledger and compare it with stock_quantity."""
    product = db.session.get(Product, product_id)
    if product is None:
        raise ProductNotFound(product_id)

    logs = db.session.query(StockLog).filter_by(product_id=product_id).order_by(StockLog.id.asc()).all()

    report = {
        "product_id": product_id,
        "stock_quantity": product.stock_quantity,
        "entries": len(logs),
        "ledger_balance": None,
        "consistent": False,
        "error": None,
    }
    try:
        balance = replay_stock_ledger(logs)
    except InvariantViolation as exc:
        report["error"] = exc.message
        logger.warning("Stock ledger inconsistent for product %s: %s", product_id, exc.message)
        return report

    report["ledger_balance"] = balance
    report["consistent"] = balance == product.stock_quantity
    if not report["consistent"]:
        report["error"] = f"ledger balance {balance} != stock_quantity {product.stock_quantity}"
        logger.warning("Stock ledger inconsistent for product %s: %s", product_id, report["error"])
    return report
