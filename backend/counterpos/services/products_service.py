# backend/counterpos/services/products_service.py
"""
Products Service - catalog maintenance

PRICE RULE: sale_price_cents >= cost_price_cents, checked against the
merged (existing + patch) values on every create and update.

STOCK RULE: stock_quantity is never assigned directly. Starting stock is
recorded as a STOCK_IN "Initial stock" ledger entry; a changed
stock_quantity on update goes through the stock guard as an ADJUSTMENT.
"""
from __future__ import annotations

import logging

from flask import current_app
from sqlalchemy import or_

from ..errors import ProductNotFound, ValidationError
from ..extensions import db
from ..models import Product, StockChangeType
from ..validation import ConflictError
from .concurrency import with_transaction
from .identifier_service import generate_product_codes
from .stock_service import apply_stock_change, get_product_for_update, list_stock_logs

logger = logging.getLogger(__name__)

PRODUCT_MUTABLE_FIELDS = {
    "name",
    "description",
    "barcode",
    "sku",
    "cost_price_cents",
    "sale_price_cents",
    "min_stock_level",
    "unit",
    "category",
    "is_active",
}


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def enforce_price_rule(cost_price_cents: int, sale_price_cents: int) -> None:
    if sale_price_cents < cost_price_cents:
        raise ValidationError(
            "Sale price must be greater than or equal to cost price",
            details={"cost_price_cents": cost_price_cents, "sale_price_cents": sale_price_cents},
        )


def _ensure_unique_codes(patch: dict, product_id: int | None = None) -> None:
    for field_name in ("barcode", "sku"):
        value = patch.get(field_name)
        if not value:
            continue
        q = db.session.query(Product).filter(getattr(Product, field_name) == value)
        if product_id is not None:
            q = q.filter(Product.id != product_id)
        if q.first() is not None:
            raise ConflictError(f"{field_name} '{value}' already exists")


def create_product(patch: dict, actor_id: int | None = None) -> Product:
    """
    Create a product from a validated patch.

    Generates barcode/QR codes when no barcode is supplied and records any
    starting stock as a STOCK_IN ledger entry.
    """
    enforce_price_rule(patch["cost_price_cents"], patch["sale_price_cents"])
    initial_stock = patch.get("stock_quantity") or 0
    if initial_stock < 0:
        raise ValidationError("stock_quantity must be >= 0")

    def _op():
        _ensure_unique_codes(patch)

        product = Product(stock_quantity=0)
        apply_product_patch(product, patch)
        if not product.barcode:
            product.barcode, product.qr_code = generate_product_codes()
        db.session.add(product)
        db.session.flush()

        if initial_stock > 0:
            apply_stock_change(
                product,
                StockChangeType.STOCK_IN,
                initial_stock,
                reason="Initial stock",
                actor_id=actor_id,
            )
        return product

    product = with_transaction(_op)
    logger.info("Product %s created (barcode=%s, stock=%s)", product.id, product.barcode, product.stock_quantity)
    return product


def update_product(product_id: int, patch: dict, actor_id: int | None = None) -> Product:
    """Apply a validated patch; a stock_quantity change is ledgered as an ADJUSTMENT."""

    def _op():
        product = get_product_for_update(product_id)

        cost = patch.get("cost_price_cents", product.cost_price_cents)
        sale = patch.get("sale_price_cents", product.sale_price_cents)
        enforce_price_rule(cost, sale)
        _ensure_unique_codes(patch, product_id=product.id)

        apply_product_patch(product, patch)

        target = patch.get("stock_quantity")
        if target is not None and target != product.stock_quantity:
            apply_stock_change(
                product,
                StockChangeType.ADJUSTMENT,
                target,
                reason="Manual adjustment",
                actor_id=actor_id,
            )
        return product

    return with_transaction(_op)


def deactivate_product(product_id: int) -> Product:
    """Soft delete: inactive products cannot be sold but keep their ledger."""

    def _op():
        product = get_product_for_update(product_id)
        product.is_active = False
        return product

    return with_transaction(_op)


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise ProductNotFound(product_id)
    return product


def get_product_detail(product_id: int) -> dict:
    """Product plus its most recent stock ledger entries."""
    product = get_product(product_id)
    logs = list_stock_logs(product_id, limit=current_app.config["STOCK_LOG_PREVIEW_LIMIT"])
    data = product.to_dict()
    data["stock_logs"] = [log.to_dict() for log in logs]
    return data


def list_products(
    search: str | None = None,
    category: str | None = None,
    low_stock: bool = False,
    include_inactive: bool = False,
) -> list[Product]:
    q = db.session.query(Product)
    if not include_inactive:
        q = q.filter(Product.is_active.is_(True))
    if search:
        pattern = f"%{search.strip()}%"
        q = q.filter(or_(
            Product.name.ilike(pattern),
            Product.barcode.ilike(pattern),
            Product.sku.ilike(pattern),
        ))
    if category:
        q = q.filter(Product.category == category)
    if low_stock:
        q = q.filter(Product.stock_quantity <= Product.min_stock_level)
    return q.order_by(Product.name.asc()).all()
