from __future__ import annotations

import enum

from ..extensions import db
from counterpos.time_utils import to_utc_z


class StockChangeType(str, enum.Enum):
    """
    Closed set of stock-change events.

    Sign convention:
    - STOCK_IN, PURCHASE, RETURN add quantity
    - STOCK_OUT, SALE subtract quantity
    - ADJUSTMENT sets the absolute stock level (quantity is |target - current|)
    """
    STOCK_IN = "STOCK_IN"
    STOCK_OUT = "STOCK_OUT"
    ADJUSTMENT = "ADJUSTMENT"
    SALE = "SALE"
    PURCHASE = "PURCHASE"
    RETURN = "RETURN"


INCREASING_TYPES = frozenset({StockChangeType.STOCK_IN, StockChangeType.PURCHASE, StockChangeType.RETURN})
DECREASING_TYPES = frozenset({StockChangeType.STOCK_OUT, StockChangeType.SALE})

# Types a clerk may post through the manual stock endpoint
MANUAL_STOCK_TYPES = (StockChangeType.STOCK_IN, StockChangeType.STOCK_OUT, StockChangeType.ADJUSTMENT)


class Product(db.Model):
    """
    Product master data.

    stock_quantity is the materialized balance of the product's StockLog
    chain. It is only written through the stock guard, inside the same
    transaction as the StockLog row that explains the change.

    version_id is an optimistic-concurrency token: a stale write raises
    StaleDataError instead of silently overwriting a concurrent decrement.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("stock_quantity >= 0", name="ck_products_stock_nonnegative"),
        db.CheckConstraint("min_stock_level >= 0", name="ck_products_min_stock_nonnegative"),
        db.CheckConstraint("cost_price_cents >= 0", name="ck_products_cost_nonnegative"),
        db.CheckConstraint("sale_price_cents >= cost_price_cents", name="ck_products_sale_gte_cost"),
        db.Index("ix_products_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    barcode = db.Column(db.String(64), nullable=False, unique=True)
    sku = db.Column(db.String(64), nullable=True, unique=True)
    qr_code = db.Column(db.String(64), nullable=True)

    # Authoritative storage in cents
    cost_price_cents = db.Column(db.Integer, nullable=False)
    sale_price_cents = db.Column(db.Integer, nullable=False)

    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    min_stock_level = db.Column(db.Integer, nullable=False, default=0)

    unit = db.Column(db.String(32), nullable=False, default="piece")
    category = db.Column(db.String(128), nullable=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_low_stock(self) -> bool:
        return self.stock_quantity <= self.min_stock_level

    def __repr__(self) -> str:
        return f"<Product id={self.id} barcode={self.barcode!r} name={self.name!r} stock={self.stock_quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "barcode": self.barcode,
            "sku": self.sku,
            "qr_code": self.qr_code,
            "cost_price_cents": self.cost_price_cents,
            "sale_price_cents": self.sale_price_cents,
            "stock_quantity": self.stock_quantity,
            "min_stock_level": self.min_stock_level,
            "is_low_stock": self.is_low_stock,
            "unit": self.unit,
            "category": self.category,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockLog(db.Model):
    """
    Append-only stock ledger entry.

    IMMUTABLE: rows are never updated or deleted. Corrections are new
    entries (usually ADJUSTMENT).

    previous_stock is the product's stock_quantity observed under the write
    lock immediately before the change; new_stock is the value written back.
    """
    __tablename__ = "stock_logs"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_stock_logs_quantity_positive"),
        db.CheckConstraint("previous_stock >= 0", name="ck_stock_logs_previous_nonnegative"),
        db.CheckConstraint("new_stock >= 0", name="ck_stock_logs_new_nonnegative"),
        db.Index("ix_stock_logs_product_created", "product_id", "created_at", "id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    type = db.Column(
        db.Enum(StockChangeType, native_enum=False, length=16, validate_strings=True),
        nullable=False,
        index=True,
    )
    quantity = db.Column(db.Integer, nullable=False)
    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(255), nullable=True)
    reference = db.Column(db.String(128), nullable=True, index=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("stock_logs", lazy="dynamic"))
    user = db.relationship("User")

    @property
    def delta(self) -> int:
        return self.new_stock - self.previous_stock

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "type": self.type.value,
            "quantity": self.quantity,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "delta": self.delta,
            "reason": self.reason,
            "reference": self.reference,
            "created_by": self.created_by,
            "created_by_username": self.user.username if self.user else None,
            "created_at": to_utc_z(self.created_at),
        }
