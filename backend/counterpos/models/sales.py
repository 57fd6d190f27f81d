from __future__ import annotations

import enum

from ..extensions import db
from counterpos.time_utils import to_utc_z


class PaymentMethod(str, enum.Enum):
    CASH = "CASH"
    CARD = "CARD"
    MOBILE = "MOBILE"


class Sale(db.Model):
    """
    One completed checkout.

    Sales are written exactly once, at commit time, together with their
    items, their single payment and the stock ledger entries they caused.
    Totals are snapshots of the pricing computed under the product locks.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_created_at", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    # All amounts in cents
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    profit_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    user = db.relationship("User")
    customer = db.relationship("Customer", backref=db.backref("sales", lazy="dynamic"))
    items = db.relationship(
        "SaleItem",
        back_populates="sale",
        order_by="SaleItem.line_number",
        lazy=True,
    )
    payment = db.relationship("Payment", back_populates="sale", uselist=False, lazy=True)

    @property
    def reference(self) -> str:
        """Reference stamped on the stock and loyalty ledger entries of this sale."""
        return f"Sale #{self.id}"

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "reference": self.reference,
            "created_by": self.created_by,
            "created_by_username": self.user.username if self.user else None,
            "customer_id": self.customer_id,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "profit_cents": self.profit_cents,
            "created_at": to_utc_z(self.created_at),
        }
        if include_lines:
            data["items"] = [item.to_dict() for item in self.items]
            data["payment"] = self.payment.to_dict() if self.payment else None
            data["customer"] = self.customer.to_dict() if self.customer else None
        return data


class SaleItem(db.Model):
    """Individual line item of a sale, in client-submitted order."""
    __tablename__ = "sale_items"
    __table_args__ = (
        db.UniqueConstraint("sale_id", "line_number", name="uq_sale_items_sale_line"),
        db.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_positive"),
        db.CheckConstraint("discount_cents >= 0", name="ck_sale_items_discount_nonnegative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)

    # List price, price after discount, and the discount applied
    unit_price_cents = db.Column(db.Integer, nullable=False)
    price_cents = db.Column(db.Integer, nullable=False)
    discount_percent = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)

    # Cost snapshot so profit stays reproducible after cost price changes
    cost_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    stock_log_id = db.Column(db.Integer, db.ForeignKey("stock_logs.id"), nullable=True)

    sale = db.relationship("Sale", back_populates="items")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "line_number": self.line_number,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "price_cents": self.price_cents,
            "discount_percent": str(self.discount_percent),
            "discount_cents": self.discount_cents,
            "cost_price_cents": self.cost_price_cents,
            "line_total_cents": self.line_total_cents,
            "stock_log_id": self.stock_log_id,
        }


class Payment(db.Model):
    """
    Settlement record for a sale.

    Exactly one payment per sale (unique sale_id). For CASH,
    received_amount_cents >= amount_cents and
    change_amount_cents = received_amount_cents - amount_cents.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.UniqueConstraint("sale_id", name="uq_payments_sale"),
        db.CheckConstraint("amount_cents >= 0", name="ck_payments_amount_nonnegative"),
        db.CheckConstraint("change_amount_cents >= 0", name="ck_payments_change_nonnegative"),
    )

    # Generated identifier, e.g. "PAY-lx3k9a2b-4f8k2m1qz"
    id = db.Column(db.String(64), primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(
        db.Enum(PaymentMethod, native_enum=False, length=16, validate_strings=True),
        nullable=False,
    )
    received_amount_cents = db.Column(db.Integer, nullable=False)
    change_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    # Card auth code, mobile transaction id, etc.
    reference = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", back_populates="payment")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "amount_cents": self.amount_cents,
            "payment_method": self.payment_method.value,
            "received_amount_cents": self.received_amount_cents,
            "change_amount_cents": self.change_amount_cents,
            "reference": self.reference,
            "created_at": to_utc_z(self.created_at),
        }
