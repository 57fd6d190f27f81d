from __future__ import annotations

import enum

from ..extensions import db
from counterpos.time_utils import to_utc_z


class LoyaltyTransactionType(str, enum.Enum):
    EARNED = "EARNED"
    REDEEMED = "REDEEMED"


class Customer(db.Model):
    """
    Optional buyer profile attached to sales.

    loyalty_points only grows through accrual; every change is explained by
    a LoyaltyTransaction row written in the same transaction.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.CheckConstraint("loyalty_points >= 0", name="ck_customers_points_nonnegative"),
        db.Index("ix_customers_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True, unique=True)
    phone = db.Column(db.String(32), nullable=True)

    loyalty_points = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "loyalty_points": self.loyalty_points,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class LoyaltyTransaction(db.Model):
    """
    Append-only ledger of loyalty point events.

    IMMUTABLE: Records are never updated or deleted.
    balance is the customer's loyalty_points after applying this entry.
    """
    __tablename__ = "loyalty_transactions"
    __table_args__ = (
        db.Index("ix_loyalty_txns_customer_created", "customer_id", "created_at"),
    )

    # Generated identifier, e.g. "LT-lx3k9a2b-4f8k2m1qz"
    id = db.Column(db.String(64), primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    points = db.Column(db.Integer, nullable=False)
    type = db.Column(
        db.Enum(LoyaltyTransactionType, native_enum=False, length=16, validate_strings=True),
        nullable=False,
    )
    reference = db.Column(db.String(128), nullable=True)
    balance = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("loyalty_transactions", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "points": self.points,
            "type": self.type.value,
            "reference": self.reference,
            "balance": self.balance,
            "created_at": to_utc_z(self.created_at),
        }
