# Overview: Service-layer operations for customers; encapsulates business logic and database work.

from __future__ import annotations

from sqlalchemy import or_

from ..errors import NotFoundError
from ..extensions import db
from ..models import Customer
from ..validation import ConflictError
from .concurrency import with_transaction
from .loyalty_service import list_loyalty_transactions


def create_customer(name: str, email: str | None = None, phone: str | None = None) -> Customer:
    """Customers start with a zero loyalty balance; points only arrive through accrual."""

    def _op():
        if email and db.session.query(Customer).filter_by(email=email).first() is not None:
            raise ConflictError(f"email '{email}' already exists")
        customer = Customer(name=name, email=email or None, phone=phone or None, loyalty_points=0)
        db.session.add(customer)
        db.session.flush()
        return customer

    return with_transaction(_op)


def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError(f"Customer {customer_id} not found", details={"customer_id": customer_id})
    return customer


def get_customer_detail(customer_id: int, limit: int = 20) -> dict:
    customer = get_customer(customer_id)
    data = customer.to_dict()
    data["loyalty_transactions"] = [t.to_dict() for t in list_loyalty_transactions(customer_id, limit=limit)]
    return data


def list_customers(search: str | None = None) -> list[Customer]:
    q = db.session.query(Customer)
    if search:
        pattern = f"%{search.strip()}%"
        q = q.filter(or_(
            Customer.name.ilike(pattern),
            Customer.email.ilike(pattern),
            Customer.phone.ilike(pattern),
        ))
    return q.order_by(Customer.name.asc()).all()
