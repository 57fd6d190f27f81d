# Overview: Error taxonomy shared by services and routes.

"""
CounterPOS error taxonomy

Every failure inside a checkout or stock change is raised as one of these.
Routes translate them to JSON with the status code carried by the class;
services never catch and discard them, so a raised error always means the
surrounding transaction was rolled back.
"""

from __future__ import annotations


class PosError(Exception):
    """Base class for domain errors surfaced at the HTTP boundary."""

    code = "PosError"
    status_code = 500

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(PosError, ValueError):
    """Malformed or missing input. Rejected before anything is written."""

    code = "ValidationError"
    status_code = 400


class NotFoundError(PosError):
    """Read-surface lookup for a sale, customer or product that does not exist."""

    code = "NotFound"
    status_code = 404


class ProductNotFound(NotFoundError):
    """Referenced product does not exist or is inactive."""

    code = "ProductNotFound"

    def __init__(self, product_id, message: str | None = None):
        super().__init__(
            message or f"Product {product_id} not found",
            details={"product_id": product_id},
        )
        self.product_id = product_id


class InsufficientStock(PosError):
    """A stock decrement would drive stock_quantity below zero."""

    code = "InsufficientStock"
    status_code = 409

    def __init__(self, product_id, requested: int, available: int, product_name: str | None = None):
        label = product_name or f"product {product_id}"
        super().__init__(
            f"Insufficient stock for {label}: requested {requested}, available {available}",
            details={
                "product_id": product_id,
                "product_name": product_name,
                "requested": requested,
                "available": available,
            },
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class InvariantViolation(PosError):
    """Internal consistency check failed. Fatal for the operation."""

    code = "InvariantViolation"
    status_code = 500


class ConcurrencyConflict(PosError):
    """Concurrent writers kept conflicting after the bounded retries."""

    code = "ConcurrencyConflict"
    status_code = 409


class PersistenceError(PosError):
    """Underlying storage failure not covered by the kinds above."""

    code = "PersistenceError"
    status_code = 500
