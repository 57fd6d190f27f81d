from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Enum, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .errors import PosError, ValidationError


# Maximum price: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999


class ConflictError(PosError):
    """409-level business rule conflict (e.g., duplicate barcode)."""

    code = "Conflict"
    status_code = 409


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(key: str, value: Any) -> int:
    """Strict integer coercion: rejects floats, bools and scientific notation."""
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    # Reject floats explicitly
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(col.key, value)

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{col.key} must be true or false")

    # Closed enums stored as strings: validate against the enum class
    if isinstance(coltype, Enum) and coltype.enum_class is not None:
        try:
            return coltype.enum_class(str(value).strip().upper())
        except ValueError:
            allowed = ", ".join(m.value for m in coltype.enum_class)
            raise ValidationError(f"{col.key} must be one of {allowed}")

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    # Default: leave as-is
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    for key in ("cost_price_cents", "sale_price_cents"):
        if key in patch and patch[key] is not None:
            price = patch[key]
            if price < 0:
                raise ValidationError(f"{key} must be >= 0")
            if price > MAX_PRICE_CENTS:
                raise ValidationError(f"{key} cannot exceed {MAX_PRICE_CENTS} ({MAX_PRICE_CENTS / 100:,.2f})")

    for key in ("stock_quantity", "min_stock_level"):
        if key in patch and patch[key] is not None and patch[key] < 0:
            raise ValidationError(f"{key} must be >= 0")

    if "cost_price_cents" in patch and "sale_price_cents" in patch:
        if patch["sale_price_cents"] < patch["cost_price_cents"]:
            raise ValidationError("Sale price must be greater than or equal to cost price")


def enforce_rules_stock_change(patch: dict) -> None:
    # ADJUSTMENT quantity is an absolute target (may be 0); others are positive amounts
    from .models import StockChangeType
    from .models.inventory import MANUAL_STOCK_TYPES

    change_type = patch.get("type")
    if change_type not in MANUAL_STOCK_TYPES:
        allowed = ", ".join(t.value for t in MANUAL_STOCK_TYPES)
        raise ValidationError(f"type must be one of {allowed}")

    quantity = patch.get("quantity")
    if quantity is None:
        raise ValidationError("quantity is required")
    if change_type is StockChangeType.ADJUSTMENT:
        if quantity < 0:
            raise ValidationError("quantity must be >= 0 for ADJUSTMENT")
    elif quantity <= 0:
        raise ValidationError(f"quantity must be > 0 for {change_type.value}")

    if not patch.get("reason"):
        raise ValidationError("reason is required")


def _optional_int(payload: dict, key: str) -> int | None:
    raw = payload.get(key)
    if raw is None:
        return None
    return coerce_int(key, raw)


def parse_sale_request(payload: Any):
    """
    Build a SaleRequest from the checkout JSON body.

    {customer_id?, items: [{product_id, quantity, price_cents?, discount_percent?}],
     payment_method, payment_amount_cents?, payment_received_cents?,
     payment_change_cents?, payment_reference?}
    """
    from .services.pricing import parse_discount_percent
    from .services.sales_service import LineItemRequest, SaleRequest, coerce_payment_method

    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    allowed = {
        "customer_id",
        "items",
        "payment_method",
        "payment_amount_cents",
        "payment_received_cents",
        "payment_change_cents",
        "payment_reference",
    }
    unknown = sorted(set(payload) - allowed)
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(unknown)}")

    raw_items = payload.get("items")
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("items must be a non-empty list")
    if not payload.get("payment_method"):
        raise ValidationError("payment_method is required")

    items = []
    for line_number, raw in enumerate(raw_items, start=1):
        if not isinstance(raw, dict):
            raise ValidationError(f"Line {line_number}: item must be an object")
        if "product_id" not in raw or "quantity" not in raw:
            raise ValidationError(f"Line {line_number}: product_id and quantity are required")
        items.append(LineItemRequest(
            product_id=coerce_int(f"items[{line_number}].product_id", raw["product_id"]),
            quantity=coerce_int(f"items[{line_number}].quantity", raw["quantity"]),
            discount_percent=parse_discount_percent(raw.get("discount_percent")),
            price_cents=_optional_int(raw, "price_cents"),
        ))

    reference = payload.get("payment_reference")
    return SaleRequest(
        items=tuple(items),
        payment_method=coerce_payment_method(payload["payment_method"]),
        customer_id=_optional_int(payload, "customer_id"),
        payment_amount_cents=_optional_int(payload, "payment_amount_cents"),
        payment_received_cents=_optional_int(payload, "payment_received_cents"),
        payment_change_cents=_optional_int(payload, "payment_change_cents"),
        payment_reference=str(reference).strip() if reference else None,
    )
