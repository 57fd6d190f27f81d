# backend/counterpos/routes/products.py
"""
Product catalog and stock routes.

SECURITY: All routes require authentication.
- Deactivating a product requires the ADMIN role

STOCK: stock_quantity is only ever changed through the stock guard, either
via POST /<id>/stock or as an ADJUSTMENT when PUT carries a new target.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..errors import PosError
from ..models import Product, StockLog, UserRole
from ..services import products_service, stock_service
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
    enforce_rules_stock_change,
)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "name",
        "description",
        "barcode",
        "sku",
        "cost_price_cents",
        "sale_price_cents",
        "stock_quantity",
        "min_stock_level",
        "unit",
        "category",
        "is_active",
    },
    required_on_create={"name", "cost_price_cents", "sale_price_cents"},
)

STOCK_CHANGE_POLICY = ModelValidationPolicy(
    writable_fields={"type", "quantity", "reason"},
    required_on_create={"type", "quantity", "reason"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _error_response(e: PosError):
    return jsonify(e.to_dict()), e.status_code


@products_bp.get("")
@require_auth
def list_products():
    """
    Query params:
    - search: matches name, barcode or sku
    - category: exact category
    - low_stock: "true" to only return products at or below min_stock_level
    - include_inactive: "true" to include deactivated products
    """
    search = request.args.get("search")
    category = request.args.get("category")
    low_stock = request.args.get("low_stock", "").lower() == "true"
    include_inactive = request.args.get("include_inactive", "").lower() == "true"

    products = products_service.list_products(
        search=search,
        category=category,
        low_stock=low_stock,
        include_inactive=include_inactive,
    )
    return jsonify({"items": [p.to_dict() for p in products], "count": len(products)}), 200


@products_bp.post("")
@require_auth
def create_product_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
        product = products_service.create_product(patch, actor_id=g.current_user.id)
        return jsonify({"product": product.to_dict()}), 201
    except PosError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "InternalError", "message": "Internal server error"}), 500


@products_bp.get("/<int:product_id>")
@require_auth
def get_product_route(product_id: int):
    try:
        return jsonify({"product": products_service.get_product_detail(product_id)}), 200
    except PosError as e:
        return _error_response(e)


@products_bp.put("/<int:product_id>")
@require_auth
def update_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        enforce_rules_product(patch)
        product = products_service.update_product(product_id, patch, actor_id=g.current_user.id)
        return jsonify({"product": product.to_dict()}), 200
    except PosError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "InternalError", "message": "Internal server error"}), 500


@products_bp.delete("/<int:product_id>")
@require_auth
@require_role(UserRole.ADMIN)
def delete_product_route(product_id: int):
    """Soft delete; the product and its stock ledger are kept."""
    try:
        product = products_service.deactivate_product(product_id)
        return jsonify({"product": product.to_dict()}), 200
    except PosError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to deactivate product")
        return jsonify({"error": "InternalError", "message": "Internal server error"}), 500


@products_bp.post("/<int:product_id>/stock")
@require_auth
def adjust_stock_route(product_id: int):
    """
    Manual stock change.

    Body: {type: STOCK_IN|STOCK_OUT|ADJUSTMENT, quantity, reason}
    ADJUSTMENT quantity is the new absolute stock level; the ledger records
    |target - current| and a target equal to current stock is rejected.
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=StockLog, payload=payload, policy=STOCK_CHANGE_POLICY, partial=False)
        enforce_rules_stock_change(patch)
        product, log = stock_service.adjust_product_stock(
            product_id,
            patch["type"],
            patch["quantity"],
            patch["reason"],
            actor_id=g.current_user.id,
        )
        return jsonify({"product": product.to_dict(), "stock_log": log.to_dict()}), 200
    except PosError as e:
        if e.status_code == 409:
            current_app.logger.warning("Stock change rejected for product %s: %s", product_id, e.message)
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to change stock")
        return jsonify({"error": "InternalError", "message": "Internal server error"}), 500


@products_bp.get("/<int:product_id>/stock-logs")
@require_auth
def list_stock_logs_route(product_id: int):
    limit = request.args.get("limit", type=int)
    try:
        logs = stock_service.list_stock_logs(product_id, limit=limit)
        return jsonify({"items": [log.to_dict() for log in logs], "count": len(logs)}), 200
    except PosError as e:
        return _error_response(e)


@products_bp.get("/<int:product_id>/ledger/verify")
@require_auth
def verify_ledger_route(product_id: int):
    try:
        return jsonify(stock_service.verify_stock_ledger(product_id)), 200
    except PosError as e:
        return _error_response(e)
