# backend/counterpos/routes/sales.py
"""Sales API routes"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth
from ..errors import PosError
from ..services import sales_service
from ..validation import parse_sale_request


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")

MAX_PAGE_SIZE = 200


@sales_bp.post("")
@require_auth
def create_sale_route():
    """
    Record a complete checkout in one atomic call.

    The authenticated user is the actor; client-supplied prices and
    amounts are checked against server-side pricing, never trusted.
    """
    try:
        sale_request = parse_sale_request(request.get_json(silent=True))
        result = sales_service.create_sale(g.current_user.id, sale_request)
        return jsonify({"sale": result.to_dict()}), 201

    except PosError as e:
        if e.status_code >= 500:
            current_app.logger.error("Sale failed: %s %s", e.code, e.message)
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "InternalError", "message": "Internal server error"}), 500


@sales_bp.get("")
@require_auth
def list_sales_route():
    """Most recent first. Query params: limit (default 50), offset."""
    limit = min(max(request.args.get("limit", 50, type=int), 1), MAX_PAGE_SIZE)
    offset = max(request.args.get("offset", 0, type=int), 0)

    try:
        sales = sales_service.list_sales(limit=limit, offset=offset)
        return jsonify({
            "items": [sale.to_dict(include_lines=False) for sale in sales],
            "count": len(sales),
            "limit": limit,
            "offset": offset,
        }), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list sales")
        return jsonify({"error": "InternalError", "message": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
@require_auth
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id)
        return jsonify({"sale": sale.to_dict()}), 200
    except PosError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load sale")
        return jsonify({"error": "InternalError", "message": "Internal server error"}), 500
