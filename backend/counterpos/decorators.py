# Overview: Request and role decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import session_service


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user')


def require_auth(f):
    """
    Require a bearer token that resolves to an active user.

    Sets the following Flask g attributes:
    - g.current_user: The authenticated User object (the sale/stock actor)
    - g.session_context: The full SessionContext object

    Returns 401 if:
    - No Authorization header
    - Invalid, expired or revoked token
    - User account deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        # Extract token from Authorization header
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Unauthorized", "message": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1]

        context = session_service.validate_session(token)

        if not context:
            return jsonify({"error": "Unauthorized", "message": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.session_context = context

        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles):
    """Require the authenticated user to hold one of the given roles."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_auth was called first
            if not _is_authenticated():
                return jsonify({"error": "Unauthorized", "message": "Authentication required"}), 401

            if g.current_user.role not in roles:
                return jsonify({
                    "error": "Forbidden",
                    "message": f"Requires role: {', '.join(r.value for r in roles)}",
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
