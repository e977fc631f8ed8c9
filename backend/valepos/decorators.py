# Overview: Request decorators establishing the acting user for API routes.

from functools import wraps
from flask import request, jsonify, g

ROLE_SELLER = "seller"
ROLE_CASHIER = "cashier"
ROLE_MANAGER = "manager"
ROLE_ADMIN = "admin"
ROLES = (ROLE_SELLER, ROLE_CASHIER, ROLE_MANAGER, ROLE_ADMIN)


def require_actor(f):
    """
    Require an authenticated actor.

    Authentication happens upstream; the gateway forwards the result as:
    - X-Actor-Id: integer user id
    - X-Actor-Role: seller | cashier | manager | admin

    Sets g.actor_id and g.actor_role. Returns 401 when either is missing or
    malformed.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw_id = request.headers.get("X-Actor-Id", "").strip()
        role = request.headers.get("X-Actor-Role", "").strip().lower()

        if not raw_id.isdigit():
            return jsonify({"error": "AUTHENTICATION_REQUIRED", "message": "Actor id required"}), 401
        if role not in ROLES:
            return jsonify({"error": "AUTHENTICATION_REQUIRED", "message": "Actor role required"}), 401

        g.actor_id = int(raw_id)
        g.actor_role = role
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """
    Require the actor to hold one of roles. Admin passes every check.

    Must be stacked under @require_actor.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            role = getattr(g, "actor_role", None)
            if role is None:
                return jsonify({"error": "AUTHENTICATION_REQUIRED", "message": "Actor required"}), 401
            if role != ROLE_ADMIN and role not in roles:
                return jsonify({
                    "error": "PERMISSION_DENIED",
                    "message": "Role not allowed",
                    "details": {"role": role, "allowed": list(roles)},
                }), 403
            return f(*args, **kwargs)
        return decorated_function
    return decorator
