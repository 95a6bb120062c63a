# Overview: Request decorators for API routes; actor context supplied by the upstream gateway.

from functools import wraps
from flask import request, jsonify, g

from .errors import ForbiddenError


ROLE_CUSTOMER = "CUSTOMER"
ROLE_STAFF = "STAFF"
ROLE_ADMIN = "ADMIN"

VALID_ROLES = {ROLE_CUSTOMER, ROLE_STAFF, ROLE_ADMIN}


def _has_actor() -> bool:
    return hasattr(g, 'actor_id') and hasattr(g, 'actor_role')


def require_actor(f):
    """
    Require an authenticated actor and establish request context.

    Authentication happens upstream; the gateway forwards the result as:
    - X-Actor-Id: integer id of the customer or staff member
    - X-Actor-Role: CUSTOMER, STAFF or ADMIN

    Sets g.actor_id and g.actor_role. Returns 401 if either header is
    missing or malformed.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw_id = request.headers.get("X-Actor-Id", "").strip()
        role = request.headers.get("X-Actor-Role", "").strip().upper()

        if not raw_id or not role:
            return jsonify({"error": {
                "kind": "authentication_required",
                "message": "Authentication required",
                "details": {},
            }}), 401

        if not raw_id.isdigit() or role not in VALID_ROLES:
            return jsonify({"error": {
                "kind": "authentication_required",
                "message": "Invalid actor context",
                "details": {},
            }}), 401

        g.actor_id = int(raw_id)
        g.actor_role = role

        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """
    Require one of the given roles. ADMIN passes every role check.
    """
    allowed = set(roles)

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_actor was called first
            if not _has_actor():
                return jsonify({"error": {
                    "kind": "authentication_required",
                    "message": "Authentication required",
                    "details": {},
                }}), 401

            if g.actor_role != ROLE_ADMIN and g.actor_role not in allowed:
                return jsonify({"error": {
                    "kind": "forbidden",
                    "message": "Permission denied",
                    "details": {"required_roles": sorted(allowed)},
                }}), 403

            return f(*args, **kwargs)

        return decorated_function

    return decorator


def is_staff() -> bool:
    return _has_actor() and g.actor_role in (ROLE_STAFF, ROLE_ADMIN)


def ensure_owner(customer_id: int) -> None:
    """Customers may only act on their own quotes and orders; staff see everything."""
    if g.actor_role == ROLE_CUSTOMER and customer_id != g.actor_id:
        raise ForbiddenError("Not your record", details={"customer_id": customer_id})
