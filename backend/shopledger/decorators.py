# Overview: Request decorators for API routes (upstream-asserted actor context).

from functools import wraps
from flask import request, jsonify, g


ACTOR_ROLES = ("STAFF", "CUSTOMER")


def _is_staff() -> bool:
    return getattr(g, "actor_role", None) == "STAFF"


def require_actor(f):
    """
    Require an actor asserted by the upstream authentication layer.

    Sets the following Flask g attributes:
    - g.actor_id:   opaque actor reference (X-Actor-Id)
    - g.actor_role: STAFF or CUSTOMER (X-Actor-Role)
    - g.is_staff:   convenience flag

    Returns 401 when either header is missing or the role is unknown.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor_id = (request.headers.get("X-Actor-Id") or "").strip()
        actor_role = (request.headers.get("X-Actor-Role") or "").strip().upper()

        if not actor_id or actor_role not in ACTOR_ROLES:
            return jsonify({"error": "Actor context required"}), 401

        g.actor_id = actor_id
        g.actor_role = actor_role
        g.is_staff = actor_role == "STAFF"

        return f(*args, **kwargs)

    return decorated_function


def require_staff(f):
    """Require the actor to be staff. Use after @require_actor."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not hasattr(g, "actor_id"):
            return jsonify({"error": "Actor context required"}), 401
        if not _is_staff():
            return jsonify({"error": "Staff access required"}), 403
        return f(*args, **kwargs)
    return decorated_function


def actor_owns(customer_id) -> bool:
    """Staff see everything; customers only records carrying their own id."""
    if _is_staff():
        return True
    return customer_id is not None and customer_id == getattr(g, "actor_id", None)
