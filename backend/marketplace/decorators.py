# Overview: Request decorators and tenant-scope helpers for API routes.

from functools import wraps

from flask import g, jsonify, request

from .errors import ForbiddenError
from .services import session_service


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require a valid bearer session and establish tenant scope.

    Sets the following Flask g attributes:
    - g.current_user: the authenticated User
    - g.is_admin: platform-wide scope
    - g.store_ids: ids of the stores the user is a member of
    - g.session_token: the plaintext token (for logout)
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if token is None:
            return jsonify({"error": "Authentication required"}), 401

        context = session_service.validate_session(token)
        if context is None:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.is_admin = context.is_admin
        g.store_ids = context.store_ids
        g.session_token = token

        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """Require the authenticated user to be a platform admin."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not hasattr(g, "current_user"):
            return jsonify({"error": "Authentication required"}), 401
        if not g.is_admin:
            return jsonify({"error": "Admin access required"}), 403
        return f(*args, **kwargs)
    return decorated_function


def resolve_store_scope(requested_store_id: int | None = None) -> list[int] | None:
    """
    Store ids the current request may touch.

    None means unrestricted (admin without a store filter). A non-admin
    asking for a store they are not a member of gets ForbiddenError.
    """
    if g.is_admin:
        return None if requested_store_id is None else [requested_store_id]

    store_ids = list(g.store_ids or [])
    if requested_store_id is None:
        return store_ids
    if requested_store_id not in store_ids:
        raise ForbiddenError("You do not have access to this store")
    return [requested_store_id]


def current_user_id() -> int | None:
    user = getattr(g, "current_user", None)
    return user.id if user is not None else None
