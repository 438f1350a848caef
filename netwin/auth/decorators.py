"""Decorators for the auth blueprint."""

from functools import wraps

from flask import g, jsonify, session

from netwin.core.constants import DEFAULT_ACTOR


def login_required(f=None, admin_required=False):
    """Reject the request with a JSON error if the caller is not logged in.

    Usage:
    @login_required
    def protected_view():
        ...

    @login_required(admin_required=True)
    def admin_view():
        ...
    """

    def decorator(func):
        @wraps(func)
        def decorated_function(*args, **kwargs):
            if "user_id" not in session:
                return (
                    jsonify(message="Authentication required", code="unauthorized"),
                    401,
                )
            if admin_required and not session.get("is_admin"):
                return (
                    jsonify(message="Admin access required", code="forbidden"),
                    403,
                )
            return func(*args, **kwargs)

        return decorated_function

    if f:
        return decorator(f)
    return decorator


def admin_required(f):
    """Shorthand for ``login_required(admin_required=True)``."""
    return login_required(f, admin_required=True)


def current_actor():
    """Return the identity recorded as ``verifiedBy`` for the current admin."""
    user = getattr(g, "user", None) or {}
    return user.get("email") or user.get("uid") or DEFAULT_ACTOR
