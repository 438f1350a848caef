"""Routes for the auth blueprint."""

from flask import g, jsonify
from flask_wtf.csrf import generate_csrf

from . import bp
from .decorators import login_required


@bp.route("/csrf-token", methods=["GET"])
def csrf_token():
    """Hand the admin client a token to send back in ``X-CSRFToken``."""
    return jsonify(csrfToken=generate_csrf())


@bp.route("/me", methods=["GET"])
@login_required
def me():
    """Return the logged-in user."""
    user = g.user or {}
    return jsonify(
        uid=user.get("uid"),
        email=user.get("email"),
        isAdmin=bool(user.get("isAdmin")),
    )
