"""Routes for the user blueprint: bonuses and wallet history."""

from __future__ import annotations

from typing import Any

from flask import jsonify, request

from netwin.auth.decorators import admin_required, current_actor
from netwin.core.store import get_store
from netwin.errors import ValidationError
from netwin.wallet.ledger import WalletLedger

from . import bp


def _payload() -> dict[str, Any]:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError("A JSON body is required")
    return payload


@bp.route("/<string:user_id>/add-bonus", methods=["POST"])
@admin_required
def add_bonus(user_id: str) -> Any:
    """Credit a manual bonus to one user."""
    payload = _payload()
    result = WalletLedger(get_store()).grant_bonus(
        user_id,
        payload.get("amount"),
        payload.get("reason") or "",
        granted_by=current_actor(),
    )
    return jsonify(success=True, message="Bonus added successfully", **result)


@bp.route("/bulk-add-bonus", methods=["POST"])
@admin_required
def bulk_add_bonus() -> Any:
    """Credit the same bonus to several users."""
    payload = _payload()
    user_ids = payload.get("userIds")
    if not isinstance(user_ids, list):
        raise ValidationError("userIds must be a list")
    result = WalletLedger(get_store()).grant_bulk_bonus(
        user_ids,
        payload.get("amount"),
        payload.get("description") or "",
        granted_by=current_actor(),
    )
    return jsonify(success=True, data=result)


@bp.route("/<string:user_id>/transactions", methods=["GET"])
@admin_required
def user_transactions(user_id: str) -> Any:
    """List a user's ledger entries, newest first."""
    try:
        limit = int(request.args["limit"]) if "limit" in request.args else None
    except ValueError as e:
        raise ValidationError("Invalid limit") from e
    transactions = WalletLedger(get_store()).entries_for_user(user_id, limit)
    return jsonify(transactions=transactions)


@bp.route("/<string:user_id>/wallet-audit", methods=["GET"])
@admin_required
def wallet_audit(user_id: str) -> Any:
    """Compare a user's balance with their completed ledger entries."""
    return jsonify(WalletLedger(get_store()).audit(user_id))
