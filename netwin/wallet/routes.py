"""Routes for the wallet blueprint."""

from __future__ import annotations

from typing import Any

from flask import jsonify, request

from netwin.auth.decorators import admin_required, current_actor
from netwin.core.store import get_store

from . import bp
from .models import DEPOSIT, WITHDRAWAL
from .services import FundingApprovalService

# URL segment to request kind.
KINDS = {"deposits": DEPOSIT, "withdrawals": WITHDRAWAL}


def _service() -> FundingApprovalService:
    return FundingApprovalService(get_store())


def _reason() -> str | None:
    payload = request.get_json(silent=True) or {}
    return payload.get("reason") or payload.get("rejectionReason") or None


@bp.route("/deposits", methods=["GET"])
@admin_required
def list_deposits() -> Any:
    """List deposit requests, optionally filtered by ``status``."""
    return jsonify(
        deposits=_service().list_requests(DEPOSIT, request.args.get("status"))
    )


@bp.route("/withdrawals", methods=["GET"])
@admin_required
def list_withdrawals() -> Any:
    """List withdrawal requests, optionally filtered by ``status``."""
    return jsonify(
        withdrawals=_service().list_requests(WITHDRAWAL, request.args.get("status"))
    )


@bp.route("/deposits/<string:request_id>/approve", methods=["POST"])
@admin_required
def approve_deposit(request_id: str) -> Any:
    """Approve a deposit and credit the wallet."""
    return jsonify(_service().approve_deposit(request_id, actor=current_actor()))


@bp.route("/deposits/<string:request_id>/reject", methods=["POST"])
@admin_required
def reject_deposit(request_id: str) -> Any:
    """Reject a deposit."""
    return jsonify(
        _service().reject_deposit(request_id, actor=current_actor(), reason=_reason())
    )


@bp.route("/withdrawals/<string:request_id>/approve", methods=["POST"])
@admin_required
def approve_withdrawal(request_id: str) -> Any:
    """Approve a withdrawal and debit the wallet."""
    return jsonify(_service().approve_withdrawal(request_id, actor=current_actor()))


@bp.route("/withdrawals/<string:request_id>/reject", methods=["POST"])
@admin_required
def reject_withdrawal(request_id: str) -> Any:
    """Reject a withdrawal."""
    return jsonify(
        _service().reject_withdrawal(
            request_id, actor=current_actor(), reason=_reason()
        )
    )


@bp.route("/<string:kind>/<string:request_id>/sync", methods=["POST"])
@admin_required
def sync_transaction(kind: str, request_id: str) -> Any:
    """Bring a decided request's ledger entry up to date."""
    if kind not in KINDS:
        return jsonify(message="Unknown request type", code="not_found"), 404
    result = _service().sync_transaction_status(KINDS[kind], request_id)
    return jsonify(success=True, **result)
