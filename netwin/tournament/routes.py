"""Routes for the tournament blueprint."""

from __future__ import annotations

from typing import Any

from flask import current_app, jsonify, request

from netwin.auth.decorators import admin_required, current_actor
from netwin.core.store import get_store
from netwin.errors import ValidationError

from . import bp
from .services import PrizeDistributor, TournamentService


def _distributor() -> PrizeDistributor:
    return PrizeDistributor.from_config(get_store(), current_app.config)


def _int_arg(name: str, default: int) -> int:
    try:
        return int(request.args.get(name, default))
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid {name}") from e


@bp.route("/<string:tournament_id>/prize-distribution", methods=["GET"])
@admin_required
def prize_distribution(tournament_id: str) -> Any:
    """Show the prize calculation and each player's expected reward."""
    return jsonify(_distributor().preview(tournament_id))


@bp.route("/<string:tournament_id>/distribute-prizes", methods=["POST"])
@admin_required
def distribute_prizes(tournament_id: str) -> Any:
    """Pay out a completed tournament's prizes."""
    result = _distributor().distribute(tournament_id, actor=current_actor())
    return jsonify(
        success=True, message="Prizes distributed successfully", **result
    )


@bp.route("/<string:tournament_id>/start", methods=["POST"])
@admin_required
def start_tournament(tournament_id: str) -> Any:
    """Move an upcoming tournament to live."""
    result = TournamentService.start_tournament(tournament_id)
    return jsonify(success=True, message="Tournament started", **result)


@bp.route("/<string:tournament_id>/complete", methods=["POST"])
@admin_required
def complete_tournament(tournament_id: str) -> Any:
    """Move a live tournament to completed."""
    result = TournamentService.complete_tournament(tournament_id)
    return jsonify(success=True, message="Tournament completed", **result)


@bp.route("/<string:tournament_id>/results", methods=["POST"])
@admin_required
def save_results(tournament_id: str) -> Any:
    """Record positions and kills for a tournament's registrations."""
    payload = request.get_json(silent=True)
    if isinstance(payload, dict):
        payload = payload.get("results")
    updated = TournamentService.save_results(tournament_id, payload)
    return jsonify(success=True, message="Results saved successfully", updated=updated)


@bp.route("/registrations/<string:registration_id>/verify", methods=["POST"])
@admin_required
def verify_result(registration_id: str) -> Any:
    """Mark a registration's result as verified."""
    payload = request.get_json(silent=True) or {}
    result = TournamentService.verify_result(
        registration_id,
        verified=bool(payload.get("verified", True)),
        actor=current_actor(),
    )
    return jsonify(success=True, **result)


@bp.route("/<string:tournament_id>/registrations", methods=["GET"])
@admin_required
def list_registrations(tournament_id: str) -> Any:
    """List a tournament's registrations."""
    return jsonify(registrations=TournamentService.list_registrations(tournament_id))


@bp.route("/<string:tournament_id>/transactions", methods=["GET"])
@admin_required
def list_transactions(tournament_id: str) -> Any:
    """Page through the ledger entries of a tournament."""
    result = TournamentService.list_transactions(
        tournament_id,
        tx_type=request.args.get("type") or None,
        page=_int_arg("page", 1),
        limit=_int_arg("limit", 20),
    )
    return jsonify(result)
