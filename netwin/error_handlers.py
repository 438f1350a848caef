"""JSON error responses for the admin API."""

from flask import Blueprint, current_app, jsonify
from flask_wtf.csrf import CSRFError
from google.api_core import exceptions as google_exceptions

from .errors import (
    AppError,
    InsufficientFundsError,
    NotFoundError,
    PreconditionFailedError,
    StoreFailureError,
    ValidationError,
)

error_handlers_bp = Blueprint("error_handlers", __name__)


@error_handlers_bp.app_errorhandler(ValidationError)
def handle_validation_error(error):
    """Handles validation errors."""
    current_app.logger.warning(f"Validation Error: {error.message}")
    return jsonify(error.to_dict()), error.status_code


@error_handlers_bp.app_errorhandler(NotFoundError)
def handle_not_found_error(error):
    """Handles not found errors."""
    current_app.logger.warning(f"Not Found Error: {error.message}")
    return jsonify(error.to_dict()), error.status_code


@error_handlers_bp.app_errorhandler(PreconditionFailedError)
def handle_precondition_failed_error(error):
    """Handles requests refused because of the resource's state.

    Nothing was written, so this is logged at info level only.
    """
    current_app.logger.info(f"Precondition Failed: {error.message}")
    return jsonify(error.to_dict()), error.status_code


@error_handlers_bp.app_errorhandler(InsufficientFundsError)
def handle_insufficient_funds_error(error):
    """Handles debits refused for lack of balance."""
    current_app.logger.warning(f"Insufficient Funds: {error.message}")
    return jsonify(error.to_dict()), error.status_code


@error_handlers_bp.app_errorhandler(StoreFailureError)
def handle_store_failure_error(error):
    """Handles failed store reads and commits."""
    current_app.logger.error(f"Store Failure: {error.message}")
    return jsonify(error.to_dict()), error.status_code


@error_handlers_bp.app_errorhandler(AppError)
def handle_app_error(error):
    """Handles generic application errors."""
    current_app.logger.error(f"Application Error: {error.message}")
    return jsonify(error.to_dict()), error.status_code


@error_handlers_bp.app_errorhandler(google_exceptions.GoogleAPICallError)
def handle_db_error(e):
    """Handles Firestore errors that escaped the store wrapper."""
    current_app.logger.error(f"Database Error: {e}")
    # Avoid exposing raw database error details to the caller
    return jsonify(StoreFailureError().to_dict()), 500


@error_handlers_bp.app_errorhandler(404)
def handle_404(e):
    """Handles generic 404 errors for routes that don't exist."""
    return jsonify(message="Not found", code="not_found"), 404


@error_handlers_bp.app_errorhandler(500)
def handle_500(e):
    """Handles unexpected server errors."""
    current_app.logger.error(f"Internal Server Error: {e}")
    return jsonify(message="Internal server error", code="internal_error"), 500


@error_handlers_bp.app_errorhandler(CSRFError)
def handle_csrf_error(e):
    """Handles missing or expired CSRF tokens."""
    current_app.logger.warning(f"CSRF Error: {e.description}")
    return jsonify(message=e.description, code="csrf_error"), 400
