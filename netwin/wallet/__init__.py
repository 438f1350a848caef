"""Wallet blueprint."""

from flask import Blueprint

bp = Blueprint("wallet", __name__, url_prefix="/wallet")

from . import routes  # noqa: E402, F401
from .ledger import WalletLedger  # noqa: E402
from .services import FundingApprovalService  # noqa: E402

__all__ = ["FundingApprovalService", "WalletLedger", "routes"]
