"""``flask`` commands for ledger maintenance.

Run them from cron or by hand, e.g. ``flask --app app reconcile-transactions``.
"""

from __future__ import annotations

import click
from flask.cli import with_appcontext

from .core.store import get_store
from .errors import AppError
from .wallet.ledger import WalletLedger
from .wallet.services import FundingApprovalService


@click.command("reconcile-transactions")
@with_appcontext
def reconcile_transactions_command() -> None:
    """Sync ledger entries of decided requests that were left unsynced."""
    result = FundingApprovalService(get_store()).repair_unsynced()
    click.echo(
        f"Checked {result['checked']} requests: "
        f"{result['synced']} synced, {result['failed']} failed."
    )
    if result["failed"]:
        raise SystemExit(1)


@click.command("audit-wallet")
@click.argument("user_ids", nargs=-1, required=True)
@with_appcontext
def audit_wallet_command(user_ids: tuple[str, ...]) -> None:
    """Compare wallet balances with their completed ledger entries."""
    ledger = WalletLedger(get_store())
    inconsistent = 0
    for user_id in user_ids:
        try:
            report = ledger.audit(user_id)
        except AppError as e:
            click.echo(f"{user_id}: {e.message}", err=True)
            inconsistent += 1
            continue
        state = "ok" if report["consistent"] else "MISMATCH"
        click.echo(
            f"{user_id}: balance {report['balance']}, "
            f"ledger {report['ledgerTotal']} ({state})"
        )
        if not report["consistent"]:
            inconsistent += 1
    if inconsistent:
        raise SystemExit(1)


def init_app(app) -> None:
    """Register the commands on ``app``."""
    app.cli.add_command(reconcile_transactions_command)
    app.cli.add_command(audit_wallet_command)
