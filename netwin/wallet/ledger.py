"""Wallet balance mutations and the ledger entries that mirror them.

``walletBalance`` on a user document is only ever written from this module.
Single credits and debits run inside a store transaction so concurrent
mutations of one wallet are serialised; credits queued onto a batch or a
transaction use the store's atomic increment.
"""

from __future__ import annotations

import datetime
import logging
from collections.abc import Callable, Iterable
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from netwin.core.constants import (
    TRANSACTIONS_COLLECTION,
    TX_CREDIT,
    TX_STATUS_COMPLETED,
    USERS_COLLECTION,
)
from netwin.errors import (
    InsufficientFundsError,
    NotFoundError,
    StoreFailureError,
    ValidationError,
)
from netwin.utils import money_to_store, parse_positive_amount, to_money, utcnow

from .models import LedgerEntry

if TYPE_CHECKING:
    from netwin.core.store import DocumentStore, StoreBatch, StoreTransaction

logger = logging.getLogger(__name__)

_EPOCH = datetime.datetime.min.replace(tzinfo=datetime.timezone.utc)


def newest_first(docs: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Sort documents by ``createdAt``, newest first; undated ones last."""
    return sorted(docs, key=lambda d: d.get("createdAt") or _EPOCH, reverse=True)


class WalletLedger:
    """Credit/debit primitives over user wallets."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    @staticmethod
    def read_user(txn: StoreTransaction, user_id: str) -> dict[str, Any]:
        """Read a user inside a transaction, raising if it does not exist."""
        user = txn.get(USERS_COLLECTION, user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found.")
        return user

    @staticmethod
    def apply_credit(
        txn: StoreTransaction, user: dict[str, Any], amount: Decimal
    ) -> Decimal:
        """Write ``user``'s balance plus ``amount``. ``user`` must be read in ``txn``."""
        before = to_money(user.get("walletBalance"))
        after = before + amount
        txn.update(
            USERS_COLLECTION,
            user["id"],
            {"walletBalance": money_to_store(after), "updatedAt": utcnow()},
        )
        logger.info(
            f"Credit {amount} to user {user['id']}: balance {before} -> {after}"
        )
        return after

    @staticmethod
    def apply_debit(
        txn: StoreTransaction, user: dict[str, Any], amount: Decimal
    ) -> Decimal:
        """Write ``user``'s balance minus ``amount``, refusing to go negative."""
        before = to_money(user.get("walletBalance"))
        after = before - amount
        if after < 0:
            raise InsufficientFundsError(
                f"Insufficient balance. Current balance: {before}, "
                f"requested: {amount}."
            )
        txn.update(
            USERS_COLLECTION,
            user["id"],
            {"walletBalance": money_to_store(after), "updatedAt": utcnow()},
        )
        logger.info(
            f"Debit {amount} from user {user['id']}: balance {before} -> {after}"
        )
        return after

    def queue_credit(
        self,
        writer: StoreBatch | StoreTransaction,
        user_id: str,
        amount: Decimal,
    ) -> None:
        """Add an atomic increment of ``user_id``'s balance to a batch or transaction."""
        writer.update(
            USERS_COLLECTION,
            user_id,
            {
                "walletBalance": self.store.increment(money_to_store(amount)),
                "updatedAt": utcnow(),
            },
        )

    def _mutate(
        self,
        user_id: str,
        amount: Any,
        apply: Callable[[StoreTransaction, dict[str, Any], Decimal], Decimal],
        entry: LedgerEntry | None,
    ) -> Decimal:
        value = parse_positive_amount(amount)
        if entry is not None and not entry.id:
            entry.id = self.store.new_id(TRANSACTIONS_COLLECTION)

        def _run(txn: StoreTransaction) -> Decimal:
            user = self.read_user(txn, user_id)
            new_balance = apply(txn, user, value)
            if entry is not None:
                txn.set(TRANSACTIONS_COLLECTION, entry.id, entry.to_document())
            return new_balance

        return self.store.run_transaction(_run)

    def credit(
        self, user_id: str, amount: Any, entry: LedgerEntry | None = None
    ) -> Decimal:
        """Add ``amount`` to a wallet and return the new balance.

        When ``entry`` is given it is written in the same transaction.
        """
        return self._mutate(user_id, amount, self.apply_credit, entry)

    def debit(
        self, user_id: str, amount: Any, entry: LedgerEntry | None = None
    ) -> Decimal:
        """Take ``amount`` from a wallet and return the new balance.

        Raises InsufficientFundsError, writing nothing, if the balance would
        go negative.
        """
        return self._mutate(user_id, amount, self.apply_debit, entry)

    def balance(self, user_id: str) -> Decimal:
        """Return a user's wallet balance, raising NotFoundError if unknown."""
        user = self.store.get(USERS_COLLECTION, user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found.")
        return to_money(user.get("walletBalance"))

    def grant_bonus(
        self, user_id: str, amount: Any, reason: str, granted_by: str
    ) -> dict[str, Any]:
        """Credit a manual bonus and record it in the ledger."""
        value = parse_positive_amount(amount)
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("Reason is required")

        entry = LedgerEntry(
            user_id=user_id,
            type=TX_CREDIT,
            amount=value,
            status=TX_STATUS_COMPLETED,
            description=f"Admin Bonus: {reason}",
            created_at=utcnow(),
            extra={"grantedBy": granted_by},
        )
        new_balance = self.credit(user_id, value, entry)
        logger.info(f"Bonus of {value} granted to user {user_id} by {granted_by}")
        return {
            "userId": user_id,
            "amount": money_to_store(value),
            "newBalance": money_to_store(new_balance),
            "transactionId": entry.id,
        }

    def grant_bulk_bonus(
        self,
        user_ids: Iterable[str],
        amount: Any,
        description: str,
        granted_by: str,
    ) -> dict[str, Any]:
        """Grant the same bonus to several users, each independently.

        One user's failure does not undo another's grant; the outcome of each
        is reported in ``results``.
        """
        ids = [str(uid) for uid in dict.fromkeys(user_ids) if uid]
        if not ids:
            raise ValidationError("At least one user is required")
        value = parse_positive_amount(amount)
        if not (description or "").strip():
            raise ValidationError("Description is required")

        results = []
        for user_id in ids:
            try:
                granted = self.grant_bonus(user_id, value, description, granted_by)
            except (NotFoundError, StoreFailureError) as e:
                logger.warning(f"Bulk bonus failed for user {user_id}: {e.message}")
                results.append({"userId": user_id, "success": False, "error": e.message})
                continue
            results.append({"success": True, **granted})

        successful = sum(1 for r in results if r["success"])
        return {
            "results": results,
            "summary": {
                "total": len(results),
                "successful": successful,
                "failed": len(results) - successful,
            },
        }

    def entries_for_user(self, user_id: str, limit: int | None = None) -> list[dict[str, Any]]:
        """Return a user's ledger entries, newest first."""
        docs = newest_first(self.store.query(TRANSACTIONS_COLLECTION, userId=user_id))
        return docs[:limit] if limit is not None else docs

    def audit(self, user_id: str) -> dict[str, Any]:
        """Compare a wallet balance with the sum of its completed ledger entries."""
        balance = self.balance(user_id)
        entries = [
            LedgerEntry.from_document(doc)
            for doc in self.store.query(
                TRANSACTIONS_COLLECTION, userId=user_id, status=TX_STATUS_COMPLETED
            )
        ]
        ledger_total = sum((e.signed_amount for e in entries), Decimal("0.00"))
        difference = balance - ledger_total
        if difference:
            logger.warning(
                f"Wallet of user {user_id} is off by {difference}: "
                f"balance {balance}, ledger {ledger_total}"
            )
        return {
            "userId": user_id,
            "balance": money_to_store(balance),
            "ledgerTotal": money_to_store(ledger_total),
            "difference": money_to_store(difference),
            "entries": len(entries),
            "consistent": difference == 0,
        }
