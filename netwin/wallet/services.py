"""Approval workflow for pending deposits and withdrawals.

Deciding a request happens in two phases:

1. One store transaction moves the request out of PENDING and, for an
   approval, credits or debits the wallet. Either both land or neither does.
2. ``sync_transaction_status`` brings the mirrored ledger entry in line with
   the request. It runs right after phase 1 and again from the repair job
   for any request left with ``transactionSynced == False``; running it
   twice has no further effect.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from netwin.core.constants import (
    DEFAULT_ACTOR,
    DEFAULT_REJECTION_REASON,
    LEGACY_WITHDRAWALS_COLLECTION,
    PENDING_DEPOSITS_COLLECTION,
    PENDING_WITHDRAWALS_COLLECTION,
    REQUEST_APPROVED,
    REQUEST_REJECTED,
    TRANSACTIONS_COLLECTION,
    TX_STATUS_PENDING,
    TX_STATUS_REJECTED,
)
from netwin.errors import (
    NotFoundError,
    NotPendingError,
    PreconditionFailedError,
    StoreFailureError,
    ValidationError,
)
from netwin.utils import money_to_store, utcnow

from .ledger import WalletLedger, newest_first
from .models import DEPOSIT, REQUEST_KINDS, WITHDRAWAL, FundingRequest, LedgerEntry

if TYPE_CHECKING:
    from netwin.core.store import DocumentStore, StoreTransaction

logger = logging.getLogger(__name__)

COLLECTIONS = {
    DEPOSIT: (PENDING_DEPOSITS_COLLECTION,),
    WITHDRAWAL: (PENDING_WITHDRAWALS_COLLECTION, LEGACY_WITHDRAWALS_COLLECTION),
}


def _check_kind(kind: str) -> str:
    if kind not in REQUEST_KINDS:
        raise NotFoundError(f"Unknown request type: {kind}")
    return kind


class FundingApprovalService:
    """Approves and rejects funding requests and keeps the ledger in step."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store
        self.ledger = WalletLedger(store)

    def locate(self, kind: str, request_id: str) -> FundingRequest:
        """Find a request, checking each collection it may live in."""
        for collection in COLLECTIONS[_check_kind(kind)]:
            doc = self.store.get(collection, request_id)
            if doc is not None:
                return FundingRequest.from_document(doc, kind, collection)
        raise NotFoundError(f"{kind.capitalize()} request not found")

    def _decide(
        self,
        kind: str,
        request_id: str,
        approve: bool,
        actor: str,
        reason: str | None = None,
    ) -> dict[str, Any]:
        located = self.locate(kind, request_id)

        def _run(txn: StoreTransaction) -> tuple[FundingRequest, Decimal | None]:
            doc = txn.get(located.collection, request_id)
            if doc is None:
                raise NotFoundError(f"{kind.capitalize()} request not found")
            request = FundingRequest.from_document(doc, kind, located.collection)
            if not request.is_pending:
                raise NotPendingError(
                    f"{kind.capitalize()} request is already {request.status}"
                )

            new_balance = None
            if approve:
                if not request.user_id:
                    raise ValidationError("Request has no user")
                if request.amount <= 0:
                    raise ValidationError("Request amount must be positive")
                user = self.ledger.read_user(txn, request.user_id)
                if kind == DEPOSIT:
                    new_balance = self.ledger.apply_credit(txn, user, request.amount)
                else:
                    new_balance = self.ledger.apply_debit(txn, user, request.amount)

            now = utcnow()
            update: dict[str, Any] = {
                "status": REQUEST_APPROVED if approve else REQUEST_REJECTED,
                "verifiedAt": now,
                "verifiedBy": actor,
                "transactionSynced": False,
                "updatedAt": now,
            }
            if not approve:
                update["rejectionReason"] = reason or DEFAULT_REJECTION_REASON
            txn.update(located.collection, request_id, update)
            return request, new_balance

        request, new_balance = self.store.run_transaction(_run)
        logger.info(
            f"{kind.capitalize()} {request_id} of {request.amount} for user "
            f"{request.user_id} {'approved' if approve else 'rejected'} by {actor}"
        )

        try:
            synced = self.sync_transaction_status(kind, request_id)["synced"]
        except StoreFailureError:
            logger.warning(
                f"Ledger sync for {kind} {request_id} failed; left for the repair job"
            )
            synced = False

        result: dict[str, Any] = {
            "success": True,
            "message": (
                f"{kind.capitalize()} {'approved' if approve else 'rejected'} "
                "successfully"
            ),
            "transactionSynced": synced,
        }
        if new_balance is not None:
            result["newBalance"] = money_to_store(new_balance)
        return result

    def approve_deposit(self, request_id: str, actor: str = DEFAULT_ACTOR) -> dict[str, Any]:
        """Approve a pending deposit and credit the user's wallet."""
        return self._decide(DEPOSIT, request_id, True, actor)

    def reject_deposit(
        self, request_id: str, actor: str = DEFAULT_ACTOR, reason: str | None = None
    ) -> dict[str, Any]:
        """Reject a pending deposit. The wallet is not touched."""
        return self._decide(DEPOSIT, request_id, False, actor, reason)

    def approve_withdrawal(
        self, request_id: str, actor: str = DEFAULT_ACTOR
    ) -> dict[str, Any]:
        """Approve a pending withdrawal and debit the user's wallet.

        Raises InsufficientFundsError, leaving the request PENDING, if the
        balance does not cover the amount.
        """
        return self._decide(WITHDRAWAL, request_id, True, actor)

    def reject_withdrawal(
        self, request_id: str, actor: str = DEFAULT_ACTOR, reason: str | None = None
    ) -> dict[str, Any]:
        """Reject a pending withdrawal. The wallet is not touched."""
        return self._decide(WITHDRAWAL, request_id, False, actor, reason)

    @staticmethod
    def _find_mirror(
        txn: StoreTransaction, request: FundingRequest
    ) -> dict[str, Any] | None:
        if request.transaction_id:
            doc = txn.get(TRANSACTIONS_COLLECTION, request.transaction_id)
            if doc is not None:
                return doc
        linked = txn.query(TRANSACTIONS_COLLECTION, requestId=request.id)
        if not linked and request.kind == DEPOSIT:
            linked = txn.query(TRANSACTIONS_COLLECTION, depositRequestId=request.id)
        if linked:
            return linked[0]
        candidates = txn.query(
            TRANSACTIONS_COLLECTION,
            userId=request.user_id,
            type=request.ledger_type,
            amount=money_to_store(request.amount),
            status=TX_STATUS_PENDING,
        )
        # An entry already linked to another request is not ours.
        for doc in candidates:
            if doc.get("requestId") in (None, request.id):
                return doc
        return None

    def sync_transaction_status(self, kind: str, request_id: str) -> dict[str, Any]:
        """Make the request's ledger entry reflect the request's status.

        Creates the entry if no match exists. A request already marked as
        synced is left alone.
        """
        located = self.locate(kind, request_id)
        new_entry_id = self.store.new_id(TRANSACTIONS_COLLECTION)

        def _run(txn: StoreTransaction) -> dict[str, Any]:
            doc = txn.get(located.collection, request_id)
            if doc is None:
                raise NotFoundError(f"{kind.capitalize()} request not found")
            request = FundingRequest.from_document(doc, kind, located.collection)
            target = request.ledger_status
            if target is None:
                raise PreconditionFailedError(
                    f"{kind.capitalize()} request has not been decided yet"
                )
            if request.transaction_synced:
                return {
                    "transactionId": request.transaction_id,
                    "status": target,
                    "synced": True,
                    "changed": False,
                }

            mirror = self._find_mirror(txn, request)
            now = utcnow()
            if mirror is None:
                entry = LedgerEntry(
                    id=new_entry_id,
                    user_id=request.user_id,
                    type=request.ledger_type,
                    amount=request.amount,
                    status=target,
                    description=f"{kind.capitalize()} request {request.id}",
                    request_id=request.id,
                    created_at=now,
                )
                txn.set(TRANSACTIONS_COLLECTION, entry.id, entry.to_document())
                transaction_id = entry.id
                created = True
            else:
                transaction_id = mirror["id"]
                update: dict[str, Any] = {
                    "status": target,
                    "requestId": request.id,
                    "verifiedAt": request.verified_at,
                    "verifiedBy": request.verified_by,
                    "updatedAt": now,
                }
                if target == TX_STATUS_REJECTED:
                    update["rejectionReason"] = (
                        request.rejection_reason or DEFAULT_REJECTION_REASON
                    )
                txn.update(TRANSACTIONS_COLLECTION, transaction_id, update)
                created = False

            txn.update(
                located.collection,
                request_id,
                {"transactionId": transaction_id, "transactionSynced": True},
            )
            return {
                "transactionId": transaction_id,
                "status": target,
                "synced": True,
                "changed": True,
                "created": created,
            }

        result = self.store.run_transaction(_run)
        if result.get("created"):
            logger.warning(
                f"No ledger entry matched {kind} {request_id}; "
                f"created {result['transactionId']}"
            )
        elif result["changed"]:
            logger.info(
                f"Ledger entry {result['transactionId']} for {kind} {request_id} "
                f"set to {result['status']}"
            )
        return result

    def repair_unsynced(self) -> dict[str, int]:
        """Sync every decided request whose ledger entry was left behind."""
        checked = synced = failed = 0
        for kind, collections in COLLECTIONS.items():
            for collection in collections:
                for status in (REQUEST_APPROVED, REQUEST_REJECTED):
                    docs = self.store.query(
                        collection, status=status, transactionSynced=False
                    )
                    for doc in docs:
                        checked += 1
                        try:
                            self.sync_transaction_status(kind, doc["id"])
                        except StoreFailureError:
                            logger.error(f"Repair of {kind} {doc['id']} failed")
                            failed += 1
                            continue
                        synced += 1
        logger.info(
            f"Ledger repair checked {checked} requests: {synced} synced, {failed} failed"
        )
        return {"checked": checked, "synced": synced, "failed": failed}

    def list_requests(
        self, kind: str, status: str | None = None, limit: int | None = None
    ) -> list[dict[str, Any]]:
        """List requests of one kind, newest first."""
        filters = {"status": status.upper()} if status else {}
        requests = []
        for collection in COLLECTIONS[_check_kind(kind)]:
            requests.extend(
                FundingRequest.from_document(doc, kind, collection).to_dict()
                for doc in self.store.query(collection, **filters)
            )
        requests = newest_first(requests)
        return requests[:limit] if limit is not None else requests
