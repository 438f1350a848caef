"""Data models for the wallet blueprint."""

from __future__ import annotations

import datetime
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

from netwin.core.constants import (
    REQUEST_APPROVED,
    REQUEST_PENDING,
    REQUEST_REJECTED,
    TX_DEPOSIT,
    TX_STATUS_COMPLETED,
    TX_STATUS_PENDING,
    TX_STATUS_REJECTED,
    TX_WITHDRAWAL,
)
from netwin.utils import money_to_store, to_money

DEPOSIT = "deposit"
WITHDRAWAL = "withdrawal"
REQUEST_KINDS = (DEPOSIT, WITHDRAWAL)

# Ledger entry types that reduce a wallet; everything else adds to it.
DEBIT_TYPES = frozenset({TX_WITHDRAWAL})


@dataclass
class FundingRequest:
    """A pending deposit or withdrawal raised by a user."""

    id: str
    kind: str
    collection: str
    user_id: str
    amount: Decimal
    status: str = REQUEST_PENDING
    verified_at: Optional[datetime.datetime] = None
    verified_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    transaction_id: Optional[str] = None
    transaction_synced: bool = False
    created_at: Optional[datetime.datetime] = None

    @classmethod
    def from_document(
        cls, doc: dict[str, Any], kind: str, collection: str
    ) -> FundingRequest:
        """Build a request from a store document."""
        return cls(
            id=doc["id"],
            kind=kind,
            collection=collection,
            user_id=doc.get("userId") or "",
            amount=to_money(doc.get("amount")),
            status=(doc.get("status") or REQUEST_PENDING).upper(),
            verified_at=doc.get("verifiedAt"),
            verified_by=doc.get("verifiedBy"),
            rejection_reason=doc.get("rejectionReason"),
            transaction_id=doc.get("transactionId"),
            transaction_synced=bool(doc.get("transactionSynced")),
            created_at=doc.get("createdAt"),
        )

    @property
    def is_pending(self) -> bool:
        return self.status == REQUEST_PENDING

    @property
    def ledger_type(self) -> str:
        return TX_DEPOSIT if self.kind == DEPOSIT else TX_WITHDRAWAL

    @property
    def ledger_status(self) -> Optional[str]:
        """The status the mirrored ledger entry should have, if decided."""
        if self.status == REQUEST_APPROVED:
            return TX_STATUS_COMPLETED
        if self.status == REQUEST_REJECTED:
            return TX_STATUS_REJECTED
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "userId": self.user_id,
            "amount": money_to_store(self.amount),
            "status": self.status,
            "verifiedAt": self.verified_at,
            "verifiedBy": self.verified_by,
            "rejectionReason": self.rejection_reason,
            "transactionId": self.transaction_id,
            "transactionSynced": self.transaction_synced,
            "createdAt": self.created_at,
        }


@dataclass
class LedgerEntry:
    """A record in the ``transactions`` collection."""

    user_id: str
    type: str
    amount: Decimal
    status: str = TX_STATUS_PENDING
    description: str = ""
    tournament_id: Optional[str] = None
    request_id: Optional[str] = None
    id: str = ""
    created_at: Optional[datetime.datetime] = None
    extra: Optional[dict[str, Any]] = None

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> LedgerEntry:
        """Build an entry from a store document."""
        return cls(
            id=doc["id"],
            user_id=doc.get("userId") or "",
            type=doc.get("type") or "",
            amount=to_money(doc.get("amount")),
            status=doc.get("status") or TX_STATUS_PENDING,
            description=doc.get("description") or "",
            tournament_id=doc.get("tournamentId"),
            request_id=doc.get("requestId") or doc.get("depositRequestId"),
            created_at=doc.get("createdAt"),
        )

    @property
    def signed_amount(self) -> Decimal:
        """The amount as it affects the wallet balance."""
        return -self.amount if self.type in DEBIT_TYPES else self.amount

    def to_document(self) -> dict[str, Any]:
        """Return the document written to the store."""
        data: dict[str, Any] = {
            "userId": self.user_id,
            "type": self.type,
            "amount": money_to_store(self.amount),
            "status": self.status,
            "description": self.description,
            "createdAt": self.created_at,
            "updatedAt": self.created_at,
        }
        if self.tournament_id is not None:
            data["tournamentId"] = self.tournament_id
        if self.request_id is not None:
            data["requestId"] = self.request_id
        if self.extra:
            data.update(self.extra)
        return data

    def to_dict(self) -> dict[str, Any]:
        data = self.to_document()
        data["id"] = self.id
        return data
