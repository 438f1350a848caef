"""Common utilities for tests."""

from __future__ import annotations

import threading
from typing import Any, Callable, Optional, TypeVar
from unittest.mock import patch

from google.api_core import exceptions as google_exceptions
from mockfirestore import CollectionReference, MockFirestore, Query
from mockfirestore.document import DocumentReference

from netwin import create_app
from netwin.core.store import DocumentStore, StoreBatch
from netwin.errors import StoreFailureError

T = TypeVar("T")

ADMIN_ID = "admin1"
ADMIN_EMAIL = "admin@netwin.test"


class MockIncrement:
    """Stand-in for ``firestore.Increment``."""

    def __init__(self, value: Any) -> None:
        self.value = value


def patch_mockfirestore() -> None:
    """Apply monkeypatches to mockfirestore to support FieldFilter, equality and Increment."""

    def collection_where(
        self: Any,
        field_path: Optional[str] = None,
        op_string: Optional[str] = None,
        value: Any = None,
        filter: Any = None,
    ) -> Any:
        if filter:
            return self._where(filter.field_path, filter.op_string, filter.value)
        return self._where(field_path, op_string, value)

    if not hasattr(CollectionReference, "_where"):
        CollectionReference._where = CollectionReference.where
        CollectionReference.where = collection_where

    def query_where(
        self: Any,
        field_path: Optional[str] = None,
        op_string: Optional[str] = None,
        value: Any = None,
        filter: Any = None,
    ) -> Any:
        if filter:
            return self._where(filter.field_path, filter.op_string, filter.value)
        return self._where(field_path, op_string, value)

    if not hasattr(Query, "_where"):
        Query._where = Query.where
        Query.where = query_where

    def doc_ref_eq(self: Any, other: Any) -> bool:
        if not isinstance(other, DocumentReference):
            return False
        return self._path == other._path

    if not hasattr(DocumentReference, "_orig_eq"):
        DocumentReference._orig_eq = DocumentReference.__eq__
        DocumentReference.__eq__ = doc_ref_eq
        DocumentReference.__hash__ = lambda self: hash(tuple(self._path))

    if not hasattr(DocumentReference, "_orig_update"):
        DocumentReference._orig_update = DocumentReference.update

        def patched_update(self: Any, data: dict[str, Any]) -> Any:
            # Firestore replaces map fields on update; mockfirestore merges them.
            snapshot = self.get()
            if not snapshot.exists:
                return self._orig_update(data)
            new_data = snapshot.to_dict()
            for k, v in data.items():
                if isinstance(v, MockIncrement):
                    new_data[k] = (new_data.get(k) or 0) + v.value
                else:
                    new_data[k] = v
            return self.set(new_data)

        DocumentReference.update = patched_update


class MockBatch:
    """All-or-nothing write batch over a MockStore."""

    def __init__(self, store: MockStore) -> None:
        self.store = store
        self.writes: list[tuple[str, Any, Any, bool]] = []

    def set(self, ref: Any, data: Any, merge: bool = False) -> None:
        self.writes.append(("set", ref, data, merge))

    def update(self, ref: Any, data: Any) -> None:
        self.writes.append(("update", ref, data, False))

    def delete(self, ref: Any) -> None:
        self.writes.append(("delete", ref, None, False))

    def commit(self) -> None:
        with self.store.lock:
            for op, ref, _, _ in self.writes:
                if op == "update" and not ref.get().exists:
                    raise google_exceptions.NotFound(f"No document to update: {ref.id}")
            for op, ref, data, merge in self.writes:
                if op == "set":
                    ref.set(data, merge=merge)
                elif op == "update":
                    ref.update(data)
                else:
                    ref.delete()


class MockTransaction:
    """Buffers writes until commit and enforces reads-before-writes."""

    def __init__(self, store: MockStore) -> None:
        self.store = store
        self.writes: list[tuple[str, str, str, Any, bool]] = []

    def _check_read(self) -> None:
        if self.writes:
            raise AssertionError("Transactions must read before they write")

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        self._check_read()
        return self.store.get(collection, doc_id)

    def query(self, collection: str, **equals: Any) -> list[dict[str, Any]]:
        self._check_read()
        return self.store.query(collection, **equals)

    def set(
        self, collection: str, doc_id: str, data: dict[str, Any], merge: bool = False
    ) -> None:
        self.writes.append(("set", collection, doc_id, data, merge))

    def update(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        self.writes.append(("update", collection, doc_id, data, False))

    def commit(self) -> None:
        for op, collection, doc_id, _, _ in self.writes:
            if op == "update" and self.store.get(collection, doc_id) is None:
                raise google_exceptions.NotFound(f"No document to update: {doc_id}")
        for op, collection, doc_id, data, merge in self.writes:
            if op == "set":
                self.store.set(collection, doc_id, data, merge=merge)
            else:
                self.store.update(collection, doc_id, data)


class MockStore(DocumentStore):
    """DocumentStore over MockFirestore with serialised transactions."""

    def __init__(self, db: Any = None) -> None:
        patch_mockfirestore()
        super().__init__(db if db is not None else MockFirestore())
        self.lock = threading.RLock()

    def increment(self, amount: int | float) -> Any:
        return MockIncrement(amount)

    def batch(self) -> StoreBatch:
        return StoreBatch(self, MockBatch(self))

    def run_transaction(self, fn: Callable[[Any], T]) -> T:
        with self.lock:
            transaction = MockTransaction(self)
            result = fn(transaction)
            try:
                transaction.commit()
            except google_exceptions.GoogleAPICallError as e:
                raise StoreFailureError() from e
            return result


def fail_commits_writing(collection: str) -> Any:
    """Patch transactions so any commit writing to ``collection`` fails unapplied."""
    original_commit = MockTransaction.commit

    def commit(self: MockTransaction) -> None:
        if any(write[1] == collection for write in self.writes):
            raise google_exceptions.ServiceUnavailable("unavailable")
        original_commit(self)

    return patch.object(MockTransaction, "commit", commit)


def make_app(store: DocumentStore, **config: Any) -> Any:
    """Create a test app using ``store`` as its document store."""
    app = create_app(
        {
            "TESTING": True,
            "WTF_CSRF_ENABLED": False,
            "SECRET_KEY": "test",
            **config,
        }
    )
    app.extensions["document_store"] = store
    return app


def login_admin(client: Any, store: DocumentStore) -> None:
    """Create the admin user and log the test client in as it."""
    store.set("users", ADMIN_ID, {"email": ADMIN_EMAIL, "isAdmin": True})
    with client.session_transaction() as sess:
        sess["user_id"] = ADMIN_ID
        sess["is_admin"] = True


def seed_tournament(
    store: DocumentStore,
    tournament_id: str = "t1",
    players: int = 10,
    status: str = "completed",
    **fields: Any,
) -> list[str]:
    """Create a tournament with ``players`` funded users and registrations.

    Returns the registration ids, ``r0`` .. ``r{players-1}``.
    """
    store.set(
        "tournaments",
        tournament_id,
        {
            "title": "Weekend Cup",
            "status": status,
            "matchType": "squad",
            "entryFee": 100,
            "companyCommissionPercentage": 10,
            "firstPrizePercentage": 40,
            "perKillRewardPercentage": 60,
            "prizesDistributed": False,
            **fields,
        },
    )
    registration_ids = []
    for i in range(players):
        store.set("users", f"u{i}", {"email": f"u{i}@netwin.test", "walletBalance": 0})
        store.set(
            "tournament_registrations",
            f"r{i}",
            {
                "tournamentId": tournament_id,
                "userId": f"u{i}",
                "userName": f"Player {i}",
                "position": None,
                "kills": 0,
                "resultVerified": False,
            },
        )
        registration_ids.append(f"r{i}")
    return registration_ids


def record_result(
    store: DocumentStore,
    registration_id: str,
    position: Optional[int],
    kills: int,
    verified: bool = True,
) -> None:
    """Set a registration's result directly in the store."""
    store.update(
        "tournament_registrations",
        registration_id,
        {
            "position": position,
            "kills": kills,
            "resultSubmitted": True,
            "resultVerified": verified,
        },
    )
