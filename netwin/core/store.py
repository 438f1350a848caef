"""Document store client used by the settlement services.

Wraps a Firestore client behind collection/id addressing so the services
deal in plain dicts instead of references and snapshots. Every document
returned by the store carries its id under ``"id"``.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Any, TypeVar

from firebase_admin import firestore
from flask import current_app
from google.api_core import exceptions as google_exceptions

from netwin.errors import StoreFailureError

if TYPE_CHECKING:
    from google.cloud.firestore_v1.base_document import DocumentSnapshot
    from google.cloud.firestore_v1.batch import WriteBatch
    from google.cloud.firestore_v1.client import Client
    from google.cloud.firestore_v1.document import DocumentReference
    from google.cloud.firestore_v1.transaction import Transaction

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _store_call(method: Callable[..., T]) -> Callable[..., T]:
    """Re-raise Firestore API errors from ``method`` as StoreFailureError."""

    @functools.wraps(method)
    def wrapper(self: Any, collection: str, *args: Any, **kwargs: Any) -> T:
        try:
            return method(self, collection, *args, **kwargs)
        except google_exceptions.GoogleAPICallError as e:
            logger.error(f"{method.__name__} on {collection} failed: {e}")
            raise StoreFailureError() from e

    return wrapper


def snapshot_to_dict(snapshot: DocumentSnapshot) -> dict[str, Any] | None:
    """Convert a snapshot to a dict with its id, or None if it does not exist."""
    if not snapshot.exists:
        return None
    data = snapshot.to_dict() or {}
    data["id"] = snapshot.id
    return data


class StoreBatch:
    """An all-or-nothing group of writes addressed by collection and id."""

    def __init__(self, store: DocumentStore, batch: WriteBatch) -> None:
        self._store = store
        self._batch = batch
        self._count = 0

    def __len__(self) -> int:
        return self._count

    def set(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, Any],
        merge: bool = False,
    ) -> None:
        """Queue a set."""
        self._batch.set(self._store.ref(collection, doc_id), data, merge=merge)
        self._count += 1

    def update(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        """Queue an update of an existing document."""
        self._batch.update(self._store.ref(collection, doc_id), data)
        self._count += 1

    def delete(self, collection: str, doc_id: str) -> None:
        """Queue a delete."""
        self._batch.delete(self._store.ref(collection, doc_id))
        self._count += 1

    def commit(self) -> None:
        """Commit every queued write, or none of them."""
        try:
            self._batch.commit()
        except google_exceptions.GoogleAPICallError as e:
            logger.error(f"Batch commit of {self._count} writes failed: {e}")
            raise StoreFailureError() from e


class StoreTransaction:
    """Read/write view handed to functions run by ``DocumentStore.run_transaction``.

    Firestore requires every read in a transaction to happen before the
    first write.
    """

    def __init__(self, store: DocumentStore, transaction: Transaction) -> None:
        self._store = store
        self._transaction = transaction

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        """Read a document inside the transaction."""
        ref = self._store.ref(collection, doc_id)
        return snapshot_to_dict(ref.get(transaction=self._transaction))

    def query(self, collection: str, **equals: Any) -> list[dict[str, Any]]:
        """Run an equality query inside the transaction."""
        query = self._store.build_query(collection, equals)
        snapshots = self._transaction.get(query)
        return [d for d in (snapshot_to_dict(s) for s in snapshots) if d is not None]

    def set(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, Any],
        merge: bool = False,
    ) -> None:
        """Write a document inside the transaction."""
        self._transaction.set(self._store.ref(collection, doc_id), data, merge=merge)

    def update(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        """Update an existing document inside the transaction."""
        self._transaction.update(self._store.ref(collection, doc_id), data)


class DocumentStore:
    """Firestore-backed document store."""

    def __init__(self, db: Client | None = None) -> None:
        if db is None:
            db = firestore.client()
        self.db = db

    def ref(self, collection: str, doc_id: str) -> DocumentReference:
        """Return the reference for a document."""
        return self.db.collection(collection).document(doc_id)

    def build_query(
        self, collection: str, equals: dict[str, Any], limit: int | None = None
    ) -> Any:
        """Build an AND-ed equality query."""
        query: Any = self.db.collection(collection)
        for field, value in equals.items():
            query = query.where(filter=firestore.FieldFilter(field, "==", value))
        if limit is not None:
            query = query.limit(limit)
        return query

    def new_id(self, collection: str) -> str:
        """Reserve an auto-generated document id."""
        return str(self.db.collection(collection).document().id)

    @_store_call
    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        """Fetch one document."""
        return snapshot_to_dict(self.ref(collection, doc_id).get())

    @_store_call
    def get_many(self, collection: str, doc_ids: Iterable[str]) -> dict[str, dict[str, Any]]:
        """Fetch several documents in one round trip, keyed by id."""
        refs = [self.ref(collection, doc_id) for doc_id in dict.fromkeys(doc_ids)]
        if not refs:
            return {}
        found = {}
        for snapshot in self.db.get_all(refs):
            data = snapshot_to_dict(snapshot)
            if data is not None:
                found[data["id"]] = data
        return found

    @_store_call
    def query(
        self, collection: str, *, limit: int | None = None, **equals: Any
    ) -> list[dict[str, Any]]:
        """Fetch all documents whose fields equal the given values."""
        query = self.build_query(collection, equals, limit)
        return [d for d in (snapshot_to_dict(s) for s in query.stream()) if d is not None]

    @_store_call
    def set(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, Any],
        merge: bool = False,
    ) -> None:
        """Create or overwrite a document."""
        self.ref(collection, doc_id).set(data, merge=merge)

    def add(self, collection: str, data: dict[str, Any]) -> str:
        """Create a document with an auto-generated id and return the id."""
        doc_id = self.new_id(collection)
        self.set(collection, doc_id, data)
        return doc_id

    @_store_call
    def update(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        """Update fields of an existing document."""
        self.ref(collection, doc_id).update(data)

    def increment(self, amount: int | float) -> Any:
        """Return a sentinel that atomically adds ``amount`` to a numeric field."""
        return firestore.Increment(amount)

    def batch(self) -> StoreBatch:
        """Start an all-or-nothing write batch."""
        return StoreBatch(self, self.db.batch())

    def run_transaction(self, fn: Callable[[StoreTransaction], T]) -> T:
        """Run ``fn`` in a Firestore transaction, retrying on contention.

        ``fn`` may run more than once, so it must not have side effects
        outside the transaction it is given.
        """
        transaction = self.db.transaction()

        @firestore.transactional
        def _run(transaction: Transaction) -> T:
            return fn(StoreTransaction(self, transaction))

        try:
            return _run(transaction)
        except google_exceptions.GoogleAPICallError as e:
            logger.error(f"Transaction failed: {e}")
            raise StoreFailureError() from e


def get_store() -> DocumentStore:
    """Return the application's document store, creating it on first use."""
    store = current_app.extensions.get("document_store")
    if store is None:
        store = DocumentStore(firestore.client())
        current_app.extensions["document_store"] = store
    return store
