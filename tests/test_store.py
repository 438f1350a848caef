"""Tests for the document store client."""

from __future__ import annotations

import unittest
from unittest.mock import MagicMock, patch

from google.api_core import exceptions as google_exceptions
from mockfirestore import MockFirestore

from netwin.core.store import DocumentStore, StoreBatch, StoreTransaction
from netwin.errors import StoreFailureError
from tests.conftest import MockStore, patch_mockfirestore

patch_mockfirestore()


class DocumentStoreTestCase(unittest.TestCase):
    """Tests for reads and writes against mockfirestore."""

    def setUp(self) -> None:
        self.db = MockFirestore()
        self.store = DocumentStore(self.db)
        self.store.set("users", "u1", {"name": "Asha", "walletBalance": 100})
        self.store.set("users", "u2", {"name": "Ben", "walletBalance": 0})

    def test_get_includes_id(self) -> None:
        self.assertEqual(
            self.store.get("users", "u1"),
            {"id": "u1", "name": "Asha", "walletBalance": 100},
        )

    def test_get_missing_returns_none(self) -> None:
        self.assertIsNone(self.store.get("users", "nobody"))

    def test_query_by_equality(self) -> None:
        self.store.set("transactions", "t1", {"userId": "u1", "type": "deposit"})
        self.store.set("transactions", "t2", {"userId": "u1", "type": "withdrawal"})
        self.store.set("transactions", "t3", {"userId": "u2", "type": "deposit"})

        found = self.store.query("transactions", userId="u1", type="deposit")

        self.assertEqual([d["id"] for d in found], ["t1"])

    def test_get_many_skips_missing(self) -> None:
        found = self.store.get_many("users", ["u1", "u2", "ghost", "u1"])
        self.assertEqual(set(found), {"u1", "u2"})
        self.assertEqual(self.store.get_many("users", []), {})

    def test_add_and_update(self) -> None:
        doc_id = self.store.add("transactions", {"userId": "u2", "amount": 5})
        self.store.update("transactions", doc_id, {"amount": 7})
        self.assertEqual(self.store.get("transactions", doc_id)["amount"], 7)

    def test_set_merge_keeps_other_fields(self) -> None:
        self.store.set("users", "u1", {"walletBalance": 50}, merge=True)
        self.assertEqual(self.store.get("users", "u1")["name"], "Asha")


class StoreFailureTestCase(unittest.TestCase):
    """Tests that Firestore API errors surface as StoreFailureError."""

    def setUp(self) -> None:
        self.db = MagicMock()
        self.store = DocumentStore(self.db)
        self.error = google_exceptions.ServiceUnavailable("unavailable")

    def test_get(self) -> None:
        self.db.collection.return_value.document.return_value.get.side_effect = self.error
        with self.assertRaises(StoreFailureError):
            self.store.get("users", "u1")

    def test_get_many(self) -> None:
        self.db.get_all.side_effect = self.error
        with self.assertRaises(StoreFailureError):
            self.store.get_many("users", ["u1"])

    def test_query(self) -> None:
        self.db.collection.return_value.where.return_value.stream.side_effect = (
            self.error
        )
        with self.assertRaises(StoreFailureError):
            self.store.query("transactions", userId="u1")

    def test_writes(self) -> None:
        ref = self.db.collection.return_value.document.return_value
        ref.set.side_effect = self.error
        ref.update.side_effect = self.error
        with self.assertRaises(StoreFailureError):
            self.store.set("users", "u1", {"walletBalance": 1})
        with self.assertRaises(StoreFailureError):
            self.store.update("users", "u1", {"walletBalance": 1})


class StoreBatchTestCase(unittest.TestCase):
    """Tests for batched writes."""

    def test_counts_and_commits_writes(self) -> None:
        store = MockStore()
        store.set("users", "u1", {"walletBalance": 10})
        batch = store.batch()
        batch.set("logs", "l1", {"text": "hi"})
        batch.update("users", "u1", {"walletBalance": store.increment(5)})
        self.assertEqual(len(batch), 2)

        batch.commit()

        self.assertEqual(store.get("users", "u1")["walletBalance"], 15)
        self.assertEqual(store.get("logs", "l1")["text"], "hi")

    def test_failed_commit_writes_nothing(self) -> None:
        store = MockStore()
        batch = store.batch()
        batch.set("logs", "l1", {"text": "hi"})
        batch.update("users", "ghost", {"walletBalance": 1})

        with self.assertRaises(StoreFailureError):
            batch.commit()

        self.assertIsNone(store.get("logs", "l1"))

    def test_api_error_becomes_store_failure(self) -> None:
        raw = MagicMock()
        raw.commit.side_effect = google_exceptions.ServiceUnavailable("down")
        batch = StoreBatch(MagicMock(), raw)

        with self.assertRaises(StoreFailureError) as ctx:
            batch.commit()

        self.assertEqual(ctx.exception.status_code, 500)


class StoreTransactionTestCase(unittest.TestCase):
    """Tests for the transaction view, using a MagicMock transaction."""

    def setUp(self) -> None:
        self.store = MagicMock()
        self.transaction = MagicMock()
        self.txn = StoreTransaction(self.store, self.transaction)

    def test_get_reads_through_transaction(self) -> None:
        ref = MagicMock()
        snapshot = MagicMock(exists=True, id="u1")
        snapshot.to_dict.return_value = {"walletBalance": 3}
        ref.get.return_value = snapshot
        self.store.ref.return_value = ref

        self.assertEqual(self.txn.get("users", "u1"), {"id": "u1", "walletBalance": 3})
        ref.get.assert_called_with(transaction=self.transaction)

    def test_query_reads_through_transaction(self) -> None:
        query = MagicMock()
        self.store.build_query.return_value = query
        snapshot = MagicMock(exists=True, id="t1")
        snapshot.to_dict.return_value = {"status": "PENDING"}
        self.transaction.get.return_value = [snapshot]

        found = self.txn.query("transactions", status="PENDING")

        self.store.build_query.assert_called_with("transactions", {"status": "PENDING"})
        self.transaction.get.assert_called_with(query)
        self.assertEqual(found, [{"id": "t1", "status": "PENDING"}])

    def test_writes_go_to_transaction(self) -> None:
        ref = MagicMock()
        self.store.ref.return_value = ref

        self.txn.set("users", "u1", {"a": 1}, merge=True)
        self.txn.update("users", "u1", {"b": 2})

        self.transaction.set.assert_called_with(ref, {"a": 1}, merge=True)
        self.transaction.update.assert_called_with(ref, {"b": 2})


class RunTransactionTestCase(unittest.TestCase):
    """Tests for DocumentStore.run_transaction."""

    def setUp(self) -> None:
        firestore_module = MagicMock()
        firestore_module.transactional = lambda fn: fn
        patcher = patch("netwin.core.store.firestore", new=firestore_module)
        patcher.start()
        self.addCleanup(patcher.stop)
        self.db = MagicMock()
        self.store = DocumentStore(self.db)

    def test_returns_function_result(self) -> None:
        result = self.store.run_transaction(lambda txn: isinstance(txn, StoreTransaction))
        self.assertTrue(result)
        self.db.transaction.assert_called_once()

    def test_api_error_becomes_store_failure(self) -> None:
        def _fail(txn):
            raise google_exceptions.Aborted("contention")

        with self.assertRaises(StoreFailureError):
            self.store.run_transaction(_fail)


if __name__ == "__main__":
    unittest.main()
