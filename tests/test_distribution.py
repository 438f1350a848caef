"""Tests for prize distribution."""

from __future__ import annotations

import datetime
import threading
import unittest
from unittest.mock import patch

from netwin.core.constants import (
    KILL_POOL_PERCENTAGE,
    PER_KILL_ELIMINATIONS,
)
from netwin.errors import (
    NotFoundError,
    PreconditionFailedError,
    StoreFailureError,
    ValidationError,
)
from netwin.tournament.services import PrizeDistributor
from netwin.utils import utcnow
from tests.conftest import (
    MockStore,
    fail_commits_writing,
    record_result,
    seed_tournament,
)


class PrizeDistributionTestCase(unittest.TestCase):
    """Tests for PrizeDistributor.distribute."""

    def setUp(self) -> None:
        self.store = MockStore()
        seed_tournament(self.store)
        # Winner with 3 kills, two killers, one unverified, one placed without kills.
        record_result(self.store, "r0", 1, 3)
        record_result(self.store, "r1", 4, 2)
        record_result(self.store, "r2", None, 1)
        record_result(self.store, "r3", 3, 4, verified=False)
        record_result(self.store, "r4", 2, 0)
        self.distributor = PrizeDistributor(self.store)

    def balance(self, user_id: str):
        return self.store.get("users", user_id)["walletBalance"]

    def tournament(self):
        return self.store.get("tournaments", "t1")

    def assert_nothing_paid(self) -> None:
        self.assertEqual(self.store.query("prize_distributions"), [])
        self.assertEqual(self.store.query("transactions"), [])
        for i in range(10):
            self.assertEqual(self.balance(f"u{i}"), 0)
        self.assertFalse(self.tournament()["prizesDistributed"])

    def test_pays_verified_winners(self) -> None:
        result = self.distributor.distribute("t1", actor="admin@netwin.test")

        self.assertEqual(self.balance("u0"), 630)
        self.assertEqual(self.balance("u1"), 180)
        self.assertEqual(self.balance("u2"), 90)
        self.assertEqual(self.balance("u3"), 0)
        self.assertEqual(self.balance("u4"), 0)

        summary = result["summary"]
        self.assertEqual(summary["totalDistributed"], 900)
        self.assertEqual(summary["totalKillRewards"], 540)
        self.assertEqual(summary["firstPlaceWinner"]["userId"], "u0")
        self.assertEqual(
            summary["firstPlaceWinner"]["prizeType"], "First Place + Kill Reward"
        )
        self.assertEqual(len(result["distributions"]), 3)

    def test_writes_records_and_marks_state(self) -> None:
        self.distributor.distribute("t1")

        records = self.store.query("prize_distributions", tournamentId="t1")
        self.assertEqual(len(records), 3)
        self.assertTrue(all(r["status"] == "completed" for r in records))

        entries = self.store.query("transactions", userId="u0")
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0]["type"], "prize_money")
        self.assertEqual(entries[0]["status"], "completed")
        self.assertEqual(entries[0]["tournamentId"], "t1")
        self.assertEqual(
            entries[0]["description"],
            "Prize money for Weekend Cup - First Place + Kill Reward",
        )

        registration = self.store.get("tournament_registrations", "r0")
        self.assertEqual(registration["reward"], 630)
        self.assertTrue(registration["prizeDistributed"])
        self.assertNotIn(
            "prizeDistributed", self.store.get("tournament_registrations", "r3")
        )

        tournament = self.tournament()
        self.assertTrue(tournament["prizesDistributed"])
        self.assertEqual(tournament["totalDistributed"], 900)
        self.assertEqual(tournament["actualPrizePool"], 900)
        self.assertIsNone(tournament["distributionClaim"])

    def test_second_call_is_refused(self) -> None:
        self.distributor.distribute("t1")

        with self.assertRaises(PreconditionFailedError):
            self.distributor.distribute("t1")

        self.assertEqual(len(self.store.query("prize_distributions")), 3)
        self.assertEqual(len(self.store.query("transactions")), 3)
        self.assertEqual(self.balance("u0"), 630)

    def test_total_never_exceeds_pool(self) -> None:
        result = self.distributor.distribute("t1")
        total = sum(d["prizeAmount"] for d in result["distributions"])
        self.assertLessEqual(total, 900)

    def test_requires_completed_tournament(self) -> None:
        self.store.update("tournaments", "t1", {"status": "live"})

        with self.assertRaises(PreconditionFailedError):
            self.distributor.distribute("t1")

        self.assertNotIn("distributionClaim", self.tournament())
        self.assert_nothing_paid()

    def test_unknown_tournament(self) -> None:
        with self.assertRaises(NotFoundError):
            self.distributor.distribute("missing")

    def test_no_registrations_releases_claim(self) -> None:
        seed_tournament(self.store, "t2", players=0)

        with self.assertRaises(PreconditionFailedError):
            self.distributor.distribute("t2")

        tournament = self.store.get("tournaments", "t2")
        self.assertIsNone(tournament["distributionClaim"])
        self.assertFalse(tournament["prizesDistributed"])

    def test_commit_failure_changes_nothing_and_can_be_retried(self) -> None:
        with fail_commits_writing("prize_distributions"):
            with self.assertRaises(StoreFailureError):
                self.distributor.distribute("t1")

        self.assert_nothing_paid()
        self.assertIsNone(self.tournament()["distributionClaim"])

        self.distributor.distribute("t1")
        self.assertEqual(self.balance("u0"), 630)

    def test_missing_user_is_refused_before_writing(self) -> None:
        self.store.ref("users", "u1").delete()

        with self.assertRaises(NotFoundError):
            self.distributor.distribute("t1")

        self.assertEqual(self.store.query("prize_distributions"), [])
        self.assertEqual(self.balance("u0"), 0)
        self.assertIsNone(self.tournament()["distributionClaim"])

    def test_run_over_pool_is_refused(self) -> None:
        distributor = PrizeDistributor(
            self.store,
            distribution_policies=(KILL_POOL_PERCENTAGE, PER_KILL_ELIMINATIONS),
        )
        # 10 verified kills at 90 each plus the 360 first prize exceeds 900.
        record_result(self.store, "r5", None, 4)

        with self.assertRaises(ValidationError):
            distributor.distribute("t1")

        self.assert_nothing_paid()

    def test_run_too_large_for_one_batch_is_refused(self) -> None:
        with patch("netwin.tournament.services.FIRESTORE_BATCH_LIMIT", 5):
            with self.assertRaises(ValidationError):
                self.distributor.distribute("t1")
        self.assert_nothing_paid()


class DistributionClaimTestCase(unittest.TestCase):
    """Tests for serialising distribution runs."""

    def setUp(self) -> None:
        self.store = MockStore()
        seed_tournament(self.store)
        record_result(self.store, "r0", 1, 2)
        record_result(self.store, "r1", 2, 1)

    def test_live_claim_blocks_a_second_run(self) -> None:
        self.store.update(
            "tournaments",
            "t1",
            {"distributionClaim": {"runId": "other", "claimedAt": utcnow()}},
        )

        with self.assertRaises(PreconditionFailedError) as ctx:
            PrizeDistributor(self.store).distribute("t1")

        self.assertIn("in progress", ctx.exception.message)
        self.assertEqual(
            self.store.get("tournaments", "t1")["distributionClaim"]["runId"], "other"
        )

    def test_stale_claim_is_taken_over(self) -> None:
        stale = utcnow() - datetime.timedelta(minutes=10)
        self.store.update(
            "tournaments",
            "t1",
            {"distributionClaim": {"runId": "crashed", "claimedAt": stale}},
        )

        PrizeDistributor(self.store, claim_ttl=300).distribute("t1")

        self.assertTrue(self.store.get("tournaments", "t1")["prizesDistributed"])

    def test_run_overtaken_after_claim_expiry_pays_nothing(self) -> None:
        slow = PrizeDistributor(self.store)
        tournament = slow._claim("t1", "slow-run", "admin")

        PrizeDistributor(self.store, claim_ttl=0).distribute("t1")

        with self.assertRaises(PreconditionFailedError):
            slow._pay_out(tournament, "slow-run")

        self.assertEqual(len(self.store.query("prize_distributions")), 2)
        self.assertEqual(len(self.store.query("transactions")), 2)
        self.assertEqual(self.store.get("users", "u0")["walletBalance"], 720)
        self.assertEqual(self.store.get("users", "u1")["walletBalance"], 180)

    def test_run_whose_claim_was_taken_over_pays_nothing(self) -> None:
        slow = PrizeDistributor(self.store)
        tournament = slow._claim("t1", "slow-run", "admin")
        PrizeDistributor(self.store, claim_ttl=0)._claim("t1", "new-run", "admin")

        with self.assertRaises(PreconditionFailedError):
            slow._pay_out(tournament, "slow-run")
        slow._release("t1", "slow-run")

        self.assertEqual(self.store.query("prize_distributions"), [])
        self.assertEqual(self.store.get("users", "u0")["walletBalance"], 0)
        claim = self.store.get("tournaments", "t1")["distributionClaim"]
        self.assertEqual(claim["runId"], "new-run")

    def test_concurrent_runs_pay_once(self) -> None:
        outcomes = []

        def _run() -> None:
            try:
                PrizeDistributor(self.store).distribute("t1")
                outcomes.append("paid")
            except PreconditionFailedError:
                outcomes.append("refused")

        threads = [threading.Thread(target=_run) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(sorted(outcomes), ["paid", "refused"])
        self.assertEqual(len(self.store.query("prize_distributions")), 2)
        # 900 pool: 360 first prize plus 540 over 3 kills.
        self.assertEqual(self.store.get("users", "u0")["walletBalance"], 720)
        self.assertEqual(self.store.get("users", "u1")["walletBalance"], 180)


class PreviewTestCase(unittest.TestCase):
    """Tests for PrizeDistributor.preview."""

    def setUp(self) -> None:
        self.store = MockStore()
        seed_tournament(self.store)
        record_result(self.store, "r0", 1, 3)
        record_result(self.store, "r1", 2, 3)

    def test_preview_reports_both_formulas(self) -> None:
        preview = PrizeDistributor(self.store).preview("t1")

        self.assertTrue(preview["canDistribute"])
        self.assertEqual(preview["totalPlayers"], 10)
        self.assertEqual(preview["prizeCalculation"]["perKillReward"], 90.0)
        self.assertEqual(preview["distributionPreview"]["perKillReward"], 90.0)
        self.assertTrue(preview["formulasAgree"])

        first = preview["players"][0]
        self.assertEqual(first["registrationId"], "r0")
        self.assertEqual(first["calculatedReward"], 630)
        self.assertEqual(first["distributionReward"], 630)
        self.assertEqual(preview["players"][2]["calculatedReward"], 0)

    def test_preview_flags_disagreeing_formulas(self) -> None:
        self.store.update("tournaments", "t1", {"perKillRewardPercentage": 50})

        preview = PrizeDistributor(self.store).preview("t1")

        self.assertEqual(preview["prizeCalculation"]["killPrizePool"], 450)
        self.assertEqual(preview["distributionPreview"]["killPrizePool"], 540)
        self.assertFalse(preview["formulasAgree"])

    def test_preview_writes_nothing(self) -> None:
        PrizeDistributor(self.store).preview("t1")
        self.assertNotIn("distributionClaim", self.store.get("tournaments", "t1"))
        self.assertEqual(self.store.query("prize_distributions"), [])

    def test_cannot_distribute_twice(self) -> None:
        self.store.update("tournaments", "t1", {"prizesDistributed": True})
        self.assertFalse(PrizeDistributor(self.store).preview("t1")["canDistribute"])

    def test_from_config(self) -> None:
        distributor = PrizeDistributor.from_config(
            self.store,
            {
                "DISTRIBUTION_KILL_POOL_POLICY": KILL_POOL_PERCENTAGE,
                "DISTRIBUTION_CLAIM_TTL_SECONDS": "60",
            },
        )
        self.assertEqual(distributor.distribution_policies[0], KILL_POOL_PERCENTAGE)
        self.assertEqual(distributor.claim_ttl, 60)


if __name__ == "__main__":
    unittest.main()
