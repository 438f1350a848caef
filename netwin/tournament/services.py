"""Service layer for tournament settlement."""

from __future__ import annotations

import datetime
import logging
import uuid
from collections.abc import Mapping
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from netwin.core.constants import (
    DEFAULT_ACTOR,
    DISTRIBUTION_CLAIM_TTL_SECONDS,
    FIRESTORE_BATCH_LIMIT,
    KILL_POOL_PERCENTAGE,
    KILL_POOL_REMAINDER,
    PER_KILL_ELIMINATIONS,
    PER_KILL_VERIFIED_KILLS,
    PRIZE_DISTRIBUTIONS_COLLECTION,
    REGISTRATIONS_COLLECTION,
    TOURNAMENT_COMPLETED,
    TOURNAMENT_LIVE,
    TOURNAMENT_UPCOMING,
    TOURNAMENTS_COLLECTION,
    TRANSACTIONS_COLLECTION,
    TX_PRIZE_MONEY,
    TX_STATUS_COMPLETED,
    USERS_COLLECTION,
)
from netwin.core.store import get_store
from netwin.errors import (
    NotFoundError,
    PreconditionFailedError,
    StoreFailureError,
    ValidationError,
)
from netwin.utils import money_to_store, utcnow
from netwin.wallet.ledger import WalletLedger, newest_first
from netwin.wallet.models import LedgerEntry

from .calculator import PrizeCalculation, PrizeSettings, RewardBreakdown, calculate
from .models import PrizeDistribution, Registration, Tournament

if TYPE_CHECKING:
    from netwin.core.store import DocumentStore, StoreTransaction

logger = logging.getLogger(__name__)

# Writes per payout: distribution record, wallet, ledger entry, registration.
WRITES_PER_PAYOUT = 4


def load_tournament(store: DocumentStore, tournament_id: str) -> Tournament:
    """Fetch a tournament or raise NotFoundError."""
    doc = store.get(TOURNAMENTS_COLLECTION, tournament_id)
    if doc is None:
        raise NotFoundError("Tournament not found")
    return Tournament.from_document(doc)


def load_registrations(store: DocumentStore, tournament_id: str) -> list[Registration]:
    """Fetch every registration of a tournament."""
    return [
        Registration.from_document(doc)
        for doc in store.query(REGISTRATIONS_COLLECTION, tournamentId=tournament_id)
    ]


def _standing(registration: Registration) -> tuple[int, int]:
    # Placed players first by position, then everyone else by kills.
    position = registration.position if registration.position is not None else 10**9
    return position, -registration.kills


def _claim_is_live(
    claim: Mapping[str, Any] | None, now: datetime.datetime, ttl: int
) -> bool:
    if not claim:
        return False
    claimed_at = claim.get("claimedAt")
    if not isinstance(claimed_at, datetime.datetime):
        return False
    return now - claimed_at < datetime.timedelta(seconds=ttl)


class PrizeDistributor:
    """Computes and pays out tournament prizes.

    The preview runs the calculator with ``read_policies`` and the payout
    with ``distribution_policies``; each is a ``(kill_pool, per_kill)``
    pair.
    """

    def __init__(
        self,
        store: DocumentStore,
        read_policies: tuple[str, str] = (KILL_POOL_PERCENTAGE, PER_KILL_ELIMINATIONS),
        distribution_policies: tuple[str, str] = (
            KILL_POOL_REMAINDER,
            PER_KILL_VERIFIED_KILLS,
        ),
        claim_ttl: int = DISTRIBUTION_CLAIM_TTL_SECONDS,
    ) -> None:
        self.store = store
        self.ledger = WalletLedger(store)
        self.read_policies = read_policies
        self.distribution_policies = distribution_policies
        self.claim_ttl = claim_ttl

    @classmethod
    def from_config(
        cls, store: DocumentStore, config: Mapping[str, Any]
    ) -> PrizeDistributor:
        """Build a distributor from application configuration."""
        return cls(
            store,
            read_policies=(
                config.get("READ_KILL_POOL_POLICY", KILL_POOL_PERCENTAGE),
                config.get("READ_PER_KILL_POLICY", PER_KILL_ELIMINATIONS),
            ),
            distribution_policies=(
                config.get("DISTRIBUTION_KILL_POOL_POLICY", KILL_POOL_REMAINDER),
                config.get("DISTRIBUTION_PER_KILL_POLICY", PER_KILL_VERIFIED_KILLS),
            ),
            claim_ttl=int(
                config.get(
                    "DISTRIBUTION_CLAIM_TTL_SECONDS", DISTRIBUTION_CLAIM_TTL_SECONDS
                )
            ),
        )

    def _player_row(
        self,
        registration: Registration,
        read_calc: PrizeCalculation,
        distribution_calc: PrizeCalculation,
    ) -> dict[str, Any]:
        read_reward = read_calc.reward_for(registration.position, registration.kills)
        payout = (
            distribution_calc.reward_for(registration.position, registration.kills)
            if registration.is_verified_winner
            else RewardBreakdown(Decimal("0.00"), Decimal("0.00"))
        )
        return {
            "registrationId": registration.id,
            "userId": registration.user_id,
            "userName": registration.user_name,
            "teamName": registration.team_name,
            "position": registration.position,
            "kills": registration.kills,
            "resultSubmitted": registration.result_submitted,
            "resultVerified": registration.result_verified,
            "prizeDistributed": registration.prize_distributed,
            "reward": (
                money_to_store(registration.reward)
                if registration.reward is not None
                else None
            ),
            "calculatedReward": money_to_store(read_reward.total),
            "rewardBreakdown": read_reward.to_dict(),
            "distributionReward": money_to_store(payout.total),
        }

    def preview(self, tournament_id: str) -> dict[str, Any]:
        """Return the prize calculation for a tournament without writing anything."""
        tournament = load_tournament(self.store, tournament_id)
        registrations = sorted(
            load_registrations(self.store, tournament_id), key=_standing
        )
        settings = PrizeSettings.for_tournament(tournament, len(registrations))
        verified = [r for r in registrations if r.is_verified_winner]

        read_calc = calculate(settings, registrations, *self.read_policies)
        distribution_calc = calculate(settings, verified, *self.distribution_policies)

        return {
            "tournament": tournament.summary(),
            "prizeCalculation": read_calc.to_dict(),
            "distributionPreview": distribution_calc.to_dict(),
            "formulasAgree": (
                read_calc.kill_prize_pool == distribution_calc.kill_prize_pool
                and read_calc.per_kill_reward == distribution_calc.per_kill_reward
            ),
            "players": [
                self._player_row(r, read_calc, distribution_calc)
                for r in registrations
            ],
            "totalPlayers": len(registrations),
            "canDistribute": (
                tournament.status == TOURNAMENT_COMPLETED
                and not tournament.prizes_distributed
            ),
        }

    def _claim(self, tournament_id: str, run_id: str, actor: str) -> Tournament:
        """Mark the tournament as being distributed by ``run_id``."""

        def _run(txn: StoreTransaction) -> Tournament:
            doc = txn.get(TOURNAMENTS_COLLECTION, tournament_id)
            if doc is None:
                raise NotFoundError("Tournament not found")
            tournament = Tournament.from_document(doc)
            if tournament.status != TOURNAMENT_COMPLETED:
                raise PreconditionFailedError(
                    "Tournament must be completed before distributing prizes"
                )
            if tournament.prizes_distributed:
                raise PreconditionFailedError(
                    "Prizes have already been distributed for this tournament"
                )
            now = utcnow()
            if _claim_is_live(tournament.distribution_claim, now, self.claim_ttl):
                raise PreconditionFailedError(
                    "Prize distribution is already in progress for this tournament"
                )
            txn.update(
                TOURNAMENTS_COLLECTION,
                tournament_id,
                {
                    "distributionClaim": {
                        "runId": run_id,
                        "claimedAt": now,
                        "claimedBy": actor,
                    }
                },
            )
            return tournament

        return self.store.run_transaction(_run)

    def _release(self, tournament_id: str, run_id: str) -> None:
        """Drop the claim if ``run_id`` still holds it."""

        def _run(txn: StoreTransaction) -> None:
            doc = txn.get(TOURNAMENTS_COLLECTION, tournament_id)
            claim = (doc or {}).get("distributionClaim") or {}
            if claim.get("runId") == run_id:
                txn.update(
                    TOURNAMENTS_COLLECTION, tournament_id, {"distributionClaim": None}
                )

        try:
            self.store.run_transaction(_run)
        except StoreFailureError:
            logger.error(
                f"Could not release distribution claim {run_id} on tournament "
                f"{tournament_id}; it expires after {self.claim_ttl}s"
            )

    def distribute(self, tournament_id: str, actor: str = DEFAULT_ACTOR) -> dict[str, Any]:
        """Pay out a completed tournament's prizes exactly once.

        All payouts and the ``prizesDistributed`` flag are committed in one
        transaction that first checks this run still holds the claim. Any failure leaves the tournament undistributed and releases
        the claim so the run can be retried.
        """
        run_id = uuid.uuid4().hex
        tournament = self._claim(tournament_id, run_id, actor)
        logger.info(
            f"Distribution run {run_id} claimed tournament {tournament_id} for {actor}"
        )
        try:
            return self._pay_out(tournament, run_id)
        except Exception:
            self._release(tournament_id, run_id)
            raise

    def _pay_out(self, tournament: Tournament, run_id: str) -> dict[str, Any]:
        registrations = load_registrations(self.store, tournament.id)
        if not registrations:
            raise PreconditionFailedError("No registrations found for this tournament")

        settings = PrizeSettings.for_tournament(tournament, len(registrations))
        verified = [r for r in registrations if r.is_verified_winner]
        calc = calculate(settings, verified, *self.distribution_policies)

        payouts: list[tuple[Registration, RewardBreakdown]] = []
        for registration in verified:
            breakdown = calc.reward_for(registration.position, registration.kills)
            if breakdown.total <= 0:
                continue
            if not registration.user_id:
                logger.warning(
                    f"Registration {registration.id} has no user; skipping payout"
                )
                continue
            payouts.append((registration, breakdown))

        total = sum((b.total for _, b in payouts), Decimal("0.00"))
        if total > calc.actual_prize_pool:
            raise ValidationError(
                f"Payouts of {total} exceed the prize pool of {calc.actual_prize_pool}"
            )
        if len(payouts) * WRITES_PER_PAYOUT + 1 > FIRESTORE_BATCH_LIMIT:
            raise ValidationError(
                f"Too many payouts ({len(payouts)}) for a single atomic distribution"
            )

        users = self.store.get_many(USERS_COLLECTION, [r.user_id for r, _ in payouts])
        missing = sorted({r.user_id for r, _ in payouts if r.user_id not in users})
        if missing:
            raise NotFoundError(f"Users not found: {', '.join(missing)}")

        now = utcnow()
        distributions = []
        entries = []
        for registration, breakdown in payouts:
            distribution = PrizeDistribution(
                id=self.store.new_id(PRIZE_DISTRIBUTIONS_COLLECTION),
                tournament_id=tournament.id,
                user_id=registration.user_id,
                registration_id=registration.id,
                position=registration.position,
                kills=registration.kills,
                prize_amount=breakdown.total,
                prize_type=breakdown.prize_type,
                created_at=now,
                kill_reward=breakdown.kill_reward,
            )
            entries.append(
                LedgerEntry(
                    id=self.store.new_id(TRANSACTIONS_COLLECTION),
                    user_id=registration.user_id,
                    type=TX_PRIZE_MONEY,
                    amount=breakdown.total,
                    status=TX_STATUS_COMPLETED,
                    description=(
                        f"Prize money for {tournament.title} - {breakdown.prize_type}"
                    ),
                    tournament_id=tournament.id,
                    created_at=now,
                    extra={
                        "registrationId": registration.id,
                        "prizeDistributionId": distribution.id,
                    },
                )
            )
            distributions.append((distribution, registration))

        def _commit(txn: StoreTransaction) -> None:
            doc = txn.get(TOURNAMENTS_COLLECTION, tournament.id)
            claim = (doc or {}).get("distributionClaim") or {}
            if doc is None or doc.get("prizesDistributed") or claim.get("runId") != run_id:
                raise PreconditionFailedError(
                    "Distribution run lost its claim on this tournament"
                )
            for (distribution, registration), entry in zip(distributions, entries):
                txn.set(
                    PRIZE_DISTRIBUTIONS_COLLECTION,
                    distribution.id,
                    {**distribution.to_document(), "runId": run_id},
                )
                self.ledger.queue_credit(
                    txn, registration.user_id, distribution.prize_amount
                )
                txn.set(TRANSACTIONS_COLLECTION, entry.id, entry.to_document())
                txn.update(
                    REGISTRATIONS_COLLECTION,
                    registration.id,
                    {
                        "reward": money_to_store(distribution.prize_amount),
                        "prizeDistributed": True,
                        "prizeDistributedAt": now,
                        "updatedAt": now,
                    },
                )
            txn.update(
                TOURNAMENTS_COLLECTION,
                tournament.id,
                {
                    "prizesDistributed": True,
                    "prizesDistributedAt": now,
                    "actualPrizePool": money_to_store(calc.actual_prize_pool),
                    "totalDistributed": money_to_store(total),
                    "distributionClaim": None,
                    "updatedAt": now,
                },
            )

        self.store.run_transaction(_commit)

        logger.info(
            f"Distribution run {run_id} paid {total} to {len(distributions)} "
            f"players in tournament {tournament.id}"
        )

        first_place = next(
            (
                {**d.to_dict(), "userName": r.user_name}
                for d, r in distributions
                if d.position == 1
            ),
            None,
        )
        kill_rewards = sum((d.kill_reward for d, _ in distributions), Decimal("0.00"))
        return {
            "distributions": [
                {**d.to_dict(), "userName": r.user_name} for d, r in distributions
            ],
            "summary": {
                "totalDistributed": money_to_store(total),
                "firstPlaceWinner": first_place,
                "totalKillRewards": money_to_store(kill_rewards),
                "winnersCount": len(distributions),
            },
            "prizeCalculation": calc.to_dict(),
        }


class TournamentService:
    """Tournament lifecycle and result entry."""

    @staticmethod
    def _transition(
        tournament_id: str,
        expected: str,
        target: str,
        timestamp_field: str,
        store: DocumentStore,
    ) -> dict[str, Any]:
        def _run(txn: StoreTransaction) -> dict[str, Any]:
            doc = txn.get(TOURNAMENTS_COLLECTION, tournament_id)
            if doc is None:
                raise NotFoundError("Tournament not found")
            current = (doc.get("status") or TOURNAMENT_UPCOMING).lower()
            if current != expected:
                raise PreconditionFailedError(
                    f"Tournament is {current}; only {expected} tournaments can "
                    f"become {target}"
                )
            now = utcnow()
            txn.update(
                TOURNAMENTS_COLLECTION,
                tournament_id,
                {"status": target, timestamp_field: now, "updatedAt": now},
            )
            return {"id": tournament_id, "status": target}

        result = store.run_transaction(_run)
        logger.info(f"Tournament {tournament_id} moved from {expected} to {target}")
        return result

    @staticmethod
    def start_tournament(
        tournament_id: str, store: DocumentStore | None = None
    ) -> dict[str, Any]:
        """Move an upcoming tournament to live."""
        return TournamentService._transition(
            tournament_id,
            TOURNAMENT_UPCOMING,
            TOURNAMENT_LIVE,
            "startedAt",
            store or get_store(),
        )

    @staticmethod
    def complete_tournament(
        tournament_id: str, store: DocumentStore | None = None
    ) -> dict[str, Any]:
        """Move a live tournament to completed."""
        return TournamentService._transition(
            tournament_id,
            TOURNAMENT_LIVE,
            TOURNAMENT_COMPLETED,
            "completedAt",
            store or get_store(),
        )

    @staticmethod
    def _parse_result(item: Any) -> tuple[str, int | None, int]:
        if not isinstance(item, Mapping) or not item.get("registrationId"):
            raise ValidationError("Each result needs a registrationId")
        registration_id = str(item["registrationId"])
        try:
            position = (
                None if item.get("position") in (None, "") else int(item["position"])
            )
            kills = int(item.get("kills") or 0)
        except (TypeError, ValueError) as e:
            raise ValidationError(
                f"Invalid result for registration {registration_id}"
            ) from e
        if position is not None and position < 1:
            raise ValidationError("Position must be 1 or greater.")
        if kills < 0:
            raise ValidationError("Kills cannot be negative.")
        return registration_id, position, kills

    @staticmethod
    def save_results(
        tournament_id: str, results: Any, store: DocumentStore | None = None
    ) -> int:
        """Record positions and kills on existing registrations.

        Results naming a registration that does not exist or belongs to
        another tournament are skipped. Returns the number updated.
        """
        store = store or get_store()
        if not isinstance(results, list):
            raise ValidationError("Results must be a list")
        tournament = load_tournament(store, tournament_id)
        if tournament.prizes_distributed:
            raise PreconditionFailedError(
                "Results cannot change after prizes are distributed"
            )
        parsed = [TournamentService._parse_result(item) for item in results]
        if len(parsed) > FIRESTORE_BATCH_LIMIT:
            raise ValidationError("Too many results in one request")

        existing = store.get_many(REGISTRATIONS_COLLECTION, [p[0] for p in parsed])
        now = utcnow()
        batch = store.batch()
        for registration_id, position, kills in parsed:
            doc = existing.get(registration_id)
            if doc is None or doc.get("tournamentId") != tournament_id:
                logger.warning(
                    f"Skipping result for unknown registration {registration_id}"
                )
                continue
            batch.update(
                REGISTRATIONS_COLLECTION,
                registration_id,
                {
                    "position": position,
                    "kills": kills,
                    "resultSubmitted": True,
                    "updatedAt": now,
                },
            )
        if len(batch):
            batch.commit()
        return len(batch)

    @staticmethod
    def verify_result(
        registration_id: str,
        verified: bool = True,
        actor: str = DEFAULT_ACTOR,
        store: DocumentStore | None = None,
    ) -> dict[str, Any]:
        """Mark a registration's result as verified, or clear the mark."""
        store = store or get_store()
        doc = store.get(REGISTRATIONS_COLLECTION, registration_id)
        if doc is None:
            raise NotFoundError("Registration not found")
        tournament = load_tournament(store, doc.get("tournamentId") or "")
        if tournament.prizes_distributed:
            raise PreconditionFailedError(
                "Results cannot change after prizes are distributed"
            )
        now = utcnow()
        update = {
            "resultVerified": bool(verified),
            "verifiedAt": now if verified else None,
            "verifiedBy": actor if verified else None,
            "updatedAt": now,
        }
        store.update(REGISTRATIONS_COLLECTION, registration_id, update)
        return {"id": registration_id, "resultVerified": bool(verified)}

    @staticmethod
    def list_registrations(
        tournament_id: str, store: DocumentStore | None = None
    ) -> list[dict[str, Any]]:
        """List a tournament's registrations in standing order."""
        store = store or get_store()
        load_tournament(store, tournament_id)
        docs = store.query(REGISTRATIONS_COLLECTION, tournamentId=tournament_id)
        by_id = {doc["id"]: doc for doc in docs}
        ordered = sorted(
            (Registration.from_document(doc) for doc in docs), key=_standing
        )
        return [by_id[r.id] for r in ordered]

    @staticmethod
    def list_transactions(
        tournament_id: str,
        tx_type: str | None = None,
        page: int = 1,
        limit: int = 20,
        store: DocumentStore | None = None,
    ) -> dict[str, Any]:
        """Page through a tournament's ledger entries, newest first."""
        store = store or get_store()
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive")
        filters: dict[str, Any] = {"tournamentId": tournament_id}
        if tx_type:
            filters["type"] = tx_type
        docs = newest_first(store.query(TRANSACTIONS_COLLECTION, **filters))
        start = (page - 1) * limit
        return {
            "transactions": docs[start : start + limit],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": len(docs),
                "pages": (len(docs) + limit - 1) // limit,
            },
        }
