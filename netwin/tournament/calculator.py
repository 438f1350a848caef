"""Prize pool and per-kill reward calculation.

Pure functions over tournament settings and registrations; nothing here
touches the store.

Two kill pool formulas and two per-kill divisors are in use and they do
not agree:

* kill pool ``percentage``: ``actualPrizePool * perKillRewardPercentage / 100``
* kill pool ``remainder``: ``actualPrizePool - firstPrize``
* per kill ``eliminations``: ``killPrizePool / numKills`` floored to a whole
  unit, where ``numKills`` depends on player count and match type
* per kill ``verified_kills``: ``killPrizePool / totalKills`` over the
  registrations being paid, unfloored

The preview screen has always used ``percentage``/``eliminations`` and the
payout run ``remainder``/``verified_kills``. Both are selectable through
configuration so the two can be unified once a single rule is chosen.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal
from typing import Any, Optional

from netwin.core.constants import (
    DEFAULT_COMMISSION_PERCENTAGE,
    DEFAULT_FIRST_PRIZE_PERCENTAGE,
    DEFAULT_PER_KILL_REWARD_PERCENTAGE,
    KILL_POOL_PERCENTAGE,
    KILL_POOL_REMAINDER,
    MATCH_DUO,
    MATCH_SOLO,
    MATCH_SQUAD,
    PER_KILL_ELIMINATIONS,
    PER_KILL_VERIFIED_KILLS,
)
from netwin.errors import ValidationError
from netwin.utils import floor_money, money_to_store, to_money

from .models import Registration, Tournament

HUNDRED = Decimal(100)
ZERO = Decimal("0.00")

KILL_POOL_POLICIES = (KILL_POOL_PERCENTAGE, KILL_POOL_REMAINDER)
PER_KILL_POLICIES = (PER_KILL_ELIMINATIONS, PER_KILL_VERIFIED_KILLS)

# Players that cannot be eliminated in a single match, by match type.
_SURVIVORS = {MATCH_SOLO: 1, MATCH_DUO: 2, MATCH_SQUAD: 4}


def num_kills(players: int, match_type: str) -> int:
    """Return the number of eliminations possible in one match.

    Unknown match types count as solo.
    """
    survivors = _SURVIVORS.get((match_type or "").lower(), 1)
    return max(players - survivors, 0)


def participant_reward(
    position: Optional[int], kills: int, first_prize: Decimal, per_kill_reward: Decimal
) -> Decimal:
    """Return the reward for one participant before rounding."""
    reward = first_prize if position == 1 else ZERO
    return reward + kills * per_kill_reward


@dataclass(frozen=True)
class PrizeSettings:
    """Inputs to a prize calculation, with defaults already applied."""

    entry_fee: Decimal
    total_registrations: int
    commission_percentage: Decimal
    first_prize_percentage: Decimal
    per_kill_reward_percentage: Decimal
    match_type: str = MATCH_SQUAD
    prize_pool_override: Optional[Decimal] = None

    @classmethod
    def for_tournament(
        cls, tournament: Tournament, total_registrations: int
    ) -> PrizeSettings:
        """Build settings from a tournament, defaulting only missing fields."""

        def _or_default(value: Optional[Decimal], default: int) -> Decimal:
            return Decimal(default) if value is None else value

        return cls(
            entry_fee=tournament.entry_fee,
            total_registrations=total_registrations,
            commission_percentage=_or_default(
                tournament.commission_percentage, DEFAULT_COMMISSION_PERCENTAGE
            ),
            first_prize_percentage=_or_default(
                tournament.first_prize_percentage, DEFAULT_FIRST_PRIZE_PERCENTAGE
            ),
            per_kill_reward_percentage=_or_default(
                tournament.per_kill_reward_percentage,
                DEFAULT_PER_KILL_REWARD_PERCENTAGE,
            ),
            match_type=tournament.match_type,
            prize_pool_override=tournament.prize_pool,
        )

    def validate(self) -> None:
        """Reject settings that would produce negative or inflated payouts."""
        if self.entry_fee < 0:
            raise ValidationError("Entry fee cannot be negative.")
        if self.total_registrations < 0:
            raise ValidationError("Registration count cannot be negative.")
        if self.prize_pool_override is not None and self.prize_pool_override < 0:
            raise ValidationError("Prize pool cannot be negative.")
        for label, value in (
            ("Commission percentage", self.commission_percentage),
            ("First prize percentage", self.first_prize_percentage),
            ("Per-kill reward percentage", self.per_kill_reward_percentage),
        ):
            if not 0 <= value <= HUNDRED:
                raise ValidationError(f"{label} must be between 0 and 100.")


@dataclass(frozen=True)
class RewardBreakdown:
    """A participant's reward split into its parts."""

    first_prize: Decimal
    kill_reward: Decimal

    @property
    def total(self) -> Decimal:
        return self.first_prize + self.kill_reward

    @property
    def prize_type(self) -> str:
        parts = []
        if self.first_prize > 0:
            parts.append("First Place")
        if self.kill_reward > 0:
            parts.append("Kill Reward")
        return " + ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.first_prize > 0:
            data["firstPrize"] = money_to_store(self.first_prize)
        if self.kill_reward > 0:
            data["killReward"] = money_to_store(self.kill_reward)
        return data


@dataclass(frozen=True)
class PrizeCalculation:
    """The result of running the calculator over one tournament."""

    total_registrations: int
    total_entry_fees: Decimal
    commission_percentage: Decimal
    company_commission: Decimal
    actual_prize_pool: Decimal
    first_prize_percentage: Decimal
    first_prize: Decimal
    per_kill_percentage: Decimal
    kill_prize_pool: Decimal
    num_kills: int
    total_kills: int
    per_kill_reward: Decimal
    kill_pool_policy: str
    per_kill_policy: str

    def reward_for(self, position: Optional[int], kills: int) -> RewardBreakdown:
        """Return a participant's reward, each part rounded down to the cent."""
        if kills < 0:
            raise ValidationError("Kills cannot be negative.")
        if position is not None and position < 1:
            raise ValidationError("Position must be 1 or greater.")
        first = self.first_prize if position == 1 else ZERO
        kill_reward = participant_reward(None, kills, ZERO, self.per_kill_reward)
        return RewardBreakdown(first_prize=first, kill_reward=floor_money(kill_reward))

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalRegistrations": self.total_registrations,
            "totalEntryFees": money_to_store(self.total_entry_fees),
            "companyCommission": money_to_store(self.company_commission),
            "companyCommissionPercentage": float(self.commission_percentage),
            "actualPrizePool": money_to_store(self.actual_prize_pool),
            "firstPrize": money_to_store(self.first_prize),
            "firstPrizePercentage": float(self.first_prize_percentage),
            "killPrizePool": money_to_store(self.kill_prize_pool),
            "perKillPercentage": float(self.per_kill_percentage),
            "numKills": self.num_kills,
            "totalKills": self.total_kills,
            "perKillReward": float(self.per_kill_reward),
            "killPoolPolicy": self.kill_pool_policy,
            "perKillPolicy": self.per_kill_policy,
        }


def prize_pool(settings: PrizeSettings) -> tuple[Decimal, Decimal, Decimal]:
    """Return ``(totalEntryFees, companyCommission, actualPrizePool)``.

    Without an override, commission and pool always add up to the entry fees.
    """
    total_entry_fees = to_money(settings.entry_fee * settings.total_registrations)
    company_commission = to_money(
        total_entry_fees * settings.commission_percentage / HUNDRED
    )
    if settings.prize_pool_override is not None:
        actual_prize_pool = settings.prize_pool_override
    else:
        actual_prize_pool = total_entry_fees - company_commission
    return total_entry_fees, company_commission, actual_prize_pool


def calculate(
    settings: PrizeSettings,
    registrations: Iterable[Registration],
    kill_pool_policy: str = KILL_POOL_PERCENTAGE,
    per_kill_policy: str = PER_KILL_ELIMINATIONS,
) -> PrizeCalculation:
    """Run the prize calculation.

    ``registrations`` are the ones whose kills count toward ``totalKills``;
    the payout run passes only verified winners.
    """
    if kill_pool_policy not in KILL_POOL_POLICIES:
        raise ValidationError(f"Unknown kill pool policy: {kill_pool_policy}")
    if per_kill_policy not in PER_KILL_POLICIES:
        raise ValidationError(f"Unknown per-kill policy: {per_kill_policy}")
    settings.validate()

    registrations = list(registrations)
    for registration in registrations:
        if registration.kills < 0:
            raise ValidationError(
                f"Registration {registration.id} has negative kills."
            )

    total_entry_fees, company_commission, actual_prize_pool = prize_pool(settings)
    first_prize = floor_money(
        actual_prize_pool * settings.first_prize_percentage / HUNDRED
    )

    if kill_pool_policy == KILL_POOL_REMAINDER:
        kill_prize_pool = actual_prize_pool - first_prize
    else:
        kill_prize_pool = floor_money(
            actual_prize_pool * settings.per_kill_reward_percentage / HUNDRED
        )

    eliminations = num_kills(settings.total_registrations, settings.match_type)
    total_kills = sum(r.kills for r in registrations)

    if per_kill_policy == PER_KILL_ELIMINATIONS:
        per_kill_reward = (
            (kill_prize_pool / eliminations).to_integral_value(rounding=ROUND_FLOOR)
            if eliminations > 0
            else ZERO
        )
    else:
        per_kill_reward = kill_prize_pool / total_kills if total_kills > 0 else ZERO

    return PrizeCalculation(
        total_registrations=settings.total_registrations,
        total_entry_fees=total_entry_fees,
        commission_percentage=settings.commission_percentage,
        company_commission=company_commission,
        actual_prize_pool=actual_prize_pool,
        first_prize_percentage=settings.first_prize_percentage,
        first_prize=first_prize,
        per_kill_percentage=settings.per_kill_reward_percentage,
        kill_prize_pool=kill_prize_pool,
        num_kills=eliminations,
        total_kills=total_kills,
        per_kill_reward=per_kill_reward,
        kill_pool_policy=kill_pool_policy,
        per_kill_policy=per_kill_policy,
    )
