"""Data models for the tournament blueprint."""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional

from netwin.core.constants import MATCH_SQUAD, TOURNAMENT_UPCOMING
from netwin.errors import ValidationError
from netwin.utils import money_to_store, to_money


def _optional_decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    return to_money(value)


def _optional_int(value: Any, name: str) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid {name}: {value!r}") from e


@dataclass
class Tournament:
    """A tournament document, with the prize settings made explicit.

    Percentage fields stay ``None`` when the document does not set them so
    the calculator can tell an explicit 0 from a missing value.
    """

    id: str
    title: str = ""
    status: str = TOURNAMENT_UPCOMING
    match_type: str = MATCH_SQUAD
    entry_fee: Decimal = Decimal("0.00")
    commission_percentage: Optional[Decimal] = None
    first_prize_percentage: Optional[Decimal] = None
    per_kill_reward_percentage: Optional[Decimal] = None
    prize_pool: Optional[Decimal] = None
    prizes_distributed: bool = False
    distribution_claim: Optional[dict[str, Any]] = None

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> Tournament:
        """Build a tournament from a store document."""
        return cls(
            id=doc["id"],
            title=doc.get("title") or doc.get("name") or "",
            status=(doc.get("status") or TOURNAMENT_UPCOMING).lower(),
            match_type=(doc.get("matchType") or MATCH_SQUAD).lower(),
            entry_fee=to_money(doc.get("entryFee")),
            commission_percentage=_optional_decimal(
                doc.get("companyCommissionPercentage")
            ),
            first_prize_percentage=_optional_decimal(doc.get("firstPrizePercentage")),
            per_kill_reward_percentage=_optional_decimal(
                doc.get("perKillRewardPercentage")
            ),
            prize_pool=_optional_decimal(doc.get("prizePool")),
            prizes_distributed=bool(doc.get("prizesDistributed")),
            distribution_claim=doc.get("distributionClaim"),
        )

    def summary(self) -> dict[str, Any]:
        """Return the fields shown alongside a prize calculation."""
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status,
            "matchType": self.match_type,
            "entryFee": money_to_store(self.entry_fee),
            "originalPrizePool": (
                money_to_store(self.prize_pool) if self.prize_pool is not None else None
            ),
            "prizesDistributed": self.prizes_distributed,
        }


@dataclass
class Registration:
    """A participant's registration and result in a tournament."""

    id: str
    tournament_id: str
    user_id: Optional[str] = None
    position: Optional[int] = None
    kills: int = 0
    result_submitted: bool = False
    result_verified: bool = False
    reward: Optional[Decimal] = None
    prize_distributed: bool = False
    user_name: str = "Unknown"
    team_name: Optional[str] = None

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> Registration:
        """Build a registration from a store document."""
        return cls(
            id=doc["id"],
            tournament_id=doc.get("tournamentId", ""),
            user_id=doc.get("userId") or None,
            position=_optional_int(doc.get("position"), "position"),
            kills=_optional_int(doc.get("kills"), "kills") or 0,
            result_submitted=bool(doc.get("resultSubmitted")),
            result_verified=bool(doc.get("resultVerified")),
            reward=_optional_decimal(doc.get("reward")),
            prize_distributed=bool(doc.get("prizeDistributed")),
            user_name=(
                doc.get("userName")
                or doc.get("teamName")
                or doc.get("displayName")
                or "Unknown"
            ),
            team_name=doc.get("teamName"),
        )

    @property
    def is_verified_winner(self) -> bool:
        """Whether this registration qualifies for a payout."""
        return self.result_verified and (self.position == 1 or self.kills > 0)


@dataclass
class PrizeDistribution:
    """One payout made by a distribution run. Never changed once written."""

    tournament_id: str
    user_id: str
    registration_id: str
    position: Optional[int]
    kills: int
    prize_amount: Decimal
    prize_type: str
    status: str = "completed"
    id: str = ""
    created_at: Optional[datetime.datetime] = None
    kill_reward: Decimal = field(default=Decimal("0.00"))

    def to_document(self) -> dict[str, Any]:
        """Return the document written to the store."""
        return {
            "tournamentId": self.tournament_id,
            "userId": self.user_id,
            "registrationId": self.registration_id,
            "position": self.position,
            "kills": self.kills,
            "prizeAmount": money_to_store(self.prize_amount),
            "prizeType": self.prize_type,
            "status": self.status,
            "createdAt": self.created_at,
            "updatedAt": self.created_at,
        }

    def to_dict(self) -> dict[str, Any]:
        """Return the document plus its id, for API responses."""
        data = self.to_document()
        data["id"] = self.id
        return data
