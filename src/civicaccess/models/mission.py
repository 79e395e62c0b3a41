"""Mission definition models and the enumerations shared across the core.

Mission access is decided against five requirement dimensions:
- Identity tier (ordinal: Citizen < Verifier < Moderator < Governor < Administrator).
- Trust score (0-100).
- Replay of a prerequisite mission.
- Feedback badge.
- Verified vote.

Tier comparison is a fixed lookup-table index difference. It is not
configurable and does not depend on enum declaration order.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Optional


class UserTier(str, enum.Enum):
    """Ordinal civic-permission level."""
    CITIZEN = "Citizen"
    VERIFIER = "Verifier"
    MODERATOR = "Moderator"
    GOVERNOR = "Governor"
    ADMINISTRATOR = "Administrator"


_TIER_ORDER: tuple[UserTier, ...] = (
    UserTier.CITIZEN,
    UserTier.VERIFIER,
    UserTier.MODERATOR,
    UserTier.GOVERNOR,
    UserTier.ADMINISTRATOR,
)


def tier_index(tier: UserTier) -> int:
    """Return the ordinal position of a tier in the fixed order."""
    return _TIER_ORDER.index(tier)


def compare_tiers(user_tier: UserTier, required_tier: UserTier) -> int:
    """Return the index difference between two tiers.

    >= 0 means user_tier meets or exceeds required_tier.
    """
    return tier_index(user_tier) - tier_index(required_tier)


def tier_order() -> tuple[UserTier, ...]:
    return _TIER_ORDER


class MissionStatus(str, enum.Enum):
    """Access status persisted on a ledger entry."""
    LOCKED = "locked"
    UNLOCKED = "unlocked"
    REPLAY_REQUIRED = "replay_required"
    TIER_INSUFFICIENT = "tier_insufficient"
    TRUST_INSUFFICIENT = "trust_insufficient"
    FEEDBACK_REQUIRED = "feedback_required"
    COMPLETED = "completed"

    @property
    def grants_access(self) -> bool:
        return self in (MissionStatus.UNLOCKED, MissionStatus.COMPLETED)


class UnlockMethod(str, enum.Enum):
    """Which fact was credited with unlocking a mission."""
    MEMORY_REPLAY = "memory_replay"
    IDENTITY_TIER = "identity_tier"
    TRUST_THRESHOLD = "trust_threshold"
    FEEDBACK_BADGE = "feedback_badge"
    VERIFIED_VOTE = "verified_vote"
    ADMIN_OVERRIDE = "admin_override"
    NONE = "none"


class MissionCategory(str, enum.Enum):
    WALLET = "wallet"
    IDENTITY = "identity"
    CONSENSUS = "consensus"
    FEEDBACK = "feedback"
    GOVERNANCE = "governance"
    EDUCATION = "education"


@dataclass(frozen=True)
class MissionRequirements:
    """Access policy for a single mission."""
    min_tier: UserTier = UserTier.CITIZEN
    min_trust_score: int = 0
    require_replay: bool = False
    replay_mission_id: Optional[str] = None
    require_feedback: bool = False
    require_vote: bool = False

    def __post_init__(self) -> None:
        if not 0 <= self.min_trust_score <= 100:
            raise ValueError(
                f"min_trust_score must be within 0-100, got {self.min_trust_score}"
            )


@dataclass(frozen=True)
class MissionDefinition:
    """A gated mission. Immutable once loaded into the catalog."""
    mission_id: str
    title: str
    description: str
    category: MissionCategory
    requirements: MissionRequirements
    unlock_hints: tuple[str, ...] = field(default_factory=tuple)
    route: str = ""

    @staticmethod
    def from_dict(data: dict[str, Any]) -> MissionDefinition:
        """Build a definition from its JSON form (config/missions.json)."""
        reqs = data.get("requirements", {})
        return MissionDefinition(
            mission_id=data["mission_id"],
            title=data["title"],
            description=data.get("description", ""),
            category=MissionCategory(data["category"]),
            requirements=MissionRequirements(
                min_tier=UserTier(reqs.get("min_tier", UserTier.CITIZEN.value)),
                min_trust_score=reqs.get("min_trust_score", 0),
                require_replay=reqs.get("require_replay", False),
                replay_mission_id=reqs.get("replay_mission_id"),
                require_feedback=reqs.get("require_feedback", False),
                require_vote=reqs.get("require_vote", False),
            ),
            unlock_hints=tuple(data.get("unlock_hints", [])),
            route=data.get("route", ""),
        )

    def to_dict(self) -> dict[str, Any]:
        reqs = self.requirements
        return {
            "mission_id": self.mission_id,
            "title": self.title,
            "description": self.description,
            "category": self.category.value,
            "requirements": {
                "min_tier": reqs.min_tier.value,
                "min_trust_score": reqs.min_trust_score,
                "require_replay": reqs.require_replay,
                "replay_mission_id": reqs.replay_mission_id,
                "require_feedback": reqs.require_feedback,
                "require_vote": reqs.require_vote,
            },
            "unlock_hints": list(self.unlock_hints),
            "route": self.route,
        }
