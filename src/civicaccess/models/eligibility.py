"""Eligibility result and unlock-attempt models.

EligibilityResult is the rich view of a decision: every failing requirement
is listed as a blocker, whereas a ledger entry persists a single status.
UnlockAttempt is the transient audit record kept in the per-user ring
buffer, separate from the durable ledger.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from civicaccess.models.mission import MissionStatus, UnlockMethod, UserTier
from civicaccess.models.user import UserContext


class BlockerType(str, enum.Enum):
    TIER = "tier"
    TRUST = "trust"
    REPLAY = "replay"
    FEEDBACK = "feedback"
    VOTE = "vote"


class BlockerPriority(str, enum.Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    BlockerPriority.HIGH: 3,
    BlockerPriority.MEDIUM: 2,
    BlockerPriority.LOW: 1,
}


@dataclass(frozen=True)
class UnlockBlocker:
    """One unmet requirement, with explanation and remedy."""
    type: BlockerType
    message: str
    action_required: str
    priority: BlockerPriority

    def to_dict(self) -> dict[str, str]:
        return {
            "type": self.type.value,
            "message": self.message,
            "action_required": self.action_required,
            "priority": self.priority.value,
        }


@dataclass(frozen=True)
class RequirementSnapshot:
    """Required vs. current vs. satisfied, per requirement dimension."""
    tier_required: UserTier
    tier_current: UserTier
    tier_sufficient: bool
    trust_required: int
    trust_current: float
    trust_sufficient: bool
    replay_required: bool
    replay_validated: bool
    feedback_required: bool
    feedback_provided: bool
    vote_required: bool
    vote_verified: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "tier_required": self.tier_required.value,
            "tier_current": self.tier_current.value,
            "tier_sufficient": self.tier_sufficient,
            "trust_required": self.trust_required,
            "trust_current": self.trust_current,
            "trust_sufficient": self.trust_sufficient,
            "replay_required": self.replay_required,
            "replay_validated": self.replay_validated,
            "feedback_required": self.feedback_required,
            "feedback_provided": self.feedback_provided,
            "vote_required": self.vote_required,
            "vote_verified": self.vote_verified,
        }


@dataclass(frozen=True)
class EligibilityResult:
    mission_id: str
    is_unlocked: bool
    status: MissionStatus
    blockers: tuple[UnlockBlocker, ...]
    requirements: RequirementSnapshot
    unlock_hints: tuple[str, ...]
    next_steps: tuple[str, ...]
    unlocked_via: Optional[UnlockMethod] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "mission_id": self.mission_id,
            "is_unlocked": self.is_unlocked,
            "status": self.status.value,
            "blockers": [b.to_dict() for b in self.blockers],
            "unlocked_via": self.unlocked_via.value if self.unlocked_via else None,
            "requirements": self.requirements.to_dict(),
            "unlock_hints": list(self.unlock_hints),
            "next_steps": list(self.next_steps),
        }


class AttemptResult(str, enum.Enum):
    SUCCESS = "success"
    BLOCKED = "blocked"
    ERROR = "error"


@dataclass(frozen=True)
class UnlockAttempt:
    """Transient record of one attempt_unlock call."""
    attempt_id: str
    mission_id: str
    user_id: str
    timestamp: datetime
    result: AttemptResult
    blockers: tuple[UnlockBlocker, ...]
    user_context: UserContext
    eligibility: EligibilityResult
    method: Optional[UnlockMethod] = None
    entry_id: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempt_id": self.attempt_id,
            "mission_id": self.mission_id,
            "user_id": self.user_id,
            "timestamp": self.timestamp.isoformat(),
            "result": self.result.value,
            "blockers": [b.to_dict() for b in self.blockers],
            "method": self.method.value if self.method else None,
            "entry_id": self.entry_id,
            "error": self.error,
            "metadata": {
                "user_context": self.user_context.to_dict(),
                "eligibility": self.eligibility.to_dict(),
            },
        }


@dataclass(frozen=True)
class AccessStatistics:
    """Cross-user aggregation over retained unlock attempts."""
    total_attempts: int
    successful_unlocks: int
    blocked_attempts: int
    error_attempts: int
    top_blockers: list[tuple[str, int]] = field(default_factory=list)
    tier_distribution: dict[str, int] = field(default_factory=dict)
    recent_activity: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_attempts": self.total_attempts,
            "successful_unlocks": self.successful_unlocks,
            "blocked_attempts": self.blocked_attempts,
            "error_attempts": self.error_attempts,
            "top_blockers": [
                {"type": t, "count": c} for t, c in self.top_blockers
            ],
            "tier_distribution": dict(self.tier_distribution),
            "recent_activity": self.recent_activity,
        }
