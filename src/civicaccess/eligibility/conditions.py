"""Requirement conditions and status derivation.

Both the evaluator and the ledger derive status from the same five
boolean conditions, checked in a fixed order:

  tier > trust > replay > feedback/vote

All five hold -> unlocked. Otherwise the first failing condition in that
order names the single persisted status. The evaluator additionally
reports every failing condition as a blocker; the ledger does not.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from civicaccess.models.mission import (
    MissionRequirements,
    MissionStatus,
    UnlockMethod,
    UserTier,
    compare_tiers,
)


@dataclass(frozen=True)
class RequirementChecks:
    """The five independent requirement conditions for one decision."""
    tier_sufficient: bool
    trust_sufficient: bool
    replay_satisfied: bool
    feedback_satisfied: bool
    vote_satisfied: bool

    @property
    def all_satisfied(self) -> bool:
        return (
            self.tier_sufficient
            and self.trust_sufficient
            and self.replay_satisfied
            and self.feedback_satisfied
            and self.vote_satisfied
        )

    @staticmethod
    def evaluate(
        requirements: MissionRequirements,
        user_tier: UserTier,
        trust_score: float,
        replay_validated: bool,
        has_feedback_badge: bool,
        has_verified_vote: bool,
    ) -> RequirementChecks:
        """Evaluate the conditions from already-resolved facts."""
        return RequirementChecks(
            tier_sufficient=compare_tiers(user_tier, requirements.min_tier) >= 0,
            trust_sufficient=trust_score >= requirements.min_trust_score,
            replay_satisfied=not requirements.require_replay or replay_validated,
            feedback_satisfied=not requirements.require_feedback or has_feedback_badge,
            vote_satisfied=not requirements.require_vote or has_verified_vote,
        )


def derive_status(checks: RequirementChecks) -> MissionStatus:
    """Map the conditions to exactly one status by fixed priority."""
    if checks.all_satisfied:
        return MissionStatus.UNLOCKED
    if not checks.tier_sufficient:
        return MissionStatus.TIER_INSUFFICIENT
    if not checks.trust_sufficient:
        return MissionStatus.TRUST_INSUFFICIENT
    if not checks.replay_satisfied:
        return MissionStatus.REPLAY_REQUIRED
    return MissionStatus.FEEDBACK_REQUIRED


def select_unlock_method(
    has_verified_vote: bool,
    has_feedback_badge: bool,
    replay_credited: bool,
    user_tier: UserTier,
    trust_sufficient: bool,
) -> Optional[UnlockMethod]:
    """Pick the credited unlock method.

    Priority: verified_vote > feedback_badge > memory_replay >
    identity_tier > trust_threshold. Returns None if nothing applies.
    """
    if has_verified_vote:
        return UnlockMethod.VERIFIED_VOTE
    if has_feedback_badge:
        return UnlockMethod.FEEDBACK_BADGE
    if replay_credited:
        return UnlockMethod.MEMORY_REPLAY
    if user_tier != UserTier.CITIZEN:
        return UnlockMethod.IDENTITY_TIER
    if trust_sufficient:
        return UnlockMethod.TRUST_THRESHOLD
    return None
