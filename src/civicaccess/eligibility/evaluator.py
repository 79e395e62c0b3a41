"""Eligibility evaluator — decides whether a user may access a mission.

Pure computation: (MissionDefinition, UserContext) -> EligibilityResult.
No ledger access, no clock, no randomness. Identical inputs always
produce identical output.

Each failing condition yields one blocker:
- tier, trust        -> priority high
- replay, feedback, vote -> priority medium

next_steps lists the blockers' actions ordered by priority (stable within
a priority), numbered, capped at next_steps_limit.
"""

from __future__ import annotations

from civicaccess.eligibility.conditions import (
    RequirementChecks,
    derive_status,
    select_unlock_method,
)
from civicaccess.models.eligibility import (
    BlockerPriority,
    BlockerType,
    EligibilityResult,
    RequirementSnapshot,
    UnlockBlocker,
)
from civicaccess.models.mission import MissionDefinition
from civicaccess.models.user import InvalidUserContextError, UserContext
from civicaccess.policy.resolver import PolicyResolver


def _format_points(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else f"{value:g}"


class EligibilityEvaluator:
    """Evaluates the five mission requirements against a user context."""

    def __init__(self, resolver: PolicyResolver) -> None:
        self._next_steps_limit = resolver.next_steps_limit()
        self._default_next_step = resolver.default_next_step()

    def evaluate(
        self, mission: MissionDefinition, context: UserContext,
    ) -> EligibilityResult:
        if not isinstance(context, UserContext):
            raise InvalidUserContextError(
                f"expected UserContext, got {type(context).__name__}"
            )
        reqs = mission.requirements

        replay_validated = self._replay_validated(mission, context)
        has_badge = len(context.feedback_badges) > 0
        has_vote = context.verified_votes > 0

        checks = RequirementChecks.evaluate(
            reqs,
            user_tier=context.user_tier,
            trust_score=context.trust_score,
            replay_validated=replay_validated,
            has_feedback_badge=has_badge,
            has_verified_vote=has_vote,
        )
        blockers = self._blockers(mission, context, checks)

        unlocked_via = None
        if checks.all_satisfied:
            unlocked_via = select_unlock_method(
                has_verified_vote=has_vote,
                has_feedback_badge=has_badge,
                replay_credited=reqs.require_replay and checks.replay_satisfied,
                user_tier=context.user_tier,
                trust_sufficient=checks.trust_sufficient,
            )

        snapshot = RequirementSnapshot(
            tier_required=reqs.min_tier,
            tier_current=context.user_tier,
            tier_sufficient=checks.tier_sufficient,
            trust_required=reqs.min_trust_score,
            trust_current=context.trust_score,
            trust_sufficient=checks.trust_sufficient,
            replay_required=reqs.require_replay,
            replay_validated=checks.replay_satisfied,
            feedback_required=reqs.require_feedback,
            feedback_provided=checks.feedback_satisfied,
            vote_required=reqs.require_vote,
            vote_verified=checks.vote_satisfied,
        )

        return EligibilityResult(
            mission_id=mission.mission_id,
            is_unlocked=checks.all_satisfied,
            status=derive_status(checks),
            blockers=blockers,
            requirements=snapshot,
            unlock_hints=tuple(mission.unlock_hints),
            next_steps=self.next_steps(blockers),
            unlocked_via=unlocked_via,
        )

    def next_steps(self, blockers: tuple[UnlockBlocker, ...]) -> tuple[str, ...]:
        """Numbered remedies, highest priority first."""
        if not blockers:
            return (self._default_next_step,)
        ordered = sorted(blockers, key=lambda b: b.priority.rank, reverse=True)
        return tuple(
            f"{i}. {b.action_required}"
            for i, b in enumerate(ordered[: self._next_steps_limit], start=1)
        )

    @staticmethod
    def _replay_validated(mission: MissionDefinition, context: UserContext) -> bool:
        reqs = mission.requirements
        if not reqs.require_replay:
            return True
        # A replay requirement without a named prerequisite has nothing to check
        if not reqs.replay_mission_id:
            return True
        return context.has_valid_replay(reqs.replay_mission_id)

    @staticmethod
    def _blockers(
        mission: MissionDefinition,
        context: UserContext,
        checks: RequirementChecks,
    ) -> tuple[UnlockBlocker, ...]:
        reqs = mission.requirements
        blockers: list[UnlockBlocker] = []

        if not checks.tier_sufficient:
            blockers.append(UnlockBlocker(
                type=BlockerType.TIER,
                message=f"Requires {reqs.min_tier.value} tier or higher",
                action_required=(
                    f"Advance to {reqs.min_tier.value} tier through civic engagement"
                ),
                priority=BlockerPriority.HIGH,
            ))

        if not checks.trust_sufficient:
            gap = reqs.min_trust_score - context.trust_score
            blockers.append(UnlockBlocker(
                type=BlockerType.TRUST,
                message=f"Requires trust score of {reqs.min_trust_score}",
                action_required=f"Increase trust score by {_format_points(gap)} points",
                priority=BlockerPriority.HIGH,
            ))

        if not checks.replay_satisfied:
            blockers.append(UnlockBlocker(
                type=BlockerType.REPLAY,
                message="Requires completion of prerequisite mission",
                action_required=(
                    f"Complete and validate {reqs.replay_mission_id or 'prerequisite'} mission"
                ),
                priority=BlockerPriority.MEDIUM,
            ))

        if not checks.feedback_satisfied:
            blockers.append(UnlockBlocker(
                type=BlockerType.FEEDBACK,
                message="Requires verified feedback submission",
                action_required="Submit feedback in governance or consensus systems",
                priority=BlockerPriority.MEDIUM,
            ))

        if not checks.vote_satisfied:
            blockers.append(UnlockBlocker(
                type=BlockerType.VOTE,
                message="Requires verified vote participation",
                action_required="Cast votes in civic governance processes",
                priority=BlockerPriority.MEDIUM,
            ))

        return tuple(blockers)
