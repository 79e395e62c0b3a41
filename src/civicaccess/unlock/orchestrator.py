"""Unlock orchestrator — composes catalog, evaluator and ledger.

The orchestrator is the only component that writes to the ledger. It:
- Runs the evaluator and records the agreed status (attempt_unlock).
- Forwards replay and feedback facts to the ledger.
- Keeps a per-user bounded history of attempts, independent of the ledger.
- Exposes per-user overviews and cross-user statistics.

Error handling:
- MissionNotFoundError and InvalidUserContextError are preconditions and
  propagate to the caller.
- Ledger write faults never raise out of a mutation. attempt_unlock returns
  result=error with nothing persisted; the replay/feedback writes return a
  failed ServiceResult.
"""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from civicaccess.catalog.registry import MissionCatalog
from civicaccess.eligibility.evaluator import EligibilityEvaluator
from civicaccess.ledger.access_ledger import AccessLedger, LedgerWriteError
from civicaccess.models.eligibility import (
    AccessStatistics,
    AttemptResult,
    EligibilityResult,
    UnlockAttempt,
)
from civicaccess.models.ledger import LedgerEntry
from civicaccess.models.mission import (
    MissionDefinition,
    MissionStatus,
    UnlockMethod,
    tier_order,
)
from civicaccess.models.user import UserContext
from civicaccess.persistence.event_log import EventLog
from civicaccess.policy.resolver import PolicyResolver
from civicaccess.unlock.history import AttemptHistory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceResult:
    """Result of a ledger mutation forwarded by the orchestrator."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class MissionOverviewItem:
    definition: MissionDefinition
    eligibility: EligibilityResult
    ledger_entry: Optional[LedgerEntry] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "mission": self.definition.to_dict(),
            "eligibility": self.eligibility.to_dict(),
            "ledger_entry": self.ledger_entry.to_dict() if self.ledger_entry else None,
        }


@dataclass(frozen=True)
class MissionsOverview:
    total_missions: int
    unlocked_missions: int
    blocked_missions: int
    mission_states: list[MissionOverviewItem] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_missions": self.total_missions,
            "unlocked_missions": self.unlocked_missions,
            "blocked_missions": self.blocked_missions,
            "mission_states": [m.to_dict() for m in self.mission_states],
        }


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UnlockOrchestrator:
    """Mission access facade.

    Usage:
        resolver = PolicyResolver.from_config_dir(config_dir)
        orchestrator = UnlockOrchestrator.from_resolver(resolver)

        context = create_user_context("did:civic:alice", UserTier.VERIFIER, 60)
        preview = orchestrator.check_unlock_eligibility("identity-verification-deck12", context)
        attempt = orchestrator.attempt_unlock("identity-verification-deck12", context)

    Persistence (optional):
        orchestrator = UnlockOrchestrator.from_resolver(resolver, event_log=log)
        # The ledger is journaled to the log and rebuilt from it on construction.
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        catalog: MissionCatalog,
        ledger: AccessLedger,
        history: Optional[AttemptHistory] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._catalog = catalog
        self._ledger = ledger
        self._evaluator = EligibilityEvaluator(resolver)
        attempt_policy = resolver.attempt_policy()
        self._history = history or AttemptHistory(attempt_policy.history_limit)
        self._top_blockers = attempt_policy.top_blockers
        self._recent_window = timedelta(
            hours=resolver.ledger_policy().recent_activity_hours,
        )
        self._permanent_unlocks = resolver.permanent_unlocks()
        self._clock = clock or _utc_now

    @classmethod
    def from_resolver(
        cls,
        resolver: PolicyResolver,
        event_log: Optional[EventLog] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> UnlockOrchestrator:
        """Wire a catalog and ledger from configuration."""
        catalog = MissionCatalog.from_resolver(resolver)
        ledger_policy = resolver.ledger_policy()
        ledger = AccessLedger(
            catalog,
            max_entries=ledger_policy.max_entries,
            event_log=event_log,
            clock=clock,
            recent_activity_hours=ledger_policy.recent_activity_hours,
            permanent_unlocks=resolver.permanent_unlocks(),
        )
        return cls(resolver, catalog, ledger, clock=clock)

    @property
    def catalog(self) -> MissionCatalog:
        return self._catalog

    @property
    def ledger(self) -> AccessLedger:
        return self._ledger

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def check_unlock_eligibility(
        self, mission_id: str, context: UserContext,
    ) -> EligibilityResult:
        """Preview eligibility. Writes nothing."""
        return self._evaluator.evaluate(self._catalog.get(mission_id), context)

    def get_user_missions_overview(self, context: UserContext) -> MissionsOverview:
        items: list[MissionOverviewItem] = []
        for mission in self._catalog.list_all():
            items.append(MissionOverviewItem(
                definition=mission,
                eligibility=self._evaluator.evaluate(mission, context),
                ledger_entry=self._ledger.current_entry(mission.mission_id, context.user_id),
            ))
        unlocked = sum(1 for i in items if i.eligibility.is_unlocked)
        return MissionsOverview(
            total_missions=len(items),
            unlocked_missions=unlocked,
            blocked_missions=len(items) - unlocked,
            mission_states=items,
        )

    def get_unlock_attempt_history(
        self, user_id: str, limit: Optional[int] = None,
    ) -> list[UnlockAttempt]:
        return self._history.for_user(user_id, limit)

    def get_mission_access_statistics(
        self, now: Optional[datetime] = None,
    ) -> AccessStatistics:
        """Aggregate over every retained attempt, across users."""
        now = now or self._clock()
        cutoff = now - self._recent_window
        attempts = self._history.all_attempts()

        results = Counter(a.result for a in attempts)
        blocker_counts: Counter[str] = Counter()
        for attempt in attempts:
            # A retained permanent unlock succeeds while still listing live blockers
            if attempt.result == AttemptResult.SUCCESS:
                continue
            for blocker in attempt.blockers:
                blocker_counts[blocker.type.value] += 1

        tier_distribution = {t.value: 0 for t in tier_order()}
        for attempt in attempts:
            tier_distribution[attempt.user_context.user_tier.value] += 1

        return AccessStatistics(
            total_attempts=len(attempts),
            successful_unlocks=results[AttemptResult.SUCCESS],
            blocked_attempts=results[AttemptResult.BLOCKED],
            error_attempts=results[AttemptResult.ERROR],
            top_blockers=blocker_counts.most_common(self._top_blockers),
            tier_distribution=tier_distribution,
            recent_activity=sum(1 for a in attempts if a.timestamp > cutoff),
        )

    def export_unlock_data(self, now: Optional[datetime] = None) -> dict[str, Any]:
        now = now or self._clock()
        return {
            "exported_at": now.isoformat(),
            "attempts": [a.to_dict() for a in self._history.all_attempts()],
            "statistics": self.get_mission_access_statistics(now).to_dict(),
        }

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def attempt_unlock(self, mission_id: str, context: UserContext) -> UnlockAttempt:
        """Evaluate and record one unlock attempt.

        Records unlocked on success, the evaluator's blocking status
        otherwise. A ledger fault yields result=error and persists nothing.
        Every call lands in the user's attempt history.
        """
        mission = self._catalog.get(mission_id)
        eligibility = self._evaluator.evaluate(mission, context)
        attempt_id = f"attempt-{uuid.uuid4().hex[:12]}"
        user_id = context.user_id

        method: Optional[UnlockMethod] = eligibility.unlocked_via
        entry_id: Optional[str] = None
        error: Optional[str] = None

        with self._ledger.pair_lock(mission_id, user_id):
            prior = self._ledger.current_entry(mission_id, user_id)
            if eligibility.is_unlocked:
                status = MissionStatus.UNLOCKED
                unlocked_via = eligibility.unlocked_via or UnlockMethod.TRUST_THRESHOLD
                trace = f"trace:unlock:{attempt_id}"
                result = AttemptResult.SUCCESS
            elif (
                self._permanent_unlocks
                and prior is not None
                and prior.status.grants_access
            ):
                status = prior.status
                unlocked_via = prior.unlocked_via
                method = prior.unlocked_via
                trace = f"trace:retained:{attempt_id}"
                result = AttemptResult.SUCCESS
            else:
                status = eligibility.status
                unlocked_via = UnlockMethod.NONE
                trace = f"trace:blocked:{attempt_id}"
                result = AttemptResult.BLOCKED

            try:
                entry = self._ledger.record_event(
                    mission_id,
                    status,
                    user_id,
                    context.user_tier,
                    context.trust_score,
                    trace,
                    unlocked_via,
                    {
                        "replay_validated": eligibility.requirements.replay_validated,
                        "feedback_badge": (
                            context.feedback_badges[0] if context.feedback_badges else None
                        ),
                        "vote_verified": context.verified_votes > 0,
                    },
                )
                entry_id = entry.entry_id
            except LedgerWriteError as e:
                result = AttemptResult.ERROR
                error = str(e)

        if result == AttemptResult.ERROR:
            logger.error(
                "Mission unlock error | mission=%s user=%s: %s", mission_id, user_id, error,
            )
        elif result == AttemptResult.SUCCESS:
            logger.info(
                "Mission unlocked | mission=%s user=%s method=%s",
                mission_id, user_id, method.value if method else None,
            )
        else:
            logger.info(
                "Mission unlock blocked | mission=%s user=%s status=%s blockers=%d",
                mission_id, user_id, eligibility.status.value, len(eligibility.blockers),
            )

        attempt = UnlockAttempt(
            attempt_id=attempt_id,
            mission_id=mission_id,
            user_id=user_id,
            timestamp=self._clock(),
            result=result,
            blockers=eligibility.blockers,
            user_context=context,
            eligibility=eligibility,
            method=method if result == AttemptResult.SUCCESS else None,
            entry_id=entry_id,
            error=error,
        )
        self._history.append(attempt)
        return attempt

    def update_via_replay(
        self,
        mission_id: str,
        user_id: str,
        replay_trace_hash: str,
        replay_valid: bool,
    ) -> ServiceResult:
        self._catalog.get(mission_id)
        try:
            entry = self._ledger.update_via_replay(
                mission_id, user_id, replay_trace_hash, replay_valid,
            )
        except LedgerWriteError as e:
            return ServiceResult(success=False, errors=[str(e)])
        if entry is None:
            reason = "replay not valid" if not replay_valid else "no prior ledger entry"
            return ServiceResult(
                success=False,
                errors=[f"Replay not recorded for {mission_id}/{user_id}: {reason}"],
            )
        return ServiceResult(success=True, data=_entry_data(entry))

    def update_via_feedback(
        self,
        mission_id: str,
        user_id: str,
        feedback_badge: Optional[str] = None,
        vote_verified: Optional[bool] = None,
    ) -> ServiceResult:
        self._catalog.get(mission_id)
        try:
            entry = self._ledger.update_via_feedback(
                mission_id, user_id, feedback_badge, vote_verified,
            )
        except LedgerWriteError as e:
            return ServiceResult(success=False, errors=[str(e)])
        if entry is None:
            return ServiceResult(
                success=False,
                errors=[
                    f"Feedback not recorded for {mission_id}/{user_id}: no prior ledger entry"
                ],
            )
        return ServiceResult(success=True, data=_entry_data(entry))

    def validate_replay_completion(
        self,
        mission_id: str,
        user_id: str,
        replay_mission_id: str,
        trace_hash: str,
    ) -> ServiceResult:
        """Credit a replay only if the prerequisite is unlocked in the ledger."""
        self._catalog.get(replay_mission_id)
        prerequisite = self._ledger.current_entry(replay_mission_id, user_id)
        if prerequisite is None or not prerequisite.status.grants_access:
            logger.info(
                "Replay validation failed | mission=%s prerequisite %s not unlocked",
                mission_id, replay_mission_id,
            )
            return ServiceResult(
                success=False,
                errors=[f"Prerequisite {replay_mission_id} not unlocked for {user_id}"],
            )
        return self.update_via_replay(mission_id, user_id, trace_hash, True)

    def clear_attempt_history(self, user_id: Optional[str] = None) -> None:
        self._history.clear(user_id)
        logger.info("Unlock attempt history cleared | user=%s", user_id or "*")


def _entry_data(entry: LedgerEntry) -> dict[str, Any]:
    return {
        "entry_id": entry.entry_id,
        "mission_id": entry.mission_id,
        "user_id": entry.user_id,
        "status": entry.status.value,
        "unlocked_via": entry.unlocked_via.value,
    }
