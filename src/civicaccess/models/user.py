"""User context — the transient snapshot of facts an eligibility check runs on.

A context is built per call from facts asserted by other subsystems:
- Tier and trust score (identity and reputation).
- Replay history (prerequisite missions validated by the replay verifier).
- Feedback badges and verified vote count (governance subsystem).

Nothing here is cryptographically checked. Construction validates shape only
and raises InvalidUserContextError on malformed input.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from civicaccess.models.mission import UserTier


class InvalidUserContextError(ValueError):
    """Raised when a user context is missing or has malformed fields."""


def _parse_utc(value: Any, field_name: str) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as e:
            raise InvalidUserContextError(f"{field_name}: {e}") from e
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    raise InvalidUserContextError(f"{field_name} must be a datetime or ISO string")


@dataclass(frozen=True)
class ReplayRecord:
    """Proof that a prerequisite mission was replayed."""
    mission_id: str
    trace_hash: str
    validated_at: datetime
    is_valid: bool

    def __post_init__(self) -> None:
        if not isinstance(self.mission_id, str) or not self.mission_id.strip():
            raise InvalidUserContextError("replay record missing mission_id")

    @staticmethod
    def from_dict(data: dict[str, Any]) -> ReplayRecord:
        try:
            return ReplayRecord(
                mission_id=data["mission_id"],
                trace_hash=data.get("trace_hash", ""),
                validated_at=_parse_utc(data["validated_at"], "validated_at"),
                is_valid=bool(data["is_valid"]),
            )
        except KeyError as e:
            raise InvalidUserContextError(f"replay record missing field: {e}") from e

    def to_dict(self) -> dict[str, Any]:
        return {
            "mission_id": self.mission_id,
            "trace_hash": self.trace_hash,
            "validated_at": self.validated_at.isoformat(),
            "is_valid": self.is_valid,
        }


@dataclass(frozen=True)
class UserContext:
    """Facts about one user at the moment of an eligibility decision.

    Invariants enforced on construction:
    - user_id is a non-blank string.
    - user_tier is a UserTier (strings are coerced; unknown values rejected).
    - trust_score is numeric and within 0-100.
    - verified_votes is a non-negative integer.
    """
    user_id: str
    user_tier: UserTier
    trust_score: float
    replay_history: tuple[ReplayRecord, ...] = field(default_factory=tuple)
    feedback_badges: tuple[str, ...] = field(default_factory=tuple)
    verified_votes: int = 0
    last_activity_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if not isinstance(self.user_id, str) or not self.user_id.strip():
            raise InvalidUserContextError("user_id must be a non-blank string")

        if not isinstance(self.user_tier, UserTier):
            try:
                object.__setattr__(self, "user_tier", UserTier(self.user_tier))
            except ValueError as e:
                raise InvalidUserContextError(
                    f"unknown user_tier: {self.user_tier!r}"
                ) from e

        score = self.trust_score
        if isinstance(score, bool) or not isinstance(score, (int, float)):
            raise InvalidUserContextError(
                f"trust_score must be numeric, got {type(score).__name__}"
            )
        if not 0 <= score <= 100:
            raise InvalidUserContextError(
                f"trust_score must be within 0-100, got {score}"
            )

        votes = self.verified_votes
        if isinstance(votes, bool) or not isinstance(votes, int) or votes < 0:
            raise InvalidUserContextError(
                f"verified_votes must be a non-negative integer, got {votes!r}"
            )

        # Lists are accepted for convenience and frozen to tuples
        object.__setattr__(self, "replay_history", tuple(self.replay_history))
        object.__setattr__(self, "feedback_badges", tuple(self.feedback_badges))
        for record in self.replay_history:
            if not isinstance(record, ReplayRecord):
                raise InvalidUserContextError("replay_history must hold ReplayRecord items")

    def has_valid_replay(self, mission_id: str) -> bool:
        return any(r.mission_id == mission_id and r.is_valid for r in self.replay_history)

    @staticmethod
    def from_dict(data: dict[str, Any]) -> UserContext:
        """Build a context from a JSON-style mapping."""
        missing = [k for k in ("user_id", "user_tier", "trust_score") if k not in data]
        if missing:
            raise InvalidUserContextError(f"missing required fields: {', '.join(missing)}")
        last_activity = data.get("last_activity_at")
        return UserContext(
            user_id=data["user_id"],
            user_tier=data["user_tier"],
            trust_score=data["trust_score"],
            replay_history=tuple(
                ReplayRecord.from_dict(r) for r in data.get("replay_history", [])
            ),
            feedback_badges=tuple(data.get("feedback_badges", [])),
            verified_votes=data.get("verified_votes", 0),
            last_activity_at=(
                _parse_utc(last_activity, "last_activity_at") if last_activity else None
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "user_tier": self.user_tier.value,
            "trust_score": self.trust_score,
            "replay_history": [r.to_dict() for r in self.replay_history],
            "feedback_badges": list(self.feedback_badges),
            "verified_votes": self.verified_votes,
            "last_activity_at": (
                self.last_activity_at.isoformat() if self.last_activity_at else None
            ),
        }


def create_user_context(
    user_id: str,
    user_tier: UserTier = UserTier.CITIZEN,
    trust_score: float = 25,
    **extra: Any,
) -> UserContext:
    """Convenience factory with platform defaults (Citizen, trust 25)."""
    extra.setdefault("last_activity_at", datetime.now(timezone.utc))
    return UserContext(
        user_id=user_id,
        user_tier=user_tier,
        trust_score=trust_score,
        **extra,
    )
