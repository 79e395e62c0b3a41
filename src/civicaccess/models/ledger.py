"""Ledger entry models — immutable audit records of mission-access decisions.

An entry is never modified once written. The "current" state of a
(mission, user) pair is the entry with the latest timestamp among those
sharing the pair; older entries remain as history until evicted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from civicaccess.models.mission import MissionStatus, UnlockMethod, UserTier


@dataclass(frozen=True)
class EntryMetadata:
    """Facts snapshotted onto a ledger entry at write time."""
    user_id: str
    user_tier: UserTier
    trust_score: float
    replay_validated: bool
    unlock_attempts: int
    last_attempt_at: datetime
    feedback_badge: Optional[str] = None
    vote_verified: Optional[bool] = None


@dataclass(frozen=True)
class LedgerEntry:
    """One immutable mission-access decision."""
    entry_id: str
    mission_id: str
    status: MissionStatus
    timestamp: datetime
    source_trace_hash: str
    tier_required: UserTier
    unlocked_via: UnlockMethod
    metadata: EntryMetadata

    @property
    def user_id(self) -> str:
        return self.metadata.user_id

    @property
    def pair(self) -> tuple[str, str]:
        return (self.mission_id, self.metadata.user_id)

    def to_dict(self) -> dict[str, Any]:
        m = self.metadata
        return {
            "entry_id": self.entry_id,
            "mission_id": self.mission_id,
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
            "source_trace_hash": self.source_trace_hash,
            "tier_required": self.tier_required.value,
            "unlocked_via": self.unlocked_via.value,
            "metadata": {
                "user_id": m.user_id,
                "user_tier": m.user_tier.value,
                "trust_score": m.trust_score,
                "replay_validated": m.replay_validated,
                "feedback_badge": m.feedback_badge,
                "vote_verified": m.vote_verified,
                "unlock_attempts": m.unlock_attempts,
                "last_attempt_at": m.last_attempt_at.isoformat(),
            },
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> LedgerEntry:
        m = data["metadata"]
        return LedgerEntry(
            entry_id=data["entry_id"],
            mission_id=data["mission_id"],
            status=MissionStatus(data["status"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            source_trace_hash=data["source_trace_hash"],
            tier_required=UserTier(data["tier_required"]),
            unlocked_via=UnlockMethod(data["unlocked_via"]),
            metadata=EntryMetadata(
                user_id=m["user_id"],
                user_tier=UserTier(m["user_tier"]),
                trust_score=m["trust_score"],
                replay_validated=m["replay_validated"],
                unlock_attempts=m["unlock_attempts"],
                last_attempt_at=datetime.fromisoformat(m["last_attempt_at"]),
                feedback_badge=m.get("feedback_badge"),
                vote_verified=m.get("vote_verified"),
            ),
        )


@dataclass(frozen=True)
class LedgerStatistics:
    """Aggregate view over every entry currently held by the ledger."""
    total_entries: int
    status_counts: dict[str, int] = field(default_factory=dict)
    tier_counts: dict[str, int] = field(default_factory=dict)
    unlock_method_counts: dict[str, int] = field(default_factory=dict)
    average_trust_score: float = 0.0
    recent_activity: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_entries": self.total_entries,
            "status_counts": dict(self.status_counts),
            "tier_counts": dict(self.tier_counts),
            "unlock_method_counts": dict(self.unlock_method_counts),
            "average_trust_score": self.average_trust_score,
            "recent_activity": self.recent_activity,
        }
