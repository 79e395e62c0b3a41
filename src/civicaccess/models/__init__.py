"""Core data models for mission access."""

from civicaccess.models.mission import (
    MissionCategory,
    MissionDefinition,
    MissionRequirements,
    MissionStatus,
    UnlockMethod,
    UserTier,
    compare_tiers,
)
from civicaccess.models.user import (
    InvalidUserContextError,
    ReplayRecord,
    UserContext,
    create_user_context,
)
from civicaccess.models.ledger import EntryMetadata, LedgerEntry, LedgerStatistics
from civicaccess.models.eligibility import (
    AccessStatistics,
    AttemptResult,
    BlockerPriority,
    BlockerType,
    EligibilityResult,
    RequirementSnapshot,
    UnlockAttempt,
    UnlockBlocker,
)

__all__ = [
    "MissionCategory",
    "MissionDefinition",
    "MissionRequirements",
    "MissionStatus",
    "UnlockMethod",
    "UserTier",
    "compare_tiers",
    "InvalidUserContextError",
    "ReplayRecord",
    "UserContext",
    "create_user_context",
    "EntryMetadata",
    "LedgerEntry",
    "LedgerStatistics",
    "AccessStatistics",
    "AttemptResult",
    "BlockerPriority",
    "BlockerType",
    "EligibilityResult",
    "RequirementSnapshot",
    "UnlockAttempt",
    "UnlockBlocker",
]
