"""Policy resolver — loads access_policy.json and missions.json and exposes
every runtime decision as a typed method call.

No magic. No defaults. If a value is missing from the config, it fails loud.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from civicaccess.models.mission import MissionDefinition


@dataclass(frozen=True)
class LedgerPolicy:
    """Resolved ledger bounds."""
    max_entries: int
    recent_activity_hours: int


@dataclass(frozen=True)
class AttemptPolicy:
    """Resolved attempt-history bounds."""
    history_limit: int
    top_blockers: int


class PolicyResolver:
    """Loads and resolves all mission-access policy.

    Usage:
        resolver = PolicyResolver.from_config_dir(Path("config"))
        ledger_policy = resolver.ledger_policy()
        missions = resolver.mission_definitions()
    """

    def __init__(self, policy: dict[str, Any], missions: dict[str, Any]) -> None:
        self._policy = policy
        self._missions = missions
        self._validate_versions()
        self._validate_bounds()

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> PolicyResolver:
        """Load from the canonical config directory."""
        policy = _load_json(config_dir / "access_policy.json")
        missions = _load_json(config_dir / "missions.json")
        return cls(policy, missions)

    def _validate_versions(self) -> None:
        if "version" not in self._policy:
            raise ValueError("access_policy.json missing version")
        if "version" not in self._missions:
            raise ValueError("missions.json missing version")

    def _validate_bounds(self) -> None:
        ledger = self.ledger_policy()
        if ledger.max_entries < 1:
            raise ValueError(f"ledger.max_entries must be >= 1, got {ledger.max_entries}")
        attempts = self.attempt_policy()
        if attempts.history_limit < 1:
            raise ValueError(
                f"attempts.history_limit must be >= 1, got {attempts.history_limit}"
            )
        if self.next_steps_limit() < 1:
            raise ValueError("eligibility.next_steps_limit must be >= 1")

    # ------------------------------------------------------------------
    # Ledger and attempt bounds
    # ------------------------------------------------------------------

    def ledger_policy(self) -> LedgerPolicy:
        lp = self._policy["ledger"]
        return LedgerPolicy(
            max_entries=lp["max_entries"],
            recent_activity_hours=lp["recent_activity_hours"],
        )

    def attempt_policy(self) -> AttemptPolicy:
        ap = self._policy["attempts"]
        return AttemptPolicy(
            history_limit=ap["history_limit"],
            top_blockers=ap["top_blockers"],
        )

    # ------------------------------------------------------------------
    # Eligibility presentation
    # ------------------------------------------------------------------

    def next_steps_limit(self) -> int:
        return self._policy["eligibility"]["next_steps_limit"]

    def default_next_step(self) -> str:
        return self._policy["eligibility"]["default_next_step"]

    def permanent_unlocks(self) -> bool:
        """Whether an unlocked pair may never be demoted to a blocked status."""
        return self._policy["policy"]["permanent_unlocks"]

    # ------------------------------------------------------------------
    # Mission catalog
    # ------------------------------------------------------------------

    def mission_definitions(self) -> list[MissionDefinition]:
        """Return the configured missions in file order."""
        return [MissionDefinition.from_dict(m) for m in self._missions["missions"]]


def _load_json(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)
