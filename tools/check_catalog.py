#!/usr/bin/env python3
"""Mission catalog checks against the executable policy artifacts."""

import json
import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
MISSIONS_PATH = ROOT / "config" / "missions.json"
POLICY_PATH = ROOT / "config" / "access_policy.json"

TIERS = ("Citizen", "Verifier", "Moderator", "Governor", "Administrator")
CATEGORIES = ("wallet", "identity", "consensus", "feedback", "governance", "education")


def load_json(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def check_requirements(mission_id: str, reqs: dict, known: set[str], errors: list[str]) -> None:
    """Validate one mission's requirement block."""
    if reqs.get("min_tier", "Citizen") not in TIERS:
        errors.append(f"{mission_id}: unknown min_tier {reqs.get('min_tier')!r}")
    trust = reqs.get("min_trust_score", 0)
    if not isinstance(trust, int) or not 0 <= trust <= 100:
        errors.append(f"{mission_id}: min_trust_score must be an integer in [0, 100]")
    replay_id = reqs.get("replay_mission_id")
    if reqs.get("require_replay") and replay_id is not None:
        if replay_id not in known:
            errors.append(f"{mission_id}: replay_mission_id {replay_id} is not a known mission")
        if replay_id == mission_id:
            errors.append(f"{mission_id}: mission cannot be its own replay prerequisite")


def find_cycle(prerequisites: dict[str, str]) -> list[str]:
    """Return the first prerequisite cycle found, or an empty list."""
    for start in prerequisites:
        seen = [start]
        current = prerequisites.get(start)
        while current is not None:
            if current in seen:
                return seen[seen.index(current):] + [current]
            seen.append(current)
            current = prerequisites.get(current)
    return []


def check() -> int:
    catalog = load_json(MISSIONS_PATH)
    policy = load_json(POLICY_PATH)
    errors: list[str] = []

    # --- Version markers ---
    for label, doc in (("missions.json", catalog), ("access_policy.json", policy)):
        if "version" not in doc:
            errors.append(f"{label} missing version")

    # --- Mission definitions ---
    missions = catalog.get("missions", [])
    if not missions:
        errors.append("missions list must not be empty")
    ids = [m.get("mission_id", "") for m in missions]
    known = set(ids)
    for mission_id in sorted(known):
        if ids.count(mission_id) > 1:
            errors.append(f"duplicate mission_id: {mission_id}")
    prerequisites: dict[str, str] = {}
    for mission in missions:
        mission_id = mission.get("mission_id", "")
        if not mission_id.strip():
            errors.append("mission with blank mission_id")
            continue
        if mission.get("category") not in CATEGORIES:
            errors.append(f"{mission_id}: unknown category {mission.get('category')!r}")
        reqs = mission.get("requirements", {})
        check_requirements(mission_id, reqs, known, errors)
        if reqs.get("require_replay") and reqs.get("replay_mission_id"):
            prerequisites[mission_id] = reqs["replay_mission_id"]

    cycle = find_cycle(prerequisites)
    if cycle:
        errors.append(f"replay prerequisite cycle: {' -> '.join(cycle)}")

    # --- Policy bounds ---
    if policy["ledger"]["max_entries"] < 1:
        errors.append("ledger.max_entries must be >= 1")
    if policy["attempts"]["history_limit"] < 1:
        errors.append("attempts.history_limit must be >= 1")
    if policy["eligibility"]["next_steps_limit"] < 1:
        errors.append("eligibility.next_steps_limit must be >= 1")

    if errors:
        print("Catalog check failed:")
        for err in errors:
            print(f"- {err}")
        return 1

    print("Catalog check passed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(check())
