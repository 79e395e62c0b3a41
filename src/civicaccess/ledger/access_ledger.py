"""Access ledger — append-only history of mission-access decisions.

Storage model:
- An arena of immutable entries keyed by entry_id.
- A secondary index (mission_id, user_id) -> entry_id of the latest entry,
  giving O(1) current-status reads without mutating anything in place.
- A min-heap on (timestamp, sequence) used to find the globally oldest
  entry when the capacity bound is exceeded.

Invariants:
- Entries are appended, never modified. Updates append a new entry.
- "Current" for a pair is the entry with the latest timestamp; equal
  timestamps are ordered by append sequence.
- Total size never exceeds max_entries. An append past the bound evicts the
  globally oldest entries until the bound holds, and a journal recovered
  under a smaller bound is trimmed the same way before any write.
- unlock_attempts increases by exactly 1 for every record_event on a pair,
  starting at 1. Replay and feedback updates carry it forward unchanged.
- With a journal attached, the journal line is written before the
  in-memory insert. A failed journal write inserts nothing.
- Update entries are never stamped earlier than the entry they supersede,
  so an update is always the pair's current entry.

Every read-derive-append sequence is serialized per (mission_id, user_id).
Shared structures are guarded by a short store lock.

Attempt counters are kept per pair ever recorded, not per held entry, so
numbering stays monotonic across eviction and clear(). That map grows with
distinct (mission, user) pairs rather than with max_entries.
"""

from __future__ import annotations

import dataclasses
import heapq
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterator, Optional, Union

from civicaccess.catalog.registry import MissionCatalog
from civicaccess.eligibility.conditions import (
    RequirementChecks,
    derive_status,
    select_unlock_method,
)
from civicaccess.ledger.locks import KeyedLocks
from civicaccess.models.ledger import EntryMetadata, LedgerEntry, LedgerStatistics
from civicaccess.models.mission import (
    MissionStatus,
    UnlockMethod,
    UserTier,
    tier_order,
)
from civicaccess.persistence.event_log import EventKind, EventLog, EventRecord

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 10_000

_EXTRA_METADATA_KEYS = frozenset({
    "replay_validated",
    "feedback_badge",
    "vote_verified",
    "last_attempt_at",
})

Pair = tuple[str, str]


class LedgerWriteError(RuntimeError):
    """Raised when an entry could not be durably appended. Nothing was written."""


class CapacityEvictionError(RuntimeError):
    """Raised if an eviction victim is not the oldest held entry (invariant violation)."""


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(ts: datetime) -> datetime:
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=timezone.utc)


class AccessLedger:
    """Durable, append-only store of per-(mission, user) decisions.

    Usage:
        ledger = AccessLedger(catalog, max_entries=10_000)
        ledger.record_event("m1", MissionStatus.TIER_INSUFFICIENT, "u1",
                            UserTier.CITIZEN, 60, "trace:abc")
        current = ledger.current_entry("m1", "u1")

    Persistence (optional):
        ledger = AccessLedger(catalog, event_log=EventLog(path))
        # Entries are journaled on append and rebuilt from the log on construction.
    """

    def __init__(
        self,
        catalog: MissionCatalog,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        event_log: Optional[EventLog] = None,
        clock: Optional[Callable[[], datetime]] = None,
        recent_activity_hours: int = 24,
        permanent_unlocks: bool = True,
    ) -> None:
        if max_entries < 1:
            raise ValueError(f"max_entries must be >= 1, got {max_entries}")
        self._catalog = catalog
        self._max_entries = max_entries
        self._event_log = event_log
        self._clock = clock or _utc_now
        self._recent_window = timedelta(hours=recent_activity_hours)
        self._permanent_unlocks = permanent_unlocks

        self._entries: dict[str, LedgerEntry] = {}
        self._sequence: dict[str, int] = {}
        self._latest: dict[Pair, str] = {}
        self._pair_entries: dict[Pair, list[str]] = {}
        self._heap: list[tuple[datetime, int, str]] = []
        self._attempt_counts: dict[Pair, int] = {}
        self._counter = 0

        self._store_lock = threading.Lock()
        self._pair_locks = KeyedLocks()

        self._event_counter = event_log.count if event_log is not None else 0
        if event_log is not None:
            self._replay_journal(event_log)
            self._enforce_bound()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def record_event(
        self,
        mission_id: str,
        status: Union[MissionStatus, str],
        user_id: str,
        user_tier: Union[UserTier, str],
        trust_score: float,
        source_trace_hash: str,
        unlocked_via: Union[UnlockMethod, str] = UnlockMethod.NONE,
        extra_metadata: Optional[dict[str, Any]] = None,
        timestamp: Optional[datetime] = None,
    ) -> LedgerEntry:
        """Append a new entry. Never touches existing entries.

        Raises MissionNotFoundError for unknown missions, ValueError for
        malformed arguments, and LedgerWriteError if the journal write fails.
        """
        mission = self._catalog.get(mission_id)
        status = MissionStatus(status)
        unlocked_via = UnlockMethod(unlocked_via)
        user_tier = UserTier(user_tier)
        if not isinstance(user_id, str) or not user_id.strip():
            raise ValueError("user_id must be a non-blank string")
        if isinstance(trust_score, bool) or not isinstance(trust_score, (int, float)):
            raise ValueError(
                f"trust_score must be numeric, got {type(trust_score).__name__}"
            )
        if not 0 <= trust_score <= 100:
            raise ValueError(f"trust_score must be within 0-100, got {trust_score}")
        extra = dict(extra_metadata or {})
        unknown = set(extra) - _EXTRA_METADATA_KEYS
        if unknown:
            raise ValueError(f"Unknown metadata keys: {', '.join(sorted(unknown))}")

        pair = (mission_id, user_id)
        with self._pair_locks.hold(pair):
            ts = _as_utc(timestamp) if timestamp is not None else self._clock()
            attempts = self._attempt_counts.get(pair, 0) + 1
            entry = LedgerEntry(
                entry_id="",
                mission_id=mission_id,
                status=status,
                timestamp=ts,
                source_trace_hash=source_trace_hash,
                tier_required=mission.requirements.min_tier,
                unlocked_via=unlocked_via,
                metadata=EntryMetadata(
                    user_id=user_id,
                    user_tier=user_tier,
                    trust_score=trust_score,
                    replay_validated=bool(extra.get("replay_validated", False)),
                    unlock_attempts=attempts,
                    last_attempt_at=_as_utc(extra.get("last_attempt_at") or ts),
                    feedback_badge=extra.get("feedback_badge"),
                    vote_verified=extra.get("vote_verified"),
                ),
            )
            stored = self._append(entry)

        logger.debug(
            "Ledger entry %s | mission=%s user=%s status=%s via=%s attempts=%d",
            stored.entry_id, mission_id, user_id, status.value,
            unlocked_via.value, attempts,
        )
        return stored

    def update_via_replay(
        self,
        mission_id: str,
        user_id: str,
        replay_trace_hash: str,
        replay_valid: bool,
    ) -> Optional[LedgerEntry]:
        """Credit a validated replay to the pair's current entry.

        Appends a new entry carrying forward the prior facts with
        replay_validated set. A replay_required status is re-derived and
        becomes unlocked when the replay was the only unmet requirement.
        Writes nothing and returns None if replay_valid is false or the
        pair has no prior entry.
        """
        if not replay_valid:
            logger.info(
                "Replay rejected, nothing recorded | mission=%s user=%s trace=%s",
                mission_id, user_id, replay_trace_hash,
            )
            return None

        pair = (mission_id, user_id)
        with self._pair_locks.hold(pair):
            prior = self.current_entry(mission_id, user_id)
            if prior is None:
                logger.info(
                    "Replay update skipped, no prior entry | mission=%s user=%s",
                    mission_id, user_id,
                )
                return None

            status = prior.status
            if status == MissionStatus.REPLAY_REQUIRED:
                mission = self._catalog.get(mission_id)
                checks = RequirementChecks.evaluate(
                    mission.requirements,
                    user_tier=prior.metadata.user_tier,
                    trust_score=prior.metadata.trust_score,
                    replay_validated=True,
                    has_feedback_badge=bool(prior.metadata.feedback_badge),
                    has_verified_vote=bool(prior.metadata.vote_verified),
                )
                status = derive_status(checks)

            unlocked_via = prior.unlocked_via
            if unlocked_via == UnlockMethod.NONE:
                unlocked_via = UnlockMethod.MEMORY_REPLAY

            now = max(self._clock(), prior.timestamp)
            entry = dataclasses.replace(
                prior,
                entry_id="",
                status=status,
                timestamp=now,
                source_trace_hash=replay_trace_hash,
                unlocked_via=unlocked_via,
                metadata=dataclasses.replace(
                    prior.metadata, replay_validated=True, last_attempt_at=now,
                ),
            )
            stored = self._append(entry)

        logger.info(
            "Replay validated | mission=%s user=%s status=%s",
            mission_id, user_id, stored.status.value,
        )
        return stored

    def update_via_feedback(
        self,
        mission_id: str,
        user_id: str,
        feedback_badge: Optional[str] = None,
        vote_verified: Optional[bool] = None,
    ) -> Optional[LedgerEntry]:
        """Re-derive the pair's status with newly asserted governance facts.

        Known and new facts are unioned: a badge or verified vote seen on
        the prior entry stays credited. Returns None (nothing written) if
        the pair has no prior entry.
        """
        pair = (mission_id, user_id)
        with self._pair_locks.hold(pair):
            prior = self.current_entry(mission_id, user_id)
            if prior is None:
                logger.info(
                    "Feedback update skipped, no prior entry | mission=%s user=%s",
                    mission_id, user_id,
                )
                return None

            mission = self._catalog.get(mission_id)
            meta = prior.metadata
            badge = feedback_badge or meta.feedback_badge
            has_vote = bool(vote_verified) or bool(meta.vote_verified)
            stored_vote = True if has_vote else (
                vote_verified if vote_verified is not None else meta.vote_verified
            )

            checks = RequirementChecks.evaluate(
                mission.requirements,
                user_tier=meta.user_tier,
                trust_score=meta.trust_score,
                replay_validated=meta.replay_validated,
                has_feedback_badge=bool(badge),
                has_verified_vote=has_vote,
            )
            status = derive_status(checks)
            if self._permanent_unlocks and prior.status.grants_access:
                status = prior.status

            unlocked_via = prior.unlocked_via
            if status.grants_access:
                unlocked_via = select_unlock_method(
                    has_verified_vote=has_vote,
                    has_feedback_badge=bool(badge),
                    replay_credited=(
                        mission.requirements.require_replay and meta.replay_validated
                    ),
                    user_tier=meta.user_tier,
                    trust_sufficient=checks.trust_sufficient,
                ) or prior.unlocked_via

            now = max(self._clock(), prior.timestamp)
            entry = dataclasses.replace(
                prior,
                entry_id="",
                status=status,
                timestamp=now,
                unlocked_via=unlocked_via,
                metadata=dataclasses.replace(
                    meta,
                    feedback_badge=badge,
                    vote_verified=stored_vote,
                    last_attempt_at=now,
                ),
            )
            stored = self._append(entry)

        logger.info(
            "Feedback update | mission=%s user=%s badge=%s vote=%s status=%s",
            mission_id, user_id, feedback_badge, vote_verified, stored.status.value,
        )
        return stored

    def clear(self) -> None:
        """Administrative wipe. Attempt counters survive so numbering stays monotonic."""
        with self._store_lock:
            if self._event_log is not None:
                self._journal(EventKind.LEDGER_CLEARED, "system", {}, self._clock())
            self._reset_entries()
        logger.info("Access ledger cleared")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @contextmanager
    def pair_lock(self, mission_id: str, user_id: str) -> Iterator[None]:
        """Hold the serialization lock for one (mission, user) pair."""
        with self._pair_locks.hold((mission_id, user_id)):
            yield

    def current_entry(self, mission_id: str, user_id: str) -> Optional[LedgerEntry]:
        """Latest entry for the pair, or None."""
        with self._store_lock:
            entry_id = self._latest.get((mission_id, user_id))
            return self._entries[entry_id] if entry_id is not None else None

    def attempt_count(self, mission_id: str, user_id: str) -> int:
        """Highest unlock_attempts value recorded for the pair."""
        with self._store_lock:
            return self._attempt_counts.get((mission_id, user_id), 0)

    def query(
        self,
        mission_id: Optional[str] = None,
        user_id: Optional[str] = None,
        status: Optional[Union[MissionStatus, str]] = None,
        limit: Optional[int] = None,
    ) -> list[LedgerEntry]:
        """Filtered entries, newest first."""
        if limit is not None and limit < 0:
            raise ValueError(f"limit must be >= 0, got {limit}")
        wanted_status = MissionStatus(status) if status is not None else None

        with self._store_lock:
            if mission_id is not None and user_id is not None:
                ids = list(self._pair_entries.get((mission_id, user_id), []))
                candidates = [self._entries[i] for i in ids]
            else:
                candidates = list(self._entries.values())
            sequence = dict(self._sequence)

        result = [
            e for e in candidates
            if (mission_id is None or e.mission_id == mission_id)
            and (user_id is None or e.metadata.user_id == user_id)
            and (wanted_status is None or e.status == wanted_status)
        ]
        result.sort(key=lambda e: (e.timestamp, sequence[e.entry_id]), reverse=True)
        return result[:limit] if limit is not None else result

    def entries_for_user(self, user_id: str, limit: Optional[int] = None) -> list[LedgerEntry]:
        return self.query(user_id=user_id, limit=limit)

    def entries_by_status(
        self, status: Union[MissionStatus, str], limit: Optional[int] = None,
    ) -> list[LedgerEntry]:
        return self.query(status=status, limit=limit)

    def statistics(self, now: Optional[datetime] = None) -> LedgerStatistics:
        """Counts by status, tier and unlock method; mean trust; 24h activity."""
        now = now or self._clock()
        cutoff = now - self._recent_window
        with self._store_lock:
            entries = list(self._entries.values())

        status_counts = {s.value: 0 for s in MissionStatus}
        tier_counts = {t.value: 0 for t in tier_order()}
        method_counts = {m.value: 0 for m in UnlockMethod}
        total_trust = 0.0
        recent = 0
        for e in entries:
            status_counts[e.status.value] += 1
            tier_counts[e.metadata.user_tier.value] += 1
            method_counts[e.unlocked_via.value] += 1
            total_trust += e.metadata.trust_score
            if e.timestamp > cutoff:
                recent += 1

        return LedgerStatistics(
            total_entries=len(entries),
            status_counts=status_counts,
            tier_counts=tier_counts,
            unlock_method_counts=method_counts,
            average_trust_score=total_trust / len(entries) if entries else 0.0,
            recent_activity=recent,
        )

    def export_data(self, now: Optional[datetime] = None) -> dict[str, Any]:
        now = now or self._clock()
        entries = self.query()
        return {
            "exported_at": now.isoformat(),
            "total_entries": len(entries),
            "entries": [e.to_dict() for e in entries],
            "definitions": [m.to_dict() for m in self._catalog.list_all()],
            "statistics": self.statistics(now).to_dict(),
        }

    @property
    def max_entries(self) -> int:
        return self._max_entries

    @property
    def count(self) -> int:
        with self._store_lock:
            return len(self._entries)

    def __len__(self) -> int:
        return self.count

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _append(self, draft: LedgerEntry) -> LedgerEntry:
        """Assign an id, journal, insert, evict. Record-or-nothing."""
        with self._store_lock:
            seq = self._counter + 1
            entry = dataclasses.replace(draft, entry_id=f"LE-{seq:08d}")
            key = (entry.timestamp, seq, entry.entry_id)

            # Victims are chosen before anything is written, so the journal
            # line always describes the complete state change.
            excess = len(self._entries) + 1 - self._max_entries
            victim_ids: list[str] = []
            if excess == 1:
                victim_ids = [min(key, self._heap[0])[2] if self._heap else key[2]]
            elif excess > 1:
                victim_ids = [
                    k[2] for k in heapq.nsmallest(excess, self._heap + [key])
                ]

            if self._event_log is not None:
                try:
                    self._journal(
                        EventKind.LEDGER_ENTRY_APPENDED,
                        entry.metadata.user_id,
                        {
                            "entry": entry.to_dict(),
                            "sequence": seq,
                            "evicted_entry_ids": victim_ids,
                        },
                        entry.timestamp,
                    )
                except (ValueError, OSError) as e:
                    logger.error(
                        "Ledger write failed | mission=%s user=%s: %s",
                        entry.mission_id, entry.metadata.user_id, e,
                    )
                    raise LedgerWriteError(f"Event log failure: {e}") from e

            self._counter = seq
            self._insert(entry, seq)
            for victim_id in victim_ids:
                self._evict(victim_id)
            pair = entry.pair
            self._attempt_counts[pair] = max(
                self._attempt_counts.get(pair, 0), entry.metadata.unlock_attempts,
            )
            return entry

    def _insert(self, entry: LedgerEntry, seq: int) -> None:
        pair = entry.pair
        self._entries[entry.entry_id] = entry
        self._sequence[entry.entry_id] = seq
        self._pair_entries.setdefault(pair, []).append(entry.entry_id)
        heapq.heappush(self._heap, (entry.timestamp, seq, entry.entry_id))

        current_id = self._latest.get(pair)
        if current_id is None or self._order_key(entry.entry_id) > self._order_key(current_id):
            self._latest[pair] = entry.entry_id

    def _evict(self, entry_id: str) -> None:
        # The victim is always the heap minimum
        _, _, heap_id = heapq.heappop(self._heap)
        if heap_id != entry_id:
            raise CapacityEvictionError(
                f"eviction candidate {entry_id} is not the oldest entry ({heap_id})"
            )
        entry = self._entries.pop(entry_id)
        del self._sequence[entry_id]
        pair = entry.pair
        remaining = self._pair_entries[pair]
        remaining.remove(entry_id)
        if not remaining:
            del self._pair_entries[pair]
            self._latest.pop(pair, None)
        elif self._latest.get(pair) == entry_id:
            self._latest[pair] = max(remaining, key=self._order_key)
        logger.debug("Ledger entry evicted | %s mission=%s", entry_id, entry.mission_id)

    def _order_key(self, entry_id: str) -> tuple[datetime, int]:
        return (self._entries[entry_id].timestamp, self._sequence[entry_id])

    def _reset_entries(self) -> None:
        self._entries.clear()
        self._sequence.clear()
        self._latest.clear()
        self._pair_entries.clear()
        self._heap.clear()

    def _journal(
        self,
        kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
        timestamp: datetime,
    ) -> None:
        event = EventRecord.create(
            event_id=f"EVT-{self._event_counter + 1:08d}",
            event_kind=kind,
            actor_id=actor_id,
            payload=payload,
            timestamp_utc=timestamp,
        )
        self._event_log.append(event)
        self._event_counter += 1

    def _replay_journal(self, event_log: EventLog) -> None:
        """Rebuild arena, indexes, heap and attempt counters from the journal."""
        for event in event_log.events():
            if event.event_kind == EventKind.LEDGER_CLEARED:
                self._reset_entries()
                continue
            if event.event_kind == EventKind.LEDGER_ENTRIES_EVICTED:
                for victim_id in event.payload["evicted_entry_ids"]:
                    self._evict(victim_id)
                continue
            entry =LedgerEntry.from_dict(event.payload["entry"])
            seq = event.payload["sequence"]
            self._counter = max(self._counter, seq)
            self._insert(entry, seq)
            for victim_id in event.payload.get("evicted_entry_ids", []):
                self._evict(victim_id)
            pair = entry.pair
            self._attempt_counts[pair] = max(
                self._attempt_counts.get(pair, 0), entry.metadata.unlock_attempts,
            )
        if event_log.count:
            logger.info(
                "Ledger recovered from journal | events=%d entries=%d",
                event_log.count, len(self._entries),
            )

    def _enforce_bound(self) -> None:
        """Trim a recovered ledger that exceeds max_entries, oldest first.

        The trim is journaled so a later recovery replays the same state.
        """
        excess = len(self._entries) - self._max_entries
        if excess <= 0:
            return
        with self._store_lock:
            victim_ids = [k[2] for k in heapq.nsmallest(excess, self._heap)]
            try:
                self._journal(
                    EventKind.LEDGER_ENTRIES_EVICTED,
                    "system",
                    {"evicted_entry_ids": victim_ids, "max_entries": self._max_entries},
                    self._clock(),
                )
            except (ValueError, OSError) as e:
                logger.error("Ledger trim failed to journal: %s", e)
                raise LedgerWriteError(f"Event log failure: {e}") from e
            for victim_id in victim_ids:
                self._evict(victim_id)
        logger.warning(
            "Ledger trimmed to bound on recovery | evicted=%d max_entries=%d",
            len(victim_ids), self._max_entries,
        )
