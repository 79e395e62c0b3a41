"""Tests for the access ledger — append-only history, latest-wins reads, bounded capacity."""

import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from civicaccess.catalog.registry import MissionCatalog, MissionNotFoundError
from civicaccess.ledger.access_ledger import AccessLedger, LedgerWriteError
from civicaccess.ledger.locks import KeyedLocks
from civicaccess.models.mission import MissionStatus, UnlockMethod, UserTier
from civicaccess.persistence.event_log import EventKind, EventLog
from civicaccess.policy.resolver import PolicyResolver


CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"
START = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

WALLET = "wallet-overview-deck1"
IDENTITY = "identity-verification-deck12"
CONSENSUS = "consensus-governance-deck9"


class FakeClock:
    """Deterministic clock advancing one second per read."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture
def catalog() -> MissionCatalog:
    return MissionCatalog.from_resolver(PolicyResolver.from_config_dir(CONFIG_DIR))


@pytest.fixture
def ledger(catalog: MissionCatalog) -> AccessLedger:
    return AccessLedger(catalog, clock=FakeClock())


def _record(ledger: AccessLedger, mission_id: str = WALLET, user_id: str = "u1",
            status: MissionStatus = MissionStatus.UNLOCKED, **kwargs):
    kwargs.setdefault("user_tier", UserTier.CITIZEN)
    kwargs.setdefault("trust_score", 30)
    kwargs.setdefault("source_trace_hash", "trace:test")
    return ledger.record_event(mission_id, status, user_id, **kwargs)


class TestRecordEvent:
    def test_appends_entry(self, ledger: AccessLedger) -> None:
        entry = _record(ledger, unlocked_via=UnlockMethod.TRUST_THRESHOLD)
        assert entry.entry_id == "LE-00000001"
        assert entry.tier_required == UserTier.CITIZEN
        assert entry.metadata.unlock_attempts == 1
        assert ledger.count == 1
        assert ledger.current_entry(WALLET, "u1") == entry

    def test_string_enums_coerced(self, ledger: AccessLedger) -> None:
        entry = ledger.record_event(
            WALLET, "locked", "u1", "Verifier", 10, "trace:x", "none",
        )
        assert entry.status == MissionStatus.LOCKED
        assert entry.metadata.user_tier == UserTier.VERIFIER

    def test_unknown_mission(self, ledger: AccessLedger) -> None:
        with pytest.raises(MissionNotFoundError):
            _record(ledger, mission_id="nonexistent")
        assert ledger.count == 0

    def test_unknown_metadata_key(self, ledger: AccessLedger) -> None:
        with pytest.raises(ValueError, match="unlock_attempts"):
            _record(ledger, extra_metadata={"unlock_attempts": 7})

    def test_attempts_increment_per_pair(self, ledger: AccessLedger) -> None:
        attempts = [_record(ledger).metadata.unlock_attempts for _ in range(3)]
        assert attempts == [1, 2, 3]
        assert _record(ledger, user_id="u2").metadata.unlock_attempts == 1
        assert ledger.attempt_count(WALLET, "u1") == 3

    def test_blank_user_rejected(self, ledger: AccessLedger) -> None:
        with pytest.raises(ValueError, match="user_id"):
            _record(ledger, user_id="  ")
        assert ledger.count == 0

    def test_non_numeric_trust_rejected(self, ledger: AccessLedger) -> None:
        with pytest.raises(ValueError, match="numeric"):
            _record(ledger, trust_score="70")
        with pytest.raises(ValueError, match="numeric"):
            _record(ledger, trust_score=True)
        assert ledger.count == 0

    def test_trust_out_of_range_rejected(self, ledger: AccessLedger) -> None:
        with pytest.raises(ValueError, match="0-100"):
            _record(ledger, trust_score=120)
        assert ledger.count == 0
        assert ledger.attempt_count(WALLET, "u1") == 0

    def test_existing_entries_untouched(self, ledger: AccessLedger) -> None:
        first = _record(ledger, status=MissionStatus.TRUST_INSUFFICIENT, trust_score=10)
        _record(ledger)
        history = ledger.query(mission_id=WALLET, user_id="u1")
        assert history[-1] == first
        assert len(history) == 2


class TestCurrentEntry:
    def test_latest_timestamp_wins(self, ledger: AccessLedger) -> None:
        newer = _record(ledger, timestamp=START + timedelta(hours=1))
        _record(ledger, status=MissionStatus.LOCKED, timestamp=START)
        assert ledger.current_entry(WALLET, "u1") == newer

    def test_equal_timestamps_ordered_by_append(self, ledger: AccessLedger) -> None:
        _record(ledger, status=MissionStatus.LOCKED, timestamp=START)
        second = _record(ledger, timestamp=START)
        assert ledger.current_entry(WALLET, "u1") == second

    def test_missing_pair(self, ledger: AccessLedger) -> None:
        assert ledger.current_entry(WALLET, "nobody") is None


class TestReplayUpdate:
    def test_replay_unlocks_replay_required(self, ledger: AccessLedger) -> None:
        _record(
            ledger, mission_id=IDENTITY, status=MissionStatus.REPLAY_REQUIRED,
            user_tier=UserTier.VERIFIER, trust_score=60,
        )
        entry = ledger.update_via_replay(IDENTITY, "u1", "trace:replay:1", True)
        assert entry is not None
        assert entry.status == MissionStatus.UNLOCKED
        assert entry.unlocked_via == UnlockMethod.MEMORY_REPLAY
        assert entry.source_trace_hash == "trace:replay:1"
        assert entry.metadata.replay_validated is True
        assert entry.metadata.unlock_attempts == 1
        assert ledger.count == 2

    def test_replay_rederives_remaining_blocker(self, ledger: AccessLedger) -> None:
        _record(
            ledger, mission_id=CONSENSUS, status=MissionStatus.REPLAY_REQUIRED,
            user_tier=UserTier.MODERATOR, trust_score=80,
        )
        entry = ledger.update_via_replay(CONSENSUS, "u1", "trace:r", True)
        assert entry.status == MissionStatus.FEEDBACK_REQUIRED

    def test_other_status_kept(self, ledger: AccessLedger) -> None:
        _record(
            ledger, mission_id=IDENTITY, status=MissionStatus.TIER_INSUFFICIENT,
        )
        entry = ledger.update_via_replay(IDENTITY, "u1", "trace:r", True)
        assert entry.status == MissionStatus.TIER_INSUFFICIENT

    def test_invalid_replay_writes_nothing(self, ledger: AccessLedger) -> None:
        _record(ledger, mission_id=IDENTITY, status=MissionStatus.REPLAY_REQUIRED)
        assert ledger.update_via_replay(IDENTITY, "u1", "trace:r", False) is None
        assert ledger.count == 1

    def test_no_prior_entry(self, ledger: AccessLedger) -> None:
        assert ledger.update_via_replay(IDENTITY, "u1", "trace:r", True) is None
        assert ledger.count == 0

    def test_future_dated_prior_still_superseded(self, ledger: AccessLedger) -> None:
        future = datetime(2030, 1, 1, tzinfo=timezone.utc)
        _record(
            ledger, mission_id=IDENTITY, status=MissionStatus.REPLAY_REQUIRED,
            user_tier=UserTier.VERIFIER, trust_score=60, timestamp=future,
        )
        entry = ledger.update_via_replay(IDENTITY, "u1", "trace:r", True)
        assert entry.timestamp >= future
        assert ledger.current_entry(IDENTITY, "u1") == entry
        assert ledger.current_entry(IDENTITY, "u1").status == MissionStatus.UNLOCKED


class TestFeedbackUpdate:
    def _blocked(self, ledger: AccessLedger, trust: float = 80) -> None:
        _record(
            ledger, mission_id=CONSENSUS, status=MissionStatus.FEEDBACK_REQUIRED,
            user_tier=UserTier.MODERATOR, trust_score=trust,
            extra_metadata={"replay_validated": True},
        )

    def test_badge_then_vote_unlocks(self, ledger: AccessLedger) -> None:
        self._blocked(ledger)
        after_badge = ledger.update_via_feedback(CONSENSUS, "u1", feedback_badge="b1")
        assert after_badge.status == MissionStatus.FEEDBACK_REQUIRED
        after_vote = ledger.update_via_feedback(CONSENSUS, "u1", vote_verified=True)
        assert after_vote.status == MissionStatus.UNLOCKED
        assert after_vote.unlocked_via == UnlockMethod.VERIFIED_VOTE
        assert after_vote.metadata.feedback_badge == "b1"
        assert after_vote.metadata.vote_verified is True

    def test_no_prior_entry(self, ledger: AccessLedger) -> None:
        assert ledger.update_via_feedback(CONSENSUS, "u1", feedback_badge="b1") is None

    def test_future_dated_prior_still_superseded(self, ledger: AccessLedger) -> None:
        future = datetime(2030, 1, 1, tzinfo=timezone.utc)
        _record(
            ledger, mission_id=CONSENSUS, status=MissionStatus.FEEDBACK_REQUIRED,
            user_tier=UserTier.MODERATOR, trust_score=80,
            extra_metadata={"replay_validated": True}, timestamp=future,
        )
        entry = ledger.update_via_feedback(CONSENSUS, "u1", feedback_badge="b1")
        assert entry.timestamp >= future
        assert ledger.current_entry(CONSENSUS, "u1") == entry
        assert entry.metadata.feedback_badge == "b1"

    def test_unlock_is_permanent(self, ledger: AccessLedger) -> None:
        _record(
            ledger, mission_id=CONSENSUS, status=MissionStatus.UNLOCKED,
            user_tier=UserTier.MODERATOR, trust_score=10,
            unlocked_via=UnlockMethod.ADMIN_OVERRIDE,
        )
        entry = ledger.update_via_feedback(CONSENSUS, "u1", feedback_badge="b1")
        assert entry.status == MissionStatus.UNLOCKED
        assert entry.unlocked_via == UnlockMethod.FEEDBACK_BADGE

    def test_regression_when_not_permanent(self, catalog: MissionCatalog) -> None:
        ledger = AccessLedger(catalog, clock=FakeClock(), permanent_unlocks=False)
        _record(
            ledger, mission_id=CONSENSUS, status=MissionStatus.UNLOCKED,
            user_tier=UserTier.MODERATOR, trust_score=10,
        )
        entry = ledger.update_via_feedback(CONSENSUS, "u1", feedback_badge="b1")
        assert entry.status == MissionStatus.TRUST_INSUFFICIENT


class TestQuery:
    def test_newest_first(self, ledger: AccessLedger) -> None:
        a = _record(ledger, user_id="u1")
        b = _record(ledger, user_id="u2")
        c = _record(ledger, mission_id=IDENTITY, user_id="u1",
                    status=MissionStatus.TIER_INSUFFICIENT)
        assert ledger.query() == [c, b, a]

    def test_filters(self, ledger: AccessLedger) -> None:
        _record(ledger, user_id="u1")
        _record(ledger, user_id="u2")
        blocked = _record(ledger, mission_id=IDENTITY, user_id="u1",
                          status=MissionStatus.TIER_INSUFFICIENT)
        assert len(ledger.query(user_id="u1")) == 2
        assert ledger.query(status=MissionStatus.TIER_INSUFFICIENT) == [blocked]
        assert ledger.query(status="tier_insufficient") == [blocked]
        assert ledger.entries_by_status(MissionStatus.UNLOCKED, limit=1)[0].user_id == "u2"
        assert len(ledger.entries_for_user("u2")) == 1

    def test_limit(self, ledger: AccessLedger) -> None:
        for _ in range(5):
            _record(ledger)
        assert len(ledger.query(limit=2)) == 2
        assert ledger.query(limit=0) == []

    def test_negative_limit(self, ledger: AccessLedger) -> None:
        with pytest.raises(ValueError):
            ledger.query(limit=-1)


class TestStatistics:
    def test_counts_and_average(self, ledger: AccessLedger) -> None:
        _record(ledger, trust_score=30, unlocked_via=UnlockMethod.TRUST_THRESHOLD)
        _record(ledger, user_id="u2", status=MissionStatus.TRUST_INSUFFICIENT,
                trust_score=10)
        stats = ledger.statistics()
        assert stats.total_entries == 2
        assert stats.status_counts["unlocked"] == 1
        assert stats.status_counts["trust_insufficient"] == 1
        assert stats.tier_counts["Citizen"] == 2
        assert stats.unlock_method_counts["trust_threshold"] == 1
        assert stats.unlock_method_counts["none"] == 1
        assert stats.average_trust_score == 20

    def test_empty(self, ledger: AccessLedger) -> None:
        stats = ledger.statistics()
        assert stats.total_entries == 0
        assert stats.average_trust_score == 0.0

    def test_recent_activity_window(self, ledger: AccessLedger) -> None:
        _record(ledger, timestamp=START - timedelta(days=2))
        _record(ledger, user_id="u2", timestamp=START)
        stats = ledger.statistics(now=START + timedelta(hours=1))
        assert stats.recent_activity == 1

    def test_export(self, ledger: AccessLedger) -> None:
        _record(ledger)
        data = ledger.export_data(now=START)
        assert data["total_entries"] == 1
        assert len(data["definitions"]) == 6
        assert data["statistics"]["total_entries"] == 1


class TestCapacity:
    def test_bound_evicts_oldest(self, catalog: MissionCatalog) -> None:
        ledger = AccessLedger(catalog, max_entries=10_000, clock=FakeClock())
        first = _record(ledger, user_id="u0")
        for i in range(1, 10_001):
            _record(ledger, user_id=f"u{i % 50}")
        assert ledger.count == 10_000
        assert first.entry_id not in {e.entry_id for e in ledger.query(user_id="u0")}

    def test_never_exceeds_bound(self, catalog: MissionCatalog) -> None:
        ledger = AccessLedger(catalog, max_entries=3, clock=FakeClock())
        for i in range(10):
            _record(ledger, user_id=f"u{i}")
            assert ledger.count <= 3
        assert [e.user_id for e in ledger.query()] == ["u9", "u8", "u7"]

    def test_backdated_entry_evicts_itself(self, catalog: MissionCatalog) -> None:
        ledger = AccessLedger(catalog, max_entries=2, clock=FakeClock())
        _record(ledger, user_id="u1")
        _record(ledger, user_id="u2")
        _record(ledger, user_id="u3", timestamp=START - timedelta(days=1))
        assert ledger.count == 2
        assert ledger.current_entry(WALLET, "u3") is None

    def test_eviction_keeps_newer_pair_entry(self, catalog: MissionCatalog) -> None:
        ledger = AccessLedger(catalog, max_entries=2, clock=FakeClock())
        _record(ledger, user_id="u1", status=MissionStatus.LOCKED)
        kept = _record(ledger, user_id="u1")
        _record(ledger, user_id="u2")
        assert ledger.current_entry(WALLET, "u1") == kept

    def test_attempts_survive_eviction(self, catalog: MissionCatalog) -> None:
        ledger = AccessLedger(catalog, max_entries=1, clock=FakeClock())
        _record(ledger)
        _record(ledger, user_id="u2")
        assert _record(ledger).metadata.unlock_attempts == 2


class TestJournal:
    def test_recovery_rebuilds_state(self, catalog: MissionCatalog, tmp_path) -> None:
        path = tmp_path / "ledger.jsonl"
        ledger = AccessLedger(catalog, event_log=EventLog(path), clock=FakeClock())
        _record(ledger)
        _record(ledger, user_id="u2", status=MissionStatus.LOCKED)
        last = _record(ledger)

        restored = AccessLedger(catalog, event_log=EventLog(path), clock=FakeClock())
        assert restored.count == 3
        assert restored.current_entry(WALLET, "u1") == last
        assert restored.query() == ledger.query()
        nxt = _record(restored)
        assert nxt.metadata.unlock_attempts == 3
        assert nxt.entry_id == "LE-00000004"

    def test_recovery_replays_evictions(self, catalog: MissionCatalog, tmp_path) -> None:
        path = tmp_path / "ledger.jsonl"
        ledger = AccessLedger(catalog, max_entries=3, event_log=EventLog(path),
                              clock=FakeClock())
        for i in range(6):
            _record(ledger, user_id=f"u{i}")

        restored = AccessLedger(catalog, max_entries=3, event_log=EventLog(path))
        assert [e.entry_id for e in restored.query()] == [
            e.entry_id for e in ledger.query()
        ]

    def test_one_event_per_append(self, catalog: MissionCatalog, tmp_path) -> None:
        log = EventLog(tmp_path / "ledger.jsonl")
        ledger = AccessLedger(catalog, max_entries=1, event_log=log, clock=FakeClock())
        _record(ledger)
        _record(ledger, user_id="u2")
        events = log.events(EventKind.LEDGER_ENTRY_APPENDED)
        assert len(events) == 2
        assert events[0].payload["evicted_entry_ids"] == []
        assert events[1].payload["evicted_entry_ids"] == ["LE-00000001"]

    def test_reopen_with_smaller_bound_trims(self, catalog: MissionCatalog, tmp_path) -> None:
        path = tmp_path / "ledger.jsonl"
        ledger = AccessLedger(catalog, max_entries=5, event_log=EventLog(path),
                              clock=FakeClock())
        for i in range(5):
            _record(ledger, user_id=f"u{i}")

        later = FakeClock(START + timedelta(hours=1))
        shrunk = AccessLedger(catalog, max_entries=3, event_log=EventLog(path), clock=later)
        assert shrunk.count == 3
        assert [e.user_id for e in shrunk.query()] == ["u4", "u3", "u2"]
        trims = EventLog(path).events(EventKind.LEDGER_ENTRIES_EVICTED)
        assert len(trims) == 1
        assert trims[0].payload["evicted_entry_ids"] == ["LE-00000001", "LE-00000002"]

        _record(shrunk, user_id="u5")
        assert shrunk.count == 3
        assert [e.user_id for e in shrunk.query()] == ["u5", "u4", "u3"]

        reopened = AccessLedger(catalog, max_entries=3, event_log=EventLog(path))
        assert reopened.query() == shrunk.query()
        assert EventLog(path).count == 7

    def test_write_failure_records_nothing(self, catalog: MissionCatalog, tmp_path) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory", encoding="utf-8")
        ledger = AccessLedger(
            catalog, event_log=EventLog(blocker / "ledger.jsonl"), clock=FakeClock(),
        )
        with pytest.raises(LedgerWriteError):
            _record(ledger)
        assert ledger.count == 0
        assert ledger.attempt_count(WALLET, "u1") == 0
        assert ledger.current_entry(WALLET, "u1") is None

    def test_clear_is_journaled(self, catalog: MissionCatalog, tmp_path) -> None:
        path = tmp_path / "ledger.jsonl"
        ledger = AccessLedger(catalog, event_log=EventLog(path), clock=FakeClock())
        _record(ledger)
        ledger.clear()
        assert ledger.count == 0
        assert ledger.attempt_count(WALLET, "u1") == 1

        restored = AccessLedger(catalog, event_log=EventLog(path), clock=FakeClock())
        assert restored.count == 0
        assert _record(restored).metadata.unlock_attempts == 2


class TestConcurrency:
    def test_attempt_numbers_unique_under_contention(self, ledger: AccessLedger) -> None:
        def worker() -> None:
            for _ in range(50):
                _record(ledger)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        attempts = sorted(e.metadata.unlock_attempts for e in ledger.query())
        assert attempts == list(range(1, 201))

    def test_pair_locks_released_after_writes(self, ledger: AccessLedger) -> None:
        for i in range(20):
            _record(ledger, mission_id=IDENTITY, user_id=f"u{i}",
                    status=MissionStatus.REPLAY_REQUIRED,
                    user_tier=UserTier.VERIFIER, trust_score=60)
            ledger.update_via_replay(IDENTITY, f"u{i}", "trace:r", True)
        with ledger.pair_lock(WALLET, "u1"):
            assert len(ledger._pair_locks) == 1
        assert len(ledger._pair_locks) == 0


class TestKeyedLocks:
    def test_reentrant_hold(self) -> None:
        locks = KeyedLocks()
        with locks.hold("a"):
            with locks.hold("a"):
                assert len(locks) == 1
            assert len(locks) == 1
        assert len(locks) == 0

    def test_lock_dropped_on_error(self) -> None:
        locks = KeyedLocks()
        with pytest.raises(RuntimeError):
            with locks.hold("a"):
                raise RuntimeError("boom")
        assert len(locks) == 0

    def test_waiter_keeps_lock_alive(self) -> None:
        locks = KeyedLocks()
        entered = threading.Event()
        order: list[str] = []

        def waiter() -> None:
            entered.set()
            with locks.hold("a"):
                order.append("waiter")

        with locks.hold("a"):
            t = threading.Thread(target=waiter)
            t.start()
            entered.wait()
            order.append("holder")
        t.join()
        assert order == ["holder", "waiter"]
        assert len(locks) == 0
