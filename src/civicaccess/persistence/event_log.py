"""Append-only event log — the durable journal behind the access ledger.

One ledger write produces one JSONL line. A line is immutable once written
and carries a sha256 over its canonical JSON, so a recovered journal can be
checked record by record before the ledger is rebuilt from it.

An append and the evictions it causes share one record, so recovery never
observes one without the other.
"""

from __future__ import annotations

import enum
import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional


class EventKind(str, enum.Enum):
    """Classification of ledger journal events."""
    LEDGER_ENTRY_APPENDED = "ledger_entry_appended"
    LEDGER_CLEARED = "ledger_cleared"
    LEDGER_ENTRIES_EVICTED = "ledger_entries_evicted"


_HASHED_FIELDS = ("event_id", "event_kind", "timestamp_utc", "actor_id", "payload")


def _digest(fields: dict[str, Any]) -> str:
    canonical = json.dumps(
        {k: fields[k] for k in _HASHED_FIELDS},
        sort_keys=True,
        ensure_ascii=False,
    )
    return "sha256:" + hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class EventRecord:
    """A single immutable journal line.

    timestamp_utc is kept at second precision; the entry inside the payload
    carries the exact timestamp.
    """
    event_id: str
    event_kind: EventKind
    timestamp_utc: str
    actor_id: str
    payload: dict[str, Any]
    event_hash: str

    @staticmethod
    def create(
        event_id: str,
        event_kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
        timestamp_utc: Optional[datetime] = None,
    ) -> EventRecord:
        ts = (timestamp_utc or datetime.now(timezone.utc)).strftime("%Y-%m-%dT%H:%M:%SZ")
        fields = {
            "event_id": event_id,
            "event_kind": event_kind.value,
            "timestamp_utc": ts,
            "actor_id": actor_id,
            "payload": payload,
        }
        return EventRecord(
            event_id=event_id,
            event_kind=event_kind,
            timestamp_utc=ts,
            actor_id=actor_id,
            payload=payload,
            event_hash=_digest(fields),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_kind": self.event_kind.value,
            "timestamp_utc": self.timestamp_utc,
            "actor_id": self.actor_id,
            "payload": self.payload,
            "event_hash": self.event_hash,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> EventRecord:
        """Rebuild a record, rejecting it if the stored hash does not match."""
        expected = _digest(data)
        if data["event_hash"] != expected:
            raise ValueError(
                f"Integrity check failed: event {data['event_id']} "
                f"stored hash {data['event_hash']} != computed {expected}"
            )
        return EventRecord(
            event_id=data["event_id"],
            event_kind=EventKind(data["event_kind"]),
            timestamp_utc=data["timestamp_utc"],
            actor_id=data["actor_id"],
            payload=data["payload"],
            event_hash=data["event_hash"],
        )


class EventLog:
    """Append-only journal, in memory with an optional JSONL file behind it.

    Usage:
        log = EventLog(storage_path=Path("data/access_ledger.jsonl"))
        log.append(EventRecord.create("EVT-00000001", EventKind.LEDGER_CLEARED, "system", {}))
        for event in log.events(EventKind.LEDGER_ENTRY_APPENDED):
            ...

    Recovery is fail-closed: a tampered line or a repeated event id
    aborts construction.
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._storage_path = storage_path
        self._events: list[EventRecord] = []
        self._event_ids: set[str] = set()

        if storage_path is not None and storage_path.exists():
            for record in self._read(storage_path):
                self._remember(record)

    def append(self, event: EventRecord) -> None:
        """Append one event. The file line is written before memory is touched.

        Raises ValueError on a duplicate event_id and OSError if the file
        write fails; either way the log is unchanged.
        """
        if event.event_id in self._event_ids:
            raise ValueError(f"Duplicate event ID: {event.event_id}")
        if self._storage_path is not None:
            self._storage_path.parent.mkdir(parents=True, exist_ok=True)
            line = json.dumps(event.to_dict(), sort_keys=True, ensure_ascii=False)
            with self._storage_path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")
        self._remember(event)

    def events(self, kind: Optional[EventKind] = None) -> list[EventRecord]:
        """Events in append order, optionally filtered by kind."""
        return [e for e in self._events if kind is None or e.event_kind == kind]

    @property
    def count(self) -> int:
        return len(self._events)

    @property
    def last_event(self) -> Optional[EventRecord]:
        return self._events[-1] if self._events else None

    @property
    def storage_path(self) -> Optional[Path]:
        return self._storage_path

    def _remember(self, event: EventRecord) -> None:
        self._events.append(event)
        self._event_ids.add(event.event_id)

    def _read(self, path: Path) -> list[EventRecord]:
        records: list[EventRecord] = []
        seen: set[str] = set()
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                if not line.strip():
                    continue
                try:
                    record = EventRecord.from_dict(json.loads(line))
                except ValueError as e:
                    raise ValueError(f"{path.name} line {line_num}: {e}") from e
                if record.event_id in seen:
                    raise ValueError(
                        f"Duplicate event ID on recovery (line {line_num}): {record.event_id}"
                    )
                seen.add(record.event_id)
                records.append(record)
        return records
