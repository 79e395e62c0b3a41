"""Per-user unlock attempt history — bounded ring buffers.

This is a transient audit view, not the durable ledger. Each user keeps
their most recent attempts up to the configured limit; older attempts
fall off the front. Writes are serialized per user only.
"""

from __future__ import annotations

from collections import deque
from typing import Optional

from civicaccess.ledger.locks import KeyedLocks
from civicaccess.models.eligibility import UnlockAttempt


class AttemptHistory:
    """Ring buffer of UnlockAttempt records per user."""

    def __init__(self, limit: int = 100) -> None:
        if limit < 1:
            raise ValueError(f"limit must be >= 1, got {limit}")
        self._limit = limit
        self._attempts: dict[str, deque[UnlockAttempt]] = {}
        self._locks = KeyedLocks()

    def append(self, attempt: UnlockAttempt) -> None:
        with self._locks.hold(attempt.user_id):
            buffer = self._attempts.get(attempt.user_id)
            if buffer is None:
                buffer = deque(maxlen=self._limit)
                self._attempts[attempt.user_id] = buffer
            buffer.append(attempt)

    def for_user(self, user_id: str, limit: Optional[int] = None) -> list[UnlockAttempt]:
        """Attempts for one user, newest first."""
        with self._locks.hold(user_id):
            attempts = list(self._attempts.get(user_id, ()))
        attempts.reverse()
        return attempts[:limit] if limit is not None else attempts

    def all_attempts(self) -> list[UnlockAttempt]:
        """Every retained attempt across users, oldest first per user."""
        result: list[UnlockAttempt] = []
        for user_id in list(self._attempts):
            with self._locks.hold(user_id):
                result.extend(self._attempts.get(user_id, ()))
        return result

    def clear(self, user_id: Optional[str] = None) -> None:
        if user_id is not None:
            with self._locks.hold(user_id):
                self._attempts.pop(user_id, None)
            return
        for uid in list(self._attempts):
            with self._locks.hold(uid):
                self._attempts.pop(uid, None)

    @property
    def limit(self) -> int:
        return self._limit
