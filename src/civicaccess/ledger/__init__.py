"""Access ledger — append-only decision history with bounded capacity."""

from civicaccess.ledger.access_ledger import (
    AccessLedger,
    CapacityEvictionError,
    LedgerWriteError,
)
from civicaccess.ledger.locks import KeyedLocks

__all__ = ["AccessLedger", "CapacityEvictionError", "KeyedLocks", "LedgerWriteError"]
