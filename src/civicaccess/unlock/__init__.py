"""Unlock orchestration — attempts, attempt history, aggregate queries."""

from civicaccess.unlock.history import AttemptHistory
from civicaccess.unlock.orchestrator import ServiceResult, UnlockOrchestrator

__all__ = ["AttemptHistory", "ServiceResult", "UnlockOrchestrator"]
