"""Eligibility evaluation — requirement checks and status derivation."""

from civicaccess.eligibility.conditions import (
    RequirementChecks,
    derive_status,
    select_unlock_method,
)
from civicaccess.eligibility.evaluator import EligibilityEvaluator

__all__ = [
    "EligibilityEvaluator",
    "RequirementChecks",
    "derive_status",
    "select_unlock_method",
]
