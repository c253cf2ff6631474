"""
Domain entities package.
"""

from .post_commit_ledger import BackoffPolicy, PostCommitLedger
from .visit import VisitRecord
from .visit_summary import MedicationChanges, MedicationEntry, MedicationReview, VisitSummary

__all__ = [
    "BackoffPolicy",
    "PostCommitLedger",
    "VisitRecord",
    "MedicationEntry",
    "MedicationChanges",
    "MedicationReview",
    "VisitSummary",
]
