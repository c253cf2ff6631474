"""
Interfaces for the side effects that run after a visit is committed.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict

from visitflow.domain.entities.visit_summary import MedicationChanges, VisitSummary


class MedicationSync(ABC):
    @abstractmethod
    async def sync_medications_from_summary(
        self, owner_id: str, visit_id: str, medications: MedicationChanges
    ) -> None:
        """Apply started/stopped/changed medications to the owner's medication list."""
        pass


class NudgeAnalyzer(ABC):
    @abstractmethod
    async def analyze_visit_with_delta(
        self, owner_id: str, visit_id: str, summary: VisitSummary
    ) -> Dict[str, Any]:
        """
        Compare the visit against the owner's history and create follow-up nudges.

        Returns a dict with at least ``nudges_created`` and ``reasoning``.
        """
        pass


class CaregiverNotifier(ABC):
    @abstractmethod
    async def send_visit_summary_to_all_caregivers(self, owner_id: str, visit_id: str) -> Dict[str, int]:
        """Email the visit summary to every accepted caregiver. Returns ``{"sent", "failed"}`` counts."""
        pass


class PushNotifier(ABC):
    @abstractmethod
    async def notify_visit_ready(self, owner_id: str, visit_id: str) -> None:
        pass

    @abstractmethod
    async def send_medication_reminder(self, owner_id: str, reminder: Dict[str, Any]) -> None:
        pass


class IncidentReporter(ABC):
    """Forwards escalation summaries to an on-call or incident channel."""

    @abstractmethod
    async def dispatch(self, payload: Dict[str, Any]) -> bool:
        """Send ``payload``; returns False when no channel is configured."""
        pass
