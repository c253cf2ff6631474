"""
External collaborators the visit pipeline depends on.

Production implementations are bound once at startup (see ``api/deps.py``);
tests and one-off calls swap individual members with ``with_overrides``.
"""

from dataclasses import dataclass, replace

from .ports.repositories.related_repos import (
    ActionSyncRepository,
    MedicationLookup,
    UserProfileRepository,
)
from .ports.services.post_commit_services import (
    CaregiverNotifier,
    MedicationSync,
    NudgeAnalyzer,
    PushNotifier,
)
from .ports.services.summary_service import SummaryExtractor
from .ports.services.transcription_service import TranscriptCleanup, TranscriptionService


@dataclass(frozen=True)
class VisitCollaborators:
    transcription: TranscriptionService
    summarizer: SummaryExtractor
    action_sync: ActionSyncRepository
    medication_sync: MedicationSync
    medication_lookup: MedicationLookup
    nudge_analyzer: NudgeAnalyzer
    caregiver_notifier: CaregiverNotifier
    push_notifier: PushNotifier
    user_profiles: UserProfileRepository
    transcript_cleanup: TranscriptCleanup

    def with_overrides(self, **overrides) -> "VisitCollaborators":
        """Copy with some collaborators replaced; unknown names raise TypeError."""
        if not overrides:
            return self
        return replace(self, **overrides)
