"""Visit domain entity: one recorded encounter moving through the pipeline."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from ...core.utils.datetime_utils import to_millis
from ..enums.processing import ProcessingStatus
from .post_commit_ledger import PostCommitLedger
from .visit_summary import MedicationChanges, MedicationReview, VisitSummary


@dataclass
class VisitRecord:
    visit_id: str
    owner_id: str
    processing_status: ProcessingStatus = ProcessingStatus.RECORDING
    status: str = "recording"
    audio_ref: Optional[str] = None
    transcription_id: Optional[str] = None
    transcription_status: Optional[str] = None
    transcript: Optional[str] = None
    transcript_text: Optional[str] = None
    summary: Optional[str] = None
    diagnoses: List[str] = field(default_factory=list)
    medications: Dict[str, Any] = field(default_factory=dict)
    medication_review: Dict[str, Any] = field(default_factory=dict)
    next_steps: List[str] = field(default_factory=list)
    education: Dict[str, Any] = field(default_factory=dict)
    processing_error: Optional[str] = None
    transcription_error: Optional[str] = None
    webhook_triggered: bool = False
    retry_count: int = 0
    last_retry_at: Optional[int] = None
    transcription_submitted_at: Optional[int] = None
    transcription_completed_at: Optional[int] = None
    transcription_deleted_at: Optional[int] = None
    summarization_started_at: Optional[int] = None
    processed_at: Optional[int] = None
    created_at: Optional[int] = None
    updated_at: Optional[int] = None
    escalation_acknowledged_at: Optional[int] = None
    escalation_acknowledged_by: Optional[str] = None
    escalation_resolved_at: Optional[int] = None
    escalation_resolved_by: Optional[str] = None
    escalation_note: Optional[str] = None
    ledger: PostCommitLedger = field(default_factory=PostCommitLedger)

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "VisitRecord":
        try:
            processing_status = ProcessingStatus(doc.get("processing_status") or "recording")
        except ValueError:
            processing_status = ProcessingStatus.FAILED

        retry_count = doc.get("retry_count")
        return cls(
            visit_id=str(doc["visit_id"]),
            owner_id=str(doc.get("owner_id") or ""),
            processing_status=processing_status,
            status=doc.get("status") or "recording",
            audio_ref=doc.get("audio_ref"),
            transcription_id=doc.get("transcription_id"),
            transcription_status=doc.get("transcription_status"),
            transcript=doc.get("transcript"),
            transcript_text=doc.get("transcript_text"),
            summary=doc.get("summary"),
            diagnoses=list(doc.get("diagnoses") or []),
            medications=dict(doc.get("medications") or {}),
            medication_review=dict(doc.get("medication_review") or {}),
            next_steps=list(doc.get("next_steps") or []),
            education=dict(doc.get("education") or {}),
            processing_error=doc.get("processing_error"),
            transcription_error=doc.get("transcription_error"),
            webhook_triggered=doc.get("webhook_triggered") is True,
            retry_count=retry_count if isinstance(retry_count, int) and not isinstance(retry_count, bool) else 0,
            last_retry_at=to_millis(doc.get("last_retry_at")),
            transcription_submitted_at=to_millis(doc.get("transcription_submitted_at")),
            transcription_completed_at=to_millis(doc.get("transcription_completed_at")),
            transcription_deleted_at=to_millis(doc.get("transcription_deleted_at")),
            summarization_started_at=to_millis(doc.get("summarization_started_at")),
            processed_at=to_millis(doc.get("processed_at")),
            created_at=to_millis(doc.get("created_at")),
            updated_at=to_millis(doc.get("updated_at")),
            escalation_acknowledged_at=to_millis(doc.get("post_commit_escalation_acknowledged_at")),
            escalation_acknowledged_by=doc.get("post_commit_escalation_acknowledged_by"),
            escalation_resolved_at=to_millis(doc.get("post_commit_escalation_resolved_at")),
            escalation_resolved_by=doc.get("post_commit_escalation_resolved_by"),
            escalation_note=doc.get("post_commit_escalation_note"),
            ledger=PostCommitLedger.from_document(doc),
        )

    def transcript_for_summary(self) -> str:
        """Raw text preferred; the formatted transcript is the fallback."""
        return (self.transcript_text or "").strip() or (self.transcript or "").strip()

    def stored_summary(self) -> VisitSummary:
        """Rebuild the committed summary, used when post-commit work is retried."""
        return VisitSummary(
            summary=self.summary or "",
            diagnoses=list(self.diagnoses),
            medications=MedicationChanges.parse(self.medications),
            medication_review=MedicationReview.parse(self.medication_review),
            next_steps=list(self.next_steps),
            education=dict(self.education),
        )
