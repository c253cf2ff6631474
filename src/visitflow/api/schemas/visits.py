"""
Request and response schemas for visit processing endpoints.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ...core.utils.datetime_utils import isoformat_millis
from ...domain.entities.visit import VisitRecord


class UploadCompleteRequest(BaseModel):
    audio_ref: str = Field(..., min_length=1, description="Storage reference of the uploaded recording")


class TranscriptionWebhookPayload(BaseModel):
    """Callback body sent by the transcription provider."""

    transcript_id: str = Field(..., min_length=1)
    status: str = Field(..., description="completed or error")
    text: Optional[str] = None
    error: Optional[str] = None


class EscalationActionRequest(BaseModel):
    operator_id: str = Field(..., min_length=1, description="Operator handling the escalation")
    note: Optional[str] = Field(None, max_length=2000)


class PostCommitView(BaseModel):
    status: str
    completed_operations: List[str] = Field(default_factory=list)
    failed_operations: List[str] = Field(default_factory=list)
    operation_attempts: Dict[str, int] = Field(default_factory=dict)
    operation_next_retry_at: Dict[str, Optional[str]] = Field(default_factory=dict)
    retry_eligible: Optional[bool] = None
    last_attempt_at: Optional[str] = None
    completed_at: Optional[str] = None
    escalated_at: Optional[str] = None


class VisitView(BaseModel):
    visit_id: str
    owner_id: str
    status: str
    processing_status: str
    processing_error: Optional[str] = None
    transcription_id: Optional[str] = None
    retry_count: int = 0
    last_retry_at: Optional[str] = None
    summary: Optional[str] = None
    diagnoses: List[str] = Field(default_factory=list)
    medications: Dict[str, Any] = Field(default_factory=dict)
    next_steps: List[str] = Field(default_factory=list)
    processed_at: Optional[str] = None
    updated_at: Optional[str] = None
    post_commit: PostCommitView

    @classmethod
    def from_visit(cls, visit: VisitRecord) -> "VisitView":
        ledger = visit.ledger
        return cls(
            visit_id=visit.visit_id,
            owner_id=visit.owner_id,
            status=visit.status,
            processing_status=visit.processing_status.value,
            processing_error=visit.processing_error,
            transcription_id=visit.transcription_id,
            retry_count=visit.retry_count,
            last_retry_at=isoformat_millis(visit.last_retry_at),
            summary=visit.summary,
            diagnoses=list(visit.diagnoses),
            medications=dict(visit.medications),
            next_steps=list(visit.next_steps),
            processed_at=isoformat_millis(visit.processed_at),
            updated_at=isoformat_millis(visit.updated_at),
            post_commit=PostCommitView(
                status=ledger.status.value,
                completed_operations=sorted(ledger.completed_operations),
                failed_operations=sorted(ledger.failed_operations),
                operation_attempts=dict(ledger.operation_attempts),
                operation_next_retry_at={
                    op: isoformat_millis(at) for op, at in ledger.operation_next_retry_at.items()
                },
                retry_eligible=ledger.retry_eligible,
                last_attempt_at=isoformat_millis(ledger.last_attempt_at),
                completed_at=isoformat_millis(ledger.completed_at),
                escalated_at=isoformat_millis(ledger.escalated_at),
            ),
        )


class RetryResponse(BaseModel):
    visit_id: str
    path: str
    processing_status: str
    retry_count: int


class WebhookAck(BaseModel):
    handled: bool
    visit_id: Optional[str] = None
