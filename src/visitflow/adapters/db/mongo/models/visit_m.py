"""
MongoDB Beanie models used by the persistence layer.

Timestamps are epoch milliseconds. Conditional updates go through the raw
motor collection (``Model.get_motor_collection()``) so that marker patches
and status guards translate to a single ``update_one``.
"""

from typing import Any, Dict, List, Optional

from beanie import Document
from pydantic import ConfigDict, Field


class VisitMongo(Document):
    """MongoDB model for a recorded visit."""

    model_config = ConfigDict(extra="allow")

    visit_id: str = Field(..., description="Visit ID")
    owner_id: str = Field(..., description="Patient/user that owns the visit")
    processing_status: str = Field(default="recording")
    status: str = Field(default="recording")
    audio_ref: Optional[str] = None

    transcription_id: Optional[str] = None
    transcription_status: Optional[str] = None
    transcription_error: Optional[str] = None
    transcript: Optional[str] = None
    transcript_text: Optional[str] = None
    webhook_triggered: bool = False

    summary: Optional[str] = None
    diagnoses: List[str] = Field(default_factory=list)
    medications: Dict[str, Any] = Field(default_factory=dict)
    medication_review: Optional[Dict[str, Any]] = None
    next_steps: List[str] = Field(default_factory=list)
    education: Optional[Dict[str, Any]] = None

    processing_error: Optional[str] = None
    retry_count: int = 0
    last_retry_at: Optional[int] = None
    transcription_submitted_at: Optional[int] = None
    transcription_completed_at: Optional[int] = None
    transcription_deleted_at: Optional[int] = None
    summarization_started_at: Optional[int] = None
    processed_at: Optional[int] = None
    created_at: Optional[int] = None
    updated_at: Optional[int] = None
    last_swept_at: Optional[int] = None

    # Post-commit ledger
    post_commit_status: Optional[str] = None
    post_commit_completed_operations: Optional[List[str]] = None
    post_commit_failed_operations: Optional[List[str]] = None
    post_commit_operation_attempts: Optional[Dict[str, int]] = None
    post_commit_operation_next_retry_at: Optional[Dict[str, int]] = None
    post_commit_retry_eligible: Optional[bool] = None
    post_commit_last_attempt_at: Optional[int] = None
    post_commit_completed_at: Optional[int] = None
    post_commit_escalated_at: Optional[int] = None
    post_commit_escalation_acknowledged_at: Optional[int] = None
    post_commit_escalation_acknowledged_by: Optional[str] = None
    post_commit_escalation_resolved_at: Optional[int] = None
    post_commit_escalation_resolved_by: Optional[str] = None
    post_commit_escalation_note: Optional[str] = None

    class Settings:
        name = "visits"
        indexes = [
            "visit_id",
            "owner_id",
            "transcription_id",
            [("processing_status", 1), ("last_swept_at", 1), ("updated_at", 1)],  # stuck-visit sweeps
            [("post_commit_status", 1), ("post_commit_retry_eligible", 1)],
            [("post_commit_status", 1), ("post_commit_escalated_at", -1)],
        ]


class ActionMongo(Document):
    """Action item derived from a visit's next steps."""

    owner_id: str
    visit_id: str
    description: str
    source: str = Field(default="visit")
    completed: bool = False
    created_at: Optional[int] = None

    class Settings:
        name = "actions"
        indexes = [
            "visit_id",
            [("owner_id", 1), ("created_at", -1)],
        ]


class MedicationMongo(Document):
    """Patient medication list entry."""

    model_config = ConfigDict(extra="allow")

    owner_id: str
    name: str
    canonical_name: str
    dose: Optional[str] = None
    frequency: Optional[str] = None
    active: bool = True
    source: str = Field(default="visit")
    source_visit_id: Optional[str] = None
    notes: Optional[str] = None
    started_at: Optional[int] = None
    stopped_at: Optional[int] = None
    created_at: Optional[int] = None
    updated_at: Optional[int] = None

    class Settings:
        name = "medications"
        indexes = [
            [("owner_id", 1), ("canonical_name", 1), ("updated_at", -1)],
        ]


class UserMongo(Document):
    """User profile fields the pipeline reads."""

    model_config = ConfigDict(extra="allow")

    user_id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    auto_share_with_caregivers: Optional[bool] = None
    push_tokens: List[str] = Field(default_factory=list)

    class Settings:
        name = "users"
        indexes = ["user_id"]


class CaregiverShareMongo(Document):
    """Caregiver invited to receive an owner's visit summaries."""

    owner_id: str
    caregiver_email: str
    caregiver_name: Optional[str] = None
    status: str = Field(default="pending", description="pending, accepted, revoked")
    created_at: Optional[int] = None

    class Settings:
        name = "caregiver_shares"
        indexes = [[("owner_id", 1), ("status", 1)]]


class NudgeMongo(Document):
    """Follow-up prompt created from a visit."""

    owner_id: str
    visit_id: str
    subject_key: str = Field(..., description="medication:<canonical> or condition:<canonical>")
    kind: str
    message: str
    status: str = Field(default="pending")
    scheduled_for: Optional[int] = None
    created_at: Optional[int] = None

    class Settings:
        name = "nudges"
        indexes = [[("owner_id", 1), ("subject_key", 1), ("status", 1)], "visit_id"]


class ReminderMongo(Document):
    """Medication reminder with a send lease."""

    model_config = ConfigDict(extra="allow")

    reminder_id: str
    owner_id: str
    medication_id: Optional[str] = None
    medication_name: Optional[str] = None
    time_of_day: Optional[str] = None
    enabled: bool = True
    last_sent_lock_until: Optional[int] = None
    last_sent_lock_at: Optional[int] = None
    updated_at: Optional[int] = None
    last_sent_at: Optional[int] = None

    class Settings:
        name = "reminders"
        indexes = ["reminder_id", "owner_id"]


DOCUMENT_MODELS = [
    VisitMongo,
    ActionMongo,
    MedicationMongo,
    UserMongo,
    CaregiverShareMongo,
    NudgeMongo,
    ReminderMongo,
]
