"""
Enums describing the visit processing pipeline.
"""

from enum import Enum


class ProcessingStatus(str, Enum):
    """Pipeline stage of a visit."""

    RECORDING = "recording"
    PENDING = "pending"
    TRANSCRIBING = "transcribing"
    SUMMARIZING = "summarizing"
    COMPLETED = "completed"
    FAILED = "failed"


class VisitStatus(str, Enum):
    """Top-level, user-facing visit status."""

    RECORDING = "recording"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class TranscriptionStatus(str, Enum):
    SUBMITTED = "submitted"
    COMPLETED = "completed"
    ERROR = "error"


class PostCommitStatus(str, Enum):
    NOT_STARTED = "not_started"
    COMPLETED = "completed"
    PARTIAL_FAILURE = "partial_failure"


class PostCommitOperation(str, Enum):
    """Side effects executed after the core visit commit."""

    SYNC_MEDICATIONS = "syncMedications"
    DELETE_SOURCE_TRANSCRIPT = "deleteSourceTranscript"
    ANALYZE_NUDGES = "analyzeNudges"
    PUSH_NOTIFICATION = "pushNotification"
    SEND_CAREGIVER_EMAIL = "sendCaregiverEmail"


class RetryPath(str, Enum):
    SUMMARIZE = "summarize"
    RETRANSCRIBE = "retranscribe"


class TranscribingRecoveryMode(str, Enum):
    FAIL_MAX_RETRIES = "fail_max_retries"
    RETRY_PENDING = "retry_pending"
    RESUME_SUMMARIZING = "resume_summarizing"
    MARK_FAILED = "mark_failed"
    SKIP = "skip"


class SummarizingRecoveryMode(str, Enum):
    FAIL_MAX_RETRIES = "fail_max_retries"
    RETRY = "retry"
