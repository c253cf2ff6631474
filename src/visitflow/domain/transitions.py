"""
Pure decision functions for the visit processing state machine.

Nothing here touches storage or raises on odd input: unexpected values fall
through to the most conservative outcome so callers can apply the result
directly.
"""

import math
from typing import Any, Dict, Mapping, Optional

from .enums.processing import (
    ProcessingStatus,
    RetryPath,
    SummarizingRecoveryMode,
    TranscribingRecoveryMode,
    TranscriptionStatus,
    VisitStatus,
)

DEFAULT_TRANSCRIPTION_ERROR = "Transcription failed"


def _has_text(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _as_int(value: Any, default: int = 0) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)) and not math.isnan(value):
        return int(value)
    return default


def resolve_retry_path(visit: Any) -> RetryPath:
    """Summarize again when any transcript text survived, otherwise re-transcribe."""
    if isinstance(visit, Mapping):
        transcript = visit.get("transcript")
        transcript_text = visit.get("transcript_text")
    else:
        transcript = getattr(visit, "transcript", None)
        transcript_text = getattr(visit, "transcript_text", None)

    if _has_text(transcript) or _has_text(transcript_text):
        return RetryPath.SUMMARIZE
    return RetryPath.RETRANSCRIBE


def calculate_retry_wait_seconds(
    now_millis: int,
    last_retry_at_millis: Optional[int],
    min_interval_ms: int,
) -> int:
    """Seconds left in the throttle window; 0 when a retry may run now."""
    if last_retry_at_millis is None or isinstance(last_retry_at_millis, bool):
        return 0
    if not isinstance(last_retry_at_millis, (int, float)):
        return 0

    remaining_ms = last_retry_at_millis + min_interval_ms - now_millis
    if remaining_ms <= 0:
        return 0
    return math.ceil(remaining_ms / 1000)


def resolve_transcribing_recovery_mode(
    retry_count: Any,
    max_retries: int,
    has_transcription_id: bool,
    transcript_status: Optional[str] = None,
) -> TranscribingRecoveryMode:
    if _as_int(retry_count) >= max_retries:
        return TranscribingRecoveryMode.FAIL_MAX_RETRIES
    if not has_transcription_id:
        return TranscribingRecoveryMode.RETRY_PENDING
    if transcript_status == "completed":
        return TranscribingRecoveryMode.RESUME_SUMMARIZING
    if transcript_status == "error":
        return TranscribingRecoveryMode.MARK_FAILED
    return TranscribingRecoveryMode.SKIP


def resolve_summarizing_recovery_mode(retry_count: Any, max_retries: int) -> SummarizingRecoveryMode:
    if _as_int(retry_count) >= max_retries:
        return SummarizingRecoveryMode.FAIL_MAX_RETRIES
    return SummarizingRecoveryMode.RETRY


def build_webhook_visit_update(
    status: str,
    now: int,
    field_delete: Any,
    formatted_transcript: str = "",
    transcript_text: str = "",
    error: Optional[str] = None,
) -> Dict[str, Any]:
    """Patch applied to a transcribing visit when the provider reports back.

    ``field_delete`` is the store's "remove this field" marker, passed in so
    the function stays independent of any particular store.
    """
    if status == "completed":
        return {
            "processing_status": ProcessingStatus.SUMMARIZING.value,
            "transcription_status": TranscriptionStatus.COMPLETED.value,
            "transcript": formatted_transcript or transcript_text or "",
            "transcript_text": transcript_text or "",
            "transcription_error": field_delete,
            "webhook_triggered": True,
            "transcription_completed_at": now,
            "updated_at": now,
        }

    message = error if _has_text(error) else DEFAULT_TRANSCRIPTION_ERROR
    return {
        "processing_status": ProcessingStatus.FAILED.value,
        "status": VisitStatus.FAILED.value,
        "transcription_status": TranscriptionStatus.ERROR.value,
        "transcription_error": message,
        "processing_error": message,
        "webhook_triggered": True,
        "updated_at": now,
    }
