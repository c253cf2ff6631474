"""
Decision functions of the visit state machine.
"""

from visitflow.domain.enums.processing import (
    ProcessingStatus,
    RetryPath,
    SummarizingRecoveryMode,
    TranscribingRecoveryMode,
)
from visitflow.domain.field_ops import FIELD_DELETE
from visitflow.domain.transitions import (
    DEFAULT_TRANSCRIPTION_ERROR,
    build_webhook_visit_update,
    calculate_retry_wait_seconds,
    resolve_retry_path,
    resolve_summarizing_recovery_mode,
    resolve_transcribing_recovery_mode,
)


def test_retry_path_summarizes_when_any_transcript_survives():
    assert resolve_retry_path({"transcript": "Doctor: hello"}) == RetryPath.SUMMARIZE
    assert resolve_retry_path({"transcript": "  ", "transcript_text": "hello"}) == RetryPath.SUMMARIZE


def test_retry_path_retranscribes_without_text():
    assert resolve_retry_path({}) == RetryPath.RETRANSCRIBE
    assert resolve_retry_path({"transcript": "   ", "transcript_text": None}) == RetryPath.RETRANSCRIBE
    assert resolve_retry_path({"transcript": 42}) == RetryPath.RETRANSCRIBE


def test_retry_wait_is_zero_without_previous_retry():
    assert calculate_retry_wait_seconds(100_000, None, 30_000) == 0


def test_retry_wait_rounds_remaining_time_up():
    assert calculate_retry_wait_seconds(100_000, 90_000, 30_000) == 20
    assert calculate_retry_wait_seconds(100_001, 90_000, 30_000) == 20
    assert calculate_retry_wait_seconds(119_999, 90_000, 30_000) == 1


def test_retry_wait_is_zero_once_window_elapsed():
    assert calculate_retry_wait_seconds(120_000, 90_000, 30_000) == 0
    assert calculate_retry_wait_seconds(500_000, 90_000, 30_000) == 0


def test_transcribing_recovery_fails_at_max_retries_first():
    mode = resolve_transcribing_recovery_mode(3, 3, True, "completed")
    assert mode == TranscribingRecoveryMode.FAIL_MAX_RETRIES


def test_transcribing_recovery_without_transcription_id_retries():
    assert resolve_transcribing_recovery_mode(0, 3, False) == TranscribingRecoveryMode.RETRY_PENDING


def test_transcribing_recovery_follows_provider_status():
    assert (
        resolve_transcribing_recovery_mode(1, 3, True, "completed")
        == TranscribingRecoveryMode.RESUME_SUMMARIZING
    )
    assert resolve_transcribing_recovery_mode(1, 3, True, "error") == TranscribingRecoveryMode.MARK_FAILED
    assert resolve_transcribing_recovery_mode(1, 3, True, "processing") == TranscribingRecoveryMode.SKIP
    assert resolve_transcribing_recovery_mode(1, 3, True, None) == TranscribingRecoveryMode.SKIP


def test_transcribing_recovery_treats_odd_retry_counts_as_zero():
    assert resolve_transcribing_recovery_mode("7", 3, False) == TranscribingRecoveryMode.RETRY_PENDING
    assert resolve_transcribing_recovery_mode(None, 3, False) == TranscribingRecoveryMode.RETRY_PENDING
    assert resolve_transcribing_recovery_mode(True, 3, False) == TranscribingRecoveryMode.RETRY_PENDING


def test_summarizing_recovery_modes():
    assert resolve_summarizing_recovery_mode(0, 3) == SummarizingRecoveryMode.RETRY
    assert resolve_summarizing_recovery_mode(2, 3) == SummarizingRecoveryMode.RETRY
    assert resolve_summarizing_recovery_mode(3, 3) == SummarizingRecoveryMode.FAIL_MAX_RETRIES


def test_completed_webhook_moves_visit_to_summarizing():
    patch = build_webhook_visit_update(
        status="completed",
        now=1234,
        field_delete=FIELD_DELETE,
        formatted_transcript="Doctor: hi",
        transcript_text="hi",
    )
    assert patch["processing_status"] == ProcessingStatus.SUMMARIZING.value
    assert patch["transcript"] == "Doctor: hi"
    assert patch["transcript_text"] == "hi"
    assert patch["transcription_error"] is FIELD_DELETE
    assert patch["webhook_triggered"] is True
    assert patch["transcription_completed_at"] == 1234
    assert "status" not in patch


def test_completed_webhook_falls_back_to_raw_text():
    patch = build_webhook_visit_update(
        status="completed", now=1, field_delete=FIELD_DELETE, transcript_text="raw only"
    )
    assert patch["transcript"] == "raw only"


def test_error_webhook_fails_visit_with_default_message():
    patch = build_webhook_visit_update(status="error", now=5, field_delete=FIELD_DELETE, error="  ")
    assert patch["processing_status"] == ProcessingStatus.FAILED.value
    assert patch["status"] == "failed"
    assert patch["processing_error"] == DEFAULT_TRANSCRIPTION_ERROR
    assert patch["transcription_error"] == DEFAULT_TRANSCRIPTION_ERROR


def test_error_webhook_keeps_provider_message():
    patch = build_webhook_visit_update(
        status="error", now=5, field_delete=FIELD_DELETE, error="Audio file is empty"
    )
    assert patch["processing_error"] == "Audio file is empty"
