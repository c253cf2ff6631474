"""
Manual retry of a failed or completed visit.
"""

import pytest

from visitflow.application.use_cases.retry_visit import RetryVisitUseCase
from visitflow.domain.enums.processing import ProcessingStatus, RetryPath
from visitflow.domain.errors import InvalidVisitStateError, MissingAudioError, RetryTooSoonError


@pytest.fixture
def retry(orchestrator):
    return RetryVisitUseCase(orchestrator)


async def test_retry_with_transcript_goes_back_to_summarizing(retry, visits, clock):
    visits.seed(
        "visit-1",
        processing_status="failed",
        status="failed",
        transcript="Doctor: hello",
        summary="old summary",
        processing_error="Summarization failed: timeout",
        post_commit_status="partial_failure",
        post_commit_failed_operations=["pushNotification"],
    )

    result = await retry.execute("visit-1")

    assert result.path == RetryPath.SUMMARIZE
    assert result.visit.processing_status == ProcessingStatus.SUMMARIZING
    doc = visits.docs["visit-1"]
    assert doc["retry_count"] == 1
    assert doc["last_retry_at"] == clock.now
    assert doc["status"] == "processing"
    assert doc["transcript"] == "Doctor: hello"
    assert "summary" not in doc
    assert "processing_error" not in doc
    assert "post_commit_status" not in doc
    assert "post_commit_failed_operations" not in doc


async def test_retry_without_transcript_resubmits_audio(retry, visits, collaborators):
    visits.seed(
        "visit-1",
        processing_status="failed",
        audio_ref="https://storage.example/a.m4a",
        transcription_id="tx-old",
        transcription_error="bad audio",
    )

    result = await retry.execute("visit-1")

    assert result.path == RetryPath.RETRANSCRIBE
    assert result.visit.processing_status == ProcessingStatus.TRANSCRIBING
    assert result.visit.transcription_id == "tx-1"
    assert collaborators.transcription.submitted == ["https://storage.example/a.m4a"]
    assert "transcription_error" not in visits.docs["visit-1"]


async def test_retry_without_transcript_or_audio_is_rejected(retry, visits):
    visits.seed("visit-1", processing_status="failed")

    with pytest.raises(MissingAudioError) as exc_info:
        await retry.execute("visit-1")

    assert exc_info.value.message == "Visit has no audio to reprocess"
    assert visits.docs["visit-1"]["retry_count"] == 0


async def test_retry_inside_window_reports_remaining_seconds(retry, visits, clock):
    visits.seed(
        "visit-1",
        processing_status="failed",
        transcript="Doctor: hello",
        last_retry_at=clock.now - 10_500,
        retry_count=1,
    )

    with pytest.raises(RetryTooSoonError) as exc_info:
        await retry.execute("visit-1")

    assert exc_info.value.wait_seconds == 20
    assert exc_info.value.message == "Please wait 20 more seconds before retrying"
    assert visits.docs["visit-1"]["retry_count"] == 1


async def test_retry_after_window_is_allowed(retry, visits, clock):
    visits.seed(
        "visit-1",
        processing_status="completed",
        transcript="Doctor: hello",
        last_retry_at=clock.now - 30_000,
        retry_count=1,
    )

    result = await retry.execute("visit-1")

    assert result.visit.retry_count == 2


@pytest.mark.parametrize("status", ["recording", "pending", "transcribing", "summarizing"])
async def test_retry_of_in_flight_visit_is_rejected(retry, visits, status):
    visits.seed("visit-1", processing_status=status, transcript="Doctor: hello")

    with pytest.raises(InvalidVisitStateError):
        await retry.execute("visit-1")
