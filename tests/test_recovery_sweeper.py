"""
Recovery of stuck visits and partially failed post-commit work.
"""

import pytest

from visitflow.application.ports.services.transcription_service import TranscriptStatus
from visitflow.workers.recovery_sweeper import RecoverySweeper

from fakes import START_MILLIS

MINUTE = 60 * 1000


@pytest.fixture
def sweeper(orchestrator):
    return RecoverySweeper(
        orchestrator,
        transcribing_timeout_ms=30 * MINUTE,
        summarizing_timeout_ms=15 * MINUTE,
        stuck_batch_limit=10,
        post_commit_limit=25,
    )


def _stale_transcribing(visits, clock, visit_id="visit-1", **fields):
    values = {
        "processing_status": "transcribing",
        "status": "processing",
        "audio_ref": "https://storage.example/a.m4a",
        "transcription_id": "tx-9",
        "updated_at": clock.now - 31 * MINUTE,
    }
    values.update(fields)
    return visits.seed(visit_id, **values)


def _stale_summarizing(visits, clock, visit_id="visit-1", **fields):
    values = {
        "processing_status": "summarizing",
        "status": "processing",
        "audio_ref": "https://storage.example/a.m4a",
        "transcription_id": "tx-9",
        "transcript_text": "Your blood pressure is high.",
        "updated_at": clock.now - 16 * MINUTE,
    }
    values.update(fields)
    return visits.seed(visit_id, **values)


async def test_fresh_visits_are_left_alone(sweeper, visits, clock, collaborators):
    _stale_transcribing(visits, clock, updated_at=clock.now - 5 * MINUTE)

    stats = await sweeper.sweep_once()

    assert stats.transcribing_scanned == 0
    assert visits.docs["visit-1"]["processing_status"] == "transcribing"


async def test_still_processing_upstream_is_skipped(sweeper, visits, clock):
    _stale_transcribing(visits, clock)

    stats = await sweeper.sweep_once()

    assert stats.transcribing_scanned == 1
    assert stats.transcribing_recovered == 0
    assert visits.docs["visit-1"]["processing_status"] == "transcribing"


async def test_completed_upstream_resumes_summarizing(sweeper, visits, clock, collaborators):
    _stale_transcribing(visits, clock)
    collaborators.transcription.statuses["tx-9"] = TranscriptStatus(
        status="completed", text="raw words", formatted="Speaker A: raw words"
    )

    stats = await sweeper.sweep_once()

    assert stats.transcribing_recovered == 1
    doc = visits.docs["visit-1"]
    assert doc["processing_status"] == "completed"
    assert doc["transcript"] == "Speaker A: raw words"
    assert doc["post_commit_status"] == "completed"


async def test_errored_upstream_fails_visit(sweeper, visits, clock, collaborators):
    _stale_transcribing(visits, clock)
    collaborators.transcription.statuses["tx-9"] = TranscriptStatus(status="error", error="corrupt file")

    await sweeper.sweep_once()

    doc = visits.docs["visit-1"]
    assert doc["processing_status"] == "failed"
    assert doc["processing_error"] == "corrupt file"


async def test_transcribing_at_max_retries_fails(sweeper, visits, clock, collaborators):
    _stale_transcribing(visits, clock, retry_count=3)

    await sweeper.sweep_once()

    doc = visits.docs["visit-1"]
    assert doc["processing_status"] == "failed"
    assert doc["processing_error"] == "Transcription failed after 3 attempts"
    assert collaborators.transcription.submitted == []


async def test_missing_transcription_id_is_resubmitted(sweeper, visits, clock, collaborators):
    _stale_transcribing(visits, clock, transcription_id=None)

    await sweeper.sweep_once()

    doc = visits.docs["visit-1"]
    assert doc["processing_status"] == "transcribing"
    assert doc["transcription_id"] == "tx-1"
    assert doc["retry_count"] == 1
    assert doc["last_retry_at"] == clock.now
    assert collaborators.transcription.submitted == ["https://storage.example/a.m4a"]


async def test_status_check_failure_resubmits(sweeper, visits, clock, collaborators):
    _stale_transcribing(visits, clock)
    collaborators.transcription.status_error = True

    await sweeper.sweep_once()

    assert visits.docs["visit-1"]["transcription_id"] == "tx-1"
    assert visits.docs["visit-1"]["retry_count"] == 1


async def test_recent_retry_throttles_recovery(sweeper, visits, clock, collaborators):
    _stale_transcribing(visits, clock, transcription_id=None, last_retry_at=clock.now - 10_000)

    stats = await sweeper.sweep_once()

    assert stats.transcribing_recovered == 0
    assert collaborators.transcription.submitted == []


async def test_stuck_transcribing_without_audio_fails(sweeper, visits, clock):
    _stale_transcribing(visits, clock, transcription_id=None, audio_ref=None)

    await sweeper.sweep_once()

    doc = visits.docs["visit-1"]
    assert doc["processing_status"] == "failed"
    assert doc["processing_error"] == "Visit has no audio to reprocess"


async def test_stuck_summarizing_is_retried(sweeper, visits, clock, collaborators):
    _stale_summarizing(visits, clock, summarization_started_at=clock.now - 20 * MINUTE)

    stats = await sweeper.sweep_once()

    assert stats.summarizing_recovered == 1
    doc = visits.docs["visit-1"]
    assert doc["processing_status"] == "completed"
    assert doc["retry_count"] == 1
    assert collaborators.summarizer.transcripts == ["Your blood pressure is high."]


async def test_stuck_summarizing_without_transcript_retranscribes(sweeper, visits, clock, collaborators):
    _stale_summarizing(visits, clock, transcript_text=None)

    await sweeper.sweep_once()

    doc = visits.docs["visit-1"]
    assert doc["processing_status"] == "transcribing"
    assert doc["transcription_id"] == "tx-1"
    assert collaborators.summarizer.calls == 0


async def test_stuck_summarizing_at_max_retries_fails(sweeper, visits, clock):
    _stale_summarizing(visits, clock, retry_count=3)

    await sweeper.sweep_once()

    doc = visits.docs["visit-1"]
    assert doc["processing_status"] == "failed"
    assert doc["processing_error"] == "Summarization failed after 3 attempts"


async def test_one_bad_visit_does_not_stop_the_sweep(sweeper, visits, clock, collaborators):
    _stale_summarizing(visits, clock, visit_id="visit-a", updated_at=clock.now - 20 * MINUTE)
    _stale_summarizing(visits, clock, visit_id="visit-b")
    collaborators.summarizer.fail_count = 1

    stats = await sweeper.sweep_once()

    assert stats.summarizing_scanned == 2
    assert visits.docs["visit-a"]["processing_status"] == "failed"
    assert visits.docs["visit-b"]["processing_status"] == "completed"


def _partial_failure(visits, visit_id="visit-1", **fields):
    values = {
        "processing_status": "completed",
        "status": "completed",
        "transcription_id": "tx-9",
        "summary": "Blood pressure reviewed.",
        "next_steps": ["Recheck blood pressure"],
        "post_commit_status": "partial_failure",
        "post_commit_completed_operations": ["syncMedications", "deleteSourceTranscript", "analyzeNudges"],
        "post_commit_failed_operations": ["pushNotification", "sendCaregiverEmail"],
        "post_commit_operation_attempts": {"pushNotification": 1, "sendCaregiverEmail": 1},
        "post_commit_operation_next_retry_at": {
            "pushNotification": START_MILLIS - 1,
            "sendCaregiverEmail": START_MILLIS - 1,
        },
        "post_commit_retry_eligible": True,
    }
    values.update(fields)
    return visits.seed(visit_id, **values)


async def test_post_commit_recovery_reruns_failed_operations_only(sweeper, visits, collaborators):
    _partial_failure(visits)

    stats = await sweeper.sweep_once()

    assert stats.visits_scanned == 1
    assert stats.visits_retried == 1
    assert stats.visits_resolved == 1
    assert stats.operation_attempts == 2
    assert stats.operation_failures == 0
    assert collaborators.push_notifier.visit_ready == ["visit-1"]
    assert collaborators.caregiver_notifier.sent_for == ["visit-1"]
    assert collaborators.medication_sync.synced == []
    assert collaborators.transcription.deleted == []
    assert collaborators.nudge_analyzer.analyzed == []
    assert visits.docs["visit-1"]["post_commit_status"] == "completed"


async def test_post_commit_recovery_counts_remaining_failures(sweeper, visits, collaborators, clock):
    _partial_failure(visits)
    collaborators.push_notifier.fail_always = True

    stats = await sweeper.sweep_once()

    assert stats.visits_still_failing == 1
    assert stats.operation_failures == 1
    doc = visits.docs["visit-1"]
    assert doc["post_commit_failed_operations"] == ["pushNotification"]
    assert doc["post_commit_operation_attempts"] == {"pushNotification": 2}
    assert doc["post_commit_operation_next_retry_at"] == {"pushNotification": clock.now + 10 * MINUTE}


async def test_post_commit_recovery_waits_for_backoff(sweeper, visits, collaborators, clock):
    _partial_failure(
        visits,
        post_commit_operation_next_retry_at={
            "pushNotification": clock.now + MINUTE,
            "sendCaregiverEmail": clock.now + MINUTE,
        },
    )

    stats = await sweeper.sweep_once()

    assert stats.visits_scanned == 1
    assert stats.visits_retried == 0
    assert collaborators.push_notifier.visit_ready == []


async def test_ineligible_visits_are_not_scanned(sweeper, visits):
    _partial_failure(visits, post_commit_retry_eligible=False)

    stats = await sweeper.sweep_once()

    assert stats.visits_scanned == 0


async def test_partial_failure_with_every_failure_completed_is_settled(sweeper, visits, collaborators, clock):
    _partial_failure(
        visits,
        post_commit_completed_operations=[
            "syncMedications",
            "deleteSourceTranscript",
            "analyzeNudges",
            "pushNotification",
            "sendCaregiverEmail",
        ],
        post_commit_operation_next_retry_at={
            "pushNotification": clock.now + MINUTE,
            "sendCaregiverEmail": clock.now + MINUTE,
        },
    )

    stats = await sweeper.sweep_once()

    assert stats.visits_scanned == 1
    assert stats.visits_retried == 0
    assert stats.visits_resolved == 1
    assert collaborators.push_notifier.visit_ready == []
    doc = visits.docs["visit-1"]
    assert doc["post_commit_status"] == "completed"
    assert doc["post_commit_completed_at"] == clock.now
    assert "post_commit_failed_operations" not in doc
    assert "post_commit_retry_eligible" not in doc

    assert (await sweeper.sweep_once()).visits_scanned == 0


async def test_exhausted_failures_stop_being_retry_eligible(sweeper, visits, collaborators):
    _partial_failure(
        visits,
        post_commit_operation_attempts={"pushNotification": 5, "sendCaregiverEmail": 5},
    )

    stats = await sweeper.sweep_once()

    assert stats.visits_retried == 0
    assert stats.visits_still_failing == 1
    assert collaborators.push_notifier.visit_ready == []
    doc = visits.docs["visit-1"]
    assert doc["post_commit_status"] == "partial_failure"
    assert doc["post_commit_retry_eligible"] is False
    assert doc["post_commit_failed_operations"] == ["pushNotification", "sendCaregiverEmail"]

    assert (await sweeper.sweep_once()).visits_scanned == 0


async def test_skipped_visits_do_not_starve_the_rest_of_the_backlog(sweeper, visits, clock, collaborators):
    for i in range(10):
        _stale_transcribing(
            visits, clock, visit_id=f"waiting-{i}", transcription_id=f"tx-w{i}", updated_at=clock.now - 40 * MINUTE
        )
    _stale_transcribing(visits, clock, visit_id="orphan", transcription_id=None)

    first = await sweeper.sweep_once()

    assert first.transcribing_scanned == 10
    assert first.transcribing_recovered == 0
    assert "last_swept_at" not in visits.docs["orphan"]
    assert all(visits.docs[f"waiting-{i}"]["last_swept_at"] == clock.now for i in range(10))

    clock.advance(MINUTE)
    second = await sweeper.sweep_once()

    assert second.transcribing_recovered == 1
    doc = visits.docs["orphan"]
    assert doc["transcription_id"] == "tx-1"
    assert doc["retry_count"] == 1
    assert collaborators.transcription.submitted == ["https://storage.example/a.m4a"]


async def test_throttled_summarizing_visit_is_marked_swept(sweeper, visits, clock, collaborators):
    _stale_summarizing(visits, clock, last_retry_at=clock.now - 10_000)

    stats = await sweeper.sweep_once()

    assert stats.summarizing_recovered == 0
    doc = visits.docs["visit-1"]
    assert doc["processing_status"] == "summarizing"
    assert doc["last_swept_at"] == clock.now
    assert doc["updated_at"] == clock.now - 16 * MINUTE
    assert collaborators.summarizer.calls == 0
