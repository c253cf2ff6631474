"""
User-initiated retry of visit processing.
"""

import logging
from dataclasses import dataclass

from visitflow.application.use_cases.process_visit import (
    VisitProcessingOrchestrator,
    ledger_reset_patch,
)
from visitflow.domain.entities.visit import VisitRecord
from visitflow.domain.enums.processing import ProcessingStatus, RetryPath, VisitStatus
from visitflow.domain.errors import (
    InvalidVisitStateError,
    MissingAudioError,
    RetryTooSoonError,
)
from visitflow.domain.field_ops import FIELD_DELETE, Increment
from visitflow.domain.transitions import calculate_retry_wait_seconds, resolve_retry_path

logger = logging.getLogger("visitflow")

# Visits the pipeline is not currently working on.
RETRYABLE_STATUSES = (ProcessingStatus.FAILED, ProcessingStatus.COMPLETED)


@dataclass
class RetryVisitResult:
    visit: VisitRecord
    path: RetryPath


def _cleared_summary_fields() -> dict:
    return {
        "summary": FIELD_DELETE,
        "diagnoses": [],
        "medications": {"started": [], "stopped": [], "changed": []},
        "medication_review": FIELD_DELETE,
        "next_steps": [],
        "education": FIELD_DELETE,
        "summarization_started_at": FIELD_DELETE,
        "processed_at": FIELD_DELETE,
        "processing_error": FIELD_DELETE,
    }


class RetryVisitUseCase:
    """Re-run processing for a failed or completed visit, at most once per throttle window.

    When a transcript survived, the visit goes straight back to summarizing
    (the caller schedules ``summarize_visit``); otherwise the audio is
    resubmitted for transcription here.
    """

    def __init__(self, orchestrator: VisitProcessingOrchestrator) -> None:
        self._orchestrator = orchestrator
        self._visits = orchestrator.visits

    async def execute(self, visit_id: str) -> RetryVisitResult:
        visit = await self._orchestrator.get_visit(visit_id)
        if visit.processing_status not in RETRYABLE_STATUSES:
            raise InvalidVisitStateError(
                visit_id, visit.processing_status.value, "failed or completed"
            )

        now = self._orchestrator.now()
        wait_seconds = calculate_retry_wait_seconds(
            now, visit.last_retry_at, self._orchestrator.policy.min_retry_interval_ms
        )
        if wait_seconds > 0:
            raise RetryTooSoonError(visit_id, wait_seconds)

        path = resolve_retry_path(visit)
        if path == RetryPath.RETRANSCRIBE and not visit.audio_ref:
            raise MissingAudioError(visit_id)

        patch = {
            **_cleared_summary_fields(),
            **ledger_reset_patch(),
            "status": VisitStatus.PROCESSING.value,
            "last_retry_at": now,
            "retry_count": Increment(1),
            "updated_at": now,
        }
        if path == RetryPath.SUMMARIZE:
            patch["processing_status"] = ProcessingStatus.SUMMARIZING.value
        else:
            patch.update(
                {
                    "processing_status": ProcessingStatus.PENDING.value,
                    "transcript": FIELD_DELETE,
                    "transcript_text": FIELD_DELETE,
                    "transcription_id": FIELD_DELETE,
                    "transcription_status": FIELD_DELETE,
                    "transcription_error": FIELD_DELETE,
                    "transcription_completed_at": FIELD_DELETE,
                    "transcription_deleted_at": FIELD_DELETE,
                }
            )

        applied = await self._visits.update_fields(
            visit_id, patch, expected_status=visit.processing_status
        )
        if not applied:
            current = await self._orchestrator.get_visit(visit_id)
            raise InvalidVisitStateError(
                visit_id, current.processing_status.value, visit.processing_status.value
            )

        logger.info("[ManualRetry] Retrying visit=%s via %s", visit_id, path.value)
        if path == RetryPath.RETRANSCRIBE:
            await self._orchestrator.submit_transcription(visit_id)

        return RetryVisitResult(visit=await self._orchestrator.get_visit(visit_id), path=path)
