"""
Visit processing orchestrator.

Drives a visit through recording -> pending -> transcribing -> summarizing ->
completed, commits the summary and action items atomically, then runs the
post-commit side effects and records each outcome in the visit's ledger.

Every visit write is conditioned on the processing status the step expects,
so a live webhook and a recovery sweep racing on the same visit cannot both
apply a transition.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from visitflow.application.collaborators import VisitCollaborators
from visitflow.application.ports.repositories.visit_repo import VisitRepository
from visitflow.application.services.medication_reconciliation import (
    promote_continued_medications,
)
from visitflow.core.exceptions import NotificationError
from visitflow.core.utils.datetime_utils import now_millis
from visitflow.domain.entities.post_commit_ledger import BackoffPolicy, PostCommitLedger
from visitflow.domain.entities.visit import VisitRecord
from visitflow.domain.entities.visit_summary import VisitSummary
from visitflow.domain.enums.processing import (
    PostCommitOperation,
    ProcessingStatus,
    TranscriptionStatus,
    VisitStatus,
)
from visitflow.domain.errors import (
    ConcurrentVisitUpdateError,
    InvalidVisitStateError,
    MissingAudioError,
    VisitNotFoundError,
)
from visitflow.domain.field_ops import FIELD_DELETE
from visitflow.domain.transitions import build_webhook_visit_update

logger = logging.getLogger("visitflow")

# Execution order of the post-commit phase.
POST_COMMIT_OPERATIONS: Sequence[PostCommitOperation] = (
    PostCommitOperation.SYNC_MEDICATIONS,
    PostCommitOperation.DELETE_SOURCE_TRANSCRIPT,
    PostCommitOperation.ANALYZE_NUDGES,
    PostCommitOperation.PUSH_NOTIFICATION,
    PostCommitOperation.SEND_CAREGIVER_EMAIL,
)

ACTIONS_COLLECTION = "actions"


@dataclass(frozen=True)
class ProcessingPolicy:
    max_retries: int = 3
    min_retry_interval_ms: int = 30_000
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)

    @classmethod
    def from_settings(cls, settings) -> "ProcessingPolicy":
        post_commit = settings.post_commit
        return cls(
            max_retries=settings.processing.max_retries,
            min_retry_interval_ms=settings.processing.min_retry_interval_ms,
            backoff=BackoffPolicy(
                base_delay_ms=post_commit.base_backoff_seconds * 1000,
                max_delay_ms=post_commit.max_backoff_seconds * 1000,
                max_attempts=post_commit.max_attempts,
                alert_threshold=post_commit.alert_threshold,
            ),
        )


@dataclass
class WebhookOutcome:
    handled: bool
    message: str
    visit_id: Optional[str] = None


def failure_patch(message: str, now: int) -> Dict[str, Any]:
    return {
        "processing_status": ProcessingStatus.FAILED.value,
        "status": VisitStatus.FAILED.value,
        "processing_error": message,
        "updated_at": now,
    }


def ledger_reset_patch() -> Dict[str, Any]:
    """Fields removed when a visit is reprocessed from scratch."""
    return {
        "post_commit_status": FIELD_DELETE,
        "post_commit_completed_operations": FIELD_DELETE,
        "post_commit_failed_operations": FIELD_DELETE,
        "post_commit_operation_attempts": FIELD_DELETE,
        "post_commit_operation_next_retry_at": FIELD_DELETE,
        "post_commit_retry_eligible": FIELD_DELETE,
        "post_commit_last_attempt_at": FIELD_DELETE,
        "post_commit_completed_at": FIELD_DELETE,
        "post_commit_escalated_at": FIELD_DELETE,
    }


class VisitProcessingOrchestrator:
    """Runs the visit state machine against injected collaborators."""

    def __init__(
        self,
        visit_repository: VisitRepository,
        collaborators: VisitCollaborators,
        policy: Optional[ProcessingPolicy] = None,
        clock: Callable[[], int] = now_millis,
    ) -> None:
        self._visits = visit_repository
        self._collaborators = collaborators
        self.policy = policy or ProcessingPolicy()
        self._clock = clock
        self._operation_handlers: Dict[
            PostCommitOperation,
            Callable[[VisitRecord, VisitSummary, VisitCollaborators], Awaitable[None]],
        ] = {
            PostCommitOperation.SYNC_MEDICATIONS: self._sync_medications,
            PostCommitOperation.DELETE_SOURCE_TRANSCRIPT: self._delete_source_transcript,
            PostCommitOperation.ANALYZE_NUDGES: self._analyze_nudges,
            PostCommitOperation.PUSH_NOTIFICATION: self._push_notification,
            PostCommitOperation.SEND_CAREGIVER_EMAIL: self._send_caregiver_email,
        }

    @property
    def visits(self) -> VisitRepository:
        return self._visits

    @property
    def collaborators(self) -> VisitCollaborators:
        return self._collaborators

    def now(self) -> int:
        return self._clock()

    def _resolve(self, collaborators: Optional[VisitCollaborators]) -> VisitCollaborators:
        return collaborators or self._collaborators

    async def get_visit(self, visit_id: str) -> VisitRecord:
        visit = await self._visits.get(visit_id)
        if visit is None:
            raise VisitNotFoundError(visit_id)
        return visit

    # ------------------------------------------------------------------
    # Intake and transcription
    # ------------------------------------------------------------------

    async def create_visit(self, owner_id: str, visit_id: Optional[str] = None) -> VisitRecord:
        now = self.now()
        visit = VisitRecord(
            visit_id=visit_id or f"visit_{uuid.uuid4().hex}",
            owner_id=owner_id,
            processing_status=ProcessingStatus.RECORDING,
            status=VisitStatus.RECORDING.value,
            created_at=now,
            updated_at=now,
        )
        return await self._visits.create(visit)

    async def mark_upload_complete(
        self,
        visit_id: str,
        audio_ref: str,
        collaborators: Optional[VisitCollaborators] = None,
    ) -> VisitRecord:
        """Recording (or a re-upload after failure) finished: move to pending and submit."""
        visit = await self.get_visit(visit_id)
        now = self.now()
        applied = await self._visits.update_fields(
            visit_id,
            {
                "audio_ref": audio_ref,
                "processing_status": ProcessingStatus.PENDING.value,
                "status": VisitStatus.PROCESSING.value,
                "processing_error": FIELD_DELETE,
                "updated_at": now,
            },
            expected_status=(ProcessingStatus.RECORDING, ProcessingStatus.FAILED),
        )
        if not applied:
            logger.info(
                "[Orchestrator] Upload event ignored for visit=%s (processing_status=%s)",
                visit_id,
                visit.processing_status.value,
            )
            return await self.get_visit(visit_id)

        await self.submit_transcription(visit_id, collaborators)
        return await self.get_visit(visit_id)

    async def submit_transcription(
        self, visit_id: str, collaborators: Optional[VisitCollaborators] = None
    ) -> Optional[str]:
        """Submit a pending visit's audio. Returns the transcription id, or None on failure."""
        c = self._resolve(collaborators)
        visit = await self.get_visit(visit_id)

        if visit.transcription_id and visit.processing_status in (
            ProcessingStatus.TRANSCRIBING,
            ProcessingStatus.SUMMARIZING,
            ProcessingStatus.COMPLETED,
        ):
            logger.info(
                "[Orchestrator] Visit %s already submitted (transcription_id=%s, status=%s), skipping",
                visit_id,
                visit.transcription_id,
                visit.processing_status.value,
            )
            return visit.transcription_id

        if visit.processing_status != ProcessingStatus.PENDING:
            raise InvalidVisitStateError(
                visit_id, visit.processing_status.value, ProcessingStatus.PENDING.value
            )
        if not visit.audio_ref:
            raise MissingAudioError(visit_id)

        try:
            transcription_id = await c.transcription.submit(visit.audio_ref)
        except Exception as exc:
            logger.error(
                "[Orchestrator] Transcription submit failed for visit=%s: %s",
                visit_id,
                exc,
                exc_info=True,
            )
            await self._visits.update_fields(
                visit_id,
                failure_patch(f"Transcription submission failed: {exc}", self.now()),
                expected_status=ProcessingStatus.PENDING,
            )
            return None

        now = self.now()
        applied = await self._visits.update_fields(
            visit_id,
            {
                "transcription_id": transcription_id,
                "transcription_submitted_at": now,
                "transcription_status": TranscriptionStatus.SUBMITTED.value,
                "processing_status": ProcessingStatus.TRANSCRIBING.value,
                "status": VisitStatus.PROCESSING.value,
                "processing_error": FIELD_DELETE,
                "updated_at": now,
            },
            expected_status=ProcessingStatus.PENDING,
        )
        if not applied:
            logger.warning(
                "[Orchestrator] Visit %s left pending before transcription %s was recorded",
                visit_id,
                transcription_id,
            )
            return None

        logger.info(
            "[Orchestrator] Visit %s submitted for transcription (transcription_id=%s)",
            visit_id,
            transcription_id,
        )
        return transcription_id

    async def handle_transcription_webhook(
        self,
        transcription_id: str,
        status: str,
        text: Optional[str] = None,
        error: Optional[str] = None,
        collaborators: Optional[VisitCollaborators] = None,
    ) -> WebhookOutcome:
        c = self._resolve(collaborators)
        visit = await self._visits.find_by_transcription_id(
            transcription_id, ProcessingStatus.TRANSCRIBING
        )
        if visit is None:
            logger.info(
                "[Webhook] No transcribing visit for transcription_id=%s", transcription_id
            )
            return WebhookOutcome(handled=False, message="Already processed or not found")

        formatted = text or ""
        raw_text = text or ""
        if status == "completed" and not raw_text.strip():
            upstream = await c.transcription.fetch_status(transcription_id)
            raw_text = upstream.text
            formatted = upstream.formatted or upstream.text

        patch = build_webhook_visit_update(
            status=status,
            now=self.now(),
            field_delete=FIELD_DELETE,
            formatted_transcript=formatted,
            transcript_text=raw_text,
            error=error,
        )
        applied = await self._visits.update_fields(
            visit.visit_id, patch, expected_status=ProcessingStatus.TRANSCRIBING
        )
        if not applied:
            return WebhookOutcome(
                handled=False, message="Already processed or not found", visit_id=visit.visit_id
            )

        if status != "completed":
            logger.warning(
                "[Webhook] Transcription failed for visit=%s: %s", visit.visit_id, patch["processing_error"]
            )
            return WebhookOutcome(handled=True, message="Transcription failed", visit_id=visit.visit_id)

        logger.info("[Webhook] Transcript received for visit=%s, summarizing", visit.visit_id)
        await self.summarize_visit(visit.visit_id, collaborators)
        return WebhookOutcome(handled=True, message="Visit processed", visit_id=visit.visit_id)

    # ------------------------------------------------------------------
    # Summarization and core commit
    # ------------------------------------------------------------------

    async def summarize_visit(
        self, visit_id: str, collaborators: Optional[VisitCollaborators] = None
    ) -> VisitRecord:
        c = self._resolve(collaborators)
        visit = await self.get_visit(visit_id)
        if visit.processing_status != ProcessingStatus.SUMMARIZING:
            raise InvalidVisitStateError(
                visit_id, visit.processing_status.value, ProcessingStatus.SUMMARIZING.value
            )

        transcript_text = visit.transcript_for_summary()
        if not transcript_text:
            await self._visits.update_fields(
                visit_id,
                failure_patch("No transcript available to summarize", self.now()),
                expected_status=ProcessingStatus.SUMMARIZING,
            )
            return await self.get_visit(visit_id)

        started_at = self.now()
        claimed = await self._visits.update_fields(
            visit_id,
            {"summarization_started_at": started_at, "updated_at": started_at},
            expected_status=ProcessingStatus.SUMMARIZING,
        )
        if not claimed:
            return await self.get_visit(visit_id)

        try:
            summary = await c.summarizer.summarize(transcript_text)
        except Exception as exc:
            logger.error(
                "[Orchestrator] Summarization failed for visit=%s: %s", visit_id, exc, exc_info=True
            )
            await self._visits.update_fields(
                visit_id,
                failure_patch(f"Summarization failed: {exc}", self.now()),
                expected_status=ProcessingStatus.SUMMARIZING,
            )
            return await self.get_visit(visit_id)

        try:
            await self._commit_summary(visit, summary, c)
        except ConcurrentVisitUpdateError:
            logger.info(
                "[Orchestrator] Visit %s was committed by another handler, skipping post-commit",
                visit_id,
            )
            return await self.get_visit(visit_id)

        committed = await self.get_visit(visit_id)
        await self.run_post_commit(committed, summary, collaborators=c)
        return await self.get_visit(visit_id)

    async def _commit_summary(
        self, visit: VisitRecord, summary: VisitSummary, c: VisitCollaborators
    ) -> None:
        """Summary, canonical fields and action items in one atomic write."""
        now = self.now()
        batch = self._visits.new_batch()
        batch.update_visit(
            visit.visit_id,
            {
                "summary": summary.summary,
                "diagnoses": list(summary.diagnoses),
                "medications": summary.medications.to_dict(),
                "medication_review": summary.medication_review.to_dict(),
                "next_steps": list(summary.next_steps),
                "education": dict(summary.education),
                "processing_status": ProcessingStatus.COMPLETED.value,
                "status": VisitStatus.COMPLETED.value,
                "processing_error": FIELD_DELETE,
                "processed_at": now,
                "updated_at": now,
            },
            expected_status=ProcessingStatus.SUMMARIZING,
        )
        payloads = [
            {
                "owner_id": visit.owner_id,
                "visit_id": visit.visit_id,
                "description": step,
                "source": "visit",
                "completed": False,
                "created_at": now,
            }
            for step in summary.next_steps
        ]
        await c.action_sync.replace_for_visit(batch, visit.visit_id, payloads)
        await self._visits.commit(batch)
        logger.info(
            "[Orchestrator] Committed visit=%s diagnoses=%d next_steps=%d",
            visit.visit_id,
            len(summary.diagnoses),
            len(summary.next_steps),
        )

    # ------------------------------------------------------------------
    # Post-commit phase
    # ------------------------------------------------------------------

    async def run_post_commit(
        self,
        visit: VisitRecord,
        summary: VisitSummary,
        collaborators: Optional[VisitCollaborators] = None,
        operations: Optional[Sequence[Any]] = None,
    ) -> PostCommitLedger:
        """Run side effects and persist the ledger. Never raises for an operation failure."""
        c = self._resolve(collaborators)
        ledger = visit.ledger
        selected: List[PostCommitOperation] = (
            list(POST_COMMIT_OPERATIONS)
            if operations is None
            else [PostCommitOperation(op) for op in operations]
        )

        for op in selected:
            if op.value in ledger.completed_operations:
                ledger.failed_operations.discard(op.value)
                continue

            attempt = ledger.record_attempt(op)
            try:
                await self._operation_handlers[op](visit, summary, c)
            except Exception as exc:
                now = self.now()
                escalate = ledger.record_failure(op, now, self.policy.backoff)
                logger.warning(
                    "[PostCommit] visit=%s operation=%s attempt=%d failed: %s",
                    visit.visit_id,
                    op.value,
                    attempt,
                    exc,
                    exc_info=True,
                )
                if escalate:
                    logger.error(
                        "[PostCommit][ALERT] Repeated failure visit=%s operation=%s attempts=%d",
                        visit.visit_id,
                        op.value,
                        attempt,
                    )
            else:
                ledger.record_success(op)

        status = ledger.finalize(self.now(), self.policy.backoff.max_attempts)
        await self._persist_ledger(visit, ledger)

        logger.info(
            "[PostCommit] visit=%s status=%s failed=%s",
            visit.visit_id,
            status.value,
            sorted(ledger.failed_operations),
        )
        return ledger

    async def retry_post_commit(
        self, visit: VisitRecord, collaborators: Optional[VisitCollaborators] = None
    ) -> Optional[PostCommitLedger]:
        """Re-run only the failed operations whose backoff elapsed. None when nothing is due."""
        due = visit.ledger.operations_due(self.now(), self.policy.backoff.max_attempts)
        if not due:
            return None
        return await self.run_post_commit(
            visit, visit.stored_summary(), collaborators=collaborators, operations=due
        )

    async def settle_post_commit(self, visit: VisitRecord) -> Optional[PostCommitLedger]:
        """
        Re-finalize a ledger that has nothing left to run.

        A partial-failure ledger whose failed operations were all completed
        elsewhere becomes completed; one whose remaining failures are out of
        attempts stops being retry-eligible. Returns None while any failed
        operation is still waiting on its backoff.
        """
        ledger = visit.ledger
        max_attempts = self.policy.backoff.max_attempts
        if any(ledger.operation_attempts.get(name, 1) < max_attempts for name in ledger.failed_operations):
            return None

        status = ledger.finalize(self.now(), max_attempts)
        await self._persist_ledger(visit, ledger)
        logger.info(
            "[PostCommit] Settled visit=%s status=%s failed=%s",
            visit.visit_id,
            status.value,
            sorted(ledger.failed_operations),
        )
        return ledger

    async def _persist_ledger(self, visit: VisitRecord, ledger: PostCommitLedger) -> None:
        try:
            persisted = await self._visits.update_fields(
                visit.visit_id, ledger.to_patch(), expected_status=ProcessingStatus.COMPLETED
            )
        except Exception as exc:
            logger.error(
                "[PostCommit] Could not persist ledger for visit=%s: %s",
                visit.visit_id,
                exc,
                exc_info=True,
            )
            return
        if persisted:
            ledger.mark_persisted()
        else:
            logger.warning(
                "[PostCommit] Visit %s is no longer completed; ledger not written", visit.visit_id
            )

    async def _sync_medications(
        self, visit: VisitRecord, summary: VisitSummary, c: VisitCollaborators
    ) -> None:
        promotion = await promote_continued_medications(
            visit.owner_id,
            summary.medications,
            summary.medication_review.continued,
            c.medication_lookup,
        )
        if promotion.medications.is_empty():
            return
        await c.medication_sync.sync_medications_from_summary(
            visit.owner_id, visit.visit_id, promotion.medications
        )

    async def _delete_source_transcript(
        self, visit: VisitRecord, summary: VisitSummary, c: VisitCollaborators
    ) -> None:
        if not visit.transcription_id:
            return
        await c.transcript_cleanup.delete_transcript(visit.transcription_id)
        # The provider copy is gone; keep only when it was removed.
        await self._visits.update_fields(
            visit.visit_id,
            {"transcription_id": FIELD_DELETE, "transcription_deleted_at": self.now()},
            expected_status=ProcessingStatus.COMPLETED,
        )

    async def _analyze_nudges(
        self, visit: VisitRecord, summary: VisitSummary, c: VisitCollaborators
    ) -> None:
        result = await c.nudge_analyzer.analyze_visit_with_delta(
            visit.owner_id, visit.visit_id, summary
        )
        logger.info(
            "[PostCommit] visit=%s nudges_created=%s reasoning=%s",
            visit.visit_id,
            result.get("nudges_created", 0),
            result.get("reasoning", ""),
        )

    async def _push_notification(
        self, visit: VisitRecord, summary: VisitSummary, c: VisitCollaborators
    ) -> None:
        await c.push_notifier.notify_visit_ready(visit.owner_id, visit.visit_id)

    async def _send_caregiver_email(
        self, visit: VisitRecord, summary: VisitSummary, c: VisitCollaborators
    ) -> None:
        if not await self._auto_share_enabled(visit.owner_id, c):
            logger.info("[PostCommit] Auto-share disabled for owner=%s, skipping caregivers", visit.owner_id)
            return

        result = await c.caregiver_notifier.send_visit_summary_to_all_caregivers(
            visit.owner_id, visit.visit_id
        )
        sent = int(result.get("sent", 0))
        failed = int(result.get("failed", 0))
        if failed > 0 and sent == 0:
            raise NotificationError("Caregiver email", f"all {failed} caregiver emails failed")
        logger.info(
            "[PostCommit] Caregiver summary for visit=%s sent=%d failed=%d", visit.visit_id, sent, failed
        )

    async def _auto_share_enabled(self, owner_id: str, c: VisitCollaborators) -> bool:
        try:
            enabled = await c.user_profiles.get_auto_share_enabled(owner_id)
        except Exception as exc:
            logger.warning(
                "[PostCommit] Could not read profile for owner=%s, defaulting auto-share on: %s",
                owner_id,
                exc,
            )
            return True
        return enabled if isinstance(enabled, bool) else True
