import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Dict, Optional

from visitflow.application.use_cases.process_visit import (
    VisitProcessingOrchestrator,
    failure_patch,
)
from visitflow.core.config import get_settings
from visitflow.core.utils.datetime_utils import MILLIS_PER_MINUTE
from visitflow.domain.entities.visit import VisitRecord
from visitflow.domain.enums.processing import (
    PostCommitStatus,
    ProcessingStatus,
    RetryPath,
    SummarizingRecoveryMode,
    TranscribingRecoveryMode,
)
from visitflow.domain.field_ops import FIELD_DELETE, Increment
from visitflow.domain.transitions import (
    build_webhook_visit_update,
    calculate_retry_wait_seconds,
    resolve_retry_path,
    resolve_summarizing_recovery_mode,
    resolve_transcribing_recovery_mode,
)

logger = logging.getLogger("visitflow")


@dataclass
class SweepStats:
    transcribing_scanned: int = 0
    transcribing_recovered: int = 0
    summarizing_scanned: int = 0
    summarizing_recovered: int = 0
    visits_scanned: int = 0
    visits_retried: int = 0
    visits_resolved: int = 0
    visits_still_failing: int = 0
    operation_attempts: int = 0
    operation_failures: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class RecoverySweeper:
    """Finds stuck or partially failed visits and resumes them."""

    def __init__(
        self,
        orchestrator: VisitProcessingOrchestrator,
        transcribing_timeout_ms: int = 30 * MILLIS_PER_MINUTE,
        summarizing_timeout_ms: int = 15 * MILLIS_PER_MINUTE,
        stuck_batch_limit: int = 10,
        post_commit_limit: int = 25,
    ) -> None:
        self._orchestrator = orchestrator
        self._visits = orchestrator.visits
        self._transcribing_timeout_ms = transcribing_timeout_ms
        self._summarizing_timeout_ms = summarizing_timeout_ms
        self._stuck_batch_limit = stuck_batch_limit
        self._post_commit_limit = post_commit_limit

    @classmethod
    def from_settings(cls, orchestrator: VisitProcessingOrchestrator, settings) -> "RecoverySweeper":
        return cls(
            orchestrator,
            transcribing_timeout_ms=settings.processing.transcribing_timeout_minutes * MILLIS_PER_MINUTE,
            summarizing_timeout_ms=settings.processing.summarizing_timeout_minutes * MILLIS_PER_MINUTE,
            stuck_batch_limit=settings.sweeper.batch_limit,
            post_commit_limit=settings.post_commit.recovery_limit,
        )

    @property
    def _max_retries(self) -> int:
        return self._orchestrator.policy.max_retries

    def _throttle_wait(self, visit: VisitRecord, now: int) -> int:
        return calculate_retry_wait_seconds(
            now, visit.last_retry_at, self._orchestrator.policy.min_retry_interval_ms
        )

    async def sweep_once(self, post_commit_limit: Optional[int] = None) -> SweepStats:
        stats = SweepStats()
        now = self._orchestrator.now()

        stale_transcribing = await self._visits.find_stale(
            ProcessingStatus.TRANSCRIBING, now - self._transcribing_timeout_ms, self._stuck_batch_limit
        )
        for visit in stale_transcribing:
            stats.transcribing_scanned += 1
            recovered = False
            try:
                recovered = await self.recover_transcribing_visit(visit)
            except Exception as e:
                logger.error(
                    "[RecoverySweeper] Transcribing recovery failed for visit=%s: %s",
                    visit.visit_id,
                    e,
                    exc_info=True,
                )
            if recovered:
                stats.transcribing_recovered += 1
            else:
                await self._mark_swept(visit, now, ProcessingStatus.TRANSCRIBING)

        stale_summarizing = await self._visits.find_stale(
            ProcessingStatus.SUMMARIZING, now - self._summarizing_timeout_ms, self._stuck_batch_limit
        )
        for visit in stale_summarizing:
            stats.summarizing_scanned += 1
            recovered = False
            try:
                recovered = await self.recover_summarizing_visit(visit)
            except Exception as e:
                logger.error(
                    "[RecoverySweeper] Summarizing recovery failed for visit=%s: %s",
                    visit.visit_id,
                    e,
                    exc_info=True,
                )
            if recovered:
                stats.summarizing_recovered += 1
            else:
                await self._mark_swept(visit, now, ProcessingStatus.SUMMARIZING)

        await self.recover_post_commit(stats, post_commit_limit)

        logger.info("[RecoverySweeper] Sweep finished %s", stats.to_dict())
        return stats

    async def recover_transcribing_visit(self, visit: VisitRecord) -> bool:
        """Apply one recovery decision to a stale transcribing visit. True if it changed."""
        now = self._orchestrator.now()
        upstream = None

        if visit.transcription_id and visit.retry_count < self._max_retries:
            try:
                upstream = await self._orchestrator.collaborators.transcription.fetch_status(
                    visit.transcription_id
                )
            except Exception as e:
                logger.error(
                    "[RecoverySweeper] Status check failed for visit=%s transcription_id=%s: %s",
                    visit.visit_id,
                    visit.transcription_id,
                    e,
                )
                if self._throttle_wait(visit, now) > 0:
                    return False
                return await self._reset_to_pending(
                    visit, now, "Transcription status check failed, retrying", ProcessingStatus.TRANSCRIBING
                )

        mode = resolve_transcribing_recovery_mode(
            visit.retry_count,
            self._max_retries,
            bool(visit.transcription_id),
            upstream.status if upstream else None,
        )
        logger.info(
            "[RecoverySweeper] Stuck transcribing visit=%s retry_count=%d mode=%s",
            visit.visit_id,
            visit.retry_count,
            mode.value,
        )

        if mode == TranscribingRecoveryMode.SKIP:
            return False

        if mode == TranscribingRecoveryMode.FAIL_MAX_RETRIES:
            return await self._visits.update_fields(
                visit.visit_id,
                failure_patch(f"Transcription failed after {self._max_retries} attempts", now),
                expected_status=ProcessingStatus.TRANSCRIBING,
            )

        if mode == TranscribingRecoveryMode.MARK_FAILED:
            patch = build_webhook_visit_update(
                status="error", now=now, field_delete=FIELD_DELETE, error=upstream.error
            )
            return await self._visits.update_fields(
                visit.visit_id, patch, expected_status=ProcessingStatus.TRANSCRIBING
            )

        if mode == TranscribingRecoveryMode.RESUME_SUMMARIZING:
            patch = build_webhook_visit_update(
                status="completed",
                now=now,
                field_delete=FIELD_DELETE,
                formatted_transcript=upstream.formatted,
                transcript_text=upstream.text,
            )
            applied = await self._visits.update_fields(
                visit.visit_id, patch, expected_status=ProcessingStatus.TRANSCRIBING
            )
            if applied:
                await self._orchestrator.summarize_visit(visit.visit_id)
            return applied

        # RETRY_PENDING
        if self._throttle_wait(visit, now) > 0:
            return False
        return await self._reset_to_pending(
            visit, now, "Transcription timed out, retrying", ProcessingStatus.TRANSCRIBING
        )

    async def recover_summarizing_visit(self, visit: VisitRecord) -> bool:
        now = self._orchestrator.now()
        mode = resolve_summarizing_recovery_mode(visit.retry_count, self._max_retries)
        logger.info(
            "[RecoverySweeper] Stuck summarizing visit=%s retry_count=%d mode=%s",
            visit.visit_id,
            visit.retry_count,
            mode.value,
        )

        if mode == SummarizingRecoveryMode.FAIL_MAX_RETRIES:
            return await self._visits.update_fields(
                visit.visit_id,
                failure_patch(f"Summarization failed after {self._max_retries} attempts", now),
                expected_status=ProcessingStatus.SUMMARIZING,
            )

        if self._throttle_wait(visit, now) > 0:
            return False

        if resolve_retry_path(visit) == RetryPath.RETRANSCRIBE:
            return await self._reset_to_pending(
                visit, now, "Summarization timed out, retrying", ProcessingStatus.SUMMARIZING
            )

        applied = await self._visits.update_fields(
            visit.visit_id,
            {
                "retry_count": Increment(1),
                "last_retry_at": now,
                "summarization_started_at": FIELD_DELETE,
                "processing_error": "Summarization timed out, retrying",
                "updated_at": now,
            },
            expected_status=ProcessingStatus.SUMMARIZING,
        )
        if applied:
            await self._orchestrator.summarize_visit(visit.visit_id)
        return applied

    async def _reset_to_pending(
        self, visit: VisitRecord, now: int, reason: str, expected: ProcessingStatus
    ) -> bool:
        if not visit.audio_ref:
            return await self._visits.update_fields(
                visit.visit_id,
                failure_patch("Visit has no audio to reprocess", now),
                expected_status=expected,
            )

        applied = await self._visits.update_fields(
            visit.visit_id,
            {
                "processing_status": ProcessingStatus.PENDING.value,
                "transcription_id": FIELD_DELETE,
                "transcription_status": FIELD_DELETE,
                "retry_count": Increment(1),
                "last_retry_at": now,
                "processing_error": reason,
                "updated_at": now,
            },
            expected_status=expected,
        )
        if applied:
            await self._orchestrator.submit_transcription(visit.visit_id)
        return applied

    async def recover_post_commit(self, stats: SweepStats, limit: Optional[int] = None) -> SweepStats:
        limit = max(1, min(100, limit or self._post_commit_limit))
        visits = await self._visits.find_post_commit_retryable(limit)

        for visit in visits:
            stats.visits_scanned += 1
            due = visit.ledger.operations_due(
                self._orchestrator.now(), self._orchestrator.policy.backoff.max_attempts
            )
            if not due:
                await self._settle_post_commit(visit, stats)
                continue

            stats.visits_retried += 1
            stats.operation_attempts += len(due)
            try:
                ledger = await self._orchestrator.retry_post_commit(visit)
            except Exception as e:
                stats.visits_still_failing += 1
                logger.error(
                    "[RecoverySweeper] Post-commit retry crashed for visit=%s: %s",
                    visit.visit_id,
                    e,
                    exc_info=True,
                )
                continue

            if ledger is None:
                continue
            stats.operation_failures += sum(1 for op in due if op in ledger.failed_operations)
            if ledger.status == PostCommitStatus.COMPLETED:
                stats.visits_resolved += 1
            else:
                stats.visits_still_failing += 1

        return stats

    async def _settle_post_commit(self, visit: VisitRecord, stats: SweepStats) -> None:
        try:
            ledger = await self._orchestrator.settle_post_commit(visit)
        except Exception as e:
            logger.error(
                "[RecoverySweeper] Post-commit settle failed for visit=%s: %s",
                visit.visit_id,
                e,
                exc_info=True,
            )
            return
        if ledger is None:
            return
        if ledger.status == PostCommitStatus.COMPLETED:
            stats.visits_resolved += 1
        else:
            stats.visits_still_failing += 1

    async def _mark_swept(self, visit: VisitRecord, now: int, expected: ProcessingStatus) -> None:
        """Stamp a visit the sweep left alone so the next batch starts past it."""
        try:
            await self._visits.update_fields(
                visit.visit_id, {"last_swept_at": now}, expected_status=expected
            )
        except Exception as e:
            logger.warning(
                "[RecoverySweeper] Could not mark visit=%s as swept: %s", visit.visit_id, e
            )


async def run_recovery_sweeper_forever(sweeper: Optional[RecoverySweeper] = None) -> None:
    """
    Run the recovery sweeper in a loop, controlled by environment settings.
    """
    settings = get_settings()
    if not settings.sweeper.enabled:
        logger.info("[RecoverySweeper] Disabled via RECOVERY_SWEEPER_ENABLED")
        return

    if sweeper is None:
        from visitflow.core.container import ServiceNames, get_service

        sweeper = get_service(ServiceNames.RECOVERY_SWEEPER)

    interval = max(30, settings.sweeper.interval_seconds)
    logger.info(
        "[RecoverySweeper] Starting (interval=%ss, transcribing_timeout=%smin, summarizing_timeout=%smin)",
        interval,
        settings.processing.transcribing_timeout_minutes,
        settings.processing.summarizing_timeout_minutes,
    )

    while True:
        try:
            await sweeper.sweep_once()
        except Exception as e:
            logger.error("[RecoverySweeper] Sweep iteration failed: %s", e, exc_info=True)
        await asyncio.sleep(interval)
