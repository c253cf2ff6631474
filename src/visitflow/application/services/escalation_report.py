"""
Operator view of post-commit failures that crossed the alert threshold.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from visitflow.application.ports.repositories.visit_repo import VisitRepository
from visitflow.application.ports.services.post_commit_services import IncidentReporter
from visitflow.core.utils.datetime_utils import isoformat_millis, now_millis
from visitflow.domain.entities.visit import VisitRecord
from visitflow.domain.enums.processing import PostCommitStatus
from visitflow.domain.errors import InvalidVisitStateError, VisitNotFoundError

logger = logging.getLogger("visitflow")


def escalation_entry(visit: VisitRecord) -> Dict[str, Any]:
    ledger = visit.ledger
    return {
        "visit_id": visit.visit_id,
        "owner_id": visit.owner_id,
        "failed_operations": sorted(ledger.failed_operations),
        "operation_attempts": dict(ledger.operation_attempts),
        "operation_next_retry_at": {
            op: isoformat_millis(at) for op, at in ledger.operation_next_retry_at.items()
        },
        "retry_eligible": ledger.retry_eligible,
        "escalated_at": isoformat_millis(ledger.escalated_at),
        "last_attempt_at": isoformat_millis(ledger.last_attempt_at),
        "acknowledged_at": isoformat_millis(visit.escalation_acknowledged_at),
        "acknowledged_by": visit.escalation_acknowledged_by,
        "note": visit.escalation_note,
    }


class EscalationReportService:
    def __init__(
        self,
        visit_repository: VisitRepository,
        incident_reporter: Optional[IncidentReporter] = None,
        clock: Callable[[], int] = now_millis,
    ) -> None:
        self._visits = visit_repository
        self._incident_reporter = incident_reporter
        self._clock = clock

    async def list_escalations(
        self, limit: int = 50, include_acknowledged: bool = True
    ) -> List[Dict[str, Any]]:
        visits = await self._visits.find_post_commit_escalated(
            max(1, min(limit, 100)), include_acknowledged=include_acknowledged
        )
        return [escalation_entry(visit) for visit in visits]

    async def _escalated_visit(self, visit_id: str) -> VisitRecord:
        visit = await self._visits.get(visit_id)
        if visit is None:
            raise VisitNotFoundError(visit_id)
        if (
            visit.ledger.status != PostCommitStatus.PARTIAL_FAILURE
            or visit.ledger.escalated_at is None
        ):
            raise InvalidVisitStateError(visit_id, visit.ledger.status.value, "escalated partial_failure")
        return visit

    async def acknowledge(self, visit_id: str, operator_id: str, note: Optional[str] = None) -> Dict[str, Any]:
        await self._escalated_visit(visit_id)
        patch: Dict[str, Any] = {
            "post_commit_escalation_acknowledged_at": self._clock(),
            "post_commit_escalation_acknowledged_by": operator_id,
        }
        if note:
            patch["post_commit_escalation_note"] = note
        await self._visits.update_fields(visit_id, patch)
        logger.info("[Escalations] visit=%s acknowledged by %s", visit_id, operator_id)
        return escalation_entry(await self._visits.get(visit_id))

    async def resolve(self, visit_id: str, operator_id: str, note: Optional[str] = None) -> Dict[str, Any]:
        await self._escalated_visit(visit_id)
        now = self._clock()
        patch: Dict[str, Any] = {
            "post_commit_escalation_resolved_at": now,
            "post_commit_escalation_resolved_by": operator_id,
        }
        if note:
            patch["post_commit_escalation_note"] = note
        await self._visits.update_fields(visit_id, patch)
        logger.info("[Escalations] visit=%s resolved by %s", visit_id, operator_id)
        return {"visit_id": visit_id, "resolved_at": isoformat_millis(now), "resolved_by": operator_id}

    async def report(self, limit: int = 50) -> Dict[str, Any]:
        """Summarize open escalations and forward them to the incident channel, if any."""
        entries = await self.list_escalations(limit=limit, include_acknowledged=False)
        summary: Dict[str, Any] = {
            "generated_at": isoformat_millis(self._clock()),
            "open_escalations": len(entries),
            "visits": entries,
            "dispatched": False,
        }
        if not entries or self._incident_reporter is None:
            return summary

        try:
            summary["dispatched"] = await self._incident_reporter.dispatch(summary)
        except Exception as exc:
            logger.error("[Escalations] Incident dispatch failed: %s", exc, exc_info=True)
        return summary
