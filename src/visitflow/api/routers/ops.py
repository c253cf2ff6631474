"""
Operator endpoints: post-commit escalations, recovery runs and reminder sends.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Query, Request

from ..deps import EscalationServiceDep, RecoverySweeperDep, ReminderDispatcherDep
from ..schemas.common import ApiResponse, ErrorResponse
from ..schemas.visits import EscalationActionRequest
from ..utils.responses import ok

router = APIRouter(prefix="/ops", tags=["ops"])
logger = logging.getLogger("visitflow")


@router.get("/post-commit-escalations", response_model=ApiResponse[dict])
async def list_post_commit_escalations(
    request: Request,
    escalations: EscalationServiceDep,
    limit: int = Query(50, ge=1, le=100),
    include_acknowledged: bool = Query(True),
):
    """Completed visits whose side effects keep failing past the alert threshold."""
    entries = await escalations.list_escalations(limit=limit, include_acknowledged=include_acknowledged)
    return ok(request, data={"count": len(entries), "visits": entries}, message="OK")


@router.post(
    "/post-commit-escalations/{visit_id}/acknowledge",
    response_model=ApiResponse[dict],
    responses={
        404: {"model": ErrorResponse, "description": "Visit not found"},
        409: {"model": ErrorResponse, "description": "Visit is not escalated"},
    },
)
async def acknowledge_escalation(
    request: Request,
    visit_id: str,
    body: EscalationActionRequest,
    escalations: EscalationServiceDep,
):
    entry = await escalations.acknowledge(visit_id, body.operator_id, body.note)
    return ok(request, data=entry, message="Escalation acknowledged")


@router.post(
    "/post-commit-escalations/{visit_id}/resolve",
    response_model=ApiResponse[dict],
    responses={
        404: {"model": ErrorResponse, "description": "Visit not found"},
        409: {"model": ErrorResponse, "description": "Visit is not escalated"},
    },
)
async def resolve_escalation(
    request: Request,
    visit_id: str,
    body: EscalationActionRequest,
    escalations: EscalationServiceDep,
):
    result = await escalations.resolve(visit_id, body.operator_id, body.note)
    return ok(request, data=result, message="Escalation resolved")


@router.post("/post-commit-escalations/report", response_model=ApiResponse[dict])
async def report_escalations(
    request: Request,
    escalations: EscalationServiceDep,
    limit: int = Query(50, ge=1, le=100),
):
    """Summarize open escalations and forward them to the incident webhook."""
    summary = await escalations.report(limit=limit)
    return ok(request, data=summary, message="OK")


@router.post("/recovery/run", response_model=ApiResponse[dict])
async def run_recovery(
    request: Request,
    sweeper: RecoverySweeperDep,
    limit: Optional[int] = Query(None, ge=1, le=100),
):
    """Run one recovery sweep now instead of waiting for the scheduler."""
    stats = await sweeper.sweep_once(post_commit_limit=limit)
    logger.info(f"[RecoverySweeper] Manual run finished: {stats.to_dict()}")
    return ok(request, data=stats.to_dict(), message="Recovery sweep completed")


@router.post("/reminders/{reminder_id}/send", response_model=ApiResponse[dict])
async def send_reminder(request: Request, reminder_id: str, dispatcher: ReminderDispatcherDep):
    """Send one medication reminder unless another worker holds its lease."""
    sent = await dispatcher.dispatch(reminder_id)
    return ok(
        request,
        data={"reminder_id": reminder_id, "sent": sent},
        message="Reminder sent" if sent else "Reminder skipped",
    )
