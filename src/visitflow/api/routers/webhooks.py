"""Inbound provider callbacks."""

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Header, Request

from ...adapters.external.transcription_service_assemblyai import WEBHOOK_SECRET_HEADER
from ..deps import OrchestratorDep, SettingsDep
from ..errors import UnauthorizedError
from ..schemas.common import ApiResponse, ErrorResponse
from ..schemas.visits import TranscriptionWebhookPayload, WebhookAck
from ..utils.responses import ok

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = logging.getLogger("visitflow")


@router.post(
    "/transcription",
    response_model=ApiResponse[WebhookAck],
    responses={401: {"model": ErrorResponse, "description": "Invalid webhook secret"}},
)
async def transcription_webhook(
    request: Request,
    payload: TranscriptionWebhookPayload,
    orchestrator: OrchestratorDep,
    settings: SettingsDep,
    webhook_secret: Optional[str] = Header(None, alias=WEBHOOK_SECRET_HEADER),
):
    """Apply a transcription result to the visit waiting on it."""
    expected = settings.webhook.secret
    if expected and not hmac.compare_digest(
        (webhook_secret or "").encode("utf-8"), expected.encode("utf-8")
    ):
        logger.warning("[Webhook] Invalid transcription webhook secret")
        raise UnauthorizedError("Invalid webhook secret")

    logger.info(
        f"[Webhook] Transcription callback transcript_id={payload.transcript_id} status={payload.status}"
    )
    outcome = await orchestrator.handle_transcription_webhook(
        payload.transcript_id, payload.status, text=payload.text, error=payload.error
    )
    return ok(
        request,
        data=WebhookAck(handled=outcome.handled, visit_id=outcome.visit_id),
        message=outcome.message,
    )
