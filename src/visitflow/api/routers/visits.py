"""Visit processing endpoints: upload completion, manual retry and status."""

import logging

from fastapi import APIRouter, BackgroundTasks, Request, status

from ...application.use_cases.process_visit import VisitProcessingOrchestrator
from ...domain.enums.processing import RetryPath
from ...domain.errors import DomainError
from ..deps import OrchestratorDep, RetryVisitDep
from ..schemas.common import ApiResponse, ErrorResponse
from ..schemas.visits import RetryResponse, UploadCompleteRequest, VisitView
from ..utils.responses import ok

router = APIRouter(prefix="/visits", tags=["visits"])
logger = logging.getLogger("visitflow")


async def _summarize_in_background(orchestrator: VisitProcessingOrchestrator, visit_id: str) -> None:
    try:
        await orchestrator.summarize_visit(visit_id)
    except DomainError as e:
        logger.warning(f"[ManualRetry] Background summarize skipped for visit={visit_id}: {e.message}")
    except Exception as e:
        logger.error(f"[ManualRetry] Background summarize failed for visit={visit_id}: {e}", exc_info=True)


@router.post(
    "/{visit_id}/upload-complete",
    response_model=ApiResponse[VisitView],
    status_code=status.HTTP_202_ACCEPTED,
    responses={
        404: {"model": ErrorResponse, "description": "Visit not found"},
        400: {"model": ErrorResponse, "description": "Visit cannot be submitted"},
    },
)
async def upload_complete(
    request: Request,
    visit_id: str,
    body: UploadCompleteRequest,
    orchestrator: OrchestratorDep,
):
    """Record the uploaded audio and submit it for transcription."""
    visit = await orchestrator.mark_upload_complete(visit_id, body.audio_ref)
    return ok(request, data=VisitView.from_visit(visit), message="Upload recorded")


@router.post(
    "/{visit_id}/retry",
    response_model=ApiResponse[RetryResponse],
    status_code=status.HTTP_202_ACCEPTED,
    responses={
        400: {"model": ErrorResponse, "description": "Visit has no audio to reprocess"},
        404: {"model": ErrorResponse, "description": "Visit not found"},
        409: {"model": ErrorResponse, "description": "Visit is still processing"},
        429: {"model": ErrorResponse, "description": "Retried too recently"},
    },
)
async def retry_visit(
    request: Request,
    visit_id: str,
    background_tasks: BackgroundTasks,
    retry_use_case: RetryVisitDep,
    orchestrator: OrchestratorDep,
):
    """
    Re-run processing for a failed or completed visit.

    A stored transcript is summarized again in the background; otherwise
    the audio is resubmitted for transcription.
    """
    result = await retry_use_case.execute(visit_id)
    if result.path == RetryPath.SUMMARIZE:
        background_tasks.add_task(_summarize_in_background, orchestrator, visit_id)

    return ok(request, data=RetryResponse(
        visit_id=visit_id,
        path=result.path.value,
        processing_status=result.visit.processing_status.value,
        retry_count=result.visit.retry_count,
    ), message="Visit processing restarted")


@router.get(
    "/{visit_id}",
    response_model=ApiResponse[VisitView],
    responses={404: {"model": ErrorResponse, "description": "Visit not found"}},
)
async def get_visit(request: Request, visit_id: str, orchestrator: OrchestratorDep):
    """Processing state, committed summary and post-commit ledger of a visit."""
    visit = await orchestrator.get_visit(visit_id)
    return ok(request, data=VisitView.from_visit(visit), message="OK")
