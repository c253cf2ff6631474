"""
Health check endpoints.
"""

from datetime import datetime

from fastapi import APIRouter, Request
from pydantic import BaseModel

from ...adapters.db.mongo.connection import create_motor_client
from ...core.config import get_settings
from ..schemas.common import ApiResponse
from ..utils.responses import ok

router = APIRouter(prefix="/health", tags=["health"])


class HealthResponse(BaseModel):
    """Health check response schema."""

    status: str
    timestamp: datetime
    version: str
    service: str


async def ping_database() -> None:
    """Raise if MongoDB does not answer a ping."""
    settings = get_settings()
    client = create_motor_client(settings.database)
    try:
        await client.admin.command("ping")
    finally:
        client.close()


@router.get("", response_model=ApiResponse[HealthResponse])
async def health_check(request: Request):
    """
    Health check endpoint.

    Returns the current status of the service.
    """
    settings = get_settings()
    return ok(request, data=HealthResponse(
        status="healthy",
        timestamp=datetime.utcnow(),
        version=settings.app_version,
        service=settings.app_name,
    ), message="OK")


@router.get("/ready", response_model=ApiResponse[dict])
async def readiness_check(request: Request):
    """
    Readiness check endpoint.

    Reports database connectivity and whether the external providers are configured.
    """
    settings = get_settings()
    checks = {}
    all_ok = True

    try:
        await ping_database()
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {str(e)[:50]}"
        all_ok = False

    checks["transcription"] = "configured" if settings.transcription.api_key else "not_configured"
    if settings.azure_openai.is_configured:
        checks["summarization"] = "azure_openai"
    elif settings.openai.api_key:
        checks["summarization"] = "openai"
    else:
        checks["summarization"] = "not_configured"
    checks["recovery_sweeper"] = "enabled" if settings.sweeper.enabled else "disabled"

    status = "ready" if all_ok else "degraded"
    return ok(request, data={
        "status": status,
        "timestamp": datetime.utcnow(),
        "checks": checks,
    }, message="OK" if all_ok else "Some services unavailable")


@router.get("/live", response_model=ApiResponse[dict])
async def liveness_check(request: Request):
    """
    Liveness check endpoint.

    Returns whether the service is alive.
    """
    return ok(request, data={"status": "alive", "timestamp": datetime.utcnow()}, message="OK")
