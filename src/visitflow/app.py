"""
FastAPI application factory and main app configuration.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .adapters.db.mongo.connection import init_database
from .api.errors import APIError
from .api.routers import health, ops, visits, webhooks
from .api.utils.responses import fail
from .core.config import get_settings
from .core.exceptions import ExternalServiceError
from .core.structured_logger import configure_logging
from .domain.errors import (
    ConcurrentVisitUpdateError,
    DomainError,
    InvalidVisitStateError,
    RetryTooSoonError,
    VisitNotFoundError,
)
from .middleware.request_id_middleware import RequestIDMiddleware

logger = logging.getLogger("visitflow")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    settings = get_settings()
    configure_logging(settings.logging)
    logger.info(f"Starting {settings.app_name} v{settings.app_version} (env={settings.app_env}, debug={settings.debug})")

    try:
        client = await init_database(settings.database)
    except Exception as e:
        logger.error(f"Database connection failed: {type(e).__name__}: {e}", exc_info=True)
        raise
    logger.info("Database connection established")

    yield

    logger.info(f"Shutting down {settings.app_name}")
    client.close()


def _error_response(request: Request, status_code: int, error: str, message: str, details=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=fail(request, error, message, details).model_dump(),
    )


def _domain_status(exc: DomainError) -> int:
    if isinstance(exc, VisitNotFoundError):
        return 404
    if isinstance(exc, (InvalidVisitStateError, ConcurrentVisitUpdateError)):
        return 409
    if isinstance(exc, RetryTooSoonError):
        return 429
    # MissingAudioError and other rule violations
    return 400


def create_app(use_lifespan: bool = True) -> FastAPI:
    """Create and configure FastAPI application."""
    settings = get_settings()
    app = FastAPI(
        title="visitflow",
        description="Recorded visit transcription, summarization and post-commit side effects",
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan if use_lifespan else None,
    )

    allow_methods = list({m.upper() for m in settings.cors.allowed_methods} | {"OPTIONS"})
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors.allowed_origins,
        allow_credentials=False,
        allow_methods=allow_methods,
        allow_headers=["*"],
        max_age=600,
        expose_headers=["X-Request-ID", "X-Process-Time"],
    )
    # Register X-Request-ID middleware after CORS
    app.add_middleware(RequestIDMiddleware)

    app.include_router(health.router)
    app.include_router(visits.router)
    app.include_router(webhooks.router)
    app.include_router(ops.router)

    @app.get("/", tags=["health"])
    async def root():
        return {
            "service": settings.app_name,
            "version": settings.app_version,
            "environment": settings.app_env,
            "docs": "/docs",
        }

    @app.exception_handler(DomainError)
    async def domain_error_handler(request: Request, exc: DomainError):
        status_code = _domain_status(exc)
        logger.info(f"DomainError: {exc.error_code} ({status_code}) {exc.message}")
        response = _error_response(
            request, status_code, exc.error_code or "DOMAIN_ERROR", exc.message, exc.details
        )
        if isinstance(exc, RetryTooSoonError):
            response.headers["Retry-After"] = str(exc.wait_seconds)
        return response

    @app.exception_handler(ExternalServiceError)
    async def external_service_error_handler(request: Request, exc: ExternalServiceError):
        logger.error(f"ExternalServiceError: {exc.message}")
        return _error_response(
            request, 502, exc.error_code or "EXTERNAL_SERVICE_ERROR", exc.message, exc.details
        )

    @app.exception_handler(APIError)
    async def api_error_handler(request: Request, exc: APIError):
        req_id = getattr(request.state, "request_id", None)
        logger.error(f"APIError: {exc.code} ({exc.http_status}) {exc.message} | request_id={req_id}")
        return _error_response(request, exc.http_status, exc.code, exc.message, exc.details)

    @app.exception_handler(RequestValidationError)
    async def pydantic_error_handler(request: Request, exc: RequestValidationError):
        req_id = getattr(request.state, "request_id", None)
        error_details = exc.errors()
        logger.error(
            f"ValidationError on {request.method} {request.url.path}: {error_details} | request_id={req_id}"
        )
        error_messages = []
        for error in error_details:
            loc = " -> ".join(str(x) for x in error.get("loc", []))
            msg = error.get("msg", "Validation error")
            error_messages.append(f"{loc}: {msg}")
        return _error_response(
            request,
            422,
            "INVALID_INPUT",
            f"Input validation failed: {'; '.join(error_messages)}",
            {"errors": [{k: v for k, v in e.items() if k != "ctx"} for e in error_details], "path": request.url.path},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
        return _error_response(request, 500, "INTERNAL_ERROR", "An unexpected error occurred")

    return app


app = create_app()
