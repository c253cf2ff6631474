"""
Exception handling for the visitflow service.

Infrastructure-level errors raised by adapters. Business rule violations
live in ``visitflow.domain.errors``.
"""

from typing import Any, Dict, Optional


class VisitFlowException(Exception):
    """Base exception class for visitflow."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(VisitFlowException):
    """Raised when there's a configuration error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, "CONFIG_ERROR", details)


class DatabaseError(VisitFlowException):
    """Raised when there's a database operation error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, "DATABASE_ERROR", details)


class ExternalServiceError(VisitFlowException):
    """Raised when there's an external service error."""

    def __init__(
        self, service: str, message: str, details: Optional[Dict[str, Any]] = None
    ) -> None:
        self.service = service
        full_message = f"{service} service error: {message}"
        super().__init__(full_message, "EXTERNAL_SERVICE_ERROR", details)


class TranscriptionError(ExternalServiceError):
    """Raised when the transcription provider rejects or fails a request."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__("Transcription", message, details)
        self.error_code = "TRANSCRIPTION_ERROR"


class SummarizationError(ExternalServiceError):
    """Raised when the language model call for a visit summary fails."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__("Summarization", message, details)
        self.error_code = "SUMMARIZATION_ERROR"


class NotificationError(ExternalServiceError):
    """Raised when an email or push delivery fails."""

    def __init__(self, channel: str, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(channel, message, details)
        self.error_code = "NOTIFICATION_ERROR"
