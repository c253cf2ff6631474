"""
Domain-specific error types for business rule violations.
"""

from typing import Any, Dict, Optional


class DomainError(Exception):
    """Base domain error."""

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


class VisitNotFoundError(DomainError):
    """Visit not found."""

    def __init__(self, visit_id: str) -> None:
        message = f"Visit with ID '{visit_id}' not found"
        super().__init__(message, "VISIT_NOT_FOUND", {"visit_id": visit_id})


class InvalidVisitStateError(DomainError):
    """The visit is not in a state that allows the requested transition."""

    def __init__(self, visit_id: str, current: str, expected: str) -> None:
        message = f"Visit '{visit_id}' is {current}; expected {expected}"
        super().__init__(
            message,
            "INVALID_VISIT_STATE",
            {"visit_id": visit_id, "current": current, "expected": expected},
        )


class MissingAudioError(DomainError):
    """A visit needs an audio reference before it can be transcribed."""

    def __init__(self, visit_id: str) -> None:
        message = "Visit has no audio to reprocess"
        super().__init__(message, "MISSING_AUDIO", {"visit_id": visit_id})


class RetryTooSoonError(DomainError):
    """A retry was requested inside the per-visit throttle window."""

    def __init__(self, visit_id: str, wait_seconds: int) -> None:
        self.wait_seconds = wait_seconds
        message = f"Please wait {wait_seconds} more seconds before retrying"
        super().__init__(
            message,
            "RETRY_TOO_SOON",
            {"visit_id": visit_id, "wait_seconds": wait_seconds},
        )


class ConcurrentVisitUpdateError(DomainError):
    """A conditional write lost a race against another handler."""

    def __init__(self, visit_id: str, expected: str) -> None:
        message = f"Visit '{visit_id}' changed concurrently (expected {expected})"
        super().__init__(
            message, "CONCURRENT_UPDATE", {"visit_id": visit_id, "expected": expected}
        )
