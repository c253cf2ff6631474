"""
HTTP-facing errors raised from routers and rendered by the app's exception handler.
"""

from typing import Any, Dict, Optional


class APIError(Exception):
    def __init__(
        self,
        code: str,
        message: str,
        http_status: int = 400,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.http_status = http_status
        self.details = details


class UnauthorizedError(APIError):
    """Caller failed the shared-secret check."""

    def __init__(self, message: str = "Unauthorized", details: Optional[Dict[str, Any]] = None):
        super().__init__("UNAUTHORIZED", message, 401, details)
