"""
Shared error handling for the pack calculator services.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel

from shared.logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class PackCalcException(Exception):
    """Base exception for pack calculator services."""

    status_code = 500

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None,
                 status_code: Optional[int] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id_var.get(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(PackCalcException):
    """Request validation errors."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class CacheError(PackCalcException):
    """Cache store errors. Advisory: callers log and carry on."""

    status_code = 503

    def __init__(self, message: str = "Cache store unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("CACHE_ERROR", message, details)


class PersistenceError(PackCalcException):
    """Configuration/history store errors."""

    status_code = 503

    def __init__(self, message: str = "Persistence store unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("PERSISTENCE_ERROR", message, details)
