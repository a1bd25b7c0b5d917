"""
Shared error handling for the StayChill client data layer.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field

from shared.logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error payload handed to UI consumers."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class StayChillException(Exception):
    """Base exception for the client data layer."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id_var.get(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class RequestError(StayChillException):
    """Non-2xx response from the API.

    The message always reads ``"<status>: <message>"``.
    """

    def __init__(self, status_code: int, message: str, details: Optional[Dict[str, Any]] = None):
        self.status_code = status_code
        super().__init__("REQUEST_ERROR", f"{status_code}: {message}", details)


class NetworkError(StayChillException):
    """The API could not be reached (DNS, refused connection, reset)."""

    def __init__(self, message: str = "Failed to fetch", details: Optional[Dict[str, Any]] = None):
        super().__init__("NETWORK_FAILURE", message, details)


class RequestTimeoutError(StayChillException):
    """A request attempt exceeded its deadline and was aborted."""

    def __init__(self, message: str = "Request timed out", details: Optional[Dict[str, Any]] = None):
        super().__init__("REQUEST_TIMEOUT", message, details)


class AuthenticationError(StayChillException):
    """Authentication-related errors."""

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class ValidationError(StayChillException):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class StorageError(StayChillException):
    """Durable storage could not be read or written."""

    def __init__(self, message: str = "Storage unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORAGE_ERROR", message, details)


class StorageQuotaExceeded(StorageError):
    """Durable storage refused a write because it is full."""

    def __init__(self, message: str = "Storage quota exceeded", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.code = "STORAGE_QUOTA_EXCEEDED"
