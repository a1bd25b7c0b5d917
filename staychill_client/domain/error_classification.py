"""
Error classification for user-facing recovery affordances.

The mapping is pure: the same error and status always yield the same kind.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import httpx

from shared.errors import NetworkError, RequestTimeoutError


class ErrorKind(str, Enum):
    """Kinds of failure a consumer can react to."""
    UNAUTHORIZED = "unauthorized"  # 401, 403
    SERVER = "server"              # 5xx
    CONNECTION = "connection"      # network unreachable
    TIMEOUT = "timeout"            # aborted by the deadline
    REQUEST = "request"            # everything else

    @property
    def is_transient(self) -> bool:
        return self in (ErrorKind.SERVER, ErrorKind.CONNECTION, ErrorKind.TIMEOUT)

    @property
    def affordance(self) -> str:
        """Recovery control the UI should offer."""
        if self is ErrorKind.UNAUTHORIZED:
            return "reauthenticate"
        if self.is_transient:
            return "retry"
        return "dismiss"


MAX_MESSAGE_LENGTH = 100

CONNECTION_MARKERS = ("Failed to fetch", "Network Error", "NetworkError")

DEFAULT_MESSAGES = {
    ErrorKind.CONNECTION: "Unable to reach the server. Please check your internet connection.",
    ErrorKind.SERVER: "The server ran into a problem. Please try again later.",
    ErrorKind.REQUEST: "Your request could not be processed. Please check the details you entered.",
    ErrorKind.UNAUTHORIZED: "You are not authorised to view this content. Please sign in again.",
    ErrorKind.TIMEOUT: "The request took too long. Please try again.",
}

ERROR_CODES = {
    "NETWORK_FAILURE": (ErrorKind.CONNECTION, DEFAULT_MESSAGES[ErrorKind.CONNECTION]),
    "SERVER_ERROR": (ErrorKind.SERVER, DEFAULT_MESSAGES[ErrorKind.SERVER]),
    "REQUEST_TIMEOUT": (ErrorKind.TIMEOUT, DEFAULT_MESSAGES[ErrorKind.TIMEOUT]),
    "AUTH_DENIED": (ErrorKind.UNAUTHORIZED, "Access denied. Please sign in again."),
    "AUTH_EXPIRED": (ErrorKind.UNAUTHORIZED, "Your session has expired. Please sign in again."),
    "INVALID_REQUEST": (ErrorKind.REQUEST, "Invalid request. Please check the details you entered."),
    "RESOURCE_NOT_FOUND": (ErrorKind.REQUEST, "The requested resource was not found."),
    "PERMISSION_DENIED": (ErrorKind.UNAUTHORIZED, "You do not have permission to access this resource."),
}


@dataclass(frozen=True)
class ClassifiedError:
    kind: ErrorKind
    message: str
    status_code: Optional[int] = None

    @property
    def affordance(self) -> str:
        return self.kind.affordance


def truncate_message(message: str, limit: int = MAX_MESSAGE_LENGTH) -> str:
    """Shorten verbose backend messages so they never exceed ``limit`` characters."""
    if len(message) <= limit:
        return message
    return message[:limit - 3] + "..."


def determine_kind(error: Optional[BaseException], http_status: Optional[int] = None) -> ErrorKind:
    """Classify by status first, then by error type, then by message."""
    status = http_status if http_status is not None else getattr(error, "status_code", None)

    if status in (401, 403):
        return ErrorKind.UNAUTHORIZED
    if status is not None and status >= 500:
        return ErrorKind.SERVER

    if isinstance(error, (RequestTimeoutError, httpx.TimeoutException, asyncio.TimeoutError)):
        return ErrorKind.TIMEOUT
    if isinstance(error, (NetworkError, httpx.TransportError, ConnectionError)):
        return ErrorKind.CONNECTION

    message = str(error) if error is not None else ""
    if any(marker in message for marker in CONNECTION_MARKERS):
        return ErrorKind.CONNECTION

    return ErrorKind.REQUEST


def classify(error: Optional[BaseException], http_status: Optional[int] = None) -> ClassifiedError:
    """Classify an error and pick the message shown to the user."""
    status = http_status if http_status is not None else getattr(error, "status_code", None)
    code = getattr(error, "code", None)

    if status is None and isinstance(code, str) and code in ERROR_CODES:
        kind, message = ERROR_CODES[code]
        return ClassifiedError(kind=kind, message=message)

    kind = determine_kind(error, status)
    message = str(error) if error is not None and str(error) else DEFAULT_MESSAGES[kind]
    return ClassifiedError(kind=kind, message=truncate_message(message), status_code=status)
