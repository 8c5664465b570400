"""Exception taxonomy for forge-cli.

- PlanParseError: the backend answered, but not with a usable plan. Never retried.
- ApiError: a failed call to the generative backend. ``retryable`` and
  ``rotate_key`` drive the retry handler.
- RetryExhaustedError: every attempt failed; wraps the last failure.
- SandboxError: working-directory violation, spawn failure or timeout. The
  executor converts it into a failed ExecutionResult.
- ValidationError: a step or plan could not be evaluated at all.
"""

from __future__ import annotations

from typing import Any

import httpx
from google.api_core import exceptions as google_exceptions
from google.genai import errors as genai_errors


class ForgeError(Exception):
    """Base class for all forge-cli errors."""


class ErrorCode:
    """Machine-readable error codes for backend failures."""

    RATE_LIMITED = "RATE_LIMITED"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    TIMEOUT = "TIMEOUT"
    NETWORK = "NETWORK"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    INVALID_REQUEST = "INVALID_REQUEST"
    AUTHENTICATION = "AUTHENTICATION"
    NO_API_KEYS = "NO_API_KEYS"
    UNKNOWN = "UNKNOWN"


# Codes that may succeed on a later attempt
RETRYABLE_CODES = frozenset({
    ErrorCode.RATE_LIMITED,
    ErrorCode.QUOTA_EXCEEDED,
    ErrorCode.TIMEOUT,
    ErrorCode.NETWORK,
    ErrorCode.SERVICE_UNAVAILABLE,
})

# Codes that are tied to the credential in use
ROTATION_CODES = frozenset({
    ErrorCode.RATE_LIMITED,
    ErrorCode.QUOTA_EXCEEDED,
})

RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})

# Last-resort substring matching for exceptions we cannot classify by type
_RETRYABLE_MARKERS = (
    "rate limit",
    "quota",
    "timeout",
    "timed out",
    "network error",
    "service unavailable",
    "429",
    "500",
    "502",
    "503",
    "504",
)
_ROTATION_MARKERS = ("rate limit", "quota", "429", "resource_exhausted")


def _code_for_status(status: int | None, message: str = "") -> str:
    if status == 429:
        if "quota" in message.lower():
            return ErrorCode.QUOTA_EXCEEDED
        return ErrorCode.RATE_LIMITED
    if status in (500, 502, 503):
        return ErrorCode.SERVICE_UNAVAILABLE
    if status == 504:
        return ErrorCode.TIMEOUT
    if status in (401, 403):
        return ErrorCode.AUTHENTICATION
    if status is not None and 400 <= status < 500:
        return ErrorCode.INVALID_REQUEST
    return ErrorCode.UNKNOWN


class ApiError(ForgeError):
    """A failed call to the generative backend.

    Attributes:
        message: Human-readable error message
        error_code: One of the ErrorCode constants
        retryable: Whether another attempt may succeed
        rotate_key: Whether switching credentials may help
        status: HTTP status code, when known
        details: Additional error details
    """

    def __init__(
        self,
        message: str,
        error_code: str = ErrorCode.UNKNOWN,
        retryable: bool | None = None,
        rotate_key: bool | None = None,
        status: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.retryable = error_code in RETRYABLE_CODES if retryable is None else retryable
        self.rotate_key = error_code in ROTATION_CODES if rotate_key is None else rotate_key
        self.status = status
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "message": self.message,
            "code": self.error_code,
            "retryable": self.retryable,
            "rotate_key": self.rotate_key,
            "status": self.status,
            "details": self.details,
        }

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ApiError":
        """Translate a client-library exception into an ApiError."""
        if isinstance(exc, ApiError):
            return exc

        message = str(exc) or type(exc).__name__

        if isinstance(exc, genai_errors.APIError):
            status = getattr(exc, "code", None)
            return cls(message, _code_for_status(status, message), status=status)

        if isinstance(exc, google_exceptions.GoogleAPICallError):
            status = getattr(exc, "code", None)
            if isinstance(exc, google_exceptions.DeadlineExceeded):
                return cls(message, ErrorCode.TIMEOUT, status=status)
            if isinstance(status, int):
                return cls(message, _code_for_status(status, message), status=status)

        if isinstance(exc, (httpx.TimeoutException, TimeoutError)):
            return cls(message, ErrorCode.TIMEOUT)
        if isinstance(exc, (httpx.TransportError, ConnectionError)):
            return cls(message, ErrorCode.NETWORK)

        lowered = message.lower()
        if any(marker in lowered for marker in _RETRYABLE_MARKERS):
            rotate = any(marker in lowered for marker in _ROTATION_MARKERS)
            code = ErrorCode.RATE_LIMITED if rotate else ErrorCode.SERVICE_UNAVAILABLE
            return cls(message, code, retryable=True, rotate_key=rotate)

        return cls(message, ErrorCode.UNKNOWN, retryable=False, rotate_key=False)


class RetryExhaustedError(ApiError):
    """All attempts of a backend call failed."""

    def __init__(self, attempts: int, last_error: ApiError):
        super().__init__(
            f"API request failed after {attempts} attempts: {last_error.message}",
            error_code=last_error.error_code,
            retryable=False,
            rotate_key=False,
            status=last_error.status,
            details={"attempts": attempts},
        )
        self.attempts = attempts
        self.last_error = last_error


class PlanParseError(ForgeError):
    """The backend response is not a well-formed plan."""

    def __init__(self, message: str, raw_response: str | None = None):
        super().__init__(message)
        self.raw_response = raw_response


class SandboxError(ForgeError):
    """A step could not be run inside the sandbox."""


class ValidationError(ForgeError):
    """A step or plan could not be evaluated."""
