"""Custom exceptions for edu-bridge clients.

This module defines exception classes for handling the error conditions
that can occur while talking to the learning platform backend, plus the
classifier that turns the backend's inconsistent error payloads into a
typed error code.
"""

import json
from enum import Enum
from typing import Any


class BackendErrorCode(str, Enum):
    """Error markers the backend embeds in response payloads."""

    USER_NAME_EXIST = "USER_NAME_EXIST"
    DISPLAY_NAME_EXISTED = "DISPLAY_NAME_EXISTED"
    INVALID_DISPLAY_NAME = "INVALID_DISPLAY_NAME"
    UNKNOWN = "UNKNOWN"


def classify_payload(payload: Any) -> BackendErrorCode | None:
    """Classify a backend response payload.

    The backend signals name conflicts in several shapes: a JSON object with
    a ``message`` field, a bare string, or a marker nested somewhere in the
    body. The payload is serialized once and searched for known markers.

    Args:
        payload: Decoded JSON body (dict, list, str, bool, ...)

    Returns:
        The matching error code, or None if no marker is present
    """
    if payload is None or isinstance(payload, bool):
        return None

    if isinstance(payload, str):
        content = payload
    else:
        try:
            content = json.dumps(payload, default=str)
        except (TypeError, ValueError):
            content = str(payload)

    for code in (
        BackendErrorCode.USER_NAME_EXIST,
        BackendErrorCode.DISPLAY_NAME_EXISTED,
        BackendErrorCode.INVALID_DISPLAY_NAME,
    ):
        if code.value in content:
            return code
    return None


def is_accepted(payload: Any) -> bool:
    """Return True when a 2xx payload signals acceptance.

    Accepts ``true``, ``"true"`` and objects carrying a true ``isSuccess``,
    ``success`` or ``data`` flag.
    """
    if payload is True:
        return True
    if isinstance(payload, str):
        return payload.strip().lower() == "true"
    if isinstance(payload, dict):
        for key in ("isSuccess", "success", "data", "result"):
            if payload.get(key) is True:
                return True
    return False


class EduMigrationError(Exception):
    """Base exception for all edu-bridge errors."""

    pass


class APIError(EduMigrationError):
    """Base class for API-related errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response: Any = None,
        error_code: BackendErrorCode | None = None,
    ):
        """Initialize API error.

        Args:
            message: Error message
            status_code: HTTP status code
            response: API response body
            error_code: Classified backend error marker, if any
        """
        self.message = message
        self.status_code = status_code
        self.response = response
        self.error_code = error_code
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format error message with status code and response."""
        msg = self.message
        if self.status_code:
            msg = f"[{self.status_code}] {msg}"
        if self.response:
            msg = f"{msg}: {self.response}"
        return msg


class AuthenticationError(APIError):
    """Raised when authentication fails (401 Unauthorized)."""

    pass


class AuthorizationError(APIError):
    """Raised when authorization fails (403 Forbidden)."""

    pass


class NotFoundError(APIError):
    """Raised when a resource is not found (404 Not Found)."""

    pass


class RejectedError(APIError):
    """Raised when the backend refuses a request without a known marker.

    Covers 417 Expectation Failed responses and 2xx responses whose body
    does not signal acceptance.
    """

    pass


class NameConflictError(APIError):
    """Raised when a username or display name is already taken."""

    pass


class InvalidNameError(APIError):
    """Raised when the backend rejects a display name as invalid."""

    pass


class RateLimitError(APIError):
    """Raised when API rate limit is exceeded (429 Too Many Requests)."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response: Any = None,
        retry_after: int | None = None,
    ):
        """Initialize rate limit error.

        Args:
            message: Error message
            status_code: HTTP status code
            response: API response body
            retry_after: Seconds to wait before retrying (from Retry-After header)
        """
        super().__init__(message, status_code, response)
        self.retry_after = retry_after


class ServerError(APIError):
    """Raised when server returns 5xx error."""

    pass


class ServiceUnavailableError(ServerError):
    """Raised when the backend is overloaded (503 Service Unavailable)."""

    pass


class NetworkError(EduMigrationError):
    """Raised when network-related errors occur (timeouts, connection failures)."""

    pass


class NameExhaustedError(EduMigrationError):
    """Raised when no free numeric suffix was found for a base name."""

    def __init__(self, base_name: str, max_suffix: int):
        self.base_name = base_name
        self.max_suffix = max_suffix
        super().__init__(f"No free name for '{base_name}' after {max_suffix} suffixes")


class ConfigurationError(EduMigrationError):
    """Raised when configuration is invalid or missing."""

    pass


class MigrationError(EduMigrationError):
    """Raised when a migration cannot proceed at all (e.g. admin login failed)."""

    pass


def describe_error(error: BaseException) -> str:
    """Human readable failure reason for a record."""
    if isinstance(error, APIError):
        response = error.response
        if isinstance(response, dict):
            detail = response.get("message") or response.get("detail") or response.get("title")
            if detail:
                return f"[{error.status_code}] {detail}" if error.status_code else str(detail)
        return error.format_message()
    return str(error) or type(error).__name__
