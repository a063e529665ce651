"""
Exception classes for cloudmatch.

This module defines the custom exceptions used throughout the application.
Each exception carries a human-readable message plus an optional details
dictionary, so callers can show the message to the user while logging the
details for debugging.

Exception Hierarchy:
    CloudMatchError (base)
        ConfigError - Configuration file issues
        SessionStoreError - Session file cannot be written
        PreconditionError - Caller-side invalid input, checked before any request
        TransportError - Network, timeout and HTTP status failures
            UnauthorizedError - HTTP 401 (also a SessionExpiredError)
        MalformedResponseError - Response body is not the expected structure
        SessionExpiredError - Remote service rejected the session token
        RemoteServiceError - Remote service returned a non-success code
"""

from typing import Any, Dict, Optional


class CloudMatchError(Exception):
    """
    Base exception for all cloudmatch errors.

    All custom exceptions in this project inherit from this class,
    allowing callers to catch all cloudmatch errors with a single
    except clause if desired.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional context (e.g., endpoint, song id).

    Example:
        try:
            await catalog.fetch_page(2)
        except CloudMatchError as e:
            logger.error(f"Fetch failed: {e.message}")
            if e.details:
                logger.debug(f"Details: {e.details}")
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        """
        Initialize the base exception.

        Args:
            message: Human-readable error description that will be shown to the user.
            details: Optional dictionary containing additional context about the error.
                     Common keys include:
                     - 'endpoint': API path that produced the error
                     - 'code': business code returned by the remote service
                     - 'original_error': The underlying exception if wrapping another error
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return the error message for display."""
        return self.message


class ConfigError(CloudMatchError):
    """
    Raised when there's an issue with the configuration file.

    Common causes:
        - config.yaml has invalid YAML syntax
        - Invalid field values (e.g., negative poll interval)
    """
    pass


class SessionStoreError(CloudMatchError):
    """
    Raised when the session file cannot be written.

    Reading problems are never raised: an unreadable or corrupted
    session record is treated as "not logged in".
    """
    pass


class PreconditionError(CloudMatchError):
    """
    Raised for caller-side invalid input, before any network call is made.

    Example:
        raise PreconditionError(
            "Page number must be >= 1",
            details={'page': 0}
        )
    """
    pass


class TransportError(CloudMatchError):
    """
    Raised when a request could not be completed.

    Covers connection failures, timeouts and non-2xx HTTP status codes.
    These are reported to the immediate caller and never retried
    inside the core.

    Attributes:
        status_code: HTTP status code when the server answered, None otherwise.
    """

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None
    ) -> None:
        super().__init__(message, details)
        self.status_code = status_code


class MalformedResponseError(CloudMatchError):
    """
    Raised when a response body cannot be decoded into the expected structure.

    Example:
        raise MalformedResponseError(
            "Cloud page response has no 'data' list",
            details={'endpoint': '/api/v1/cloud/get', 'code': 200}
        )
    """
    pass


class SessionExpiredError(CloudMatchError):
    """
    Raised when the remote service rejects the session token.

    During a catalog fetch this is preceded by a forced logout, so the
    caller only needs to refresh its view of the login state.
    """
    pass


class UnauthorizedError(TransportError, SessionExpiredError):
    """Raised on HTTP 401 responses."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, details, status_code=401)


class RemoteServiceError(CloudMatchError):
    """
    Raised when the remote service answers with a non-success business code.

    Attributes:
        code: Business code from the response body.
    """

    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        super().__init__(message, details)
        self.code = code
