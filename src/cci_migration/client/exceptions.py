"""Custom exceptions for CCI Bridge.

This module defines exception classes for handling the error conditions
that can occur while talking to the Snyk API and while advancing the
local migration ledger.
"""


class CCIMigrationError(Exception):
    """Base exception for all CCI migration tool errors."""

    pass


class APIError(CCIMigrationError):
    """Base class for API-related errors."""

    def __init__(self, message: str, status_code: int | None = None, response: dict | None = None):
        """Initialize API error.

        Args:
            message: Error message
            status_code: HTTP status code
            response: API response body
        """
        self.message = message
        self.status_code = status_code
        self.response = response
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


class ConflictError(APIError):
    """Raised when a resource conflict occurs (409 Conflict).

    For policy creation this means the policy already exists and is
    treated as success by the client.
    """

    pass


class RateLimitError(APIError):
    """Raised when API rate limit is exceeded (429 Too Many Requests)."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response: dict | None = None,
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


class NetworkError(CCIMigrationError):
    """Raised when network-related errors occur (timeouts, connection failures)."""

    pass


class ValidationError(CCIMigrationError):
    """Raised when data validation fails."""

    pass


class StateError(CCIMigrationError):
    """Raised when ledger operations fail."""

    pass


class LedgerLockedError(StateError):
    """Raised when the ledger is locked or busy.

    This is the only ledger error that transactional writers retry.
    """

    pass


class ConfigurationError(CCIMigrationError):
    """Raised when configuration is invalid or missing."""

    pass


class MigrationError(CCIMigrationError):
    """Raised when a migration phase fails as a whole."""

    pass


class PhaseTimeoutError(MigrationError):
    """Raised when a phase runs past its wall-clock deadline."""

    def __init__(self, phase: str, timeout: float, completed: int = 0):
        self.phase = phase
        self.timeout = timeout
        self.completed = completed
        # Partial PhaseResult, attached by the phase that timed out
        self.result = None
        super().__init__(
            f"{phase} phase exceeded its timeout of {timeout:g}s "
            f"after {completed} completed item(s)"
        )
