"""
Custom exception hierarchy for the Search Console access layer.

The access facade surfaces exactly one of:
- GSCQuotaExhaustedError: daily budget spent (wait until next_reset_at)
- GSCCircuitOpenError: tenant isolated after repeated failures
- GSCProviderError: non-retryable upstream failure (or retries exhausted)
- GSCAuthUnavailableError: no valid token obtainable

GSCCacheUnavailableError is raised by the cache store and never reaches
facade callers.
"""

from datetime import datetime
from typing import Optional


class GSCBaseException(Exception):
    """Base exception for all GSC-related errors."""
    pass


class GSCProviderError(GSCBaseException):
    """Raised when a Search Console API call fails."""

    def __init__(self, message: str, status_code: int = None, response_body: str = None):
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(message)


class GSCRateLimitError(GSCProviderError):
    """
    Raised when the Search Console API answers 429.

    Retried by the backoff executor.
    """

    def __init__(self, message: str = "GSC API rate limit exceeded", retry_after: int = None):
        self.retry_after = retry_after  # Seconds hinted by the provider
        super().__init__(message, status_code=429)


class GSCTimeoutError(GSCProviderError):
    """
    Raised when a Search Console call exceeds the transport timeout.

    Counts as one circuit breaker failure, same as a non-2xx response.
    """
    pass


class GSCQuotaExhaustedError(GSCBaseException):
    """
    Raised when the tenant's daily budget check fails even after cooldown.

    User-actionable: retry after next_reset_at.
    """

    def __init__(
        self,
        message: str = "GSC API daily quota exhausted",
        next_reset_at: Optional[datetime] = None,
        remaining: int = 0
    ):
        self.next_reset_at = next_reset_at
        self.remaining = remaining
        super().__init__(message)


class GSCCircuitOpenError(GSCBaseException):
    """
    Raised when the tenant's circuit breaker is open.

    User-actionable: retry after retry_after_seconds.
    """

    def __init__(
        self,
        message: str = "GSC circuit breaker is open",
        retry_after_seconds: int = 0,
        failure_count: int = 0
    ):
        self.retry_after_seconds = retry_after_seconds
        self.failure_count = failure_count
        super().__init__(message)


class GSCAuthUnavailableError(GSCBaseException):
    """
    Raised when no valid access token can be obtained for a tenant.

    Callers should fall back to mock or degraded mode.
    """
    pass


class GSCCacheUnavailableError(GSCBaseException):
    """Raised when the cache table cannot be read or written."""
    pass


class GSCOAuthError(GSCBaseException):
    """Raised when the OAuth token endpoint rejects a request or is not configured."""
    pass
