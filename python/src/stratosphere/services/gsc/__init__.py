"""
Google Search Console access layer.

This package mediates every Search Console call on behalf of many clients:
- cache: Response cache with freshness classification
- quota_tracker: Per-client daily call budget
- backoff: Jittered exponential backoff on rate limits
- circuit_breaker: Per-client failure isolation
- token_manager: OAuth token lifecycle and connect flow
- gsc_client / mock_service: Real and mock providers
- access_facade: The single entry point combining all of the above
"""

from .access_facade import GSCAccessFacade, create_gsc_access_facade
from .exceptions import (
    GSCAuthUnavailableError,
    GSCBaseException,
    GSCCacheUnavailableError,
    GSCCircuitOpenError,
    GSCOAuthError,
    GSCProviderError,
    GSCQuotaExhaustedError,
    GSCRateLimitError,
    GSCTimeoutError,
)
from .types import DateRange, get_date_range_from_preset

__all__ = [
    "GSCAccessFacade",
    "create_gsc_access_facade",
    "GSCAuthUnavailableError",
    "GSCBaseException",
    "GSCCacheUnavailableError",
    "GSCCircuitOpenError",
    "GSCOAuthError",
    "GSCProviderError",
    "GSCQuotaExhaustedError",
    "GSCRateLimitError",
    "GSCTimeoutError",
    "DateRange",
    "get_date_range_from_preset",
]
