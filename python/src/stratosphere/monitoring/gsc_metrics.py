"""
Search Console Access Layer Metrics.

Provides Prometheus metrics for:
- Cache hits, misses and store errors
- Provider calls by outcome
- Retry attempts and backoff distribution
- Quota exhaustion
- Circuit breaker state and rejections
- OAuth token refreshes

Exposed on /metrics by the API process.
"""

import logging
from prometheus_client import Counter, Gauge, Histogram

logger = logging.getLogger(__name__)


# ============================================================================
# Cache Metrics
# ============================================================================

gsc_cache_requests_total = Counter(
    'gsc_cache_requests_total',
    'Cache lookups by result',
    ['result']  # hit, miss, error
)

gsc_cache_writes_total = Counter(
    'gsc_cache_writes_total',
    'Cache writes by status',
    ['status']  # success, error
)

gsc_cache_expired_rows_deleted_total = Counter(
    'gsc_cache_expired_rows_deleted_total',
    'Expired cache rows removed by the maintenance sweep'
)


# ============================================================================
# Provider Call Metrics
# ============================================================================

gsc_provider_calls_total = Counter(
    'gsc_provider_calls_total',
    'Search Console provider calls by endpoint and outcome',
    ['endpoint', 'outcome']  # success, rate_limited, error, quota_exhausted, circuit_open, auth_unavailable
)

gsc_provider_call_duration_seconds = Histogram(
    'gsc_provider_call_duration_seconds',
    'End-to-end duration of uncached fetches, including retries',
    ['endpoint'],
    buckets=(0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30, 60, 300, 900, 3600)
)


# ============================================================================
# Retry and Backoff Metrics
# ============================================================================

gsc_retry_attempts_total = Counter(
    'gsc_retry_attempts_total',
    'Retries scheduled after a rate limit error',
    ['attempt']  # 1, 2, 3, ...
)

gsc_backoff_delay_seconds = Histogram(
    'gsc_backoff_delay_seconds',
    'Distribution of computed backoff delays',
    buckets=(1, 30, 60, 120, 240, 480, 960, 1920, 3600)
)


# ============================================================================
# Quota Metrics
# ============================================================================

gsc_quota_exhausted_total = Counter(
    'gsc_quota_exhausted_total',
    'Requests rejected because the daily quota was exhausted'
)

gsc_quota_cooldowns_total = Counter(
    'gsc_quota_cooldowns_total',
    'Cooldown waits entered because quota was below threshold'
)


# ============================================================================
# Circuit Breaker Metrics
# ============================================================================

gsc_circuit_breaker_open = Gauge(
    'gsc_circuit_breaker_open',
    'Circuit breaker state per tenant (0=closed, 1=open)',
    ['tenant_id']
)

gsc_circuit_breaker_rejections_total = Counter(
    'gsc_circuit_breaker_rejections_total',
    'Calls rejected while the breaker was open or a trial was in flight',
    ['state']  # open, half_open
)


# ============================================================================
# Token Metrics
# ============================================================================

gsc_token_refreshes_total = Counter(
    'gsc_token_refreshes_total',
    'OAuth access token refreshes by status',
    ['status']  # success, failure
)


# ============================================================================
# Metric Helper Functions
# ============================================================================

def record_cache_lookup(result: str):
    """
    Record a cache lookup.

    Args:
        result: hit/miss/error
    """
    gsc_cache_requests_total.labels(result=result).inc()


def record_provider_call(endpoint: str, outcome: str, duration: float = None):
    """
    Record the outcome of an uncached fetch.

    Args:
        endpoint: Provider endpoint name
        outcome: success/rate_limited/error/quota_exhausted/circuit_open/auth_unavailable
        duration: Wall time in seconds, if measured
    """
    gsc_provider_calls_total.labels(endpoint=endpoint, outcome=outcome).inc()
    if duration is not None:
        gsc_provider_call_duration_seconds.labels(endpoint=endpoint).observe(duration)


def record_retry_attempt(attempt: int, delay: float):
    """
    Record a scheduled retry.

    Args:
        attempt: Retry number (1, 2, 3, ...)
        delay: Backoff delay in seconds
    """
    gsc_retry_attempts_total.labels(attempt=str(attempt)).inc()
    gsc_backoff_delay_seconds.observe(delay)


def update_circuit_state(tenant_id: str, is_open: bool):
    """Set the breaker gauge for a tenant."""
    gsc_circuit_breaker_open.labels(tenant_id=tenant_id).set(1 if is_open else 0)
