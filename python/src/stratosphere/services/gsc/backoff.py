"""
Exponential backoff executor for Search Console calls.

Wraps a provider call with:
1. A daily quota check (with one cooldown wait when below threshold)
2. Jittered exponential backoff on rate limit errors (60s → 120s → ... ≤ 1h)
3. Quota accounting after a successful call

Non rate-limit errors propagate immediately without consuming a retry.

Usage:

```python
executor = BackoffExecutor(quota_tracker)
result = await executor.run("client-123", lambda: provider.search_analytics(token, params))
```
"""

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Optional, TypeVar

from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt

from ...monitoring.gsc_metrics import (
    gsc_quota_cooldowns_total,
    gsc_quota_exhausted_total,
    record_retry_attempt,
)
from .exceptions import GSCBaseException, GSCProviderError, GSCQuotaExhaustedError, GSCRateLimitError
from .quota_tracker import GSCQuotaTracker

logger = logging.getLogger(__name__)

T = TypeVar("T")

RATE_LIMIT_MARKERS = ("rate limit", "quota", "too many requests")


def compute_backoff_delay(
    attempt: int,
    min_delay: float = 60.0,
    max_delay: float = 3600.0,
    rng: Optional[random.Random] = None,
) -> float:
    """
    Delay before retry number `attempt` (0-based).

    base = min_delay * 2^attempt with ±10% jitter, capped at max_delay.
    """
    uniform = (rng or random).uniform
    base = min_delay * (2 ** attempt)
    jitter = base * 0.1 * uniform(-1, 1)
    return min(max_delay, base + jitter)


def is_rate_limit_error(error: BaseException) -> bool:
    """
    Check whether an error signals rate limiting.

    Typed errors are classified first: GSCRateLimitError always retries,
    access-layer errors never do. Otherwise a 429 status on the error (or
    its HTTP response) or rate limit / quota wording in a provider message
    counts as rate limiting.
    """
    if isinstance(error, GSCRateLimitError):
        return True
    # Access-layer errors (auth, quota, breaker, cache) never retry
    if isinstance(error, GSCBaseException) and not isinstance(error, GSCProviderError):
        return False

    status_code = getattr(error, "status_code", None)
    if status_code is None:
        response = getattr(error, "response", None)
        status_code = getattr(response, "status_code", None)
    if status_code == 429:
        return True

    message = str(error).lower()
    return any(marker in message for marker in RATE_LIMIT_MARKERS)


class BackoffExecutor:
    """
    Quota-aware retry wrapper.

    Sleeping is delegated to an injectable coroutine so only the calling
    task is suspended (and tests can observe delays without waiting).
    """

    MAX_RETRIES = 5
    MIN_DELAY_SECONDS = 60.0
    MAX_DELAY_SECONDS = 3600.0
    QUOTA_COOLDOWN_SECONDS = 300.0
    STAGGER_DELAY_SECONDS = 2.0

    def __init__(
        self,
        quota_tracker: GSCQuotaTracker,
        max_retries: int = MAX_RETRIES,
        min_delay: float = MIN_DELAY_SECONDS,
        max_delay: float = MAX_DELAY_SECONDS,
        quota_cooldown: float = QUOTA_COOLDOWN_SECONDS,
        stagger_delay: float = STAGGER_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.quota_tracker = quota_tracker
        self.max_retries = max_retries
        self.min_delay = min_delay
        self.max_delay = max_delay
        self.quota_cooldown = quota_cooldown
        self.stagger_delay = stagger_delay
        self._sleep = sleep
        self._rng = rng

    async def _ensure_quota(self, tenant_id: str) -> None:
        """
        Block until quota allows a call, or raise.

        Raises:
            GSCQuotaExhaustedError: If still below threshold after one cooldown
        """
        status = await self.quota_tracker.check(tenant_id)
        if status.can_proceed:
            return

        logger.warning(
            f"Quota low for client {tenant_id} ({status.remaining} remaining), "
            f"cooling down {self.quota_cooldown}s"
        )
        gsc_quota_cooldowns_total.inc()
        await self._sleep(self.quota_cooldown)

        status = await self.quota_tracker.check(tenant_id)
        if status.can_proceed:
            return

        gsc_quota_exhausted_total.inc()
        logger.error(
            f"Quota exhausted for client {tenant_id}; resets at "
            f"{status.next_reset_at.isoformat()}"
        )
        raise GSCQuotaExhaustedError(
            f"GSC API quota exhausted. Resets at {status.next_reset_at.isoformat()}",
            next_reset_at=status.next_reset_at,
            remaining=status.remaining,
        )

    def _wait(self, retry_state) -> float:
        """tenacity wait strategy: jittered delay for the failed attempt."""
        attempt = retry_state.attempt_number - 1
        delay = compute_backoff_delay(attempt, self.min_delay, self.max_delay, self._rng)
        record_retry_attempt(retry_state.attempt_number, delay)
        logger.warning(
            f"Rate limited (attempt {retry_state.attempt_number}/{self.max_retries + 1}), "
            f"retrying in {delay:.1f}s"
        )
        return delay

    async def run(
        self,
        tenant_id: str,
        fn: Callable[[], Awaitable[T]],
        track_usage: bool = True,
        usage_count: int = 1,
    ) -> T:
        """
        Execute fn under quota control with rate limit retries.

        Args:
            tenant_id: Client ID
            fn: Zero-argument callable returning an awaitable (one provider call)
            track_usage: Record the call against the daily quota on success
            usage_count: Units to record

        Returns:
            fn's result

        Raises:
            GSCQuotaExhaustedError: If the daily budget is spent
            Exception: The last rate limit error after retries are exhausted,
                or any non rate-limit error immediately
        """
        await self._ensure_quota(tenant_id)

        # fn may be a lambda returning a coroutine, so await it explicitly
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=self._wait,
            retry=retry_if_exception(is_rate_limit_error),
            sleep=self._sleep,
            reraise=True,
        ):
            with attempt:
                result = await fn()

        if track_usage:
            try:
                await self.quota_tracker.track(tenant_id, count=usage_count)
            except Exception as e:
                logger.error(
                    f"Failed to record quota usage for client {tenant_id}: {e}",
                    exc_info=True,
                )

        return result

    async def stagger(self) -> None:
        """Pause between per-tenant batch calls."""
        await self._sleep(self.stagger_delay)
