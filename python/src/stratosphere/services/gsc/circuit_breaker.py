"""
Per-tenant circuit breaker for Search Console calls.

One misbehaving tenant (revoked property, broken credentials, provider
errors) is isolated without affecting the others.

States:
- CLOSED: Normal operation, all requests allowed
- OPEN: Tenant failing, all requests blocked until the reset timeout passes
- HALF_OPEN: Reset timeout passed, exactly one trial request allowed

Breaker state lives in a TenantStateStore. The default store is in-process;
a shared store can be injected for multi-instance deployments.
"""

import asyncio
import logging
import math
import weakref
from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Tuple, Type, TypeVar

from ...models.gsc import utcnow
from ...monitoring.gsc_metrics import gsc_circuit_breaker_rejections_total, update_circuit_state
from .exceptions import GSCAuthUnavailableError, GSCCircuitOpenError, GSCQuotaExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Blocking requests
    HALF_OPEN = "half_open"  # Testing recovery


@dataclass
class CircuitBreakerState:
    """Persisted breaker record for one tenant."""
    tenant_id: str
    failure_count: int = 0
    last_failure_time: Optional[datetime] = None
    is_open: bool = False
    opened_at: Optional[datetime] = None
    trial_in_flight: bool = False


class TenantStateStore(Protocol):
    """Storage for breaker records."""

    async def load(self, tenant_id: str) -> Optional[CircuitBreakerState]: ...

    async def save(self, state: CircuitBreakerState) -> None: ...

    async def delete(self, tenant_id: str) -> None: ...

    def lock(self, tenant_id: str) -> asyncio.Lock: ...


class InMemoryTenantStateStore:
    """Process-local breaker storage."""

    def __init__(self):
        self._states: Dict[str, CircuitBreakerState] = {}
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    async def load(self, tenant_id: str) -> Optional[CircuitBreakerState]:
        return self._states.get(tenant_id)

    async def save(self, state: CircuitBreakerState) -> None:
        self._states[state.tenant_id] = state

    async def delete(self, tenant_id: str) -> None:
        self._states.pop(tenant_id, None)

    def lock(self, tenant_id: str) -> asyncio.Lock:
        # Weak entries, so idle tenants do not accumulate locks
        lock = self._locks.get(tenant_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[tenant_id] = lock
        return lock


class TenantCircuitBreaker:
    """
    Circuit breaker keyed by tenant.

    - Opens after FAILURE_THRESHOLD consecutive failures
    - Stays open for RESET_TIMEOUT seconds
    - Then lets a single trial call through; success closes it
    - A failed trial keeps the original opened_at unless
      restart_window_on_trial_failure is set

    The per-tenant lock only guards state transitions; it is never held
    while the protected call runs.
    """

    FAILURE_THRESHOLD = 5
    RESET_TIMEOUT_SECONDS = 300.0

    DEFAULT_EXCLUDED_EXCEPTIONS: Tuple[Type[BaseException], ...] = (
        GSCAuthUnavailableError,
        GSCQuotaExhaustedError,
    )

    def __init__(
        self,
        store: Optional[TenantStateStore] = None,
        failure_threshold: int = FAILURE_THRESHOLD,
        reset_timeout: float = RESET_TIMEOUT_SECONDS,
        restart_window_on_trial_failure: bool = False,
        excluded_exceptions: Tuple[Type[BaseException], ...] = DEFAULT_EXCLUDED_EXCEPTIONS,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize circuit breaker.

        Args:
            store: Breaker state storage (in-memory by default)
            failure_threshold: Consecutive failures before opening
            reset_timeout: Seconds to stay open before allowing a trial
            restart_window_on_trial_failure: Restart the open window when a trial fails
            excluded_exceptions: Errors that pass through without counting as failures
            clock: UTC clock
        """
        self.store = store if store is not None else InMemoryTenantStateStore()
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.restart_window_on_trial_failure = restart_window_on_trial_failure
        self.excluded_exceptions = excluded_exceptions
        self._clock = clock

    async def _load(self, tenant_id: str) -> CircuitBreakerState:
        state = await self.store.load(tenant_id)
        return state if state is not None else CircuitBreakerState(tenant_id=tenant_id)

    def _elapsed(self, state: CircuitBreakerState) -> float:
        if state.opened_at is None:
            return math.inf
        return (self._clock() - state.opened_at).total_seconds()

    def _state_from(self, state: CircuitBreakerState) -> CircuitState:
        if not state.is_open:
            return CircuitState.CLOSED
        if self._elapsed(state) >= self.reset_timeout:
            return CircuitState.HALF_OPEN
        return CircuitState.OPEN

    async def _admit(self, tenant_id: str) -> bool:
        """
        Decide whether a call may proceed.

        Returns:
            True if this call is the half-open trial

        Raises:
            GSCCircuitOpenError: If the breaker rejects the call
        """
        async with self.store.lock(tenant_id):
            state = await self._load(tenant_id)
            current = self._state_from(state)

            if current == CircuitState.CLOSED:
                return False

            if current == CircuitState.OPEN:
                retry_after = math.ceil(self.reset_timeout - self._elapsed(state))
                gsc_circuit_breaker_rejections_total.labels(state="open").inc()
                raise GSCCircuitOpenError(
                    f"Circuit breaker is OPEN for client {tenant_id}. "
                    f"Retry in {retry_after}s",
                    retry_after_seconds=retry_after,
                    failure_count=state.failure_count,
                )

            if state.trial_in_flight:
                gsc_circuit_breaker_rejections_total.labels(state="half_open").inc()
                raise GSCCircuitOpenError(
                    f"Circuit breaker trial in progress for client {tenant_id}",
                    retry_after_seconds=0,
                    failure_count=state.failure_count,
                )

            logger.info(f"Circuit breaker for client {tenant_id} entering HALF_OPEN state")
            state.trial_in_flight = True
            await self.store.save(state)
            return True

    async def _on_success(self, tenant_id: str, is_trial: bool) -> None:
        async with self.store.lock(tenant_id):
            state = await self._load(tenant_id)
            if is_trial or state.is_open:
                logger.info(f"Circuit breaker for client {tenant_id} CLOSING (trial succeeded)")
            state.failure_count = 0
            state.is_open = False
            state.opened_at = None
            state.trial_in_flight = False
            await self.store.save(state)
        update_circuit_state(tenant_id, False)

    async def _on_failure(self, tenant_id: str, is_trial: bool) -> None:
        async with self.store.lock(tenant_id):
            state = await self._load(tenant_id)
            now = self._clock()
            state.failure_count += 1
            state.last_failure_time = now

            if is_trial:
                state.trial_in_flight = False
                if self.restart_window_on_trial_failure:
                    state.opened_at = now
                logger.warning(
                    f"Circuit breaker for client {tenant_id} stays OPEN "
                    f"(trial failed, failures={state.failure_count})"
                )
            elif not state.is_open and state.failure_count >= self.failure_threshold:
                state.is_open = True
                state.opened_at = now
                logger.error(
                    f"Circuit breaker for client {tenant_id} OPENING "
                    f"(failure threshold reached: {state.failure_count})"
                )

            await self.store.save(state)
        update_circuit_state(tenant_id, state.is_open)

    async def _release_trial(self, tenant_id: str) -> None:
        """Clear the trial slot without recording an outcome."""
        async with self.store.lock(tenant_id):
            state = await self._load(tenant_id)
            state.trial_in_flight = False
            await self.store.save(state)

    async def protect(self, tenant_id: str, fn: Callable[[], Awaitable[T]]) -> T:
        """
        Execute fn with circuit breaker protection.

        Args:
            tenant_id: Client ID
            fn: Zero-argument coroutine function

        Returns:
            fn's result

        Raises:
            GSCCircuitOpenError: If the breaker is open or a trial is in flight
            Exception: Any exception from fn
        """
        is_trial = await self._admit(tenant_id)

        try:
            result = await fn()
        except self.excluded_exceptions:
            if is_trial:
                await self._release_trial(tenant_id)
            raise
        except asyncio.CancelledError:
            if is_trial:
                await self._release_trial(tenant_id)
            raise
        except Exception:
            await self._on_failure(tenant_id, is_trial)
            raise

        await self._on_success(tenant_id, is_trial)
        return result

    async def state_of(self, tenant_id: str) -> CircuitState:
        """Current state for a tenant."""
        return self._state_from(await self._load(tenant_id))

    async def get_state(self, tenant_id: str) -> Dict[str, Any]:
        """
        Get circuit breaker state for monitoring.

        Returns:
            State dict with metrics
        """
        state = await self._load(tenant_id)
        current = self._state_from(state)
        record = asdict(state)
        for key in ("last_failure_time", "opened_at"):
            if record[key] is not None:
                record[key] = record[key].isoformat()

        retry_after = 0
        if current == CircuitState.OPEN:
            retry_after = math.ceil(self.reset_timeout - self._elapsed(state))

        record.update({
            "state": current.value,
            "failure_threshold": self.failure_threshold,
            "reset_timeout_seconds": self.reset_timeout,
            "retry_after_seconds": retry_after,
        })
        return record

    async def reset(self, tenant_id: str) -> None:
        """Manually close the breaker for a tenant (admin operation)."""
        async with self.store.lock(tenant_id):
            await self.store.delete(tenant_id)
        update_circuit_state(tenant_id, False)
        logger.info(f"Circuit breaker for client {tenant_id} manually reset")
