"""
Unit tests for the per-tenant circuit breaker.

Verifies:
- CLOSED → OPEN after the failure threshold
- OPEN rejections carry retry_after_seconds
- HALF_OPEN admits exactly one trial
- Trial outcomes and the restart-window option
- Excluded exceptions are not counted
- Tenants are isolated
"""

import asyncio
import gc
from unittest.mock import AsyncMock

import pytest

from stratosphere.services.gsc.circuit_breaker import (
    CircuitBreakerState,
    CircuitState,
    InMemoryTenantStateStore,
    TenantCircuitBreaker,
)
from stratosphere.services.gsc.exceptions import (
    GSCAuthUnavailableError,
    GSCCircuitOpenError,
    GSCProviderError,
    GSCQuotaExhaustedError,
    GSCTimeoutError,
)


@pytest.fixture
def breaker(clock):
    return TenantCircuitBreaker(clock=clock)


def failing_call():
    return AsyncMock(side_effect=GSCProviderError("Backend Error", status_code=500))


async def trip(breaker, tenant_id="client-1", failures=5):
    """Drive the breaker open with consecutive failures."""
    fn = failing_call()
    for _ in range(failures):
        with pytest.raises(GSCProviderError):
            await breaker.protect(tenant_id, fn)
    return fn


class TestCircuitBreakerClosed:
    """Test normal operation."""

    @pytest.mark.asyncio
    async def test_passes_result_through(self, breaker):
        result = await breaker.protect("client-1", AsyncMock(return_value={"rows": []}))

        assert result == {"rows": []}
        assert await breaker.state_of("client-1") == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_failures_below_threshold_stay_closed(self, breaker):
        await trip(breaker, failures=4)

        state = await breaker.get_state("client-1")

        assert state["state"] == "closed"
        assert state["failure_count"] == 4
        assert state["last_failure_time"] is not None

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self, breaker):
        await trip(breaker, failures=4)
        await breaker.protect("client-1", AsyncMock(return_value={}))
        await trip(breaker, failures=4)

        assert await breaker.state_of("client-1") == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_timeouts_count_as_failures(self, breaker):
        fn = AsyncMock(side_effect=GSCTimeoutError("Request timed out after 30.0s"))
        for _ in range(5):
            with pytest.raises(GSCTimeoutError):
                await breaker.protect("client-1", fn)

        assert await breaker.state_of("client-1") == CircuitState.OPEN


class TestCircuitBreakerOpen:
    """Test isolation after repeated failures."""

    @pytest.mark.asyncio
    async def test_opens_at_threshold(self, breaker):
        fn = await trip(breaker)

        assert await breaker.state_of("client-1") == CircuitState.OPEN

        with pytest.raises(GSCCircuitOpenError) as exc_info:
            await breaker.protect("client-1", fn)

        assert exc_info.value.retry_after_seconds == 300
        assert exc_info.value.failure_count == 5
        assert fn.await_count == 5  # rejected call never reached the provider

    @pytest.mark.asyncio
    async def test_retry_after_counts_down(self, breaker, clock):
        await trip(breaker)
        clock.advance(seconds=120)

        with pytest.raises(GSCCircuitOpenError) as exc_info:
            await breaker.protect("client-1", AsyncMock())

        assert exc_info.value.retry_after_seconds == 180

    @pytest.mark.asyncio
    async def test_retry_after_rounds_up(self, breaker, clock):
        await trip(breaker)
        clock.advance(seconds=299.5)

        with pytest.raises(GSCCircuitOpenError) as exc_info:
            await breaker.protect("client-1", AsyncMock())

        assert exc_info.value.retry_after_seconds == 1

    @pytest.mark.asyncio
    async def test_tenants_isolated(self, breaker):
        await trip(breaker, "client-1")

        result = await breaker.protect("client-2", AsyncMock(return_value="ok"))

        assert result == "ok"
        assert await breaker.state_of("client-2") == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_get_state_while_open(self, breaker, clock):
        await trip(breaker)
        opened_at = clock()
        clock.advance(seconds=60)

        state = await breaker.get_state("client-1")

        assert state["state"] == "open"
        assert state["is_open"] is True
        assert state["opened_at"] == opened_at.isoformat()
        assert state["retry_after_seconds"] == 240
        assert state["failure_threshold"] == 5
        assert state["reset_timeout_seconds"] == 300


class TestCircuitBreakerHalfOpen:
    """Test recovery after the reset timeout."""

    @pytest.mark.asyncio
    async def test_half_open_after_timeout(self, breaker, clock):
        await trip(breaker)
        clock.advance(seconds=300)

        assert await breaker.state_of("client-1") == CircuitState.HALF_OPEN

    @pytest.mark.asyncio
    async def test_trial_success_closes(self, breaker, clock):
        await trip(breaker)
        clock.advance(seconds=300)

        result = await breaker.protect("client-1", AsyncMock(return_value="recovered"))
        state = await breaker.get_state("client-1")

        assert result == "recovered"
        assert state["state"] == "closed"
        assert state["failure_count"] == 0
        assert state["opened_at"] is None

    @pytest.mark.asyncio
    async def test_single_trial_in_flight(self, breaker, clock):
        await trip(breaker)
        clock.advance(seconds=300)

        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_trial():
            started.set()
            await release.wait()
            return "recovered"

        trial = asyncio.create_task(breaker.protect("client-1", slow_trial))
        await started.wait()

        concurrent = AsyncMock(return_value="should not run")
        with pytest.raises(GSCCircuitOpenError) as exc_info:
            await breaker.protect("client-1", concurrent)

        assert exc_info.value.retry_after_seconds == 0
        concurrent.assert_not_awaited()

        release.set()
        assert await trial == "recovered"
        assert await breaker.state_of("client-1") == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_failed_trial_keeps_opened_at(self, breaker, clock):
        await trip(breaker)
        opened_at = clock()
        clock.advance(seconds=300)

        with pytest.raises(GSCProviderError):
            await breaker.protect("client-1", failing_call())

        state = await breaker.get_state("client-1")
        assert state["is_open"] is True
        assert state["failure_count"] == 6
        assert state["opened_at"] == opened_at.isoformat()
        assert state["trial_in_flight"] is False
        # Window was not restarted, so the next call is another trial
        assert state["state"] == "half_open"

    @pytest.mark.asyncio
    async def test_failed_trial_restarts_window_when_configured(self, clock):
        breaker = TenantCircuitBreaker(restart_window_on_trial_failure=True, clock=clock)
        await trip(breaker)
        clock.advance(seconds=300)

        with pytest.raises(GSCProviderError):
            await breaker.protect("client-1", failing_call())

        with pytest.raises(GSCCircuitOpenError) as exc_info:
            await breaker.protect("client-1", AsyncMock())

        assert exc_info.value.retry_after_seconds == 300
        assert await breaker.state_of("client-1") == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_cancelled_trial_releases_slot(self, breaker, clock):
        await trip(breaker)
        clock.advance(seconds=300)

        started = asyncio.Event()

        async def hanging_trial():
            started.set()
            await asyncio.Event().wait()

        trial = asyncio.create_task(breaker.protect("client-1", hanging_trial))
        await started.wait()
        trial.cancel()
        with pytest.raises(asyncio.CancelledError):
            await trial

        result = await breaker.protect("client-1", AsyncMock(return_value="ok"))
        assert result == "ok"


class TestExcludedExceptions:
    """Policy outcomes pass through without counting."""

    @pytest.mark.asyncio
    async def test_auth_and_quota_errors_not_counted(self, breaker):
        for _ in range(10):
            with pytest.raises(GSCAuthUnavailableError):
                await breaker.protect("client-1", AsyncMock(side_effect=GSCAuthUnavailableError("no token")))
            with pytest.raises(GSCQuotaExhaustedError):
                await breaker.protect("client-1", AsyncMock(side_effect=GSCQuotaExhaustedError()))

        state = await breaker.get_state("client-1")

        assert state["state"] == "closed"
        assert state["failure_count"] == 0

    @pytest.mark.asyncio
    async def test_excluded_error_during_trial_releases_slot(self, breaker, clock):
        await trip(breaker)
        clock.advance(seconds=300)

        with pytest.raises(GSCQuotaExhaustedError):
            await breaker.protect("client-1", AsyncMock(side_effect=GSCQuotaExhaustedError()))

        # The slot is free again and the breaker is still waiting for a real outcome
        assert await breaker.state_of("client-1") == CircuitState.HALF_OPEN
        assert await breaker.protect("client-1", AsyncMock(return_value="ok")) == "ok"


class TestCircuitBreakerAdmin:

    @pytest.mark.asyncio
    async def test_reset(self, breaker):
        await trip(breaker)

        await breaker.reset("client-1")

        assert await breaker.state_of("client-1") == CircuitState.CLOSED
        assert (await breaker.get_state("client-1"))["failure_count"] == 0

    @pytest.mark.asyncio
    async def test_injected_store(self, clock):
        store = InMemoryTenantStateStore()
        await store.save(CircuitBreakerState(
            tenant_id="client-1", failure_count=5, is_open=True, opened_at=clock()
        ))
        breaker = TenantCircuitBreaker(store=store, clock=clock)

        with pytest.raises(GSCCircuitOpenError):
            await breaker.protect("client-1", AsyncMock())

    @pytest.mark.asyncio
    async def test_custom_threshold(self, clock):
        breaker = TenantCircuitBreaker(failure_threshold=2, reset_timeout=60, clock=clock)
        await trip(breaker, failures=2)

        with pytest.raises(GSCCircuitOpenError) as exc_info:
            await breaker.protect("client-1", AsyncMock())

        assert exc_info.value.retry_after_seconds == 60

    def test_store_locks_released_when_idle(self):
        store = InMemoryTenantStateStore()

        lock = store.lock("client-1")
        assert store.lock("client-1") is lock

        del lock
        gc.collect()

        assert "client-1" not in store._locks
