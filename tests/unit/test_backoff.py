"""
Unit tests for the quota-aware backoff executor.

Verifies:
- Jittered exponential delay bounds
- Rate limit classification
- Retries on rate limits only
- Quota cooldown and exhaustion
"""

import logging
import random
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import httpx
import pytest

from stratosphere.services.gsc.backoff import (
    BackoffExecutor,
    compute_backoff_delay,
    is_rate_limit_error,
)
from stratosphere.services.gsc.exceptions import (
    GSCAuthUnavailableError,
    GSCCircuitOpenError,
    GSCProviderError,
    GSCQuotaExhaustedError,
    GSCRateLimitError,
)
from stratosphere.services.gsc.quota_tracker import GSCQuotaTracker
from stratosphere.services.gsc.types import QuotaStatus

RESET_AT = datetime(2026, 3, 11, tzinfo=timezone.utc)


def quota_status(remaining: int, threshold: int = 10) -> QuotaStatus:
    return QuotaStatus(
        remaining=max(0, remaining),
        used=25000 - remaining,
        allocated=25000,
        can_proceed=remaining >= threshold,
        next_reset_at=RESET_AT,
    )


@pytest.fixture
def mock_quota_tracker():
    """Quota tracker with plenty of budget."""
    tracker = AsyncMock()
    tracker.check = AsyncMock(return_value=quota_status(20000))
    tracker.track = AsyncMock(return_value=None)
    return tracker


@pytest.fixture
def executor(mock_quota_tracker, sleep):
    return BackoffExecutor(mock_quota_tracker, sleep=sleep, rng=random.Random(42))


class TestComputeBackoffDelay:
    """Test delay bounds."""

    @pytest.mark.parametrize("attempt", range(6))
    def test_delay_within_jitter_bounds(self, attempt):
        rng = random.Random(attempt)
        base = 60 * 2 ** attempt

        for _ in range(50):
            delay = compute_backoff_delay(attempt, 60, 3600, rng)
            assert base * 0.9 <= delay <= min(3600, base * 1.1)

    def test_delay_capped_at_max(self):
        rng = random.Random(7)

        for attempt in range(7, 12):
            assert compute_backoff_delay(attempt, 60, 3600, rng) == 3600

    def test_first_retry_around_one_minute(self):
        delay = compute_backoff_delay(0, rng=random.Random(1))
        assert 54 <= delay <= 66


class TestIsRateLimitError:
    """Test rate limit detection."""

    def test_rate_limit_error(self):
        assert is_rate_limit_error(GSCRateLimitError()) is True

    def test_status_code_429(self):
        assert is_rate_limit_error(GSCProviderError("slow down", status_code=429)) is True

    def test_http_response_429(self):
        request = httpx.Request("POST", "https://searchconsole.googleapis.com/")
        response = httpx.Response(429, request=request)
        error = httpx.HTTPStatusError("upstream said no", request=request, response=response)

        assert is_rate_limit_error(error) is True

    @pytest.mark.parametrize(
        "message",
        [
            "Rate limit exceeded",
            "Quota exceeded for quota metric 'Queries'",
            "Too Many Requests",
        ],
    )
    def test_message_markers(self, message):
        assert is_rate_limit_error(Exception(message)) is True

    def test_other_errors(self):
        assert is_rate_limit_error(GSCProviderError("Forbidden", status_code=403)) is False
        assert is_rate_limit_error(ValueError("bad site url")) is False

    def test_status_digits_in_message_ignored(self):
        assert is_rate_limit_error(GSCProviderError("Invalid rowLimit 4290", status_code=400)) is False
        assert is_rate_limit_error(Exception("HTTP 429")) is False

    def test_provider_quota_message(self):
        error = GSCProviderError("Quota exceeded for quota metric 'Queries'", status_code=403)

        assert is_rate_limit_error(error) is True

    def test_access_layer_errors_never_retry(self):
        assert is_rate_limit_error(
            GSCAuthUnavailableError("No valid GSC access token for client acct-f4291c")
        ) is False
        assert is_rate_limit_error(GSCQuotaExhaustedError("GSC API quota exhausted")) is False
        assert is_rate_limit_error(GSCCircuitOpenError("Rate limited upstream", retry_after_seconds=30)) is False


class TestBackoffExecutor:
    """Test retry behaviour."""

    @pytest.mark.asyncio
    async def test_success_first_try(self, executor, mock_quota_tracker, sleep):
        fn = AsyncMock(return_value={"rows": []})

        result = await executor.run("client-1", fn)

        assert result == {"rows": []}
        assert fn.await_count == 1
        assert sleep.calls == []
        mock_quota_tracker.track.assert_awaited_once_with("client-1", count=1)

    @pytest.mark.asyncio
    async def test_retries_rate_limit_then_succeeds(self, executor, mock_quota_tracker, sleep):
        fn = AsyncMock(side_effect=[GSCRateLimitError(), GSCRateLimitError(), {"rows": [1]}])

        result = await executor.run("client-1", fn)

        assert result == {"rows": [1]}
        assert fn.await_count == 3
        assert len(sleep.calls) == 2
        assert 54 <= sleep.calls[0] <= 66
        assert 108 <= sleep.calls[1] <= 132
        mock_quota_tracker.track.assert_awaited_once_with("client-1", count=1)

    @pytest.mark.asyncio
    async def test_retries_exhausted_reraises(self, executor, mock_quota_tracker, sleep):
        fn = AsyncMock(side_effect=GSCRateLimitError("GSC API rate limit exceeded"))

        with pytest.raises(GSCRateLimitError):
            await executor.run("client-1", fn)

        assert fn.await_count == 6  # first try + 5 retries
        assert len(sleep.calls) == 5
        assert sleep.calls[-1] <= 3600
        mock_quota_tracker.track.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_non_rate_limit_error_not_retried(self, executor, sleep):
        fn = AsyncMock(side_effect=GSCProviderError("Forbidden", status_code=403))

        with pytest.raises(GSCProviderError):
            await executor.run("client-1", fn)

        assert fn.await_count == 1
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_lambda_returning_coroutine(self, executor, mock_quota_tracker):
        async def call():
            return {"rows": [1]}

        result = await executor.run("client-1", lambda: call())

        assert result == {"rows": [1]}
        mock_quota_tracker.track.assert_awaited_once_with("client-1", count=1)

    @pytest.mark.asyncio
    async def test_coroutine_function_retried(self, executor, sleep):
        attempts = []

        async def call():
            attempts.append(1)
            if len(attempts) < 2:
                raise GSCRateLimitError()
            return {"rows": [2]}

        result = await executor.run("client-1", call)

        assert result == {"rows": [2]}
        assert len(attempts) == 2
        assert len(sleep.calls) == 1

    @pytest.mark.asyncio
    async def test_auth_error_with_digits_not_retried(self, executor, mock_quota_tracker, sleep):
        attempts = []

        async def call():
            attempts.append(1)
            raise GSCAuthUnavailableError("No valid GSC access token for client acct-f4291c")

        with pytest.raises(GSCAuthUnavailableError):
            await executor.run("client-1", lambda: call())

        assert len(attempts) == 1
        assert sleep.calls == []
        mock_quota_tracker.track.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_bad_request_with_digits_not_retried(self, executor, sleep):
        fn = AsyncMock(side_effect=GSCProviderError("Invalid rowLimit 4290", status_code=400))

        with pytest.raises(GSCProviderError):
            await executor.run("client-1", fn)

        assert fn.await_count == 1
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_track_usage_disabled(self, executor, mock_quota_tracker):
        await executor.run("client-1", AsyncMock(return_value={}), track_usage=False)

        mock_quota_tracker.track.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_usage_count(self, executor, mock_quota_tracker):
        await executor.run("client-1", AsyncMock(return_value={}), usage_count=3)

        mock_quota_tracker.track.assert_awaited_once_with("client-1", count=3)

    @pytest.mark.asyncio
    async def test_tracking_failure_logged_not_raised(self, executor, mock_quota_tracker, caplog):
        mock_quota_tracker.track.side_effect = RuntimeError("database is locked")

        with caplog.at_level(logging.ERROR):
            result = await executor.run("client-1", AsyncMock(return_value={"rows": []}))

        assert result == {"rows": []}
        assert "Failed to record quota usage for client client-1" in caplog.text

    @pytest.mark.asyncio
    async def test_stagger(self, executor, sleep):
        await executor.stagger()

        assert sleep.calls == [2.0]


class TestQuotaGate:
    """Test quota checks before the call."""

    @pytest.mark.asyncio
    async def test_cooldown_then_proceeds(self, executor, mock_quota_tracker, sleep):
        mock_quota_tracker.check.side_effect = [quota_status(5), quota_status(40)]
        fn = AsyncMock(return_value={"rows": []})

        result = await executor.run("client-1", fn)

        assert result == {"rows": []}
        assert sleep.calls == [300.0]
        assert mock_quota_tracker.check.await_count == 2

    @pytest.mark.asyncio
    async def test_cooldown_then_exhausted(self, executor, mock_quota_tracker, sleep):
        mock_quota_tracker.check.side_effect = [quota_status(5), quota_status(5)]
        fn = AsyncMock(return_value={"rows": []})

        with pytest.raises(GSCQuotaExhaustedError) as exc_info:
            await executor.run("client-1", fn)

        assert exc_info.value.next_reset_at == RESET_AT
        assert exc_info.value.remaining == 5
        assert sleep.calls == [300.0]
        fn.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_daily_budget_scenario(self, session_factory, clock, sleep):
        """24995 of 25000 used with threshold 10: cool down once, then give up."""
        tracker = GSCQuotaTracker(session_factory, daily_quota=25000, threshold=10, clock=clock)
        await tracker.track("client-1", count=24995)
        executor = BackoffExecutor(tracker, sleep=sleep)
        fn = AsyncMock(return_value={"rows": []})

        with pytest.raises(GSCQuotaExhaustedError) as exc_info:
            await executor.run("client-1", fn)

        assert sleep.calls == [300.0]
        assert exc_info.value.remaining == 5
        assert exc_info.value.next_reset_at == datetime(2026, 3, 11, tzinfo=timezone.utc)
        fn.assert_not_awaited()
        assert (await tracker.check("client-1")).used == 24995
