"""
Unit tests for the cache and quota maintenance scheduler.
"""

import asyncio
import logging
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from stratosphere.services.gsc.cache import GSCCacheStore
from stratosphere.services.gsc.exceptions import GSCCacheUnavailableError
from stratosphere.services.gsc.quota_tracker import GSCQuotaTracker
from stratosphere.services.scheduler import GSCMaintenanceScheduler


@pytest.fixture
def mock_cache_store():
    store = AsyncMock()
    store.cleanup_expired = AsyncMock(return_value=3)
    return store


@pytest.fixture
def mock_quota_tracker():
    tracker = AsyncMock()
    tracker.cleanup_old_records = AsyncMock(return_value=2)
    return tracker


class TestMaintenanceJobs:

    @pytest.mark.asyncio
    async def test_sweep_expired_cache(self, mock_cache_store, mock_quota_tracker):
        scheduler = GSCMaintenanceScheduler(mock_cache_store, mock_quota_tracker)

        assert await scheduler.sweep_expired_cache() == 3
        mock_cache_store.cleanup_expired.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_sweep_failure_logged(self, mock_cache_store, mock_quota_tracker, caplog):
        mock_cache_store.cleanup_expired.side_effect = GSCCacheUnavailableError("Cache cleanup failed")
        scheduler = GSCMaintenanceScheduler(mock_cache_store, mock_quota_tracker)

        with caplog.at_level(logging.ERROR):
            assert await scheduler.sweep_expired_cache() == 0

        assert "GSC cache sweep failed" in caplog.text

    @pytest.mark.asyncio
    async def test_prune_uses_retention(self, mock_cache_store, mock_quota_tracker):
        scheduler = GSCMaintenanceScheduler(mock_cache_store, mock_quota_tracker, quota_retention_days=14)

        assert await scheduler.prune_quota_records() == 2
        mock_quota_tracker.cleanup_old_records.assert_awaited_once_with(14)

    @pytest.mark.asyncio
    async def test_prune_failure_logged(self, mock_cache_store, mock_quota_tracker):
        mock_quota_tracker.cleanup_old_records.side_effect = OperationalError("DELETE", {}, Exception("locked"))
        scheduler = GSCMaintenanceScheduler(mock_cache_store, mock_quota_tracker)

        assert await scheduler.prune_quota_records() == 0

    @pytest.mark.asyncio
    async def test_run_all(self, mock_cache_store, mock_quota_tracker):
        scheduler = GSCMaintenanceScheduler(mock_cache_store, mock_quota_tracker)

        assert await scheduler.run_all() == {"cache_rows_deleted": 3, "quota_rows_deleted": 2}

    @pytest.mark.asyncio
    async def test_run_all_against_database(self, session_factory, clock):
        cache_store = GSCCacheStore(session_factory, clock=clock)
        quota_tracker = GSCQuotaTracker(session_factory, clock=clock)
        await cache_store.put("client-1", "sig-a", {"rows": []}, ttl_hours=1)
        await quota_tracker.track("client-1")
        clock.advance(days=31)

        scheduler = GSCMaintenanceScheduler(cache_store, quota_tracker)

        assert await scheduler.run_all() == {"cache_rows_deleted": 1, "quota_rows_deleted": 1}


class TestScheduling:

    @pytest.mark.asyncio
    async def test_start_registers_jobs(self, mock_cache_store, mock_quota_tracker):
        scheduler = GSCMaintenanceScheduler(mock_cache_store, mock_quota_tracker, sweep_interval_minutes=15)

        scheduler.start()
        try:
            jobs = {job.id: job for job in scheduler.scheduler.get_jobs()}

            assert set(jobs) == {"gsc_cache_sweep", "gsc_quota_prune"}
            assert jobs["gsc_cache_sweep"].trigger.interval.total_seconds() == 15 * 60
            assert jobs["gsc_cache_sweep"].max_instances == 1
        finally:
            scheduler.stop()

        # AsyncIOScheduler completes shutdown on the next loop iteration
        await asyncio.sleep(0)
        assert scheduler.scheduler.running is False

    def test_stop_when_not_started(self, mock_cache_store, mock_quota_tracker):
        scheduler = GSCMaintenanceScheduler(mock_cache_store, mock_quota_tracker)

        scheduler.stop()
