"""
Scheduled maintenance for the Search Console access layer.

Background jobs that:
1. Sweep expired rows from gsc_cache_logs (every CACHE_SWEEP_INTERVAL_MINUTES)
2. Prune api_quota_tracking rows older than QUOTA_RETENTION_DAYS (daily, 3 AM UTC)

Uses APScheduler for reliable background job execution.
"""

import logging
from typing import Any, Dict

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ...monitoring.gsc_metrics import gsc_cache_expired_rows_deleted_total
from ..gsc.cache import GSCCacheStore
from ..gsc.quota_tracker import GSCQuotaTracker

logger = logging.getLogger(__name__)


class GSCMaintenanceScheduler:
    """
    Periodic cleanup of cache and quota tables.

    Jobs are guarded with max_instances=1 so a slow sweep never overlaps
    the next run.
    """

    def __init__(
        self,
        cache_store: GSCCacheStore,
        quota_tracker: GSCQuotaTracker,
        sweep_interval_minutes: int = 60,
        quota_retention_days: int = 30,
    ):
        self.cache_store = cache_store
        self.quota_tracker = quota_tracker
        self.sweep_interval_minutes = sweep_interval_minutes
        self.quota_retention_days = quota_retention_days
        self.scheduler = AsyncIOScheduler()
        logger.info("GSCMaintenanceScheduler initialized")

    def start(self) -> None:
        """Schedule both jobs and start the scheduler."""
        self.scheduler.add_job(
            self.sweep_expired_cache,
            trigger=IntervalTrigger(minutes=self.sweep_interval_minutes),
            id="gsc_cache_sweep",
            name="GSC Cache Expiry Sweep",
            replace_existing=True,
            max_instances=1,
        )
        self.scheduler.add_job(
            self.prune_quota_records,
            trigger=CronTrigger(hour=3, minute=0, timezone="UTC"),
            id="gsc_quota_prune",
            name="GSC Quota Record Pruning",
            replace_existing=True,
            max_instances=1,
        )

        self.scheduler.start()
        logger.info(
            f"GSC maintenance scheduler started "
            f"(cache sweep every {self.sweep_interval_minutes}m, quota prune daily at 3 AM UTC)"
        )

    def stop(self) -> None:
        """Stop the scheduler."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("GSC maintenance scheduler stopped")

    async def sweep_expired_cache(self) -> int:
        """
        Delete expired cache rows.

        Returns:
            Rows deleted (0 if the sweep failed)
        """
        try:
            deleted = await self.cache_store.cleanup_expired()
        except Exception as e:
            logger.error(f"GSC cache sweep failed: {e}", exc_info=True)
            return 0

        gsc_cache_expired_rows_deleted_total.inc(deleted)
        return deleted

    async def prune_quota_records(self) -> int:
        """
        Delete quota rows past the retention window.

        Returns:
            Rows deleted (0 if pruning failed)
        """
        try:
            return await self.quota_tracker.cleanup_old_records(self.quota_retention_days)
        except Exception as e:
            logger.error(f"GSC quota pruning failed: {e}", exc_info=True)
            return 0

    async def run_all(self) -> Dict[str, Any]:
        """Run both jobs immediately (admin trigger)."""
        return {
            "cache_rows_deleted": await self.sweep_expired_cache(),
            "quota_rows_deleted": await self.prune_quota_records(),
        }
