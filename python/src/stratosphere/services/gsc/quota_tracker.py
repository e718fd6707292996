"""
Daily API quota tracking for Search Console.

Tracks per-tenant, per-day call counts in api_quota_tracking.

Features:
- Read-only budget check with a safety threshold
- Atomic increments via INSERT ... ON CONFLICT DO UPDATE
- Implicit reset at UTC midnight (new row per calendar day)
- Usage history and retention cleanup for admin tooling
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Callable, Dict, List

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ...database import upsert_statement
from ...models.gsc import ApiQuotaTracking, utcnow
from .types import QuotaStatus

logger = logging.getLogger(__name__)


def next_utc_midnight(now: datetime) -> datetime:
    """Start of the next UTC calendar day."""
    tomorrow = now.astimezone(timezone.utc).date() + timedelta(days=1)
    return datetime.combine(tomorrow, time.min, tzinfo=timezone.utc)


class GSCQuotaTracker:
    """
    Per-tenant daily call budget.

    check() never mutates; track() is a single atomic statement so that
    concurrent increments are never lost.
    """

    DEFAULT_DAILY_QUOTA = 25000
    QUOTA_THRESHOLD = 10  # Reserve kept back from the daily budget

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        daily_quota: int = DEFAULT_DAILY_QUOTA,
        threshold: int = QUOTA_THRESHOLD,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self.daily_quota = daily_quota
        self.threshold = threshold
        self._clock = clock

    def _today(self) -> date:
        return self._clock().astimezone(timezone.utc).date()

    async def check(self, tenant_id: str, api_type: str = "GSC") -> QuotaStatus:
        """
        Current budget status for today.

        Args:
            tenant_id: Client ID
            api_type: API bucket (GSC, SERPER, GEMINI)

        Returns:
            QuotaStatus; a missing row means nothing has been used today
        """
        now = self._clock()
        async with self._session_factory() as session:
            result = await session.execute(
                select(ApiQuotaTracking).where(
                    ApiQuotaTracking.client_id == tenant_id,
                    ApiQuotaTracking.api_type == api_type,
                    ApiQuotaTracking.quota_date == self._today(),
                )
            )
            record = result.scalars().first()

        allocated = record.allocated_quota if record else self.daily_quota
        used = record.used_quota if record else 0
        reserved = record.reserved_quota if record else 0

        # can_proceed uses the raw value, which can be negative
        remaining = allocated - used - reserved

        return QuotaStatus(
            remaining=max(0, remaining),
            used=used,
            allocated=allocated,
            reserved=reserved,
            can_proceed=remaining >= self.threshold,
            next_reset_at=next_utc_midnight(now),
        )

    async def track(self, tenant_id: str, api_type: str = "GSC", count: int = 1) -> None:
        """
        Record completed calls against today's budget.

        Args:
            tenant_id: Client ID
            api_type: API bucket
            count: Number of calls to add
        """
        now = self._clock()
        async with self._session_factory() as session:
            stmt = upsert_statement(session, ApiQuotaTracking.__table__).values(
                client_id=tenant_id,
                api_type=api_type,
                quota_date=self._today(),
                allocated_quota=self.daily_quota,
                used_quota=count,
                reserved_quota=0,
                created_at=now,
                updated_at=now,
            )
            table = ApiQuotaTracking.__table__
            stmt = stmt.on_conflict_do_update(
                index_elements=["client_id", "api_type", "quota_date"],
                set_={
                    "used_quota": table.c.used_quota + stmt.excluded.used_quota,
                    "updated_at": stmt.excluded.updated_at,
                },
            )
            await session.execute(stmt)
            await session.commit()

        logger.debug(f"Tracked {count} {api_type} call(s) for client {tenant_id}")

    async def usage_history(
        self,
        tenant_id: str,
        api_type: str = "GSC",
        days: int = 7,
    ) -> List[Dict[str, Any]]:
        """Daily usage rows for the last `days` days, newest first."""
        since = self._today() - timedelta(days=days - 1)
        async with self._session_factory() as session:
            result = await session.execute(
                select(ApiQuotaTracking)
                .where(
                    ApiQuotaTracking.client_id == tenant_id,
                    ApiQuotaTracking.api_type == api_type,
                    ApiQuotaTracking.quota_date >= since,
                )
                .order_by(ApiQuotaTracking.quota_date.desc())
            )
            records = result.scalars().all()

        return [
            {
                "date": record.quota_date.isoformat(),
                "used": record.used_quota,
                "allocated": record.allocated_quota,
                "utilization_percent": round(
                    record.used_quota / record.allocated_quota * 100, 1
                ) if record.allocated_quota else 0.0,
            }
            for record in records
        ]

    async def cleanup_old_records(self, retention_days: int = 30) -> int:
        """
        Delete quota rows older than the retention window.

        Returns:
            Number of rows deleted
        """
        cutoff = self._today() - timedelta(days=retention_days)
        async with self._session_factory() as session:
            result = await session.execute(
                delete(ApiQuotaTracking).where(ApiQuotaTracking.quota_date < cutoff)
            )
            await session.commit()

        if result.rowcount:
            logger.info(f"Cleaned up {result.rowcount} quota records older than {cutoff}")
        return result.rowcount
