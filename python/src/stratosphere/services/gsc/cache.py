"""
Search Console response cache backed by the gsc_cache_logs table.

Features:
- Deterministic endpoint signatures (key order never changes the hash)
- 24-hour TTL with stale (>12h) and expiring (>20h) classification
- Upsert on (client_id, endpoint_signature)
- Tenant-wide freshness summary for the "last sync" indicator
- Expired-row sweep for the maintenance scheduler

Reads only ever return non-expired rows; expired rows are left in place
until the sweep removes them.
"""

import hashlib
import json
import logging
from datetime import date, datetime, timedelta
from typing import Any, Callable, List, Optional

from pydantic import BaseModel
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ...database import upsert_statement
from ...models.gsc import GSCCacheLog, ensure_utc, utcnow
from .exceptions import GSCCacheUnavailableError
from .types import CacheEntrySummary, CachedGSCResponse, CacheInfo, ClientCacheFreshness

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL_HOURS = 24
STALE_THRESHOLD_HOURS = 12
EXPIRING_THRESHOLD_HOURS = 20


def normalize_params(value: Any) -> Any:
    """Recursively normalise request params into JSON-stable values."""
    if isinstance(value, BaseModel):
        return normalize_params(value.model_dump(exclude_none=True))
    if isinstance(value, dict):
        return {str(k): normalize_params(value[k]) for k in sorted(value, key=str)}
    if isinstance(value, (list, tuple)):
        return [normalize_params(item) for item in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def generate_endpoint_signature(endpoint: str, params: Any) -> str:
    """
    Cache key for an endpoint call.

    Args:
        endpoint: Provider endpoint name (e.g. "search_analytics")
        params: Request parameters (dict or pydantic model)

    Returns:
        32-char hex digest of the normalised request
    """
    payload = json.dumps(
        {"endpoint": endpoint, "params": normalize_params(params)},
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:32]


def calculate_cache_info(
    cached_at: Optional[datetime],
    expires_at: Optional[datetime],
    now: Optional[datetime] = None,
) -> CacheInfo:
    """
    Classify the freshness of a cached payload.

    Thresholds are strict: an entry exactly 12.0h old is not stale. The
    comparison uses the unrounded age; only the reported age is rounded.
    """
    if cached_at is None:
        return CacheInfo(from_cache=False, age_hours=0.0, is_stale=True, is_expiring=True)

    now = now or utcnow()
    cached_at = ensure_utc(cached_at)
    age_hours = max(0.0, (now - cached_at).total_seconds() / 3600)

    return CacheInfo(
        from_cache=True,
        cached_at=cached_at,
        expires_at=ensure_utc(expires_at),
        age_hours=round(age_hours, 1),
        is_stale=age_hours > STALE_THRESHOLD_HOURS,
        is_expiring=age_hours > EXPIRING_THRESHOLD_HOURS,
    )


def get_freshness_message(cache_info: CacheInfo) -> Optional[str]:
    """User-facing warning for old data, or None when no warning applies."""
    if not cache_info.from_cache:
        return None
    if cache_info.is_expiring:
        return (
            f"Warning: Data approaching expiration ({cache_info.age_hours:.1f}h old). "
            "Refresh recommended."
        )
    if cache_info.is_stale:
        return (
            f"Data is {cache_info.age_hours:.1f}h old. "
            "Consider refreshing for critical decisions."
        )
    return None


def get_freshness_color(cache_info: CacheInfo) -> str:
    """Indicator band: green, yellow or red."""
    if not cache_info.from_cache or cache_info.is_expiring:
        return "red"
    if cache_info.is_stale:
        return "yellow"
    return "green"


def _derive_row_count(payload: Any) -> Optional[int]:
    if isinstance(payload, list):
        return len(payload)
    if isinstance(payload, dict) and isinstance(payload.get("rows"), list):
        return len(payload["rows"])
    return None


class GSCCacheStore:
    """
    Durable cache of Search Console responses keyed by (client, signature).

    Every operation opens its own short-lived session. Database failures are
    raised as GSCCacheUnavailableError; the access facade decides whether to
    degrade.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._clock = clock

    async def get(self, tenant_id: str, signature: str) -> Optional[CachedGSCResponse]:
        """
        Return the non-expired entry, if any.

        Args:
            tenant_id: Client ID
            signature: Endpoint signature

        Returns:
            CachedGSCResponse with from_cache=True, or None on a miss

        Raises:
            GSCCacheUnavailableError: If the cache table cannot be read
        """
        now = self._clock()
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(GSCCacheLog).where(
                        GSCCacheLog.client_id == tenant_id,
                        GSCCacheLog.endpoint_signature == signature,
                        GSCCacheLog.expires_at > now,
                    )
                )
                entry = result.scalars().first()
        except SQLAlchemyError as e:
            raise GSCCacheUnavailableError(f"Cache read failed: {e}") from e

        if entry is None:
            logger.debug(f"Cache miss: client={tenant_id} signature={signature}")
            return None

        logger.debug(f"Cache hit: client={tenant_id} signature={signature}")
        return CachedGSCResponse(
            data=entry.data_payload,
            cache_info=calculate_cache_info(entry.created_at, entry.expires_at, now),
        )

    async def put(
        self,
        tenant_id: str,
        signature: str,
        payload: Any,
        row_count: Optional[int] = None,
        ttl_hours: float = DEFAULT_CACHE_TTL_HOURS,
    ) -> CacheInfo:
        """
        Insert or replace the entry for (tenant, signature).

        Returns:
            CacheInfo describing the fresh entry (age 0)

        Raises:
            GSCCacheUnavailableError: If the write fails
        """
        now = self._clock()
        expires_at = now + timedelta(hours=ttl_hours)
        if row_count is None:
            row_count = _derive_row_count(payload)

        try:
            async with self._session_factory() as session:
                stmt = upsert_statement(session, GSCCacheLog.__table__).values(
                    client_id=tenant_id,
                    endpoint_signature=signature,
                    data_payload=payload,
                    row_count=row_count,
                    created_at=now,
                    expires_at=expires_at,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=["client_id", "endpoint_signature"],
                    set_={
                        "data_payload": stmt.excluded.data_payload,
                        "row_count": stmt.excluded.row_count,
                        "created_at": stmt.excluded.created_at,
                        "expires_at": stmt.excluded.expires_at,
                    },
                )
                await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as e:
            raise GSCCacheUnavailableError(f"Cache write failed: {e}") from e

        logger.debug(
            f"Cached response: client={tenant_id} signature={signature} "
            f"rows={row_count} ttl={ttl_hours}h"
        )
        return calculate_cache_info(now, expires_at, now)

    async def invalidate(self, tenant_id: str, signature: Optional[str] = None) -> int:
        """
        Delete one entry, or every entry for the tenant.

        Returns:
            Number of rows deleted
        """
        stmt = delete(GSCCacheLog).where(GSCCacheLog.client_id == tenant_id)
        if signature is not None:
            stmt = stmt.where(GSCCacheLog.endpoint_signature == signature)

        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as e:
            raise GSCCacheUnavailableError(f"Cache invalidation failed: {e}") from e

        logger.info(
            f"Invalidated {result.rowcount} cache entries for client {tenant_id}"
            + (f" (signature={signature})" if signature else "")
        )
        return result.rowcount

    async def freshness_for(self, tenant_id: str) -> ClientCacheFreshness:
        """Freshness of the tenant's most recent non-expired entry."""
        now = self._clock()
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(GSCCacheLog.created_at)
                    .where(
                        GSCCacheLog.client_id == tenant_id,
                        GSCCacheLog.expires_at > now,
                    )
                    .order_by(GSCCacheLog.created_at.desc())
                    .limit(1)
                )
                last_sync = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise GSCCacheUnavailableError(f"Cache freshness lookup failed: {e}") from e

        if last_sync is None:
            return ClientCacheFreshness(
                has_cache=False,
                recommendation="No cached data. Sync required.",
            )

        info = calculate_cache_info(last_sync, None, now)
        if info.is_expiring:
            recommendation = "Data approaching expiration. Refresh recommended."
        elif info.is_stale:
            recommendation = "Data is stale. Consider refreshing for critical decisions."
        else:
            recommendation = "Data is fresh."

        return ClientCacheFreshness(
            has_cache=True,
            last_sync=info.cached_at,
            hours_old=info.age_hours,
            is_stale=info.is_stale,
            is_expiring=info.is_expiring,
            recommendation=recommendation,
        )

    async def list_entries(self, tenant_id: str) -> List[CacheEntrySummary]:
        """All cache entries for a tenant, newest first (expired included)."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(GSCCacheLog)
                    .where(GSCCacheLog.client_id == tenant_id)
                    .order_by(GSCCacheLog.created_at.desc())
                )
                entries = result.scalars().all()
        except SQLAlchemyError as e:
            raise GSCCacheUnavailableError(f"Cache listing failed: {e}") from e

        return [
            CacheEntrySummary(
                endpoint_signature=entry.endpoint_signature,
                created_at=ensure_utc(entry.created_at),
                expires_at=ensure_utc(entry.expires_at),
                row_count=entry.row_count,
            )
            for entry in entries
        ]

    async def cleanup_expired(self) -> int:
        """
        Delete all expired rows across tenants.

        Returns:
            Number of rows deleted
        """
        now = self._clock()
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    delete(GSCCacheLog).where(GSCCacheLog.expires_at <= now)
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise GSCCacheUnavailableError(f"Cache cleanup failed: {e}") from e

        if result.rowcount:
            logger.info(f"Removed {result.rowcount} expired cache entries")
        return result.rowcount
