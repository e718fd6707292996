"""
Search Console access facade.

Single entry point for every Search Console read. Each fetch goes through:

1. Cache lookup by endpoint signature (skipped on force refresh)
2. Per-tenant circuit breaker
3. Quota check and rate limit backoff
4. Token Manager (inside the protected call, on every attempt)
5. Provider call (real API or mock, fixed at construction)
6. Cache write

Callers see exactly one of GSCQuotaExhaustedError, GSCCircuitOpenError,
GSCProviderError or GSCAuthUnavailableError on failure. Cache store
problems degrade to a cache miss and are only logged.

Usage:

```python
facade = create_gsc_access_facade(async_session_maker, settings)
result = await facade.get_time_series("client-123", "sc-domain:example.com", date_range)
result.data          # [TimeSeriesPoint, ...]
result.cache_info    # from_cache, age_hours, is_stale, ...
```
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ...core.config import Settings
from ...models.gsc import utcnow
from ...monitoring.gsc_metrics import record_cache_lookup, record_provider_call, gsc_cache_writes_total
from .backoff import BackoffExecutor
from .cache import DEFAULT_CACHE_TTL_HOURS, GSCCacheStore, generate_endpoint_signature
from .circuit_breaker import TenantCircuitBreaker
from .comparison import calculate_overview_metrics
from .exceptions import (
    GSCAuthUnavailableError,
    GSCBaseException,
    GSCCacheUnavailableError,
    GSCCircuitOpenError,
    GSCProviderError,
    GSCQuotaExhaustedError,
)
from .gsc_client import GSCAPIClient, GSCProvider
from .mock_service import MockGSCProvider
from .oauth import GoogleOAuthClient
from .quota_tracker import GSCQuotaTracker
from .token_manager import TokenManager
from .token_store import GSCTokenStore
from .types import (
    CachedGSCResponse,
    CacheInfo,
    ClientCacheFreshness,
    DateRange,
    PageData,
    QueryData,
    SearchAnalyticsParams,
    TimeSeriesPoint,
    previous_period,
)

logger = logging.getLogger(__name__)

ENDPOINTS = ("search_analytics", "list_sites", "get_sitemaps", "inspect_url")


class GSCAccessFacade:
    """
    Resilient, cache-first access to Search Console data for many tenants.

    The provider strategy (real or mock) is chosen once at construction.
    In real mode a tenant without a usable token is served by
    fallback_provider when one is configured.
    """

    def __init__(
        self,
        provider: GSCProvider,
        cache_store: GSCCacheStore,
        quota_tracker: GSCQuotaTracker,
        circuit_breaker: TenantCircuitBreaker,
        backoff_executor: BackoffExecutor,
        token_manager: TokenManager,
        mock_mode: bool,
        fallback_provider: Optional[GSCProvider] = None,
        default_ttl_hours: float = DEFAULT_CACHE_TTL_HOURS,
    ):
        self.provider = provider
        self.cache_store = cache_store
        self.quota_tracker = quota_tracker
        self.circuit_breaker = circuit_breaker
        self.backoff_executor = backoff_executor
        self.token_manager = token_manager
        self.mock_mode = mock_mode
        self.fallback_provider = fallback_provider
        self.default_ttl_hours = default_ttl_hours

        logger.info(
            f"GSC access facade initialized: mock_mode={mock_mode}, "
            f"fallback={'enabled' if fallback_provider else 'disabled'}"
        )

    # ------------------------------------------------------------------
    # Core fetch
    # ------------------------------------------------------------------

    def _endpoint_fn(
        self, provider: GSCProvider, endpoint: str
    ) -> Callable[[Optional[str], Dict[str, Any]], Awaitable[Dict[str, Any]]]:
        return getattr(provider, endpoint)

    async def _call_provider(self, tenant_id: str, endpoint: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        One provider attempt. In real mode the token is fetched per attempt,
        so a long backoff never reuses a token that expired meanwhile.
        """
        if self.mock_mode:
            return await self._endpoint_fn(self.provider, endpoint)(None, params)

        token = await self.token_manager.get_valid_token(tenant_id)
        if token is None:
            raise GSCAuthUnavailableError(f"No valid GSC access token for client {tenant_id}")
        return await self._endpoint_fn(self.provider, endpoint)(token, params)

    async def _fetch_protected(self, tenant_id: str, endpoint: str, params: Dict[str, Any]) -> Dict[str, Any]:
        return await self.circuit_breaker.protect(
            tenant_id,
            lambda: self.backoff_executor.run(
                tenant_id,
                lambda: self._call_provider(tenant_id, endpoint, params),
                track_usage=not self.mock_mode,
            ),
        )

    async def fetch(
        self,
        tenant_id: str,
        endpoint: str,
        params: Union[SearchAnalyticsParams, Dict[str, Any], None] = None,
        ttl_hours: Optional[float] = None,
        force_refresh: bool = False,
    ) -> CachedGSCResponse:
        """
        Cache-first fetch of one provider endpoint.

        Args:
            tenant_id: Client ID
            endpoint: One of search_analytics, list_sites, get_sitemaps, inspect_url
            params: Request parameters
            ttl_hours: Cache TTL for a fresh result
            force_refresh: Skip the cache read

        Returns:
            CachedGSCResponse; cache_info.from_cache tells whether the
            provider was called

        Raises:
            GSCQuotaExhaustedError: Daily budget spent
            GSCCircuitOpenError: Tenant isolated after repeated failures
            GSCAuthUnavailableError: No token and no fallback provider
            GSCProviderError: Upstream failure (or retries exhausted)
        """
        if endpoint not in ENDPOINTS:
            raise ValueError(f"Unknown GSC endpoint: {endpoint}")

        if isinstance(params, SearchAnalyticsParams):
            request_params = params.to_request_params()
        else:
            request_params = dict(params or {})

        signature = generate_endpoint_signature(endpoint, request_params)

        if not force_refresh:
            try:
                cached = await self.cache_store.get(tenant_id, signature)
            except GSCCacheUnavailableError as e:
                record_cache_lookup("error")
                logger.warning(f"Cache read failed for client {tenant_id}, treating as miss: {e}")
            else:
                if cached is not None:
                    record_cache_lookup("hit")
                    return cached
                record_cache_lookup("miss")

        started = time.monotonic()
        try:
            data = await self._fetch_protected(tenant_id, endpoint, request_params)
        except GSCAuthUnavailableError:
            if self.fallback_provider is None:
                record_provider_call(endpoint, "auth_unavailable")
                raise
            logger.info(f"Client {tenant_id} has no valid GSC token, serving fallback data")
            data = await self._endpoint_fn(self.fallback_provider, endpoint)(None, request_params)
        except GSCQuotaExhaustedError:
            record_provider_call(endpoint, "quota_exhausted")
            raise
        except GSCCircuitOpenError:
            record_provider_call(endpoint, "circuit_open")
            raise
        except GSCProviderError as e:
            record_provider_call(
                endpoint, "rate_limited" if e.status_code == 429 else "error", time.monotonic() - started
            )
            logger.error(f"GSC {endpoint} failed for client {tenant_id}: {e}")
            raise
        except GSCBaseException as e:
            record_provider_call(endpoint, "error", time.monotonic() - started)
            logger.error(f"GSC {endpoint} failed for client {tenant_id}: {e}")
            raise GSCProviderError(str(e)) from e
        except Exception as e:
            record_provider_call(endpoint, "error", time.monotonic() - started)
            logger.error(f"Unexpected error fetching GSC {endpoint} for client {tenant_id}: {e}", exc_info=True)
            raise GSCProviderError(f"GSC {endpoint} failed: {e}") from e

        record_provider_call(endpoint, "success", time.monotonic() - started)

        ttl = ttl_hours if ttl_hours is not None else self.default_ttl_hours
        try:
            cache_info = await self.cache_store.put(tenant_id, signature, data, ttl_hours=ttl)
            gsc_cache_writes_total.labels(status="success").inc()
        except GSCCacheUnavailableError as e:
            gsc_cache_writes_total.labels(status="error").inc()
            logger.warning(f"Cache write failed for client {tenant_id}, continuing: {e}")
            cache_info = CacheInfo(from_cache=False, age_hours=0.0, is_stale=False, is_expiring=False)

        return CachedGSCResponse(data=data, cache_info=cache_info.model_copy(update={"from_cache": False}))

    # ------------------------------------------------------------------
    # High-level reads
    # ------------------------------------------------------------------

    async def get_search_analytics(
        self,
        tenant_id: str,
        params: SearchAnalyticsParams,
        force_refresh: bool = False,
    ) -> CachedGSCResponse:
        return await self.fetch(tenant_id, "search_analytics", params, force_refresh=force_refresh)

    async def get_time_series(
        self,
        tenant_id: str,
        site_url: str,
        date_range: DateRange,
        force_refresh: bool = False,
    ) -> CachedGSCResponse:
        """Daily clicks/impressions/CTR/position, sorted by date."""
        params = SearchAnalyticsParams(
            site_url=site_url,
            start_date=date_range.start_date,
            end_date=date_range.end_date,
            dimensions=["date"],
        )
        result = await self.get_search_analytics(tenant_id, params, force_refresh)
        points = sorted(
            (
                TimeSeriesPoint(
                    date=row["keys"][0],
                    clicks=row.get("clicks", 0),
                    impressions=row.get("impressions", 0),
                    ctr=row.get("ctr", 0),
                    position=row.get("position", 0),
                )
                for row in result.data.get("rows", [])
            ),
            key=lambda point: point.date,
        )
        return CachedGSCResponse(data=points, cache_info=result.cache_info)

    async def get_top_queries(
        self,
        tenant_id: str,
        site_url: str,
        date_range: DateRange,
        limit: int = 50,
        force_refresh: bool = False,
    ) -> CachedGSCResponse:
        params = SearchAnalyticsParams(
            site_url=site_url,
            start_date=date_range.start_date,
            end_date=date_range.end_date,
            dimensions=["query"],
            row_limit=limit,
        )
        result = await self.get_search_analytics(tenant_id, params, force_refresh)
        queries = [
            QueryData(
                query=row["keys"][0],
                clicks=row.get("clicks", 0),
                impressions=row.get("impressions", 0),
                ctr=row.get("ctr", 0),
                position=row.get("position", 0),
            )
            for row in result.data.get("rows", [])
        ]
        return CachedGSCResponse(data=queries, cache_info=result.cache_info)

    async def get_top_pages(
        self,
        tenant_id: str,
        site_url: str,
        date_range: DateRange,
        limit: int = 100,
        force_refresh: bool = False,
    ) -> CachedGSCResponse:
        params = SearchAnalyticsParams(
            site_url=site_url,
            start_date=date_range.start_date,
            end_date=date_range.end_date,
            dimensions=["page"],
            row_limit=limit,
        )
        result = await self.get_search_analytics(tenant_id, params, force_refresh)
        pages = [
            PageData(
                page=row["keys"][0],
                clicks=row.get("clicks", 0),
                impressions=row.get("impressions", 0),
                ctr=row.get("ctr", 0),
                position=row.get("position", 0),
            )
            for row in result.data.get("rows", [])
        ]
        return CachedGSCResponse(data=pages, cache_info=result.cache_info)

    async def get_overview_metrics(
        self,
        tenant_id: str,
        site_url: str,
        date_range: DateRange,
        force_refresh: bool = False,
    ) -> CachedGSCResponse:
        """
        Totals for date_range compared with the preceding period of equal
        length. Both periods are fetched concurrently; cache_info describes
        the current period.
        """
        current, previous = await asyncio.gather(
            self.get_time_series(tenant_id, site_url, date_range, force_refresh),
            self.get_time_series(tenant_id, site_url, previous_period(date_range), force_refresh),
        )
        return CachedGSCResponse(
            data=calculate_overview_metrics(current.data, previous.data),
            cache_info=current.cache_info,
        )

    async def list_sites(self, tenant_id: str, force_refresh: bool = False) -> CachedGSCResponse:
        return await self.fetch(tenant_id, "list_sites", {}, force_refresh=force_refresh)

    async def get_sitemaps(
        self, tenant_id: str, site_url: str, force_refresh: bool = False
    ) -> CachedGSCResponse:
        return await self.fetch(tenant_id, "get_sitemaps", {"siteUrl": site_url}, force_refresh=force_refresh)

    async def inspect_url(
        self, tenant_id: str, site_url: str, inspection_url: str, force_refresh: bool = False
    ) -> CachedGSCResponse:
        return await self.fetch(
            tenant_id,
            "inspect_url",
            {"siteUrl": site_url, "inspectionUrl": inspection_url},
            force_refresh=force_refresh,
        )

    # ------------------------------------------------------------------
    # Refresh and status
    # ------------------------------------------------------------------

    async def _freshness(self, tenant_id: str) -> ClientCacheFreshness:
        try:
            return await self.cache_store.freshness_for(tenant_id)
        except GSCCacheUnavailableError as e:
            logger.warning(f"Cache freshness unavailable for client {tenant_id}: {e}")
            return ClientCacheFreshness(has_cache=False, recommendation="Cache unavailable.")

    async def refresh(
        self, tenant_id: str, site_url: str, date_range: DateRange
    ) -> ClientCacheFreshness:
        """
        Drop the tenant's cache and re-fetch the dashboard datasets.

        Returns:
            Freshness after the refresh

        Raises:
            Same errors as fetch()
        """
        try:
            await self.cache_store.invalidate(tenant_id)
        except GSCCacheUnavailableError as e:
            logger.warning(f"Cache invalidation failed for client {tenant_id}: {e}")

        await asyncio.gather(
            self.get_time_series(tenant_id, site_url, date_range, force_refresh=True),
            self.get_top_queries(tenant_id, site_url, date_range, 50, force_refresh=True),
            self.get_top_pages(tenant_id, site_url, date_range, 100, force_refresh=True),
        )
        logger.info(f"Refreshed GSC data for client {tenant_id} ({site_url})")
        return await self._freshness(tenant_id)

    async def refresh_many(
        self, targets: Dict[str, str], date_range: DateRange
    ) -> Dict[str, Union[ClientCacheFreshness, GSCBaseException]]:
        """
        Refresh several tenants one after another, staggered.

        Args:
            targets: tenant_id -> site_url
            date_range: Range to refresh for every tenant

        Returns:
            tenant_id -> freshness, or the error that tenant's refresh raised
        """
        results: Dict[str, Union[ClientCacheFreshness, GSCBaseException]] = {}
        for index, (tenant_id, site_url) in enumerate(targets.items()):
            if index:
                await self.backoff_executor.stagger()
            try:
                results[tenant_id] = await self.refresh(tenant_id, site_url, date_range)
            except GSCBaseException as e:
                logger.warning(f"Batch refresh failed for client {tenant_id}: {e}")
                results[tenant_id] = e
        return results

    async def _status_section(self, tenant_id: str, name: str, coro: Awaitable[Any]) -> Optional[Dict[str, Any]]:
        try:
            return (await coro).to_response()
        except SQLAlchemyError as e:
            logger.warning(f"GSC {name} status unavailable for client {tenant_id}: {e}")
            return None

    async def get_status(self, tenant_id: str, site_url: Optional[str] = None) -> Dict[str, Any]:
        """
        Connection, cache, quota and breaker status for dashboards.

        A section whose store is unreachable is reported as None.
        """
        connection, freshness, quota, breaker = await asyncio.gather(
            self._status_section(tenant_id, "connection", self.token_manager.connection_status(tenant_id)),
            self._freshness(tenant_id),
            self._status_section(tenant_id, "quota", self.quota_tracker.check(tenant_id)),
            self.circuit_breaker.get_state(tenant_id),
        )
        return {
            "is_mock_mode": self.mock_mode,
            "site_url": site_url,
            "connection": connection,
            "cache": freshness.to_response(),
            "quota": quota,
            "circuit_breaker": breaker,
        }


def create_gsc_access_facade(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    clock: Callable[[], datetime] = utcnow,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> GSCAccessFacade:
    """
    Wire the access facade from configuration.

    Args:
        session_factory: Session factory for the cache, quota and token tables
        settings: Application settings
        clock: UTC clock shared by every component
        sleep: Coroutine used for backoff and cooldown waits
    """
    quota_tracker = GSCQuotaTracker(
        session_factory,
        daily_quota=settings.GSC_DAILY_QUOTA,
        threshold=settings.GSC_QUOTA_THRESHOLD,
        clock=clock,
    )
    oauth_client = GoogleOAuthClient(
        client_id=settings.GSC_CLIENT_ID,
        client_secret=settings.GSC_CLIENT_SECRET,
        redirect_uri=settings.gsc_redirect_uri,
        timeout=settings.GSC_REQUEST_TIMEOUT_SECONDS,
        clock=clock,
    )
    token_manager = TokenManager(
        GSCTokenStore(session_factory, clock=clock),
        oauth_client,
        state_secret=settings.OAUTH_STATE_SECRET,
        expiry_buffer_seconds=settings.GSC_TOKEN_EXPIRY_BUFFER_SECONDS,
        state_max_age_seconds=settings.OAUTH_STATE_MAX_AGE_SECONDS,
        clock=clock,
    )

    if settings.GSC_MOCK_MODE:
        provider: GSCProvider = MockGSCProvider()
        fallback = None
    else:
        provider = GSCAPIClient(timeout=settings.GSC_REQUEST_TIMEOUT_SECONDS)
        fallback = MockGSCProvider() if settings.GSC_FALLBACK_TO_MOCK else None

    return GSCAccessFacade(
        provider=provider,
        cache_store=GSCCacheStore(session_factory, clock=clock),
        quota_tracker=quota_tracker,
        circuit_breaker=TenantCircuitBreaker(
            failure_threshold=settings.GSC_CIRCUIT_FAILURE_THRESHOLD,
            reset_timeout=settings.GSC_CIRCUIT_RESET_TIMEOUT_SECONDS,
            restart_window_on_trial_failure=settings.GSC_CIRCUIT_RESTART_WINDOW_ON_TRIAL_FAILURE,
            clock=clock,
        ),
        backoff_executor=BackoffExecutor(
            quota_tracker,
            max_retries=settings.GSC_MAX_RETRIES,
            min_delay=settings.GSC_BACKOFF_MIN_DELAY_SECONDS,
            max_delay=settings.GSC_BACKOFF_MAX_DELAY_SECONDS,
            quota_cooldown=settings.GSC_QUOTA_COOLDOWN_SECONDS,
            stagger_delay=settings.GSC_STAGGER_DELAY_SECONDS,
            sleep=sleep,
        ),
        token_manager=token_manager,
        mock_mode=settings.GSC_MOCK_MODE,
        fallback_provider=fallback,
        default_ttl_hours=settings.GSC_CACHE_TTL_HOURS,
    )
