"""
Search Console API endpoints.

Provides:
- GET /gsc/status - Connection, cache freshness, quota and breaker status
- POST /gsc/refresh - Invalidate and re-fetch a client's dashboard data
- GET /gsc/analytics - Overview, time series, top queries or top pages
- GET /gsc/oauth/connect - Redirect to Google's consent screen
- GET /gsc/oauth/callback - Complete the OAuth flow
- POST /gsc/disconnect - Forget a client's tokens

Access-layer errors map to HTTP as:
- GSCQuotaExhaustedError → 429 with Retry-After
- GSCCircuitOpenError → 503 with Retry-After
- GSCAuthUnavailableError → 409
- GSCProviderError → 502

User → client authorisation is enforced upstream by the auth layer.
"""

import logging
import math
from datetime import date
from typing import Any, Dict, Literal, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, Field

from ...core.config import Settings, settings as app_settings
from ...models.gsc import utcnow
from ...services.gsc.access_facade import GSCAccessFacade
from ...services.gsc.exceptions import (
    GSCAuthUnavailableError,
    GSCBaseException,
    GSCCacheUnavailableError,
    GSCCircuitOpenError,
    GSCOAuthError,
    GSCQuotaExhaustedError,
)
from ...services.gsc.types import DateRange, get_date_range_from_preset

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/gsc", tags=["gsc"])


def get_gsc_facade(request: Request) -> GSCAccessFacade:
    """Access facade built once at startup (shared breaker state)."""
    return request.app.state.gsc_facade


def get_settings() -> Settings:
    return app_settings


def gsc_error_to_http(error: GSCBaseException) -> HTTPException:
    """Translate an access-layer error into an HTTP error."""
    if isinstance(error, GSCQuotaExhaustedError):
        retry_after = 0
        if error.next_reset_at is not None:
            retry_after = max(0, math.ceil((error.next_reset_at - utcnow()).total_seconds()))
        return HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "error": str(error),
                "remaining": error.remaining,
                "next_reset_at": error.next_reset_at.isoformat() if error.next_reset_at else None,
            },
            headers={"Retry-After": str(retry_after)},
        )

    if isinstance(error, GSCCircuitOpenError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "error": str(error),
                "retry_after_seconds": error.retry_after_seconds,
            },
            headers={"Retry-After": str(error.retry_after_seconds)},
        )

    if isinstance(error, GSCAuthUnavailableError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error": str(error), "action": "connect_gsc"},
        )

    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail={"error": "Failed to fetch GSC data", "details": str(error)},
    )


def _resolve_date_range(
    preset: Optional[str], start_date: Optional[date], end_date: Optional[date]
) -> DateRange:
    if preset:
        return get_date_range_from_preset(preset)
    if start_date and end_date:
        if end_date < start_date:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="end_date must not be before start_date",
            )
        return DateRange(start_date=start_date, end_date=end_date)
    return get_date_range_from_preset("28d")


class RefreshRequest(BaseModel):
    """Request model for a manual refresh."""

    client_id: str = Field(description="Client ID")
    site_url: str = Field(description="Search Console property (e.g. sc-domain:example.com)")
    preset: Literal["7d", "14d", "28d", "90d", "custom"] = Field(default="28d")


class DisconnectRequest(BaseModel):
    client_id: str


@router.get("/status", summary="GSC status for a client")
async def get_gsc_status(
    client_id: str = Query(..., description="Client ID"),
    site_url: Optional[str] = Query(default=None),
    facade: GSCAccessFacade = Depends(get_gsc_facade),
) -> Dict[str, Any]:
    """Connection, cache freshness, quota and circuit breaker state."""
    return await facade.get_status(client_id, site_url)


@router.post("/refresh", summary="Force refresh a client's GSC data")
async def refresh_gsc_data(
    body: RefreshRequest,
    facade: GSCAccessFacade = Depends(get_gsc_facade),
) -> Dict[str, Any]:
    date_range = get_date_range_from_preset(body.preset)
    try:
        freshness = await facade.refresh(body.client_id, body.site_url, date_range)
    except GSCBaseException as e:
        raise gsc_error_to_http(e) from e

    return {
        "success": True,
        "message": "GSC data refreshed",
        "freshness": freshness.to_response(),
        "date_range": jsonable_encoder(date_range),
    }


@router.get("/analytics", summary="Fetch GSC analytics")
async def get_gsc_analytics(
    client_id: str = Query(..., description="Client ID"),
    site_url: str = Query(..., description="Search Console property"),
    data_type: Literal["overview", "timeseries", "queries", "pages"] = Query(
        default="overview", alias="type"
    ),
    preset: Optional[Literal["7d", "14d", "28d", "90d", "custom"]] = Query(default=None),
    start_date: Optional[date] = Query(default=None),
    end_date: Optional[date] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=25000),
    force_refresh: bool = Query(default=False),
    facade: GSCAccessFacade = Depends(get_gsc_facade),
) -> Dict[str, Any]:
    """
    Cache-first analytics read.

    The response carries cache_info so the dashboard can show how old the
    data is.
    """
    date_range = _resolve_date_range(preset, start_date, end_date)

    try:
        if data_type == "overview":
            result = await facade.get_overview_metrics(client_id, site_url, date_range, force_refresh)
        elif data_type == "timeseries":
            result = await facade.get_time_series(client_id, site_url, date_range, force_refresh)
        elif data_type == "queries":
            result = await facade.get_top_queries(client_id, site_url, date_range, limit, force_refresh)
        else:
            result = await facade.get_top_pages(client_id, site_url, date_range, limit, force_refresh)
    except GSCBaseException as e:
        raise gsc_error_to_http(e) from e

    return {
        "data": jsonable_encoder(result.data),
        "cache_info": result.cache_info.to_response(),
        "date_range": jsonable_encoder(date_range),
        "site_url": site_url,
    }


@router.get("/oauth/connect", summary="Start the GSC OAuth flow")
async def connect_gsc(
    client_id: str = Query(..., description="Client ID"),
    return_url: Optional[str] = Query(default=None),
    facade: GSCAccessFacade = Depends(get_gsc_facade),
) -> RedirectResponse:
    if return_url and (not return_url.startswith("/") or return_url.startswith("//")):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="return_url must be an app-relative path",
        )

    try:
        url = facade.token_manager.authorization_url(client_id, return_url)
    except GSCOAuthError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="GSC OAuth not configured. Using mock data mode.",
        ) from e

    logger.info(f"Starting GSC OAuth flow for client {client_id}")
    return RedirectResponse(url, status_code=status.HTTP_307_TEMPORARY_REDIRECT)


@router.get("/oauth/callback", summary="Complete the GSC OAuth flow")
async def gsc_oauth_callback(
    code: Optional[str] = Query(default=None),
    state: Optional[str] = Query(default=None),
    error: Optional[str] = Query(default=None),
    error_description: Optional[str] = Query(default=None),
    facade: GSCAccessFacade = Depends(get_gsc_facade),
    settings: Settings = Depends(get_settings),
) -> RedirectResponse:
    base_url = settings.APP_URL.rstrip("/")

    def error_redirect(message: str) -> RedirectResponse:
        return RedirectResponse(
            f"{base_url}/clients?{urlencode({'gsc_error': message})}",
            status_code=status.HTTP_303_SEE_OTHER,
        )

    if error:
        logger.error(f"GSC OAuth error: {error} {error_description or ''}")
        return error_redirect(error_description or error)

    if not code or not state:
        return error_redirect("Missing required OAuth parameters")

    try:
        client_id, return_url = await facade.token_manager.complete_authorization(code, state)
    except GSCOAuthError as e:
        logger.warning(f"GSC OAuth callback failed: {e}")
        return error_redirect(str(e))

    # Anything cached before the connection came from the fallback provider
    try:
        await facade.cache_store.invalidate(client_id)
    except GSCCacheUnavailableError as e:
        logger.warning(f"Could not clear cache after connecting client {client_id}: {e}")

    separator = "&" if "?" in return_url else "?"
    return RedirectResponse(
        f"{base_url}{return_url}{separator}gsc_connected=true",
        status_code=status.HTTP_303_SEE_OTHER,
    )


@router.post("/disconnect", summary="Disconnect GSC for a client")
async def disconnect_gsc(
    body: DisconnectRequest,
    facade: GSCAccessFacade = Depends(get_gsc_facade),
) -> Dict[str, Any]:
    removed = await facade.token_manager.disconnect(body.client_id)
    try:
        await facade.cache_store.invalidate(body.client_id)
    except GSCCacheUnavailableError as e:
        logger.warning(f"Could not clear cache after disconnecting client {body.client_id}: {e}")
    return {"success": True, "disconnected": removed}
