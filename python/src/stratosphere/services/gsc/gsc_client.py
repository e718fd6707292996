"""
Google Search Console API client.

Thin httpx client for the Search Console (webmasters v3) and URL
Inspection APIs. Retry, quota and circuit breaker behaviour live in the
access facade; this client only translates HTTP failures into typed errors:

- 429 → GSCRateLimitError (retried by the backoff executor)
- other non-2xx → GSCProviderError with the upstream message
- transport timeout → GSCTimeoutError

Every endpoint has the shape ``async (access_token, params) -> dict`` so
the real client and MockGSCProvider are interchangeable.
"""

import logging
from typing import Any, Dict, Optional, Protocol
from urllib.parse import quote

import httpx

from .exceptions import GSCProviderError, GSCRateLimitError, GSCTimeoutError

logger = logging.getLogger(__name__)

GSC_API_BASE = "https://searchconsole.googleapis.com/webmasters/v3"
GSC_INSPECTION_API = "https://searchconsole.googleapis.com/v1/urlInspection/index:inspect"

# Request keys sent to searchAnalytics.query (siteUrl goes in the path)
SEARCH_ANALYTICS_BODY_KEYS = (
    "startDate",
    "endDate",
    "dimensions",
    "type",
    "aggregationType",
    "rowLimit",
    "startRow",
    "dimensionFilterGroups",
)


class GSCProvider(Protocol):
    """Search Console data source (real API or mock)."""

    async def search_analytics(self, access_token: Optional[str], params: Dict[str, Any]) -> Dict[str, Any]: ...

    async def list_sites(self, access_token: Optional[str], params: Dict[str, Any]) -> Dict[str, Any]: ...

    async def get_sitemaps(self, access_token: Optional[str], params: Dict[str, Any]) -> Dict[str, Any]: ...

    async def inspect_url(self, access_token: Optional[str], params: Dict[str, Any]) -> Dict[str, Any]: ...


def _site_path(site_url: str) -> str:
    return f"{GSC_API_BASE}/sites/{quote(site_url, safe='')}"


class GSCAPIClient:
    """
    Search Console REST client.

    Example:
        >>> client = GSCAPIClient(timeout=30.0)
        >>> data = await client.search_analytics(token, {
        ...     "siteUrl": "sc-domain:example.com",
        ...     "startDate": "2026-01-01",
        ...     "endDate": "2026-01-28",
        ...     "dimensions": ["date"],
        ... })
    """

    TIMEOUT = 30.0

    def __init__(
        self,
        timeout: float = TIMEOUT,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.timeout = timeout
        self._http_client = http_client

    async def _request(
        self,
        method: str,
        url: str,
        access_token: Optional[str],
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Perform an authenticated request.

        Raises:
            GSCRateLimitError: On 429
            GSCTimeoutError: If the request exceeds the timeout
            GSCProviderError: On any other non-2xx or transport failure
        """
        if not access_token:
            raise GSCProviderError("No access token supplied for Search Console request", status_code=401)

        headers = {"Authorization": f"Bearer {access_token}"}
        try:
            if self._http_client is not None:
                response = await self._http_client.request(
                    method, url, headers=headers, json=json, timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.request(method, url, headers=headers, json=json)
        except httpx.TimeoutException as e:
            logger.warning(f"GSC API timeout: {method} {url}")
            raise GSCTimeoutError(f"Request timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            logger.warning(f"GSC network error: {e}")
            raise GSCProviderError(f"Network error: {e}") from e

        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {}
            error = body.get("error") if isinstance(body, dict) else None
            message = (
                error.get("message") if isinstance(error, dict) else None
            ) or f"GSC API error: {response.status_code}"

            if response.status_code == 429:
                retry_after = response.headers.get("Retry-After")
                raise GSCRateLimitError(
                    message,
                    retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
                )

            raise GSCProviderError(
                message,
                status_code=response.status_code,
                response_body=response.text,
            )

        if not response.content:
            return {}
        return response.json()

    async def search_analytics(self, access_token: Optional[str], params: Dict[str, Any]) -> Dict[str, Any]:
        """
        searchAnalytics.query.

        Args:
            access_token: OAuth access token
            params: Request keys from SearchAnalyticsParams.to_request_params()

        Returns:
            Raw response ({"rows": [...], "responseAggregationType": ...})
        """
        body = {
            key: params[key]
            for key in SEARCH_ANALYTICS_BODY_KEYS
            if params.get(key) is not None
        }
        url = f"{_site_path(params['siteUrl'])}/searchAnalytics/query"
        result = await self._request("POST", url, access_token, json=body)
        result.setdefault("rows", [])
        return result

    async def list_sites(self, access_token: Optional[str], params: Dict[str, Any]) -> Dict[str, Any]:
        result = await self._request("GET", f"{GSC_API_BASE}/sites", access_token)
        return {"siteEntry": result.get("siteEntry", [])}

    async def get_sitemaps(self, access_token: Optional[str], params: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{_site_path(params['siteUrl'])}/sitemaps"
        result = await self._request("GET", url, access_token)
        return {"sitemap": result.get("sitemap", [])}

    async def inspect_url(self, access_token: Optional[str], params: Dict[str, Any]) -> Dict[str, Any]:
        body = {
            "inspectionUrl": params["inspectionUrl"],
            "siteUrl": params["siteUrl"],
        }
        if params.get("languageCode"):
            body["languageCode"] = params["languageCode"]
        return await self._request("POST", GSC_INSPECTION_API, access_token, json=body)
