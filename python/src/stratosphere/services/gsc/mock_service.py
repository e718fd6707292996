"""
Mock Search Console service for local development and testing.

This service enables:
1. Local development without Google OAuth credentials
2. Fast iteration (no API calls)
3. Predictable test data (seeded per site and date range)
4. No quota consumption

Responses have the same shape as the real API, so the access facade
cannot tell the two apart.
"""

import asyncio
import logging
import random
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


QUERY_TEMPLATES: Dict[str, List[str]] = {
    "saas": [
        "best {product} software",
        "{product} pricing",
        "{product} vs {competitor}",
        "how to {action}",
        "{product} reviews",
        "{product} alternatives",
        "free {product} tools",
        "{product} for small business",
        "{product} integration",
        "{product} api",
        "enterprise {product}",
        "{product} demo",
    ],
    "publishing": [
        "best {topic} ideas",
        "{topic} tips",
        "{topic} guide",
        "how to {topic}",
        "{topic} inspiration",
        "{topic} trends",
        "{topic} on a budget",
        "modern {topic}",
    ],
    "healthcare": [
        "{service} near me",
        "{condition} symptoms",
        "{condition} treatment",
        "best {provider} in {city}",
        "{service} cost",
        "when to see a {provider}",
        "telehealth {service}",
        "{condition} doctor",
    ],
}

TEMPLATE_WORDS: Dict[str, List[str]] = {
    "product": ["crm", "project management", "automation", "analytics", "marketing"],
    "competitor": ["hubspot", "salesforce", "asana", "monday", "trello"],
    "action": ["automate workflows", "track leads", "manage projects", "analyze data"],
    "topic": ["coastal decor", "beach house", "ocean view", "waterfront living", "nautical design"],
    "service": ["primary care", "urgent care", "telehealth", "lab testing", "vaccination"],
    "condition": ["flu", "allergies", "back pain", "anxiety", "migraine"],
    "provider": ["doctor", "physician", "specialist", "nurse practitioner"],
    "city": ["atlanta", "chicago", "houston", "phoenix", "miami"],
}

PAGE_PATTERNS = [
    "/blog/{slug}",
    "/services/{slug}",
    "/products/{slug}",
    "/pricing",
    "/about",
    "/contact",
    "/features/{slug}",
    "/resources/{slug}",
    "/case-studies/{slug}",
    "/docs/{slug}",
]

PAGE_SLUGS = [
    "getting-started", "features", "pricing", "enterprise", "free-trial",
    "integrations", "api-docs", "case-study-acme", "ultimate-guide",
    "best-practices", "tips-and-tricks", "comparison", "how-it-works",
    "security", "compliance", "support",
]

COUNTRIES = ["usa", "gbr", "can", "aus", "deu", "fra", "ind", "jpn", "bra", "mex"]
DEVICE_WEIGHTS = {"MOBILE": 0.55, "DESKTOP": 0.40, "TABLET": 0.05}


def _domain_of(site_url: str) -> str:
    domain = site_url.replace("sc-domain:", "").replace("https://", "").replace("http://", "")
    return domain.strip("/") or "example.com"


def _row(keys: List[str], clicks: int, impressions: int, position: float) -> Dict[str, Any]:
    return {
        "keys": keys,
        "clicks": clicks,
        "impressions": impressions,
        "ctr": clicks / impressions if impressions > 0 else 0.0,
        "position": round(position, 2),
    }


class MockGSCProvider:
    """
    Mock Search Console provider.

    Generates realistic data: a time series with weekday seasonality and a
    slight upward trend, power-law distributed queries and pages, and
    country / device breakdowns.
    """

    def __init__(self, latency_seconds: float = 0.0):
        self.latency_seconds = latency_seconds
        logger.info("GSC mock provider initialized")

    async def _simulate_latency(self) -> None:
        if self.latency_seconds > 0:
            await asyncio.sleep(self.latency_seconds)

    def _industry(self, site_url: str) -> str:
        industries = sorted(QUERY_TEMPLATES)
        return industries[sum(ord(c) for c in site_url) % len(industries)]

    def _queries(self, site_url: str, count: int) -> List[str]:
        rng = random.Random(f"{site_url}:queries")
        templates = QUERY_TEMPLATES[self._industry(site_url)]
        queries: List[str] = []
        # Bounded attempts; the template space is finite
        for _ in range(count * 3):
            query = rng.choice(templates)
            for key, values in TEMPLATE_WORDS.items():
                placeholder = "{" + key + "}"
                if placeholder in query:
                    query = query.replace(placeholder, rng.choice(values))
            if query not in queries:
                queries.append(query)
            if len(queries) >= count:
                break
        return queries

    def _pages(self, site_url: str, count: int) -> List[str]:
        rng = random.Random(f"{site_url}:pages")
        domain = _domain_of(site_url)
        pages: List[str] = []
        for _ in range(count * 3):
            page = f"https://{domain}" + rng.choice(PAGE_PATTERNS).replace("{slug}", rng.choice(PAGE_SLUGS))
            if page not in pages:
                pages.append(page)
            if len(pages) >= count:
                break
        return pages

    def generate_rows(self, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Deterministic rows for a searchAnalytics request."""
        site_url = params.get("siteUrl", "sc-domain:example.com")
        start = date.fromisoformat(params["startDate"])
        end = date.fromisoformat(params["endDate"])
        dimensions = params.get("dimensions") or ["date"]
        row_limit = params.get("rowLimit") or 1000
        start_row = params.get("startRow") or 0

        rng = random.Random(f"{site_url}:{params['startDate']}:{params['endDate']}")
        base_clicks = rng.randint(50, 500)
        base_impressions = base_clicks * rng.randint(20, 50)
        base_position = 5 + rng.random() * 15

        dates = [
            (start + timedelta(days=offset)).isoformat()
            for offset in range((end - start).days + 1)
        ]

        rows: List[Dict[str, Any]] = []
        if dimensions == ["date"]:
            for index, day in enumerate(dates):
                trend = 1 + index * 0.002
                weekday = date.fromisoformat(day).weekday()
                seasonality = 0.7 if weekday >= 5 else 1.1
                noise = 0.8 + rng.random() * 0.4
                factor = trend * seasonality * noise
                rows.append(_row(
                    [day],
                    round(base_clicks * factor),
                    round(base_impressions * factor),
                    base_position + (rng.random() - 0.5) * 2,
                ))
        elif "query" in dimensions:
            for index, query in enumerate(self._queries(site_url, min(row_limit, 200))):
                clicks = round(base_clicks * (0.85 ** index) * (0.5 + rng.random()))
                impressions = round(clicks * (15 + rng.random() * 30)) or rng.randint(5, 50)
                keys = [query, rng.choice(dates)] if "date" in dimensions else [query]
                rows.append(_row(keys, clicks, impressions, 5 + index * 0.3 + rng.random() * 10))
        elif "page" in dimensions:
            for index, page in enumerate(self._pages(site_url, min(row_limit, 200))):
                clicks = round(base_clicks * 2 * (0.9 ** index) * (0.5 + rng.random()))
                impressions = round(clicks * (20 + rng.random() * 40)) or rng.randint(5, 50)
                keys = [page, rng.choice(dates)] if "date" in dimensions else [page]
                rows.append(_row(keys, clicks, impressions, 3 + index * 0.2 + rng.random() * 8))
        elif "country" in dimensions:
            for index, country in enumerate(COUNTRIES):
                clicks = round(base_clicks * 3 * (0.7 ** index) * (0.5 + rng.random()))
                impressions = round(clicks * (25 + rng.random() * 35)) or rng.randint(5, 50)
                rows.append(_row([country], clicks, impressions, 8 + index * 0.5 + rng.random() * 5))
        elif "device" in dimensions:
            for device, weight in DEVICE_WEIGHTS.items():
                clicks = round(base_clicks * 10 * weight * (0.8 + rng.random() * 0.4))
                impressions = round(clicks * (20 + rng.random() * 30))
                position = base_position - 1 if device == "MOBILE" else base_position + 2
                rows.append(_row([device], clicks, impressions, position))

        return rows[start_row:start_row + row_limit]

    async def search_analytics(self, access_token: Optional[str], params: Dict[str, Any]) -> Dict[str, Any]:
        await self._simulate_latency()
        return {
            "rows": self.generate_rows(params),
            "responseAggregationType": params.get("aggregationType") or "auto",
        }

    async def list_sites(self, access_token: Optional[str], params: Dict[str, Any]) -> Dict[str, Any]:
        await self._simulate_latency()
        domain = _domain_of(params.get("siteUrl", "example.com"))
        return {
            "siteEntry": [
                {"siteUrl": f"sc-domain:{domain}", "permissionLevel": "siteOwner"},
                {"siteUrl": f"https://{domain}/", "permissionLevel": "siteFullUser"},
            ]
        }

    async def get_sitemaps(self, access_token: Optional[str], params: Dict[str, Any]) -> Dict[str, Any]:
        await self._simulate_latency()
        domain = _domain_of(params["siteUrl"])
        today = datetime.now(timezone.utc).date()
        return {
            "sitemap": [
                {
                    "path": f"https://{domain}/sitemap.xml",
                    "lastSubmitted": today.isoformat(),
                    "lastDownloaded": today.isoformat(),
                    "isSitemapsIndex": True,
                    "type": "sitemap",
                    "warnings": 0,
                    "errors": 0,
                    "contents": [{"type": "web", "submitted": 150, "indexed": 145}],
                },
                {
                    "path": f"https://{domain}/blog-sitemap.xml",
                    "lastSubmitted": (today - timedelta(days=7)).isoformat(),
                    "lastDownloaded": today.isoformat(),
                    "type": "sitemap",
                    "warnings": 2,
                    "errors": 0,
                    "contents": [{"type": "web", "submitted": 85, "indexed": 80}],
                },
            ]
        }

    async def inspect_url(self, access_token: Optional[str], params: Dict[str, Any]) -> Dict[str, Any]:
        await self._simulate_latency()
        inspection_url = params["inspectionUrl"]
        rng = random.Random(inspection_url)
        indexed = rng.random() > 0.1
        return {
            "inspectionResult": {
                "inspectionResultLink": (
                    "https://search.google.com/search-console/inspect?resource_id="
                    + params["siteUrl"]
                ),
                "indexStatusResult": {
                    "verdict": "PASS" if indexed else "PARTIAL",
                    "coverageState": (
                        "Submitted and indexed" if indexed
                        else "Discovered - currently not indexed"
                    ),
                    "robotsTxtState": "ALLOWED",
                    "indexingState": "INDEXING_ALLOWED",
                    "pageFetchState": "SUCCESSFUL",
                    "googleCanonical": inspection_url,
                    "crawledAs": "MOBILE" if rng.random() > 0.5 else "DESKTOP",
                },
                "mobileUsabilityResult": {
                    "verdict": "PASS" if rng.random() > 0.2 else "PARTIAL",
                    "issues": [],
                },
            }
        }
