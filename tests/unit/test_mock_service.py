"""
Unit tests for the mock Search Console provider.

Verifies determinism and that responses have the real API's shape.
"""

from datetime import date

import pytest

from stratosphere.services.gsc.mock_service import MockGSCProvider


def params(dimensions, site_url="sc-domain:example.com", start="2026-02-01", end="2026-02-28", **extra):
    return {
        "siteUrl": site_url,
        "startDate": start,
        "endDate": end,
        "dimensions": dimensions,
        **extra,
    }


@pytest.fixture
def provider():
    return MockGSCProvider()


class TestDeterminism:

    def test_same_request_same_rows(self, provider):
        assert provider.generate_rows(params(["date"])) == provider.generate_rows(params(["date"]))
        assert provider.generate_rows(params(["query"])) == MockGSCProvider().generate_rows(params(["query"]))

    def test_different_site_different_rows(self, provider):
        first = provider.generate_rows(params(["date"], site_url="sc-domain:example.com"))
        second = provider.generate_rows(params(["date"], site_url="sc-domain:other-site.io"))

        assert first != second

    def test_different_range_different_rows(self, provider):
        first = provider.generate_rows(params(["date"], start="2026-02-01", end="2026-02-07"))
        second = provider.generate_rows(params(["date"], start="2026-01-25", end="2026-01-31"))

        assert [r["clicks"] for r in first] != [r["clicks"] for r in second]


class TestRowShapes:

    def test_time_series_covers_every_day(self, provider):
        rows = provider.generate_rows(params(["date"]))

        assert len(rows) == 28
        assert rows[0]["keys"] == ["2026-02-01"]
        assert rows[-1]["keys"] == ["2026-02-28"]
        for row in rows:
            assert set(row) == {"keys", "clicks", "impressions", "ctr", "position"}
            assert row["impressions"] >= row["clicks"] >= 0
            assert 0 <= row["ctr"] <= 1

    def test_weekends_are_quieter(self, provider):
        rows = provider.generate_rows(params(["date"], start="2026-01-05", end="2026-03-01"))

        weekday = [r["clicks"] for r in rows if date.fromisoformat(r["keys"][0]).weekday() < 5]
        weekend = [r["clicks"] for r in rows if date.fromisoformat(r["keys"][0]).weekday() >= 5]

        assert sum(weekend) / len(weekend) < sum(weekday) / len(weekday)

    def test_queries_unique_and_limited(self, provider):
        rows = provider.generate_rows(params(["query"], rowLimit=5))
        queries = [row["keys"][0] for row in rows]

        assert 0 < len(rows) <= 5
        assert len(set(queries)) == len(queries)

    def test_pages_are_site_urls(self, provider):
        rows = provider.generate_rows(params(["page"], site_url="sc-domain:example.com", rowLimit=10))

        assert rows
        assert all(row["keys"][0].startswith("https://example.com/") for row in rows)

    def test_start_row_pages_results(self, provider):
        everything = provider.generate_rows(params(["page"], rowLimit=10))
        second_page = provider.generate_rows(params(["page"], rowLimit=10, startRow=3))

        assert second_page == everything[3:]

    def test_devices(self, provider):
        rows = provider.generate_rows(params(["device"]))

        assert [row["keys"][0] for row in rows] == ["MOBILE", "DESKTOP", "TABLET"]

    def test_countries(self, provider):
        rows = provider.generate_rows(params(["country"]))

        assert len(rows) == 10
        assert rows[0]["keys"] == ["usa"]


class TestEndpoints:

    @pytest.mark.asyncio
    async def test_search_analytics(self, provider):
        result = await provider.search_analytics(None, params(["date"]))

        assert len(result["rows"]) == 28
        assert result["responseAggregationType"] == "auto"

    @pytest.mark.asyncio
    async def test_list_sites(self, provider):
        result = await provider.list_sites(None, {"siteUrl": "sc-domain:example.com"})

        assert [entry["siteUrl"] for entry in result["siteEntry"]] == [
            "sc-domain:example.com",
            "https://example.com/",
        ]

    @pytest.mark.asyncio
    async def test_get_sitemaps(self, provider):
        result = await provider.get_sitemaps(None, {"siteUrl": "https://example.com/"})

        assert result["sitemap"][0]["path"] == "https://example.com/sitemap.xml"

    @pytest.mark.asyncio
    async def test_inspect_url(self, provider):
        request = {"siteUrl": "sc-domain:example.com", "inspectionUrl": "https://example.com/pricing"}

        first = await provider.inspect_url(None, request)
        second = await provider.inspect_url(None, request)

        assert first == second
        assert first["inspectionResult"]["indexStatusResult"]["verdict"] in ("PASS", "PARTIAL")
