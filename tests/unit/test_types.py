"""
Unit tests for request models and date range helpers.
"""

from datetime import date

import pytest
from pydantic import ValidationError

from stratosphere.services.gsc.types import (
    DateRange,
    DimensionFilter,
    DimensionFilterGroup,
    SearchAnalyticsParams,
    get_date_range_from_preset,
    previous_period,
)


class TestDateRanges:

    @pytest.mark.parametrize(
        "preset,start",
        [
            ("7d", date(2026, 3, 1)),
            ("14d", date(2026, 2, 22)),
            ("28d", date(2026, 2, 8)),
            ("90d", date(2025, 12, 8)),
        ],
    )
    def test_presets_lag_two_days(self, preset, start):
        date_range = get_date_range_from_preset(preset, today=date(2026, 3, 10))

        assert date_range.end_date == date(2026, 3, 8)
        assert date_range.start_date == start

    def test_unknown_preset_defaults_to_28_days(self):
        assert get_date_range_from_preset("yesterday", today=date(2026, 3, 10)) == \
            get_date_range_from_preset("28d", today=date(2026, 3, 10))

    def test_days_inclusive(self):
        assert DateRange(start_date=date(2026, 3, 1), end_date=date(2026, 3, 7)).days == 7

    def test_previous_period_same_length(self):
        current = DateRange(start_date=date(2026, 3, 1), end_date=date(2026, 3, 7))

        previous = previous_period(current)

        assert previous.end_date == date(2026, 2, 28)
        assert previous.start_date == date(2026, 2, 22)
        assert previous.days == current.days


class TestSearchAnalyticsParams:

    def test_defaults(self):
        params = SearchAnalyticsParams(
            site_url="sc-domain:example.com",
            start_date=date(2026, 2, 1),
            end_date=date(2026, 2, 28),
        )

        assert params.to_request_params() == {
            "siteUrl": "sc-domain:example.com",
            "startDate": "2026-02-01",
            "endDate": "2026-02-28",
            "dimensions": ["date"],
            "type": "web",
            "rowLimit": 1000,
            "startRow": 0,
        }

    def test_inverted_range_rejected(self):
        with pytest.raises(ValidationError):
            SearchAnalyticsParams(
                site_url="sc-domain:example.com",
                start_date=date(2026, 2, 28),
                end_date=date(2026, 2, 1),
            )

    def test_row_limit_bounds(self):
        with pytest.raises(ValidationError):
            SearchAnalyticsParams(
                site_url="sc-domain:example.com",
                start_date=date(2026, 2, 1),
                end_date=date(2026, 2, 28),
                row_limit=25001,
            )

    def test_filters_serialized(self):
        params = SearchAnalyticsParams(
            site_url="sc-domain:example.com",
            start_date=date(2026, 2, 1),
            end_date=date(2026, 2, 28),
            dimensions=["query"],
            aggregation_type="byProperty",
            dimension_filter_groups=[
                DimensionFilterGroup(filters=[
                    DimensionFilter(dimension="device", operator="equals", expression="MOBILE"),
                ]),
            ],
        )

        request = params.to_request_params()

        assert request["aggregationType"] == "byProperty"
        assert request["dimensionFilterGroups"] == [
            {
                "groupType": "and",
                "filters": [{"dimension": "device", "operator": "equals", "expression": "MOBILE"}],
            }
        ]
