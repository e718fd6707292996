"""
Period-over-period comparison for Search Console time series.

Pure functions; the access facade fetches both periods and calls
calculate_overview_metrics.
"""

from typing import Dict, List, Sequence

from .types import OverviewMetrics, TimeSeriesPoint


def _totals(points: Sequence[TimeSeriesPoint]) -> Dict[str, float]:
    return {
        "clicks": sum(p.clicks for p in points),
        "impressions": sum(p.impressions for p in points),
        "ctr": sum(p.ctr for p in points),
        "position": sum(p.position for p in points),
    }


def percent_change(current: float, previous: float) -> float:
    """Percentage change, or 0 when there is no previous value."""
    if not previous:
        return 0.0
    return (current - previous) / previous * 100


def calculate_overview_metrics(
    current: List[TimeSeriesPoint],
    previous: List[TimeSeriesPoint],
) -> OverviewMetrics:
    """
    Summarise the current period against the previous one.

    CTR and position are averaged per day. A positive position_delta means
    the average position improved (moved closer to 1).
    """
    cur = _totals(current)
    prev = _totals(previous)

    current_days = len(current) or 1
    previous_days = len(previous) or 1

    avg_ctr = cur["ctr"] / current_days
    avg_position = cur["position"] / current_days
    prev_avg_ctr = prev["ctr"] / previous_days
    prev_avg_position = prev["position"] / previous_days

    position_delta = prev_avg_position - avg_position if prev_avg_position else 0.0

    return OverviewMetrics(
        total_clicks=cur["clicks"],
        total_impressions=cur["impressions"],
        avg_ctr=avg_ctr,
        avg_position=avg_position,
        clicks_delta=round(percent_change(cur["clicks"], prev["clicks"]), 1),
        impressions_delta=round(percent_change(cur["impressions"], prev["impressions"]), 1),
        ctr_delta=round(percent_change(avg_ctr, prev_avg_ctr), 1),
        position_delta=round(position_delta, 1),
    )
