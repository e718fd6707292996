"""
Search Console request/response models.

Pydantic models shared by the providers, the cache and quota stores, the
token manager and the access facade. Timestamps are UTC-aware datetimes and
are serialized as ISO-8601 strings at the API boundary.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

Dimension = Literal["query", "page", "country", "device", "date"]
SearchType = Literal["web", "image", "video", "news", "discover", "googleNews"]
AggregationType = Literal["auto", "byPage", "byProperty"]
DateRangePreset = Literal["7d", "14d", "28d", "90d", "custom"]

# GSC data lags real time by roughly two days
GSC_DATA_DELAY_DAYS = 2

PRESET_DAYS: Dict[str, int] = {
    "7d": 7,
    "14d": 14,
    "28d": 28,
    "90d": 90,
    "custom": 28,
}


# ========== Requests ==========

class DimensionFilter(BaseModel):
    dimension: Dimension
    operator: Literal[
        "equals", "notEquals", "contains", "notContains", "includingRegex", "excludingRegex"
    ]
    expression: str


class DimensionFilterGroup(BaseModel):
    group_type: Literal["and", "or"] = "and"
    filters: List[DimensionFilter]


class SearchAnalyticsParams(BaseModel):
    """Parameters for a searchAnalytics.query call."""

    site_url: str = Field(..., description="Property URL or sc-domain: identifier")
    start_date: date
    end_date: date
    dimensions: List[Dimension] = Field(default_factory=lambda: ["date"])
    search_type: SearchType = "web"
    aggregation_type: Optional[AggregationType] = None
    row_limit: int = Field(default=1000, ge=1, le=25000)
    start_row: int = Field(default=0, ge=0)
    dimension_filter_groups: Optional[List[DimensionFilterGroup]] = None

    @field_validator("end_date")
    @classmethod
    def validate_range(cls, v: date, info) -> date:
        """Reject inverted ranges."""
        start = info.data.get("start_date")
        if start and v < start:
            raise ValueError("end_date must not be before start_date")
        return v

    def to_request_params(self) -> Dict[str, Any]:
        """Provider request keys (camelCase, unset values dropped)."""
        params: Dict[str, Any] = {
            "siteUrl": self.site_url,
            "startDate": self.start_date.isoformat(),
            "endDate": self.end_date.isoformat(),
            "dimensions": list(self.dimensions),
            "type": self.search_type,
            "rowLimit": self.row_limit,
            "startRow": self.start_row,
        }
        if self.aggregation_type:
            params["aggregationType"] = self.aggregation_type
        if self.dimension_filter_groups:
            params["dimensionFilterGroups"] = [
                {
                    "groupType": group.group_type,
                    "filters": [f.model_dump() for f in group.filters],
                }
                for group in self.dimension_filter_groups
            ]
        return params


# ========== Provider responses ==========

class SearchAnalyticsRow(BaseModel):
    keys: List[str] = Field(default_factory=list)
    clicks: float = 0
    impressions: float = 0
    ctr: float = 0
    position: float = 0


class SearchAnalyticsResponse(BaseModel):
    rows: List[SearchAnalyticsRow] = Field(default_factory=list)
    response_aggregation_type: Optional[str] = Field(default=None, alias="responseAggregationType")

    model_config = {"populate_by_name": True}


# ========== Cache ==========

class CacheInfo(BaseModel):
    """Freshness classification of a cached payload (derived, never stored)."""

    from_cache: bool
    cached_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    age_hours: float = 0.0
    is_stale: bool = True
    is_expiring: bool = True

    def to_response(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class CachedGSCResponse(BaseModel):
    data: Any
    cache_info: CacheInfo


class ClientCacheFreshness(BaseModel):
    """Tenant-level "last sync" status, independent of any one endpoint."""

    has_cache: bool
    last_sync: Optional[datetime] = None
    hours_old: Optional[float] = None  # None when nothing is cached
    is_stale: bool = True
    is_expiring: bool = True
    recommendation: str

    def to_response(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class CacheEntrySummary(BaseModel):
    endpoint_signature: str
    created_at: datetime
    expires_at: datetime
    row_count: Optional[int] = None


# ========== Quota ==========

class QuotaStatus(BaseModel):
    """
    Daily budget status.

    remaining is floored at zero for display; can_proceed reflects the raw
    deficit.
    """

    remaining: int = Field(..., ge=0)
    used: int = Field(..., ge=0)
    allocated: int = Field(..., ge=0)
    reserved: int = Field(default=0, ge=0)
    can_proceed: bool
    next_reset_at: datetime

    def to_response(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


# ========== OAuth ==========

class GSCTokens(BaseModel):
    """Token record for one tenant."""

    access_token: str
    refresh_token: str
    expires_at: datetime
    scope: str = ""


class ConnectionStatus(BaseModel):
    connected: bool
    has_credentials: bool
    expires_at: Optional[datetime] = None
    can_connect: bool

    def to_response(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class OAuthState(BaseModel):
    client_id: str
    return_url: str
    issued_at: datetime
    nonce: str


# ========== Date ranges ==========

class DateRange(BaseModel):
    start_date: date
    end_date: date

    @property
    def days(self) -> int:
        """Number of days in the range (inclusive)."""
        return (self.end_date - self.start_date).days + 1


def get_date_range_from_preset(preset: str, today: Optional[date] = None) -> DateRange:
    """
    Resolve a dashboard preset to a concrete date range.

    The end date lags today by GSC_DATA_DELAY_DAYS. Unknown presets and
    "custom" resolve to the last 28 days.
    """
    today = today or datetime.now(timezone.utc).date()
    end_date = today - timedelta(days=GSC_DATA_DELAY_DAYS)
    start_date = end_date - timedelta(days=PRESET_DAYS.get(preset, 28))
    return DateRange(start_date=start_date, end_date=end_date)


def previous_period(date_range: DateRange) -> DateRange:
    """Equal-length range ending the day before date_range starts."""
    prev_end = date_range.start_date - timedelta(days=1)
    prev_start = prev_end - (date_range.end_date - date_range.start_date)
    return DateRange(start_date=prev_start, end_date=prev_end)


# ========== Aggregates ==========

class TimeSeriesPoint(BaseModel):
    date: str
    clicks: float
    impressions: float
    ctr: float
    position: float


class QueryData(BaseModel):
    query: str
    clicks: float
    impressions: float
    ctr: float
    position: float


class PageData(BaseModel):
    page: str
    clicks: float
    impressions: float
    ctr: float
    position: float


class OverviewMetrics(BaseModel):
    """Current period totals with deltas against the previous period."""

    total_clicks: float
    total_impressions: float
    avg_ctr: float
    avg_position: float
    clicks_delta: float      # % change from previous period
    impressions_delta: float
    ctr_delta: float
    position_delta: float    # previous - current; positive = improvement
