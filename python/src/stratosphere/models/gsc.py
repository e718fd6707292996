"""
Search Console access-layer tables.

- GSCCacheLog: cached provider payloads per (client, endpoint signature)
- ApiQuotaTracking: daily call budget counters per (client, api, date)
- ClientGSCToken: per-client OAuth token record

Timestamps are stored as UTC. SQLite hands them back without tzinfo, so
readers normalise through ``ensure_utc``.
"""

from datetime import date, datetime, timezone
from typing import Any, Optional

from sqlalchemy import JSON, Column, DateTime, Index, UniqueConstraint
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from the store."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class GSCCacheLog(SQLModel, table=True):
    """
    Cached Search Console response.

    At most one row per (client_id, endpoint_signature); writes upsert.
    Rows are read-only until they expire or are invalidated.
    """

    __tablename__ = "gsc_cache_logs"
    __table_args__ = (
        UniqueConstraint("client_id", "endpoint_signature", name="uq_gsc_cache_client_signature"),
        Index("ix_gsc_cache_client_expires", "client_id", "expires_at"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    client_id: str = Field(index=True, max_length=255)
    endpoint_signature: str = Field(max_length=64)
    data_payload: Any = Field(sa_column=Column(JSON, nullable=False))
    row_count: Optional[int] = Field(default=None)
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    expires_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True),
    )


class ApiQuotaTracking(SQLModel, table=True):
    """
    Daily API budget counter.

    A new row per calendar day (UTC) implicitly resets the budget.
    reserved_quota is carried in the schema but no operation populates it.
    """

    __tablename__ = "api_quota_tracking"
    __table_args__ = (
        UniqueConstraint("client_id", "api_type", "quota_date", name="uq_api_quota_client_type_date"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    client_id: str = Field(index=True, max_length=255)
    api_type: str = Field(default="GSC", max_length=20)
    quota_date: date = Field(index=True)
    allocated_quota: int = Field(default=25000, ge=0)
    used_quota: int = Field(default=0, ge=0)
    reserved_quota: int = Field(default=0, ge=0)
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class ClientGSCToken(SQLModel, table=True):
    """
    OAuth token record for a client's Search Console connection.

    Access tokens are short-lived; the refresh token is kept across refreshes
    when Google does not issue a new one.
    """

    __tablename__ = "client_gsc_tokens"

    client_id: str = Field(primary_key=True, max_length=255)
    access_token: str = Field(max_length=2048)
    refresh_token: str = Field(max_length=2048)
    expires_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    scope: str = Field(default="", max_length=1000)
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
