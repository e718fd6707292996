"""
SQLModel database models.

This module contains all database models for the application.
"""

from .gsc import ApiQuotaTracking, ClientGSCToken, GSCCacheLog, ensure_utc, utcnow

__all__ = [
    "ApiQuotaTracking",
    "ClientGSCToken",
    "GSCCacheLog",
    "ensure_utc",
    "utcnow",
]
