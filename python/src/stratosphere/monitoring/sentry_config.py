"""
Sentry Error Tracking Configuration

Features:
- Automatic error capture with full stack traces
- Performance monitoring with per-environment sample rates
- Expected Search Console outcomes (quota, circuit open, no token) are
  not reported as errors

Usage:
    from stratosphere.monitoring.sentry_config import init_sentry

    # At application startup
    init_sentry(settings)
"""

import logging

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from ..core.config import Settings

logger = logging.getLogger(__name__)

# Policy outcomes surfaced to users, not bugs
EXPECTED_EXCEPTIONS = {
    "GSCQuotaExhaustedError",
    "GSCCircuitOpenError",
    "GSCAuthUnavailableError",
    "RequestValidationError",
    "ValidationError",
}

TRACES_SAMPLE_RATES = {
    "production": 0.1,
    "staging": 0.5,
}


def init_sentry(settings: Settings) -> bool:
    """
    Initialize Sentry error tracking.

    Returns:
        True if Sentry was initialized, False when no DSN is configured
    """
    if not settings.SENTRY_DSN:
        logger.info("Sentry DSN not configured, skipping initialization")
        return False

    environment = settings.ENVIRONMENT
    traces_sample_rate = TRACES_SAMPLE_RATES.get(environment, 1.0)

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=environment,
        traces_sample_rate=traces_sample_rate,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
        ],
        before_send=before_send_filter,
        attach_stacktrace=True,
        send_default_pii=False,
    )

    logger.info(
        f"Sentry initialized: environment={environment}, "
        f"traces_sample_rate={traces_sample_rate}"
    )
    return True


def before_send_filter(event, hint):
    """
    Filter events before sending to Sentry.

    Drops health/metrics noise and expected access-layer outcomes.
    """
    if event.get("request"):
        url = event["request"].get("url", "")
        if "/health" in url or "/metrics" in url:
            return None

    if "exception" in event:
        for exception in event["exception"].get("values", []):
            if exception.get("type", "") in EXPECTED_EXCEPTIONS:
                return None

    event.setdefault("tags", {})
    event["tags"]["source"] = "stratosphere-gsc-api"

    return event
