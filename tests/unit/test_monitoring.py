"""
Unit tests for Sentry filtering and Prometheus helpers.
"""

from unittest.mock import patch

from prometheus_client import REGISTRY

from stratosphere.core.config import Settings
from stratosphere.monitoring.gsc_metrics import (
    record_cache_lookup,
    record_provider_call,
    update_circuit_state,
)
from stratosphere.monitoring.sentry_config import before_send_filter, init_sentry


class TestSentryFilter:
    """Test before_send filtering."""

    def test_drops_health_checks(self):
        event = {"request": {"url": "http://api.example.com/health"}}

        assert before_send_filter(event, {}) is None

    def test_drops_metrics_scrapes(self):
        event = {"request": {"url": "http://api.example.com/metrics"}}

        assert before_send_filter(event, {}) is None

    def test_drops_expected_outcomes(self):
        for exception_type in ("GSCQuotaExhaustedError", "GSCCircuitOpenError", "GSCAuthUnavailableError"):
            event = {"exception": {"values": [{"type": exception_type}]}}
            assert before_send_filter(event, {}) is None

    def test_tags_real_errors(self):
        event = {"exception": {"values": [{"type": "GSCProviderError"}]}}

        result = before_send_filter(event, {})

        assert result is event
        assert result["tags"]["source"] == "stratosphere-gsc-api"


class TestInitSentry:

    def test_skipped_without_dsn(self):
        assert init_sentry(Settings(SENTRY_DSN="")) is False

    def test_initializes_with_dsn(self):
        settings = Settings(SENTRY_DSN="https://public@o0.ingest.sentry.io/0", ENVIRONMENT="production")

        with patch("stratosphere.monitoring.sentry_config.sentry_sdk.init") as mock_init:
            assert init_sentry(settings) is True

        kwargs = mock_init.call_args.kwargs
        assert kwargs["environment"] == "production"
        assert kwargs["traces_sample_rate"] == 0.1
        assert kwargs["before_send"] is before_send_filter


class TestMetrics:
    """Test metric helpers update the registry."""

    def test_cache_lookup(self):
        before = REGISTRY.get_sample_value("gsc_cache_requests_total", {"result": "hit"}) or 0

        record_cache_lookup("hit")

        assert REGISTRY.get_sample_value("gsc_cache_requests_total", {"result": "hit"}) == before + 1

    def test_provider_call(self):
        labels = {"endpoint": "list_sites", "outcome": "success"}
        before = REGISTRY.get_sample_value("gsc_provider_calls_total", labels) or 0

        record_provider_call("list_sites", "success", duration=0.2)

        assert REGISTRY.get_sample_value("gsc_provider_calls_total", labels) == before + 1

    def test_circuit_gauge(self):
        update_circuit_state("client-metrics", True)
        assert REGISTRY.get_sample_value("gsc_circuit_breaker_open", {"tenant_id": "client-metrics"}) == 1

        update_circuit_state("client-metrics", False)
        assert REGISTRY.get_sample_value("gsc_circuit_breaker_open", {"tenant_id": "client-metrics"}) == 0
