"""
Monitoring and observability integrations.

Provides:
- Prometheus metrics for the Search Console access layer
- Sentry error tracking
"""
