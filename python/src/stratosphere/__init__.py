"""
Stratosphere: resilient Google Search Console access layer for the
SEO account-management dashboard.
"""

__version__ = "0.1.0"
