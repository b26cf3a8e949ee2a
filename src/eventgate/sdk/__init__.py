"""
Python client for EventGate.
"""

from .client import AnalyticsClient, AnalyticsClientError, ClientConfig, FlushResult

__all__ = ["AnalyticsClient", "AnalyticsClientError", "ClientConfig", "FlushResult"]
