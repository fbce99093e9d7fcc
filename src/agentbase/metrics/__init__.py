"""Metrics service: collector over broker records and the dashboard API."""

from .api import ConnectionHub, MetricsService, create_app
from .collector import MetricsCollector

__all__ = ["ConnectionHub", "MetricsCollector", "MetricsService", "create_app"]
