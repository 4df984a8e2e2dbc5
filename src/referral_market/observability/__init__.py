"""Observability stack for monitoring and error tracking."""

from .metrics import MetricsService, metrics_service
from .sentry import add_breadcrumb, capture_exception, configure_sentry

__all__ = [
    "MetricsService",
    "metrics_service",
    "configure_sentry",
    "capture_exception",
    "add_breadcrumb",
]
