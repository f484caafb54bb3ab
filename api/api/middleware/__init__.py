"""Middleware components for the entitlements API."""

from __future__ import annotations

from api.middleware.auth import AuthenticationMiddleware
from api.middleware.logging import RequestLoggingMiddleware
from api.middleware.prometheus import PrometheusMiddleware
from api.middleware.trace_context import TraceContextMiddleware, TraceLoggingFilter

__all__ = [
    "AuthenticationMiddleware",
    "PrometheusMiddleware",
    "RequestLoggingMiddleware",
    "TraceContextMiddleware",
    "TraceLoggingFilter",
]
