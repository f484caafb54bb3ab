"""Prometheus metrics for HTTP traffic and entitlement decisions.

Exposes RED metrics (Rate, Errors, Duration) for every request plus
counters for reconciliation outcomes, provider failures, and pause
actions.  The services increment the domain counters directly.

Path normalisation collapses profile ids (e.g. ``/profiles/<uuid>/pause``
-> ``/profiles/{id}/pause``) to keep label cardinality bounded.
"""

from __future__ import annotations

import logging
import re
import time

from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

HTTP_REQUESTS_TOTAL = Counter(
    "entitlements_http_requests_total",
    "Total HTTP requests by method, path, and status code",
    ["method", "path", "status_code"],
)

HTTP_REQUEST_DURATION = Histogram(
    "entitlements_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

RECONCILIATIONS_TOTAL = Counter(
    "entitlements_reconciliations_total",
    "Completed reconciliations by deciding rule and resulting tier",
    ["source", "tier"],
)

PROVIDER_FAILURES_TOTAL = Counter(
    "entitlements_provider_failures_total",
    "Reconciliations aborted because the payment provider failed or timed out",
)

PAUSE_ACTIONS_TOTAL = Counter(
    "entitlements_pause_actions_total",
    "Pause and resume requests by action and outcome code",
    ["action", "outcome"],
)


# ---------------------------------------------------------------------------
# Path normalisation: collapse UUIDs, hex ids, and numeric segments
# ---------------------------------------------------------------------------

_PATH_PARAM_PATTERNS = [
    (re.compile(r"/[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}"), "/{id}"),
    (re.compile(r"/[0-9a-f]{12,64}"), "/{id}"),
    (re.compile(r"/\d+(?=/|$)"), "/{id}"),
]


def _normalise_path(path: str) -> str:
    """Collapse path parameters to prevent cardinality explosion."""
    for pattern, replacement in _PATH_PARAM_PATTERNS:
        path = pattern.sub(replacement, path)
    return path


# Paths excluded from metrics recording.
_SKIP_PATHS: frozenset[str] = frozenset({"/metrics", "/docs", "/redoc", "/openapi.json", "/favicon.ico"})


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Record HTTP request rate, error rate, and latency."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if path in _SKIP_PATHS:
            return await call_next(request)

        method = request.method
        normalised = _normalise_path(path)

        start = time.monotonic()
        response = await call_next(request)
        duration = time.monotonic() - start

        HTTP_REQUESTS_TOTAL.labels(
            method=method,
            path=normalised,
            status_code=str(response.status_code),
        ).inc()
        HTTP_REQUEST_DURATION.labels(method=method, path=normalised).observe(duration)

        return response
