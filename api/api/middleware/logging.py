"""Structured access logging for the entitlements API."""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("api.access")

# Header names whose values are masked in log output.
_SENSITIVE_HEADERS: frozenset[str] = frozenset({"authorization", "cookie", "stripe-signature"})
_MASK: str = "***"

_CORRELATION_HEADER: str = "X-Correlation-ID"


def _safe_headers(request: Request) -> dict[str, str]:
    """Return the request headers with sensitive values masked."""
    return {key: (_MASK if key.lower() in _SENSITIVE_HEADERS else value) for key, value in request.headers.items()}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Emit one ``api.access`` record per request.

    Each record carries method, path, status, duration, a correlation id
    (from ``X-Correlation-ID`` or a fresh UUID-4, echoed back on the
    response), the authenticated ``user_id`` when the auth middleware
    resolved one, and the W3C trace ids.  The payload is passed as
    ``extra={"request": ...}`` so :class:`JSONFormatter` can index it.
    Client errors log at WARNING and server errors at ERROR.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        correlation_id = request.headers.get(_CORRELATION_HEADER) or str(uuid.uuid4())

        start = time.monotonic()
        response: Response | None = None
        try:
            response = await call_next(request)
            response.headers[_CORRELATION_HEADER] = correlation_id
            return response
        finally:
            status_code = response.status_code if response is not None else 500
            log_payload: dict[str, Any] = {
                "method": request.method,
                "path": request.url.path,
                "query": str(request.url.query) if request.url.query else None,
                "status_code": status_code,
                "duration_ms": round((time.monotonic() - start) * 1000, 2),
                "client": request.client.host if request.client else None,
                "correlation_id": correlation_id,
                "user_id": getattr(request.state, "user_id", "anonymous"),
                "trace_id": getattr(request.state, "trace_id", ""),
                "span_id": getattr(request.state, "span_id", ""),
                "headers": _safe_headers(request),
            }
            if status_code >= 500:
                logger.error("request completed", extra={"request": log_payload})
            elif status_code >= 400:
                logger.warning("request completed", extra={"request": log_payload})
            else:
                logger.info("request completed", extra={"request": log_payload})
