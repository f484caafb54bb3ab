"""Prometheus metrics endpoint.

``GET /metrics`` is registered without the ``/api/v1`` prefix and is a
public path for the authentication middleware.
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter(tags=["metrics"])


@router.get("/metrics")
async def prometheus_metrics() -> PlainTextResponse:
    """Return all registered metrics in the Prometheus text format."""
    return PlainTextResponse(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
