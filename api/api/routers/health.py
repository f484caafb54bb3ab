"""Health-check and readiness probe endpoints.

``/health`` (liveness) lives under the versioned prefix
(``/api/v1/health``); ``/ready`` is registered at the application root so
orchestrators can gate traffic independently of the API version.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from api import __version__
from api.dependencies import SessionDep
from api.schemas import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health(session: SessionDep) -> HealthResponse:
    """Return service health.

    Always answers HTTP 200 so load-balancers see the process as alive;
    ``db`` reports whether the state store is reachable.
    """
    db_status = "ok"
    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("DB health check failed: %s", exc)
        db_status = "degraded"
    return HealthResponse(status="healthy", version=__version__, db=db_status)


readiness_router = APIRouter(tags=["infrastructure"])


@readiness_router.get("/ready")
async def readiness_probe(session: SessionDep) -> JSONResponse:
    """Readiness probe: HTTP 503 with ``not_ready`` while the database is unreachable."""
    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.error("Readiness: DB check failed: %s", exc)
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "version": __version__, "checks": {"db": "unavailable"}},
        )
    return JSONResponse(
        status_code=200,
        content={"status": "ready", "version": __version__, "checks": {"db": "ok"}},
    )
