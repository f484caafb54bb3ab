"""FastAPI application entry-point for the entitlements API."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from entitlement_engine.errors import EntitlementError
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from api import __version__
from api.config import APISettings, PlatformEnv, load_api_settings
from api.dependencies import dispose_engine, init_engine
from api.middleware.auth import AuthenticationMiddleware
from api.middleware.logging import RequestLoggingMiddleware
from api.middleware.prometheus import PrometheusMiddleware
from api.middleware.trace_context import TraceContextMiddleware, TraceLoggingFilter
from api.routers import entitlements, health, metrics, pause

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup / shutdown lifecycle.

    On startup:
    - Refuse to start outside dev without the token and Stripe secrets.
    - Initialise the async database engine.
    - Create tables in dev or local SQLite mode.
    - Switch to JSON logging when requested.

    On shutdown:
    - Dispose the database engine connection pool.
    """
    settings: APISettings = load_api_settings()

    if settings.platform_env in (PlatformEnv.STAGING, PlatformEnv.PRODUCTION):
        missing = [
            name
            for name, secret in (
                ("API_SUPABASE_JWT_SECRET", settings.supabase_jwt_secret),
                ("API_STRIPE_SECRET_KEY", settings.stripe_secret_key),
            )
            if not secret.get_secret_value()
        ]
        if missing:
            raise RuntimeError(
                f"{', '.join(missing)} must be set in {settings.platform_env.value} mode. Refusing to start."
            )

    engine = init_engine(settings)
    is_local = settings.database_url.startswith("sqlite")
    logger.info(
        "Database engine initialised (%s, %s)",
        settings.database_url[:40] + "...",
        "local" if is_local else "postgres",
    )

    # Auto-create tables in dev or local SQLite mode (idempotent).
    if settings.platform_env == PlatformEnv.DEV or is_local:
        from entitlement_engine.state.tables import Base

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables ensured (%s)", "local SQLite" if is_local else "dev auto-migration")

    if settings.structured_logging:
        from api.middleware.json_formatter import JSONFormatter

        root_logger = logging.getLogger()
        root_logger.handlers.clear()
        handler = logging.StreamHandler()
        handler.setFormatter(JSONFormatter())
        handler.addFilter(TraceLoggingFilter())
        root_logger.addHandler(handler)
        root_logger.setLevel(logging.INFO)
        logger.info("Structured JSON logging enabled")

    yield

    await dispose_engine()
    logger.info("Application shutdown complete")


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(settings: APISettings | None = None) -> FastAPI:
    """Construct and configure the FastAPI application."""
    settings = settings or load_api_settings()

    app = FastAPI(
        title="Entitlements API",
        description="Subscription entitlement reconciliation and profile pause control.",
        version=__version__,
        lifespan=lifespan,
    )

    # -- Middleware (last added runs first) ----------------------------------

    app.add_middleware(AuthenticationMiddleware, settings=settings)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(TraceContextMiddleware)
    app.add_middleware(PrometheusMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=[
            "Authorization",
            "Content-Type",
            "X-Correlation-ID",
            "Accept",
        ],
    )

    # -- Routers -------------------------------------------------------------

    app.include_router(health.router, prefix="/api/v1")
    app.include_router(entitlements.router, prefix="/api/v1")
    app.include_router(pause.router, prefix="/api/v1")
    app.include_router(health.readiness_router)
    app.include_router(metrics.router)

    # -- Exception handlers --------------------------------------------------

    @app.exception_handler(EntitlementError)
    async def entitlement_error_handler(request: Request, exc: EntitlementError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s on %s: %s", exc.code, request.url.path, exc.message)
        else:
            logger.info("%s on %s: %s", exc.code, request.url.path, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.code, "detail": exc.message},
        )

    @app.exception_handler(SQLAlchemyError)
    async def sqlalchemy_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error("Database error: %s", exc, exc_info=True)
        return JSONResponse(
            status_code=503,
            content={"error": "persistence_failure", "detail": "State store unavailable"},
        )

    return app


# Module-level application instance used by ``uvicorn api.main:app``.
app = create_app()
