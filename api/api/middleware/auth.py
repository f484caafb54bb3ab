"""Authentication middleware that extracts and validates hosted-auth JWTs.

Extracts ``Authorization: Bearer <token>`` from every request, verifies
the HS256 signature and audience with PyJWT, and populates
``request.state`` with ``user_id`` (the ``sub`` claim) and ``email``.

Endpoints explicitly listed in ``_PUBLIC_PATHS`` bypass authentication.
"""

from __future__ import annotations

import logging
from typing import Any

import jwt
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from api.config import APISettings

logger = logging.getLogger(__name__)

_ALGORITHMS: list[str] = ["HS256"]

# Paths that do not require authentication.
_PUBLIC_PATHS: frozenset[str] = frozenset(
    {
        "/api/v1/health",
        "/ready",
        "/metrics",
        "/docs",
        "/openapi.json",
        "/redoc",
        "/favicon.ico",
    }
)

# Prefixes that skip auth (e.g. static docs assets).
_PUBLIC_PREFIXES: tuple[str, ...] = (
    "/docs",
    "/redoc",
)


def _is_public_path(path: str) -> bool:
    """Return ``True`` if the path should bypass authentication."""
    if path in _PUBLIC_PATHS:
        return True
    return any(path.startswith(prefix) for prefix in _PUBLIC_PREFIXES)


def _unauthenticated(detail: str) -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content={"error": "unauthenticated", "detail": detail},
    )


def decode_access_token(token: str, settings: APISettings) -> dict[str, Any]:
    """Verify *token* and return its claims.

    Raises
    ------
    jwt.InvalidTokenError
        If the signature, audience, or expiry check fails, or the token
        lacks a ``sub`` or ``email`` claim.
    """
    claims: dict[str, Any] = jwt.decode(
        token,
        settings.supabase_jwt_secret.get_secret_value(),
        algorithms=_ALGORITHMS,
        audience=settings.jwt_audience,
        options={"require": ["sub", "exp"]},
    )
    if not claims.get("email"):
        raise jwt.MissingRequiredClaimError("email")
    return claims


class AuthenticationMiddleware(BaseHTTPMiddleware):
    """Starlette middleware that enforces Bearer token authentication.

    On each request the middleware:

    1. Checks whether the path is public (health, docs) and skips auth.
    2. Extracts the ``Authorization: Bearer <token>`` header.
    3. Verifies the token with the configured shared secret.
    4. Stores ``user_id`` and ``email`` on ``request.state``.
    5. Returns a 401 JSON response on failure.
    """

    def __init__(self, app: Any, settings: APISettings) -> None:
        super().__init__(app)
        self._settings = settings
        if not settings.supabase_jwt_secret.get_secret_value():
            logger.warning("API_SUPABASE_JWT_SECRET is not set; every authenticated request will be rejected")
        logger.info("AuthenticationMiddleware initialised (audience=%s)", settings.jwt_audience)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path

        # Allow public endpoints and CORS preflight through without authentication.
        if _is_public_path(path) or request.method == "OPTIONS":
            return await call_next(request)

        auth_header = request.headers.get("authorization")
        if not auth_header:
            return _unauthenticated("Missing Authorization header")

        # Expect "Bearer <token>" format.
        parts = auth_header.split(None, 1)
        if len(parts) != 2 or parts[0].lower() != "bearer":
            return _unauthenticated("Authorization header must use Bearer scheme")

        if not self._settings.supabase_jwt_secret.get_secret_value():
            return _unauthenticated("Token verification is not configured")

        try:
            claims = decode_access_token(parts[1], self._settings)
        except jwt.ExpiredSignatureError:
            return _unauthenticated("Token has expired")
        except jwt.InvalidTokenError as exc:
            logger.debug("Rejected token on %s: %s", path, exc)
            return _unauthenticated(f"Invalid token: {exc}")

        # Populate request.state for downstream dependencies and handlers.
        request.state.user_id = str(claims["sub"])
        request.state.email = str(claims["email"])

        return await call_next(request)
