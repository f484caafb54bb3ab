"""Request and response models for API endpoints that are not engine models.

Endpoints that return engine models (``EntitlementSnapshot``,
``TierCapabilities``, ``PauseState``) use them directly as their
``response_model``.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class TrialRequest(BaseModel):
    """Request body for activating the free trial."""

    role: str = Field(..., min_length=1, description="Role of the profile requesting the trial (e.g. 'escort').")


class TrialResponse(BaseModel):
    """Response after a successful trial activation."""

    success: bool = True
    trial_end: datetime = Field(..., description="End of the trial window (UTC).")


class ErrorResponse(BaseModel):
    """Body returned for every recoverable entitlement error."""

    error: str = Field(..., description="Stable machine-readable error code.")
    detail: str = Field(..., description="Human-readable explanation.")


class HealthResponse(BaseModel):
    """Liveness probe body."""

    status: str
    version: str
    db: str
