"""Profile pause control endpoints."""

from __future__ import annotations

from entitlement_engine.models import PauseState
from fastapi import APIRouter

from api.dependencies import IdentityDep, PauseServiceDep
from api.schemas import ErrorResponse

router = APIRouter(prefix="/profiles", tags=["pause"])

_ERRORS: dict[int | str, dict[str, object]] = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


@router.get("/{profile_id}/pause", response_model=PauseState, responses=_ERRORS)
async def get_pause_state(
    profile_id: str,
    identity: IdentityDep,
    service: PauseServiceDep,
) -> PauseState:
    """Return the pause state and remaining pauses for a profile."""
    return await service.get_state(identity, profile_id)


@router.post(
    "/{profile_id}/pause",
    response_model=PauseState,
    responses={**_ERRORS, 403: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def pause_profile(
    profile_id: str,
    identity: IdentityDep,
    service: PauseServiceDep,
) -> PauseState:
    """Hide a profile and schedule its billing to stop after the pause window."""
    return await service.pause_profile(identity, profile_id)


@router.post(
    "/{profile_id}/resume",
    response_model=PauseState,
    responses={**_ERRORS, 409: {"model": ErrorResponse}},
)
async def resume_profile(
    profile_id: str,
    identity: IdentityDep,
    service: PauseServiceDep,
) -> PauseState:
    """Make a paused profile visible again."""
    return await service.resume_profile(identity, profile_id)
