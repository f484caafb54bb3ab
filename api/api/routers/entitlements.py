"""Entitlement endpoints: reconcile, trial activation, capabilities."""

from __future__ import annotations

import logging

from entitlement_engine.models import EntitlementSnapshot
from entitlement_engine.tiers import TierCapabilities
from fastapi import APIRouter

from api.dependencies import EntitlementServiceDep, IdentityDep
from api.schemas import ErrorResponse, TrialRequest, TrialResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/entitlements", tags=["entitlements"])

_ERRORS: dict[int | str, dict[str, object]] = {
    401: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


@router.post("/reconcile", response_model=EntitlementSnapshot, responses=_ERRORS)
async def reconcile_entitlements(
    identity: IdentityDep,
    service: EntitlementServiceDep,
) -> EntitlementSnapshot:
    """Recompute the caller's entitlements from live payment state.

    Idempotent; clients call it on every page load.
    """
    return await service.reconcile(identity)


@router.post(
    "/trial",
    response_model=TrialResponse,
    responses={**_ERRORS, 400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def activate_trial(
    body: TrialRequest,
    identity: IdentityDep,
    service: EntitlementServiceDep,
) -> TrialResponse:
    """Start the caller's one free trial."""
    activation = await service.start_trial(identity, body.role)
    return TrialResponse(trial_end=activation.trial_end)


@router.get("/capabilities", response_model=TierCapabilities, responses=_ERRORS)
async def get_capabilities(
    identity: IdentityDep,
    service: EntitlementServiceDep,
) -> TierCapabilities:
    """Return the limits and flags of the caller's last reconciled tier."""
    return await service.capabilities(identity)
