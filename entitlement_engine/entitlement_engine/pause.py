"""Billing-pause state machine.

States cycle ``active -> paused -> active``.  A pause hides the profile
from search at once; billing continues until ``resume_at`` and is then
stopped by the external sweep job, which reads :func:`is_pause_due`.
Each billing period grants ``pause_cap`` pauses.  The counter resets only
when the period end moves forward (see :func:`rollover`), never on a
calendar boundary.

All transitions return a new :class:`PauseState`; callers persist the
whole state so duplicate submissions cannot double-apply.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from entitlement_engine.errors import NotEligible, NotPaused, QuotaExhausted
from entitlement_engine.models import PauseState
from entitlement_engine.tiers import PAUSE_THRESHOLD, Tier, meets_threshold

logger = logging.getLogger(__name__)

PAUSE_WINDOW = timedelta(days=7)
DEFAULT_PAUSE_CAP = 3


def ensure_pause_state(
    existing: PauseState | None,
    profile_id: str,
    tier: Tier,
    *,
    pause_cap: int = DEFAULT_PAUSE_CAP,
    period_end: datetime | None = None,
) -> PauseState | None:
    """Return the pause state for a profile, creating it on first eligibility.

    Returns ``None`` when no state exists and *tier* is below the pause
    threshold.  An existing state is returned unchanged.
    """
    if existing is not None:
        return existing
    if not meets_threshold(tier, PAUSE_THRESHOLD):
        return None
    logger.info("Creating pause state for profile %s (tier=%s, cap=%d)", profile_id, tier.value, pause_cap)
    return PauseState(profile_id=profile_id, pause_cap=pause_cap, period_end=period_end)


def pause(
    state: PauseState,
    tier: Tier,
    now: datetime,
    window: timedelta = PAUSE_WINDOW,
) -> PauseState:
    """Pause a profile.

    Parameters
    ----------
    state:
        Current pause state.
    tier:
        Tier of the profile owner, from the latest reconciliation.
    now:
        Time of the request.
    window:
        How long billing keeps running before the sweep stops it.

    Returns
    -------
    PauseState
        The paused state.  If *state* is already paused it is returned
        unchanged, so a repeated "Confirm Pause" consumes one credit.

    Raises
    ------
    NotEligible
        If *tier* is below the pause threshold.
    QuotaExhausted
        If every pause credit for the period has been used.
    """
    if not meets_threshold(tier, PAUSE_THRESHOLD):
        raise NotEligible(f"Pausing requires the {PAUSE_THRESHOLD.value} tier or above; current tier is {tier.value}")

    if state.is_paused:
        logger.debug("Profile %s already paused since %s", state.profile_id, state.current_pause_started_at)
        return state

    if state.pauses_used_in_period >= state.pause_cap:
        raise QuotaExhausted(f"All {state.pause_cap} pauses for this billing period have been used")

    return state.model_copy(
        update={
            "is_paused": True,
            "current_pause_started_at": now,
            "resume_at": now + window,
            "pauses_used_in_period": state.pauses_used_in_period + 1,
        }
    )


def resume(state: PauseState, now: datetime) -> PauseState:
    """Resume a paused profile.  The consumed pause credit is not refunded.

    Raises
    ------
    NotPaused
        If the profile is not currently paused.
    """
    if not state.is_paused:
        raise NotPaused("Profile is not paused")

    if state.resume_at is not None and now < state.resume_at:
        logger.debug("Profile %s resumed early (scheduled %s)", state.profile_id, state.resume_at.isoformat())

    return state.model_copy(
        update={
            "is_paused": False,
            "current_pause_started_at": None,
            "resume_at": None,
        }
    )


def rollover(state: PauseState, period_end: datetime | None) -> PauseState:
    """Reset the pause counter when a new billing period has started.

    A period is new when *period_end* is later than the one the state was
    last rolled to.  An unchanged or missing period end keeps the counter.
    """
    if period_end is None:
        return state
    if state.period_end is None:
        # First period seen for this state; nothing to reset.
        return state.model_copy(update={"period_end": period_end})
    if period_end <= state.period_end:
        return state
    if state.pauses_used_in_period:
        logger.info(
            "New billing period for profile %s (ends %s); resetting %d used pause(s)",
            state.profile_id,
            period_end.isoformat(),
            state.pauses_used_in_period,
        )
    return state.model_copy(update={"pauses_used_in_period": 0, "period_end": period_end})


def is_pause_due(state: PauseState, now: datetime) -> bool:
    """Return ``True`` once a paused profile's billing should stop."""
    return state.is_paused and state.resume_at is not None and now >= state.resume_at
