"""Profile pause and resume on behalf of the profile owner."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from entitlement_engine.errors import EntitlementError, InvalidRequest, NotEligible, NotPaused, PersistenceFailure
from entitlement_engine.models import EntitlementSnapshot, Identity, PauseState, Profile, SubscriberRecord
from entitlement_engine.pause import ensure_pause_state, pause, resume, rollover
from entitlement_engine.reconciler import current_tier
from entitlement_engine.state.repository import PauseStateRepository, ProfileRepository, SubscriberRepository
from entitlement_engine.tiers import PAUSE_THRESHOLD, Tier
from entitlement_engine.visibility import is_publicly_visible, payment_status_for
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from api.config import APISettings
from api.middleware.prometheus import PAUSE_ACTIONS_TOTAL

logger = logging.getLogger(__name__)


def _snapshot_for(record: SubscriberRecord | None, tier: Tier) -> EntitlementSnapshot:
    if tier == Tier.NONE or record is None:
        return EntitlementSnapshot(subscribed=False, tier=Tier.NONE)
    return EntitlementSnapshot(
        subscribed=True,
        tier=tier,
        period_end=record.expires_at,
        subscription_type=record.subscription_type,
        profile_visible=True,
    )


class PauseService:
    """Pause control for profiles owned by the calling identity.

    Eligibility is taken from the last persisted reconciliation, not from
    a fresh provider query.

    Parameters
    ----------
    session:
        Active database session.  The caller commits on success.
    settings:
        API settings (pause cap and window).
    """

    def __init__(self, session: AsyncSession, settings: APISettings) -> None:
        self._session = session
        self._settings = settings
        self._subscribers = SubscriberRepository(session)
        self._profiles = ProfileRepository(session)
        self._pauses = PauseStateRepository(session)

    async def get_state(self, identity: Identity, profile_id: str, now: datetime | None = None) -> PauseState:
        """Return the profile's pause state without modifying it.

        A profile that has never crossed the pause threshold reports a
        fresh, unpaused state with the configured cap.
        """
        now = now or datetime.now(UTC)
        try:
            await self._load_owned(identity, profile_id)
            record = await self._subscribers.get_by_email(identity.email)
            existing = await self._pauses.get(profile_id)
        except SQLAlchemyError as exc:
            raise PersistenceFailure("Failed to load pause state") from exc

        if existing is not None:
            return existing
        period_end = record.expires_at if record is not None else None
        return PauseState(
            profile_id=profile_id,
            pause_cap=self._settings.pause_cap,
            period_end=period_end if current_tier(record, now) != Tier.NONE else None,
        )

    async def pause_profile(self, identity: Identity, profile_id: str, now: datetime | None = None) -> PauseState:
        """Pause *profile_id* and hide it from public listings.

        Raises
        ------
        InvalidRequest
            If the profile does not exist or belongs to someone else.
        NotEligible
            If the owner's tier is below the pause threshold.
        QuotaExhausted
            If the period's pause credits are used up.
        """
        now = now or datetime.now(UTC)
        try:
            await self._load_owned(identity, profile_id)
            record = await self._subscribers.get_by_email(identity.email)
            existing = await self._pauses.get(profile_id)
        except SQLAlchemyError as exc:
            raise PersistenceFailure("Failed to load pause state") from exc

        tier = current_tier(record, now)
        period_end = record.expires_at if tier != Tier.NONE and record is not None else None
        try:
            state = ensure_pause_state(
                existing,
                profile_id,
                tier,
                pause_cap=self._settings.pause_cap,
                period_end=period_end,
            )
            if state is None:
                raise NotEligible(
                    f"Pausing requires the {PAUSE_THRESHOLD.value} tier or above; current tier is {tier.value}"
                )
            state = rollover(state, period_end)
            paused = pause(state, tier, now, timedelta(days=self._settings.pause_window_days))
        except EntitlementError as exc:
            PAUSE_ACTIONS_TOTAL.labels(action="pause", outcome=exc.code).inc()
            raise

        PAUSE_ACTIONS_TOTAL.labels(action="pause", outcome="ok").inc()
        if paused != existing:
            await self._persist(paused, _snapshot_for(record, tier))
            logger.info(
                "Profile %s paused until %s (%d/%d used)",
                profile_id,
                paused.resume_at.isoformat() if paused.resume_at else None,
                paused.pauses_used_in_period,
                paused.pause_cap,
            )
        return paused

    async def resume_profile(self, identity: Identity, profile_id: str, now: datetime | None = None) -> PauseState:
        """Resume *profile_id*; visibility follows the owner's subscription.

        Raises
        ------
        InvalidRequest
            If the profile does not exist or belongs to someone else.
        NotPaused
            If the profile is not paused.
        """
        now = now or datetime.now(UTC)
        try:
            await self._load_owned(identity, profile_id)
            record = await self._subscribers.get_by_email(identity.email)
            existing = await self._pauses.get(profile_id)
        except SQLAlchemyError as exc:
            raise PersistenceFailure("Failed to load pause state") from exc

        try:
            if existing is None:
                raise NotPaused("Profile is not paused")
            resumed = resume(existing, now)
        except EntitlementError as exc:
            PAUSE_ACTIONS_TOTAL.labels(action="resume", outcome=exc.code).inc()
            raise

        PAUSE_ACTIONS_TOTAL.labels(action="resume", outcome="ok").inc()
        await self._persist(resumed, _snapshot_for(record, current_tier(record, now)))
        logger.info("Profile %s resumed", profile_id)
        return resumed

    async def _load_owned(self, identity: Identity, profile_id: str) -> Profile:
        profile = await self._profiles.get(profile_id)
        # Foreign and missing profiles are indistinguishable to the caller.
        if profile is None or profile.user_id != identity.user_id:
            raise InvalidRequest(f"Unknown profile: {profile_id}")
        return profile

    async def _persist(self, state: PauseState, snapshot: EntitlementSnapshot) -> None:
        try:
            await self._pauses.save(state)
            await self._profiles.update_status(
                state.profile_id,
                is_active=is_publicly_visible(snapshot, state),
                payment_status=payment_status_for(snapshot, state),
            )
        except SQLAlchemyError as exc:
            logger.error("Failed to persist pause state for %s", state.profile_id, exc_info=True)
            raise PersistenceFailure("Failed to persist pause state") from exc
