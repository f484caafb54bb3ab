"""Entitlement reconciliation and trial activation for one identity.

Each call is one logical transaction: load the subscriber record, ask the
trial clock and the payment provider, compute a fresh snapshot with the
pure reconciler, then write the full result back.  The provider is
queried before anything is written, so a provider failure leaves the
store untouched.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from entitlement_engine.errors import AlreadyUsed, InvalidRequest, PersistenceFailure, ProviderUnavailable
from entitlement_engine.models import EntitlementSnapshot, Identity, Profile, ProfileRole, SubscriberRecord
from entitlement_engine.pause import ensure_pause_state, rollover
from entitlement_engine.provider import PaymentProvider, gather_provider_facts
from entitlement_engine.reconciler import current_tier, reconcile
from entitlement_engine.state.repository import PauseStateRepository, ProfileRepository, SubscriberRepository
from entitlement_engine.tiers import TierCapabilities, get_capabilities
from entitlement_engine.trial import evaluate_trial, start_trial
from entitlement_engine.visibility import is_publicly_visible, payment_status_for
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from api.config import APISettings
from api.middleware.prometheus import PROVIDER_FAILURES_TOTAL, RECONCILIATIONS_TOTAL

logger = logging.getLogger(__name__)


class TrialActivation(BaseModel):
    """Result of a successful trial activation."""

    trial_end: datetime


def _primary_profile(profiles: list[Profile], user_id: str) -> Profile | None:
    for profile in profiles:
        if profile.id == user_id:
            return profile
    return profiles[0] if profiles else None


class EntitlementService:
    """Reconcile and activate entitlements for a single identity.

    Parameters
    ----------
    session:
        Active database session.  The caller commits on success and rolls
        back on any raised error.
    settings:
        API settings (provider timeout, trial policy, pause cap).
    provider:
        Payment-provider adapter.
    """

    def __init__(
        self,
        session: AsyncSession,
        settings: APISettings,
        provider: PaymentProvider,
    ) -> None:
        self._session = session
        self._settings = settings
        self._provider = provider
        self._subscribers = SubscriberRepository(session)
        self._profiles = ProfileRepository(session)
        self._pauses = PauseStateRepository(session)

    async def reconcile(self, identity: Identity, now: datetime | None = None) -> EntitlementSnapshot:
        """Recompute and persist the entitlement snapshot for *identity*.

        Safe to call on every page load: the snapshot is a pure function of
        the stored record, the trial clock, and live provider state, and it
        replaces the stored derived fields in one upsert.

        Raises
        ------
        ProviderUnavailable
            If the payment provider fails or times out.  Nothing is written.
        PersistenceFailure
            If the store rejects a read or write.
        """
        now = now or datetime.now(UTC)

        record = await self._load_record(identity)
        trial = evaluate_trial(record, now)

        try:
            facts = await gather_provider_facts(
                self._provider,
                identity.email,
                timeout=self._settings.provider_timeout_seconds,
            )
        except ProviderUnavailable:
            PROVIDER_FAILURES_TOTAL.inc()
            raise

        if record is None:
            record = SubscriberRecord.default_for(identity)
        elif record.user_id is None:
            record = record.model_copy(update={"user_id": identity.user_id})

        outcome = reconcile(record, trial, facts, now)
        snapshot = outcome.snapshot
        logger.info(
            "Reconciled %s: tier %s -> %s via %s (period_end=%s)",
            identity.email,
            outcome.previous_tier.value,
            snapshot.tier.value,
            outcome.source.value,
            snapshot.period_end.isoformat() if snapshot.period_end else None,
        )

        try:
            await self._subscribers.upsert(outcome.record)
            visible = await self._sync_profiles(identity, snapshot)
        except SQLAlchemyError as exc:
            logger.error("Failed to persist reconciliation for %s", identity.email, exc_info=True)
            raise PersistenceFailure("Failed to persist entitlement snapshot") from exc

        RECONCILIATIONS_TOTAL.labels(source=outcome.source.value, tier=snapshot.tier.value).inc()
        if visible is not None and visible != snapshot.profile_visible:
            snapshot = snapshot.model_copy(update={"profile_visible": visible})
        return snapshot

    async def start_trial(
        self,
        identity: Identity,
        role: str,
        now: datetime | None = None,
    ) -> TrialActivation:
        """Activate the identity's one free trial.

        Raises
        ------
        InvalidRequest
            If *role* is unknown or not eligible for a trial.
        AlreadyUsed
            If the identity has started a trial before, including when a
            concurrent request won the race to activate it.
        PersistenceFailure
            If the store rejects the write.
        """
        now = now or datetime.now(UTC)

        try:
            parsed_role = ProfileRole(role)
        except ValueError as exc:
            raise InvalidRequest(f"Unknown role: {role!r}") from exc
        if parsed_role.value not in self._settings.trial_roles:
            raise InvalidRequest(f"Free trial is not available for the {parsed_role.value} role")

        record = await self._load_record(identity) or SubscriberRecord.default_for(identity)
        updated = start_trial(record, now, timedelta(days=self._settings.trial_days))

        try:
            persisted = await self._subscribers.upsert(updated)
            if persisted.trial_started_at != updated.trial_started_at:
                logger.info("Concurrent trial activation for %s already recorded", identity.email)
                raise AlreadyUsed("Free trial has already been used")
            for profile in await self._profiles.list_for_user(identity.user_id):
                await self._profiles.update_status(
                    profile.id,
                    is_active=True,
                    payment_status=payment_status_for(
                        EntitlementSnapshot(
                            subscribed=True,
                            tier=updated.tier,
                            period_end=updated.trial_ends_at,
                            subscription_type=updated.subscription_type,
                        ),
                        None,
                    ),
                )
        except SQLAlchemyError as exc:
            logger.error("Failed to persist trial activation for %s", identity.email, exc_info=True)
            raise PersistenceFailure("Failed to persist trial activation") from exc

        assert updated.trial_ends_at is not None
        logger.info("Free trial activated for %s until %s", identity.email, updated.trial_ends_at.isoformat())
        return TrialActivation(trial_end=updated.trial_ends_at)

    async def capabilities(self, identity: Identity, now: datetime | None = None) -> TierCapabilities:
        """Return the capability row for the identity's last reconciled tier."""
        now = now or datetime.now(UTC)
        record = await self._load_record(identity)
        return get_capabilities(current_tier(record, now))

    async def _load_record(self, identity: Identity) -> SubscriberRecord | None:
        try:
            return await self._subscribers.get_by_email(identity.email)
        except SQLAlchemyError as exc:
            logger.error("Failed to load subscriber %s", identity.email, exc_info=True)
            raise PersistenceFailure("Failed to load subscriber record") from exc

    async def _sync_profiles(self, identity: Identity, snapshot: EntitlementSnapshot) -> bool | None:
        """Mirror the snapshot onto the identity's profiles.

        Creates pause state once a profile's tier crosses the pause
        threshold, rolls its quota over at a new billing period, and
        returns the visibility of the primary profile (``None`` if the
        identity owns no profile).
        """
        profiles = await self._profiles.list_for_user(identity.user_id)
        primary = _primary_profile(profiles, identity.user_id)
        primary_visible: bool | None = None

        for profile in profiles:
            existing = await self._pauses.get(profile.id)
            state = ensure_pause_state(
                existing,
                profile.id,
                snapshot.tier,
                pause_cap=self._settings.pause_cap,
                period_end=snapshot.period_end,
            )
            if state is not None:
                state = rollover(state, snapshot.period_end)
                if state != existing:
                    await self._pauses.save(state)

            visible = is_publicly_visible(snapshot, state)
            await self._profiles.update_status(
                profile.id,
                is_active=visible,
                payment_status=payment_status_for(snapshot, state),
            )
            if primary is not None and profile.id == primary.id:
                primary_visible = visible

        return primary_visible
