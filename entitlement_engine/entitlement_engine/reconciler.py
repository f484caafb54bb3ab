"""Entitlement reconciliation.

:func:`reconcile` is a pure function of ``(record, trial, facts, now)``.
It produces a fresh :class:`EntitlementSnapshot` plus the subscriber
record that persists it.  Rules are applied in a fixed order; a later
rule only overrides an earlier one when its own condition holds:

1. Missing record -> default ``{tier: none, subscription_type: free}``.
2. ``is_expired`` = ``expires_at`` present and ``now > expires_at``.
3. Provider facts are gathered by the caller (customer, then recurring
   subscriptions, else one-time payments most recent first).
4. Default snapshot: unsubscribed, tier none, all flags off.
   a. An unexpired package tier already on the record is carried over.
   b. An open trial window grants :attr:`Tier.TRIAL`.
5. A live recurring subscription grants Platinum (recurring).
6. Otherwise the most recent one-time payment whose window still covers
   ``now`` grants Platinum (one_time).  Elapsed payments are ignored.
7. An expired Platinum record with nothing above re-establishing an
   entitlement is forced back to the default.
8. Derived fields are fully replaced on the returned record.

Recurring evidence always beats one-time evidence, however recent.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from entitlement_engine.models import EntitlementSnapshot, SubscriberRecord
from entitlement_engine.provider import ProviderFacts
from entitlement_engine.tiers import SubscriptionType, Tier
from entitlement_engine.trial import TrialState

logger = logging.getLogger(__name__)

# Tiers that may be carried over from the persisted record when unexpired.
# Trial is owned by the trial clock and never carried.
_CARRYABLE_TIERS: frozenset[Tier] = frozenset({Tier.TIER1, Tier.TIER2, Tier.TIER3, Tier.TIER4, Tier.PLATINUM})


class EntitlementSource(str, Enum):
    """Which rule produced the final snapshot."""

    DEFAULT = "default"
    CARRIED = "carried"
    TRIAL = "trial"
    RECURRING = "recurring"
    ONE_TIME = "one_time"
    EXPIRED_DOWNGRADE = "expired_downgrade"


@dataclass(frozen=True)
class ReconcileOutcome:
    """Snapshot to return and record to persist for one reconciliation."""

    snapshot: EntitlementSnapshot
    record: SubscriberRecord
    source: EntitlementSource
    previous_tier: Tier


def is_expired(record: SubscriberRecord, now: datetime) -> bool:
    """Return ``True`` if the record carries an expiry that has passed."""
    return record.expires_at is not None and now > record.expires_at


def current_tier(record: SubscriberRecord | None, now: datetime) -> Tier:
    """Tier from the last reconciliation, or none once it has lapsed."""
    if record is None or record.tier == Tier.NONE or record.expires_at is None:
        return Tier.NONE
    if is_expired(record, now):
        return Tier.NONE
    return record.tier


def reconcile(
    record: SubscriberRecord | None,
    trial: TrialState,
    facts: ProviderFacts,
    now: datetime,
    *,
    email: str | None = None,
) -> ReconcileOutcome:
    """Merge the persisted record, trial clock, and provider facts.

    Parameters
    ----------
    record:
        The stored subscriber record, or ``None`` when the identity has
        never been reconciled.
    trial:
        Output of :func:`entitlement_engine.trial.evaluate_trial`.
    facts:
        Output of :func:`entitlement_engine.provider.gather_provider_facts`.
    now:
        Reconciliation time.  All comparisons use this single instant.
    email:
        Required when *record* is ``None`` so a default can be synthesised.

    Returns
    -------
    ReconcileOutcome
        The new snapshot, the record to upsert, and the deciding rule.
    """
    if record is None:
        if email is None:
            raise ValueError("email is required when no subscriber record exists")
        record = SubscriberRecord(email=email)

    expired = is_expired(record, now)
    previous_tier = record.tier

    # Rule 4: default.
    tier = Tier.NONE
    sub_type = SubscriptionType.FREE
    period_end: datetime | None = None
    plan_duration_days: int | None = None
    plan_price: int | None = None
    source = EntitlementSource.DEFAULT

    # Rule 4a: unexpired package tier on the record.
    if record.tier in _CARRYABLE_TIERS and record.expires_at is not None and record.expires_at > now:
        tier = record.tier
        sub_type = record.subscription_type
        period_end = record.expires_at
        plan_duration_days = record.plan_duration_days
        plan_price = record.plan_price
        source = EntitlementSource.CARRIED

    # Rule 4b: open trial window.
    if trial.is_active and trial.ends_at is not None and source is EntitlementSource.DEFAULT:
        tier = Tier.TRIAL
        sub_type = SubscriptionType.TRIAL
        period_end = trial.ends_at
        source = EntitlementSource.TRIAL

    subscription = facts.active_subscription
    payment = facts.latest_payment

    # Rule 5: a live recurring subscription.  One whose reported period has
    # already ended is stale and conflicts with the expiry on the record.
    if subscription is not None and subscription.period_end > now:
        tier = Tier.PLATINUM
        sub_type = SubscriptionType.RECURRING
        period_end = subscription.period_end
        plan_duration_days = None
        plan_price = None
        source = EntitlementSource.RECURRING
        logger.debug("Recurring subscription %s active until %s", subscription.id, period_end.isoformat())

    # Rule 6: most recent one-time payment still inside its window.
    elif payment is not None:
        pay_expires_at = payment.expires_at
        if now <= pay_expires_at:
            tier = Tier.PLATINUM
            sub_type = SubscriptionType.ONE_TIME
            period_end = pay_expires_at
            plan_duration_days = payment.duration_days
            plan_price = payment.amount
            source = EntitlementSource.ONE_TIME
            logger.debug("One-time payment %s valid until %s", payment.id, pay_expires_at.isoformat())
        else:
            logger.debug("One-time payment %s elapsed at %s", payment.id, pay_expires_at.isoformat())

    # Rule 7: explicit downgrade of a lapsed Platinum record.
    if (
        expired
        and previous_tier == Tier.PLATINUM
        and source not in (EntitlementSource.RECURRING, EntitlementSource.ONE_TIME, EntitlementSource.TRIAL)
    ):
        tier = Tier.NONE
        sub_type = SubscriptionType.FREE
        period_end = None
        plan_duration_days = None
        plan_price = None
        source = EntitlementSource.EXPIRED_DOWNGRADE
        logger.info("Platinum entitlement for %s expired at %s; downgrading", record.email, record.expires_at)

    subscribed = tier != Tier.NONE
    snapshot = EntitlementSnapshot(
        subscribed=subscribed,
        tier=tier,
        period_end=period_end,
        subscription_type=sub_type,
        trial_active=source is EntitlementSource.TRIAL,
        has_used_trial=trial.has_used_trial,
        trial_days_remaining=trial.days_remaining if source is EntitlementSource.TRIAL else None,
        profile_visible=subscribed,
    )

    # Rule 8: full replace of the derived fields; trial fields are untouched.
    new_record = record.model_copy(
        update={
            "tier": tier,
            "subscription_type": sub_type,
            "expires_at": period_end,
            "provider_customer_ref": facts.customer_ref or record.provider_customer_ref,
            "plan_duration_days": plan_duration_days,
            "plan_price": plan_price,
            "updated_at": now,
        }
    )

    return ReconcileOutcome(
        snapshot=snapshot,
        record=new_record,
        source=source,
        previous_tier=previous_tier,
    )
