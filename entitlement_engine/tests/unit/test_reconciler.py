"""Tests for the pure entitlement reconciler.

Covers:
- The three reference scenarios (no customer, recurring, one-time window)
- Idempotence of repeated reconciliation
- Recurring evidence beating one-time evidence
- Elapsed one-time payments being inert
- Downgrade of a lapsed Platinum record, including a lapsed record that
  meets a new but already-elapsed one-time payment
- Trial and carried package tiers
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from entitlement_engine.models import SubscriberRecord
from entitlement_engine.provider import ActiveSubscription, OneTimePayment, ProviderFacts
from entitlement_engine.reconciler import EntitlementSource, current_tier, is_expired, reconcile
from entitlement_engine.tiers import SubscriptionType, Tier
from entitlement_engine.trial import TrialState, evaluate_trial, start_trial

_T = datetime(2025, 6, 1, 9, 30, tzinfo=UTC)
_EMAIL = "ada@example.com"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _record(**overrides) -> SubscriberRecord:
    return SubscriberRecord(email=_EMAIL, user_id="u-1", **overrides)


def _recurring(period_end: datetime, sub_id: str = "sub_1") -> ProviderFacts:
    return ProviderFacts(
        customer_ref="cus_1",
        subscriptions=[ActiveSubscription(id=sub_id, period_end=period_end)],
    )


def _one_time(paid_at: datetime, duration_days: int, amount: int = 4900, pay_id: str = "pi_1") -> OneTimePayment:
    return OneTimePayment(id=pay_id, paid_at=paid_at, amount=amount, tier_tag="tier4", duration_days=duration_days)


def _payments(*payments: OneTimePayment) -> ProviderFacts:
    return ProviderFacts(customer_ref="cus_1", payments=list(payments))


_NO_TRIAL = TrialState()
_NO_FACTS = ProviderFacts()


# ---------------------------------------------------------------------------
# Reference scenarios
# ---------------------------------------------------------------------------


class TestScenarios:
    def test_unknown_identity_is_basic(self):
        outcome = reconcile(None, _NO_TRIAL, _NO_FACTS, _T, email=_EMAIL)
        snap = outcome.snapshot
        assert snap.subscribed is False
        assert snap.tier is Tier.NONE
        assert snap.featured is False
        assert snap.verification_eligible is False
        assert snap.period_end is None
        assert outcome.source is EntitlementSource.DEFAULT
        assert outcome.record.email == _EMAIL

    def test_recurring_subscription_is_platinum(self):
        end = _T + timedelta(days=30)
        outcome = reconcile(_record(), _NO_TRIAL, _recurring(end), _T)
        snap = outcome.snapshot
        assert snap.subscribed is True
        assert snap.tier is Tier.PLATINUM
        assert snap.period_end == end
        assert snap.featured is True
        assert snap.subscription_type is SubscriptionType.RECURRING
        assert outcome.source is EntitlementSource.RECURRING

    def test_one_time_payment_inside_window(self):
        t0 = _T
        facts = _payments(_one_time(t0, 84))
        outcome = reconcile(_record(), _NO_TRIAL, facts, t0 + timedelta(days=83))
        assert outcome.snapshot.tier is Tier.PLATINUM
        assert outcome.snapshot.period_end == t0 + timedelta(days=84)
        assert outcome.snapshot.subscription_type is SubscriptionType.ONE_TIME
        assert outcome.record.plan_duration_days == 84
        assert outcome.record.plan_price == 4900

    def test_one_time_payment_after_window(self):
        t0 = _T
        facts = _payments(_one_time(t0, 84))
        inside = reconcile(_record(), _NO_TRIAL, facts, t0 + timedelta(days=83))
        after = reconcile(inside.record, _NO_TRIAL, facts, t0 + timedelta(days=85))
        assert after.snapshot.tier is Tier.NONE
        assert after.snapshot.subscribed is False

    def test_one_time_window_end_is_inclusive(self):
        facts = _payments(_one_time(_T, 10))
        outcome = reconcile(_record(), _NO_TRIAL, facts, _T + timedelta(days=10))
        assert outcome.snapshot.tier is Tier.PLATINUM


# ---------------------------------------------------------------------------
# Properties
# ---------------------------------------------------------------------------


class TestIdempotence:
    """Reconciling again with unchanged inputs yields the same snapshot."""

    @pytest.mark.parametrize(
        "facts",
        [
            _NO_FACTS,
            _recurring(_T + timedelta(days=30)),
            _payments(_one_time(_T - timedelta(days=5), 30)),
        ],
        ids=["none", "recurring", "one_time"],
    )
    def test_repeat_is_stable(self, facts):
        first = reconcile(_record(), _NO_TRIAL, facts, _T)
        second = reconcile(first.record, _NO_TRIAL, facts, _T)
        assert second.snapshot == first.snapshot
        assert second.record == first.record

    def test_repeat_during_trial(self):
        record = start_trial(_record(), _T - timedelta(days=1))
        trial = evaluate_trial(record, _T)
        first = reconcile(record, trial, _NO_FACTS, _T)
        second = reconcile(first.record, trial, _NO_FACTS, _T)
        assert second.snapshot == first.snapshot


class TestPrecedence:
    def test_recurring_beats_more_recent_one_time(self):
        facts = ProviderFacts(
            customer_ref="cus_1",
            subscriptions=[ActiveSubscription(id="sub_1", period_end=_T + timedelta(days=3))],
            payments=[_one_time(_T - timedelta(hours=1), 365)],
        )
        outcome = reconcile(_record(), _NO_TRIAL, facts, _T)
        assert outcome.snapshot.subscription_type is SubscriptionType.RECURRING
        assert outcome.snapshot.period_end == _T + timedelta(days=3)

    def test_only_most_recent_payment_counts(self):
        """An older, longer payment does not rescue an elapsed latest one."""
        facts = _payments(
            _one_time(_T - timedelta(days=10), 7, pay_id="pi_new"),
            _one_time(_T - timedelta(days=60), 365, pay_id="pi_old"),
        )
        outcome = reconcile(_record(), _NO_TRIAL, facts, _T)
        assert outcome.snapshot.tier is Tier.NONE

    def test_stale_subscription_is_ignored(self):
        facts = _recurring(_T - timedelta(days=1))
        outcome = reconcile(_record(), _NO_TRIAL, facts, _T)
        assert outcome.snapshot.tier is Tier.NONE
        assert outcome.source is EntitlementSource.DEFAULT

    def test_provider_beats_trial(self):
        record = start_trial(_record(), _T - timedelta(days=2))
        trial = evaluate_trial(record, _T)
        outcome = reconcile(record, trial, _recurring(_T + timedelta(days=30)), _T)
        snap = outcome.snapshot
        assert snap.tier is Tier.PLATINUM
        assert snap.trial_active is False
        assert snap.has_used_trial is True
        assert snap.trial_days_remaining is None


class TestExpiredPayments:
    def test_elapsed_one_time_payment_is_inert(self):
        facts = _payments(_one_time(_T - timedelta(days=40), 30))
        outcome = reconcile(_record(), _NO_TRIAL, facts, _T)
        assert outcome.snapshot.tier is Tier.NONE
        assert outcome.record.plan_duration_days is None

    def test_zero_day_payment_never_grants(self):
        facts = _payments(_one_time(_T - timedelta(seconds=1), 0))
        outcome = reconcile(_record(), _NO_TRIAL, facts, _T)
        assert outcome.snapshot.tier is Tier.NONE


class TestDowngrade:
    def test_lapsed_platinum_is_downgraded(self):
        record = _record(
            tier=Tier.PLATINUM,
            subscription_type=SubscriptionType.RECURRING,
            expires_at=_T - timedelta(days=1),
        )
        outcome = reconcile(record, _NO_TRIAL, _NO_FACTS, _T)
        assert outcome.snapshot.tier is Tier.NONE
        assert outcome.snapshot.subscribed is False
        assert outcome.source is EntitlementSource.EXPIRED_DOWNGRADE
        assert outcome.previous_tier is Tier.PLATINUM
        assert outcome.record.expires_at is None
        assert outcome.record.subscription_type is SubscriptionType.FREE

    def test_lapsed_platinum_with_new_but_elapsed_payment(self):
        """A fresh payment record whose window has already closed does not re-grant."""
        record = _record(
            tier=Tier.PLATINUM,
            subscription_type=SubscriptionType.ONE_TIME,
            expires_at=_T - timedelta(days=20),
            plan_duration_days=30,
        )
        facts = _payments(_one_time(_T - timedelta(days=15), 7, pay_id="pi_newer"))
        outcome = reconcile(record, _NO_TRIAL, facts, _T)
        assert outcome.snapshot.tier is Tier.NONE
        assert outcome.snapshot.featured is False
        assert outcome.source is EntitlementSource.EXPIRED_DOWNGRADE

    def test_lapsed_platinum_renewed_by_subscription(self):
        record = _record(tier=Tier.PLATINUM, expires_at=_T - timedelta(days=1))
        outcome = reconcile(record, _NO_TRIAL, _recurring(_T + timedelta(days=29)), _T)
        assert outcome.snapshot.tier is Tier.PLATINUM
        assert outcome.source is EntitlementSource.RECURRING

    def test_lapsed_package_tier_drops_to_default(self):
        record = _record(tier=Tier.TIER2, subscription_type=SubscriptionType.ONE_TIME, expires_at=_T - timedelta(days=1))
        outcome = reconcile(record, _NO_TRIAL, _NO_FACTS, _T)
        assert outcome.snapshot.tier is Tier.NONE
        assert outcome.source is EntitlementSource.DEFAULT


class TestTrialAndCarryOver:
    def test_open_trial_grants_trial_tier(self):
        record = start_trial(_record(), _T - timedelta(days=3))
        trial = evaluate_trial(record, _T)
        outcome = reconcile(record, trial, _NO_FACTS, _T)
        snap = outcome.snapshot
        assert snap.tier is Tier.TRIAL
        assert snap.subscribed is True
        assert snap.trial_active is True
        assert snap.trial_days_remaining == 4
        assert snap.period_end == record.trial_ends_at
        assert snap.verification_eligible is False

    def test_finished_trial_is_basic(self):
        record = start_trial(_record(), _T - timedelta(days=8))
        trial = evaluate_trial(record, _T)
        outcome = reconcile(record, trial, _NO_FACTS, _T)
        assert outcome.snapshot.tier is Tier.NONE
        assert outcome.snapshot.has_used_trial is True

    def test_trial_fields_are_preserved(self):
        record = start_trial(_record(), _T - timedelta(days=3))
        outcome = reconcile(record, evaluate_trial(record, _T), _recurring(_T + timedelta(days=30)), _T)
        assert outcome.record.trial_started_at == record.trial_started_at
        assert outcome.record.trial_ends_at == record.trial_ends_at

    def test_unexpired_package_tier_is_carried(self):
        end = _T + timedelta(days=10)
        record = _record(tier=Tier.TIER3, subscription_type=SubscriptionType.ONE_TIME, expires_at=end)
        outcome = reconcile(record, _NO_TRIAL, _NO_FACTS, _T)
        assert outcome.snapshot.tier is Tier.TIER3
        assert outcome.snapshot.period_end == end
        assert outcome.snapshot.featured is True
        assert outcome.source is EntitlementSource.CARRIED


class TestRecordUpdate:
    def test_customer_ref_is_stored(self):
        outcome = reconcile(_record(), _NO_TRIAL, _recurring(_T + timedelta(days=30)), _T)
        assert outcome.record.provider_customer_ref == "cus_1"

    def test_customer_ref_kept_when_provider_has_none(self):
        outcome = reconcile(_record(provider_customer_ref="cus_old"), _NO_TRIAL, _NO_FACTS, _T)
        assert outcome.record.provider_customer_ref == "cus_old"

    def test_derived_flags_follow_tier(self):
        outcome = reconcile(_record(), _NO_TRIAL, _recurring(_T + timedelta(days=30)), _T)
        assert outcome.record.featured is True
        assert outcome.record.verification_eligible is True
        assert outcome.record.updated_at == _T

    def test_missing_record_requires_email(self):
        with pytest.raises(ValueError, match="email"):
            reconcile(None, _NO_TRIAL, _NO_FACTS, _T)


class TestHelpers:
    def test_is_expired(self):
        assert not is_expired(_record(), _T)
        assert not is_expired(_record(expires_at=_T), _T)
        assert is_expired(_record(expires_at=_T - timedelta(seconds=1)), _T)

    def test_current_tier(self):
        assert current_tier(None, _T) is Tier.NONE
        assert current_tier(_record(tier=Tier.TIER4, expires_at=_T + timedelta(days=1)), _T) is Tier.TIER4
        assert current_tier(_record(tier=Tier.TIER4, expires_at=_T - timedelta(days=1)), _T) is Tier.NONE
