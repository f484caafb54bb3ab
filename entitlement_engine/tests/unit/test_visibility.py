"""Tests for public visibility, billability, and payment status mapping."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from entitlement_engine.models import EntitlementSnapshot, PauseState, PaymentStatus
from entitlement_engine.pause import pause
from entitlement_engine.tiers import Tier
from entitlement_engine.visibility import is_billable, is_publicly_visible, payment_status_for

_NOW = datetime(2025, 2, 1, tzinfo=UTC)
_SUBSCRIBED = EntitlementSnapshot(subscribed=True, tier=Tier.TIER3, period_end=_NOW + timedelta(days=30))
_BASIC = EntitlementSnapshot()
_ACTIVE = PauseState(profile_id="p-1")
_PAUSED = pause(_ACTIVE, Tier.TIER3, _NOW)


class TestVisibility:
    def test_subscribed_unpaused_is_visible(self):
        assert is_publicly_visible(_SUBSCRIBED, None)
        assert is_publicly_visible(_SUBSCRIBED, _ACTIVE)

    def test_paused_is_hidden(self):
        assert not is_publicly_visible(_SUBSCRIBED, _PAUSED)

    def test_unsubscribed_is_hidden(self):
        assert not is_publicly_visible(_BASIC, None)
        assert not is_publicly_visible(_BASIC, _ACTIVE)


class TestBillable:
    def test_billing_continues_during_window(self):
        assert is_billable(_PAUSED, _NOW + timedelta(days=6))

    def test_billing_stops_after_window(self):
        assert not is_billable(_PAUSED, _NOW + timedelta(days=7))

    def test_unpaused_is_billable(self):
        assert is_billable(None, _NOW)
        assert is_billable(_ACTIVE, _NOW)


class TestPaymentStatus:
    def test_mapping(self):
        assert payment_status_for(_SUBSCRIBED, None) is PaymentStatus.COMPLETED
        assert payment_status_for(_SUBSCRIBED, _PAUSED) is PaymentStatus.PAUSED
        assert payment_status_for(_BASIC, None) is PaymentStatus.PENDING
        assert payment_status_for(_BASIC, _PAUSED) is PaymentStatus.PENDING
