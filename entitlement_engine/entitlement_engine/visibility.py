"""Combine the entitlement snapshot with pause state for public display."""

from __future__ import annotations

from datetime import datetime

from entitlement_engine.models import EntitlementSnapshot, PauseState, PaymentStatus


def is_publicly_visible(snapshot: EntitlementSnapshot, pause_state: PauseState | None) -> bool:
    """A profile is listed only while subscribed and not paused."""
    if not snapshot.subscribed:
        return False
    return pause_state is None or not pause_state.is_paused


def is_billable(pause_state: PauseState | None, now: datetime) -> bool:
    """Billing runs unless a pause window has fully elapsed."""
    if pause_state is None or not pause_state.is_paused:
        return True
    return pause_state.resume_at is not None and now < pause_state.resume_at


def payment_status_for(snapshot: EntitlementSnapshot, pause_state: PauseState | None) -> PaymentStatus:
    """Map the combined state onto the profile's ``payment_status`` column."""
    if snapshot.subscribed and pause_state is not None and pause_state.is_paused:
        return PaymentStatus.PAUSED
    if snapshot.subscribed:
        return PaymentStatus.COMPLETED
    return PaymentStatus.PENDING
