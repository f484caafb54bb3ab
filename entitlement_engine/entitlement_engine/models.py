"""Domain records exchanged between the reconciler, the pause controller,
and the persistence layer.

``featured`` and ``verification_eligible`` are computed from ``tier``
through the tier table on every record and snapshot, so a combination
such as ``featured=True`` with ``tier=none`` cannot be constructed.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from entitlement_engine.tiers import SubscriptionType, Tier, get_capabilities


class Identity(BaseModel):
    """Authenticated caller.  ``email`` joins local and provider state."""

    model_config = ConfigDict(frozen=True)

    user_id: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)


class ProfileRole(str, Enum):
    """Role a profile plays in the marketplace."""

    ESCORT = "escort"
    AGENCY = "agency"
    CLIENT = "client"
    ADMIN = "admin"


class PaymentStatus(str, Enum):
    """Billing state mirrored onto the public profile."""

    PENDING = "pending"
    COMPLETED = "completed"
    PAUSED = "paused"


class Profile(BaseModel):
    """The subset of profile fields that eligibility decisions read."""

    id: str
    user_id: str
    role: ProfileRole = ProfileRole.CLIENT
    is_active: bool = False
    payment_status: PaymentStatus = PaymentStatus.PENDING


class SubscriberRecord(BaseModel):
    """Persisted entitlement state for one identity, keyed by email.

    ``trial_started_at`` is written once by
    :func:`entitlement_engine.trial.start_trial` and never cleared.
    """

    email: str
    user_id: str | None = None
    tier: Tier = Tier.NONE
    subscription_type: SubscriptionType = SubscriptionType.FREE
    provider_customer_ref: str | None = None
    trial_started_at: datetime | None = None
    trial_ends_at: datetime | None = None
    expires_at: datetime | None = None
    plan_duration_days: int | None = None
    plan_price: int | None = None
    updated_at: datetime | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def featured(self) -> bool:
        return get_capabilities(self.tier).featured

    @computed_field  # type: ignore[prop-decorator]
    @property
    def verification_eligible(self) -> bool:
        return get_capabilities(self.tier).verification_eligible

    @classmethod
    def default_for(cls, identity: Identity) -> SubscriberRecord:
        """Return the record synthesised for an identity with no stored row."""
        return cls(email=identity.email, user_id=identity.user_id)


class EntitlementSnapshot(BaseModel):
    """Result of one reconciliation, also the wire response.

    Snapshots are frozen: a reconciliation produces a new one rather than
    patching fields of the previous one.
    """

    model_config = ConfigDict(frozen=True)

    subscribed: bool = False
    tier: Tier = Tier.NONE
    period_end: datetime | None = None
    subscription_type: SubscriptionType = SubscriptionType.FREE
    trial_active: bool = False
    has_used_trial: bool = False
    trial_days_remaining: int | None = None
    profile_visible: bool = False

    @computed_field  # type: ignore[prop-decorator]
    @property
    def featured(self) -> bool:
        return get_capabilities(self.tier).featured

    @computed_field  # type: ignore[prop-decorator]
    @property
    def verification_eligible(self) -> bool:
        return get_capabilities(self.tier).verification_eligible

    @model_validator(mode="after")
    def _check_tier_consistency(self) -> EntitlementSnapshot:
        if self.subscribed and self.tier == Tier.NONE:
            raise ValueError("A subscribed snapshot must carry a tier")
        if not self.subscribed and self.tier != Tier.NONE:
            raise ValueError(f"Unsubscribed snapshot cannot hold tier {self.tier.value}")
        if self.tier != Tier.NONE and self.period_end is None:
            raise ValueError("A tiered snapshot requires period_end")
        return self


class PauseStatus(str, Enum):
    """Position of a profile in the Active -> Paused -> Active cycle."""

    ACTIVE = "active"
    PAUSED = "paused"


class PauseState(BaseModel):
    """Server-side billing-pause state for one profile."""

    model_config = ConfigDict(frozen=True)

    profile_id: str
    is_paused: bool = False
    pauses_used_in_period: int = Field(default=0, ge=0)
    pause_cap: int = Field(default=3, ge=0)
    current_pause_started_at: datetime | None = None
    resume_at: datetime | None = None
    period_end: datetime | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def status(self) -> PauseStatus:
        return PauseStatus.PAUSED if self.is_paused else PauseStatus.ACTIVE

    @computed_field  # type: ignore[prop-decorator]
    @property
    def pauses_remaining(self) -> int:
        return max(self.pause_cap - self.pauses_used_in_period, 0)

    @model_validator(mode="after")
    def _check_invariants(self) -> PauseState:
        if self.pauses_used_in_period > self.pause_cap:
            raise ValueError(f"pauses_used_in_period ({self.pauses_used_in_period}) exceeds pause_cap ({self.pause_cap})")
        if self.is_paused and (self.current_pause_started_at is None or self.resume_at is None):
            raise ValueError("A paused state requires current_pause_started_at and resume_at")
        if not self.is_paused and (self.current_pause_started_at is not None or self.resume_at is not None):
            raise ValueError("An active state cannot carry pause timestamps")
        return self
