"""SQLAlchemy 2.0 ORM table definitions for the entitlement state store.

All tables use the ``Mapped`` / ``mapped_column`` declaration style.  The
``Base`` declarative base is exported for use by the repository layer and
for ``create_all()`` in local mode.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


def _utcnow() -> datetime:
    """Return the current UTC timestamp (timezone-aware)."""
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator):
    """Timezone-aware ``DateTime`` that coerces naive SQLite values to UTC."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Any) -> Any:
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: Any, dialect: Any) -> Any:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


# ---------------------------------------------------------------------------
# Declarative base
# ---------------------------------------------------------------------------


class Base(DeclarativeBase):
    """Shared declarative base for all entitlement tables."""


# ---------------------------------------------------------------------------
# Subscribers
# ---------------------------------------------------------------------------


class SubscriberTable(Base):
    """Last reconciled entitlement per identity, keyed by email.

    ``featured`` and ``verification_eligible`` are denormalised from
    ``tier`` for fast reads and are always rewritten together with it.
    """

    __tablename__ = "subscribers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    tier: Mapped[str] = mapped_column(String(32), nullable=False, default="none")
    subscription_type: Mapped[str] = mapped_column(String(32), nullable=False, default="free")
    provider_customer_ref: Mapped[str | None] = mapped_column(String(256), nullable=True)
    trial_started_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    trial_ends_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    plan_duration_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    plan_price: Mapped[int | None] = mapped_column(Integer, nullable=True)
    featured: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    verification_eligible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        Index("ix_subscribers_user_id", "user_id"),
        Index("ix_subscribers_provider_customer", "provider_customer_ref"),
    )


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


class ProfileTable(Base):
    """Public listing fields that entitlement decisions read or toggle."""

    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="client")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    payment_status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (Index("ix_profiles_user_id", "user_id"),)


# ---------------------------------------------------------------------------
# Pause states
# ---------------------------------------------------------------------------


class PauseStateTable(Base):
    """Server-enforced billing-pause state per profile."""

    __tablename__ = "pause_states"

    profile_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    is_paused: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    pauses_used_in_period: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    pause_cap: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    current_pause_started_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    resume_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    period_end: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("pauses_used_in_period <= pause_cap", name="ck_pause_states_quota"),
        Index("ix_pause_states_resume_at", "resume_at"),
    )
