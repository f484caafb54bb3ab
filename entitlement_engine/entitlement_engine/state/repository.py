"""Repository classes providing access to the entitlement state store.

Each repository takes an ``AsyncSession`` at construction time and operates
within the caller's transaction boundary.  Writes are single statements
(``INSERT ... ON CONFLICT DO UPDATE`` or ``UPDATE``) so that concurrent
requests for the same identity replace whole rows instead of interleaving
partial updates.  The caller is responsible for committing.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from entitlement_engine.models import PauseState, PaymentStatus, Profile, ProfileRole, SubscriberRecord
from entitlement_engine.state.tables import PauseStateTable, ProfileTable, SubscriberTable
from entitlement_engine.tiers import SubscriptionType, get_capabilities, parse_tier

logger = logging.getLogger(__name__)


async def _dialect_upsert(
    session: AsyncSession,
    table: Any,
    values: dict[str, Any],
    index_elements: list[str],
    update_columns: Iterable[str],
    write_once_columns: Iterable[str] = (),
    returning: Sequence[Any] | None = None,
) -> Any:
    """Dialect-aware upsert: PostgreSQL ``ON CONFLICT DO UPDATE`` or SQLite equivalent.

    Parameters
    ----------
    session:
        The active async session.
    table:
        The SQLAlchemy table class to upsert into.
    values:
        Column-value mapping for the row to insert.
    index_elements:
        Column names forming the unique constraint for conflict detection.
    update_columns:
        Column names overwritten when a conflict occurs.
    write_once_columns:
        Column names that keep their stored value once non-null
        (``COALESCE(existing, excluded)``).
    returning:
        Optional columns to return from the written row.

    Returns
    -------
    The execution result from ``session.execute()``.
    """
    bind = session.get_bind()
    dialect_name = getattr(getattr(bind, "dialect", None), "name", "")

    if "postgresql" in str(dialect_name):
        from sqlalchemy.dialects.postgresql import insert as _insert
    else:
        from sqlalchemy.dialects.sqlite import insert as _insert

    stmt: Any = _insert(table).values(**values)
    set_: dict[str, Any] = {col: getattr(stmt.excluded, col) for col in update_columns}
    for col in write_once_columns:
        set_[col] = func.coalesce(getattr(table, col), getattr(stmt.excluded, col))
    stmt = stmt.on_conflict_do_update(index_elements=index_elements, set_=set_)
    if returning is not None:
        stmt = stmt.returning(*returning)
    return await session.execute(stmt)


# ---------------------------------------------------------------------------
# SubscriberRepository
# ---------------------------------------------------------------------------

# Derived columns fully replaced on every reconciliation.
_SUBSCRIBER_DERIVED_COLUMNS: tuple[str, ...] = (
    "user_id",
    "tier",
    "subscription_type",
    "provider_customer_ref",
    "expires_at",
    "plan_duration_days",
    "plan_price",
    "featured",
    "verification_eligible",
    "updated_at",
)

# Trial clock columns: set once and never overwritten.
_SUBSCRIBER_WRITE_ONCE_COLUMNS: tuple[str, ...] = ("trial_started_at", "trial_ends_at")


def _subscriber_from_row(row: Any) -> SubscriberRecord:
    return SubscriberRecord(
        email=row.email,
        user_id=row.user_id,
        tier=parse_tier(row.tier),
        subscription_type=SubscriptionType(row.subscription_type),
        provider_customer_ref=row.provider_customer_ref,
        trial_started_at=row.trial_started_at,
        trial_ends_at=row.trial_ends_at,
        expires_at=row.expires_at,
        plan_duration_days=row.plan_duration_days,
        plan_price=row.plan_price,
        updated_at=row.updated_at,
    )


class SubscriberRepository:
    """Read and upsert subscriber records keyed by email."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_email(self, email: str) -> SubscriberRecord | None:
        """Return the stored record for *email*, or ``None``."""
        result = await self._session.execute(
            select(SubscriberTable)
            .where(SubscriberTable.email == email)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        if row is None:
            return None
        return _subscriber_from_row(row)

    async def upsert(self, record: SubscriberRecord) -> SubscriberRecord:
        """Insert or fully replace the derived fields of *record*.

        ``trial_started_at`` and ``trial_ends_at`` are write-once: if the
        stored row already has them, the stored values win.  The returned
        record reflects what is actually persisted, so a caller racing
        another trial activation can detect that it lost.
        """
        caps = get_capabilities(record.tier)
        values: dict[str, Any] = {
            "email": record.email,
            "user_id": record.user_id,
            "tier": record.tier.value,
            "subscription_type": record.subscription_type.value,
            "provider_customer_ref": record.provider_customer_ref,
            "trial_started_at": record.trial_started_at,
            "trial_ends_at": record.trial_ends_at,
            "expires_at": record.expires_at,
            "plan_duration_days": record.plan_duration_days,
            "plan_price": record.plan_price,
            "featured": caps.featured,
            "verification_eligible": caps.verification_eligible,
            "updated_at": record.updated_at or datetime.now(UTC),
        }
        result = await _dialect_upsert(
            self._session,
            SubscriberTable,
            values,
            index_elements=["email"],
            update_columns=_SUBSCRIBER_DERIVED_COLUMNS,
            write_once_columns=_SUBSCRIBER_WRITE_ONCE_COLUMNS,
            returning=list(SubscriberTable.__table__.c),
        )
        row = result.one()
        logger.debug("Upserted subscriber %s (tier=%s)", record.email, record.tier.value)
        return _subscriber_from_row(row)


# ---------------------------------------------------------------------------
# ProfileRepository
# ---------------------------------------------------------------------------


def _profile_from_row(row: ProfileTable) -> Profile:
    return Profile(
        id=row.id,
        user_id=row.user_id,
        role=ProfileRole(row.role),
        is_active=row.is_active,
        payment_status=PaymentStatus(row.payment_status),
    )


class ProfileRepository:
    """Eligibility-related profile fields."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, profile_id: str) -> Profile | None:
        """Return the profile with *profile_id*, or ``None``."""
        row = await self._session.get(ProfileTable, profile_id, populate_existing=True)
        if row is None:
            return None
        return _profile_from_row(row)

    async def list_for_user(self, user_id: str) -> list[Profile]:
        """Return every profile owned by *user_id*."""
        result = await self._session.execute(
            select(ProfileTable).where(ProfileTable.user_id == user_id).order_by(ProfileTable.id)
        )
        return [_profile_from_row(row) for row in result.scalars().all()]

    async def create(self, profile: Profile) -> Profile:
        """Insert a new profile row."""
        row = ProfileTable(
            id=profile.id,
            user_id=profile.user_id,
            role=profile.role.value,
            is_active=profile.is_active,
            payment_status=profile.payment_status.value,
        )
        self._session.add(row)
        await self._session.flush()
        return _profile_from_row(row)

    async def update_status(
        self,
        profile_id: str,
        *,
        is_active: bool,
        payment_status: PaymentStatus,
    ) -> bool:
        """Set visibility and payment status.  Returns ``False`` if no row matched."""
        result = await self._session.execute(
            update(ProfileTable)
            .where(ProfileTable.id == profile_id)
            .values(
                is_active=is_active,
                payment_status=payment_status.value,
                updated_at=datetime.now(UTC),
            )
        )
        return bool(result.rowcount)


# ---------------------------------------------------------------------------
# PauseStateRepository
# ---------------------------------------------------------------------------

_PAUSE_COLUMNS: tuple[str, ...] = (
    "is_paused",
    "pauses_used_in_period",
    "pause_cap",
    "current_pause_started_at",
    "resume_at",
    "period_end",
    "updated_at",
)


def _pause_from_row(row: PauseStateTable) -> PauseState:
    return PauseState(
        profile_id=row.profile_id,
        is_paused=row.is_paused,
        pauses_used_in_period=row.pauses_used_in_period,
        pause_cap=row.pause_cap,
        current_pause_started_at=row.current_pause_started_at,
        resume_at=row.resume_at,
        period_end=row.period_end,
    )


class PauseStateRepository:
    """Full-state persistence of per-profile pause state."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, profile_id: str) -> PauseState | None:
        """Return the pause state for *profile_id*, or ``None``."""
        row = await self._session.get(PauseStateTable, profile_id, populate_existing=True)
        if row is None:
            return None
        return _pause_from_row(row)

    async def save(self, state: PauseState) -> None:
        """Insert or fully replace the pause state row."""
        values: dict[str, Any] = {
            "profile_id": state.profile_id,
            "is_paused": state.is_paused,
            "pauses_used_in_period": state.pauses_used_in_period,
            "pause_cap": state.pause_cap,
            "current_pause_started_at": state.current_pause_started_at,
            "resume_at": state.resume_at,
            "period_end": state.period_end,
            "updated_at": datetime.now(UTC),
        }
        await _dialect_upsert(
            self._session,
            PauseStateTable,
            values,
            index_elements=["profile_id"],
            update_columns=_PAUSE_COLUMNS,
        )

    async def list_due(self, now: datetime, limit: int = 500) -> list[PauseState]:
        """Return paused states whose ``resume_at`` has passed.

        Read by the external sweep job that stops billing for elapsed
        pause windows.
        """
        result = await self._session.execute(
            select(PauseStateTable)
            .where(PauseStateTable.is_paused.is_(True), PauseStateTable.resume_at <= now)
            .order_by(PauseStateTable.resume_at)
            .limit(limit)
        )
        return [_pause_from_row(row) for row in result.scalars().all()]
