"""Initial schema for the entitlement state store.

Creates ``subscribers`` (one row per email, trial clock columns
write-once by convention of the repository upsert), ``profiles`` (the
eligibility fields of public listings) and ``pause_states`` (one row per
profile, quota enforced by a check constraint).

Revision ID: 001
Revises: None
Create Date: 2026-09-28 00:00:00.000000+00:00

"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # ------------------------------------------------------------------
    # subscribers
    # ------------------------------------------------------------------
    op.create_table(
        "subscribers",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(320), nullable=False, unique=True),
        sa.Column("user_id", sa.String(64), nullable=True),
        sa.Column("tier", sa.String(32), nullable=False, server_default="none"),
        sa.Column("subscription_type", sa.String(32), nullable=False, server_default="free"),
        sa.Column("provider_customer_ref", sa.String(256), nullable=True),
        sa.Column("trial_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("trial_ends_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("plan_duration_days", sa.Integer(), nullable=True),
        sa.Column("plan_price", sa.Integer(), nullable=True),
        sa.Column("featured", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("verification_eligible", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index("ix_subscribers_user_id", "subscribers", ["user_id"])
    op.create_index("ix_subscribers_provider_customer", "subscribers", ["provider_customer_ref"])

    # ------------------------------------------------------------------
    # profiles
    # ------------------------------------------------------------------
    op.create_table(
        "profiles",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("role", sa.String(32), nullable=False, server_default="client"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("payment_status", sa.String(32), nullable=False, server_default="pending"),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index("ix_profiles_user_id", "profiles", ["user_id"])

    # ------------------------------------------------------------------
    # pause_states
    # ------------------------------------------------------------------
    op.create_table(
        "pause_states",
        sa.Column("profile_id", sa.String(64), primary_key=True),
        sa.Column("is_paused", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("pauses_used_in_period", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("pause_cap", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("current_pause_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resume_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.CheckConstraint("pauses_used_in_period <= pause_cap", name="ck_pause_states_quota"),
    )
    op.create_index("ix_pause_states_resume_at", "pause_states", ["resume_at"])


def downgrade() -> None:
    op.drop_index("ix_pause_states_resume_at")
    op.drop_table("pause_states")
    op.drop_index("ix_profiles_user_id")
    op.drop_table("profiles")
    op.drop_index("ix_subscribers_provider_customer")
    op.drop_index("ix_subscribers_user_id")
    op.drop_table("subscribers")
