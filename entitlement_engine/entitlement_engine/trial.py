"""One-time trial clock.

A trial lasts :data:`TRIAL_DURATION` from the moment it is started and
can be started at most once per identity.  ``trial_started_at`` is the
single source of truth for "has this identity ever used its trial"; it is
written here and nowhere else.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta

from pydantic import BaseModel

from entitlement_engine.errors import AlreadyUsed
from entitlement_engine.models import SubscriberRecord
from entitlement_engine.tiers import SubscriptionType, Tier

logger = logging.getLogger(__name__)

TRIAL_DURATION = timedelta(days=7)


class TrialState(BaseModel):
    """Result of :func:`evaluate_trial`."""

    is_active: bool = False
    has_used_trial: bool = False
    ends_at: datetime | None = None
    days_remaining: int | None = None


def evaluate_trial(record: SubscriberRecord | None, now: datetime) -> TrialState:
    """Report whether the identity's trial window is currently open.

    An unset ``trial_started_at`` means the trial has never been used.
    Once ``now >= trial_ends_at`` the trial is over for good, regardless of
    any later tier change.
    """
    if record is None or record.trial_started_at is None:
        return TrialState()

    ends_at = record.trial_ends_at or record.trial_started_at + TRIAL_DURATION
    if now >= ends_at:
        return TrialState(is_active=False, has_used_trial=True, ends_at=ends_at)

    remaining = ends_at - now
    return TrialState(
        is_active=True,
        has_used_trial=True,
        ends_at=ends_at,
        days_remaining=math.ceil(remaining.total_seconds() / 86400),
    )


def start_trial(
    record: SubscriberRecord,
    now: datetime,
    duration: timedelta = TRIAL_DURATION,
) -> SubscriberRecord:
    """Open the identity's one trial window.

    Parameters
    ----------
    record:
        The current subscriber record (or the default for a new identity).
    now:
        Activation time.
    duration:
        Trial length; seven days unless configured otherwise.

    Returns
    -------
    SubscriberRecord
        A new record with the trial fields set and the tier moved to
        :attr:`Tier.TRIAL`.

    Raises
    ------
    AlreadyUsed
        If ``trial_started_at`` is already set, even when the earlier
        trial has long expired.
    """
    if record.trial_started_at is not None:
        logger.info("Trial already used for %s (started %s)", record.email, record.trial_started_at.isoformat())
        raise AlreadyUsed("Free trial has already been used")

    ends_at = now + duration
    return record.model_copy(
        update={
            "tier": Tier.TRIAL,
            "subscription_type": SubscriptionType.TRIAL,
            "trial_started_at": now,
            "trial_ends_at": ends_at,
            "expires_at": ends_at,
            "updated_at": now,
        }
    )
