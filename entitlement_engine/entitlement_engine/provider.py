"""Payment-provider read contract and fact gathering.

The reconciler never talks to the provider directly.  The service layer
calls :func:`gather_provider_facts` with any object satisfying
:class:`PaymentProvider`; the result is a plain :class:`ProviderFacts`
value that the pure reconciler folds into a snapshot.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, Field

from entitlement_engine.errors import ProviderUnavailable

logger = logging.getLogger(__name__)


class ActiveSubscription(BaseModel):
    """A live recurring subscription reported by the provider."""

    id: str
    period_end: datetime


class OneTimePayment(BaseModel):
    """A completed one-time payment carrying tier metadata."""

    id: str
    paid_at: datetime
    amount: int = 0
    tier_tag: str
    duration_days: int = Field(..., ge=0)

    @property
    def expires_at(self) -> datetime:
        return self.paid_at + timedelta(days=self.duration_days)


class ProviderFacts(BaseModel):
    """Everything the provider told us about one identity."""

    customer_ref: str | None = None
    subscriptions: list[ActiveSubscription] = Field(default_factory=list)
    payments: list[OneTimePayment] = Field(default_factory=list)

    @property
    def active_subscription(self) -> ActiveSubscription | None:
        return self.subscriptions[0] if self.subscriptions else None

    @property
    def latest_payment(self) -> OneTimePayment | None:
        return self.payments[0] if self.payments else None


@runtime_checkable
class PaymentProvider(Protocol):
    """Narrow read-only view of the external payment provider."""

    async def find_customer_by_email(self, email: str) -> str | None: ...

    async def list_active_subscriptions(self, customer_ref: str) -> list[ActiveSubscription]: ...

    async def list_successful_one_time_payments(self, customer_ref: str) -> list[OneTimePayment]: ...


async def _query(provider: PaymentProvider, email: str) -> ProviderFacts:
    customer_ref = await provider.find_customer_by_email(email)
    if customer_ref is None:
        logger.debug("No provider customer for %s", email)
        return ProviderFacts()

    subscriptions = await provider.list_active_subscriptions(customer_ref)
    if subscriptions:
        # Payments are irrelevant once a live subscription exists.
        return ProviderFacts(customer_ref=customer_ref, subscriptions=subscriptions)

    payments = await provider.list_successful_one_time_payments(customer_ref)
    payments = sorted(payments, key=lambda p: p.paid_at, reverse=True)
    return ProviderFacts(customer_ref=customer_ref, payments=payments)


async def gather_provider_facts(
    provider: PaymentProvider,
    email: str,
    timeout: float = 10.0,
) -> ProviderFacts:
    """Query the provider for an identity's customer, subscriptions, and payments.

    Parameters
    ----------
    provider:
        Adapter implementing :class:`PaymentProvider`.
    email:
        Join key against the provider's customer records.
    timeout:
        Overall budget in seconds for all lookups.

    Returns
    -------
    ProviderFacts
        Subscriptions as reported, payments sorted most recent first.

    Raises
    ------
    ProviderUnavailable
        On any adapter error or when *timeout* elapses.
    """
    try:
        return await asyncio.wait_for(_query(provider, email), timeout=timeout)
    except ProviderUnavailable:
        raise
    except TimeoutError as exc:
        logger.warning("Payment provider timed out after %.1fs for %s", timeout, email)
        raise ProviderUnavailable(f"Payment provider timed out after {timeout:.1f}s") from exc
    except Exception as exc:
        logger.warning("Payment provider query failed for %s", email, exc_info=True)
        raise ProviderUnavailable("Payment provider query failed") from exc
