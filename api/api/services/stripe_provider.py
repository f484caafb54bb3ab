"""Stripe implementation of the payment-provider read contract.

Only list/read endpoints are used; checkout and any other mutation live
elsewhere.  The Stripe SDK is synchronous, so each call runs in a worker
thread to keep the event loop free.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any

from entitlement_engine.provider import ActiveSubscription, OneTimePayment

from api.config import APISettings

logger = logging.getLogger(__name__)

# Upper bound on payment intents scanned per reconciliation.
_PAYMENT_SCAN_LIMIT = 100


def _from_epoch(value: int | float) -> datetime:
    return datetime.fromtimestamp(value, tz=UTC)


class StripePaymentProvider:
    """Read-only Stripe adapter.

    Parameters
    ----------
    settings:
        API settings containing the Stripe secret key.
    """

    def __init__(self, settings: APISettings) -> None:
        self._settings = settings

    def _get_stripe(self) -> Any:
        """Lazily import and configure the Stripe library."""
        import stripe

        stripe.api_key = self._settings.stripe_secret_key.get_secret_value()
        return stripe

    async def find_customer_by_email(self, email: str) -> str | None:
        stripe = self._get_stripe()
        customers = await asyncio.to_thread(stripe.Customer.list, email=email, limit=1)
        data = customers.get("data", [])
        if not data:
            return None
        customer_id: str = data[0]["id"]
        logger.debug("Found Stripe customer %s for %s", customer_id, email)
        return customer_id

    async def list_active_subscriptions(self, customer_ref: str) -> list[ActiveSubscription]:
        stripe = self._get_stripe()
        subscriptions = await asyncio.to_thread(
            stripe.Subscription.list,
            customer=customer_ref,
            status="active",
            limit=10,
        )
        result: list[ActiveSubscription] = []
        for sub in subscriptions.get("data", []):
            period_end = self._subscription_period_end(sub)
            if period_end is None:
                logger.warning("Stripe subscription %s has no period end; skipping", sub.get("id"))
                continue
            result.append(ActiveSubscription(id=sub["id"], period_end=period_end))
        return result

    async def list_successful_one_time_payments(self, customer_ref: str) -> list[OneTimePayment]:
        stripe = self._get_stripe()
        intents = await asyncio.to_thread(
            stripe.PaymentIntent.list,
            customer=customer_ref,
            limit=_PAYMENT_SCAN_LIMIT,
        )
        result: list[OneTimePayment] = []
        for intent in intents.get("data", []):
            if intent.get("status") != "succeeded":
                continue
            metadata = intent.get("metadata") or {}
            tier_tag = metadata.get("tier")
            duration_raw = metadata.get("duration_days")
            if not tier_tag or not duration_raw:
                continue
            try:
                duration_days = int(duration_raw)
            except (TypeError, ValueError):
                logger.warning(
                    "Ignoring payment %s with invalid duration_days metadata: %r",
                    intent.get("id"),
                    duration_raw,
                )
                continue
            result.append(
                OneTimePayment(
                    id=intent["id"],
                    paid_at=_from_epoch(intent["created"]),
                    amount=int(intent.get("amount") or 0),
                    tier_tag=str(tier_tag),
                    duration_days=max(duration_days, 0),
                )
            )
        return result

    @staticmethod
    def _subscription_period_end(subscription: Any) -> datetime | None:
        """Read the current period end from the subscription or its first item.

        Newer Stripe API versions report the period on subscription items
        rather than on the subscription itself.
        """
        period_end = subscription.get("current_period_end")
        if period_end:
            return _from_epoch(period_end)
        items = (subscription.get("items") or {}).get("data", [])
        if items and items[0].get("current_period_end"):
            return _from_epoch(items[0]["current_period_end"])
        return None
