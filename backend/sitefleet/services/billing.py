"""Stripe integration for the primary instance.

Every call into the Stripe SDK goes through StripeBilling so routes can be
tested against a fake provider. The SDK is synchronous; calls run in a worker
thread to keep the event loop free. SDK objects are not dicts, so anything
handed on to Mapping-reading code is converted with to_dict() first.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import stripe
import structlog
from fastapi import Depends

from sitefleet.core.config import Settings, get_settings

logger = structlog.get_logger()


class BillingProviderError(Exception):
    """The billing provider rejected a call or could not be reached."""


class BillingNotConfiguredError(BillingProviderError):
    """A required Stripe setting is missing on this instance."""


@dataclass(frozen=True)
class CheckoutSession:
    id: str
    url: str


class StripeBilling:
    def __init__(self, settings: Settings):
        self._settings = settings

    @property
    def _api_key(self) -> str:
        key = (self._settings.STRIPE_SECRET_KEY or "").strip()
        if not key:
            raise BillingNotConfiguredError("STRIPE_SECRET_KEY is not set.")
        return key

    async def _call(self, fn, *args, **kwargs):
        try:
            return await asyncio.to_thread(fn, *args, api_key=self._api_key, **kwargs)
        except stripe.StripeError as e:
            logger.error("stripe.call_failed", call=getattr(fn, "__qualname__", str(fn)), error=str(e))
            raise BillingProviderError(str(e)) from e

    async def create_portal_session(self, customer_id: str, return_url: Optional[str] = None) -> str:
        params: dict[str, Any] = {"customer": customer_id}
        if return_url:
            params["return_url"] = return_url
        session = await self._call(stripe.billing_portal.Session.create, **params)
        logger.info("stripe.portal_session_created", customer_id=customer_id)
        return session["url"]

    async def change_subscription_price(self, subscription_id: str, price_id: str) -> None:
        """
        Swap the price on the subscription's first item. Downstream effects
        (plan column, deployment env, media cleanup) arrive via the
        customer.subscription.updated webhook.
        """
        subscription = (await self._call(stripe.Subscription.retrieve, subscription_id)).to_dict()
        items = (subscription.get("items") or {}).get("data") or []
        item_id = items[0].get("id") if items else None
        if not item_id:
            raise BillingProviderError(f"Subscription {subscription_id} has no items")

        await self._call(
            stripe.Subscription.modify,
            subscription_id,
            items=[{"id": item_id, "price": price_id}],
            proration_behavior="create_prorations",
        )
        logger.info("stripe.subscription_price_changed", subscription_id=subscription_id, price_id=price_id)

    async def create_checkout_session(
        self,
        *,
        price_id: str,
        customer_email: str,
        metadata: Mapping[str, str],
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        session = await self._call(
            stripe.checkout.Session.create,
            mode="subscription",
            payment_method_types=["card"],
            customer_email=customer_email,
            line_items=[{"price": price_id, "quantity": 1}],
            metadata=dict(metadata),
            success_url=success_url,
            cancel_url=cancel_url,
        )
        return CheckoutSession(id=session["id"], url=session["url"])

    def construct_event(self, payload: bytes, signature: str) -> Mapping[str, Any]:
        """
        Verify a webhook payload. Raises ValueError on a bad payload or
        signature.
        """
        secret = (self._settings.STRIPE_WEBHOOK_SECRET or "").strip()
        if not secret:
            raise BillingNotConfiguredError("STRIPE_WEBHOOK_SECRET is not set.")
        try:
            event = stripe.Webhook.construct_event(payload, signature, secret)
        except stripe.SignatureVerificationError as e:
            raise ValueError(str(e)) from e
        return event.to_dict()


def get_billing(settings: Settings = Depends(get_settings)) -> StripeBilling:
    return StripeBilling(settings)
