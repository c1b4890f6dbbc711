"""Checkout session broker -- hosted Stripe Checkout and billing-portal sessions.

Checkout sessions carry the caller's ``userId`` and ``targetTier`` as opaque
metadata; the reconciler reads them back from the ``checkout.session.completed``
event without re-querying anything.

Usage:
    from imagestudio.services.checkout_broker import CheckoutSessionBroker

    broker = CheckoutSessionBroker()
    url = await broker.create_checkout_session("price_123", "u_1", "a@b.c", Tier.PRO)
"""

from __future__ import annotations

import stripe
import structlog

from imagestudio.config import settings
from imagestudio.services.catalog import Tier
from imagestudio.services.errors import NoCustomer, UpstreamProviderError

log = structlog.get_logger()


class CheckoutSessionBroker:
    """Creates provider-hosted checkout and portal sessions."""

    def __init__(self) -> None:
        stripe.api_key = settings.STRIPE_SECRET_KEY

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    async def create_checkout_session(
        self,
        price_ref: str,
        user_id: str,
        user_email: str | None,
        target_tier: Tier,
    ) -> str:
        """Create a subscription Checkout Session and return its URL.

        Raises UpstreamProviderError with the provider's message if Stripe
        rejects the request (unknown price, bad key, ...).
        """
        metadata = {"userId": user_id, "targetTier": target_tier.value}
        params: dict = {
            "mode": "subscription",
            "line_items": [{"price": price_ref, "quantity": 1}],
            "metadata": metadata,
            "subscription_data": {"metadata": metadata},
            "client_reference_id": user_id,
            "success_url": settings.CHECKOUT_SUCCESS_URL,
            "cancel_url": settings.CHECKOUT_CANCEL_URL,
        }
        if user_email:
            params["customer_email"] = user_email

        try:
            session = stripe.checkout.Session.create(**params)
        except stripe.StripeError as exc:
            log.warning("checkout_session_failed", user_id=user_id, error=str(exc))
            raise UpstreamProviderError(exc.user_message or str(exc)) from exc

        if not session.url:
            raise UpstreamProviderError("No checkout URL returned")

        log.info("checkout_session_created", user_id=user_id, tier=target_tier.value)
        return session.url

    # ------------------------------------------------------------------
    # Billing portal
    # ------------------------------------------------------------------

    async def create_portal_session(
        self,
        customer_id: str | None,
        return_url: str | None = None,
    ) -> str:
        """Create a self-service billing portal session and return its URL.

        Raises NoCustomer when the account has never completed a checkout.
        """
        if not customer_id:
            raise NoCustomer("Account has no payment customer")

        try:
            session = stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=return_url or settings.PORTAL_RETURN_URL,
            )
        except stripe.StripeError as exc:
            log.warning("portal_session_failed", customer_id=customer_id, error=str(exc))
            raise UpstreamProviderError(exc.user_message or str(exc)) from exc

        return session.url
