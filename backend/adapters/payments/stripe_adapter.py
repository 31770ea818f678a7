"""
Stripe billing adapter.

Wraps the synchronous Stripe SDK for the calls the billing engine makes:
subscription lookup while normalizing webhooks, customer creation,
Checkout sessions and Billing Portal sessions. SDK calls run in a worker
thread so they never block the event loop.
"""

import asyncio
import logging
from typing import Any, Callable

import stripe

from infrastructure.config.settings import settings

from .base import CheckoutSession, PortalSession

logger = logging.getLogger(__name__)


# Custom Exceptions
class StripeAdapterError(Exception):
    """Base exception for Stripe adapter errors."""

    pass


class StripeAPIError(StripeAdapterError):
    """Raised when the Stripe API returns an error."""

    pass


class StripeAuthError(StripeAdapterError):
    """Raised when no Stripe secret key is configured."""

    pass


class StripeAdapter:
    """Async facade over the Stripe SDK."""

    def __init__(self, api_key: str | None = None):
        """
        Initialize Stripe adapter.

        Args:
            api_key: Stripe secret key (defaults to settings)
        """
        self.api_key = api_key or settings.stripe_secret_key

        if not self.api_key:
            logger.warning("Stripe secret key not configured. Set stripe_secret_key in settings.")

    async def _call(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """
        Run a Stripe SDK call in a worker thread with this adapter's key.

        Raises:
            StripeAuthError: If no secret key is configured
            StripeAPIError: If the Stripe API call fails
        """
        if not self.api_key:
            raise StripeAuthError("Stripe secret key not configured. Set stripe_secret_key in settings.")

        try:
            return await asyncio.to_thread(func, *args, api_key=self.api_key, **kwargs)
        except stripe.StripeError as e:
            message = e.user_message or str(e)
            logger.error("Stripe API error: %s", message)
            raise StripeAPIError(message) from e

    async def retrieve_subscription(self, subscription_id: str) -> dict[str, Any]:
        """
        Fetch a subscription as a plain dictionary.

        Args:
            subscription_id: Stripe subscription ID (sub_...)

        Returns:
            Subscription object in the same shape as webhook payloads
        """
        logger.info("Fetching Stripe subscription %s", subscription_id)
        subscription = await self._call(stripe.Subscription.retrieve, subscription_id)
        return subscription.to_dict()

    async def get_or_create_customer(
        self,
        user_id: str,
        email: str,
        existing_customer_id: str | None = None,
    ) -> str:
        """
        Return the user's Stripe customer ID, creating the customer if needed.

        Args:
            user_id: Internal user ID, stored in customer metadata
            email: Customer email
            existing_customer_id: Previously stored customer ID, if any

        Returns:
            Stripe customer ID (cus_...)
        """
        if existing_customer_id:
            return existing_customer_id

        customer = await self._call(
            stripe.Customer.create,
            email=email,
            metadata={"userId": user_id},
        )
        logger.info("Created Stripe customer %s for user %s", customer.id, user_id)
        return customer.id

    async def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        user_id: str,
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        """
        Create a subscription-mode Checkout Session.

        The user ID is attached to both the session and the resulting
        subscription so later webhook events can be attributed to the user.
        """
        session = await self._call(
            stripe.checkout.Session.create,
            mode="subscription",
            customer=customer_id,
            line_items=[{"price": price_id, "quantity": 1}],
            success_url=success_url,
            cancel_url=cancel_url,
            client_reference_id=user_id,
            metadata={"userId": user_id},
            subscription_data={"metadata": {"userId": user_id}},
        )
        logger.info("Created Stripe checkout session %s for user %s", session.id, user_id)
        return CheckoutSession(id=session.id, url=session.url)

    async def create_portal_session(self, customer_id: str, return_url: str) -> PortalSession:
        """Create a Billing Portal session for an existing customer."""
        session = await self._call(
            stripe.billing_portal.Session.create,
            customer=customer_id,
            return_url=return_url,
        )
        logger.info("Created Stripe billing portal session for customer %s", customer_id)
        return PortalSession(url=session.url)
