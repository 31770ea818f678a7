"""
Checkout and customer portal session initiation.

The outbound direction of billing: a configured provider price becomes a
hosted checkout session, and an existing provider customer becomes a
self-service portal session. Provider calls are made once; failures are
reported with the provider's message and never retried.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from adapters.payments import (
    CheckoutSession,
    PaddleAdapter,
    PaddleAPIError,
    PaddleAuthError,
    PortalSession,
    StripeAdapter,
    StripeAPIError,
    StripeAuthError,
)
from core.errors import ConfigurationError, NoSubscription, ProviderCallFailure, UnknownPriceId
from infrastructure.config.settings import Settings
from infrastructure.database.models.subscription import BillingProvider
from infrastructure.database.models.user import User
from services.plan_resolver import PlanResolver

logger = logging.getLogger(__name__)


class BillingSessionService:
    """Creates checkout and portal sessions with the configured billing provider."""

    def __init__(
        self,
        db: AsyncSession,
        settings: Settings,
        plan_resolver: PlanResolver,
        stripe_adapter: StripeAdapter,
        paddle_adapter: PaddleAdapter,
    ):
        self.db = db
        self.settings = settings
        self.plan_resolver = plan_resolver
        self.stripe = stripe_adapter
        self.paddle = paddle_adapter

    @property
    def provider(self) -> str:
        return self.settings.billing_provider

    async def create_checkout(
        self,
        user: User,
        price_id: str,
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        """
        Create a hosted checkout session for a subscription price.

        Args:
            user: Authenticated user starting checkout
            price_id: Provider price ID; must be one of the configured prices
            success_url: Redirect target after payment
            cancel_url: Redirect target when checkout is abandoned

        Returns:
            CheckoutSession with provider session ID and URL

        Raises:
            UnknownPriceId: If the price is not configured for the active provider
            ConfigurationError: If the provider API key is missing
            ProviderCallFailure: If the provider rejects the request
        """
        provider = self.provider
        if not self.plan_resolver.is_supported_price(provider, price_id):
            logger.warning("Checkout rejected for user %s: unknown %s price %s", user.id, provider, price_id)
            raise UnknownPriceId(f"Price {price_id} is not available")

        if provider == BillingProvider.STRIPE.value:
            session = await self._create_stripe_checkout(user, price_id, success_url, cancel_url)
        else:
            session = await self._create_paddle_checkout(user, price_id, success_url)

        plan = self.plan_resolver.resolve_plan(provider, price_id)
        logger.info(
            f"Created {provider} checkout session for user {user.id}, "
            f"plan={plan.value if plan else None}"
        )
        return session

    async def _create_stripe_checkout(
        self, user: User, price_id: str, success_url: str, cancel_url: str
    ) -> CheckoutSession:
        try:
            customer_id = await self.stripe.get_or_create_customer(
                user_id=user.id,
                email=user.email,
                existing_customer_id=user.stripe_customer_id,
            )
            if user.stripe_customer_id != customer_id:
                user.stripe_customer_id = customer_id
                await self.db.commit()

            return await self.stripe.create_checkout_session(
                customer_id=customer_id,
                price_id=price_id,
                user_id=user.id,
                success_url=success_url,
                cancel_url=cancel_url,
            )
        except StripeAuthError as e:
            raise ConfigurationError(str(e), code="stripe_not_configured") from e
        except StripeAPIError as e:
            raise ProviderCallFailure(str(e)) from e

    async def _create_paddle_checkout(
        self, user: User, price_id: str, success_url: str
    ) -> CheckoutSession:
        try:
            return await self.paddle.create_checkout(
                price_id=price_id,
                user_id=user.id,
                email=user.email,
                success_url=success_url,
            )
        except PaddleAuthError as e:
            raise ConfigurationError(str(e), code="paddle_not_configured") from e
        except PaddleAPIError as e:
            raise ProviderCallFailure(str(e)) from e

    async def create_portal(self, user: User, return_url: str) -> PortalSession:
        """
        Create a customer portal session.

        A Stripe customer takes precedence over a Paddle customer.

        Raises:
            NoSubscription: If the user has no provider customer
            ConfigurationError: If the provider API key is missing
            ProviderCallFailure: If the provider rejects the request
        """
        if user.stripe_customer_id:
            try:
                session = await self.stripe.create_portal_session(
                    customer_id=user.stripe_customer_id,
                    return_url=return_url,
                )
            except StripeAuthError as e:
                raise ConfigurationError(str(e), code="stripe_not_configured") from e
            except StripeAPIError as e:
                raise ProviderCallFailure(str(e)) from e
        elif user.paddle_customer_id:
            try:
                session = await self.paddle.create_portal_session(user.paddle_customer_id)
            except PaddleAuthError as e:
                raise ConfigurationError(str(e), code="paddle_not_configured") from e
            except PaddleAPIError as e:
                raise ProviderCallFailure(str(e)) from e
        else:
            raise NoSubscription("No billing account found for this user")

        logger.info(f"Generated customer portal URL for user {user.id}")
        return session
