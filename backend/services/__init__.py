"""
Service layer for billing logic.
"""

from functools import lru_cache

from adapters.payments import PaddleAdapter, StripeAdapter
from infrastructure.config.settings import get_settings
from services.event_normalizer import EventNormalizer, PaddleEventAdapter, StripeEventAdapter
from services.plan_resolver import PlanResolver


@lru_cache
def get_stripe_adapter() -> StripeAdapter:
    """Get singleton Stripe adapter instance."""
    return StripeAdapter(api_key=get_settings().stripe_secret_key)


@lru_cache
def get_paddle_adapter() -> PaddleAdapter:
    """Get singleton Paddle adapter instance."""
    settings = get_settings()
    return PaddleAdapter(api_key=settings.paddle_api_key, api_url=settings.paddle_api_url)


@lru_cache
def get_plan_resolver() -> PlanResolver:
    """
    Get singleton plan resolver.

    Price sets are read once per process; a price change needs a restart.
    """
    return PlanResolver(get_settings())


@lru_cache
def get_event_normalizer() -> EventNormalizer:
    """Get singleton event normalizer with both provider adapters registered."""
    return EventNormalizer(
        [
            StripeEventAdapter(get_stripe_adapter()),
            PaddleEventAdapter(),
        ]
    )


__all__ = [
    "get_event_normalizer",
    "get_paddle_adapter",
    "get_plan_resolver",
    "get_stripe_adapter",
]
