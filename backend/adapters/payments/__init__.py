"""Payment adapters for billing and subscription management."""

from .base import CheckoutSession, PortalSession
from .paddle_adapter import PaddleAdapter, PaddleAPIError, PaddleAuthError, PaddleError
from .stripe_adapter import StripeAdapter, StripeAdapterError, StripeAPIError, StripeAuthError

__all__ = [
    "CheckoutSession",
    "PortalSession",
    "PaddleAdapter",
    "PaddleError",
    "PaddleAPIError",
    "PaddleAuthError",
    "StripeAdapter",
    "StripeAdapterError",
    "StripeAPIError",
    "StripeAuthError",
]
