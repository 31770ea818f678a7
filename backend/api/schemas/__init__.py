"""
API request and response schemas.
"""

from .billing import (
    CheckoutRequest,
    CheckoutResponse,
    LimitCheckResponse,
    PortalRequest,
    PortalResponse,
    SubscriptionDetails,
    SubscriptionStatusResponse,
    WebhookAck,
)

__all__ = [
    "CheckoutRequest",
    "CheckoutResponse",
    "LimitCheckResponse",
    "PortalRequest",
    "PortalResponse",
    "SubscriptionDetails",
    "SubscriptionStatusResponse",
    "WebhookAck",
]
