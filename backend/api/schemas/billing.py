"""
Billing and subscription request/response schemas.

Wire names are camelCase to match the web client; Python attributes stay
snake_case through field aliases.
"""

from datetime import datetime
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _validate_redirect_url(value: str) -> str:
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError("must be an absolute http(s) URL")
    return value


class CheckoutRequest(BaseModel):
    """Request to create a checkout session."""

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "priceId": "price_individual_monthly",
                "successUrl": "https://app.safenode.io/billing/success",
                "cancelUrl": "https://app.safenode.io/billing",
            }
        },
    )

    price_id: str = Field(..., alias="priceId", min_length=1, max_length=255)
    success_url: str = Field(..., alias="successUrl", max_length=2048)
    cancel_url: str = Field(..., alias="cancelUrl", max_length=2048)

    @field_validator("success_url", "cancel_url")
    @classmethod
    def validate_urls(cls, v: str) -> str:
        return _validate_redirect_url(v)


class CheckoutResponse(BaseModel):
    """Response containing the hosted checkout session."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., alias="sessionId", description="Provider checkout session ID")
    url: str = Field(..., description="Hosted checkout URL")


class PortalRequest(BaseModel):
    """Request to open the customer billing portal."""

    model_config = ConfigDict(populate_by_name=True)

    return_url: str = Field(..., alias="returnUrl", max_length=2048)

    @field_validator("return_url")
    @classmethod
    def validate_return_url(cls, v: str) -> str:
        return _validate_redirect_url(v)


class PortalResponse(BaseModel):
    """Response containing the customer portal URL."""

    url: str = Field(..., description="Customer portal URL")


class LimitCheckResponse(BaseModel):
    """Result of a single plan limit check."""

    allowed: bool = Field(..., description="Whether one more resource may be created")
    current: int = Field(..., description="Current usage")
    limit: int = Field(..., description="Plan limit (-1 for unlimited)")


class SubscriptionDetails(BaseModel):
    """The user's current mirrored provider subscription."""

    model_config = ConfigDict(populate_by_name=True)

    provider: str
    status: str
    price_id: str = Field(..., alias="priceId")
    current_period_end: datetime = Field(..., alias="currentPeriodEnd")
    cancel_at_period_end: bool = Field(..., alias="cancelAtPeriodEnd")


class SubscriptionStatusResponse(BaseModel):
    """Current subscription status for a user."""

    model_config = ConfigDict(populate_by_name=True)

    tier: str = Field(..., description="Canonical subscription tier (free, pro, enterprise)")
    status: str = Field(..., description="Subscription status (active, past_due, cancelled)")
    plan: str = Field(..., description="Plan whose limits apply")
    subscription: SubscriptionDetails | None = None
    can_manage: bool = Field(
        ..., alias="canManage", description="Whether user can access the customer portal"
    )


class WebhookAck(BaseModel):
    """Acknowledgement returned to the billing provider."""

    received: bool = True
    duplicate: bool | None = None
