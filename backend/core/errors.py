"""
Billing error taxonomy.

Each error carries the HTTP status and machine-readable code it is rendered
with by the exception handler in main.py.
"""

from fastapi import status


class BillingError(Exception):
    """Base exception for billing failures surfaced to API callers."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "billing_error"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ConfigurationError(BillingError):
    """A provider secret or API key is missing."""

    code = "billing_not_configured"


class SignatureError(BillingError):
    """Webhook signature is missing, malformed, expired or does not match."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_signature"


class InvalidPayload(BillingError):
    """A correctly signed webhook body that is not a usable event."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_payload"


class UnknownPriceId(BillingError):
    """Checkout was requested for a price that is not configured."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_price_id"


class NoSubscription(BillingError):
    """The caller has no provider customer to open a portal for."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "no_subscription"


class ProviderCallFailure(BillingError):
    """A call to the billing provider failed; the provider's message is kept verbatim."""

    code = "provider_error"


class UnresolvedUser(Exception):
    """A webhook event carries no derivable owner. Never rendered as an error."""

    def __init__(self, provider: str, subscription_id: str | None):
        super().__init__(
            f"Could not resolve user for {provider} subscription {subscription_id}"
        )
        self.provider = provider
        self.subscription_id = subscription_id
