"""
Paddle Billing adapter.

Provides the outbound half of the Paddle integration: creating checkout
transactions and customer portal sessions through the Paddle REST API.
"""

import logging
from typing import Any

import httpx

from infrastructure.config.settings import settings

from .base import CheckoutSession, PortalSession

logger = logging.getLogger(__name__)


# Custom Exceptions
class PaddleError(Exception):
    """Base exception for Paddle adapter errors."""

    pass


class PaddleAPIError(PaddleError):
    """Raised when the Paddle API returns an error."""

    pass


class PaddleAuthError(PaddleError):
    """Raised when no Paddle API key is configured."""

    pass


class PaddleAdapter:
    """Adapter for Paddle Billing API integration."""

    def __init__(self, api_key: str | None = None, api_url: str | None = None):
        """
        Initialize Paddle adapter.

        Args:
            api_key: Paddle API key (defaults to settings)
            api_url: API base URL, sandbox or live (defaults to settings)
        """
        self.api_key = api_key or settings.paddle_api_key
        self.api_url = (api_url or settings.paddle_api_url).rstrip("/")

        if not self.api_key:
            logger.warning("Paddle API key not configured. Set paddle_api_key in settings.")

    def _get_headers(self) -> dict[str, str]:
        """Get HTTP headers for API requests."""
        if not self.api_key:
            raise PaddleAuthError("Paddle API key not configured. Set paddle_api_key in settings.")

        return {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Make HTTP request to Paddle API.

        Args:
            method: HTTP method (GET or POST)
            endpoint: API endpoint path
            data: Request body data (for POST)

        Returns:
            API response as dictionary

        Raises:
            PaddleAPIError: If API request fails
        """
        url = f"{self.api_url}/{endpoint.lstrip('/')}"
        headers = self._get_headers()

        try:
            async with httpx.AsyncClient(timeout=30.0) as client:
                logger.info("Making %s request to Paddle %s", method, endpoint)

                if method == "GET":
                    response = await client.get(url, headers=headers)
                elif method == "POST":
                    response = await client.post(url, headers=headers, json=data or {})
                else:
                    raise ValueError(f"Unsupported HTTP method: {method}")

                response.raise_for_status()

                if not response.content:
                    return {}

                return response.json()

        except httpx.HTTPStatusError as e:
            error_detail = f"HTTP {e.response.status_code}"
            try:
                error = e.response.json().get("error") or {}
                if isinstance(error, dict) and error.get("detail"):
                    error_detail = f"{error_detail}: {error['detail']}"
            except ValueError:
                error_detail = f"{error_detail}: {e.response.text[:200]}"

            logger.error("Paddle API error: %s", error_detail)
            raise PaddleAPIError(f"Paddle API request failed ({error_detail})") from e
        except httpx.RequestError as e:
            logger.error("Paddle HTTP request error: %s", e)
            raise PaddleAPIError(f"Paddle request failed: {e}") from e

    async def create_checkout(
        self,
        price_id: str,
        user_id: str,
        email: str,
        success_url: str,
    ) -> CheckoutSession:
        """
        Create a checkout transaction for a single subscription price.

        Args:
            price_id: Paddle price ID (pri_...)
            user_id: Internal user ID, carried back on webhooks as custom_data
            email: Customer email used to prefill checkout
            success_url: Checkout page on an approved domain; Paddle.js redirects from there

        Returns:
            CheckoutSession with the transaction ID and hosted checkout URL
        """
        response = await self._make_request(
            "POST",
            "transactions",
            {
                "items": [{"price_id": price_id, "quantity": 1}],
                "customer": {"email": email},
                "custom_data": {"userId": user_id},
                "checkout": {"url": success_url},
            },
        )

        data = response.get("data") or {}
        checkout_url = (data.get("checkout") or {}).get("url") or data.get("url")
        transaction_id = data.get("id")
        if not checkout_url or not transaction_id:
            raise PaddleAPIError("Paddle transaction created but checkout URL was missing in response")

        logger.info("Created Paddle checkout transaction %s for user %s", transaction_id, user_id)
        return CheckoutSession(id=str(transaction_id), url=str(checkout_url))

    async def create_portal_session(self, customer_id: str) -> PortalSession:
        """
        Create a customer portal session.

        Args:
            customer_id: Paddle customer ID (ctm_...)

        Returns:
            PortalSession with the portal overview URL
        """
        response = await self._make_request("POST", f"customers/{customer_id}/portal-sessions")

        urls = (response.get("data") or {}).get("urls") or {}
        url = (urls.get("general") or {}).get("overview")
        if not url:
            raise PaddleAPIError("Paddle portal session created but overview URL was missing in response")

        logger.info("Created Paddle portal session for customer %s", customer_id)
        return PortalSession(url=url)
