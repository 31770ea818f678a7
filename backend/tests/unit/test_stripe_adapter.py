"""
Unit tests for the Stripe adapter.

The Stripe SDK is patched at the resource methods the adapter calls.
"""

from unittest.mock import MagicMock, patch

import pytest
import stripe

from adapters.payments import StripeAdapter, StripeAPIError, StripeAuthError


@pytest.fixture
def adapter() -> StripeAdapter:
    return StripeAdapter(api_key="sk_test_adapter")


class TestCall:
    @pytest.mark.asyncio
    async def test_missing_key(self):
        adapter = StripeAdapter(api_key="")
        adapter.api_key = None

        with pytest.raises(StripeAuthError):
            await adapter.retrieve_subscription("sub_1")

    @pytest.mark.asyncio
    async def test_sdk_error_wrapped(self, adapter):
        error = stripe.InvalidRequestError("No such subscription: 'sub_1'", param="id")

        with patch("stripe.Subscription.retrieve", side_effect=error):
            with pytest.raises(StripeAPIError) as exc_info:
                await adapter.retrieve_subscription("sub_1")

        assert "No such subscription" in str(exc_info.value)


class TestRetrieveSubscription:
    @pytest.mark.asyncio
    async def test_returns_plain_dict_and_passes_key(self, adapter):
        subscription = MagicMock()
        subscription.to_dict.return_value = {"id": "sub_1", "status": "active"}

        with patch("stripe.Subscription.retrieve", return_value=subscription) as retrieve:
            result = await adapter.retrieve_subscription("sub_1")

        assert result == {"id": "sub_1", "status": "active"}
        retrieve.assert_called_once_with("sub_1", api_key="sk_test_adapter")


class TestGetOrCreateCustomer:
    @pytest.mark.asyncio
    async def test_existing_customer_not_recreated(self, adapter):
        with patch("stripe.Customer.create") as create:
            customer_id = await adapter.get_or_create_customer("user-1", "a@example.com", "cus_existing")

        assert customer_id == "cus_existing"
        create.assert_not_called()

    @pytest.mark.asyncio
    async def test_creates_customer_with_user_metadata(self, adapter):
        with patch("stripe.Customer.create", return_value=MagicMock(id="cus_created")) as create:
            customer_id = await adapter.get_or_create_customer("user-1", "a@example.com")

        assert customer_id == "cus_created"
        create.assert_called_once_with(
            email="a@example.com", metadata={"userId": "user-1"}, api_key="sk_test_adapter"
        )


class TestSessions:
    @pytest.mark.asyncio
    async def test_checkout_session_carries_user_id(self, adapter):
        created = MagicMock(id="cs_1", url="https://checkout.stripe.com/c/pay/cs_1")

        with patch("stripe.checkout.Session.create", return_value=created) as create:
            session = await adapter.create_checkout_session(
                customer_id="cus_1",
                price_id="price_1",
                user_id="user-1",
                success_url="https://app.safenode.io/ok",
                cancel_url="https://app.safenode.io/cancel",
            )

        assert session.id == "cs_1"
        assert session.url == "https://checkout.stripe.com/c/pay/cs_1"
        kwargs = create.call_args.kwargs
        assert kwargs["mode"] == "subscription"
        assert kwargs["line_items"] == [{"price": "price_1", "quantity": 1}]
        assert kwargs["client_reference_id"] == "user-1"
        assert kwargs["metadata"] == {"userId": "user-1"}
        assert kwargs["subscription_data"] == {"metadata": {"userId": "user-1"}}
        assert kwargs["api_key"] == "sk_test_adapter"

    @pytest.mark.asyncio
    async def test_portal_session(self, adapter):
        created = MagicMock(url="https://billing.stripe.com/p/session/1")

        with patch("stripe.billing_portal.Session.create", return_value=created) as create:
            session = await adapter.create_portal_session("cus_1", "https://app.safenode.io/settings")

        assert session.url == "https://billing.stripe.com/p/session/1"
        create.assert_called_once_with(
            customer="cus_1", return_url="https://app.safenode.io/settings", api_key="sk_test_adapter"
        )
