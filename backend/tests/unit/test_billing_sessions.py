"""
Unit tests for checkout and portal session initiation.
"""

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from adapters.payments import PaddleAPIError, PaddleAuthError, StripeAPIError, StripeAuthError
from core.errors import ConfigurationError, NoSubscription, ProviderCallFailure, UnknownPriceId
from infrastructure.database.models import User
from services.billing_sessions import BillingSessionService
from services.plan_resolver import PlanResolver
from tests.conftest import PADDLE_PRICES, STRIPE_PRICES, make_billing_settings

SUCCESS_URL = "https://app.safenode.io/billing/success"
CANCEL_URL = "https://app.safenode.io/billing"


def make_service(db, mock_stripe_adapter, mock_paddle_adapter, provider: str = "stripe") -> BillingSessionService:
    settings = make_billing_settings(billing_provider=provider)
    return BillingSessionService(
        db=db,
        settings=settings,
        plan_resolver=PlanResolver(settings),
        stripe_adapter=mock_stripe_adapter,
        paddle_adapter=mock_paddle_adapter,
    )


class TestStripeCheckout:
    """Checkout with Stripe as the active provider."""

    @pytest.mark.asyncio
    async def test_creates_customer_and_session(
        self, db_session: AsyncSession, test_user: User, mock_stripe_adapter, mock_paddle_adapter
    ):
        user_id = test_user.id
        service = make_service(db_session, mock_stripe_adapter, mock_paddle_adapter)

        session = await service.create_checkout(test_user, STRIPE_PRICES["family_monthly"], SUCCESS_URL, CANCEL_URL)

        assert session.id == "cs_test_123"
        mock_stripe_adapter.get_or_create_customer.assert_awaited_once_with(
            user_id=user_id, email="test@example.com", existing_customer_id=None
        )
        mock_stripe_adapter.create_checkout_session.assert_awaited_once_with(
            customer_id="cus_new_123",
            price_id=STRIPE_PRICES["family_monthly"],
            user_id=user_id,
            success_url=SUCCESS_URL,
            cancel_url=CANCEL_URL,
        )
        stored = (await db_session.execute(select(User.stripe_customer_id).where(User.id == user_id))).scalar_one()
        assert stored == "cus_new_123"

    @pytest.mark.asyncio
    async def test_reuses_existing_customer(
        self, db_session: AsyncSession, subscribed_user: User, mock_stripe_adapter, mock_paddle_adapter
    ):
        mock_stripe_adapter.get_or_create_customer.return_value = "cus_existing_123"
        service = make_service(db_session, mock_stripe_adapter, mock_paddle_adapter)

        await service.create_checkout(subscribed_user, STRIPE_PRICES["teams_annual"], SUCCESS_URL, CANCEL_URL)

        assert mock_stripe_adapter.get_or_create_customer.await_args.kwargs["existing_customer_id"] == "cus_existing_123"
        assert mock_stripe_adapter.create_checkout_session.await_args.kwargs["customer_id"] == "cus_existing_123"

    @pytest.mark.asyncio
    async def test_unknown_price_rejected_before_provider_call(
        self, db_session, test_user, mock_stripe_adapter, mock_paddle_adapter
    ):
        service = make_service(db_session, mock_stripe_adapter, mock_paddle_adapter)

        with pytest.raises(UnknownPriceId) as exc_info:
            await service.create_checkout(test_user, "price_not_ours", SUCCESS_URL, CANCEL_URL)

        assert exc_info.value.code == "invalid_price_id"
        mock_stripe_adapter.get_or_create_customer.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_paddle_price_rejected_when_stripe_active(
        self, db_session, test_user, mock_stripe_adapter, mock_paddle_adapter
    ):
        service = make_service(db_session, mock_stripe_adapter, mock_paddle_adapter)

        with pytest.raises(UnknownPriceId):
            await service.create_checkout(test_user, PADDLE_PRICES["individual_monthly"], SUCCESS_URL, CANCEL_URL)

    @pytest.mark.asyncio
    async def test_missing_key(self, db_session, test_user, mock_stripe_adapter, mock_paddle_adapter):
        mock_stripe_adapter.get_or_create_customer.side_effect = StripeAuthError("Stripe secret key not configured")
        service = make_service(db_session, mock_stripe_adapter, mock_paddle_adapter)

        with pytest.raises(ConfigurationError) as exc_info:
            await service.create_checkout(test_user, STRIPE_PRICES["individual_monthly"], SUCCESS_URL, CANCEL_URL)

        assert exc_info.value.code == "stripe_not_configured"
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_provider_message_passed_through(
        self, db_session, test_user, mock_stripe_adapter, mock_paddle_adapter
    ):
        mock_stripe_adapter.create_checkout_session.side_effect = StripeAPIError("No such price: 'price_x'")
        service = make_service(db_session, mock_stripe_adapter, mock_paddle_adapter)

        with pytest.raises(ProviderCallFailure) as exc_info:
            await service.create_checkout(test_user, STRIPE_PRICES["individual_monthly"], SUCCESS_URL, CANCEL_URL)

        assert exc_info.value.message == "No such price: 'price_x'"
        mock_stripe_adapter.create_checkout_session.assert_awaited_once()


class TestPaddleCheckout:
    @pytest.mark.asyncio
    async def test_creates_transaction(self, db_session, test_user, mock_stripe_adapter, mock_paddle_adapter):
        user_id = test_user.id
        service = make_service(db_session, mock_stripe_adapter, mock_paddle_adapter, provider="paddle")

        session = await service.create_checkout(test_user, PADDLE_PRICES["family_annual"], SUCCESS_URL, CANCEL_URL)

        assert session.id == "txn_01htest"
        mock_paddle_adapter.create_checkout.assert_awaited_once_with(
            price_id=PADDLE_PRICES["family_annual"],
            user_id=user_id,
            email="test@example.com",
            success_url=SUCCESS_URL,
        )
        mock_stripe_adapter.get_or_create_customer.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_key(self, db_session, test_user, mock_stripe_adapter, mock_paddle_adapter):
        mock_paddle_adapter.create_checkout.side_effect = PaddleAuthError("Paddle API key not configured")
        service = make_service(db_session, mock_stripe_adapter, mock_paddle_adapter, provider="paddle")

        with pytest.raises(ConfigurationError) as exc_info:
            await service.create_checkout(test_user, PADDLE_PRICES["teams_monthly"], SUCCESS_URL, CANCEL_URL)

        assert exc_info.value.code == "paddle_not_configured"

    @pytest.mark.asyncio
    async def test_api_error(self, db_session, test_user, mock_stripe_adapter, mock_paddle_adapter):
        mock_paddle_adapter.create_checkout.side_effect = PaddleAPIError("Paddle API request failed (HTTP 400)")
        service = make_service(db_session, mock_stripe_adapter, mock_paddle_adapter, provider="paddle")

        with pytest.raises(ProviderCallFailure) as exc_info:
            await service.create_checkout(test_user, PADDLE_PRICES["teams_monthly"], SUCCESS_URL, CANCEL_URL)

        assert exc_info.value.code == "provider_error"


class TestPortal:
    """Tests for BillingSessionService.create_portal()."""

    @pytest.mark.asyncio
    async def test_stripe_customer(self, db_session, subscribed_user, mock_stripe_adapter, mock_paddle_adapter):
        service = make_service(db_session, mock_stripe_adapter, mock_paddle_adapter)

        session = await service.create_portal(subscribed_user, "https://app.safenode.io/settings")

        assert session.url == "https://billing.stripe.com/p/session/test_123"
        mock_stripe_adapter.create_portal_session.assert_awaited_once_with(
            customer_id="cus_existing_123", return_url="https://app.safenode.io/settings"
        )

    @pytest.mark.asyncio
    async def test_paddle_customer(self, db_session, test_user, mock_stripe_adapter, mock_paddle_adapter):
        test_user.paddle_customer_id = "ctm_01htest"
        await db_session.commit()
        service = make_service(db_session, mock_stripe_adapter, mock_paddle_adapter)

        session = await service.create_portal(test_user, "https://app.safenode.io/settings")

        assert session.url == "https://customer-portal.paddle.com/cpl_01htest"
        mock_paddle_adapter.create_portal_session.assert_awaited_once_with("ctm_01htest")

    @pytest.mark.asyncio
    async def test_stripe_takes_precedence(self, db_session, subscribed_user, mock_stripe_adapter, mock_paddle_adapter):
        subscribed_user.paddle_customer_id = "ctm_01htest"
        await db_session.commit()
        service = make_service(db_session, mock_stripe_adapter, mock_paddle_adapter, provider="paddle")

        await service.create_portal(subscribed_user, "https://app.safenode.io/settings")

        mock_stripe_adapter.create_portal_session.assert_awaited_once()
        mock_paddle_adapter.create_portal_session.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_customer(self, db_session, test_user, mock_stripe_adapter, mock_paddle_adapter):
        service = make_service(db_session, mock_stripe_adapter, mock_paddle_adapter)

        with pytest.raises(NoSubscription) as exc_info:
            await service.create_portal(test_user, "https://app.safenode.io/settings")

        assert exc_info.value.code == "no_subscription"
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_provider_failure(self, db_session, subscribed_user, mock_stripe_adapter, mock_paddle_adapter):
        mock_stripe_adapter.create_portal_session.side_effect = StripeAPIError("No configuration provided")
        service = make_service(db_session, mock_stripe_adapter, mock_paddle_adapter)

        with pytest.raises(ProviderCallFailure) as exc_info:
            await service.create_portal(subscribed_user, "https://app.safenode.io/settings")

        assert exc_info.value.message == "No configuration provided"
