"""
Billing and subscription API routes.
"""

import logging
from datetime import UTC, datetime
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from adapters.payments import PaddleAdapter, StripeAdapter
from api.dependencies import get_current_user
from api.schemas.billing import (
    CheckoutRequest,
    CheckoutResponse,
    LimitCheckResponse,
    PortalRequest,
    PortalResponse,
    SubscriptionDetails,
    SubscriptionStatusResponse,
    WebhookAck,
)
from core.errors import BillingError, ConfigurationError
from infrastructure.config.settings import Settings, get_settings
from infrastructure.database.connection import get_db
from infrastructure.database.models.subscription import (
    NON_TERMINAL_STATUSES,
    BillingProvider,
    Subscription,
)
from infrastructure.database.models.user import User
from services import (
    get_event_normalizer,
    get_paddle_adapter,
    get_plan_resolver,
    get_stripe_adapter,
)
from services.billing_sessions import BillingSessionService
from services.event_normalizer import EventNormalizer
from services.plan_resolver import PlanResolver, normalize_tier
from services.signature_verifier import construct_stripe_event, parse_paddle_event
from services.usage_limits import UsageLimitService, parse_resource
from services.webhook_processor import WebhookProcessor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])


def get_billing_session_service(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    plan_resolver: PlanResolver = Depends(get_plan_resolver),
    stripe_adapter: StripeAdapter = Depends(get_stripe_adapter),
    paddle_adapter: PaddleAdapter = Depends(get_paddle_adapter),
) -> BillingSessionService:
    return BillingSessionService(db, settings, plan_resolver, stripe_adapter, paddle_adapter)


def get_usage_limit_service(
    db: AsyncSession = Depends(get_db),
    plan_resolver: PlanResolver = Depends(get_plan_resolver),
) -> UsageLimitService:
    return UsageLimitService(db, plan_resolver)


def get_webhook_processor(
    db: AsyncSession = Depends(get_db),
    normalizer: EventNormalizer = Depends(get_event_normalizer),
    plan_resolver: PlanResolver = Depends(get_plan_resolver),
) -> WebhookProcessor:
    return WebhookProcessor(db, normalizer, plan_resolver)


async def _process_webhook(
    processor: WebhookProcessor,
    provider: str,
    event: dict,
    raw_body: bytes,
) -> WebhookAck:
    try:
        result = await processor.process(
            provider, event, raw_body, received_at=datetime.now(UTC)
        )
    except BillingError:
        raise
    except Exception as e:
        # Non-2xx makes the provider redeliver; nothing was committed
        raise BillingError("Webhook processing failed", code="webhook_processing_failed") from e

    if result.duplicate:
        return WebhookAck(received=True, duplicate=True)
    return WebhookAck(received=True)


@router.post("/webhook", response_model=WebhookAck, response_model_exclude_none=True)
async def handle_stripe_webhook(
    request: Request,
    stripe_signature: Annotated[str | None, Header(alias="stripe-signature")] = None,
    settings: Settings = Depends(get_settings),
    processor: WebhookProcessor = Depends(get_webhook_processor),
):
    """
    Handle Stripe webhook events.

    The raw body is verified against the `stripe-signature` header before
    it is parsed. Subscription-family events are applied; anything else is
    acknowledged and ignored. A repeated event id is acknowledged with
    `duplicate: true` and not reprocessed.
    """
    if not settings.stripe_secret_key:
        logger.error("Stripe webhook rejected: stripe_secret_key not configured")
        raise ConfigurationError("Stripe is not configured", code="stripe_not_configured")

    body = await request.body()
    event = construct_stripe_event(
        body,
        stripe_signature,
        settings.stripe_webhook_secret,
        tolerance=settings.webhook_tolerance_seconds,
    )
    return await _process_webhook(processor, BillingProvider.STRIPE.value, event, body)


@router.post("/webhook/alternate", response_model=WebhookAck, response_model_exclude_none=True)
async def handle_paddle_webhook(
    request: Request,
    paddle_signature: Annotated[str | None, Header(alias="paddle-signature")] = None,
    settings: Settings = Depends(get_settings),
    processor: WebhookProcessor = Depends(get_webhook_processor),
):
    """
    Handle Paddle Billing webhook events.

    The `paddle-signature: ts=...;h1=...` header is verified against the
    raw body, and deliveries whose timestamp is outside the replay window
    are rejected.
    """
    body = await request.body()
    event = parse_paddle_event(
        body,
        paddle_signature,
        settings.paddle_webhook_secret,
        tolerance=settings.webhook_tolerance_seconds,
    )
    return await _process_webhook(processor, BillingProvider.PADDLE.value, event, body)


@router.post("/checkout", response_model=CheckoutResponse)
async def create_checkout(
    body: CheckoutRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    sessions: BillingSessionService = Depends(get_billing_session_service),
):
    """
    Create a checkout session for a subscription price.

    Returns the provider's hosted checkout URL.
    """
    session = await sessions.create_checkout(
        current_user,
        price_id=body.price_id,
        success_url=body.success_url,
        cancel_url=body.cancel_url,
    )
    return CheckoutResponse(session_id=session.id, url=session.url)


@router.post("/portal", response_model=PortalResponse)
async def create_portal(
    body: PortalRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    sessions: BillingSessionService = Depends(get_billing_session_service),
):
    """
    Create a customer portal session for managing the subscription.

    Only available once the user has a provider customer.
    """
    session = await sessions.create_portal(current_user, return_url=body.return_url)
    return PortalResponse(url=session.url)


@router.get(
    "/limits",
    response_model=LimitCheckResponse | dict[str, LimitCheckResponse],
)
async def get_limits(
    current_user: Annotated[User, Depends(get_current_user)],
    limits: UsageLimitService = Depends(get_usage_limit_service),
    resource: Optional[str] = Query(None, description="devices, vaults, teamMembers or storage"),
):
    """
    Check plan limits for the current user.

    With `resource`, returns that resource's check; otherwise all four.
    """
    if resource is None:
        checks = await limits.check_all_limits(current_user.id)
        return {name: LimitCheckResponse(**check.to_dict()) for name, check in checks.items()}

    try:
        parsed = parse_resource(resource)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    check = await limits.check_limit(current_user.id, parsed)
    return LimitCheckResponse(**check.to_dict())


@router.get("/subscription", response_model=SubscriptionStatusResponse)
async def get_subscription_status(
    current_user: Annotated[User, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
    limits: UsageLimitService = Depends(get_usage_limit_service),
):
    """Get current user's subscription status and effective plan."""
    result = await db.execute(
        select(Subscription)
        .where(
            Subscription.user_id == current_user.id,
            Subscription.status.in_(NON_TERMINAL_STATUSES),
        )
        .order_by(Subscription.current_period_end.desc(), Subscription.created_at.desc())
        .limit(1)
    )
    subscription = result.scalar_one_or_none()
    plan = await limits.get_effective_plan(current_user)

    details = None
    if subscription is not None:
        details = SubscriptionDetails(
            provider=subscription.provider,
            status=subscription.status,
            price_id=subscription.external_price_id,
            current_period_end=subscription.current_period_end,
            cancel_at_period_end=subscription.cancel_at_period_end,
        )

    return SubscriptionStatusResponse(
        tier=normalize_tier(current_user.subscription_tier).value,
        status=current_user.subscription_status,
        plan=plan.value,
        subscription=details,
        can_manage=bool(current_user.stripe_customer_id or current_user.paddle_customer_id),
    )
