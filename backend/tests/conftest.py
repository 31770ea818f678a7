"""
Pytest configuration and shared fixtures for backend tests.
"""

import hashlib
import hmac
import json
import sys
import time
from datetime import UTC, datetime, timedelta
from pathlib import Path

# Add backend directory to path for imports
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

import pytest
from typing import AsyncGenerator
from unittest.mock import AsyncMock
from uuid import uuid4

from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Import after path is set
from adapters.payments import CheckoutSession, PaddleAdapter, PortalSession, StripeAdapter
from core.security import TokenService
from infrastructure.config import Settings, get_settings
from infrastructure.database.connection import get_db
from infrastructure.database.models import Base, Subscription, User
from services import get_event_normalizer, get_paddle_adapter, get_plan_resolver, get_stripe_adapter
from services.event_normalizer import EventNormalizer, PaddleEventAdapter, StripeEventAdapter
from services.plan_resolver import PlanResolver

settings = get_settings()
token_service = TokenService(
    secret_key=settings.jwt_secret_key,
    algorithm=settings.jwt_algorithm,
)


# Database URL for testing (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Billing test configuration
STRIPE_WEBHOOK_SECRET = "whsec_test_c2lnbmluZ19zZWNyZXRfZm9yX3Rlc3Rz"
PADDLE_WEBHOOK_SECRET = "pdl_ntfset_01htest_notification_secret"

STRIPE_PRICES = {
    "individual_monthly": "price_individual_monthly",
    "individual_annual": "price_individual_annual",
    "family_monthly": "price_family_monthly",
    "family_annual": "price_family_annual",
    "teams_monthly": "price_teams_monthly",
    "teams_annual": "price_teams_annual",
}
PADDLE_PRICES = {
    "individual_monthly": "pri_individual_monthly",
    "individual_annual": "pri_individual_annual",
    "family_monthly": "pri_family_monthly",
    "family_annual": "pri_family_annual",
    "teams_monthly": "pri_teams_monthly",
    "teams_annual": "pri_teams_annual",
}


def make_billing_settings(**overrides) -> Settings:
    """Settings with both providers fully configured; keyword overrides win."""
    values = {
        "environment": "testing",
        "billing_provider": "stripe",
        "stripe_secret_key": "sk_test_billing_key",
        "stripe_webhook_secret": STRIPE_WEBHOOK_SECRET,
        "paddle_api_key": "pdl_sdbx_apikey_test",
        "paddle_webhook_secret": PADDLE_WEBHOOK_SECRET,
        "paddle_api_url": "https://sandbox-api.paddle.com",
        **{f"stripe_price_{name}": value for name, value in STRIPE_PRICES.items()},
        **{f"paddle_price_{name}": value for name, value in PADDLE_PRICES.items()},
    }
    values.update(overrides)
    return Settings(**values)


def stripe_signature_header(payload: bytes, secret: str = STRIPE_WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a `stripe-signature` header: t=<ts>,v1=HMAC(secret, "<ts>.<payload>")."""
    ts = int(time.time()) if timestamp is None else timestamp
    signed = f"{ts}.".encode() + payload
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={signature}"


def paddle_signature_header(payload: bytes, secret: str = PADDLE_WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a `paddle-signature` header: ts=<ts>;h1=HMAC(secret, "<ts>:<payload>")."""
    ts = int(time.time()) if timestamp is None else timestamp
    signed = f"{ts}:".encode() + payload
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"ts={ts};h1={signature}"


def stripe_subscription_payload(
    subscription_id: str = "sub_test_123",
    status: str = "active",
    price_id: str = STRIPE_PRICES["individual_monthly"],
    customer_id: str = "cus_test_123",
    user_id: str | None = None,
    cancel_at_period_end: bool = False,
) -> dict:
    """Stripe subscription object as delivered in webhook payloads."""
    now = int(time.time())
    return {
        "id": subscription_id,
        "object": "subscription",
        "customer": customer_id,
        "status": status,
        "cancel_at_period_end": cancel_at_period_end,
        "current_period_start": now,
        "current_period_end": now + 30 * 24 * 3600,
        "metadata": {"userId": user_id} if user_id else {},
        "items": {
            "object": "list",
            "data": [{"id": "si_test_1", "price": {"id": price_id, "object": "price"}}] if price_id else [],
        },
    }


def stripe_event(event_type: str, obj: dict, event_id: str | None = None) -> dict:
    """Wrap an object in a Stripe event envelope."""
    return {
        "id": event_id or f"evt_{uuid4().hex[:16]}",
        "object": "event",
        "type": event_type,
        "created": int(time.time()),
        "data": {"object": obj},
    }


def paddle_subscription_event(
    event_type: str = "subscription.created",
    subscription_id: str = "sub_01htest",
    status: str = "active",
    price_id: str = PADDLE_PRICES["individual_monthly"],
    customer_id: str = "ctm_01htest",
    user_id: str | None = None,
    event_id: str | None = None,
    scheduled_change: dict | None = None,
) -> dict:
    """Paddle Billing subscription notification."""
    starts = datetime.now(UTC).replace(microsecond=0)
    return {
        "event_id": event_id or f"evt_{uuid4().hex[:16]}",
        "event_type": event_type,
        "occurred_at": starts.isoformat().replace("+00:00", "Z"),
        "notification_id": f"ntf_{uuid4().hex[:16]}",
        "data": {
            "id": subscription_id,
            "status": status,
            "customer_id": customer_id,
            "custom_data": {"userId": user_id} if user_id else None,
            "items": [{"price": {"id": price_id}, "quantity": 1}] if price_id else [],
            "current_billing_period": {
                "starts_at": starts.isoformat().replace("+00:00", "Z"),
                "ends_at": (starts + timedelta(days=30)).isoformat().replace("+00:00", "Z"),
            },
            "scheduled_change": scheduled_change,
        },
    }


def encode(payload: dict) -> bytes:
    return json.dumps(payload).encode()


@pytest.fixture
async def db_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async_session = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    async with async_session() as session:
        yield session
        await session.rollback()


@pytest.fixture
async def test_user(db_session: AsyncSession) -> User:
    """Create a free-tier test user with no provider customer."""
    user = User(
        id=str(uuid4()),
        email="test@example.com",
        name="Test User",
        status="active",
        subscription_tier="free",
        subscription_status="active",
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest.fixture
async def subscribed_user(db_session: AsyncSession) -> User:
    """
    Create a pro-tier user with an active Stripe subscription.

    Used for testing:
    - Portal access
    - Cancellation and renewal webhooks
    - Plan-derived limits
    """
    user = User(
        id=str(uuid4()),
        email="subscribed@example.com",
        name="Subscribed User",
        status="active",
        subscription_tier="pro",
        subscription_status="active",
        stripe_customer_id="cus_existing_123",
        stripe_subscription_id="sub_existing_123",
    )
    db_session.add(user)
    await db_session.flush()

    now = datetime.now(UTC)
    db_session.add(
        Subscription(
            user_id=user.id,
            provider="stripe",
            external_subscription_id="sub_existing_123",
            external_price_id=STRIPE_PRICES["individual_monthly"],
            status="active",
            current_period_start=now,
            current_period_end=now + timedelta(days=30),
            cancel_at_period_end=False,
        )
    )
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest.fixture
def auth_headers(test_user: User) -> dict:
    """Generate authentication headers for test user."""
    access_token = token_service.create_access_token(user_id=test_user.id)
    return {"Authorization": f"Bearer {access_token}"}


@pytest.fixture
def subscribed_auth_headers(subscribed_user: User) -> dict:
    """Generate authentication headers for the subscribed user."""
    access_token = token_service.create_access_token(user_id=subscribed_user.id)
    return {"Authorization": f"Bearer {access_token}"}


# ============================================================================
# Billing Test Fixtures
# ============================================================================


@pytest.fixture
def billing_settings() -> Settings:
    """Settings with Stripe as checkout provider and all prices configured."""
    return make_billing_settings()


@pytest.fixture
def plan_resolver(billing_settings: Settings) -> PlanResolver:
    return PlanResolver(billing_settings)


@pytest.fixture
def mock_stripe_adapter() -> AsyncMock:
    """
    Stripe adapter double.

    Tests set `retrieve_subscription.return_value` for checkout-completion
    events; session calls return fixed test sessions.
    """
    adapter = AsyncMock(spec=StripeAdapter)
    adapter.get_or_create_customer.return_value = "cus_new_123"
    adapter.create_checkout_session.return_value = CheckoutSession(
        id="cs_test_123", url="https://checkout.stripe.com/c/pay/cs_test_123"
    )
    adapter.create_portal_session.return_value = PortalSession(
        url="https://billing.stripe.com/p/session/test_123"
    )
    return adapter


@pytest.fixture
def mock_paddle_adapter() -> AsyncMock:
    """Paddle adapter double with fixed checkout and portal responses."""
    adapter = AsyncMock(spec=PaddleAdapter)
    adapter.create_checkout.return_value = CheckoutSession(
        id="txn_01htest", url="https://pay.safenode.io/checkout?_ptxn=txn_01htest"
    )
    adapter.create_portal_session.return_value = PortalSession(
        url="https://customer-portal.paddle.com/cpl_01htest"
    )
    return adapter


@pytest.fixture
def event_normalizer(mock_stripe_adapter: AsyncMock) -> EventNormalizer:
    return EventNormalizer([StripeEventAdapter(mock_stripe_adapter), PaddleEventAdapter()])


@pytest.fixture
async def async_client(
    db_session: AsyncSession,
    billing_settings: Settings,
    plan_resolver: PlanResolver,
    mock_stripe_adapter: AsyncMock,
    mock_paddle_adapter: AsyncMock,
    event_normalizer: EventNormalizer,
) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client with the database and billing providers overridden."""
    # Import app here to avoid circular imports
    from main import app

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: billing_settings
    app.dependency_overrides[get_plan_resolver] = lambda: plan_resolver
    app.dependency_overrides[get_stripe_adapter] = lambda: mock_stripe_adapter
    app.dependency_overrides[get_paddle_adapter] = lambda: mock_paddle_adapter
    app.dependency_overrides[get_event_normalizer] = lambda: event_normalizer

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
