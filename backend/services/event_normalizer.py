"""
Event normalization.

Each billing provider has its own webhook payload shape. A provider event
adapter turns one provider's payload into a NormalizedEvent; everything
downstream (plan resolution, the subscription state machine) only ever
sees NormalizedEvent. Provider-specific branching lives in this module's
adapters and nowhere else.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from adapters.payments.stripe_adapter import StripeAdapter
from core.errors import UnresolvedUser
from infrastructure.database.models.subscription import (
    BillingProvider,
    Subscription,
    SubscriptionStatus,
)
from infrastructure.database.models.user import PROVIDER_CORRELATION_FIELDS, User

logger = logging.getLogger(__name__)

# Used when the period end cannot be read from the payload
DEFAULT_PERIOD = timedelta(days=30)

STRIPE_UNKNOWN_PRICE = "stripe_unknown_price"
PADDLE_UNKNOWN_PRICE = "paddle_unknown_price"
UNKNOWN_PRICE_IDS = frozenset({STRIPE_UNKNOWN_PRICE, PADDLE_UNKNOWN_PRICE})


class EventKind(str, Enum):
    """What a normalized event means for the subscription state machine."""

    CHECKOUT_COMPLETED = "checkout_completed"
    SUBSCRIPTION_CHANGED = "subscription_changed"
    PAYMENT_FAILED = "payment_failed"


@dataclass
class NormalizedEvent:
    """Provider-neutral view of one subscription webhook event."""

    provider: str
    event_id: Optional[str]
    event_type: str
    kind: EventKind
    subscription_id: str
    price_id: str
    status: SubscriptionStatus
    period_start: datetime
    period_end: datetime
    cancel_at_period_end: bool = False
    user_id: Optional[str] = None  # from checkout metadata, if carried through
    customer_id: Optional[str] = None

    @property
    def has_known_price(self) -> bool:
        return self.price_id not in UNKNOWN_PRICE_IDS


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _from_unix(value: Any) -> Optional[datetime]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        return datetime.fromtimestamp(value, tz=UTC)
    except (ValueError, OverflowError, OSError):
        logger.warning("Ignoring out-of-range timestamp %r in webhook payload", value)
        return None


def _from_iso(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Ignoring malformed timestamp %r in webhook payload", value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _first_entry(value: Any) -> dict[str, Any]:
    """First element of a payload list, or {} when absent or not an object."""
    if isinstance(value, list) and value:
        return _dict(value[0])
    return {}


def _first(*values: Optional[datetime]) -> Optional[datetime]:
    for value in values:
        if value is not None:
            return value
    return None


def _clean_str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


class ProviderEventAdapter(ABC):
    """Converts one provider's webhook payloads into NormalizedEvent."""

    provider: str

    @abstractmethod
    def identify(self, event: dict[str, Any]) -> tuple[Optional[str], str]:
        """Return (event_id, event_type) for idempotency and logging."""

    @abstractmethod
    async def normalize(
        self, event: dict[str, Any], received_at: datetime | None = None
    ) -> Optional[NormalizedEvent]:
        """Return the normalized event, or None if the event is outside the allow-list."""


class StripeEventAdapter(ProviderEventAdapter):
    """Normalizes Stripe subscription-family events."""

    provider = BillingProvider.STRIPE.value

    SUBSCRIPTION_EVENTS = frozenset(
        {
            "checkout.session.completed",
            "customer.subscription.created",
            "customer.subscription.updated",
            "customer.subscription.deleted",
            "invoice.payment_failed",
        }
    )

    STATUS_MAP = {
        "active": SubscriptionStatus.ACTIVE,
        "trialing": SubscriptionStatus.TRIALING,
        "past_due": SubscriptionStatus.PAST_DUE,
        "canceled": SubscriptionStatus.CANCELLED,
        "unpaid": SubscriptionStatus.CANCELLED,
        "incomplete_expired": SubscriptionStatus.CANCELLED,
        "paused": SubscriptionStatus.CANCELLED,
    }

    def __init__(self, stripe_adapter: StripeAdapter):
        self._stripe = stripe_adapter

    def identify(self, event: dict[str, Any]) -> tuple[Optional[str], str]:
        return _clean_str(event.get("id")), str(event.get("type") or "")

    @staticmethod
    def _object_id(value: Any) -> Optional[str]:
        """Stripe references are either an id string or an expanded object."""
        if isinstance(value, dict):
            return _clean_str(value.get("id"))
        return _clean_str(value)

    @classmethod
    def map_status(cls, status: Any) -> SubscriptionStatus:
        return cls.STATUS_MAP.get(str(status or "").lower(), SubscriptionStatus.PAST_DUE)

    @staticmethod
    def _metadata_user_id(*objects: dict[str, Any]) -> Optional[str]:
        for obj in objects:
            user_id = _clean_str(_dict(obj.get("metadata")).get("userId"))
            if user_id:
                return user_id
        return None

    def _from_subscription(
        self,
        subscription: dict[str, Any],
        event_id: Optional[str],
        event_type: str,
        kind: EventKind,
        received_at: datetime,
        user_id: Optional[str] = None,
        customer_id: Optional[str] = None,
    ) -> Optional[NormalizedEvent]:
        subscription_id = _clean_str(subscription.get("id"))
        if not subscription_id:
            logger.warning("Stripe %s event %s has no subscription id; dropping", event_type, event_id)
            return None

        first_item = _first_entry(_dict(subscription.get("items")).get("data"))
        price_id = self._object_id(first_item.get("price")) or STRIPE_UNKNOWN_PRICE

        if event_type == "customer.subscription.deleted":
            status = SubscriptionStatus.CANCELLED
        else:
            status = self.map_status(subscription.get("status"))

        # Newer API versions moved the period window onto subscription items
        period_start = _first(
            _from_unix(subscription.get("current_period_start")),
            _from_unix(first_item.get("current_period_start")),
            received_at,
        )
        period_end = _first(
            _from_unix(subscription.get("current_period_end")),
            _from_unix(first_item.get("current_period_end")),
            received_at + DEFAULT_PERIOD,
        )

        return NormalizedEvent(
            provider=self.provider,
            event_id=event_id,
            event_type=event_type,
            kind=kind,
            subscription_id=subscription_id,
            price_id=price_id,
            status=status,
            period_start=period_start,
            period_end=period_end,
            cancel_at_period_end=bool(subscription.get("cancel_at_period_end")),
            user_id=user_id or self._metadata_user_id(subscription),
            customer_id=customer_id or self._object_id(subscription.get("customer")),
        )

    async def normalize(
        self, event: dict[str, Any], received_at: datetime | None = None
    ) -> Optional[NormalizedEvent]:
        received_at = received_at or _utcnow()
        event_id, event_type = self.identify(event)
        if event_type not in self.SUBSCRIPTION_EVENTS:
            logger.info(
                "Ignoring Stripe event type %s",
                event_type,
                extra={"provider": self.provider, "event_id": event_id},
            )
            return None

        obj = _dict(_dict(event.get("data")).get("object"))

        if event_type == "checkout.session.completed":
            if obj.get("mode") != "subscription":
                logger.info("Ignoring non-subscription checkout session %s", obj.get("id"))
                return None
            subscription_id = self._object_id(obj.get("subscription"))
            if not subscription_id:
                logger.warning("Checkout session %s has no subscription; dropping", obj.get("id"))
                return None
            subscription = await self._stripe.retrieve_subscription(subscription_id)
            return self._from_subscription(
                subscription,
                event_id,
                event_type,
                EventKind.CHECKOUT_COMPLETED,
                received_at,
                user_id=self._metadata_user_id(obj)
                or _clean_str(obj.get("client_reference_id"))
                or self._metadata_user_id(subscription),
                customer_id=self._object_id(obj.get("customer")),
            )

        if event_type == "invoice.payment_failed":
            return self._from_invoice(obj, event_id, event_type, received_at)

        return self._from_subscription(
            obj, event_id, event_type, EventKind.SUBSCRIPTION_CHANGED, received_at
        )

    def _from_invoice(
        self,
        invoice: dict[str, Any],
        event_id: Optional[str],
        event_type: str,
        received_at: datetime,
    ) -> Optional[NormalizedEvent]:
        # Basil and later API versions nest the subscription under parent
        details = _dict(_dict(invoice.get("parent")).get("subscription_details"))
        subscription_id = self._object_id(invoice.get("subscription")) or self._object_id(
            details.get("subscription")
        )
        if not subscription_id:
            logger.info("Ignoring payment failure for non-subscription invoice %s", invoice.get("id"))
            return None

        first_line = _first_entry(_dict(invoice.get("lines")).get("data"))
        price_id = (
            self._object_id(first_line.get("price"))
            or _clean_str(_dict(_dict(first_line.get("pricing")).get("price_details")).get("price"))
            or STRIPE_UNKNOWN_PRICE
        )
        period = _dict(first_line.get("period"))

        return NormalizedEvent(
            provider=self.provider,
            event_id=event_id,
            event_type=event_type,
            kind=EventKind.PAYMENT_FAILED,
            subscription_id=subscription_id,
            price_id=price_id,
            status=SubscriptionStatus.PAST_DUE,
            period_start=_first(_from_unix(period.get("start")), received_at),
            period_end=_first(_from_unix(period.get("end")), received_at + DEFAULT_PERIOD),
            user_id=self._metadata_user_id(details, _dict(invoice.get("subscription_details"))),
            customer_id=self._object_id(invoice.get("customer")),
        )


class PaddleEventAdapter(ProviderEventAdapter):
    """Normalizes Paddle Billing subscription events."""

    provider = BillingProvider.PADDLE.value

    SUBSCRIPTION_EVENTS = frozenset(
        {
            "subscription.created",
            "subscription.updated",
            "subscription.activated",
            "subscription.trialing",
            "subscription.past_due",
            "subscription.paused",
            "subscription.resumed",
            "subscription.canceled",
        }
    )

    STATUS_MAP = {
        "active": SubscriptionStatus.ACTIVE,
        "trialing": SubscriptionStatus.TRIALING,
        "past_due": SubscriptionStatus.PAST_DUE,
        "paused": SubscriptionStatus.CANCELLED,
        "canceled": SubscriptionStatus.CANCELLED,
    }

    USER_ID_KEYS = ("userId", "user_id", "externalUserId", "external_user_id")

    def identify(self, event: dict[str, Any]) -> tuple[Optional[str], str]:
        return _clean_str(event.get("event_id")), str(event.get("event_type") or "")

    @classmethod
    def map_status(cls, status: Any) -> SubscriptionStatus:
        return cls.STATUS_MAP.get(str(status or "").lower(), SubscriptionStatus.PAST_DUE)

    @classmethod
    def _custom_user_id(cls, data: dict[str, Any]) -> Optional[str]:
        custom_data = data.get("custom_data")
        if not isinstance(custom_data, dict):
            return None
        for key in cls.USER_ID_KEYS:
            user_id = _clean_str(custom_data.get(key))
            if user_id:
                return user_id
        return None

    @staticmethod
    def _first_price_id(data: dict[str, Any]) -> str:
        item = _first_entry(data.get("items"))
        return (
            _clean_str(item.get("price_id"))
            or _clean_str(_dict(item.get("price")).get("id"))
            or PADDLE_UNKNOWN_PRICE
        )

    async def normalize(
        self, event: dict[str, Any], received_at: datetime | None = None
    ) -> Optional[NormalizedEvent]:
        received_at = received_at or _utcnow()
        event_id, event_type = self.identify(event)
        if event_type not in self.SUBSCRIPTION_EVENTS:
            logger.info(
                "Ignoring Paddle event type %s",
                event_type,
                extra={"provider": self.provider, "event_id": event_id},
            )
            return None

        data = _dict(event.get("data"))
        # Some payloads wrap the entity JSON:API style under attributes
        if isinstance(data.get("attributes"), dict):
            data = {**data["attributes"], "id": data.get("id")}

        subscription_id = _clean_str(data.get("id"))
        if not subscription_id:
            logger.warning("Paddle %s event %s has no subscription id; dropping", event_type, event_id)
            return None

        billing_period = _dict(data.get("current_billing_period"))
        occurred_at = _from_iso(event.get("occurred_at"))
        period_start = _first(
            _from_iso(billing_period.get("starts_at")),
            _from_iso(data.get("started_at")),
            occurred_at,
            received_at,
        )
        period_end = _first(
            _from_iso(billing_period.get("ends_at")),
            _from_iso(data.get("next_billed_at")),
            received_at + DEFAULT_PERIOD,
        )
        scheduled_change = _dict(data.get("scheduled_change"))

        return NormalizedEvent(
            provider=self.provider,
            event_id=event_id,
            event_type=event_type,
            kind=(
                EventKind.CHECKOUT_COMPLETED
                if event_type == "subscription.created"
                else EventKind.SUBSCRIPTION_CHANGED
            ),
            subscription_id=subscription_id,
            price_id=self._first_price_id(data),
            status=self.map_status(data.get("status")),
            period_start=period_start,
            period_end=period_end,
            cancel_at_period_end=scheduled_change.get("action") == "cancel",
            user_id=self._custom_user_id(data),
            customer_id=_clean_str(data.get("customer_id")),
        )


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


async def resolve_owner(db: AsyncSession, event: NormalizedEvent) -> str:
    """
    Find the user a normalized event belongs to.

    Preference order: the user id carried in checkout metadata, the owner of
    the already-mirrored subscription, then the user holding the provider
    customer id.

    Raises:
        UnresolvedUser: If none of these identify an existing user
    """
    if event.user_id:
        if _is_uuid(event.user_id):
            user_id = await db.scalar(select(User.id).where(User.id == event.user_id))
            if user_id:
                return user_id
        logger.warning(
            "Metadata user %s on %s subscription %s does not exist",
            event.user_id,
            event.provider,
            event.subscription_id,
            extra={"provider": event.provider, "event_id": event.event_id},
        )

    owner_id = await db.scalar(
        select(Subscription.user_id).where(
            Subscription.provider == event.provider,
            Subscription.external_subscription_id == event.subscription_id,
        )
    )
    if owner_id:
        return owner_id

    if event.customer_id and event.provider in PROVIDER_CORRELATION_FIELDS:
        customer_column = getattr(User, PROVIDER_CORRELATION_FIELDS[event.provider][0])
        owner_id = await db.scalar(select(User.id).where(customer_column == event.customer_id))
        if owner_id:
            return owner_id

    raise UnresolvedUser(event.provider, event.subscription_id)


class EventNormalizer:
    """Dispatches raw provider events to the matching provider adapter."""

    def __init__(self, adapters: list[ProviderEventAdapter]):
        self._adapters = {adapter.provider: adapter for adapter in adapters}

    def adapter_for(self, provider: str) -> ProviderEventAdapter:
        try:
            return self._adapters[provider]
        except KeyError:
            raise ValueError(f"No event adapter registered for provider {provider!r}") from None

    def identify(self, provider: str, event: dict[str, Any]) -> tuple[Optional[str], str]:
        return self.adapter_for(provider).identify(event)

    async def normalize(
        self,
        provider: str,
        event: dict[str, Any],
        received_at: datetime | None = None,
    ) -> Optional[NormalizedEvent]:
        return await self.adapter_for(provider).normalize(event, received_at=received_at)
