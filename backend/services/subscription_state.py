"""
Subscription state machine.

Applies normalized provider events to the mirrored Subscription row and
projects the result onto the owning user's tier and status. This is the
only code path that changes Subscription.status or User.subscription_tier.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.plans import Plan
from infrastructure.database.models.audit_log import AuditAction, AuditLog
from infrastructure.database.models.subscription import Subscription, SubscriptionStatus
from infrastructure.database.models.user import (
    PROVIDER_CORRELATION_FIELDS,
    SubscriptionTier,
    User,
)
from services.event_normalizer import EventKind, NormalizedEvent
from services.plan_resolver import PlanResolver

logger = logging.getLogger(__name__)


class SubscriptionStateMachine:
    """
    Transitions, keyed by (provider, external subscription id):

    - first event: create the row; active/trialing applies the resolved tier
    - later event: update period window, cancel flag, status (and price when known)
    - cancelled: user drops to free regardless of the price-derived plan
    - active/trialing: resolved tier is (re)applied
    - past_due: status mirrored, tier kept for the grace period
    - payment failure: existing row and user marked past_due

    Rows are never deleted; cancellation is a terminal status value.
    """

    def __init__(self, db: AsyncSession, plan_resolver: PlanResolver):
        self.db = db
        self.plan_resolver = plan_resolver

    async def _get_subscription(self, event: NormalizedEvent) -> Optional[Subscription]:
        result = await self.db.execute(
            select(Subscription)
            .where(
                Subscription.provider == event.provider,
                Subscription.external_subscription_id == event.subscription_id,
            )
            .with_for_update()
        )
        return result.scalar_one_or_none()

    async def _get_user(self, user_id: str) -> User:
        result = await self.db.execute(select(User).where(User.id == user_id).with_for_update())
        return result.scalar_one()

    async def apply(self, event: NormalizedEvent, user_id: str) -> Optional[Subscription]:
        """
        Apply one normalized event.

        Args:
            event: Normalized provider event
            user_id: Owner resolved for the event; ignored when the subscription
                already exists, since the stored owner is authoritative

        Returns:
            The created or updated Subscription, or None when a payment
            failure arrives for a subscription that was never mirrored
        """
        subscription = await self._get_subscription(event)

        if event.kind == EventKind.PAYMENT_FAILED:
            return await self._apply_payment_failed(event, subscription)

        created = False
        if subscription is None:
            subscription, created = await self._insert_subscription(event, user_id)

        owner_id = subscription.user_id
        user = await self._get_user(owner_id)

        price_id = event.price_id if event.has_known_price else None
        if price_id is None and not created:
            price_id = subscription.external_price_id
        plan, tier = self.plan_resolver.resolve(
            event.provider, price_id, existing_tier=user.subscription_tier
        )

        if not created:
            previous_status = subscription.status
            subscription.status = event.status.value
            subscription.current_period_start = event.period_start
            subscription.current_period_end = event.period_end
            subscription.cancel_at_period_end = event.cancel_at_period_end
            if event.has_known_price:
                subscription.external_price_id = event.price_id
            if previous_status != subscription.status:
                logger.info(
                    "Subscription %s status %s -> %s",
                    subscription.external_subscription_id,
                    previous_status,
                    subscription.status,
                    extra={"provider": event.provider, "event_id": event.event_id},
                )

        self._project_onto_user(user, event.status, tier)

        if event.kind == EventKind.CHECKOUT_COMPLETED:
            self._store_correlation_keys(user, event)

        if created:
            action = AuditAction.SUBSCRIPTION_CREATED
        elif event.status == SubscriptionStatus.CANCELLED:
            action = AuditAction.SUBSCRIPTION_CANCELLED
        else:
            action = AuditAction.SUBSCRIPTION_UPDATED
        self._audit(owner_id, action, event, plan)

        await self.db.flush()

        logger.info(
            "Applied %s to %s subscription %s: status=%s tier=%s",
            event.event_type,
            event.provider,
            event.subscription_id,
            subscription.status,
            user.subscription_tier,
            extra={"provider": event.provider, "event_id": event.event_id, "user_id": owner_id},
        )
        return subscription

    async def _insert_subscription(
        self, event: NormalizedEvent, user_id: str
    ) -> tuple[Subscription, bool]:
        """
        Insert the mirrored row for a first event.

        Two deliveries for the same new subscription (e.g. subscription
        created and checkout completed) can both miss the row; the loser's
        insert fails on the unique key and it falls back to updating the
        winner's row.

        Returns:
            (subscription, created)
        """
        subscription = Subscription(
            user_id=user_id,
            provider=event.provider,
            external_subscription_id=event.subscription_id,
            external_price_id=event.price_id,
            status=event.status.value,
            current_period_start=event.period_start,
            current_period_end=event.period_end,
            cancel_at_period_end=event.cancel_at_period_end,
        )
        savepoint = await self.db.begin_nested()
        try:
            self.db.add(subscription)
            await savepoint.commit()
            return subscription, True
        except IntegrityError:
            await savepoint.rollback()
            logger.info(
                "%s subscription %s inserted concurrently; updating it instead",
                event.provider,
                event.subscription_id,
                extra={"provider": event.provider, "event_id": event.event_id},
            )

        existing = await self._get_subscription(event)
        if existing is None:
            raise RuntimeError(
                f"{event.provider} subscription {event.subscription_id} conflicted but is not readable"
            )
        return existing, False

    async def _apply_payment_failed(
        self, event: NormalizedEvent, subscription: Optional[Subscription]
    ) -> Optional[Subscription]:
        if subscription is None:
            logger.warning(
                "Payment failed for unknown %s subscription %s; nothing to update",
                event.provider,
                event.subscription_id,
                extra={"provider": event.provider, "event_id": event.event_id},
            )
            return None

        user = await self._get_user(subscription.user_id)
        # A payment failure never revives a cancelled subscription
        if subscription.status != SubscriptionStatus.CANCELLED.value:
            subscription.status = SubscriptionStatus.PAST_DUE.value
            user.subscription_status = SubscriptionStatus.PAST_DUE.value

        self._audit(subscription.user_id, AuditAction.PAYMENT_FAILED, event, None)
        await self.db.flush()

        logger.warning(
            "Payment failed for %s subscription %s",
            event.provider,
            event.subscription_id,
            extra={"provider": event.provider, "event_id": event.event_id, "user_id": subscription.user_id},
        )
        return subscription

    @staticmethod
    def _project_onto_user(user: User, status: SubscriptionStatus, tier: SubscriptionTier) -> None:
        if status == SubscriptionStatus.CANCELLED:
            user.subscription_tier = SubscriptionTier.FREE.value
            user.subscription_status = SubscriptionStatus.CANCELLED.value
        elif status in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING):
            user.subscription_tier = tier.value
            user.subscription_status = SubscriptionStatus.ACTIVE.value
        else:
            # past_due: grace period, tier unchanged
            user.subscription_status = SubscriptionStatus.PAST_DUE.value

    @staticmethod
    def _store_correlation_keys(user: User, event: NormalizedEvent) -> None:
        customer_field, subscription_field = PROVIDER_CORRELATION_FIELDS[event.provider]
        if event.customer_id:
            setattr(user, customer_field, event.customer_id)
        setattr(user, subscription_field, event.subscription_id)

    def _audit(
        self,
        user_id: str,
        action: AuditAction,
        event: NormalizedEvent,
        plan: Optional[Plan],
    ) -> None:
        self.db.add(
            AuditLog(
                user_id=user_id,
                action=action.value,
                resource_type="subscription",
                resource_id=event.subscription_id,
                details={
                    "provider": event.provider,
                    "eventType": event.event_type,
                    "eventId": event.event_id,
                    "priceId": event.price_id,
                    "plan": plan.value if plan else None,
                    "status": event.status.value,
                },
            )
        )
