"""
Webhook processing pipeline.

Runs one verified provider event through idempotency, normalization, owner
resolution and the subscription state machine inside a single database
transaction. Any failure rolls the whole transaction back, including the
idempotency record, so the caller can answer non-2xx and let the
provider's redelivery retry the event.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import InvalidPayload, UnresolvedUser
from infrastructure.database.models.webhook_event import WebhookOutcome
from services.event_normalizer import EventNormalizer, resolve_owner
from services.plan_resolver import PlanResolver
from services.subscription_state import SubscriptionStateMachine
from services.webhook_idempotency import WebhookIdempotencyGuard

logger = logging.getLogger(__name__)


@dataclass
class WebhookResult:
    """What happened to one delivery."""

    duplicate: bool = False
    outcome: Optional[WebhookOutcome] = None


class WebhookProcessor:
    """Orchestrates a verified webhook event end to end."""

    def __init__(
        self,
        db: AsyncSession,
        normalizer: EventNormalizer,
        plan_resolver: PlanResolver,
    ):
        self.db = db
        self.normalizer = normalizer
        self.guard = WebhookIdempotencyGuard(db)
        self.state_machine = SubscriptionStateMachine(db, plan_resolver)

    async def process(
        self,
        provider: str,
        event: dict[str, Any],
        raw_body: bytes,
        received_at: datetime | None = None,
    ) -> WebhookResult:
        """
        Process one verified event.

        Args:
            provider: Provider the event was verified for
            event: Decoded event body
            raw_body: Body exactly as received, hashed onto the idempotency record
            received_at: Receive time, used for missing period fallbacks

        Returns:
            WebhookResult; duplicates are reported, never reprocessed

        Raises:
            InvalidPayload: If the event carries no event id
        """
        event_id, event_type = self.normalizer.identify(provider, event)
        if not event_id:
            logger.warning("Rejecting %s webhook without event id (type=%s)", provider, event_type)
            raise InvalidPayload("Webhook event has no id")

        log_extra = {"provider": provider, "event_id": event_id, "event_type": event_type}
        logger.info("Received %s webhook %s", provider, event_type, extra=log_extra)

        recorded = await self.guard.record(provider, event_id, raw_body, event_type=event_type)
        if recorded.is_duplicate:
            return WebhookResult(duplicate=True)

        try:
            normalized = await self.normalizer.normalize(provider, event, received_at=received_at)
            if normalized is None:
                outcome = WebhookOutcome.IGNORED
            else:
                try:
                    user_id = await resolve_owner(self.db, normalized)
                except UnresolvedUser as e:
                    # Acknowledged so the provider stops redelivering; the
                    # record's outcome marks it for manual reconciliation
                    logger.warning("%s; dropping event", e, extra=log_extra)
                    outcome = WebhookOutcome.UNRESOLVED_USER
                else:
                    await self.state_machine.apply(normalized, user_id)
                    outcome = WebhookOutcome.PROCESSED

            await self.guard.mark_outcome(recorded.record, outcome)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            logger.error("Webhook processing failed for %s event %s", provider, event_id, exc_info=True, extra=log_extra)
            raise

        logger.info("Webhook %s finished: %s", event_id, outcome.value, extra=log_extra)
        return WebhookResult(outcome=outcome)
