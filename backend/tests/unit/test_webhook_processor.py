"""
Unit tests for the webhook processing pipeline.

Tests cover:
- Processed, ignored and unresolved outcomes
- Duplicate deliveries short-circuit
- Failures roll back the idempotency record so a retry is processed
"""

from unittest.mock import patch
from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import InvalidPayload
from infrastructure.database.models import Subscription, User, WebhookEventRecord, WebhookOutcome
from services.webhook_processor import WebhookProcessor
from tests.conftest import (
    STRIPE_PRICES,
    encode,
    paddle_subscription_event,
    stripe_event,
    stripe_subscription_payload,
)


@pytest.fixture
def processor(db_session: AsyncSession, event_normalizer, plan_resolver) -> WebhookProcessor:
    return WebhookProcessor(db_session, event_normalizer, plan_resolver)


async def _record(db: AsyncSession, event_id: str) -> WebhookEventRecord | None:
    result = await db.execute(select(WebhookEventRecord).where(WebhookEventRecord.event_id == event_id))
    return result.scalar_one_or_none()


async def _subscription_count(db: AsyncSession) -> int:
    return (await db.execute(select(func.count()).select_from(Subscription))).scalar_one()


class TestProcess:
    """Tests for WebhookProcessor.process()."""

    @pytest.mark.asyncio
    async def test_processed(self, db_session, processor, test_user):
        user_id = test_user.id
        event = stripe_event(
            "customer.subscription.created",
            stripe_subscription_payload(subscription_id="sub_p1", user_id=user_id, price_id=STRIPE_PRICES["teams_monthly"]),
            event_id="evt_p1",
        )

        result = await processor.process("stripe", event, encode(event))

        assert result.duplicate is False
        assert result.outcome == WebhookOutcome.PROCESSED
        assert (await _record(db_session, "evt_p1")).outcome == "processed"
        tier = (await db_session.execute(select(User.subscription_tier).where(User.id == user_id))).scalar_one()
        assert tier == "enterprise"

    @pytest.mark.asyncio
    async def test_duplicate_is_not_reprocessed(self, db_session, processor, test_user):
        event = stripe_event(
            "customer.subscription.created",
            stripe_subscription_payload(subscription_id="sub_dup", user_id=test_user.id),
            event_id="evt_dup",
        )
        await processor.process("stripe", event, encode(event))

        with patch.object(processor.state_machine, "apply") as apply:
            result = await processor.process("stripe", event, encode(event))

        assert result.duplicate is True
        assert result.outcome is None
        apply.assert_not_called()
        assert await _subscription_count(db_session) == 1

    @pytest.mark.asyncio
    async def test_ignored_event_type_is_recorded(self, db_session, processor):
        event = stripe_event("invoice.paid", {"id": "in_1"}, event_id="evt_ignored")

        result = await processor.process("stripe", event, encode(event))

        assert result.outcome == WebhookOutcome.IGNORED
        assert (await _record(db_session, "evt_ignored")).outcome == "ignored"

    @pytest.mark.asyncio
    async def test_unresolved_user_is_acknowledged(self, db_session, processor):
        event = paddle_subscription_event(subscription_id="sub_orphan", customer_id="ctm_nobody", event_id="evt_orphan")

        result = await processor.process("paddle", event, encode(event))

        assert result.outcome == WebhookOutcome.UNRESOLVED_USER
        assert (await _record(db_session, "evt_orphan")).outcome == "unresolved_user"
        assert await _subscription_count(db_session) == 0

    @pytest.mark.asyncio
    async def test_missing_event_id(self, db_session, processor):
        event = stripe_event("customer.subscription.updated", stripe_subscription_payload())
        del event["id"]

        with pytest.raises(InvalidPayload):
            await processor.process("stripe", event, encode(event))

        assert (await db_session.execute(select(func.count()).select_from(WebhookEventRecord))).scalar_one() == 0

    @pytest.mark.asyncio
    async def test_failure_rolls_back_record_and_retry_succeeds(self, db_session, processor, test_user):
        """A failed delivery leaves nothing behind, so the provider's retry is processed."""
        user_id = test_user.id
        event = paddle_subscription_event(subscription_id="sub_retry", user_id=user_id, event_id="evt_retry")

        with patch.object(processor.state_machine, "apply", side_effect=RuntimeError("database went away")):
            with pytest.raises(RuntimeError):
                await processor.process("paddle", event, encode(event))

        assert await _record(db_session, "evt_retry") is None

        result = await processor.process("paddle", event, encode(event))

        assert result.outcome == WebhookOutcome.PROCESSED
        assert await _subscription_count(db_session) == 1

    @pytest.mark.asyncio
    async def test_checkout_completed_fetch_failure_rolls_back(
        self, db_session, processor, mock_stripe_adapter, test_user
    ):
        mock_stripe_adapter.retrieve_subscription.side_effect = RuntimeError("stripe unavailable")
        session = {"id": "cs_1", "mode": "subscription", "subscription": "sub_1", "client_reference_id": test_user.id}
        event = stripe_event("checkout.session.completed", session, event_id="evt_checkout")

        with pytest.raises(RuntimeError):
            await processor.process("stripe", event, encode(event))

        assert await _record(db_session, "evt_checkout") is None

    @pytest.mark.asyncio
    async def test_distinct_events_for_same_subscription(self, db_session, processor, test_user):
        user_id = test_user.id
        created = paddle_subscription_event(subscription_id="sub_seq", user_id=user_id, event_id=f"evt_{uuid4().hex}")
        cancelled = paddle_subscription_event(
            "subscription.canceled", subscription_id="sub_seq", status="canceled", event_id=f"evt_{uuid4().hex}"
        )

        await processor.process("paddle", created, encode(created))
        await processor.process("paddle", cancelled, encode(cancelled))

        row = (
            await db_session.execute(select(Subscription).where(Subscription.external_subscription_id == "sub_seq"))
        ).scalar_one()
        assert row.status == "cancelled"
        tier = (await db_session.execute(select(User.subscription_tier).where(User.id == user_id))).scalar_one()
        assert tier == "free"
