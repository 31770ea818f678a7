"""
Webhook idempotency guard.

Providers deliver webhooks at least once. Every accepted delivery is
recorded under its (provider, event_id) pair, and the table's unique
constraint decides which of several concurrent deliveries gets to run.
"""

import hashlib
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from infrastructure.database.models.webhook_event import WebhookEventRecord, WebhookOutcome

logger = logging.getLogger(__name__)


class RecordStatus(str, Enum):
    NEW = "new"
    DUPLICATE = "duplicate"


@dataclass
class RecordResult:
    status: RecordStatus
    record: Optional[WebhookEventRecord] = None

    @property
    def is_duplicate(self) -> bool:
        return self.status == RecordStatus.DUPLICATE


def payload_hash(raw_body: bytes) -> str:
    """SHA-256 of the raw body, kept for audit only; never part of the dedup key."""
    return hashlib.sha256(raw_body).hexdigest()


class WebhookIdempotencyGuard:
    """
    Records webhook deliveries with an unconditional insert.

    `record()` must be the first write of the request's transaction: on a
    unique-constraint violation it rolls the session back, which would also
    discard anything written before it. The insert is committed together
    with the state change it guards, so a delivery whose processing fails
    leaves no record behind and the provider's retry is processed normally.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(
        self,
        provider: str,
        event_id: str,
        raw_body: bytes,
        event_type: str | None = None,
    ) -> RecordResult:
        """
        Insert the (provider, event_id) pair.

        Returns:
            RecordResult with status NEW and the pending record, or status
            DUPLICATE if the pair was already recorded
        """
        record = WebhookEventRecord(
            provider=provider,
            event_id=event_id,
            event_type=event_type,
            payload_hash=payload_hash(raw_body),
        )
        self.db.add(record)
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            logger.info(
                "Duplicate %s webhook event %s; skipping",
                provider,
                event_id,
                extra={"provider": provider, "event_id": event_id},
            )
            return RecordResult(status=RecordStatus.DUPLICATE)

        return RecordResult(status=RecordStatus.NEW, record=record)

    async def mark_outcome(self, record: WebhookEventRecord, outcome: WebhookOutcome) -> None:
        """Stamp what processing did with the delivery before the transaction commits."""
        record.outcome = outcome.value
        await self.db.flush()
