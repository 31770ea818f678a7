"""
Webhook delivery ledger.
"""

from enum import Enum
from typing import Optional
from uuid import uuid4

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class WebhookOutcome(str, Enum):
    """What the processor did with a recorded delivery."""

    RECEIVED = "received"
    PROCESSED = "processed"
    IGNORED = "ignored"  # event type outside the allow-list
    UNRESOLVED_USER = "unresolved_user"  # no owner could be derived; needs manual reconciliation


class WebhookEventRecord(Base, TimestampMixin):
    """
    One row per (provider, event_id) ever accepted.

    The unique constraint is the idempotency mechanism: a second insert for
    the same pair fails, and that failure is how duplicates are detected.
    """

    __tablename__ = "billing_webhook_events"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    provider: Mapped[str] = mapped_column(String(20), nullable=False)
    event_id: Mapped[str] = mapped_column(String(255), nullable=False)
    event_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    outcome: Mapped[str] = mapped_column(
        String(30),
        default=WebhookOutcome.RECEIVED.value,
        nullable=False,
        index=True,
    )

    __table_args__ = (
        UniqueConstraint(
            "provider", "event_id", name="uq_billing_webhook_events_provider_event"
        ),
    )

    def __repr__(self) -> str:
        return f"<WebhookEventRecord(provider={self.provider}, event_id={self.event_id}, outcome={self.outcome})>"
