"""
Subscription database model.
"""

from datetime import datetime
from enum import Enum
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class BillingProvider(str, Enum):
    """Billing providers that can own a subscription."""

    STRIPE = "stripe"
    PADDLE = "paddle"


class SubscriptionStatus(str, Enum):
    """Canonical subscription status values."""

    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"  # terminal


# Statuses that still grant the subscription's plan
NON_TERMINAL_STATUSES = (
    SubscriptionStatus.ACTIVE.value,
    SubscriptionStatus.TRIALING.value,
    SubscriptionStatus.PAST_DUE.value,
)


class Subscription(Base, TimestampMixin):
    """
    One provider subscription, mirrored locally.

    Created by the first webhook event for an external subscription id and
    updated in place by every later one. Rows are never deleted; cancellation
    is recorded as a terminal status.
    """

    __tablename__ = "subscriptions"

    # Primary key
    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )

    # Owner
    user_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Provider correlation
    provider: Mapped[str] = mapped_column(String(20), nullable=False)
    external_subscription_id: Mapped[str] = mapped_column(String(255), nullable=False)
    external_price_id: Mapped[str] = mapped_column(String(255), nullable=False)

    # State
    status: Mapped[str] = mapped_column(
        String(20),
        default=SubscriptionStatus.ACTIVE.value,
        nullable=False,
    )
    current_period_start: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    current_period_end: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    cancel_at_period_end: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    __table_args__ = (
        UniqueConstraint(
            "provider",
            "external_subscription_id",
            name="uq_subscriptions_provider_external_id",
        ),
        Index("ix_subscriptions_user_status", "user_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<Subscription(id={self.id}, provider={self.provider}, "
            f"external_id={self.external_subscription_id}, status={self.status})>"
        )
