"""
User database model.

Only the account fields the billing engine reads or writes are modelled
here; authentication data lives with the identity service.
"""

from enum import Enum
from typing import Optional
from uuid import uuid4

from sqlalchemy import String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class UserStatus(str, Enum):
    """User account status enumeration."""

    ACTIVE = "active"
    SUSPENDED = "suspended"
    DELETED = "deleted"


class SubscriptionTier(str, Enum):
    """Canonical subscription tier consumed by the rest of the application."""

    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class User(Base, TimestampMixin):
    """User account model."""

    __tablename__ = "users"

    # Primary key
    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )

    # Basic info
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(
        String(50),
        default=UserStatus.ACTIVE.value,
        nullable=False,
    )

    # Subscription projection, written only by the subscription state machine.
    # Rows written before the tier rename may still hold legacy values
    # (individual, family, teams, ...); readers go through normalize_tier().
    subscription_tier: Mapped[str] = mapped_column(
        String(50),
        default=SubscriptionTier.FREE.value,
        nullable=False,
    )
    subscription_status: Mapped[str] = mapped_column(
        String(50),
        default="active",
        nullable=False,
    )  # active, past_due, cancelled

    # Provider correlation keys
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, unique=True
    )
    stripe_subscription_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )
    paddle_customer_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, unique=True
    )
    paddle_subscription_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, tier={self.subscription_tier})>"

    @property
    def is_active(self) -> bool:
        """Check if user account is usable."""
        return self.status == UserStatus.ACTIVE.value


# Provider -> (customer id attribute, subscription id attribute) on User
PROVIDER_CORRELATION_FIELDS = {
    "stripe": ("stripe_customer_id", "stripe_subscription_id"),
    "paddle": ("paddle_customer_id", "paddle_subscription_id"),
}
