"""
SQLAlchemy database models.
"""

from .audit_log import AuditAction, AuditLog
from .base import Base, TimestampMixin
from .device import Device
from .subscription import (
    NON_TERMINAL_STATUSES,
    BillingProvider,
    Subscription,
    SubscriptionStatus,
)
from .team import MANAGING_ROLES, Team, TeamMember, TeamMemberRole, TeamVault
from .user import PROVIDER_CORRELATION_FIELDS, SubscriptionTier, User, UserStatus
from .webhook_event import WebhookEventRecord, WebhookOutcome

__all__ = [
    "Base",
    "TimestampMixin",
    "User",
    "UserStatus",
    "PROVIDER_CORRELATION_FIELDS",
    "SubscriptionTier",
    "Subscription",
    "SubscriptionStatus",
    "BillingProvider",
    "NON_TERMINAL_STATUSES",
    "WebhookEventRecord",
    "WebhookOutcome",
    "Device",
    "Team",
    "TeamMember",
    "TeamMemberRole",
    "TeamVault",
    "MANAGING_ROLES",
    "AuditLog",
    "AuditAction",
]
