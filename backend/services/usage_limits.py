"""
Usage limit service for enforcing plan-derived resource limits.

Answers "may this user create one more X" for devices, vaults, team
members and storage. Checks are read-only and best-effort: two concurrent
creations can both pass a check and exceed a limit by one.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Dict, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.plans import UNLIMITED, LimitResource, Plan, get_plan_limit
from infrastructure.database.models.device import Device
from infrastructure.database.models.subscription import NON_TERMINAL_STATUSES, Subscription
from infrastructure.database.models.team import MANAGING_ROLES, TeamMember, TeamVault
from infrastructure.database.models.user import User
from services.plan_resolver import PlanResolver, plan_from_tier

logger = logging.getLogger(__name__)


@dataclass
class LimitCheck:
    """Result of a single limit check."""

    allowed: bool
    current: int
    limit: int

    def to_dict(self) -> dict:
        return asdict(self)


def parse_resource(resource: str) -> LimitResource:
    """
    Parse a resource name.

    Raises:
        ValueError: If the resource is not one of the gated resources
    """
    try:
        return LimitResource(resource)
    except ValueError:
        valid = ", ".join(r.value for r in LimitResource)
        raise ValueError(f"Invalid resource type: {resource}. Must be one of: {valid}") from None


class UsageLimitService:
    """
    Service for checking plan limits against live usage counts.
    """

    def __init__(self, db: AsyncSession, plan_resolver: PlanResolver):
        """
        Initialize usage limit service.

        Args:
            db: Async database session
            plan_resolver: Resolver used to map the subscription price to a plan
        """
        self.db = db
        self.plan_resolver = plan_resolver

    async def get_effective_plan(self, user: User) -> Plan:
        """
        Plan whose limits apply to the user.

        The most recent non-terminal subscription's price decides; without one
        (or with an unmapped price) the plan is guessed from the stored tier.
        """
        result = await self.db.execute(
            select(Subscription)
            .where(
                Subscription.user_id == user.id,
                Subscription.status.in_(NON_TERMINAL_STATUSES),
            )
            .order_by(
                Subscription.current_period_end.desc(),
                Subscription.created_at.desc(),
            )
            .limit(1)
        )
        subscription = result.scalar_one_or_none()

        plan: Optional[Plan] = None
        if subscription is not None:
            plan = self.plan_resolver.resolve_plan(
                subscription.provider, subscription.external_price_id
            )
        if plan is None:
            plan = plan_from_tier(user.subscription_tier)
        return plan or Plan.FREE

    async def count_usage(self, user_id: str, resource: LimitResource) -> int:
        """Live count of the user's current usage of a resource."""
        if resource == LimitResource.DEVICES:
            query = select(func.count(Device.id)).where(
                Device.user_id == user_id,
                Device.is_active.is_(True),
            )
        elif resource == LimitResource.VAULTS:
            member_teams = select(TeamMember.team_id).where(TeamMember.user_id == user_id)
            query = select(func.count(TeamVault.id)).where(TeamVault.team_id.in_(member_teams))
        elif resource == LimitResource.TEAM_MEMBERS:
            managed_teams = select(TeamMember.team_id).where(
                TeamMember.user_id == user_id,
                TeamMember.role.in_(MANAGING_ROLES),
            )
            query = select(func.count(TeamMember.id)).where(TeamMember.team_id.in_(managed_teams))
        else:
            # Storage accounting lives in the vault service; not counted here
            return 0

        return (await self.db.scalar(query)) or 0

    async def check_limit(self, user_id: str, resource: LimitResource | str) -> LimitCheck:
        """
        Check whether the user may create one more of a resource.

        Args:
            user_id: User ID
            resource: One of devices, vaults, teamMembers, storage

        Returns:
            LimitCheck; an unknown user gets allowed=False with zero counts

        Raises:
            ValueError: If resource type is invalid
        """
        if not isinstance(resource, LimitResource):
            resource = parse_resource(resource)

        user = await self.db.get(User, user_id)
        if user is None:
            return LimitCheck(allowed=False, current=0, limit=0)

        plan = await self.get_effective_plan(user)
        limit = get_plan_limit(plan, resource)
        current = await self.count_usage(user_id, resource)

        # -1 means unlimited
        allowed = limit == UNLIMITED or current < limit

        if not allowed:
            logger.info(
                f"User {user_id} has reached {plan.value} limit for {resource.value}: "
                f"{current}/{limit}"
            )

        return LimitCheck(allowed=allowed, current=current, limit=limit)

    async def check_all_limits(self, user_id: str) -> Dict[str, LimitCheck]:
        """Check every gated resource, keyed by resource name."""
        return {
            resource.value: await self.check_limit(user_id, resource)
            for resource in LimitResource
        }
