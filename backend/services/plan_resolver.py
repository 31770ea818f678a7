"""
Plan resolution.

Maps provider price identifiers onto internal plans, and plans onto the
canonical tiers the rest of the application reads.
"""

import logging
from typing import Optional

from core.plans import ENTERPRISE_PLANS, LEGACY_TIER_ALIASES, PAID_PLANS, TIER_PLAN_HINTS, Plan
from infrastructure.config.settings import Settings, get_settings
from infrastructure.database.models.subscription import BillingProvider
from infrastructure.database.models.user import SubscriptionTier

logger = logging.getLogger(__name__)


def normalize_tier(value: str | None) -> SubscriptionTier:
    """Map a stored tier value, including legacy aliases, to a canonical tier."""
    if not value:
        return SubscriptionTier.FREE
    raw = value.strip().lower()
    raw = LEGACY_TIER_ALIASES.get(raw, raw)
    try:
        return SubscriptionTier(raw)
    except ValueError:
        logger.warning("Unknown subscription tier %r treated as free", value)
        return SubscriptionTier.FREE


def tier_for_plan(plan: Optional[Plan]) -> SubscriptionTier:
    """Top plan or enterprise -> enterprise, other paid plans -> pro, no plan -> free."""
    if plan is None or plan == Plan.FREE:
        return SubscriptionTier.FREE
    if plan in ENTERPRISE_PLANS:
        return SubscriptionTier.ENTERPRISE
    return SubscriptionTier.PRO


def plan_from_tier(tier: str | None) -> Optional[Plan]:
    """Best-effort plan for a stored tier value; None for free or unknown tiers."""
    if not tier:
        return None
    return TIER_PLAN_HINTS.get(tier.strip().lower())


def _configured_prices(settings: Settings) -> dict[str, dict[Plan, set[str]]]:
    """Collect configured price ids per provider and plan, skipping unset values."""
    stripe_ids = {
        Plan.INDIVIDUAL: [
            settings.stripe_price_individual_monthly,
            settings.stripe_price_individual_annual,
            settings.stripe_price_individual,
        ],
        Plan.FAMILY: [
            settings.stripe_price_family_monthly,
            settings.stripe_price_family_annual,
            settings.stripe_price_family,
        ],
        Plan.TEAMS: [
            settings.stripe_price_teams_monthly,
            settings.stripe_price_teams_annual,
            settings.stripe_price_teams,
        ],
    }
    paddle_ids = {
        Plan.INDIVIDUAL: [
            settings.paddle_price_individual_monthly,
            settings.paddle_price_individual_annual,
        ],
        Plan.FAMILY: [
            settings.paddle_price_family_monthly,
            settings.paddle_price_family_annual,
        ],
        Plan.TEAMS: [
            settings.paddle_price_teams_monthly,
            settings.paddle_price_teams_annual,
        ],
    }
    return {
        BillingProvider.STRIPE.value: {
            plan: {v.strip() for v in ids if v and v.strip()} for plan, ids in stripe_ids.items()
        },
        BillingProvider.PADDLE.value: {
            plan: {v.strip() for v in ids if v and v.strip()} for plan, ids in paddle_ids.items()
        },
    }


class PlanResolver:
    """
    Resolves price ids to plans by set membership.

    Price sets are read from settings once, at construction, so resolution
    is deterministic for the resolver's lifetime.
    """

    def __init__(self, settings: Settings | None = None):
        self._prices = _configured_prices(settings or get_settings())

    def price_ids(self, provider: str) -> set[str]:
        """All configured price ids for a provider."""
        return set().union(*self._prices.get(provider, {}).values())

    def is_supported_price(self, provider: str, price_id: str | None) -> bool:
        return bool(price_id) and price_id in self.price_ids(provider)

    def resolve_plan(self, provider: str, price_id: str | None) -> Optional[Plan]:
        """Return the plan whose configured price set contains price_id."""
        if not price_id:
            return None
        for plan in PAID_PLANS:
            if price_id in self._prices.get(provider, {}).get(plan, ()):
                return plan
        return None

    def resolve(
        self,
        provider: str,
        price_id: str | None,
        existing_tier: str | None = None,
    ) -> tuple[Optional[Plan], SubscriptionTier]:
        """
        Resolve a price to (plan, tier).

        An unmapped price falls back to the plan implied by the subject's
        existing tier, so a misconfigured price never downgrades a paying user.
        """
        plan = self.resolve_plan(provider, price_id)
        if plan is None:
            plan = plan_from_tier(existing_tier)
            if plan is not None:
                logger.warning(
                    "Unmapped %s price %s; keeping plan %s from existing tier %s",
                    provider,
                    price_id,
                    plan.value,
                    existing_tier,
                )
        return plan, tier_for_plan(plan)
