"""
Plan configuration for subscription tiers.

This module is the single source of truth for plan limits and for the
mapping between commercial plans and canonical tiers. It lives in core/
so both service and API layers can import from it without creating
circular dependencies.
"""

from enum import Enum
from typing import Optional

# Reserved limit value meaning "no limit"
UNLIMITED = -1


class Plan(str, Enum):
    """Commercial plans. Many plans map onto one tier."""

    FREE = "free"
    INDIVIDUAL = "individual"
    FAMILY = "family"
    TEAMS = "teams"
    ENTERPRISE = "enterprise"


class LimitResource(str, Enum):
    """Resources whose creation is gated by plan limits."""

    DEVICES = "devices"
    VAULTS = "vaults"
    TEAM_MEMBERS = "teamMembers"
    STORAGE = "storage"


# Plans that can be bought through a provider, cheapest first
PAID_PLANS = (Plan.INDIVIDUAL, Plan.FAMILY, Plan.TEAMS)

# The top commercial plan is the only purchasable one granting the enterprise tier
TOP_PLAN = Plan.TEAMS

# Plans that map onto the enterprise tier; ENTERPRISE is contract-only and never sold by price id
ENTERPRISE_PLANS = (TOP_PLAN, Plan.ENTERPRISE)

# Plan configuration with display names and limits
PLANS = {
    Plan.FREE.value: {
        "name": "Free",
        "limits": {
            "devices": 1,
            "vaults": 1,
            "teamMembers": 0,
            "storageMB": 100,
        },
    },
    Plan.INDIVIDUAL.value: {
        "name": "Individual",
        "limits": {
            "devices": 5,
            "vaults": 5,
            "teamMembers": 0,
            "storageMB": 1024,
        },
    },
    Plan.FAMILY.value: {
        "name": "Family",
        "limits": {
            "devices": 10,
            "vaults": 20,
            "teamMembers": 0,
            "storageMB": 5120,
        },
    },
    Plan.TEAMS.value: {
        "name": "Teams",
        "limits": {
            "devices": 50,
            "vaults": 100,
            "teamMembers": 50,
            "storageMB": 10240,
        },
    },
    Plan.ENTERPRISE.value: {
        "name": "Enterprise",
        "limits": {
            "devices": UNLIMITED,
            "vaults": UNLIMITED,
            "teamMembers": UNLIMITED,
            "storageMB": UNLIMITED,
        },
    },
}

# LimitResource value -> key in PLANS[...]["limits"]
_LIMIT_KEYS = {
    LimitResource.DEVICES.value: "devices",
    LimitResource.VAULTS.value: "vaults",
    LimitResource.TEAM_MEMBERS.value: "teamMembers",
    LimitResource.STORAGE.value: "storageMB",
}

# Tier values written by earlier releases, mapped to the canonical tier
LEGACY_TIER_ALIASES = {
    "individual": "pro",
    "family": "pro",
    "premium": "pro",
    "teams": "enterprise",
    "business": "enterprise",
}

# Best-effort plan guess for a stored tier value when no subscription price is known
TIER_PLAN_HINTS: dict[str, Optional[Plan]] = {
    "free": None,
    "pro": Plan.INDIVIDUAL,
    "enterprise": Plan.ENTERPRISE,
    "individual": Plan.INDIVIDUAL,
    "premium": Plan.INDIVIDUAL,
    "family": Plan.FAMILY,
    "teams": Plan.TEAMS,
    "business": Plan.TEAMS,
}


def get_plan_limit(plan: Plan | str, resource: LimitResource | str) -> int:
    """Return the limit for a resource on a plan; unknown plans get free limits."""
    plan_value = plan.value if isinstance(plan, Plan) else plan
    resource_value = resource.value if isinstance(resource, LimitResource) else resource
    limits = PLANS.get(plan_value, PLANS[Plan.FREE.value])["limits"]
    return limits[_LIMIT_KEYS[resource_value]]
