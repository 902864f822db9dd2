"""Plan Resolver - maps plan tiers to numeric levels.

Levels are total and monotonic: basic < pro < premium < custom.
`custom` sits above every other tier so plan defaults never gate a custom
tenant; its overrides decide instead.
"""
from typing import Any, Dict
from models import PlanTier
import logging

logger = logging.getLogger(__name__)


PLAN_LEVELS: Dict[PlanTier, int] = {
    PlanTier.BASIC: 1,
    PlanTier.PRO: 2,
    PlanTier.PREMIUM: 3,
    PlanTier.CUSTOM: 99,
}


def level(plan: PlanTier) -> int:
    """Numeric level of a plan tier."""
    return PLAN_LEVELS[plan]


def qualifies(required_plan: PlanTier, actual_plan: PlanTier) -> bool:
    """True if actual_plan is at or above required_plan."""
    return level(actual_plan) >= level(required_plan)


def lowest_plan() -> PlanTier:
    return min(PLAN_LEVELS, key=PLAN_LEVELS.get)


def resolve_plan_tier(value: Any) -> PlanTier:
    """
    Resolve a stored plan value to a PlanTier.
    Unknown or empty values degrade to the lowest tier, never upward.
    """
    if isinstance(value, PlanTier):
        return value
    if not value:
        return lowest_plan()
    try:
        return PlanTier(str(value).strip().lower())
    except ValueError:
        logger.warning("Unknown plan value %r, resolving to %s", value, lowest_plan().value)
        return lowest_plan()
