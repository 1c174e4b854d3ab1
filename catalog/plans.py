"""
Subscription plans.

One table drives both the quota gate (request ceiling) and the access
transformer (which view a caller gets, how many rows a list returns).
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Type, Union

from .models import BasicView, FullView, StandardView


class PlanTier(str, Enum):
    BASIC = "BASIC"
    PRO = "PRO"
    ULTRA = "ULTRA"
    MEGA = "MEGA"


@dataclass(frozen=True)
class PlanPolicy:
    ceiling: int  # admitted requests per quota window
    list_limit: int  # latest + price-range
    search_limit: int
    view: Type[BasicView]


PLAN_TABLE = {
    PlanTier.BASIC: PlanPolicy(ceiling=500, list_limit=20, search_limit=20, view=BasicView),
    PlanTier.PRO: PlanPolicy(ceiling=5000, list_limit=50, search_limit=50, view=StandardView),
    PlanTier.ULTRA: PlanPolicy(ceiling=30000, list_limit=100, search_limit=50, view=StandardView),
    PlanTier.MEGA: PlanPolicy(ceiling=100000, list_limit=100, search_limit=50, view=FullView),
}


def parse_tier(value: Union[str, PlanTier, None]) -> Optional[PlanTier]:
    """Return the matching tier, or None for anything outside the closed set."""
    if isinstance(value, PlanTier):
        return value
    if not value:
        return None
    try:
        return PlanTier(str(value).strip().upper())
    except ValueError:
        return None


def policy_for(tier: Union[str, PlanTier, None]) -> PlanPolicy:
    # Unknown tiers get the lowest-privilege policy.
    return PLAN_TABLE[parse_tier(tier) or PlanTier.BASIC]
