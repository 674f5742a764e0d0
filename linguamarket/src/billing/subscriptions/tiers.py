"""
Subscription Tier Resolver

Maps tier and plan names to their rank and entitlements. Resolution fails
closed: an unknown name ranks 0 and carries no entitlement, so it never
satisfies a requirement.
"""

import math
from typing import Optional, Union

from linguamarket.src.billing.shared.config import (
    NO_ENTITLEMENT,
    STUDENT_TIERS,
    UNLIMITED,
    Entitlement,
    InstitutionPlan,
    StudentTier,
    get_institution_plan,
    get_student_tier,
)


def student_rank(tier_name: Optional[str]) -> int:
    """Rank of a student tier; unknown or missing names rank 0."""
    tier = get_student_tier(tier_name)
    return tier.rank if tier else 0


def institution_rank(plan_name: Optional[str]) -> int:
    """Rank of an institution plan; unknown or missing names rank 0."""
    plan = get_institution_plan(plan_name)
    return plan.rank if plan else 0


def satisfies(user_tier: Optional[str], required_tier: Optional[str]) -> bool:
    """
    Whether a student on ``user_tier`` meets a ``required_tier`` gate.

    No requirement is always met. Otherwise both names must resolve and
    the student's rank must be at least the required rank, so an unknown
    name on either side never grants access.
    """
    if not required_tier:
        return True
    user_rank = student_rank(user_tier)
    required_rank = student_rank(required_tier)
    if user_rank == 0 or required_rank == 0:
        return False
    return user_rank >= required_rank


def entitlement_for(tier_name: Optional[str]) -> Entitlement:
    """Entitlement of a student tier; unknown tiers get every cap at 0."""
    tier = get_student_tier(tier_name)
    return tier.entitlement if tier else NO_ENTITLEMENT


def is_unlimited(cap: Optional[int]) -> bool:
    """A cap of -1 (or no cap at all) means unlimited."""
    return cap is None or cap == UNLIMITED


def remaining(cap: Optional[int], used: int) -> Union[int, float]:
    """
    Remaining allowance for a cap.

    Returns ``math.inf`` for unlimited caps, otherwise ``cap - used``
    (may be negative if usage overshot a lowered cap).
    """
    if is_unlimited(cap):
        return math.inf
    return cap - used


def resolve_student_tier(tier_name: Optional[str]) -> Optional[StudentTier]:
    return get_student_tier(tier_name)


def resolve_institution_plan(plan_name: Optional[str]) -> Optional[InstitutionPlan]:
    return get_institution_plan(plan_name)


def list_student_tiers() -> list:
    """Student tiers ordered by rank, for pricing pages."""
    return sorted(STUDENT_TIERS.values(), key=lambda t: t.rank)
