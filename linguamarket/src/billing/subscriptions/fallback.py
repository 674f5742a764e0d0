"""
Fallback Plans

What a subscriber drops to when a trial ends without a successful
post-trial payment. Callers own the transaction; nothing here commits.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from linguamarket.app.marketplace.model import Institution, InstitutionSubscription, StudentSubscription
from linguamarket.src.billing.shared.config import (
    FALLBACK_INSTITUTION_PLAN,
    FALLBACK_STUDENT_TIER,
    SubscriptionStatus,
)

logger = logging.getLogger(__name__)


def apply_student_fallback(subscription: StudentSubscription, now: datetime) -> StudentSubscription:
    """Move a student onto the FREE tier."""
    previous = subscription.tier
    subscription.tier = FALLBACK_STUDENT_TIER
    subscription.status = SubscriptionStatus.ACTIVE
    subscription.amount = Decimal('0.00')
    subscription.is_fallback = True
    subscription.next_payment_attempt_at = None
    subscription.current_period_end = None
    logger.info(
        f"[TRIAL] Student {subscription.student_id} fell back from {previous} to {FALLBACK_STUDENT_TIER} "
        f"at {now.isoformat()}"
    )
    return subscription


def apply_institution_fallback(
    subscription: InstitutionSubscription,
    institution: Optional[Institution],
    now: datetime,
) -> InstitutionSubscription:
    """
    Move an institution onto the DEFAULT plan.

    The institution keeps publishing but pays the default commission on
    every future payment.
    """
    previous = subscription.plan_type
    subscription.plan_type = FALLBACK_INSTITUTION_PLAN.name
    subscription.status = SubscriptionStatus.ACTIVE
    subscription.amount = Decimal('0.00')
    subscription.commission_rate = FALLBACK_INSTITUTION_PLAN.commission_rate
    subscription.is_fallback = True
    subscription.current_period_end = None
    if institution is not None:
        institution.commission_rate = FALLBACK_INSTITUTION_PLAN.commission_rate
        institution.subscription_plan = None
    logger.info(
        f"[TRIAL] Institution {subscription.institution_id} fell back from {previous} to "
        f"{FALLBACK_INSTITUTION_PLAN.name} ({FALLBACK_INSTITUTION_PLAN.commission_rate}%) at {now.isoformat()}"
    )
    return subscription
