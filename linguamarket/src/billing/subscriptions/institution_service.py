"""
Institution Subscription Service

Plan subscriptions for institutions and the commission rate they imply.

The platform's cut of an institution's course payment is read from
``Institution.commission_rate`` at settlement time. Plan changes, cancels,
fallbacks and admin overrides write that column; payments already settled
keep the rate frozen on their own row.
"""

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from linguamarket.app.marketplace.crud.crud_course import institution_dao, institution_subscription_dao
from linguamarket.app.marketplace.model import Institution, InstitutionSubscription
from linguamarket.database.db import atomic
from linguamarket.src.billing.domain.trial import days_remaining, effective_subscription_status, trial_end_for
from linguamarket.src.billing.shared.config import (
    ACTIVE_SUBSCRIPTION_STATUSES,
    CANCELLED_INSTITUTION_COMMISSION_RATE,
    DEFAULT_INSTITUTION_COMMISSION_RATE,
    INSTITUTION_TRIAL_DAYS,
    BillingCycle,
    SubscriberType,
    SubscriptionStatus,
    get_plan_price,
)
from linguamarket.src.billing.shared.exceptions import (
    NotFoundError,
    SubscriptionError,
    TierNotFoundError,
    TrialError,
    ValidationError,
)
from linguamarket.src.billing.subscriptions.tiers import institution_rank, resolve_institution_plan
from linguamarket.utils.timezone import timezone

from .post_trial import build_payment_prompt

logger = logging.getLogger(__name__)

# Platform courses have no institution to pay out
PLATFORM_COURSE_RATE = Decimal('100')


def platform_rate_for(institution: Optional[Institution]) -> Decimal:
    """
    Platform commission rate applied to a payment for a course.

    Args:
        institution: Owning institution, None for platform courses

    Returns:
        Rate in percent
    """
    if institution is None:
        return PLATFORM_COURSE_RATE
    if institution.commission_rate is not None:
        return Decimal(str(institution.commission_rate))
    return DEFAULT_INSTITUTION_COMMISSION_RATE


def validate_commission_rate(rate) -> Decimal:
    try:
        value = Decimal(str(rate))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"Invalid commission rate: {rate!r}", code="INVALID_COMMISSION_RATE", field='rate')
    if value < 0 or value > 100:
        raise ValidationError(
            "Commission rate must be between 0 and 100",
            code="INVALID_COMMISSION_RATE",
            field='rate'
        )
    return value


class InstitutionSubscriptionService:
    """
    Institution plan lifecycle.

    Usage:
        from linguamarket.src.billing.subscriptions import institution_subscription_service

        subscription = await institution_subscription_service.subscribe(
            db, institution_id=4, plan_type='PROFESSIONAL', start_trial=True
        )
    """

    async def get_status(self, db: AsyncSession, institution_id: int, now: Optional[datetime] = None) -> Dict:
        """
        Current plan, effective status and commission rate of an institution.

        The trial window is applied lazily; an expired trial reports
        ``paymentRequired`` together with the post-trial payment prompt.
        """
        now = now or timezone.now()
        institution = await self._get_institution(db, institution_id)
        subscription = await institution_subscription_dao.get_by_institution(db, institution_id)
        status = {
            'institutionId': institution_id,
            'commissionRate': str(platform_rate_for(institution)),
            'plan': None,
            'status': None,
            'paymentRequired': False,
            'paymentPrompt': None,
        }
        if subscription is None:
            return status

        effective = effective_subscription_status(
            subscription.status, subscription.trial_start, subscription.trial_end, now
        )
        status.update({
            'subscriptionId': subscription.id,
            'plan': subscription.plan_type,
            'status': effective,
            'storedStatus': subscription.status,
            'billingCycle': subscription.billing_cycle,
            'amount': str(subscription.amount),
            'currency': subscription.currency,
            'trialStart': subscription.trial_start.isoformat() if subscription.trial_start else None,
            'trialEnd': subscription.trial_end.isoformat() if subscription.trial_end else None,
            'daysRemaining': days_remaining(now, subscription.trial_end),
            'currentPeriodEnd': (
                subscription.current_period_end.isoformat() if subscription.current_period_end else None
            ),
            'isFallback': subscription.is_fallback,
        })
        if effective == SubscriptionStatus.EXPIRED and not subscription.is_fallback:
            status['paymentRequired'] = True
            status['paymentPrompt'] = await build_payment_prompt(db, SubscriberType.INSTITUTION, subscription, now)
        return status

    async def subscribe(
        self,
        db: AsyncSession,
        institution_id: int,
        plan_type: str,
        billing_cycle: str = BillingCycle.MONTHLY,
        start_trial: bool = False,
        now: Optional[datetime] = None,
    ) -> InstitutionSubscription:
        """
        Create or change an institution's plan.

        The plan's commission rate becomes the institution's rate for every
        future payment.

        Raises:
            TierNotFoundError: Unknown plan
            ValidationError: Unknown billing cycle
            SubscriptionError: Disallowed downgrade
            TrialError: Trial already used
        """
        now = now or timezone.now()
        plan = resolve_institution_plan(plan_type)
        if plan is None:
            raise TierNotFoundError(plan_type)
        billing_cycle = (billing_cycle or BillingCycle.MONTHLY).upper()
        if billing_cycle not in (BillingCycle.MONTHLY, BillingCycle.ANNUAL):
            raise ValidationError(
                f"Unknown billing cycle: {billing_cycle}",
                code="INVALID_BILLING_CYCLE",
                field='billing_cycle'
            )

        institution = await self._get_institution(db, institution_id)
        subscription = await institution_subscription_dao.get_by_institution(db, institution_id)

        if subscription is not None:
            self._validate_plan_change(subscription, plan.name, now)
            if start_trial and subscription.trial_start is not None:
                raise TrialError(
                    message="This institution has already used its free trial",
                    code="TRIAL_ALREADY_USED",
                    subscription_id=subscription.id
                )

        async with atomic(db):
            if subscription is None:
                subscription = InstitutionSubscription(
                    institution_id=institution_id,
                    plan_type=plan.name,
                    status=SubscriptionStatus.ACTIVE,
                )
                db.add(subscription)
            subscription.plan_type = plan.name
            subscription.billing_cycle = billing_cycle
            subscription.amount = get_plan_price(plan, billing_cycle)
            subscription.commission_rate = plan.commission_rate
            subscription.is_fallback = False
            subscription.cancelled_at = None
            subscription.cancellation_reason = None
            if start_trial:
                subscription.status = SubscriptionStatus.TRIAL
                subscription.trial_start = now
                subscription.trial_end = trial_end_for(now, INSTITUTION_TRIAL_DAYS)
            else:
                subscription.status = SubscriptionStatus.ACTIVE

            institution.subscription_plan = plan.name
            institution.commission_rate = plan.commission_rate
            await db.flush()

        logger.info(
            f"[SUBSCRIPTION] Institution {institution_id} on {plan.name} ({billing_cycle}, "
            f"status={subscription.status}, commission={plan.commission_rate}%)"
        )
        return subscription

    async def cancel(
        self,
        db: AsyncSession,
        institution_id: int,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> InstitutionSubscription:
        """
        Cancel an institution's plan.

        The institution reverts to the STARTER commission rate.

        Raises:
            SubscriptionError: No subscription or already cancelled
        """
        now = now or timezone.now()
        institution = await self._get_institution(db, institution_id)
        subscription = await institution_subscription_dao.get_by_institution(db, institution_id)
        if subscription is None:
            raise SubscriptionError("Institution has no subscription", code="SUBSCRIPTION_NOT_FOUND")
        if subscription.status == SubscriptionStatus.CANCELLED:
            raise SubscriptionError(
                "Subscription is already cancelled",
                code="ALREADY_CANCELLED",
                subscription_id=subscription.id
            )

        async with atomic(db):
            subscription.status = SubscriptionStatus.CANCELLED
            subscription.cancelled_at = now
            subscription.cancellation_reason = reason
            institution.commission_rate = CANCELLED_INSTITUTION_COMMISSION_RATE

        logger.info(
            f"[SUBSCRIPTION] Institution {institution_id} cancelled {subscription.plan_type}, "
            f"commission now {CANCELLED_INSTITUTION_COMMISSION_RATE}%"
        )
        return subscription

    async def update_commission_rate(self, db: AsyncSession, institution_id: int, rate) -> Institution:
        """
        Admin override of an institution's platform commission rate.

        Applies to payments settled after the change only.

        Raises:
            ValidationError: Rate outside 0-100
            NotFoundError: Unknown institution
        """
        value = validate_commission_rate(rate)
        institution = await self._get_institution(db, institution_id)
        async with atomic(db):
            previous = institution.commission_rate
            institution.commission_rate = value
        logger.info(f"[SUBSCRIPTION] Institution {institution_id} commission rate {previous} -> {value}")
        return institution

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _get_institution(self, db: AsyncSession, institution_id: int) -> Institution:
        institution = await institution_dao.get(db, institution_id)
        if institution is None:
            raise NotFoundError('Institution', institution_id, code='INSTITUTION_NOT_FOUND')
        return institution

    def _validate_plan_change(self, subscription: InstitutionSubscription, new_plan: str, now: datetime) -> None:
        """Reject downgrades from STARTER and downgrades to ENTERPRISE."""
        effective = effective_subscription_status(
            subscription.status, subscription.trial_start, subscription.trial_end, now
        )
        if effective not in ACTIVE_SUBSCRIPTION_STATUSES or subscription.is_fallback:
            return
        current_rank = institution_rank(subscription.plan_type)
        if institution_rank(new_plan) >= current_rank:
            return
        if subscription.plan_type == 'STARTER':
            raise SubscriptionError(
                "Cannot downgrade from STARTER plan",
                code="INVALID_DOWNGRADE",
                subscription_id=subscription.id
            )
        if new_plan == 'ENTERPRISE':
            raise SubscriptionError(
                "Cannot downgrade to ENTERPRISE plan",
                code="INVALID_DOWNGRADE",
                subscription_id=subscription.id
            )


institution_subscription_service = InstitutionSubscriptionService()
