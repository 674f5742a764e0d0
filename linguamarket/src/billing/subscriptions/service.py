"""
Student Subscription Service

Main orchestrator for student subscriptions:
- Subscription status with the trial window applied lazily
- Trial signup (one trial per student)
- Tier changes and cancellation

Students have one subscription row; re-subscribing updates it in place.
"""

import logging
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from linguamarket.app.marketplace.crud.crud_subscription import student_subscription_dao
from linguamarket.app.marketplace.model import StudentSubscription
from linguamarket.database.db import atomic
from linguamarket.src.billing.domain.trial import days_remaining, effective_subscription_status, trial_end_for
from linguamarket.src.billing.shared.config import (
    DEFAULT_TRIAL_TIER,
    STUDENT_TRIAL_DAYS,
    SubscriberType,
    SubscriptionStatus,
)
from linguamarket.src.billing.shared.exceptions import SubscriptionError, TierNotFoundError, TrialError
from linguamarket.src.billing.subscriptions.tiers import resolve_student_tier
from linguamarket.utils.timezone import timezone

from .post_trial import build_payment_prompt

logger = logging.getLogger(__name__)


class SubscriptionService:
    """
    Unified student subscription management.

    Usage:
        from linguamarket.src.billing.subscriptions import subscription_service

        status = await subscription_service.get_subscription_status(db, student_id)
        subscription = await subscription_service.start_trial(db, student_id, tier='PREMIUM')
    """

    async def get_subscription_status(
        self,
        db: AsyncSession,
        student_id: int,
        now: Optional[datetime] = None,
    ) -> Dict:
        """
        Get the subscription state a student sees.

        Returns:
            Dict with tier, status (effective), trial dates, days remaining,
            entitlement and, for an expired trial, the payment prompt
        """
        now = now or timezone.now()
        subscription = await student_subscription_dao.get_by_student(db, student_id)
        if subscription is None:
            return {
                'studentId': student_id,
                'hasSubscription': False,
                'tier': None,
                'status': None,
                'canStartTrial': True,
                'paymentRequired': False,
                'paymentPrompt': None,
            }

        effective = effective_subscription_status(
            subscription.status, subscription.trial_start, subscription.trial_end, now
        )
        tier = resolve_student_tier(subscription.tier)
        status = {
            'studentId': student_id,
            'hasSubscription': True,
            'subscriptionId': subscription.id,
            'tier': subscription.tier,
            'status': effective,
            'storedStatus': subscription.status,
            'amount': str(subscription.amount),
            'currency': subscription.currency,
            'trialStart': subscription.trial_start.isoformat() if subscription.trial_start else None,
            'trialEnd': subscription.trial_end.isoformat() if subscription.trial_end else None,
            'daysRemaining': days_remaining(now, subscription.trial_end),
            'currentPeriodEnd': (
                subscription.current_period_end.isoformat() if subscription.current_period_end else None
            ),
            'isFallback': subscription.is_fallback,
            'canStartTrial': subscription.trial_start is None,
            'entitlement': tier.entitlement.to_dict() if tier else None,
            'paymentRequired': False,
            'paymentPrompt': None,
        }
        if effective == SubscriptionStatus.EXPIRED and not subscription.is_fallback:
            status['paymentRequired'] = True
            status['paymentPrompt'] = await build_payment_prompt(db, SubscriberType.STUDENT, subscription, now)
        return status

    async def subscribe(
        self,
        db: AsyncSession,
        student_id: int,
        tier: str,
        start_trial: bool = False,
        now: Optional[datetime] = None,
    ) -> StudentSubscription:
        """
        Create or update a student's subscription.

        Args:
            db: Database session
            student_id: Student ID
            tier: Tier name
            start_trial: Start the one-per-student trial instead of a paid period
            now: Reference time

        Raises:
            TierNotFoundError: Unknown tier
            TrialError: Trial already used
        """
        now = now or timezone.now()
        resolved = resolve_student_tier(tier)
        if resolved is None:
            raise TierNotFoundError(tier)

        subscription = await student_subscription_dao.get_by_student(db, student_id)
        if start_trial and subscription is not None and subscription.trial_start is not None:
            raise TrialError(
                message="You have already used your free trial",
                code="TRIAL_ALREADY_USED",
                subscription_id=subscription.id
            )

        async with atomic(db):
            if subscription is None:
                subscription = StudentSubscription(
                    student_id=student_id,
                    tier=resolved.name,
                    status=SubscriptionStatus.ACTIVE,
                )
                db.add(subscription)
            subscription.tier = resolved.name
            subscription.amount = resolved.monthly_price
            subscription.is_fallback = False
            subscription.cancelled_at = None
            subscription.next_payment_attempt_at = None
            if start_trial:
                subscription.status = SubscriptionStatus.TRIAL
                subscription.trial_start = now
                subscription.trial_end = trial_end_for(now, STUDENT_TRIAL_DAYS)
            else:
                subscription.status = SubscriptionStatus.ACTIVE
            await db.flush()

        logger.info(
            f"[SUBSCRIPTION] Student {student_id} on {resolved.name} (status={subscription.status})"
        )
        return subscription

    async def start_trial(
        self,
        db: AsyncSession,
        student_id: int,
        tier: str = DEFAULT_TRIAL_TIER,
        now: Optional[datetime] = None,
    ) -> StudentSubscription:
        """Start the student's 7-day trial on ``tier``."""
        return await self.subscribe(db, student_id, tier, start_trial=True, now=now)

    async def cancel(
        self,
        db: AsyncSession,
        student_id: int,
        now: Optional[datetime] = None,
    ) -> StudentSubscription:
        """
        Cancel a student's subscription.

        Raises:
            SubscriptionError: No subscription or already cancelled
        """
        now = now or timezone.now()
        subscription = await student_subscription_dao.get_by_student(db, student_id)
        if subscription is None:
            raise SubscriptionError("No subscription found", code="SUBSCRIPTION_NOT_FOUND")
        if subscription.status == SubscriptionStatus.CANCELLED:
            raise SubscriptionError(
                "Subscription is already cancelled",
                code="ALREADY_CANCELLED",
                subscription_id=subscription.id
            )
        async with atomic(db):
            subscription.status = SubscriptionStatus.CANCELLED
            subscription.cancelled_at = now
            subscription.next_payment_attempt_at = None
        logger.info(f"[SUBSCRIPTION] Student {student_id} cancelled {subscription.tier}")
        return subscription


subscription_service = SubscriptionService()
