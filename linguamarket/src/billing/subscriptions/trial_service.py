"""
Trial Service

Manages the trial lifecycle of student and institution subscriptions:
- Lazy trial evaluation for read paths
- Cron-driven sweep of trials that ended without payment

Trial windows never expire in-process; a row stays TRIAL until the sweep
runs, and read paths apply the window themselves.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from linguamarket.app.marketplace.crud.crud_course import institution_dao, institution_subscription_dao
from linguamarket.app.marketplace.crud.crud_subscription import billing_record_dao, student_subscription_dao
from linguamarket.app.marketplace.model import InstitutionSubscription, StudentSubscription
from linguamarket.database.db import atomic
from linguamarket.src.billing.domain.trial import TrialStatus, days_remaining, resolve_trial_status
from linguamarket.src.billing.shared.config import (
    DAYS_BETWEEN_ATTEMPTS,
    MAX_PAYMENT_ATTEMPTS,
    BillingRecordStatus,
    SubscriberType,
    SubscriptionStatus,
)
from linguamarket.utils.timezone import timezone

from .fallback import apply_institution_fallback, apply_student_fallback

logger = logging.getLogger(__name__)

# Time after trial end by which every payment attempt has had its chance
PAYMENT_GRACE_PERIOD = timedelta(days=MAX_PAYMENT_ATTEMPTS * DAYS_BETWEEN_ATTEMPTS)


@dataclass
class TrialEvaluation:
    """Where a subscription's trial stands at a point in time."""
    status: TrialStatus
    days_remaining: int
    payment_required: bool
    trial_end: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            'status': self.status.value,
            'daysRemaining': self.days_remaining,
            'paymentRequired': self.payment_required,
            'trialEnd': self.trial_end.isoformat() if self.trial_end else None,
        }


class TrialService:
    """
    Manages trial subscriptions.

    Trial flow:
    1. Subscriber starts a trial -> row stored as TRIAL with a fixed end
    2. Read paths evaluate the window lazily
    3. After the end: the sweep marks PAYMENT_REQUIRED, the subscriber pays
       through the post-trial flow
    4. No successful payment within the attempts -> fallback plan
    """

    @classmethod
    def evaluate(
        cls,
        subscription: Union[StudentSubscription, InstitutionSubscription],
        now: Optional[datetime] = None,
    ) -> Optional[TrialEvaluation]:
        """
        Evaluate a subscription's trial window.

        Returns:
            TrialEvaluation, or None when the subscription never had a trial
        """
        if subscription.trial_end is None:
            return None
        now = now or timezone.now()
        has_paid = subscription.status == SubscriptionStatus.ACTIVE and not subscription.is_fallback
        status = resolve_trial_status(now, subscription.trial_start, subscription.trial_end, has_paid)
        return TrialEvaluation(
            status=status,
            days_remaining=days_remaining(now, subscription.trial_end) if status is TrialStatus.TRIALING else 0,
            payment_required=status is TrialStatus.EXPIRED and not subscription.is_fallback,
            trial_end=subscription.trial_end,
        )

    @classmethod
    async def process_expired_trials(cls, db: AsyncSession, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Sweep trials that ended without payment.

        TRIAL rows past their end become PAYMENT_REQUIRED. PAYMENT_REQUIRED
        rows whose attempts are exhausted, or whose grace period has run
        out, get the fallback plan.

        Returns:
            Counts per subscriber type and outcome
        """
        service = cls()
        return await service._process_expired_trials(db, now or timezone.now())

    async def _process_expired_trials(self, db: AsyncSession, now: datetime) -> Dict[str, int]:
        counts = {
            'studentsPaymentRequired': 0,
            'studentsFallback': 0,
            'institutionsPaymentRequired': 0,
            'institutionsFallback': 0,
        }
        statuses = (SubscriptionStatus.TRIAL, SubscriptionStatus.PAYMENT_REQUIRED)

        async with atomic(db):
            for subscription in await student_subscription_dao.get_by_statuses(db, statuses):
                outcome = await self._sweep(db, SubscriberType.STUDENT, subscription, now)
                if outcome == SubscriptionStatus.PAYMENT_REQUIRED:
                    subscription.next_payment_attempt_at = now
                    counts['studentsPaymentRequired'] += 1
                elif outcome == 'FALLBACK':
                    apply_student_fallback(subscription, now)
                    counts['studentsFallback'] += 1

            for subscription in await institution_subscription_dao.get_by_statuses(db, statuses):
                outcome = await self._sweep(db, SubscriberType.INSTITUTION, subscription, now)
                if outcome == SubscriptionStatus.PAYMENT_REQUIRED:
                    counts['institutionsPaymentRequired'] += 1
                elif outcome == 'FALLBACK':
                    institution = await institution_dao.get(db, subscription.institution_id)
                    apply_institution_fallback(subscription, institution, now)
                    counts['institutionsFallback'] += 1

        logger.info(f"[TRIAL] Expired trial sweep at {now.isoformat()}: {counts}")
        return counts

    async def _sweep(
        self,
        db: AsyncSession,
        subscriber_type: str,
        subscription: Union[StudentSubscription, InstitutionSubscription],
        now: datetime,
    ) -> Optional[str]:
        """Decide what the sweep does to one subscription; marks PAYMENT_REQUIRED in place."""
        if subscription.trial_end is None or subscription.trial_end > now:
            return None

        if subscription.status == SubscriptionStatus.TRIAL:
            subscription.status = SubscriptionStatus.PAYMENT_REQUIRED
            return SubscriptionStatus.PAYMENT_REQUIRED

        attempts = await billing_record_dao.get_attempts(db, subscription.id, subscriber_type)
        failed = sum(1 for a in attempts if a.status == BillingRecordStatus.FAILED)
        if failed >= MAX_PAYMENT_ATTEMPTS or now >= subscription.trial_end + PAYMENT_GRACE_PERIOD:
            return 'FALLBACK'
        return None
