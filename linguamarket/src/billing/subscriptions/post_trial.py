"""
Post-Trial Payment Service

Collects the first paid charge once a trial ends:
- At most MAX_PAYMENT_ATTEMPTS attempts, DAYS_BETWEEN_ATTEMPTS days apart
- Each attempt is a Stripe PaymentIntent tagged ``type=post_trial_payment``
- Success activates the subscription, the final failure applies the fallback plan

Both students and institutions go through the same flow; ``subscriber_type``
selects the subscription table.
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Optional, Tuple, Union

from sqlalchemy.ext.asyncio import AsyncSession

from linguamarket.app.marketplace.crud.crud_course import institution_dao, institution_subscription_dao
from linguamarket.app.marketplace.crud.crud_subscription import billing_record_dao, student_subscription_dao
from linguamarket.app.marketplace.model import (
    InstitutionSubscription,
    StudentSubscription,
    SubscriptionBillingRecord,
)
from linguamarket.database.db import atomic
from linguamarket.src.billing.external.stripe.client import StripeAPIWrapper
from linguamarket.src.billing.external.stripe.idempotency import stripe_idempotency_manager
from linguamarket.src.billing.shared.config import (
    DAYS_BETWEEN_ATTEMPTS,
    MAX_PAYMENT_ATTEMPTS,
    BillingCycle,
    BillingRecordStatus,
    SubscriberType,
    SubscriptionStatus,
    get_institution_plan,
    get_plan_price,
    get_student_tier,
)
from linguamarket.src.billing.shared.exceptions import NotFoundError, TrialError, ValidationError
from linguamarket.src.billing.shared.money import from_minor_units, to_minor_units, to_money
from linguamarket.utils.timezone import timezone

from .fallback import apply_institution_fallback, apply_student_fallback

logger = logging.getLogger(__name__)

POST_TRIAL_PAYMENT_TYPE = 'post_trial_payment'

AnySubscription = Union[StudentSubscription, InstitutionSubscription]


def _validate_subscriber_type(subscriber_type: str) -> str:
    subscriber_type = (subscriber_type or '').upper()
    if subscriber_type not in (SubscriberType.STUDENT, SubscriberType.INSTITUTION):
        raise ValidationError(
            f"Unknown subscriber type: {subscriber_type!r}",
            code="INVALID_SUBSCRIBER_TYPE",
            field='subscriber_type'
        )
    return subscriber_type


def plan_name_of(subscription: AnySubscription) -> str:
    if isinstance(subscription, StudentSubscription):
        return subscription.tier
    return subscription.plan_type


def charge_amount(subscription: AnySubscription) -> Decimal:
    """
    Amount of the first paid period.

    The stored amount wins; otherwise the tier's monthly price or the plan's
    price for its billing cycle.
    """
    if subscription.amount is not None and to_money(subscription.amount) > 0:
        return to_money(subscription.amount)
    if isinstance(subscription, StudentSubscription):
        tier = get_student_tier(subscription.tier)
        return tier.monthly_price if tier else Decimal('0.00')
    plan = get_institution_plan(subscription.plan_type)
    return get_plan_price(plan, subscription.billing_cycle) if plan else Decimal('0.00')


def awaiting_post_trial_payment(subscription: AnySubscription, now: datetime) -> bool:
    """True when the trial has ended and no paid period or fallback replaced it."""
    if subscription.is_fallback:
        return False
    if subscription.status == SubscriptionStatus.PAYMENT_REQUIRED:
        return True
    return (
        subscription.status == SubscriptionStatus.TRIAL
        and subscription.trial_end is not None
        and subscription.trial_end <= now
    )


async def build_payment_prompt(
    db: AsyncSession,
    subscriber_type: str,
    subscription: AnySubscription,
    now: datetime,
) -> Dict:
    """
    Prompt shown to a subscriber whose trial expired.

    Returns:
        Dict with attemptNumber, maxAttempts, attemptsRemaining, amount,
        currency and nextAttemptAt
    """
    attempts = await billing_record_dao.get_attempts(db, subscription.id, subscriber_type)
    failed = [a for a in attempts if a.status == BillingRecordStatus.FAILED]
    next_attempt_at = failed[-1].next_attempt_at if failed else None
    if next_attempt_at is None:
        next_attempt_at = getattr(subscription, 'next_payment_attempt_at', None) or now
    return {
        'attemptNumber': min(len(failed) + 1, MAX_PAYMENT_ATTEMPTS),
        'maxAttempts': MAX_PAYMENT_ATTEMPTS,
        'attemptsRemaining': max(0, MAX_PAYMENT_ATTEMPTS - len(failed)),
        'amount': str(charge_amount(subscription)),
        'currency': subscription.currency,
        'nextAttemptAt': next_attempt_at.isoformat(),
    }


class PostTrialPaymentService:
    """
    Post-trial payment collection.

    All methods are async class methods that can be called directly:
        result = await PostTrialPaymentService.create_payment_intent(db, 'STUDENT', subscription_id)
    """

    @classmethod
    async def create_payment_intent(
        cls,
        db: AsyncSession,
        subscriber_type: str,
        subscription_id: int,
        now: Optional[datetime] = None,
    ) -> Dict:
        """
        Create the PaymentIntent for the next post-trial attempt.

        Returns:
            Dict with paymentIntentId, clientSecret, amount, currency and attemptNumber

        Raises:
            NotFoundError: Subscription does not exist
            TrialError: Nothing to pay, or all attempts used
            PaymentError: Stripe rejected the request
        """
        service = cls()
        return await service._create_payment_intent(
            db, _validate_subscriber_type(subscriber_type), subscription_id, now or timezone.now()
        )

    async def _create_payment_intent(
        self,
        db: AsyncSession,
        subscriber_type: str,
        subscription_id: int,
        now: datetime,
    ) -> Dict:
        subscription = await self._load_subscription(db, subscriber_type, subscription_id)
        if not awaiting_post_trial_payment(subscription, now):
            raise TrialError(
                message="No post-trial payment is due for this subscription",
                code="NO_PAYMENT_REQUIRED",
                subscription_id=subscription_id
            )

        attempts = await billing_record_dao.get_attempts(db, subscription.id, subscriber_type)
        failed = [a for a in attempts if a.status == BillingRecordStatus.FAILED]
        if len(failed) >= MAX_PAYMENT_ATTEMPTS:
            raise TrialError(
                message="All post-trial payment attempts have been used",
                code="ATTEMPTS_EXHAUSTED",
                subscription_id=subscription_id
            )

        amount = charge_amount(subscription)
        if amount <= 0:
            raise TrialError(
                message="This plan has nothing to charge",
                code="NO_PAYMENT_REQUIRED",
                subscription_id=subscription_id
            )

        attempt_number = len(failed) + 1
        billing_cycle = getattr(subscription, 'billing_cycle', BillingCycle.MONTHLY)
        metadata = {
            'type': POST_TRIAL_PAYMENT_TYPE,
            'subscriptionId': str(subscription.id),
            'userType': subscriber_type,
            'planType': plan_name_of(subscription),
            'billingCycle': billing_cycle,
            'attemptNumber': str(attempt_number),
        }

        pending = next(
            (a for a in attempts
             if a.status == BillingRecordStatus.PENDING and a.attempt_number == attempt_number),
            None
        )
        amount_minor = to_minor_units(amount)
        intent = await StripeAPIWrapper.reusable_payment_intent(
            pending.payment_intent_id if pending is not None else None, amount_minor, subscription.currency
        )
        reused = intent is not None
        if not reused:
            intent = await StripeAPIWrapper.create_payment_intent(
                amount=amount_minor,
                currency=subscription.currency,
                metadata=metadata,
                automatic_payment_methods={'enabled': True},
                idempotency_key=stripe_idempotency_manager.generate_post_trial_key(
                    subscriber_type, subscription.id, attempt_number, now=now
                ),
            )

        async with atomic(db):
            if pending is None:
                db.add(SubscriptionBillingRecord(
                    subscription_id=subscription.id,
                    subscriber_type=subscriber_type,
                    amount=amount,
                    status=BillingRecordStatus.PENDING,
                    currency=subscription.currency,
                    attempt_number=attempt_number,
                    payment_intent_id=intent.id,
                    description=f"Post-trial payment attempt {attempt_number} for {plan_name_of(subscription)}",
                ))
            elif not reused:
                # The previous intent is cancelled or gone; the attempt moves to the new one
                pending.payment_intent_id = intent.id
                pending.amount = amount
            subscription.status = SubscriptionStatus.PAYMENT_REQUIRED

        logger.info(
            f"[TRIAL] Post-trial intent {intent.id} {'reused' if reused else 'created'} for {subscriber_type} "
            f"subscription {subscription.id} (attempt {attempt_number}/{MAX_PAYMENT_ATTEMPTS}, amount={amount})"
        )
        return {
            'paymentIntentId': intent.id,
            'clientSecret': intent.client_secret,
            'amount': str(amount),
            'currency': subscription.currency,
            'attemptNumber': attempt_number,
            'maxAttempts': MAX_PAYMENT_ATTEMPTS,
        }

    @classmethod
    async def handle_success(
        cls,
        db: AsyncSession,
        intent,
        now: Optional[datetime] = None,
    ) -> Optional[SubscriptionBillingRecord]:
        """
        Activate the subscription after a successful post-trial charge.

        Re-delivery of the same intent is a no-op.
        """
        service = cls()
        return await service._handle_success(db, intent, now or timezone.now())

    async def _handle_success(
        self,
        db: AsyncSession,
        intent,
        now: datetime,
    ) -> Optional[SubscriptionBillingRecord]:
        record, subscription = await self._load_for_intent(db, intent)
        if record is None or subscription is None:
            return None
        intent_id = intent.get('id')
        if record.status == BillingRecordStatus.REQUIRES_REVIEW:
            logger.info(f"[TRIAL] Intent {intent_id} already held for review, skipping")
            return record
        if record.status == BillingRecordStatus.PAID:
            if record.payment_intent_id == intent_id:
                logger.info(f"[TRIAL] Intent {intent_id} already applied, skipping")
                return record
            return await self._hold_duplicate_charge(db, record, intent)

        async with atomic(db):
            record.payment_intent_id = intent_id
            record.status = BillingRecordStatus.PAID
            record.failure_reason = None
            record.next_attempt_at = None
            received = intent.get('amount_received') or intent.get('amount')
            if received:
                record.amount = from_minor_units(received)

            period = timedelta(days=365) if getattr(subscription, 'billing_cycle', None) == BillingCycle.ANNUAL \
                else timedelta(days=30)
            subscription.status = SubscriptionStatus.ACTIVE
            subscription.current_period_end = now + period
            subscription.is_fallback = False
            if isinstance(subscription, StudentSubscription):
                subscription.next_payment_attempt_at = None

        logger.info(
            f"[TRIAL] {record.subscriber_type} subscription {subscription.id} activated "
            f"by post-trial payment {record.payment_intent_id}"
        )
        return record

    @classmethod
    async def handle_failure(
        cls,
        db: AsyncSession,
        intent,
        now: Optional[datetime] = None,
    ) -> Optional[SubscriptionBillingRecord]:
        """
        Record a failed post-trial charge.

        Schedules the next attempt DAYS_BETWEEN_ATTEMPTS days out, or applies
        the fallback plan once MAX_PAYMENT_ATTEMPTS attempts have failed.
        """
        service = cls()
        return await service._handle_failure(db, intent, now or timezone.now())

    async def _handle_failure(
        self,
        db: AsyncSession,
        intent,
        now: datetime,
    ) -> Optional[SubscriptionBillingRecord]:
        record, subscription = await self._load_for_intent(db, intent)
        if record is None or subscription is None:
            return None
        if record.payment_intent_id != intent.get('id'):
            logger.info(f"[TRIAL] Ignoring failure of replaced intent {intent.get('id')} for record {record.id}")
            return record
        if record.status != BillingRecordStatus.PENDING:
            logger.info(f"[TRIAL] Intent {record.payment_intent_id} already {record.status}, skipping")
            return record

        error = intent.get('last_payment_error') or {}
        reason = error.get('message') or 'Payment failed'

        async with atomic(db):
            record.status = BillingRecordStatus.FAILED
            record.failure_reason = reason
            if record.attempt_number >= MAX_PAYMENT_ATTEMPTS:
                record.next_attempt_at = None
                if isinstance(subscription, StudentSubscription):
                    apply_student_fallback(subscription, now)
                else:
                    institution = await institution_dao.get(db, subscription.institution_id)
                    apply_institution_fallback(subscription, institution, now)
            else:
                record.next_attempt_at = now + timedelta(days=DAYS_BETWEEN_ATTEMPTS)
                subscription.status = SubscriptionStatus.PAYMENT_REQUIRED
                if isinstance(subscription, StudentSubscription):
                    subscription.next_payment_attempt_at = record.next_attempt_at

        logger.warning(
            f"[TRIAL] Post-trial attempt {record.attempt_number}/{MAX_PAYMENT_ATTEMPTS} failed for "
            f"{record.subscriber_type} subscription {subscription.id}: {reason}"
        )
        return record

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _load_subscription(self, db: AsyncSession, subscriber_type: str, subscription_id: int) -> AnySubscription:
        if subscriber_type == SubscriberType.STUDENT:
            subscription = await student_subscription_dao.select_model(db, subscription_id)
        else:
            subscription = await institution_subscription_dao.select_model(db, subscription_id)
        if subscription is None:
            raise NotFoundError('Subscription', subscription_id, code='SUBSCRIPTION_NOT_FOUND')
        return subscription

    async def _hold_duplicate_charge(
        self,
        db: AsyncSession,
        paid: SubscriptionBillingRecord,
        intent,
    ) -> SubscriptionBillingRecord:
        """Record a second successful charge for an attempt that is already paid."""
        intent_id = intent.get('id')
        received = intent.get('amount_received') or intent.get('amount') or 0
        async with atomic(db):
            duplicate = SubscriptionBillingRecord(
                subscription_id=paid.subscription_id,
                subscriber_type=paid.subscriber_type,
                amount=from_minor_units(received),
                status=BillingRecordStatus.REQUIRES_REVIEW,
                currency=intent.get('currency') or paid.currency,
                attempt_number=paid.attempt_number,
                payment_intent_id=intent_id,
                failure_reason=f"Attempt {paid.attempt_number} was already paid by {paid.payment_intent_id}",
                description=paid.description,
            )
            db.add(duplicate)

        logger.error(
            f"[RECONCILE] Post-trial intent {intent_id} charged {paid.subscriber_type} subscription "
            f"{paid.subscription_id} a second time for attempt {paid.attempt_number}, held for review"
        )
        return duplicate

    async def _record_for_attempt(self, db: AsyncSession, metadata) -> Optional[SubscriptionBillingRecord]:
        """Billing record named by an intent's metadata, for intents no record points at any more."""
        subscriber_type = (metadata.get('userType') or '').upper()
        if subscriber_type not in (SubscriberType.STUDENT, SubscriberType.INSTITUTION):
            return None
        try:
            subscription_id = int(metadata.get('subscriptionId'))
            attempt_number = int(metadata.get('attemptNumber'))
        except (TypeError, ValueError):
            return None
        attempts = await billing_record_dao.get_attempts(db, subscription_id, subscriber_type)
        return next(
            (a for a in attempts
             if a.attempt_number == attempt_number and a.status != BillingRecordStatus.REQUIRES_REVIEW),
            None
        )

    async def _load_for_intent(
        self, db: AsyncSession, intent
    ) -> Tuple[Optional[SubscriptionBillingRecord], Optional[AnySubscription]]:
        intent_id = intent.get('id')
        record = await billing_record_dao.get_by_payment_intent(db, intent_id)
        if record is None:
            record = await self._record_for_attempt(db, intent.get('metadata') or {})
        if record is None:
            logger.warning(f"[TRIAL] No billing record for post-trial intent {intent_id}")
            return None, None
        try:
            subscription = await self._load_subscription(db, record.subscriber_type, record.subscription_id)
        except NotFoundError:
            logger.error(f"[TRIAL] Billing record {record.id} points at missing subscription {record.subscription_id}")
            return record, None
        return record, subscription
