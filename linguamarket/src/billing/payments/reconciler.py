"""
Payment Reconciler

Turns payment signals into consistent ledger state:
- Stripe PaymentIntent creation for pending enrollments
- Manual settlement by admins or approved institutions
- Webhook settlement, failure and refund handling

Every settlement writes the enrollment, the Payment row, the booking and
the institution payout in one unit of work. Commission rates are frozen on
the Payment row; refunds reuse that frozen proportion.

Settlement locks the course row, then the enrollment row, and re-reads both
before writing. A captured charge that cannot be applied (duplicate, short,
wrong currency, or for an abandoned seat that is gone) is still recorded, as
a REQUIRES_REVIEW payment with no institution payout.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from linguamarket.app.marketplace.crud.crud_course import course_booking_dao, course_dao, institution_dao
from linguamarket.app.marketplace.crud.crud_enrollment import enrollment_dao
from linguamarket.app.marketplace.crud.crud_payment import payment_dao
from linguamarket.app.marketplace.model import (
    Course,
    CourseBooking,
    Institution,
    InstitutionPayout,
    Payment,
    StudentCourseEnrollment,
)
from linguamarket.database.db import atomic
from linguamarket.src.billing.commissions.calculator import institution_split, refund_split
from linguamarket.src.billing.domain.metadata import (
    CheckoutMetadata,
    RefundMetadata,
    RefundPayoutMetadata,
    ReviewMetadata,
    SettlementPayoutMetadata,
    payment_metadata,
    read_payment_metadata,
    read_review_metadata,
)
from linguamarket.src.billing.external.stripe.client import StripeAPIWrapper
from linguamarket.src.billing.external.stripe.idempotency import stripe_idempotency_manager
from linguamarket.src.billing.shared.config import (
    OPEN_ENROLLMENT_STATUSES,
    SEAT_OCCUPYING_STATUSES,
    BookingStatus,
    EnrollmentPaymentStatus,
    EnrollmentStatus,
    PaymentReviewReason,
    PaymentStatus,
    PayoutStatus,
    UserRole,
)
from linguamarket.src.billing.shared.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from linguamarket.src.billing.shared.money import from_minor_units, to_minor_units, to_money
from linguamarket.src.billing.shared.settings_cache import AdminSettingsCache, admin_settings_cache
from linguamarket.src.billing.subscriptions.institution_service import platform_rate_for
from linguamarket.utils.timezone import timezone

from .interfaces import PaymentReconcilerInterface

logger = logging.getLogger(__name__)

COURSE_ENROLLMENT_PAYMENT_TYPE = 'course_enrollment'

# Enrollment statuses a settlement moves to ENROLLED
_SETTLEABLE_STATUSES = (EnrollmentStatus.PENDING_PAYMENT, EnrollmentStatus.ABANDONED)

_REVIEW_MESSAGES: Dict[str, str] = {
    PaymentReviewReason.DUPLICATE_CHARGE: 'Enrollment was already paid by another payment',
    PaymentReviewReason.NO_SEAT: 'Payment arrived after the seat was released and the course is full',
    PaymentReviewReason.ENROLLMENT_SUPERSEDED: 'Payment arrived for an enrollment the student has since replaced',
    PaymentReviewReason.UNDERPAID: 'Amount received is below the amount due',
    PaymentReviewReason.CURRENCY_MISMATCH: 'Payment currency differs from the amount due',
}


@dataclass
class PaymentIntentHandle:
    """What the client needs to confirm a PaymentIntent."""
    payment_intent_id: str
    client_secret: Optional[str]
    amount: Decimal
    currency: str
    enrollment_id: int
    metadata: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            'paymentIntentId': self.payment_intent_id,
            'clientSecret': self.client_secret,
            'amount': str(self.amount),
            'currency': self.currency,
            'enrollmentId': self.enrollment_id,
        }


@dataclass
class CapturedCharge:
    """Money Stripe reports as received for one intent."""
    intent_id: str
    amount: Decimal
    currency: Optional[str]
    rate: Optional[Decimal]

    @classmethod
    def from_intent(cls, intent: Mapping[str, Any]) -> 'CapturedCharge':
        currency = intent.get('currency')
        return cls(
            intent_id=intent.get('id'),
            amount=from_minor_units(intent.get('amount_received') or intent.get('amount') or 0),
            currency=currency.lower() if currency else None,
            rate=_metadata_rate(intent.get('metadata') or {}),
        )


def _metadata_rate(metadata: Mapping[str, Any]) -> Optional[Decimal]:
    raw = metadata.get('commissionRate') if metadata else None
    if raw in (None, ''):
        return None
    try:
        rate = Decimal(str(raw))
    except (InvalidOperation, ValueError):
        return None
    if rate < 0 or rate > 100:
        return None
    return rate


def _metadata_int(metadata: Mapping[str, Any], key: str) -> Optional[int]:
    raw = metadata.get(key) if metadata else None
    try:
        return int(raw) if raw not in (None, '') else None
    except (TypeError, ValueError):
        return None


class PaymentReconciler(PaymentReconcilerInterface):
    """
    Course payment reconciliation.

    Usage:
        from linguamarket.src.billing.payments import payment_reconciler

        handle = await payment_reconciler.create_payment_intent(db, enrollment_id)
        payment = await payment_reconciler.mark_paid(
            db, enrollment_id, 'BANK_TRANSFER', processed_by=admin_id, actor_role='ADMIN'
        )
    """

    def __init__(self, settings_cache: Optional[AdminSettingsCache] = None):
        self._settings_cache = settings_cache or admin_settings_cache

    # =========================================================================
    # Payment intents
    # =========================================================================

    async def create_payment_intent(self, db: AsyncSession, enrollment_id: int) -> PaymentIntentHandle:
        """
        Create or reuse the Stripe PaymentIntent of a pending enrollment.

        The amount and currency always come from the booking locked at
        enrollment time, falling back to the course price. An intent already
        recorded on the enrollment is handed out again while the student can
        still complete it.

        Args:
            db: Database session
            enrollment_id: Enrollment to pay for

        Raises:
            NotFoundError: Enrollment or course missing
            ConflictError: Enrollment already paid, or its payment is in progress
            ValidationError: Nothing to charge
            PaymentError: Stripe rejected the request
        """
        enrollment = await self._get_enrollment(db, enrollment_id)
        if enrollment.payment_status == EnrollmentPaymentStatus.PAID:
            raise ConflictError("Enrollment is already paid", code="ALREADY_PAID", details={'enrollmentId': enrollment_id})
        course = await self._get_course(db, enrollment.course_id)
        institution = await self._get_institution(db, course)
        rate = platform_rate_for(institution)

        booking = await self._latest_booking(db, enrollment)
        amount, currency = self._amount_due(booking, course)
        if amount <= 0:
            raise ValidationError("Payment amount must be positive", code="INVALID_AMOUNT", field='amount')

        metadata = {
            'type': COURSE_ENROLLMENT_PAYMENT_TYPE,
            'enrollmentId': str(enrollment.id),
            'institutionId': str(institution.id) if institution else '',
            'studentId': str(enrollment.student_id),
            'courseId': str(course.id),
            'commissionRate': str(rate),
        }
        amount_minor = to_minor_units(amount)
        intent = await StripeAPIWrapper.reusable_payment_intent(enrollment.payment_intent_id, amount_minor, currency)
        if intent is not None:
            logger.info(f"[PAYMENT] Reusing open intent {intent.id} for enrollment {enrollment.id}")
        else:
            intent = await StripeAPIWrapper.create_payment_intent(
                amount=amount_minor,
                currency=currency,
                metadata=metadata,
                automatic_payment_methods={'enabled': True},
                idempotency_key=stripe_idempotency_manager.generate_payment_intent_key(
                    enrollment.id, amount_minor, currency
                ),
            )
            async with atomic(db):
                enrollment.payment_intent_id = intent.id
            logger.info(
                f"[PAYMENT] Created intent {intent.id} for enrollment {enrollment.id} "
                f"(amount={amount} {currency}, commission={rate}%)"
            )

        return PaymentIntentHandle(
            payment_intent_id=intent.id,
            client_secret=intent.client_secret,
            amount=amount,
            currency=currency,
            enrollment_id=enrollment.id,
            metadata=metadata,
        )

    # =========================================================================
    # Manual settlement
    # =========================================================================

    async def mark_paid(
        self,
        db: AsyncSession,
        enrollment_id: int,
        payment_method: str,
        processed_by: int,
        actor_role: str,
        notes: Optional[str] = None,
        reference: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Payment:
        """
        Settle an enrollment outside Stripe.

        Admins may always settle. Institutions may settle their own courses
        when the admin approval policy allows the payment method and the
        institution is not exempted. An abandoned enrollment is only revived
        while its seat is still free.

        Raises:
            NotFoundError: Enrollment or course missing
            ForbiddenError: Caller may not settle this enrollment
            ConflictError: Enrollment already paid, or its seat is gone
        """
        now = now or timezone.now()
        payment_method = (payment_method or '').upper()
        enrollment = await self._get_enrollment(db, enrollment_id)
        course = await self._get_course(db, enrollment.course_id)
        institution = await self._get_institution(db, course)
        course_id = course.id

        await self._authorize_manual_settlement(db, actor_role, processed_by, institution, payment_method)

        if enrollment.payment_status == EnrollmentPaymentStatus.PAID:
            raise ConflictError("Enrollment is already paid", code="ALREADY_PAID", details={'enrollmentId': enrollment_id})

        reference = reference or f"MANUAL_{int(now.timestamp() * 1000)}"
        async with atomic(db):
            course, enrollment = await self._lock_for_settlement(db, course_id, enrollment_id)
            if enrollment.payment_status == EnrollmentPaymentStatus.PAID:
                raise ConflictError(
                    "Enrollment is already paid", code="ALREADY_PAID", details={'enrollmentId': enrollment_id}
                )
            if enrollment.status == EnrollmentStatus.ABANDONED:
                blocker = await self._reopen_blocker(db, enrollment, course)
                if blocker == PaymentReviewReason.NO_SEAT:
                    raise ConflictError(
                        "The seat of this enrollment was released and the course is full",
                        code="COURSE_FULL",
                        details={'enrollmentId': enrollment_id},
                    )
                if blocker is not None:
                    raise ConflictError(
                        "The student already holds another enrollment in this course",
                        code="ALREADY_ENROLLED",
                        details={'enrollmentId': enrollment_id},
                    )

            booking = await self._latest_booking(db, enrollment)
            amount, _ = self._amount_due(booking, course)
            payment = await self._settle(
                db,
                enrollment=enrollment,
                course=course,
                institution=institution,
                amount=amount,
                rate=platform_rate_for(institution),
                payment_method=payment_method,
                reference=reference,
                source='manual',
                processed_by=processed_by,
                notes=notes,
                booking=booking,
                now=now,
            )

        logger.info(
            f"[PAYMENT] Enrollment {enrollment_id} marked paid by {actor_role} {processed_by} "
            f"({payment_method}, amount={payment.amount}, ref={reference})"
        )
        return payment

    async def _authorize_manual_settlement(
        self,
        db: AsyncSession,
        actor_role: str,
        processed_by: int,
        institution: Optional[Institution],
        payment_method: str,
    ) -> None:
        if actor_role == UserRole.ADMIN:
            return
        if actor_role != UserRole.INSTITUTION:
            raise ForbiddenError("Only admins and institutions can mark payments", code="ROLE_NOT_ALLOWED")
        if institution is None or institution.owner_user_id != processed_by:
            raise ForbiddenError("You can only mark payments for your own courses", code="NOT_COURSE_OWNER")

        policy = await self._settings_cache.get(db)
        if not policy.can_institution_approve(institution.id, payment_method):
            raise ForbiddenError(
                f"Institutions may not approve {payment_method} payments",
                code="PAYMENT_APPROVAL_NOT_ALLOWED",
                details={'paymentMethod': payment_method, 'institutionId': institution.id}
            )

    # =========================================================================
    # Webhook settlement
    # =========================================================================

    async def handle_payment_succeeded(
        self,
        db: AsyncSession,
        intent: Mapping[str, Any],
        now: Optional[datetime] = None,
    ) -> Optional[Payment]:
        """
        Settle an enrollment from ``payment_intent.succeeded``.

        Re-delivery is a logged no-op returning the existing payment. A charge
        that cannot settle its enrollment comes back as a REQUIRES_REVIEW
        payment; the money is on the ledger and nothing else changes hands.
        """
        now = now or timezone.now()
        charge = CapturedCharge.from_intent(intent)

        existing = await payment_dao.get_by_reference(db, charge.intent_id)
        if existing is not None:
            logger.info(f"[PAYMENT] Intent {charge.intent_id} already settled as payment {existing.id}, skipping")
            return existing

        enrollment = await self._enrollment_for_intent(db, charge.intent_id, intent.get('metadata') or {})
        if enrollment is None:
            logger.warning(f"[PAYMENT] No enrollment found for intent {charge.intent_id}, acknowledging")
            return None
        enrollment_id = enrollment.id
        course_id = enrollment.course_id

        try:
            async with atomic(db):
                payment = await self._apply_charge(db, charge, course_id, enrollment_id, now)
        except IntegrityError:
            # Rolled back: a concurrent delivery settled the intent, or the
            # student reopened the course while the enrollment was revived
            existing = await payment_dao.get_by_reference(db, charge.intent_id)
            if existing is not None:
                logger.info(f"[PAYMENT] Intent {charge.intent_id} settled concurrently, returning existing payment")
                return existing
            async with atomic(db):
                course = await self._get_course(db, course_id)
                enrollment = await self._get_enrollment(db, enrollment_id)
                payment = await self._hold_for_review(
                    db,
                    charge,
                    enrollment=enrollment,
                    course=course,
                    institution=await self._get_institution(db, course),
                    reason=PaymentReviewReason.ENROLLMENT_SUPERSEDED,
                    booking=None,
                    touch_enrollment=False,
                )

        if payment.status == PaymentStatus.COMPLETED:
            logger.info(
                f"[PAYMENT] Enrollment {enrollment_id} settled by intent {charge.intent_id} "
                f"(amount={payment.amount}, commission={payment.commission_amount})"
            )
        return payment

    async def _apply_charge(
        self,
        db: AsyncSession,
        charge: CapturedCharge,
        course_id: int,
        enrollment_id: int,
        now: datetime,
    ) -> Payment:
        """Settle or hold one captured charge; the caller owns the transaction."""
        course, enrollment = await self._lock_for_settlement(db, course_id, enrollment_id)
        existing = await payment_dao.get_by_reference(db, charge.intent_id)
        if existing is not None:
            return existing
        institution = await self._get_institution(db, course)
        booking = await self._latest_booking(db, enrollment)
        expected_amount, expected_currency = self._amount_due(booking, course)

        reason = None
        if enrollment.payment_status == EnrollmentPaymentStatus.PAID:
            reason = PaymentReviewReason.DUPLICATE_CHARGE
        elif enrollment.status == EnrollmentStatus.ABANDONED:
            reason = await self._reopen_blocker(db, enrollment, course)
        if reason is None and charge.currency and charge.currency != expected_currency:
            reason = PaymentReviewReason.CURRENCY_MISMATCH
        if reason is None and charge.amount < expected_amount:
            reason = PaymentReviewReason.UNDERPAID

        if reason is not None:
            return await self._hold_for_review(
                db,
                charge,
                enrollment=enrollment,
                course=course,
                institution=institution,
                reason=reason,
                booking=booking,
            )

        enrollment.payment_intent_id = charge.intent_id
        return await self._settle(
            db,
            enrollment=enrollment,
            course=course,
            institution=institution,
            amount=charge.amount,
            rate=charge.rate if charge.rate is not None else platform_rate_for(institution),
            payment_method='STRIPE',
            reference=charge.intent_id,
            source='webhook',
            booking=booking,
            now=now,
            currency=charge.currency or course.currency,
        )

    async def handle_payment_failed(
        self,
        db: AsyncSession,
        intent: Mapping[str, Any],
    ) -> Optional[StudentCourseEnrollment]:
        """
        Record ``payment_intent.payment_failed`` on the enrollment.

        The enrollment status is left alone so the student can retry; an
        enrollment that is already paid is not touched.
        """
        intent_id = intent.get('id')
        enrollment = await self._enrollment_for_intent(db, intent_id, intent.get('metadata') or {})
        if enrollment is None:
            logger.warning(f"[PAYMENT] No enrollment found for failed intent {intent_id}")
            return None
        if enrollment.payment_status == EnrollmentPaymentStatus.PAID:
            logger.info(f"[PAYMENT] Ignoring failure of intent {intent_id}, enrollment {enrollment.id} already paid")
            return enrollment

        error = intent.get('last_payment_error') or {}
        message = error.get('message') or 'Payment failed'
        async with atomic(db):
            enrollment.payment_status = EnrollmentPaymentStatus.FAILED
            enrollment.payment_error = message
            enrollment.payment_intent_id = intent_id

        logger.warning(f"[PAYMENT] Intent {intent_id} failed for enrollment {enrollment.id}: {message}")
        return enrollment

    async def handle_refund(
        self,
        db: AsyncSession,
        charge: Mapping[str, Any],
        now: Optional[datetime] = None,
    ) -> Optional[Payment]:
        """
        Apply ``charge.refunded`` to the ledger.

        Stripe reports the cumulative refunded amount, so only the part not
        yet recorded is applied and re-delivery changes nothing. The
        commission is refunded in the proportion frozen on the payment.
        Refunding a payment held for review moves no payout and leaves the
        enrollment as it is.
        """
        now = now or timezone.now()
        intent_id = charge.get('payment_intent')
        payment = await payment_dao.get_by_reference(db, intent_id) if intent_id else None
        if payment is None:
            logger.warning(f"[REFUND] No payment for charge {charge.get('id')} (intent {intent_id}), acknowledging")
            return None

        cumulative = min(from_minor_units(charge.get('amount_refunded') or 0), to_money(payment.amount))
        delta = cumulative - to_money(payment.refund_amount or 0)
        if delta <= 0:
            logger.info(f"[REFUND] Refund of payment {payment.id} already recorded ({payment.refund_amount}), skipping")
            return payment

        split = refund_split(payment.amount, payment.commission_amount, delta)
        checkout, previous = read_payment_metadata(payment.metadata_json)
        review = read_review_metadata(payment.metadata_json)
        refund = RefundMetadata(
            refund_amount=cumulative,
            refund_commission_amount=split.commission_amount + (
                previous.refund_commission_amount if previous else Decimal('0.00')
            ),
            refund_institution_amount=split.remainder_amount + (
                previous.refund_institution_amount if previous else Decimal('0.00')
            ),
            refunded_at=now,
            charge_id=charge.get('id'),
        )

        async with atomic(db):
            payment.status = PaymentStatus.REFUNDED
            payment.refund_amount = cumulative
            payment.refunded_at = now
            if checkout is not None:
                payment.metadata_json = payment_metadata(checkout, refund, review)
            else:
                payment.metadata_json = {**(payment.metadata_json or {}), 'refund': refund.to_dict()}

            if review is None:
                enrollment = await enrollment_dao.get(db, payment.enrollment_id)
                if enrollment is not None:
                    enrollment.payment_status = EnrollmentPaymentStatus.REFUNDED

                if payment.institution_id is not None and split.remainder_amount > 0:
                    db.add(InstitutionPayout(
                        institution_id=payment.institution_id,
                        amount=-split.remainder_amount,
                        enrollment_id=payment.enrollment_id,
                        payment_id=payment.id,
                        status=PayoutStatus.PENDING,
                        metadata_json=RefundPayoutMetadata(payment_id=payment.id, refund_amount=delta).to_dict(),
                    ))

        if review is not None:
            logger.info(f"[REFUND] Held payment {payment.id} ({review.reason}) refunded {delta} (cumulative {cumulative})")
        else:
            logger.info(
                f"[REFUND] Payment {payment.id} refunded {delta} (cumulative {cumulative}), "
                f"commission back {split.commission_amount}, institution back {split.remainder_amount}"
            )
        return payment

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _settle(
        self,
        db: AsyncSession,
        enrollment: StudentCourseEnrollment,
        course: Course,
        institution: Optional[Institution],
        amount: Decimal,
        rate: Decimal,
        payment_method: str,
        reference: str,
        source: str,
        now: datetime,
        booking=None,
        processed_by: Optional[int] = None,
        notes: Optional[str] = None,
        currency: Optional[str] = None,
    ) -> Payment:
        """Write every settlement row; the caller owns the transaction."""
        split = institution_split(amount, rate)
        checkout = CheckoutMetadata(
            commission_rate=split.commission_rate,
            commission_amount=split.commission_amount,
            institution_amount=split.remainder_amount,
            source=source,
            processed_by=processed_by,
            notes=notes,
            booking_id=booking.id if booking is not None else None,
        )
        payment = Payment(
            enrollment_id=enrollment.id,
            student_id=enrollment.student_id,
            amount=split.total_revenue,
            commission_rate=split.commission_rate,
            commission_amount=split.commission_amount,
            institution_amount=split.remainder_amount,
            payment_method=payment_method,
            provider_reference=reference,
            institution_id=institution.id if institution is not None else None,
            currency=currency or course.currency,
            status=PaymentStatus.COMPLETED,
            metadata_json=payment_metadata(checkout),
        )
        db.add(payment)
        await db.flush()

        if enrollment.status in _SETTLEABLE_STATUSES:
            enrollment.status = EnrollmentStatus.ENROLLED
        enrollment.payment_status = EnrollmentPaymentStatus.PAID
        enrollment.payment_method = payment_method
        enrollment.payment_date = now
        enrollment.payment_id = reference
        enrollment.payment_error = None

        if booking is not None:
            booking.status = BookingStatus.COMPLETED

        if institution is not None and split.remainder_amount > 0:
            db.add(InstitutionPayout(
                institution_id=institution.id,
                amount=split.remainder_amount,
                enrollment_id=enrollment.id,
                payment_id=payment.id,
                status=PayoutStatus.PENDING,
                metadata_json=SettlementPayoutMetadata(payment_id=payment.id, payment_method=payment_method).to_dict(),
            ))
        await db.flush()
        return payment

    async def _hold_for_review(
        self,
        db: AsyncSession,
        charge: CapturedCharge,
        enrollment: StudentCourseEnrollment,
        course: Course,
        institution: Optional[Institution],
        reason: str,
        booking: Optional[CourseBooking],
        touch_enrollment: bool = True,
    ) -> Payment:
        """
        Record a captured charge without applying it.

        No payout is written and the booking is left open. A short or
        foreign-currency charge marks the enrollment's payment as failed so
        the student can pay again; the other reasons leave the enrollment
        alone apart from the error note.
        """
        message = _REVIEW_MESSAGES[reason]
        expected_amount, expected_currency = self._amount_due(booking, course)
        rate = charge.rate if charge.rate is not None else platform_rate_for(institution)
        split = institution_split(charge.amount, rate)
        checkout = CheckoutMetadata(
            commission_rate=split.commission_rate,
            commission_amount=split.commission_amount,
            institution_amount=split.remainder_amount,
            source='webhook',
            notes=message,
            booking_id=booking.id if booking is not None else None,
        )
        review = ReviewMetadata(
            reason=reason,
            expected_amount=expected_amount,
            expected_currency=expected_currency,
            enrollment_status=enrollment.status,
        )
        payment = Payment(
            enrollment_id=enrollment.id,
            student_id=enrollment.student_id,
            amount=split.total_revenue,
            commission_rate=split.commission_rate,
            commission_amount=split.commission_amount,
            institution_amount=split.remainder_amount,
            payment_method='STRIPE',
            provider_reference=charge.intent_id,
            institution_id=institution.id if institution is not None else None,
            currency=charge.currency or course.currency,
            status=PaymentStatus.REQUIRES_REVIEW,
            metadata_json=payment_metadata(checkout, review=review),
        )
        db.add(payment)

        if touch_enrollment and reason in (PaymentReviewReason.UNDERPAID, PaymentReviewReason.CURRENCY_MISMATCH):
            enrollment.payment_status = EnrollmentPaymentStatus.FAILED
            enrollment.payment_error = message
            enrollment.payment_intent_id = charge.intent_id
        elif touch_enrollment and reason != PaymentReviewReason.DUPLICATE_CHARGE:
            enrollment.payment_error = message
        await db.flush()

        logger.error(
            f"[RECONCILE] Intent {charge.intent_id} held for review on enrollment {enrollment.id}: {reason} "
            f"(received {charge.amount} {charge.currency or '?'}, due {expected_amount} {expected_currency})"
        )
        return payment

    async def _lock_for_settlement(
        self,
        db: AsyncSession,
        course_id: int,
        enrollment_id: int,
    ) -> Tuple[Course, StudentCourseEnrollment]:
        # Same order as enrollment: course row first
        course = await course_dao.get_for_update(db, course_id)
        if course is None:
            raise NotFoundError('Course', course_id, code='COURSE_NOT_FOUND')
        enrollment = await enrollment_dao.get_for_update(db, enrollment_id)
        if enrollment is None:
            raise NotFoundError('Enrollment', enrollment_id, code='ENROLLMENT_NOT_FOUND')
        return course, enrollment

    async def _reopen_blocker(
        self,
        db: AsyncSession,
        enrollment: StudentCourseEnrollment,
        course: Course,
    ) -> Optional[str]:
        """Why an abandoned enrollment cannot take its seat back, None if it can."""
        other = await enrollment_dao.get_open(db, enrollment.student_id, course.id, OPEN_ENROLLMENT_STATUSES)
        if other is not None and other.id != enrollment.id:
            return PaymentReviewReason.ENROLLMENT_SUPERSEDED
        occupied = await enrollment_dao.count_by_course(db, course.id, SEAT_OCCUPYING_STATUSES)
        if occupied >= course.max_students:
            return PaymentReviewReason.NO_SEAT
        return None

    async def _get_enrollment(self, db: AsyncSession, enrollment_id: int) -> StudentCourseEnrollment:
        enrollment = await enrollment_dao.get(db, enrollment_id)
        if enrollment is None:
            raise NotFoundError('Enrollment', enrollment_id, code='ENROLLMENT_NOT_FOUND')
        return enrollment

    async def _get_course(self, db: AsyncSession, course_id: int) -> Course:
        course = await course_dao.get(db, course_id)
        if course is None:
            raise NotFoundError('Course', course_id, code='COURSE_NOT_FOUND')
        return course

    async def _get_institution(self, db: AsyncSession, course: Course) -> Optional[Institution]:
        if course.institution_id is None:
            return None
        return await institution_dao.get(db, course.institution_id)

    async def _latest_booking(self, db: AsyncSession, enrollment: StudentCourseEnrollment) -> Optional[CourseBooking]:
        booking = await course_booking_dao.get_latest(
            db, enrollment.student_id, enrollment.course_id, BookingStatus.PENDING
        )
        if booking is None:
            booking = await course_booking_dao.get_latest(db, enrollment.student_id, enrollment.course_id)
        return booking

    @staticmethod
    def _amount_due(booking: Optional[CourseBooking], course: Course) -> Tuple[Decimal, str]:
        """Amount and lowercase currency locked on the booking, else the course price."""
        if booking is not None:
            return to_money(booking.amount), (booking.currency or course.currency or 'usd').lower()
        return to_money(course.base_price or 0), (course.currency or 'usd').lower()

    async def _enrollment_for_intent(
        self,
        db: AsyncSession,
        intent_id: Optional[str],
        metadata: Mapping[str, Any],
    ) -> Optional[StudentCourseEnrollment]:
        enrollment_id = _metadata_int(metadata, 'enrollmentId')
        if enrollment_id is not None:
            enrollment = await enrollment_dao.get(db, enrollment_id)
            if enrollment is not None:
                return enrollment
        if intent_id:
            return await enrollment_dao.get_by_payment_intent(db, intent_id)
        return None


payment_reconciler = PaymentReconciler()
