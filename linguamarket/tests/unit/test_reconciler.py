"""Tests for payment reconciliation.

Tests cover:
- PaymentIntent creation against a mocked Stripe client
- Manual settlement and the institution approval policy
- Webhook settlement, failure and refund handling
"""

from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from sqlalchemy import update

from linguamarket.app.marketplace.crud.crud_enrollment import enrollment_dao
from linguamarket.app.marketplace.crud.crud_payment import institution_payout_dao, payment_dao
from linguamarket.app.marketplace.model import CourseBooking, StudentCourseEnrollment
from linguamarket.src.billing.external.stripe.client import StripeAPIWrapper
from linguamarket.src.billing.payments.reconciler import PaymentReconciler
from linguamarket.src.billing.shared.config import SEAT_OCCUPYING_STATUSES
from linguamarket.src.billing.shared.exceptions import ConflictError, ForbiddenError, NotFoundError
from linguamarket.src.billing.shared.settings_cache import PaymentApprovalSettings


@pytest.fixture
def reconciler(approval_cache):
    return PaymentReconciler(settings_cache=approval_cache)


@pytest.fixture
async def institution_course(make_institution, make_course):
    """Course of an institution paying a 10% platform commission."""
    institution = await make_institution(commission_rate=Decimal('10'))
    course = await make_course(institution_id=institution.id, base_price=Decimal('100.00'))
    return institution, course


def _intent(enrollment_id, intent_id='pi_123', amount=10000, rate='10', currency='usd'):
    return {
        'id': intent_id,
        'amount': amount,
        'amount_received': amount,
        'currency': currency,
        'metadata': {'enrollmentId': str(enrollment_id), 'commissionRate': rate},
    }


async def _paid_elsewhere(db, enrollment_id):
    """Write PAID straight to the row, leaving the session's copy of the enrollment stale."""
    await db.execute(
        update(StudentCourseEnrollment)
        .where(StudentCourseEnrollment.id == enrollment_id)
        .values(status='ENROLLED', payment_status='PAID')
        .execution_options(synchronize_session=False)
    )
    await db.commit()


def _stripe_intent(intent_id='pi_open', status='requires_payment_method', amount=10000, currency='usd'):
    return SimpleNamespace(
        id=intent_id, status=status, amount=amount, currency=currency, client_secret=f'{intent_id}_secret'
    )


class TestCreatePaymentIntent:
    """Tests for PaymentIntent creation."""

    @pytest.mark.asyncio
    async def test_intent_uses_course_price_and_records_id(
        self, db, reconciler, institution_course, make_enrollment, monkeypatch
    ):
        institution, course = institution_course
        enrollment = await make_enrollment(4, course.id)
        create = AsyncMock(return_value=SimpleNamespace(id='pi_new', client_secret='pi_new_secret'))
        monkeypatch.setattr(StripeAPIWrapper, 'create_payment_intent', create)

        handle = await reconciler.create_payment_intent(db, enrollment.id)

        assert handle.payment_intent_id == 'pi_new'
        assert handle.client_secret == 'pi_new_secret'
        assert handle.amount == Decimal('100.00')
        assert enrollment.payment_intent_id == 'pi_new'
        kwargs = create.call_args.kwargs
        assert kwargs['amount'] == 10000
        assert kwargs['metadata']['enrollmentId'] == str(enrollment.id)
        assert kwargs['metadata']['institutionId'] == str(institution.id)
        assert Decimal(kwargs['metadata']['commissionRate']) == Decimal('10')
        assert kwargs['idempotency_key']

    @pytest.mark.asyncio
    async def test_paid_enrollment_is_rejected(self, db, reconciler, institution_course, make_enrollment, monkeypatch):
        _, course = institution_course
        enrollment = await make_enrollment(4, course.id, status='ENROLLED', payment_status='PAID')
        create = AsyncMock()
        monkeypatch.setattr(StripeAPIWrapper, 'create_payment_intent', create)

        with pytest.raises(ConflictError) as exc_info:
            await reconciler.create_payment_intent(db, enrollment.id)

        assert exc_info.value.code == 'ALREADY_PAID'
        create.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_enrollment(self, db, reconciler):
        with pytest.raises(NotFoundError) as exc_info:
            await reconciler.create_payment_intent(db, 999)

        assert exc_info.value.code == 'ENROLLMENT_NOT_FOUND'

    @pytest.mark.asyncio
    async def test_amount_is_the_locked_booking_price(
        self, db, reconciler, institution_course, make_enrollment, monkeypatch
    ):
        """Test that the booking price locked at checkout is charged, not the current course price."""
        _, course = institution_course
        enrollment = await make_enrollment(4, course.id)
        db.add(CourseBooking(
            student_id=4, course_id=course.id, amount=Decimal('80.00'), currency='USD', status='PENDING'
        ))
        await db.commit()
        create = AsyncMock(return_value=SimpleNamespace(id='pi_new', client_secret='pi_new_secret'))
        monkeypatch.setattr(StripeAPIWrapper, 'create_payment_intent', create)

        handle = await reconciler.create_payment_intent(db, enrollment.id)

        assert handle.amount == Decimal('80.00')
        assert create.call_args.kwargs['amount'] == 8000
        assert create.call_args.kwargs['currency'] == 'usd'
        assert len(create.call_args.kwargs['idempotency_key']) == 40

    @pytest.mark.asyncio
    async def test_open_intent_is_handed_out_again(
        self, db, reconciler, institution_course, make_enrollment, monkeypatch
    ):
        _, course = institution_course
        enrollment = await make_enrollment(4, course.id, payment_intent_id='pi_open')
        monkeypatch.setattr(StripeAPIWrapper, 'retrieve_payment_intent', AsyncMock(return_value=_stripe_intent()))
        create = AsyncMock()
        monkeypatch.setattr(StripeAPIWrapper, 'create_payment_intent', create)

        handle = await reconciler.create_payment_intent(db, enrollment.id)

        assert handle.payment_intent_id == 'pi_open'
        assert handle.client_secret == 'pi_open_secret'
        create.assert_not_called()

    @pytest.mark.asyncio
    async def test_open_intent_for_old_price_is_cancelled(
        self, db, reconciler, institution_course, make_enrollment, monkeypatch
    ):
        _, course = institution_course
        enrollment = await make_enrollment(4, course.id, payment_intent_id='pi_open')
        monkeypatch.setattr(
            StripeAPIWrapper, 'retrieve_payment_intent', AsyncMock(return_value=_stripe_intent(amount=5000))
        )
        cancel = AsyncMock()
        monkeypatch.setattr(StripeAPIWrapper, 'cancel_payment_intent', cancel)
        create = AsyncMock(return_value=SimpleNamespace(id='pi_new', client_secret='pi_new_secret'))
        monkeypatch.setattr(StripeAPIWrapper, 'create_payment_intent', create)

        handle = await reconciler.create_payment_intent(db, enrollment.id)

        cancel.assert_awaited_once_with('pi_open')
        assert handle.payment_intent_id == 'pi_new'
        assert enrollment.payment_intent_id == 'pi_new'

    @pytest.mark.asyncio
    async def test_processing_intent_blocks_a_second_one(
        self, db, reconciler, institution_course, make_enrollment, monkeypatch
    ):
        _, course = institution_course
        enrollment = await make_enrollment(4, course.id, payment_intent_id='pi_open')
        monkeypatch.setattr(
            StripeAPIWrapper, 'retrieve_payment_intent', AsyncMock(return_value=_stripe_intent(status='processing'))
        )
        create = AsyncMock()
        monkeypatch.setattr(StripeAPIWrapper, 'create_payment_intent', create)

        with pytest.raises(ConflictError) as exc_info:
            await reconciler.create_payment_intent(db, enrollment.id)

        assert exc_info.value.code == 'PAYMENT_IN_PROGRESS'
        create.assert_not_called()


class TestMarkPaid:
    """Tests for manual settlement."""

    @pytest.mark.asyncio
    async def test_admin_settles_with_frozen_split(self, db, reconciler, institution_course, make_enrollment, now):
        """Test a $100 course at a 10% platform rate settled by an admin."""
        institution, course = institution_course
        enrollment = await make_enrollment(4, course.id)

        payment = await reconciler.mark_paid(
            db, enrollment.id, 'bank_transfer', processed_by=1, actor_role='ADMIN', now=now
        )

        assert payment.amount == Decimal('100.00')
        assert payment.commission_rate == Decimal('10')
        assert payment.commission_amount == Decimal('10.00')
        assert payment.institution_amount == Decimal('90.00')
        assert payment.payment_method == 'BANK_TRANSFER'
        assert payment.provider_reference == f"MANUAL_{int(now.timestamp() * 1000)}"
        assert payment.metadata_json['checkout']['source'] == 'manual'
        assert enrollment.status == 'ENROLLED'
        assert enrollment.payment_status == 'PAID'
        assert await institution_payout_dao.get_balance(db, institution.id) == Decimal('90.00')

    @pytest.mark.asyncio
    async def test_settling_twice_is_rejected(self, db, reconciler, institution_course, make_enrollment, now):
        _, course = institution_course
        enrollment = await make_enrollment(4, course.id)
        await reconciler.mark_paid(db, enrollment.id, 'CASH', processed_by=1, actor_role='ADMIN', now=now)

        with pytest.raises(ConflictError) as exc_info:
            await reconciler.mark_paid(db, enrollment.id, 'CASH', processed_by=1, actor_role='ADMIN', reference='again')

        assert exc_info.value.code == 'ALREADY_PAID'

    @pytest.mark.asyncio
    async def test_students_cannot_settle(self, db, reconciler, institution_course, make_enrollment):
        _, course = institution_course
        enrollment = await make_enrollment(4, course.id)

        with pytest.raises(ForbiddenError) as exc_info:
            await reconciler.mark_paid(db, enrollment.id, 'CASH', processed_by=4, actor_role='STUDENT')

        assert exc_info.value.code == 'ROLE_NOT_ALLOWED'

    @pytest.mark.asyncio
    async def test_institution_blocked_by_default_policy(self, db, reconciler, institution_course, make_enrollment):
        """Test that institution approval is off until an admin enables it."""
        institution, course = institution_course
        enrollment = await make_enrollment(4, course.id)

        with pytest.raises(ForbiddenError) as exc_info:
            await reconciler.mark_paid(
                db, enrollment.id, 'CASH', processed_by=institution.owner_user_id, actor_role='INSTITUTION'
            )

        assert exc_info.value.code == 'PAYMENT_APPROVAL_NOT_ALLOWED'

    @pytest.mark.asyncio
    async def test_institution_settles_approvable_method(
        self, db, reconciler, approval_cache, institution_course, make_enrollment, now
    ):
        institution, course = institution_course
        enrollment = await make_enrollment(4, course.id)
        approval_cache.loader.policy = PaymentApprovalSettings(allow_institution_payment_approval=True)

        payment = await reconciler.mark_paid(
            db, enrollment.id, 'CASH', processed_by=institution.owner_user_id, actor_role='INSTITUTION', now=now
        )

        assert payment.metadata_json['checkout']['processed_by'] == institution.owner_user_id
        assert enrollment.payment_status == 'PAID'

    @pytest.mark.asyncio
    async def test_institution_cannot_approve_admin_only_method(
        self, db, reconciler, approval_cache, institution_course, make_enrollment
    ):
        institution, course = institution_course
        enrollment = await make_enrollment(4, course.id)
        approval_cache.loader.policy = PaymentApprovalSettings(allow_institution_payment_approval=True)

        with pytest.raises(ForbiddenError) as exc_info:
            await reconciler.mark_paid(
                db, enrollment.id, 'STRIPE', processed_by=institution.owner_user_id, actor_role='INSTITUTION'
            )

        assert exc_info.value.code == 'PAYMENT_APPROVAL_NOT_ALLOWED'

    @pytest.mark.asyncio
    async def test_exempted_institution(self, db, reconciler, approval_cache, institution_course, make_enrollment):
        institution, course = institution_course
        enrollment = await make_enrollment(4, course.id)
        approval_cache.loader.policy = PaymentApprovalSettings(
            allow_institution_payment_approval=True,
            institution_payment_approval_exemptions=(institution.id,),
        )

        with pytest.raises(ForbiddenError):
            await reconciler.mark_paid(
                db, enrollment.id, 'CASH', processed_by=institution.owner_user_id, actor_role='INSTITUTION'
            )

    @pytest.mark.asyncio
    async def test_other_institution_cannot_settle(
        self, db, reconciler, approval_cache, institution_course, make_enrollment
    ):
        _, course = institution_course
        enrollment = await make_enrollment(4, course.id)
        approval_cache.loader.policy = PaymentApprovalSettings(allow_institution_payment_approval=True)

        with pytest.raises(ForbiddenError) as exc_info:
            await reconciler.mark_paid(db, enrollment.id, 'CASH', processed_by=12345, actor_role='INSTITUTION')

        assert exc_info.value.code == 'NOT_COURSE_OWNER'

    @pytest.mark.asyncio
    async def test_platform_course_keeps_everything(self, db, reconciler, make_course, make_enrollment, now):
        """Test that a course without an institution writes no payout."""
        course = await make_course(base_price=Decimal('50.00'))
        enrollment = await make_enrollment(4, course.id)

        payment = await reconciler.mark_paid(db, enrollment.id, 'CASH', processed_by=1, actor_role='ADMIN', now=now)

        assert payment.institution_id is None
        assert payment.commission_amount == Decimal('50.00')
        assert payment.institution_amount == Decimal('0.00')
        assert await institution_payout_dao.get_by_payment(db, payment.id) == []

    @pytest.mark.asyncio
    async def test_paid_status_is_reread_under_lock(self, db, reconciler, institution_course, make_enrollment, now):
        """Test that a payment recorded by another worker after our read is seen before settling."""
        _, course = institution_course
        enrollment = await make_enrollment(4, course.id)
        enrollment_id = enrollment.id
        await _paid_elsewhere(db, enrollment_id)

        with pytest.raises(ConflictError) as exc_info:
            await reconciler.mark_paid(db, enrollment_id, 'CASH', processed_by=1, actor_role='ADMIN', now=now)

        assert exc_info.value.code == 'ALREADY_PAID'
        assert await payment_dao.get_by_enrollment(db, enrollment_id) == []

    @pytest.mark.asyncio
    async def test_abandoned_enrollment_whose_seat_was_taken(self, db, reconciler, make_course, make_enrollment, now):
        course = await make_course(max_students=1)
        course_id = course.id
        abandoned = await make_enrollment(4, course_id, status='ABANDONED')
        abandoned_id = abandoned.id
        await make_enrollment(5, course_id)

        with pytest.raises(ConflictError) as exc_info:
            await reconciler.mark_paid(db, abandoned_id, 'CASH', processed_by=1, actor_role='ADMIN', now=now)

        assert exc_info.value.code == 'COURSE_FULL'
        assert await enrollment_dao.count_by_course(db, course_id, SEAT_OCCUPYING_STATUSES) == 1
        assert await payment_dao.get_by_enrollment(db, abandoned_id) == []

    @pytest.mark.asyncio
    async def test_abandoned_enrollment_with_free_seat_is_revived(
        self, db, reconciler, make_course, make_enrollment, now
    ):
        course = await make_course(max_students=2)
        abandoned = await make_enrollment(4, course.id, status='ABANDONED')
        await make_enrollment(5, course.id)

        await reconciler.mark_paid(db, abandoned.id, 'CASH', processed_by=1, actor_role='ADMIN', now=now)

        assert abandoned.status == 'ENROLLED'
        assert abandoned.payment_status == 'PAID'


class TestWebhookSettlement:
    """Tests for payment_intent.succeeded and payment_intent.payment_failed."""

    @pytest.mark.asyncio
    async def test_succeeded_settles_enrollment(self, db, reconciler, institution_course, make_enrollment, now):
        institution, course = institution_course
        enrollment = await make_enrollment(4, course.id)

        payment = await reconciler.handle_payment_succeeded(db, _intent(enrollment.id), now=now)

        assert payment.provider_reference == 'pi_123'
        assert payment.commission_amount == Decimal('10.00')
        assert payment.metadata_json['checkout']['source'] == 'webhook'
        assert enrollment.status == 'ENROLLED'
        assert enrollment.payment_intent_id == 'pi_123'
        assert await institution_payout_dao.get_balance(db, institution.id) == Decimal('90.00')

    @pytest.mark.asyncio
    async def test_redelivery_is_a_no_op(self, db, reconciler, institution_course, make_enrollment, now):
        """Test that a second delivery of the same intent writes nothing new."""
        institution, course = institution_course
        enrollment = await make_enrollment(4, course.id)

        first = await reconciler.handle_payment_succeeded(db, _intent(enrollment.id), now=now)
        second = await reconciler.handle_payment_succeeded(db, _intent(enrollment.id), now=now)

        assert second.id == first.id
        assert len(await payment_dao.get_by_enrollment(db, enrollment.id)) == 1
        assert len(await institution_payout_dao.get_by_payment(db, first.id)) == 1

    @pytest.mark.asyncio
    async def test_metadata_rate_wins_over_current_rate(self, db, reconciler, institution_course, make_enrollment, now):
        """Test that the rate quoted at intent creation is the one applied."""
        institution, course = institution_course
        enrollment = await make_enrollment(4, course.id)
        institution.commission_rate = Decimal('25')
        await db.commit()

        payment = await reconciler.handle_payment_succeeded(db, _intent(enrollment.id, rate='10'), now=now)

        assert payment.commission_rate == Decimal('10')

    @pytest.mark.asyncio
    async def test_unknown_intent_is_acknowledged(self, db, reconciler, now):
        payment = await reconciler.handle_payment_succeeded(
            db, {'id': 'pi_ghost', 'amount': 500, 'metadata': {}}, now=now
        )

        assert payment is None

    @pytest.mark.asyncio
    async def test_failed_intent_marks_payment_failed(self, db, reconciler, institution_course, make_enrollment):
        _, course = institution_course
        enrollment = await make_enrollment(4, course.id)
        intent = {
            'id': 'pi_declined',
            'metadata': {'enrollmentId': str(enrollment.id)},
            'last_payment_error': {'message': 'Your card was declined.'},
        }

        result = await reconciler.handle_payment_failed(db, intent)

        assert result.payment_status == 'FAILED'
        assert result.payment_error == 'Your card was declined.'
        assert result.status == 'PENDING_PAYMENT'

    @pytest.mark.asyncio
    async def test_failure_after_success_is_ignored(self, db, reconciler, institution_course, make_enrollment, now):
        _, course = institution_course
        enrollment = await make_enrollment(4, course.id)
        await reconciler.handle_payment_succeeded(db, _intent(enrollment.id), now=now)

        result = await reconciler.handle_payment_failed(db, {'id': 'pi_123', 'metadata': {}})

        assert result.payment_status == 'PAID'

    @pytest.mark.asyncio
    async def test_late_payment_for_released_seat_is_held(
        self, db, reconciler, institution_course, make_enrollment, now
    ):
        """Test that paying an abandoned enrollment after its seat was taken does not overfill the course."""
        institution, course = institution_course
        course.max_students = 1
        await db.commit()
        abandoned = await make_enrollment(4, course.id, status='ABANDONED')
        await make_enrollment(5, course.id)

        payment = await reconciler.handle_payment_succeeded(db, _intent(abandoned.id), now=now)

        assert payment.status == 'REQUIRES_REVIEW'
        assert payment.provider_reference == 'pi_123'
        assert payment.metadata_json['review']['reason'] == 'NO_SEAT'
        assert abandoned.status == 'ABANDONED'
        assert abandoned.payment_error
        assert await enrollment_dao.count_by_course(db, course.id, SEAT_OCCUPYING_STATUSES) == 1
        assert await institution_payout_dao.get_by_payment(db, payment.id) == []
        assert await institution_payout_dao.get_balance(db, institution.id) == Decimal('0.00')

    @pytest.mark.asyncio
    async def test_late_payment_after_student_enrolled_again(
        self, db, reconciler, institution_course, make_enrollment, now
    ):
        _, course = institution_course
        abandoned = await make_enrollment(4, course.id, status='ABANDONED')
        current = await make_enrollment(4, course.id)

        payment = await reconciler.handle_payment_succeeded(db, _intent(abandoned.id), now=now)

        assert payment.status == 'REQUIRES_REVIEW'
        assert payment.metadata_json['review']['reason'] == 'ENROLLMENT_SUPERSEDED'
        assert abandoned.status == 'ABANDONED'
        assert current.status == 'PENDING_PAYMENT'

    @pytest.mark.asyncio
    async def test_late_payment_with_seat_still_free_settles(
        self, db, reconciler, institution_course, make_enrollment, now
    ):
        _, course = institution_course
        abandoned = await make_enrollment(4, course.id, status='ABANDONED')

        payment = await reconciler.handle_payment_succeeded(db, _intent(abandoned.id), now=now)

        assert payment.status == 'COMPLETED'
        assert abandoned.status == 'ENROLLED'
        assert abandoned.payment_status == 'PAID'

    @pytest.mark.asyncio
    async def test_unique_index_conflict_still_records_the_charge(
        self, db, reconciler, institution_course, make_enrollment, monkeypatch, now
    ):
        """Test that a revive rejected by the database leaves the charge on the ledger."""
        _, course = institution_course
        abandoned = await make_enrollment(4, course.id, status='ABANDONED')
        abandoned_id = abandoned.id
        await make_enrollment(4, course.id)
        monkeypatch.setattr(reconciler, '_reopen_blocker', AsyncMock(return_value=None))

        payment = await reconciler.handle_payment_succeeded(db, _intent(abandoned_id), now=now)

        assert payment is not None
        assert payment.status == 'REQUIRES_REVIEW'
        assert payment.metadata_json['review']['reason'] == 'ENROLLMENT_SUPERSEDED'
        assert (await payment_dao.get_by_reference(db, 'pi_123')).id == payment.id
        assert (await enrollment_dao.get(db, abandoned_id)).status == 'ABANDONED'
        assert await institution_payout_dao.get_by_payment(db, payment.id) == []

    @pytest.mark.asyncio
    async def test_underpaid_intent_does_not_enroll(self, db, reconciler, institution_course, make_enrollment, now):
        """Test that $1.00 received against a $100.00 course leaves the enrollment unpaid."""
        institution, course = institution_course
        enrollment = await make_enrollment(4, course.id)

        payment = await reconciler.handle_payment_succeeded(db, _intent(enrollment.id, amount=100), now=now)

        assert payment.status == 'REQUIRES_REVIEW'
        assert payment.amount == Decimal('1.00')
        assert payment.metadata_json['review']['reason'] == 'UNDERPAID'
        assert payment.metadata_json['review']['expected_amount'] == '100.00'
        assert enrollment.status == 'PENDING_PAYMENT'
        assert enrollment.payment_status == 'FAILED'
        assert await institution_payout_dao.get_balance(db, institution.id) == Decimal('0.00')

    @pytest.mark.asyncio
    async def test_intent_in_another_currency_does_not_enroll(
        self, db, reconciler, institution_course, make_enrollment, now
    ):
        _, course = institution_course
        enrollment = await make_enrollment(4, course.id)

        payment = await reconciler.handle_payment_succeeded(db, _intent(enrollment.id, currency='jpy'), now=now)

        assert payment.status == 'REQUIRES_REVIEW'
        assert payment.metadata_json['review']['reason'] == 'CURRENCY_MISMATCH'
        assert enrollment.payment_status == 'FAILED'

    @pytest.mark.asyncio
    async def test_second_intent_for_paid_enrollment_is_held(
        self, db, reconciler, institution_course, make_enrollment, now
    ):
        """Test that an older intent succeeding after a newer one is recorded, not dropped."""
        _, course = institution_course
        enrollment = await make_enrollment(4, course.id)
        first = await reconciler.handle_payment_succeeded(db, _intent(enrollment.id, intent_id='pi_new'), now=now)

        second = await reconciler.handle_payment_succeeded(db, _intent(enrollment.id, intent_id='pi_old'), now=now)

        assert second.id != first.id
        assert second.status == 'REQUIRES_REVIEW'
        assert second.metadata_json['review']['reason'] == 'DUPLICATE_CHARGE'
        assert enrollment.payment_id == 'pi_new'
        assert len(await institution_payout_dao.get_by_payment(db, second.id)) == 0

    @pytest.mark.asyncio
    async def test_paid_status_is_reread_under_lock(self, db, reconciler, institution_course, make_enrollment, now):
        _, course = institution_course
        enrollment = await make_enrollment(4, course.id)
        await _paid_elsewhere(db, enrollment.id)

        payment = await reconciler.handle_payment_succeeded(db, _intent(enrollment.id), now=now)

        assert payment.status == 'REQUIRES_REVIEW'
        assert payment.metadata_json['review']['reason'] == 'DUPLICATE_CHARGE'


class TestRefunds:
    """Tests for charge.refunded handling."""

    @pytest.mark.asyncio
    async def test_partial_refund_uses_frozen_proportion(
        self, db, reconciler, institution_course, make_enrollment, now
    ):
        """Test a $40 refund of a $100 payment that carried $10 commission."""
        institution, course = institution_course
        enrollment = await make_enrollment(4, course.id)
        payment = await reconciler.handle_payment_succeeded(db, _intent(enrollment.id), now=now)
        institution.commission_rate = Decimal('30')
        await db.commit()

        refunded = await reconciler.handle_refund(
            db, {'id': 'ch_1', 'payment_intent': 'pi_123', 'amount_refunded': 4000}, now=now
        )

        assert refunded.id == payment.id
        assert refunded.status == 'REFUNDED'
        assert refunded.refund_amount == Decimal('40.00')
        refund = refunded.metadata_json['refund']
        assert refund['refund_commission_amount'] == '4.00'
        assert refund['refund_institution_amount'] == '36.00'
        assert refunded.metadata_json['checkout']['commission_amount'] == '10.00'
        assert enrollment.payment_status == 'REFUNDED'
        assert await institution_payout_dao.get_balance(db, institution.id) == Decimal('54.00')

    @pytest.mark.asyncio
    async def test_refund_redelivery_changes_nothing(self, db, reconciler, institution_course, make_enrollment, now):
        institution, course = institution_course
        enrollment = await make_enrollment(4, course.id)
        payment = await reconciler.handle_payment_succeeded(db, _intent(enrollment.id), now=now)
        charge = {'id': 'ch_1', 'payment_intent': 'pi_123', 'amount_refunded': 4000}

        await reconciler.handle_refund(db, charge, now=now)
        await reconciler.handle_refund(db, charge, now=now)

        assert len(await institution_payout_dao.get_by_payment(db, payment.id)) == 2
        assert await institution_payout_dao.get_balance(db, institution.id) == Decimal('54.00')

    @pytest.mark.asyncio
    async def test_cumulative_refunds_apply_only_the_difference(
        self, db, reconciler, institution_course, make_enrollment, now
    ):
        """Test that a later full refund adds only the not yet refunded part."""
        institution, course = institution_course
        enrollment = await make_enrollment(4, course.id)
        await reconciler.handle_payment_succeeded(db, _intent(enrollment.id), now=now)

        await reconciler.handle_refund(db, {'id': 'ch_1', 'payment_intent': 'pi_123', 'amount_refunded': 4000}, now=now)
        refunded = await reconciler.handle_refund(
            db, {'id': 'ch_1', 'payment_intent': 'pi_123', 'amount_refunded': 10000}, now=now
        )

        assert refunded.refund_amount == Decimal('100.00')
        assert refunded.metadata_json['refund']['refund_commission_amount'] == '10.00'
        assert await institution_payout_dao.get_balance(db, institution.id) == Decimal('0.00')

    @pytest.mark.asyncio
    async def test_refund_for_unknown_charge(self, db, reconciler, now):
        result = await reconciler.handle_refund(db, {'id': 'ch_x', 'payment_intent': 'pi_none', 'amount_refunded': 100})

        assert result is None

    @pytest.mark.asyncio
    async def test_refund_of_held_payment_moves_no_payout(
        self, db, reconciler, institution_course, make_enrollment, now
    ):
        institution, course = institution_course
        enrollment = await make_enrollment(4, course.id)
        await reconciler.handle_payment_succeeded(db, _intent(enrollment.id, amount=100), now=now)

        refunded = await reconciler.handle_refund(
            db, {'id': 'ch_1', 'payment_intent': 'pi_123', 'amount_refunded': 100}, now=now
        )

        assert refunded.status == 'REFUNDED'
        assert refunded.metadata_json['review']['reason'] == 'UNDERPAID'
        assert enrollment.payment_status == 'FAILED'
        assert await institution_payout_dao.get_by_payment(db, refunded.id) == []
