"""
Enrollment Service

Creates enrollments. The eligibility decision is re-run inside the same
transaction that writes the row, after locking the course, so two
concurrent requests cannot both take the last seat. Where the database
ignores row locks, a seat count after the insert rolls back an overfill. A
partial unique index on (student_id, course_id) backs the duplicate check.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from linguamarket.app.marketplace.crud.crud_course import course_booking_dao, course_dao
from linguamarket.app.marketplace.crud.crud_enrollment import enrollment_dao
from linguamarket.app.marketplace.model import CourseBooking, StudentCourseEnrollment
from linguamarket.core.conf import settings
from linguamarket.database.db import atomic
from linguamarket.src.billing.shared.config import (
    SEAT_OCCUPYING_STATUSES,
    BookingStatus,
    EnrollmentPaymentStatus,
    EnrollmentStatus,
)
from linguamarket.src.billing.shared.exceptions import ConflictError, NotFoundError
from linguamarket.src.billing.shared.money import to_money
from linguamarket.utils.timezone import timezone

from .eligibility import EligibilityReason, decide_eligibility, load_eligibility_inputs

logger = logging.getLogger(__name__)


class EnrollmentService:
    """
    Enrollment creation and housekeeping.

    Usage:
        from linguamarket.src.billing.enrollments import enrollment_service

        enrollment = await enrollment_service.enroll(db, student_id=7, course_id=3)
    """

    async def enroll(
        self,
        db: AsyncSession,
        student_id: int,
        course_id: int,
        now: Optional[datetime] = None,
    ) -> StudentCourseEnrollment:
        """
        Enroll a student in a course.

        Subscription-covered and free courses start ENROLLED with payment
        status NOT_REQUIRED. Paid courses start PENDING_PAYMENT with a
        PENDING booking that locks the current price.

        Raises:
            NotFoundError: Course does not exist
            ConflictError: Already enrolled, course full or unavailable
            PolicyBlockedError: Subscription, tier or course allowance blocks it
        """
        now = now or timezone.now()
        try:
            async with atomic(db):
                course = await course_dao.get_for_update(db, course_id)
                if course is None:
                    raise NotFoundError('Course', course_id, code='COURSE_NOT_FOUND')

                inputs = await load_eligibility_inputs(db, student_id, course)
                decision = decide_eligibility(course, now=now, **inputs)
                decision.raise_for_rejection()

                price = to_money(course.base_price or 0)
                needs_payment = not decision.subscription_covered and price > 0

                if needs_payment:
                    enrollment = StudentCourseEnrollment(
                        student_id=student_id,
                        course_id=course.id,
                        status=EnrollmentStatus.PENDING_PAYMENT,
                        payment_status=EnrollmentPaymentStatus.PENDING,
                    )
                    db.add(CourseBooking(
                        student_id=student_id,
                        course_id=course.id,
                        amount=price,
                        currency=course.currency,
                        status=BookingStatus.PENDING,
                    ))
                else:
                    enrollment = StudentCourseEnrollment(
                        student_id=student_id,
                        course_id=course.id,
                        status=EnrollmentStatus.ENROLLED,
                        payment_status=EnrollmentPaymentStatus.NOT_REQUIRED,
                        payment_date=now,
                        subscription_id=decision.subscription_id,
                    )
                db.add(enrollment)
                await db.flush()

                # Backstop for eligibility reads that raced another enrollment
                occupied = await enrollment_dao.count_by_course(db, course.id, SEAT_OCCUPYING_STATUSES)
                if occupied > course.max_students:
                    logger.warning(f"[ENROLL] Course {course_id} overfilled by concurrent enrollment, rolling back")
                    raise ConflictError(
                        message='This course has reached its maximum enrollment capacity',
                        code=EligibilityReason.COURSE_FULL.value,
                        details={'courseId': course_id}
                    )
        except IntegrityError:
            # Lost the race on the partial unique index
            logger.warning(f"[ENROLL] Duplicate enrollment rejected student={student_id} course={course_id}")
            raise ConflictError(
                message='You are already enrolled in this course.',
                code=EligibilityReason.ALREADY_ENROLLED.value,
                details={'courseId': course_id}
            )

        logger.info(
            f"[ENROLL] Student {student_id} enrolled in course {course_id} "
            f"(enrollment={enrollment.id}, status={enrollment.status})"
        )
        return enrollment

    async def release_abandoned_enrollments(
        self,
        db: AsyncSession,
        older_than: Optional[timedelta] = None,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Mark PENDING_PAYMENT enrollments older than ``older_than`` ABANDONED.

        Without an explicit ``older_than`` the operator setting
        PENDING_ENROLLMENT_TTL_HOURS is used; when that is unset nothing is
        released.

        Returns:
            Number of enrollments released
        """
        if older_than is None:
            if settings.PENDING_ENROLLMENT_TTL_HOURS is None:
                logger.info("[ENROLL] PENDING_ENROLLMENT_TTL_HOURS unset, abandoned enrollments are kept")
                return 0
            older_than = timedelta(hours=settings.PENDING_ENROLLMENT_TTL_HOURS)

        cutoff = (now or timezone.now()) - older_than
        async with atomic(db):
            stale = await enrollment_dao.get_pending_before(db, cutoff)
            for enrollment in stale:
                enrollment.status = EnrollmentStatus.ABANDONED
                booking = await course_booking_dao.get_latest(
                    db, enrollment.student_id, enrollment.course_id, BookingStatus.PENDING
                )
                if booking is not None:
                    booking.status = BookingStatus.CANCELLED

        logger.info(f"[ENROLL] Released {len(stale)} abandoned enrollments created before {cutoff.isoformat()}")
        return len(stale)


enrollment_service = EnrollmentService()
