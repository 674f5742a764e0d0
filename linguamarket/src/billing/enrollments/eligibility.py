"""
Enrollment Eligibility Engine

Decides whether a student may enroll in a course. The decision itself is
pure (``decide_eligibility``) so the enrollment transaction can re-run it on
freshly locked counts; ``check_eligibility`` is the read-only wrapper that
fetches those inputs.

Order of checks:
1. Course published
2. Subscription present and tier high enough (when the course requires one)
3. No open enrollment for the same (student, course)
4. A free seat
5. Course allowance of the student's tier (subscription-covered only)
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from linguamarket.app.marketplace.crud.crud_course import course_dao
from linguamarket.app.marketplace.crud.crud_enrollment import enrollment_dao
from linguamarket.app.marketplace.crud.crud_subscription import student_subscription_dao
from linguamarket.src.billing.domain.trial import effective_subscription_status
from linguamarket.src.billing.shared.config import (
    ACTIVE_SUBSCRIPTION_STATUSES,
    OPEN_ENROLLMENT_STATUSES,
    SEAT_OCCUPYING_STATUSES,
    SUBSCRIPTION_MARKETING_TYPES,
    SUBSCRIPTION_SIGNUP_URL,
    SUBSCRIPTION_UPGRADE_URL,
    CourseStatus,
    EnrollmentStatus,
)
from linguamarket.src.billing.shared.exceptions import ConflictError, NotFoundError, PolicyBlockedError
from linguamarket.src.billing.subscriptions.tiers import entitlement_for, remaining, satisfies
from linguamarket.utils.timezone import timezone

logger = logging.getLogger(__name__)


class EligibilityReason(Enum):
    ELIGIBLE = "ELIGIBLE"
    COURSE_UNAVAILABLE = "COURSE_UNAVAILABLE"
    SUBSCRIPTION_REQUIRED = "SUBSCRIPTION_REQUIRED"
    SUBSCRIPTION_TIER_INSUFFICIENT = "SUBSCRIPTION_TIER_INSUFFICIENT"
    ALREADY_ENROLLED = "ALREADY_ENROLLED"
    COURSE_FULL = "COURSE_FULL"
    ENROLLMENT_QUOTA_EXCEEDED = "ENROLLMENT_QUOTA_EXCEEDED"


# Reasons that carry an upgrade/signup path
POLICY_REASONS = frozenset({
    EligibilityReason.SUBSCRIPTION_REQUIRED,
    EligibilityReason.SUBSCRIPTION_TIER_INSUFFICIENT,
    EligibilityReason.ENROLLMENT_QUOTA_EXCEEDED,
})

ALREADY_ENROLLED_MESSAGES: Dict[str, str] = {
    EnrollmentStatus.PENDING_PAYMENT: (
        'You have a pending enrollment for this course. Please complete the payment to access the content.'
    ),
    EnrollmentStatus.ACTIVE: 'You are already enrolled and have access to this course.',
    EnrollmentStatus.ENROLLED: 'You are already enrolled and have access to this course.',
    EnrollmentStatus.COMPLETED: 'You have already completed this course.',
    EnrollmentStatus.IN_PROGRESS: 'You are currently enrolled and making progress in this course.',
}


@dataclass
class EligibilityResult:
    """
    Outcome of an eligibility decision.

    ``subscription_covered`` tells the enrollment path that no payment is
    needed because an active subscription grants the course.
    """
    eligible: bool
    reason: EligibilityReason
    message: str
    redirect_url: Optional[str] = None
    required_tier: Optional[str] = None
    current_tier: Optional[str] = None
    course: Optional[Dict[str, Any]] = None
    enrollment_status: Optional[str] = None
    subscription_covered: bool = False
    subscription_id: Optional[int] = None

    def is_policy_block(self) -> bool:
        return self.reason in POLICY_REASONS

    def to_dict(self) -> dict:
        return {
            'eligible': self.eligible,
            'reason': self.reason.value,
            'message': self.message,
            'redirectUrl': self.redirect_url,
            'requiredTier': self.required_tier,
            'currentTier': self.current_tier,
            'course': self.course,
        }

    def raise_for_rejection(self) -> None:
        """Raise the error matching a rejected decision; no-op when eligible."""
        if self.eligible:
            return
        details = self.to_dict()
        if self.enrollment_status:
            details['enrollmentStatus'] = self.enrollment_status
        if self.is_policy_block():
            raise PolicyBlockedError(
                message=self.message,
                code=self.reason.value,
                redirect_url=self.redirect_url,
                details=details
            )
        raise ConflictError(message=self.message, code=self.reason.value, details=details)


def course_requires_subscription(course) -> bool:
    """A course needs a subscription when flagged or when its marketing type implies one."""
    return bool(course.requires_subscription) or course.marketing_type in SUBSCRIPTION_MARKETING_TYPES


def course_summary(course) -> dict:
    return {
        'id': course.id,
        'title': course.title,
        'marketingType': course.marketing_type,
        'requiresSubscription': course_requires_subscription(course),
        'maxStudents': course.max_students,
        'basePrice': float(course.base_price) if course.base_price is not None else None,
        'startDate': course.start_date.isoformat() if course.start_date else None,
        'endDate': course.end_date.isoformat() if course.end_date else None,
    }


def _reject(reason: EligibilityReason, message: str, **kwargs) -> EligibilityResult:
    return EligibilityResult(eligible=False, reason=reason, message=message, **kwargs)


def decide_eligibility(
    course,
    subscription,
    existing_enrollment,
    occupied_seats: int,
    active_subscription_enrollments: int = 0,
    now: Optional[datetime] = None,
) -> EligibilityResult:
    """
    Pure eligibility decision over already-fetched records.

    Args:
        course: Course record (must exist)
        subscription: Student's subscription record or None
        existing_enrollment: Student's open enrollment for this course or None
        occupied_seats: Enrollments of the course holding a seat
        active_subscription_enrollments: Student's open subscription-covered enrollments
        now: Reference time for lazy trial evaluation

    Returns:
        EligibilityResult
    """
    now = now or timezone.now()

    if course.status != CourseStatus.PUBLISHED:
        return _reject(EligibilityReason.COURSE_UNAVAILABLE, 'This course is not available for enrollment')

    requires_subscription = course_requires_subscription(course)
    current_tier = None
    if requires_subscription:
        status = None
        if subscription is not None:
            status = effective_subscription_status(
                subscription.status, subscription.trial_start, subscription.trial_end, now
            )
            current_tier = subscription.tier
        if status not in ACTIVE_SUBSCRIPTION_STATUSES:
            return _reject(
                EligibilityReason.SUBSCRIPTION_REQUIRED,
                'This course requires an active subscription to enroll.',
                redirect_url=SUBSCRIPTION_SIGNUP_URL,
                current_tier=current_tier,
            )
        if course.subscription_tier and not satisfies(current_tier, course.subscription_tier):
            return _reject(
                EligibilityReason.SUBSCRIPTION_TIER_INSUFFICIENT,
                f"This course requires a {course.subscription_tier} subscription or higher. "
                f"Your current plan is {current_tier}.",
                redirect_url=SUBSCRIPTION_UPGRADE_URL,
                required_tier=course.subscription_tier,
                current_tier=current_tier,
            )

    if existing_enrollment is not None and existing_enrollment.status in OPEN_ENROLLMENT_STATUSES:
        return _reject(
            EligibilityReason.ALREADY_ENROLLED,
            ALREADY_ENROLLED_MESSAGES.get(existing_enrollment.status, 'Already enrolled in this course'),
            enrollment_status=existing_enrollment.status,
        )

    if occupied_seats >= course.max_students:
        return _reject(EligibilityReason.COURSE_FULL, 'This course has reached its maximum enrollment capacity')

    if requires_subscription:
        cap = entitlement_for(current_tier).max_courses
        if remaining(cap, active_subscription_enrollments) <= 0:
            return _reject(
                EligibilityReason.ENROLLMENT_QUOTA_EXCEEDED,
                f"Your {current_tier} plan allows {cap} subscription courses at a time. "
                f"Upgrade to enroll in more.",
                redirect_url=SUBSCRIPTION_UPGRADE_URL,
                current_tier=current_tier,
            )

    return EligibilityResult(
        eligible=True,
        reason=EligibilityReason.ELIGIBLE,
        message='You are eligible to enroll in this course',
        current_tier=current_tier,
        course=course_summary(course),
        subscription_covered=requires_subscription,
        subscription_id=subscription.id if requires_subscription else None,
    )


async def load_eligibility_inputs(
    db: AsyncSession,
    student_id: int,
    course,
) -> dict:
    """Fetch the records ``decide_eligibility`` needs for a known course."""
    subscription = await student_subscription_dao.get_by_student(db, student_id)
    existing = await enrollment_dao.get_open(db, student_id, course.id, OPEN_ENROLLMENT_STATUSES)
    occupied = await enrollment_dao.count_by_course(db, course.id, SEAT_OCCUPYING_STATUSES)
    covered = await enrollment_dao.count_subscription_covered(db, student_id, OPEN_ENROLLMENT_STATUSES)
    return {
        'subscription': subscription,
        'existing_enrollment': existing,
        'occupied_seats': occupied,
        'active_subscription_enrollments': covered,
    }


async def check_eligibility(
    db: AsyncSession,
    student_id: int,
    course_id: int,
    now: Optional[datetime] = None,
) -> EligibilityResult:
    """
    Read-only eligibility check.

    Raises:
        NotFoundError: Course does not exist
    """
    course = await course_dao.get(db, course_id)
    if course is None:
        raise NotFoundError('Course', course_id, code='COURSE_NOT_FOUND')

    inputs = await load_eligibility_inputs(db, student_id, course)
    result = decide_eligibility(course, now=now, **inputs)
    logger.info(f"[ENROLL] Eligibility student={student_id} course={course_id}: {result.reason.value}")
    return result
