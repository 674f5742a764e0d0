"""
Enrollment Endpoints

Eligibility checks, enrollment, and course payment collection.
"""

import logging
from typing import Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from linguamarket.app.marketplace.crud.crud_enrollment import enrollment_dao
from linguamarket.database.db import CurrentSession
from linguamarket.src.billing.enrollments import check_eligibility, enrollment_service
from linguamarket.src.billing.payments import PaymentReconciler
from linguamarket.src.billing.shared.exceptions import ForbiddenError, NotFoundError

from .dependencies import AuthUser, CurrentUser, SettingsCache, verify_billing_enabled
from .serializers import enrollment_to_dict, payment_to_dict

logger = logging.getLogger(__name__)

router = APIRouter(tags=["billing-enrollments"], dependencies=[Depends(verify_billing_enabled)])


# ============================================================================
# Request Models
# ============================================================================

class MarkPaidRequest(BaseModel):
    """Manual settlement of an enrollment."""
    payment_method: str = Field(..., min_length=1, max_length=32)
    notes: Optional[str] = Field(None, max_length=512)
    reference: Optional[str] = Field(None, max_length=128)


# ============================================================================
# Endpoints
# ============================================================================

@router.get("/courses/{course_id}/eligibility")
async def get_eligibility(course_id: int, db: CurrentSession, user: AuthUser) -> Dict:
    """Whether the caller may enroll in a course, with the reason when not."""
    result = await check_eligibility(db, student_id=user.id, course_id=course_id)
    return result.to_dict()


@router.post("/courses/{course_id}/enroll")
async def enroll(course_id: int, db: CurrentSession, user: AuthUser) -> Dict:
    """
    Enroll the caller in a course.

    Paid courses come back PENDING_PAYMENT; subscription-covered and free
    courses come back ENROLLED.
    """
    enrollment = await enrollment_service.enroll(db, student_id=user.id, course_id=course_id)
    return {'enrollment': enrollment_to_dict(enrollment)}


@router.post("/enrollments/{enrollment_id}/payment-intent")
async def create_payment_intent(
    enrollment_id: int,
    db: CurrentSession,
    user: AuthUser,
    cache: SettingsCache,
) -> Dict:
    """
    Create or reuse the Stripe PaymentIntent of a pending enrollment.

    The amount is the price locked on the enrollment's booking; the client
    cannot choose it.
    """
    await _ensure_enrollment_owner(db, enrollment_id, user)
    reconciler = PaymentReconciler(settings_cache=cache)
    handle = await reconciler.create_payment_intent(db, enrollment_id)
    return handle.to_dict()


@router.post("/enrollments/{enrollment_id}/mark-paid")
async def mark_paid(
    enrollment_id: int,
    request: MarkPaidRequest,
    db: CurrentSession,
    user: AuthUser,
    cache: SettingsCache,
) -> Dict:
    """Settle an enrollment outside Stripe (admins, or institutions the policy allows)."""
    reconciler = PaymentReconciler(settings_cache=cache)
    payment = await reconciler.mark_paid(
        db,
        enrollment_id,
        payment_method=request.payment_method,
        processed_by=user.id,
        actor_role=user.role,
        notes=request.notes,
        reference=request.reference,
    )
    logger.info(f"[PAYMENT] Enrollment {enrollment_id} marked paid by {user.role} {user.id}")
    return {'payment': payment_to_dict(payment)}


async def _ensure_enrollment_owner(db, enrollment_id: int, user: CurrentUser) -> None:
    enrollment = await enrollment_dao.get(db, enrollment_id)
    if enrollment is None:
        raise NotFoundError('Enrollment', enrollment_id, code='ENROLLMENT_NOT_FOUND')
    if not user.is_admin and enrollment.student_id != user.id:
        raise ForbiddenError("You can only pay for your own enrollments", code="NOT_ENROLLMENT_OWNER")
