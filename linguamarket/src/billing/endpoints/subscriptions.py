"""
Subscription Endpoints

Student subscription status and trials, post-trial payment collection,
and institution plan management.
"""

import logging
from decimal import Decimal
from typing import Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from linguamarket.app.marketplace.crud.crud_course import institution_dao, institution_subscription_dao
from linguamarket.app.marketplace.crud.crud_subscription import student_subscription_dao
from linguamarket.database.db import CurrentSession
from linguamarket.src.billing.shared.config import (
    DEFAULT_TRIAL_TIER,
    BillingCycle,
    SubscriberType,
    UserRole,
)
from linguamarket.src.billing.shared.exceptions import ForbiddenError, NotFoundError, ValidationError
from linguamarket.src.billing.subscriptions import (
    PostTrialPaymentService,
    institution_subscription_service,
    subscription_service,
)

from .dependencies import AdminUser, AuthUser, CurrentUser, verify_billing_enabled
from .serializers import institution_subscription_to_dict, institution_to_dict, student_subscription_to_dict

logger = logging.getLogger(__name__)

router = APIRouter(tags=["billing-subscriptions"], dependencies=[Depends(verify_billing_enabled)])


# ============================================================================
# Request Models
# ============================================================================

class StartTrialRequest(BaseModel):
    tier: str = Field(DEFAULT_TRIAL_TIER, description="BASIC, PREMIUM or PRO")


class PostTrialPaymentRequest(BaseModel):
    """Pay the first charge after a trial; institutions name the institution."""
    subscriber_type: str = Field(SubscriberType.STUDENT, description="STUDENT or INSTITUTION")
    institution_id: Optional[int] = None


class InstitutionSubscribeRequest(BaseModel):
    plan_type: str = Field(..., description="STARTER, PROFESSIONAL or ENTERPRISE")
    billing_cycle: str = Field(BillingCycle.MONTHLY, description="MONTHLY or ANNUAL")
    start_trial: bool = False


class CancelSubscriptionRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=512)


class CommissionRateRequest(BaseModel):
    commission_rate: Decimal = Field(..., description="Platform cut in percent, 0-100")


# ============================================================================
# Student subscription
# ============================================================================

@router.get("/subscription/status")
async def get_subscription_status(db: CurrentSession, user: AuthUser) -> Dict:
    """Subscription, trial window and entitlement of the caller."""
    return await subscription_service.get_subscription_status(db, user.id)


@router.post("/subscription/trial")
async def start_trial(request: StartTrialRequest, db: CurrentSession, user: AuthUser) -> Dict:
    """Start the caller's 7-day trial."""
    subscription = await subscription_service.start_trial(db, user.id, tier=request.tier)
    return {'subscription': student_subscription_to_dict(subscription)}


@router.post("/subscription/post-trial-payment")
async def create_post_trial_payment(request: PostTrialPaymentRequest, db: CurrentSession, user: AuthUser) -> Dict:
    """Create the PaymentIntent for the next post-trial attempt."""
    subscriber_type = request.subscriber_type.upper()
    if subscriber_type == SubscriberType.STUDENT:
        subscription = await student_subscription_dao.get_by_student(db, user.id)
    elif subscriber_type == SubscriberType.INSTITUTION:
        if request.institution_id is None:
            raise ValidationError("institution_id is required", code="INSTITUTION_REQUIRED", field='institution_id')
        await _ensure_institution_access(db, request.institution_id, user)
        subscription = await institution_subscription_dao.get_by_institution(db, request.institution_id)
    else:
        raise ValidationError(
            f"Unknown subscriber type: {request.subscriber_type}",
            code="INVALID_SUBSCRIBER_TYPE",
            field='subscriber_type'
        )
    if subscription is None:
        raise NotFoundError('Subscription', code='SUBSCRIPTION_NOT_FOUND')
    return await PostTrialPaymentService.create_payment_intent(db, subscriber_type, subscription.id)


# ============================================================================
# Institution subscription
# ============================================================================

@router.get("/institutions/{institution_id}/subscription")
async def get_institution_subscription(institution_id: int, db: CurrentSession, user: AuthUser) -> Dict:
    await _ensure_institution_access(db, institution_id, user)
    return await institution_subscription_service.get_status(db, institution_id)


@router.post("/institutions/{institution_id}/subscription")
async def subscribe_institution(
    institution_id: int,
    request: InstitutionSubscribeRequest,
    db: CurrentSession,
    user: AuthUser,
) -> Dict:
    """Start or change an institution's plan."""
    await _ensure_institution_access(db, institution_id, user)
    subscription = await institution_subscription_service.subscribe(
        db,
        institution_id,
        request.plan_type,
        billing_cycle=request.billing_cycle.upper(),
        start_trial=request.start_trial,
    )
    return {'subscription': institution_subscription_to_dict(subscription)}


@router.delete("/institutions/{institution_id}/subscription")
async def cancel_institution_subscription(
    institution_id: int,
    db: CurrentSession,
    user: AuthUser,
    request: Optional[CancelSubscriptionRequest] = None,
) -> Dict:
    """Cancel an institution's plan; the commission rate reverts to the STARTER rate."""
    await _ensure_institution_access(db, institution_id, user)
    subscription = await institution_subscription_service.cancel(
        db, institution_id, reason=request.reason if request else None
    )
    return {'subscription': institution_subscription_to_dict(subscription)}


@router.put("/institutions/{institution_id}/commission-rate")
async def update_commission_rate(
    institution_id: int,
    request: CommissionRateRequest,
    db: CurrentSession,
    admin: AdminUser,
) -> Dict:
    """Admin override of an institution's platform commission rate."""
    institution = await institution_subscription_service.update_commission_rate(
        db, institution_id, request.commission_rate
    )
    logger.info(f"[COMMISSION] Admin {admin.id} set institution {institution_id} rate to {request.commission_rate}")
    return {'institution': institution_to_dict(institution)}


async def _ensure_institution_access(db, institution_id: int, user: CurrentUser) -> None:
    if user.is_admin:
        return
    institution = await institution_dao.get(db, institution_id)
    if institution is None:
        raise NotFoundError('Institution', institution_id, code='INSTITUTION_NOT_FOUND')
    if user.role != UserRole.INSTITUTION or institution.owner_user_id != user.id:
        raise ForbiddenError("You do not manage this institution", code="NOT_INSTITUTION_OWNER")
