"""
Response Serializers

Plain-dict views of billing rows for API responses. Money is rendered as
a string so no precision is lost on the way out.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from linguamarket.app.marketplace.model import (
    Institution,
    InstitutionSubscription,
    LiveConversation,
    LiveConversationBooking,
    Payment,
    SessionAttendance,
    SessionCommission,
    StudentCourseEnrollment,
    StudentSubscription,
    VideoSession,
)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _money(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


def enrollment_to_dict(enrollment: StudentCourseEnrollment) -> dict:
    return {
        'id': enrollment.id,
        'studentId': enrollment.student_id,
        'courseId': enrollment.course_id,
        'status': enrollment.status,
        'paymentStatus': enrollment.payment_status,
        'paymentMethod': enrollment.payment_method,
        'paymentDate': _iso(enrollment.payment_date),
        'paymentIntentId': enrollment.payment_intent_id,
        'subscriptionId': enrollment.subscription_id,
    }


def payment_to_dict(payment: Payment) -> dict:
    return {
        'id': payment.id,
        'enrollmentId': payment.enrollment_id,
        'studentId': payment.student_id,
        'institutionId': payment.institution_id,
        'amount': _money(payment.amount),
        'currency': payment.currency,
        'commissionRate': _money(payment.commission_rate),
        'commissionAmount': _money(payment.commission_amount),
        'institutionAmount': _money(payment.institution_amount),
        'paymentMethod': payment.payment_method,
        'reference': payment.provider_reference,
        'status': payment.status,
        'refundAmount': _money(payment.refund_amount),
    }


def student_subscription_to_dict(subscription: StudentSubscription) -> dict:
    return {
        'id': subscription.id,
        'studentId': subscription.student_id,
        'tier': subscription.tier,
        'status': subscription.status,
        'amount': _money(subscription.amount),
        'trialStart': _iso(subscription.trial_start),
        'trialEnd': _iso(subscription.trial_end),
        'currentPeriodEnd': _iso(subscription.current_period_end),
        'isFallback': subscription.is_fallback,
    }


def institution_subscription_to_dict(subscription: InstitutionSubscription) -> dict:
    return {
        'id': subscription.id,
        'institutionId': subscription.institution_id,
        'planType': subscription.plan_type,
        'status': subscription.status,
        'billingCycle': subscription.billing_cycle,
        'amount': _money(subscription.amount),
        'commissionRate': _money(subscription.commission_rate),
        'trialStart': _iso(subscription.trial_start),
        'trialEnd': _iso(subscription.trial_end),
        'isFallback': subscription.is_fallback,
        'cancelledAt': _iso(subscription.cancelled_at),
    }


def institution_to_dict(institution: Institution) -> dict:
    return {
        'id': institution.id,
        'name': institution.name,
        'commissionRate': _money(institution.commission_rate),
        'subscriptionPlan': institution.subscription_plan,
    }


def session_to_dict(session: Any) -> dict:
    data = {
        'id': session.id,
        'title': session.title,
        'startTime': _iso(session.start_time),
        'endTime': _iso(session.end_time),
        'maxParticipants': session.max_participants,
        'price': _money(session.price),
        'isCreditBased': session.is_credit_based,
        'creditPrice': _money(session.credit_price),
        'status': session.status,
    }
    if isinstance(session, VideoSession):
        data.update(
            sessionType='VIDEO_SESSION',
            instructorId=session.instructor_id,
            institutionId=session.institution_id,
            commissionRate=_money(session.instructor_commission_rate),
        )
    elif isinstance(session, LiveConversation):
        data.update(
            sessionType='LIVE_CONVERSATION',
            hostId=session.host_id,
            commissionRate=_money(session.host_commission_rate),
        )
    return data


def attendance_to_dict(attendance: SessionAttendance) -> dict:
    return {
        'id': attendance.id,
        'userId': attendance.user_id,
        'sessionType': attendance.session_type,
        'sessionId': attendance.session_id,
        'sessionFormat': attendance.session_format,
        'minutes': attendance.minutes,
        'month': attendance.month_key,
    }


def booking_to_dict(booking: LiveConversationBooking) -> dict:
    return {
        'id': booking.id,
        'conversationId': booking.conversation_id,
        'userId': booking.user_id,
        'status': booking.status,
    }


def commission_to_dict(commission: SessionCommission) -> dict:
    return {
        'id': commission.id,
        'leaderId': commission.leader_id,
        'leaderRole': commission.leader_role,
        'sessionType': commission.session_type,
        'sessionId': commission.session_id,
        'totalRevenue': _money(commission.total_revenue),
        'commissionRate': _money(commission.commission_rate),
        'commissionAmount': _money(commission.commission_amount),
        'platformAmount': _money(commission.platform_amount),
        'tierName': commission.tier_name,
        'status': commission.status,
    }
