"""Marketplace models package."""

from linguamarket.app.marketplace.model.admin_settings import AdminSettings
from linguamarket.app.marketplace.model.commission import LeaderCommissionTier, SessionCommission
from linguamarket.app.marketplace.model.course import Course, CourseBooking
from linguamarket.app.marketplace.model.enrollment import StudentCourseEnrollment
from linguamarket.app.marketplace.model.institution import Institution, InstitutionSubscription
from linguamarket.app.marketplace.model.live_session import (
    LiveConversation,
    LiveConversationBooking,
    SessionAttendance,
    VideoSession,
)
from linguamarket.app.marketplace.model.payment import InstitutionPayout, Payment
from linguamarket.app.marketplace.model.subscription import StudentSubscription, SubscriptionBillingRecord
from linguamarket.app.marketplace.model.webhook_event import WebhookEvent

__all__ = [
    'AdminSettings',
    'Course',
    'CourseBooking',
    'Institution',
    'InstitutionPayout',
    'InstitutionSubscription',
    'LeaderCommissionTier',
    'LiveConversation',
    'LiveConversationBooking',
    'Payment',
    'SessionAttendance',
    'SessionCommission',
    'StudentCourseEnrollment',
    'StudentSubscription',
    'SubscriptionBillingRecord',
    'VideoSession',
    'WebhookEvent',
]
