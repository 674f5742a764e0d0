"""
Billing Module

Billing core of the language-learning marketplace.

Submodules:
- shared: Configuration, exceptions, money helpers, admin settings cache
- domain: Trial rules and typed payment metadata
- commissions: Commission splits and leader commissions
- subscriptions: Tiers, student and institution subscriptions, trials
- enrollments: Eligibility and enrollment creation
- payments: Payment reconciliation
- usage: Monthly session quotas and analytics
- sessions: Live session scheduling and booking
- external: Stripe integration
- endpoints: API routes

Usage:
    from linguamarket.src.billing import STUDENT_TIERS, get_student_tier

    from linguamarket.src.billing.enrollments import enrollment_service
    from linguamarket.src.billing.payments import payment_reconciler
"""

from .shared import (
    INSTITUTION_PLANS,
    STUDENT_TIERS,
    BillingError,
    ConflictError,
    NotFoundError,
    PolicyBlockedError,
    ValidationError,
    get_institution_plan,
    get_student_tier,
)

__all__ = [
    'INSTITUTION_PLANS',
    'STUDENT_TIERS',
    'BillingError',
    'ConflictError',
    'NotFoundError',
    'PolicyBlockedError',
    'ValidationError',
    'get_institution_plan',
    'get_student_tier',
]
