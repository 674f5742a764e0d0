"""
Shared Module

Billing configuration, exceptions, money helpers and the admin settings cache.
"""

from .config import (
    INSTITUTION_PLANS,
    STUDENT_TIERS,
    UNLIMITED,
    Entitlement,
    InstitutionPlan,
    StudentTier,
    get_institution_plan,
    get_plan_price,
    get_student_tier,
)
from .exceptions import (
    AuthorizationError,
    BillingError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    PaymentError,
    PolicyBlockedError,
    ReconciliationError,
    SubscriptionError,
    TierNotFoundError,
    TrialError,
    ValidationError,
    WebhookError,
)

__all__ = [
    # Configuration
    'INSTITUTION_PLANS',
    'STUDENT_TIERS',
    'UNLIMITED',
    'Entitlement',
    'InstitutionPlan',
    'StudentTier',
    'get_institution_plan',
    'get_plan_price',
    'get_student_tier',
    # Exceptions
    'AuthorizationError',
    'BillingError',
    'ConflictError',
    'ForbiddenError',
    'NotFoundError',
    'PaymentError',
    'PolicyBlockedError',
    'ReconciliationError',
    'SubscriptionError',
    'TierNotFoundError',
    'TrialError',
    'ValidationError',
    'WebhookError',
]
