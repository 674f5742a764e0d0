"""
Subscriptions Module

Subscription management for students and institutions.

Components:
- SubscriptionService: Student tiers, trials and cancellation
- InstitutionSubscriptionService: Institution plans and commission rates
- TrialService: Lazy trial evaluation and the expired-trial sweep
- PostTrialPaymentService: First paid charge after a trial

Usage:
    from linguamarket.src.billing.subscriptions import subscription_service

    status = await subscription_service.get_subscription_status(db, student_id)
"""

from .institution_service import (
    InstitutionSubscriptionService,
    institution_subscription_service,
    platform_rate_for,
)
from .post_trial import POST_TRIAL_PAYMENT_TYPE, PostTrialPaymentService
from .service import SubscriptionService, subscription_service
from .tiers import entitlement_for, remaining, satisfies
from .trial_service import TrialEvaluation, TrialService

__all__ = [
    'SubscriptionService',
    'subscription_service',
    'InstitutionSubscriptionService',
    'institution_subscription_service',
    'platform_rate_for',
    'TrialService',
    'TrialEvaluation',
    'PostTrialPaymentService',
    'POST_TRIAL_PAYMENT_TYPE',
    'satisfies',
    'entitlement_for',
    'remaining',
]
