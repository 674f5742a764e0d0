"""
Payments Module

Course payment settlement and reconciliation.

Components:
- PaymentReconciler: Payment intents, manual settlement, webhook settlement and refunds

Usage:
    from linguamarket.src.billing.payments import payment_reconciler

    handle = await payment_reconciler.create_payment_intent(db, enrollment_id)
"""

from .interfaces import PaymentReconcilerInterface
from .reconciler import (
    COURSE_ENROLLMENT_PAYMENT_TYPE,
    PaymentIntentHandle,
    PaymentReconciler,
    payment_reconciler,
)

__all__ = [
    'PaymentReconciler',
    'payment_reconciler',
    'PaymentIntentHandle',
    'COURSE_ENROLLMENT_PAYMENT_TYPE',
    'PaymentReconcilerInterface',
]
