"""
Stripe Webhook Handlers

Contains handlers for different Stripe webhook event types:
- PaymentIntentHandler: Payment intent success and failure
- RefundHandler: Refund events
"""

from .payment_intent import PaymentIntentHandler
from .refund import RefundHandler

__all__ = [
    'PaymentIntentHandler',
    'RefundHandler',
]
