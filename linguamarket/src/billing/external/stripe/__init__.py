"""
Stripe Integration Module

Provides the Stripe integration for billing:
- Async API wrapper translating SDK errors
- Idempotency key generation
- Webhook processing and event handlers

Usage:
    from linguamarket.src.billing.external.stripe import (
        StripeAPIWrapper,
        stripe_idempotency_manager,
        webhook_service,
    )

    intent = await StripeAPIWrapper.create_payment_intent(
        amount=1299,
        currency='usd',
        idempotency_key=stripe_idempotency_manager.generate_payment_intent_key(enrollment_id, 1299, 'usd'),
    )
"""

from .client import StripeAPIWrapper

from .idempotency import (
    StripeIdempotencyManager,
    stripe_idempotency_manager,
)

from .webhook_lock import WebhookLock

from .webhooks import (
    WebhookService,
    webhook_service,
)

__all__ = [
    # API Client
    'StripeAPIWrapper',
    # Idempotency
    'StripeIdempotencyManager',
    'stripe_idempotency_manager',
    # Webhook Lock
    'WebhookLock',
    # Webhook Service
    'WebhookService',
    'webhook_service',
]
