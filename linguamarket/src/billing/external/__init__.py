"""
External Integrations Module

Integration with external payment providers:
- Stripe (payment intents, refunds, webhooks)

Usage:
    from linguamarket.src.billing.external.stripe import (
        StripeAPIWrapper,
        webhook_service,
    )
"""

from .stripe import (
    StripeAPIWrapper,
    StripeIdempotencyManager,
    stripe_idempotency_manager,
    WebhookLock,
    WebhookService,
    webhook_service,
)

__all__ = [
    'StripeAPIWrapper',
    'StripeIdempotencyManager',
    'stripe_idempotency_manager',
    'WebhookLock',
    'WebhookService',
    'webhook_service',
]
