"""
Payment Intent Webhook Handler

Handles payment intent webhook events:
- payment_intent.succeeded
- payment_intent.payment_failed

Intents tagged ``type=post_trial_payment`` belong to the subscription
flow; every other intent settles a course enrollment.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from linguamarket.src.billing.payments.reconciler import payment_reconciler
from linguamarket.src.billing.subscriptions.post_trial import POST_TRIAL_PAYMENT_TYPE, PostTrialPaymentService

logger = logging.getLogger(__name__)


class PaymentIntentHandler:
    """Handler for Stripe payment intent webhook events."""

    @classmethod
    def _is_post_trial(cls, intent) -> bool:
        metadata = intent.get('metadata') or {}
        return metadata.get('type') == POST_TRIAL_PAYMENT_TYPE

    @classmethod
    async def handle_succeeded(cls, db: AsyncSession, event) -> None:
        """
        Handle payment_intent.succeeded.

        Args:
            db: Database session
            event: Stripe event object
        """
        intent = event.data.object
        logger.info(f"[WEBHOOK] payment_intent.succeeded for {intent.get('id')}")
        if cls._is_post_trial(intent):
            await PostTrialPaymentService.handle_success(db, intent)
        else:
            await payment_reconciler.handle_payment_succeeded(db, intent)

    @classmethod
    async def handle_failed(cls, db: AsyncSession, event) -> None:
        """Handle payment_intent.payment_failed."""
        intent = event.data.object
        logger.info(f"[WEBHOOK] payment_intent.payment_failed for {intent.get('id')}")
        if cls._is_post_trial(intent):
            await PostTrialPaymentService.handle_failure(db, intent)
        else:
            await payment_reconciler.handle_payment_failed(db, intent)
