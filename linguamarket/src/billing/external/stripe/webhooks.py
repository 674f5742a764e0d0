"""
Stripe Webhook Service

Central dispatcher for Stripe webhook events.
Handles signature verification, deduplication, and routing to handlers.
"""

import logging
from typing import Any, Dict

import stripe
from fastapi import HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from linguamarket.core.conf import settings

from .client import StripeAPIWrapper
from .webhook_lock import WebhookLock

logger = logging.getLogger(__name__)


class WebhookService:
    """
    Central service for processing Stripe webhooks.

    Responsibilities:
    - Verify webhook signatures
    - Deduplicate events through the webhook_event table
    - Route events to appropriate handlers
    - Handle errors and mark event status

    Usage:
        result = await webhook_service.process_stripe_webhook(request, db)
    """

    async def process_stripe_webhook(self, request: Request, db: AsyncSession) -> Dict[str, Any]:
        """
        Process an incoming Stripe webhook.

        Args:
            request: FastAPI Request object
            db: Database session

        Returns:
            Dict with processing status

        Raises:
            HTTPException: If signature invalid or secret not configured
        """
        payload = await request.body()
        sig_header = request.headers.get('stripe-signature')

        if not sig_header:
            raise HTTPException(status_code=400, detail="Missing stripe-signature header")

        if not settings.STRIPE_WEBHOOK_SECRET:
            logger.error("[WEBHOOK] STRIPE_WEBHOOK_SECRET not configured")
            raise HTTPException(status_code=500, detail="Webhook secret not configured")

        try:
            event = StripeAPIWrapper.construct_event(payload, sig_header)
        except stripe.SignatureVerificationError as e:
            logger.warning(f"[WEBHOOK] Invalid signature: {e}")
            raise HTTPException(status_code=400, detail="Invalid webhook signature")
        except ValueError as e:
            logger.warning(f"[WEBHOOK] Invalid payload: {e}")
            raise HTTPException(status_code=400, detail="Invalid payload")

        return await self.dispatch(db, event)

    async def dispatch(self, db: AsyncSession, event) -> Dict[str, Any]:
        """
        Deduplicate and route a verified event.

        Handler errors are logged and the event is marked failed; Stripe
        still receives a success acknowledgement so it stops retrying.

        Args:
            db: Database session
            event: Verified Stripe event
        """
        can_process, reason = await WebhookLock.check_and_mark_webhook_processing(
            db,
            event.id,
            event.type,
            payload=event.to_dict() if hasattr(event, 'to_dict') else None
        )

        if not can_process:
            logger.info(f"[WEBHOOK] Skipping event {event.id}: {reason}")
            return {
                'status': 'success',
                'message': f'Event already processed or in progress: {reason}'
            }

        logger.info(f"[WEBHOOK] Processing event type: {event.type} (ID: {event.id})")

        try:
            await self._route_event(db, event)
        except Exception as e:
            logger.error(f"[WEBHOOK] Error processing webhook {event.id}: {e}", exc_info=True)
            await db.rollback()
            error_message = f"{type(e).__name__}: {str(e)[:500]}"
            await WebhookLock.mark_webhook_failed(db, event.id, error_message)
            return {
                'status': 'success',
                'error': 'processed_with_errors',
                'message': 'Webhook logged as failed internally'
            }

        await WebhookLock.mark_webhook_completed(db, event.id)
        return {'status': 'success', 'event_id': event.id}

    async def _route_event(self, db: AsyncSession, event) -> None:
        """
        Route event to the appropriate handler.

        Args:
            db: Database session
            event: Stripe event object
        """
        event_type = event.type

        # Import handlers here to avoid circular imports
        from .handlers.payment_intent import PaymentIntentHandler
        from .handlers.refund import RefundHandler

        if event_type == 'payment_intent.succeeded':
            await PaymentIntentHandler.handle_succeeded(db, event)

        elif event_type == 'payment_intent.payment_failed':
            await PaymentIntentHandler.handle_failed(db, event)

        elif event_type == 'charge.refunded':
            await RefundHandler.handle_refund(db, event)

        elif event_type in ['payment_intent.created', 'charge.succeeded', 'customer.created']:
            logger.debug(f"[WEBHOOK] {event_type} - logged only")

        else:
            logger.info(f"[WEBHOOK] Unhandled event type: {event_type}")


# Global instance
webhook_service = WebhookService()
