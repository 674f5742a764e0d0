"""
Refund Webhook Handler

Handles refund-related webhook events:
- charge.refunded

The ledger side lives in PaymentReconciler.handle_refund; this handler
only unwraps the event.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from linguamarket.src.billing.payments.reconciler import payment_reconciler

logger = logging.getLogger(__name__)


class RefundHandler:
    """
    Handler for Stripe refund webhook events.

    When a refund is processed, we need to:
    - Record the refunded amount on the payment
    - Refund the platform commission in its original proportion
    - Append a negative institution payout
    """

    @classmethod
    async def handle_refund(cls, db: AsyncSession, event) -> None:
        """
        Handle charge.refunded event.

        Args:
            db: Database session
            event: Stripe event object
        """
        charge = event.data.object
        logger.info(
            f"[REFUND] Processing {event.type} for charge {charge.get('id')} "
            f"(amount_refunded={charge.get('amount_refunded', 0)})"
        )
        await payment_reconciler.handle_refund(db, charge)
